"""
Driver lookup for usbhostserial,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
Parts rewritten in Python for usbhostserial!
"""
import logging
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Type

import usb1

from ..device.usb import UsbDevice
from .handler import UsbSerialDriver
from .cdcacm import CdcAcmSerialDriver
from .ch34x import Ch34xSerialDriver
from .chromeccd import ChromeCcdSerialDriver
from .cp21xx import Cp21xxSerialDriver
from .ftdi import FtdiSerialDriver
from .gsmmodem import GsmModemSerialDriver
from .prolific import ProlificSerialDriver

logger = logging.getLogger(__name__)

DEFAULT_DRIVERS = (
    CdcAcmSerialDriver,
    Cp21xxSerialDriver,
    FtdiSerialDriver,
    ProlificSerialDriver,
    Ch34xSerialDriver,
    GsmModemSerialDriver,
    ChromeCcdSerialDriver,
)

# module name -> driver, for picking a driver by name
DRIVERS_BY_NAME = {
    "cdcacm": CdcAcmSerialDriver,
    "cp21xx": Cp21xxSerialDriver,
    "ftdi": FtdiSerialDriver,
    "prolific": ProlificSerialDriver,
    "ch34x": Ch34xSerialDriver,
    "gsmmodem": GsmModemSerialDriver,
    "chromeccd": ChromeCcdSerialDriver,
}


class ProbeTable:
    """
    Maps (vendor id, product id) pairs to driver classes
    Drivers with a probe(device) function are also asked about devices not in the table
    """

    def __init__(self) -> None:
        self._vid_pid_table: Dict[Tuple[int, int], Type[UsbSerialDriver]] = {}
        self._probe_functions: List[Tuple[Callable[[UsbDevice], bool], Type[UsbSerialDriver]]] = []

    def add_product(self, vendor_id: int, product_id: int,
                    driver_class: Type[UsbSerialDriver]) -> "ProbeTable":
        """ Adds or replaces a (vendor, product) pair, returns self for chaining """
        self._vid_pid_table[(vendor_id, product_id)] = driver_class
        return self

    def add_driver(self, driver_class: Type[UsbSerialDriver]) -> "ProbeTable":
        """ Adds every device a driver class lists, and its probe function if it has one """
        for vendor_id, product_ids in driver_class.get_supported_devices().items():
            for product_id in product_ids:
                self.add_product(vendor_id, product_id, driver_class)
        probe = getattr(driver_class, "probe", None)
        if probe is not None:
            self._probe_functions.append((probe, driver_class))
        return self

    def find_driver(self, vendor_id: int, product_id: int) -> Optional[Type[UsbSerialDriver]]:
        """ Returns the driver class for an id pair, or None """
        return self._vid_pid_table.get((vendor_id, product_id))

    def find_driver_for_device(self, device: UsbDevice) -> Optional[Type[UsbSerialDriver]]:
        """ Returns the driver class for a device, trying probe functions when the ids are unknown """
        driver_class = self.find_driver(device.vendor_id, device.product_id)
        if driver_class is not None:
            return driver_class
        for probe, driver_class in self._probe_functions:
            if probe(device):
                return driver_class
        return None


def get_default_probe_table() -> ProbeTable:
    table = ProbeTable()
    for driver_class in DEFAULT_DRIVERS:
        table.add_driver(driver_class)
    return table


class UsbSerialProber:
    """
    Builds drivers for attached devices, without opening them
    """

    def __init__(self, probe_table: ProbeTable) -> None:
        self._probe_table = probe_table

    @property
    def probe_table(self) -> ProbeTable:
        return self._probe_table

    def probe_device(self, device: UsbDevice) -> Optional[UsbSerialDriver]:
        """ Returns a new driver for the device, or None if no driver matches """
        driver_class = self._probe_table.find_driver_for_device(device)
        if driver_class is None:
            return None
        return driver_class(device)

    def iter_devices(self, context: usb1.USBContext) -> Iterator[Tuple[usb1.USBDevice, UsbSerialDriver]]:
        """ Yields (usb1 device, driver) for every attached device a driver matches """
        for usb_device in context.getDeviceList(skip_on_error=True):
            try:
                device = UsbDevice.from_usb1(usb_device)
            except usb1.USBError as exc:
                logger.debug("skipping %04x:%04x: %s", usb_device.getVendorID(), usb_device.getProductID(), exc)
                continue
            driver = self.probe_device(device)
            if driver is not None:
                yield usb_device, driver

    def find_all_drivers(self, context: usb1.USBContext) -> List[UsbSerialDriver]:
        """ Returns drivers for all attached devices, possibly an empty list """
        return [driver for _, driver in self.iter_devices(context)]


def get_default_prober() -> UsbSerialProber:
    return UsbSerialProber(get_default_probe_table())
