"""
Chrome OS Closed Case Debugging driver for usbhostserial,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
Parts rewritten in Python for usbhostserial!
"""
import logging
from typing import Dict, Tuple

from ..device.usb import USB_DIR_IN, USB_DIR_OUT
from ..errors import IoTransferError
from .handler import CommonUsbSerialPort, UsbSerialDriver
from . import usbid

logger = logging.getLogger(__name__)

# cr50 console, AP console, EC console
CCD_PORT_COUNT = 3


class ChromeCcdSerialDriver(UsbSerialDriver):
    """
    Driver for the Cr50 debug consoles, one bulk interface per console
    """

    def __init__(self, device) -> None:
        super().__init__(device)
        self._ports = [ChromeCcdSerialPort(self, device, port) for port in range(CCD_PORT_COUNT)]

    @classmethod
    def get_supported_devices(cls) -> Dict[int, Tuple[int, ...]]:
        return {
            usbid.VENDOR_GOOGLE: (
                usbid.GOOGLE_CR50,
            )
        }


class ChromeCcdSerialPort(CommonUsbSerialPort):

    def _open_int(self) -> None:
        logger.debug("%r: claiming interfaces, count=%d", self, self._device.interface_count)
        if self._port_number >= self._device.interface_count:
            raise IoTransferError("Unknown port number")
        data_interface = self._device.get_interface(self._port_number)
        if not self._claim_interface(data_interface):
            raise IoTransferError("Could not claim shared control/data interface")
        logger.debug("%r: endpoint count=%d", self, data_interface.endpoint_count)
        self._read_endpoint = data_interface.find_endpoint(USB_DIR_IN)
        self._write_endpoint = data_interface.find_endpoint(USB_DIR_OUT)
