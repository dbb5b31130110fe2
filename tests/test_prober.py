from usbhostserial.driver import usbid
from usbhostserial.driver.cdcacm import CdcAcmSerialDriver
from usbhostserial.driver.ch34x import Ch34xSerialDriver
from usbhostserial.driver.cp21xx import Cp21xxSerialDriver
from usbhostserial.driver.ftdi import FtdiSerialDriver
from usbhostserial.driver.gsmmodem import GsmModemSerialDriver
from usbhostserial.driver.prober import (DEFAULT_DRIVERS, DRIVERS_BY_NAME, ProbeTable,
                                         UsbSerialProber, get_default_probe_table,
                                         get_default_prober)
from usbhostserial.driver.prolific import ProlificSerialDriver

from fakes import FakeUsb1Context, FakeUsb1Device, bulk_interface, make_device, usb1_device


def test_default_table_lookup():
    table = get_default_probe_table()
    assert table.find_driver(usbid.VENDOR_FTDI, usbid.FTDI_FT232R) is FtdiSerialDriver
    assert table.find_driver(usbid.VENDOR_SILABS, usbid.SILABS_CP2102) is Cp21xxSerialDriver
    assert table.find_driver(usbid.VENDOR_PROLIFIC, usbid.PROLIFIC_PL2303) is ProlificSerialDriver
    assert table.find_driver(usbid.VENDOR_QINHENG, usbid.QINHENG_CH340) is Ch34xSerialDriver
    assert table.find_driver(usbid.VENDOR_QINHENG, usbid.QINHENG_CH9102F) is CdcAcmSerialDriver
    assert table.find_driver(usbid.VENDOR_UNISOC, usbid.FIBOCOM_L610) is GsmModemSerialDriver
    assert table.find_driver(0x1234, 0x5678) is None


def test_add_product_replaces_entry():
    table = ProbeTable().add_driver(FtdiSerialDriver)
    assert table.add_product(usbid.VENDOR_FTDI, usbid.FTDI_FT232R, Ch34xSerialDriver) is table
    assert table.find_driver(usbid.VENDOR_FTDI, usbid.FTDI_FT232R) is Ch34xSerialDriver
    assert table.find_driver(usbid.VENDOR_FTDI, usbid.FTDI_FT232H) is FtdiSerialDriver


def test_probe_device():
    prober = UsbSerialProber(ProbeTable().add_product(0x1234, 0x0001, FtdiSerialDriver))
    device = make_device(0x1234, 0x0001, [bulk_interface(0), bulk_interface(1, 0x83, 0x04)])
    driver = prober.probe_device(device)
    assert isinstance(driver, FtdiSerialDriver)
    assert driver.device is device
    assert len(driver.ports) == 2
    assert prober.probe_device(make_device(0x1234, 0x0002, [bulk_interface(0)])) is None


def test_probe_function_only_when_ids_unknown():
    prober = get_default_prober()
    # vendor specific interfaces only
    assert prober.probe_device(make_device(0x1234, 0x5678, [bulk_interface(0)])) is None


def test_find_all_drivers():
    context = FakeUsb1Context([
        FakeUsb1Device(0x1234, 0x5678),
        usb1_device(usbid.VENDOR_FTDI, usbid.FTDI_FT232R),
        FakeUsb1Device(usbid.VENDOR_SILABS, usbid.SILABS_CP2102, broken=True),
    ])
    drivers = get_default_prober().find_all_drivers(context)
    assert len(drivers) == 1
    assert isinstance(drivers[0], FtdiSerialDriver)
    assert drivers[0].device.name == "001/007"
    assert drivers[0].device.get_interface(0).get_endpoint(0).address == 0x81


def test_iter_devices_yields_usb1_device():
    usb_device = usb1_device(usbid.VENDOR_FTDI, usbid.FTDI_FT232R)
    found = list(get_default_prober().iter_devices(FakeUsb1Context([usb_device])))
    assert [device for device, _ in found] == [usb_device]


def test_drivers_by_name():
    assert DRIVERS_BY_NAME["ftdi"] is FtdiSerialDriver
    assert set(DRIVERS_BY_NAME.values()) == set(DEFAULT_DRIVERS)
