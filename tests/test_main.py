import pytest
import usb1

from usbhostserial.__main__ import build_parser, find_device, main
from usbhostserial.driver import usbid
from usbhostserial.driver.ch34x import Ch34xSerialDriver
from usbhostserial.driver.ftdi import FtdiSerialDriver

from fakes import FakeUsb1Context, usb1_device

REQUIRED = ["-p", "/tmp/ttyUSBHOST0", "-vid", "0x0403", "-pid", "0x6001"]


@pytest.fixture
def context(monkeypatch):
    context = FakeUsb1Context([usb1_device(usbid.VENDOR_FTDI, usbid.FTDI_FT232R)])
    monkeypatch.setattr(usb1, "USBContext", lambda: context)
    return context


def test_parser_defaults():
    args = build_parser().parse_args(REQUIRED)
    assert args.path == "/tmp/ttyUSBHOST0"
    assert (args.vendor_id, args.product_id) == (0x0403, 0x6001)
    assert args.baud_rate == 9600
    assert args.data_bits == 8
    assert args.stop_bits == 1
    assert args.parity == "none"
    assert args.driver is None
    assert args.port == 0


def test_parser_line_options():
    args = build_parser().parse_args(
        REQUIRED + ["-b", "115200", "--data-bits", "7", "--stop-bits", "1.5", "--parity", "even", "-d", "ftdi"])
    assert args.baud_rate == 115200
    assert args.data_bits == 7
    assert args.stop_bits == 1.5
    assert args.parity == "even"
    assert args.driver == "ftdi"


@pytest.mark.parametrize("extra", [["-d", "nope"], ["--parity", "odd-ish"], ["--stop-bits", "3"]])
def test_parser_rejects(extra):
    with pytest.raises(SystemExit):
        build_parser().parse_args(REQUIRED + extra)


def test_find_device_probes_driver(context):
    usb_device, driver = find_device(context, usbid.VENDOR_FTDI, usbid.FTDI_FT232R)
    assert usb_device is context.getDeviceList()[0]
    assert isinstance(driver, FtdiSerialDriver)


def test_find_device_with_named_driver(context):
    _, driver = find_device(context, usbid.VENDOR_FTDI, usbid.FTDI_FT232R, "ch34x")
    assert isinstance(driver, Ch34xSerialDriver)


def test_find_device_missing(context):
    assert find_device(context, 0x1234, 0x5678) == (None, None)


def test_find_device_without_driver():
    context = FakeUsb1Context([usb1_device(0x1234, 0x5678)])
    assert find_device(context, 0x1234, 0x5678) == (None, None)


def test_main_device_not_found(context):
    assert main(["-p", "/tmp/ttyUSBHOST0", "-vid", "0x1234", "-pid", "0x5678"]) == 1


def test_main_unknown_port(context):
    assert main(REQUIRED + ["--port", "3"]) == 1


def test_main_open_failure(context):
    assert main(REQUIRED) == 1
