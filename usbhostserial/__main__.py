#!/usr/bin/env python
"""
usbhostserial
Create a virtual serial port / pty from a USB serial device directly
"""
import argparse
import logging
import sys

import usb1

from . import __version__
from .device.common import Parity
from .device.transport import UsbDeviceConnection
from .device.usb import UsbDevice
from .driver.prober import DRIVERS_BY_NAME, get_default_prober
from .errors import UsbSerialError
from .util.ptybridge import PtyBridge

logger = logging.getLogger("usbhostserial")

PARITY_NAMES = {
    "none": Parity.PARITY_NONE,
    "odd": Parity.PARITY_ODD,
    "even": Parity.PARITY_EVEN,
    "mark": Parity.PARITY_MARK,
    "space": Parity.PARITY_SPACE,
}


def hexfstr(x):
    return int(x, 0)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="usbhostserial",
        description="create virtual serial port / pty from USB device directly")
    parser.add_argument("-p", "--path",
                        dest="path", required=True, help="Path to new virtual serial port")
    parser.add_argument("-d", "--driver",
                        dest="driver", default=None, choices=sorted(DRIVERS_BY_NAME),
                        help="Driver to use, probed from the device ids if not given")
    parser.add_argument("-vid", "--vendor-id",
                        dest="vendor_id", required=True, help="USB device vendor", type=hexfstr)
    parser.add_argument("-pid", "--product-id",
                        dest="product_id", required=True, help="USB device product", type=hexfstr)
    parser.add_argument("-b", "--baud", "--baudrate",
                        dest="baud_rate", default=9600, help="Device baudrate", type=int)
    parser.add_argument("--data-bits",
                        dest="data_bits", default=8, choices=(5, 6, 7, 8), type=int)
    parser.add_argument("--stop-bits",
                        dest="stop_bits", default=1, choices=(1, 1.5, 2), type=float)
    parser.add_argument("--parity",
                        dest="parity", default="none", choices=sorted(PARITY_NAMES))
    parser.add_argument("--port",
                        dest="port", default=0, type=int, help="Port number on multi port devices")
    parser.add_argument("-v", "--verbose",
                        dest="verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def find_device(context: usb1.USBContext, vendor_id: int, product_id: int, driver_name: str = None):
    """
    Returns (usb1 device, driver) for the first attached device with the given ids
    or (None, None) if there is none / no driver for it
    """
    for usb_device in context.getDeviceList(skip_on_error=True):
        if usb_device.getVendorID() != vendor_id or usb_device.getProductID() != product_id:
            continue
        device = UsbDevice.from_usb1(usb_device)
        if driver_name is not None:
            return usb_device, DRIVERS_BY_NAME[driver_name](device)
        driver = get_default_prober().probe_device(device)
        if driver is None:
            logger.error("No driver for %04x:%04x, pass one with --driver", vendor_id, product_id)
            return None, None
        return usb_device, driver
    logger.error("USB device %04x:%04x not found", vendor_id, product_id)
    return None, None


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    stop_bits = 1.5 if args.stop_bits == 1.5 else int(args.stop_bits)
    with usb1.USBContext() as context:
        usb_device, driver = find_device(context, args.vendor_id, args.product_id, args.driver)
        if driver is None:
            return 1
        ports = driver.ports
        if not 0 <= args.port < len(ports):
            logger.error("Device has %d port(s), no port %d", len(ports), args.port)
            return 1
        port = ports[args.port]
        logger.info("Using %s port %d", type(driver).__name__, args.port)

        try:
            port.open(UsbDeviceConnection.open(context, usb_device))
            port.set_parameters(args.baud_rate, args.data_bits, stop_bits, PARITY_NAMES[args.parity])
        except (UsbSerialError, usb1.USBError) as exc:
            logger.error("Could not open %r: %s", port, exc)
            if port.is_open:
                port.close()
            return 1

        bridge = PtyBridge(port, args.path)
        bridge.start()
        try:
            bridge.wait()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Interrupted")
        finally:
            bridge.stop()
    return 0 if bridge.error is None else 1


if __name__ == "__main__":
    sys.exit(main())
