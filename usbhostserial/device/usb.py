"""
USB descriptor model used by the drivers

Drivers look at a device before anything is opened (to enumerate ports),
so the parts of the descriptors they need are copied out of usb1 into
these small immutable records. Tests build them directly.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple

import usb1

USB_DIR_OUT = 0x00
USB_DIR_IN = 0x80
USB_ENDPOINT_DIR_MASK = 0x80
USB_ENDPOINT_NUMBER_MASK = 0x0F
USB_ENDPOINT_XFERTYPE_MASK = 0x03

USB_ENDPOINT_XFER_CONTROL = 0
USB_ENDPOINT_XFER_ISOC = 1
USB_ENDPOINT_XFER_BULK = 2
USB_ENDPOINT_XFER_INT = 3

USB_CLASS_PER_INTERFACE = 0x00
USB_CLASS_COMM = 0x02
USB_CLASS_CDC_DATA = 0x0A
USB_CLASS_MISC = 0xEF
USB_CLASS_VENDOR_SPEC = 0xFF

USB_DT_DEVICE = 0x01
USB_DT_CONFIG = 0x02
USB_DT_INTERFACE_ASSOCIATION = 0x0B


@dataclass(frozen=True)
class UsbEndpoint:
    address: int
    attributes: int = USB_ENDPOINT_XFER_BULK
    max_packet_size: int = 64
    interval: int = 0

    @property
    def direction(self) -> int:
        return self.address & USB_ENDPOINT_DIR_MASK

    @property
    def number(self) -> int:
        return self.address & USB_ENDPOINT_NUMBER_MASK

    @property
    def type(self) -> int:
        return self.attributes & USB_ENDPOINT_XFERTYPE_MASK


@dataclass(frozen=True)
class UsbInterface:
    """ One interface / alternate setting pair """
    id: int
    alternate_setting: int = 0
    interface_class: int = USB_CLASS_VENDOR_SPEC
    interface_subclass: int = 0
    interface_protocol: int = 0
    endpoints: Tuple[UsbEndpoint, ...] = ()

    @property
    def endpoint_count(self) -> int:
        return len(self.endpoints)

    def get_endpoint(self, index: int) -> UsbEndpoint:
        return self.endpoints[index]

    def find_endpoint(self, direction: int, ep_type: int = USB_ENDPOINT_XFER_BULK) -> Optional[UsbEndpoint]:
        """ Returns the first endpoint matching direction and type or None """
        for endpoint in self.endpoints:
            if endpoint.direction == direction and endpoint.type == ep_type:
                return endpoint
        return None


@dataclass(frozen=True)
class UsbDevice:
    """
    The parts of a USB device descriptor the drivers care about
    Each alternate setting of the first configuration is its own entry in interfaces
    """
    vendor_id: int
    product_id: int
    interfaces: Tuple[UsbInterface, ...] = ()
    device_class: int = USB_CLASS_PER_INTERFACE
    device_subclass: int = 0
    device_protocol: int = 0
    max_packet_size0: int = 64
    bcd_usb: int = 0x0200
    bcd_device: int = 0
    name: str = ""

    @property
    def interface_count(self) -> int:
        return len(self.interfaces)

    def get_interface(self, index: int) -> UsbInterface:
        return self.interfaces[index]

    @classmethod
    def from_usb1(cls, device: usb1.USBDevice) -> "UsbDevice":
        """ Copy the descriptor tree of a usb1 device """
        interfaces = []
        for configuration in device.iterConfigurations():
            for interface in configuration:
                for setting in interface:
                    endpoints = tuple(
                        UsbEndpoint(endpoint.getAddress(), endpoint.getAttributes(),
                                    endpoint.getMaxPacketSize(), endpoint.getInterval())
                        for endpoint in setting)
                    interfaces.append(UsbInterface(
                        setting.getNumber(), setting.getAlternateSetting(),
                        setting.getClass(), setting.getSubClass(), setting.getProtocol(),
                        endpoints))
            # only the first configuration is used
            break
        return cls(
            vendor_id=device.getVendorID(),
            product_id=device.getProductID(),
            interfaces=tuple(interfaces),
            device_class=device.getDeviceClass(),
            device_subclass=device.getDeviceSubClass(),
            device_protocol=device.getDeviceProtocol(),
            max_packet_size0=device.getMaxPacketSize0(),
            bcd_usb=device.getbcdUSB(),
            bcd_device=device.getbcdDevice(),
            name=f"{device.getBusNumber():03d}/{device.getDeviceAddress():03d}")


def split_descriptors(raw: bytes) -> List[bytes]:
    """
    Split a raw descriptor blob into single descriptors using their length byte
    Stops at a zero length byte, a truncated last descriptor is kept as is
    """
    descriptors = []
    if raw is None:
        return descriptors
    pos = 0
    while pos < len(raw):
        length = raw[pos]
        if length == 0:
            break
        length = min(length, len(raw) - pos)
        descriptors.append(bytes(raw[pos:pos + length]))
        pos += length
    return descriptors
