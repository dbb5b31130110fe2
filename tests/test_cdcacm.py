import struct

import pytest

from usbhostserial.device.usb import (USB_CLASS_CDC_DATA, USB_CLASS_COMM, USB_ENDPOINT_XFER_BULK,
                                      UsbEndpoint, UsbInterface)
from usbhostserial.driver import usbid
from usbhostserial.driver.cdcacm import CdcAcmSerialDriver, count_ports
from usbhostserial.driver.prober import get_default_probe_table
from usbhostserial.errors import IoTransferError

from fakes import FakeConnection, hex_bytes, interrupt_endpoint, make_device

ACM_OUT = 0x21


def control_interface(interface_id, int_address, subclass=2):
    return UsbInterface(interface_id, 0, USB_CLASS_COMM, subclass, 1, (interrupt_endpoint(int_address),))


def data_interface(interface_id, out_address, in_address, alternate_setting=0):
    endpoints = ()
    if out_address is not None:
        endpoints = (UsbEndpoint(out_address, USB_ENDPOINT_XFER_BULK, 64),
                     UsbEndpoint(in_address, USB_ENDPOINT_XFER_BULK, 64))
    return UsbInterface(interface_id, alternate_setting, USB_CLASS_CDC_DATA, 0, 0, endpoints)


# digispark, no IAD
DIGISPARK_DESCRIPTORS = hex_bytes("""
    12 01 10 01 02 00 00 08 D0 16 7E 08 00 01 01 02 00 01
    09 02 43 00 02 01 00 80 32
    09 04 00 00 01 02 02 01 00
    05 24 00 10 01
    04 24 02 02
    05 24 06 00 01
    05 24 01 03 01
    07 05 83 03 08 00 FF
    09 04 01 00 02 0A 00 00 00
    07 05 01 02 08 00 00
    07 05 81 02 08 00 00
""")

# TinyUSB with two ACM functions
DUAL_PORT_DESCRIPTORS = hex_bytes("""
    12 01 00 02 EF 02 01 40 FE CA 02 40 00 01 01 02 03 01
    09 02 8D 00 04 01 00 80 32
    08 0B 00 02 02 02 00 00
    09 04 00 00 01 02 02 00 04
    05 24 00 20 01
    05 24 01 00 01
    04 24 02 02
    05 24 06 00 01
    07 05 81 03 08 00 10
    09 04 01 00 02 0A 00 00 00
    07 05 02 02 40 00 00
    07 05 82 02 40 00 00
    08 0B 02 02 02 02 00 00
    09 04 02 00 01 02 02 00 04
    05 24 00 20 01
    05 24 01 00 03
    04 24 02 02
    05 24 06 02 03
    07 05 83 03 08 00 10
    09 04 03 00 02 0A 00 00 00
    07 05 04 02 40 00 00
    07 05 84 02 40 00 00
""")

# micro:bit, mass storage + serial + HID
COMPOSITE_DESCRIPTORS = hex_bytes("""
    12 01 10 02 EF 02 01 40 28 0D 04 02 00 10 01 02 03 01
    09 02 8B 00 05 01 00 80 FA
    09 04 00 00 02 08 06 50 08
    07 05 82 02 40 00 00
    07 05 02 02 40 00 00
    08 0B 01 02 02 02 01 04
    09 04 01 00 01 02 02 01 04
    05 24 00 10 01
    05 24 01 03 02
    04 24 02 06
    05 24 06 01 02
    07 05 83 03 10 00 20
    09 04 02 00 02 0A 00 00 05
    07 05 04 02 40 00 00
    07 05 84 02 40 00 00
    09 04 03 00 02 03 00 00 06
    09 21 00 01 00 01 22 21 00
    07 05 81 03 40 00 01
    07 05 01 03 40 00 01
    09 04 04 00 00 FF 03 00 07
""")

# RNDIS + serial
RNDIS_DESCRIPTORS = hex_bytes("""
    12 01 00 02 EF 02 01 40 FE CA 02 40 00 01 01 02 03 01
    09 02 8D 00 04 01 00 80 32
    08 0B 00 02 E0 01 03 00
    09 04 00 00 01 E0 01 03 04
    05 24 00 10 01
    05 24 01 00 01
    04 24 02 00
    05 24 06 00 01
    07 05 81 03 08 00 01
    09 04 01 00 02 0A 00 00 00
    07 05 82 02 40 00 00
    07 05 02 02 40 00 00
    08 0B 02 02 02 02 00 00
    09 04 02 00 01 02 02 00 04
    05 24 00 20 01
    05 24 01 00 03
    04 24 02 02
    05 24 06 02 03
    07 05 83 03 08 00 10
    09 04 03 00 02 0A 00 00 00
    07 05 04 02 40 00 00
    07 05 84 02 40 00 00
""")

# CDC ethernet with an alternate setting + serial
ALTERNATE_SETTING_DESCRIPTORS = hex_bytes("""
    12 01 00 02 EF 02 01 40 FE CA 02 40 00 01 01 02 03 01
    09 02 9A 00 04 01 00 80 32
    08 0B 00 02 02 06 00 00
    09 04 00 00 01 02 06 00 04
    05 24 00 20 01
    05 24 06 00 01
    0D 24 0F 04 00 00 00 00 DC 05 00 00 00
    07 05 81 03 08 00 01
    09 04 01 00 00 0A 00 00 00
    09 04 01 01 02 0A 00 00 00
    07 05 82 02 40 00 00
    07 05 02 02 40 00 00
    08 0B 02 02 02 02 00 00
    09 04 02 00 01 02 02 00 04
    05 24 00 20 01
    05 24 01 00 03
    04 24 02 02
    05 24 06 02 03
    07 05 83 03 08 00 10
    09 04 03 00 02 0A 00 00 00
    07 05 04 02 40 00 00
    07 05 84 02 40 00 00
""")


def digispark():
    return make_device(0x16D0, 0x087E, [control_interface(0, 0x83), data_interface(1, 0x01, 0x81)])


def dual_port():
    return make_device(0xCAFE, 0x4002, [
        control_interface(0, 0x81), data_interface(1, 0x02, 0x82),
        control_interface(2, 0x83), data_interface(3, 0x04, 0x84),
    ])


def alternate_setting():
    return make_device(0xCAFE, 0x4002, [
        control_interface(0, 0x81, subclass=6),
        data_interface(1, None, None),
        data_interface(1, 0x02, 0x82, alternate_setting=1),
        control_interface(2, 0x83),
        data_interface(3, 0x04, 0x84),
    ])


def open_port(device, descriptors, port_number=0):
    port = CdcAcmSerialDriver(device).ports[port_number]
    connection = FakeConnection(descriptors)
    port.open(connection)
    return port, connection


def test_standard_device():
    port, connection = open_port(digispark(), DIGISPARK_DESCRIPTORS)
    assert port.control_endpoint.address == 0x83
    assert port.read_endpoint.address == 0x81
    assert port.write_endpoint.address == 0x01
    assert connection.claimed == [0, 1]
    assert get_default_probe_table().find_driver_for_device(digispark()) is CdcAcmSerialDriver


def test_standard_device_without_descriptors():
    port, _ = open_port(digispark(), None)
    assert port.read_endpoint.address == 0x81


def test_single_interface_device():
    interface = UsbInterface(0, 0, 0xFF, 0, 0, (
        interrupt_endpoint(0x83),
        UsbEndpoint(0x81, USB_ENDPOINT_XFER_BULK, 64),
        UsbEndpoint(0x02, USB_ENDPOINT_XFER_BULK, 64),
    ))
    device = make_device(0x1234, 0x5678, [interface])
    driver = CdcAcmSerialDriver(device)
    assert [port.port_number for port in driver.ports] == [-1]

    port, connection = open_port(device, None, 0)
    assert port.control_endpoint.address == 0x83
    assert port.read_endpoint.address == 0x81
    assert port.write_endpoint.address == 0x02
    assert connection.claimed == [0]
    assert not CdcAcmSerialDriver.probe(device)
    assert get_default_probe_table().find_driver_for_device(device) is None


def test_invalid_single_interface_device():
    interface = UsbInterface(0, 0, 0xFF, 0, 0, (
        UsbEndpoint(0x81, USB_ENDPOINT_XFER_BULK, 64),
        UsbEndpoint(0x02, USB_ENDPOINT_XFER_BULK, 64),
    ))
    device = make_device(0x1234, 0x5678, [interface])
    port = CdcAcmSerialDriver(device).ports[0]
    connection = FakeConnection()
    with pytest.raises(IoTransferError, match="No control endpoint"):
        port.open(connection)
    assert connection.released == [0]


def test_invalid_control_endpoint():
    control = UsbInterface(0, 0, USB_CLASS_COMM, 2, 1, (UsbEndpoint(0x03, USB_ENDPOINT_XFER_BULK, 8),))
    device = make_device(0x1234, 0x5678, [control, data_interface(1, 0x01, 0x81)])
    port = CdcAcmSerialDriver(device).ports[0]
    with pytest.raises(IoTransferError, match="Invalid control endpoint"):
        port.open(FakeConnection())


@pytest.mark.parametrize("descriptors", [DUAL_PORT_DESCRIPTORS, None, hex_bytes("01 02 02 82 02")])
def test_multi_port_device(descriptors):
    device = dual_port()
    assert count_ports(device) == 2
    port, connection = open_port(device, descriptors, 1)
    assert port.control_endpoint.address == 0x83
    assert port.read_endpoint.address == 0x84
    assert port.write_endpoint.address == 0x04
    assert connection.claimed == [2, 3]

    port.set_parameters(9600)
    assert connection.controls[-1].index == 2


def test_composite_device():
    device = make_device(usbid.VENDOR_ARM, usbid.ARM_MBED, [
        UsbInterface(0, 0, 0x08, 0x06, 0x50, (UsbEndpoint(0x82), UsbEndpoint(0x02))),
        control_interface(1, 0x83),
        data_interface(2, 0x04, 0x84),
        UsbInterface(3, 0, 0x03, 0, 0, (interrupt_endpoint(0x81), interrupt_endpoint(0x01))),
        UsbInterface(4, 0, 0xFF, 0x03, 0),
    ])
    port, connection = open_port(device, COMPOSITE_DESCRIPTORS)
    assert port.read_endpoint.address == 0x84
    assert port.write_endpoint.address == 0x04
    assert connection.claimed == [1, 2]
    assert get_default_probe_table().find_driver_for_device(device) is CdcAcmSerialDriver


def test_composite_rndis_device():
    device = make_device(0xCAFE, 0x4002, [
        UsbInterface(0, 0, 0xE0, 0x01, 0x03, (interrupt_endpoint(0x81),)),
        data_interface(1, 0x02, 0x82),
        control_interface(2, 0x83),
        data_interface(3, 0x04, 0x84),
    ])
    assert count_ports(device) == 1
    port, connection = open_port(device, RNDIS_DESCRIPTORS)
    assert port.read_endpoint.address == 0x84
    assert port.write_endpoint.address == 0x04
    assert connection.claimed == [2, 3]


def test_composite_alternate_setting_device():
    port, connection = open_port(alternate_setting(), ALTERNATE_SETTING_DESCRIPTORS)
    assert port.read_endpoint.address == 0x84
    assert port.write_endpoint.address == 0x04
    assert connection.claimed == [2, 3]


def test_composite_alternate_setting_device_needs_association():
    # counting interfaces picks the endpoint-less ethernet data interface
    port = CdcAcmSerialDriver(alternate_setting()).ports[0]
    with pytest.raises(IoTransferError, match="read & write endpoints"):
        port.open(FakeConnection(None))


def test_line_coding_and_control_lines():
    port, connection = open_port(digispark(), DIGISPARK_DESCRIPTORS)
    port.set_parameters(115200, 7, 1.5, 2)
    line = connection.controls[-1]
    assert (line.request_type, line.request, line.value, line.index) == (ACM_OUT, 0x20, 0, 0)
    assert line.data == struct.pack("<IBBB", 115200, 1, 2, 7)

    port.set_dtr(True)
    port.set_rts(True)
    port.set_dtr(False)
    assert connection.requests(ACM_OUT)[-3:] == [(0x22, 0x01, 0), (0x22, 0x03, 0), (0x22, 0x02, 0)]
    assert port.get_rts()
    assert not port.get_dtr()
    assert not port.get_cts()

    port.set_break(True)
    port.set_break(False)
    assert connection.requests(ACM_OUT)[-2:] == [(0x23, 0xFFFF, 0), (0x23, 0, 0)]


def test_control_message_failure():
    port, connection = open_port(digispark(), DIGISPARK_DESCRIPTORS)
    connection.responses[(ACM_OUT, 0x20, 0)] = -1
    with pytest.raises(IoTransferError, match="controlTransfer failed"):
        port.set_parameters(9600)
