import struct
import time

import pytest

from usbhostserial.device.common import ControlLine
from usbhostserial.driver import usbid
from usbhostserial.driver.prolific import DeviceType, ProlificSerialDriver, prolific_baud_rate
from usbhostserial.errors import IoTransferError, UnsupportedOperationError

from fakes import FakeConnection, bulk_interface, hex_bytes, interrupt_endpoint, make_device

VENDOR_OUT = 0x40
VENDOR_IN = 0xC0
CTRL_OUT = 0x21

HX_DESCRIPTORS = hex_bytes("12 01 10 01 00 00 00 40 7B 06 03 23 00 03 01 02 00 01")
TYPE_01_DESCRIPTORS = hex_bytes("12 01 10 01 00 00 00 08 7B 06 03 23 00 02 01 02 00 01")
TA_DESCRIPTORS = hex_bytes("12 01 00 02 00 00 00 40 7B 06 03 23 00 03 01 02 00 01")
HXN_DESCRIPTORS = hex_bytes("12 01 00 02 00 00 00 40 7B 06 A3 23 00 04 01 02 00 01")

HX_BLACK_MAGIC = [
    (VENDOR_IN, 1, 0x8484, 0),
    (VENDOR_OUT, 1, 0x0404, 0),
    (VENDOR_IN, 1, 0x8484, 0),
    (VENDOR_IN, 1, 0x8383, 0),
    (VENDOR_IN, 1, 0x8484, 0),
    (VENDOR_OUT, 1, 0x0404, 1),
    (VENDOR_IN, 1, 0x8484, 0),
    (VENDOR_IN, 1, 0x8383, 0),
    (VENDOR_OUT, 1, 0, 1),
    (VENDOR_OUT, 1, 1, 0),
    (VENDOR_OUT, 1, 2, 0x44),
]


def make_driver(**kwargs):
    interface = bulk_interface(0, 0x83, 0x02, extra_endpoints=(interrupt_endpoint(0x81),))
    return ProlificSerialDriver(make_device(usbid.VENDOR_PROLIFIC, usbid.PROLIFIC_PL2303, [interface], **kwargs))


def open_port(descriptors=HX_DESCRIPTORS, connection=None, **kwargs):
    port = make_driver(**kwargs).ports[0]
    if connection is None:
        connection = FakeConnection(descriptors)
    port.open(connection)
    return port, connection


def transfers(connection):
    return [(c.request_type, c.request, c.value, c.index) for c in connection.controls]


def wait_for(predicate, timeout=2.0):
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_open_hx():
    port, connection = open_port()
    assert port.device_type == DeviceType.DEVICE_TYPE_HX
    assert port.read_endpoint.address == 0x83
    assert port.write_endpoint.address == 0x02
    assert transfers(connection) == [
        (VENDOR_OUT, 1, 0x08, 0),
        (VENDOR_OUT, 1, 0x09, 0),
        *HX_BLACK_MAGIC,
        (CTRL_OUT, 0x22, 0, 0),
    ]


def test_open_type_01():
    port, connection = open_port(TYPE_01_DESCRIPTORS)
    assert port.device_type == DeviceType.DEVICE_TYPE_01
    assert transfers(connection)[-2] == (VENDOR_OUT, 1, 2, 0x24)


def test_open_type_01_by_device_class():
    port, _ = open_port(HX_DESCRIPTORS, device_class=0x02)
    assert port.device_type == DeviceType.DEVICE_TYPE_01


def test_open_type_t():
    port, connection = open_port(TA_DESCRIPTORS)
    assert port.device_type == DeviceType.DEVICE_TYPE_T
    assert transfers(connection)[0] == (VENDOR_IN, 1, 0x8080, 0)


def test_open_hxn_when_hx_status_fails():
    connection = FakeConnection(TA_DESCRIPTORS)
    connection.responses[(VENDOR_IN, 1, 0x8080)] = -1
    port, _ = open_port(connection=connection)
    assert port.device_type == DeviceType.DEVICE_TYPE_HXN


def test_open_hxn():
    port, connection = open_port(HXN_DESCRIPTORS)
    assert port.device_type == DeviceType.DEVICE_TYPE_HXN
    # no black magic, pipes reset through the HXN request
    assert transfers(connection) == [(VENDOR_OUT, 0x80, 0x07, 3), (CTRL_OUT, 0x22, 0, 0)]


def test_open_fails_on_vendor_request():
    connection = FakeConnection(HX_DESCRIPTORS)
    connection.responses[(VENDOR_IN, 1, 0x8383)] = -1
    with pytest.raises(IoTransferError, match="0x8383"):
        open_port(connection=connection)
    assert connection.released == [0]


@pytest.mark.parametrize("device_type", list(DeviceType))
def test_standard_baud_rates_pass_through(device_type):
    assert prolific_baud_rate(9600, device_type) == 9600
    assert prolific_baud_rate(6000000, device_type) == 6000000


def test_hxn_baud_rate_passes_through():
    assert prolific_baud_rate(250000, DeviceType.DEVICE_TYPE_HXN) == 250000


def test_baud_rate_encoding():
    assert prolific_baud_rate(250000, DeviceType.DEVICE_TYPE_HX) == 0x80000380
    assert prolific_baud_rate(250000, DeviceType.DEVICE_TYPE_T) == 0x80000600


@pytest.mark.parametrize("baud_rate", [40, 40_000_000, 400_000_000])
def test_baud_rate_out_of_range(baud_rate):
    with pytest.raises(UnsupportedOperationError):
        prolific_baud_rate(baud_rate, DeviceType.DEVICE_TYPE_HX)


def test_set_parameters_skips_unchanged_line():
    port, connection = open_port()
    connection.controls.clear()
    port.set_parameters(19200, 7, 1.5, 1)
    line = connection.controls[0]
    assert (line.request_type, line.request) == (CTRL_OUT, 0x20)
    assert line.data == struct.pack("<IBBB", 19200, 1, 1, 7)
    assert len(connection.controls) == 3

    connection.controls.clear()
    port.set_parameters(19200, 7, 1.5, 1)
    assert connection.controls == []


def test_control_lines():
    port, connection = open_port()
    # active low: only CTS asserted
    connection.responses[(VENDOR_IN, 1, 0x87)] = bytes([0xFF & ~0x08])
    port.set_rts(True)
    assert transfers(connection)[-1] == (CTRL_OUT, 0x22, 0x02, 0)
    assert port.get_control_lines() == {ControlLine.RTS, ControlLine.CTS}
    port.close()


def test_status_notification_updates_lines():
    port, connection = open_port()
    connection.responses[(VENDOR_IN, 1, 0x87)] = bytes([0xFF])
    assert not port.get_cts()
    connection.add_read(0x81, bytes([0xA1, 0, 0, 0, 0, 0, 0, 0, 0x80 | 0x01, 0]))
    assert wait_for(port.get_cts)
    assert port.get_cd()
    assert not port.get_dsr()
    port.close()


def test_status_error_is_raised_once():
    port, connection = open_port()
    connection.responses[(VENDOR_IN, 1, 0x87)] = bytes([0xFF])
    connection.add_read(0x81, bytes(3))
    raised = []

    def poll():
        try:
            port.get_cts()
        except IoTransferError as exc:
            raised.append(exc)
        return bool(raised)

    assert wait_for(poll)
    assert "expected 10 bytes, got 3" in str(raised[0])
    assert not port.get_cts()
    port.close()


def test_purge_and_break():
    port, connection = open_port()
    connection.controls.clear()
    assert port.purge_hw_buffers(True, False)
    port.set_break(True)
    assert transfers(connection) == [(VENDOR_OUT, 1, 0x08, 0), (CTRL_OUT, 0x23, 0xFFFF, 0)]


def test_hxn_purge():
    port, connection = open_port(HXN_DESCRIPTORS)
    connection.controls.clear()
    port.purge_hw_buffers(False, True)
    assert transfers(connection) == [(VENDOR_OUT, 0x80, 0x07, 2)]
