import pytest

from usbhostserial.driver import usbid
from usbhostserial.driver.chromeccd import ChromeCcdSerialDriver
from usbhostserial.driver.gsmmodem import GsmModemSerialDriver
from usbhostserial.errors import IoTransferError, UnsupportedOperationError

from fakes import FakeConnection, bulk_interface, make_device


def test_gsm_modem_init():
    driver = GsmModemSerialDriver(make_device(usbid.VENDOR_UNISOC, usbid.FIBOCOM_L610, [bulk_interface(0)]))
    assert len(driver.ports) == 1
    port = driver.ports[0]
    connection = FakeConnection()
    port.open(connection)
    assert connection.requests() == [(0x22, 0x01, 0)]
    assert connection.controls[0].request_type == 0x21
    with pytest.raises(UnsupportedOperationError):
        port.set_parameters(9600)
    assert port.get_control_lines() == set()


def test_gsm_modem_init_failure():
    driver = GsmModemSerialDriver(make_device(usbid.VENDOR_UNISOC, usbid.FIBOCOM_L610, [bulk_interface(0)]))
    connection = FakeConnection()
    connection.responses[(0x21, 0x22, 0x01)] = -1
    with pytest.raises(IoTransferError, match="init failed"):
        driver.ports[0].open(connection)
    assert connection.released == [0]


def test_chrome_ccd_ports():
    device = make_device(usbid.VENDOR_GOOGLE, usbid.GOOGLE_CR50,
                         [bulk_interface(i, 0x81 + i, 0x01 + i) for i in range(3)])
    driver = ChromeCcdSerialDriver(device)
    assert [port.port_number for port in driver.ports] == [0, 1, 2]

    port = driver.ports[2]
    connection = FakeConnection()
    port.open(connection)
    assert connection.claimed == [2]
    assert port.read_endpoint.address == 0x83
    assert port.write_endpoint.address == 0x03
    assert connection.controls == []


def test_chrome_ccd_unknown_port():
    device = make_device(usbid.VENDOR_GOOGLE, usbid.GOOGLE_CR50, [bulk_interface(0)])
    port = ChromeCcdSerialDriver(device).ports[1]
    connection = FakeConnection()
    with pytest.raises(IoTransferError, match="Unknown port number"):
        port.open(connection)
    assert not port.is_open
    assert connection.closed
