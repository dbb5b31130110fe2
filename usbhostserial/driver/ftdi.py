"""
FTDI driver for usbhostserial,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
Parts rewritten in Python for usbhostserial!
"""
import logging
from typing import Dict, Set, Tuple

from ..device.common import ControlLine, DataBits, SerialLineConfig, StopBits
from ..device.usb import USB_DIR_IN, USB_DIR_OUT
from ..errors import InvalidArgumentError, IoTransferError, UnsupportedOperationError
from .handler import CommonUsbSerialPort, UsbSerialDriver, monotonic_ms
from . import usbid

logger = logging.getLogger(__name__)

FTDI_USB_WRITE_TIMEOUT = 5000
FTDI_READ_HEADER_LENGTH = 2  # contains MODEM_STATUS

FTDI_REQTYPE_HOST2DEVICE = 0x40 | USB_DIR_OUT
FTDI_REQTYPE_DEVICE2HOST = 0x40 | USB_DIR_IN

FTDI_RESET_REQUEST = 0
FTDI_MODEM_CONTROL_REQUEST = 1
FTDI_SET_BAUD_RATE_REQUEST = 3
FTDI_SET_DATA_REQUEST = 4
FTDI_GET_MODEM_STATUS_REQUEST = 5
FTDI_SET_LATENCY_TIMER_REQUEST = 9
FTDI_GET_LATENCY_TIMER_REQUEST = 10

FTDI_MODEM_CONTROL_DTR_ENABLE = 0x0101
FTDI_MODEM_CONTROL_DTR_DISABLE = 0x0100
FTDI_MODEM_CONTROL_RTS_ENABLE = 0x0202
FTDI_MODEM_CONTROL_RTS_DISABLE = 0x0200
FTDI_MODEM_STATUS_CTS = 0x10
FTDI_MODEM_STATUS_DSR = 0x20
FTDI_MODEM_STATUS_RI = 0x40
FTDI_MODEM_STATUS_CD = 0x80
FTDI_RESET_ALL = 0
FTDI_RESET_PURGE_RX = 1
FTDI_RESET_PURGE_TX = 2

FTDI_SET_DATA_BREAK = 0x4000

# sub-divisor (eighths) -> (value bits, index bit)
FTDI_SUBDIVISOR_BITS = {
    0: (0x0000, 0),
    1: (0xC000, 0),
    2: (0x8000, 0),
    3: (0x0000, 1),
    4: (0x4000, 0),
    5: (0x4000, 1),
    6: (0x8000, 1),
    7: (0xC000, 1),
}

FTDI_MAX_BAUD_ERROR = 0.031


def ftdi_baud_divisor(baud_rate: int) -> Tuple[int, int, int]:
    """
    Calculate the divisor for a baud rate
    Returns (value, index, actual baud rate), index without the port number
    """
    if baud_rate > 3500000:
        raise UnsupportedOperationError("Baud rate too high")
    if baud_rate >= 2500000:
        divisor, subdivisor, effective = 0, 0, 3000000
    elif baud_rate >= 1750000:
        divisor, subdivisor, effective = 1, 0, 2000000
    else:
        divisor = (24000000 << 1) // baud_rate
        divisor = (divisor + 1) >> 1  # round
        subdivisor = divisor & 0x07
        divisor >>= 3
        if divisor > 0x3fff:  # exceeds bit 13 at 183 baud
            raise UnsupportedOperationError("Baud rate too low")
        effective = (24000000 << 1) // ((divisor << 3) + subdivisor)
        effective = (effective + 1) >> 1

    baud_rate_error = abs(1.0 - (effective / baud_rate))
    if baud_rate_error >= FTDI_MAX_BAUD_ERROR:  # can be larger than 3% only for baud rates > 2M
        raise UnsupportedOperationError(
            f"Baud rate deviation {baud_rate_error * 100:.1f}% is higher than allowed 3%")

    value_bits, index = FTDI_SUBDIVISOR_BITS[subdivisor]
    return divisor | value_bits, index, effective


def ftdi_read_filter(buf: bytearray, total_bytes_read: int, max_packet_size: int) -> int:
    """
    Strip the 2 byte modem status header from every max packet size sub-run
    Returns the payload length, payload is moved to the start of buf
    """
    dest_pos = 0
    for src_pos in range(0, total_bytes_read, max_packet_size):
        length = min(src_pos + max_packet_size, total_bytes_read) - (src_pos + FTDI_READ_HEADER_LENGTH)
        if length < 0:
            raise IoTransferError(f"Expected at least {FTDI_READ_HEADER_LENGTH} bytes")
        start = src_pos + FTDI_READ_HEADER_LENGTH
        buf[dest_pos:dest_pos + length] = buf[start:start + length]
        dest_pos += length
    return dest_pos


class FtdiSerialDriver(UsbSerialDriver):
    """
    Driver for FTDI FT232R, FT2232H, FT4232H, FT232H, FT230X, FT231X, FT234XD
    One port per interface
    """

    def __init__(self, device) -> None:
        super().__init__(device)
        self._ports = [FtdiSerialPort(self, device, port) for port in range(device.interface_count)]

    @classmethod
    def get_supported_devices(cls) -> Dict[int, Tuple[int, ...]]:
        return {
            usbid.VENDOR_FTDI: (
                usbid.FTDI_FT232R,
                usbid.FTDI_FT232H,
                usbid.FTDI_FT2232H,
                usbid.FTDI_FT4232H,
                usbid.FTDI_FT231X,
            )
        }


class FtdiSerialPort(CommonUsbSerialPort):

    def __init__(self, driver, device, port_number) -> None:
        super().__init__(driver, device, port_number)
        self._baud_rate_with_port = False
        self._dtr = False
        self._rts = False
        self._break_config = 0

    def _supports_break(self) -> bool:
        return True

    def _supports_purge(self) -> bool:
        return True

    def __control_out(self, request: int, value: int) -> int:
        return self._connection.control_transfer(
            FTDI_REQTYPE_HOST2DEVICE, request, value, self._port_number + 1,
            None, 0, FTDI_USB_WRITE_TIMEOUT)

    def __control_in(self, request: int, buf: bytearray) -> int:
        return self._connection.control_transfer(
            FTDI_REQTYPE_DEVICE2HOST, request, 0, self._port_number + 1,
            buf, len(buf), FTDI_USB_WRITE_TIMEOUT)

    def _open_int(self) -> None:
        interface = self._device.get_interface(self._port_number)
        if not self._claim_interface(interface):
            raise IoTransferError(f"Could not claim interface {self._port_number}")
        if interface.endpoint_count < 2:
            raise IoTransferError("Not enough endpoints")
        self._read_endpoint = interface.get_endpoint(0)
        self._write_endpoint = interface.get_endpoint(1)

        result = self.__control_out(FTDI_RESET_REQUEST, FTDI_RESET_ALL)
        if result != 0:
            raise IoTransferError(f"Reset failed: result={result}")
        value = ((FTDI_MODEM_CONTROL_DTR_ENABLE if self._dtr else FTDI_MODEM_CONTROL_DTR_DISABLE)
                 | (FTDI_MODEM_CONTROL_RTS_ENABLE if self._rts else FTDI_MODEM_CONTROL_RTS_DISABLE))
        result = self.__control_out(FTDI_MODEM_CONTROL_REQUEST, value)
        if result != 0:
            raise IoTransferError(f"Init RTS,DTR failed: result={result}")

        raw_descriptors = self._connection.raw_descriptors()
        if raw_descriptors is None or len(raw_descriptors) < 14:
            raise IoTransferError("Could not get device descriptors")
        device_type = raw_descriptors[13]
        # FT2232H, FT4232H, FT232H, FT2232C
        self._baud_rate_with_port = device_type in (7, 8, 9) or self._device.interface_count > 1
        logger.debug("%r: device type 0x%02x, baud rate with port %s",
                     self, device_type, self._baud_rate_with_port)

    def read(self, dest: bytearray, timeout: int = 0, length: int = None) -> int:
        if length is None:
            length = len(dest)
        if length <= FTDI_READ_HEADER_LENGTH:
            raise InvalidArgumentError("Read length too small")
        length = min(length, len(dest))
        if timeout != 0:
            end = monotonic_ms() + timeout
            while True:
                nread = self._read(dest, length, max(1, end - monotonic_ms()), False)
                if nread != FTDI_READ_HEADER_LENGTH or monotonic_ms() >= end:
                    break
            if nread <= 0:
                self._test_connection(monotonic_ms() < end)
        else:
            while True:
                nread = self._read(dest, length, timeout, True)
                if nread != FTDI_READ_HEADER_LENGTH:
                    break
        return self.read_filter(dest, nread)

    def read_filter(self, buf: bytearray, total_bytes_read: int) -> int:
        return ftdi_read_filter(buf, total_bytes_read, self._read_endpoint.max_packet_size)

    def __set_baud_rate(self, baud_rate: int) -> None:
        value, index, effective = ftdi_baud_divisor(baud_rate)
        if self._baud_rate_with_port:
            index <<= 8
            index |= self._port_number + 1
        logger.debug("%r: baud rate=%d, effective=%d, value=0x%04x, index=0x%04x",
                     self, baud_rate, effective, value, index)
        result = self._connection.control_transfer(
            FTDI_REQTYPE_HOST2DEVICE, FTDI_SET_BAUD_RATE_REQUEST, value, index,
            None, 0, FTDI_USB_WRITE_TIMEOUT)
        if result != 0:
            raise IoTransferError(f"Setting baudrate failed: result={result}")

    def _set_parameters(self, config: SerialLineConfig) -> None:
        if config.data_bits in (DataBits.DATABITS_5, DataBits.DATABITS_6):
            raise UnsupportedOperationError(f"Unsupported data bits: {config.data_bits.value}")
        if config.stop_bits == StopBits.STOPBITS_1_5:
            raise UnsupportedOperationError("Unsupported stop bits: 1.5")
        self.__set_baud_rate(config.baud_rate)

        line = config.data_bits.value
        line |= config.parity.value << 8
        if config.stop_bits == StopBits.STOPBITS_2:
            line |= 2 << 11

        result = self.__control_out(FTDI_SET_DATA_REQUEST, line)
        if result != 0:
            raise IoTransferError(f"Setting parameters failed: result={result}")
        self._break_config = line

    def __get_status(self) -> int:
        buf = bytearray(2)
        result = self.__control_in(FTDI_GET_MODEM_STATUS_REQUEST, buf)
        if result != len(buf):
            raise IoTransferError(f"Get modem status failed: result={result}")
        return buf[0]

    def get_supported_control_lines(self) -> Set[ControlLine]:
        return set(ControlLine)

    def _get_control_lines(self) -> Set[ControlLine]:
        status = self.__get_status()
        lines = set()
        if self._rts:
            lines.add(ControlLine.RTS)
        if status & FTDI_MODEM_STATUS_CTS:
            lines.add(ControlLine.CTS)
        if self._dtr:
            lines.add(ControlLine.DTR)
        if status & FTDI_MODEM_STATUS_DSR:
            lines.add(ControlLine.DSR)
        if status & FTDI_MODEM_STATUS_CD:
            lines.add(ControlLine.CD)
        if status & FTDI_MODEM_STATUS_RI:
            lines.add(ControlLine.RI)
        return lines

    def _get_cd(self) -> bool:
        return bool(self.__get_status() & FTDI_MODEM_STATUS_CD)

    def _get_cts(self) -> bool:
        return bool(self.__get_status() & FTDI_MODEM_STATUS_CTS)

    def _get_dsr(self) -> bool:
        return bool(self.__get_status() & FTDI_MODEM_STATUS_DSR)

    def _get_ri(self) -> bool:
        return bool(self.__get_status() & FTDI_MODEM_STATUS_RI)

    def _get_dtr(self) -> bool:
        return self._dtr

    def _get_rts(self) -> bool:
        return self._rts

    def _set_dtr(self, value: bool) -> None:
        result = self.__control_out(
            FTDI_MODEM_CONTROL_REQUEST,
            FTDI_MODEM_CONTROL_DTR_ENABLE if value else FTDI_MODEM_CONTROL_DTR_DISABLE)
        if result != 0:
            raise IoTransferError(f"Set DTR failed: result={result}")
        self._dtr = value

    def _set_rts(self, value: bool) -> None:
        result = self.__control_out(
            FTDI_MODEM_CONTROL_REQUEST,
            FTDI_MODEM_CONTROL_RTS_ENABLE if value else FTDI_MODEM_CONTROL_RTS_DISABLE)
        if result != 0:
            raise IoTransferError(f"Set RTS failed: result={result}")
        self._rts = value

    def purge_hw_buffers(self, purge_write_buffers: bool, purge_read_buffers: bool) -> bool:
        self._test_connection(False)
        if purge_write_buffers:
            result = self.__control_out(FTDI_RESET_REQUEST, FTDI_RESET_PURGE_RX)
            if result != 0:
                raise IoTransferError(f"Purge write buffer failed: result={result}")
        if purge_read_buffers:
            result = self.__control_out(FTDI_RESET_REQUEST, FTDI_RESET_PURGE_TX)
            if result != 0:
                raise IoTransferError(f"Purge read buffer failed: result={result}")
        return True

    def set_break(self, value: bool) -> None:
        self._test_connection(False)
        config = self._break_config
        if value:
            config |= FTDI_SET_DATA_BREAK
        result = self.__control_out(FTDI_SET_DATA_REQUEST, config)
        if result != 0:
            raise IoTransferError(f"Setting BREAK failed: result={result}")

    def set_latency_timer(self, latency_time: int) -> None:
        """ Set the chip's latency timer in milliseconds """
        self._test_connection(False)
        result = self.__control_out(FTDI_SET_LATENCY_TIMER_REQUEST, latency_time)
        if result != 0:
            raise IoTransferError(f"Set latency timer failed: result={result}")

    def get_latency_timer(self) -> int:
        """ Returns the chip's latency timer in milliseconds """
        self._test_connection(False)
        buf = bytearray(1)
        result = self.__control_in(FTDI_GET_LATENCY_TIMER_REQUEST, buf)
        if result != len(buf):
            raise IoTransferError(f"Get latency timer failed: result={result}")
        return buf[0]
