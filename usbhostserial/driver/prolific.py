"""
Prolific PL2303 driver for usbhostserial,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
    * the PL2303 support there is ported from the Linux kernel driver
Parts rewritten in Python for usbhostserial!
"""
import logging
import struct
import threading
from enum import Enum
from typing import Dict, Optional, Set, Tuple

from ..device.common import ControlLine, SerialLineConfig, StopBits
from ..device.usb import USB_DIR_IN, USB_DIR_OUT, UsbEndpoint
from ..errors import IoTransferError, UnsupportedOperationError
from .handler import CommonUsbSerialPort, UsbSerialDriver, monotonic_ms
from . import usbid

logger = logging.getLogger(__name__)

PROLIFIC_USB_READ_TIMEOUT = 1000
PROLIFIC_USB_WRITE_TIMEOUT = 5000

PROLIFIC_VENDOR_READ_REQUEST = 0x01
PROLIFIC_VENDOR_WRITE_REQUEST = 0x01
PROLIFIC_VENDOR_READ_HXN_REQUEST = 0x81
PROLIFIC_VENDOR_WRITE_HXN_REQUEST = 0x80

PROLIFIC_VENDOR_OUT_REQTYPE = USB_DIR_OUT | 0x40
PROLIFIC_VENDOR_IN_REQTYPE = USB_DIR_IN | 0x40
PROLIFIC_CTRL_OUT_REQTYPE = USB_DIR_OUT | 0x20 | 0x01

PROLIFIC_WRITE_ENDPOINT = 0x02
PROLIFIC_READ_ENDPOINT = 0x83
PROLIFIC_INTERRUPT_ENDPOINT = 0x81

PROLIFIC_RESET_HXN_REQUEST = 0x07
PROLIFIC_FLUSH_RX_REQUEST = 0x08
PROLIFIC_FLUSH_TX_REQUEST = 0x09
PROLIFIC_SET_LINE_REQUEST = 0x20  # same as CDC SET_LINE_CODING
PROLIFIC_SET_CONTROL_REQUEST = 0x22  # same as CDC SET_CONTROL_LINE_STATE
PROLIFIC_SEND_BREAK_REQUEST = 0x23  # same as CDC SEND_BREAK
PROLIFIC_GET_CONTROL_HXN_REQUEST = 0x80
PROLIFIC_GET_CONTROL_REQUEST = 0x87
PROLIFIC_STATUS_NOTIFICATION = 0xA1  # similar to CDC SERIAL_STATE but different length

# RESET_HXN_REQUEST
PROLIFIC_RESET_HXN_RX_PIPE = 1
PROLIFIC_RESET_HXN_TX_PIPE = 2

# SET_CONTROL_REQUEST
PROLIFIC_CONTROL_DTR = 0x01
PROLIFIC_CONTROL_RTS = 0x02

# GET_CONTROL_REQUEST, active low
PROLIFIC_GET_CONTROL_FLAG_CD = 0x02
PROLIFIC_GET_CONTROL_FLAG_DSR = 0x04
PROLIFIC_GET_CONTROL_FLAG_RI = 0x01
PROLIFIC_GET_CONTROL_FLAG_CTS = 0x08

# GET_CONTROL_HXN_REQUEST, active low
PROLIFIC_GET_CONTROL_HXN_FLAG_CD = 0x40
PROLIFIC_GET_CONTROL_HXN_FLAG_DSR = 0x20
PROLIFIC_GET_CONTROL_HXN_FLAG_RI = 0x80
PROLIFIC_GET_CONTROL_HXN_FLAG_CTS = 0x08

# interrupt endpoint read
PROLIFIC_STATUS_FLAG_CD = 0x01
PROLIFIC_STATUS_FLAG_DSR = 0x02
PROLIFIC_STATUS_FLAG_RI = 0x08
PROLIFIC_STATUS_FLAG_CTS = 0x80

PROLIFIC_STATUS_BUFFER_SIZE = 10
PROLIFIC_STATUS_BYTE_IDX = 8
PROLIFIC_STATUS_READ_TIMEOUT = 500

PROLIFIC_STANDARD_BAUD_RATES = (
    75, 150, 300, 600, 1200, 1800, 2400, 3600, 4800, 7200, 9600, 14400, 19200,
    28800, 38400, 57600, 115200, 128000, 134400, 161280, 201600, 230400, 268800,
    403200, 460800, 614400, 806400, 921600, 1228800, 2457600, 3000000, 6000000,
)

PROLIFIC_STOP_BITS = {
    StopBits.STOPBITS_1: 0,
    StopBits.STOPBITS_1_5: 1,
    StopBits.STOPBITS_2: 2,
}

PROLIFIC_BAUD_BASELINE = 12000000 * 32
PROLIFIC_MAX_BAUD_ERROR = 0.031


class DeviceType(Enum):
    DEVICE_TYPE_01 = "01"
    DEVICE_TYPE_T = "T"
    DEVICE_TYPE_HX = "HX"
    DEVICE_TYPE_HXN = "HXN"


def prolific_baud_rate(baud_rate: int, device_type: DeviceType) -> int:
    """
    Returns the 32 bit baud rate value for SET_LINE_REQUEST
    Non standard rates are encoded as mantissa / exponent like the Linux and FreeBSD drivers do
    """
    if device_type == DeviceType.DEVICE_TYPE_HXN:
        return baud_rate
    if baud_rate in PROLIFIC_STANDARD_BAUD_RATES:
        return baud_rate

    # T:     baudrate = baseline / (mantissa * 2^exponent), mantissa = buf[10:0], exponent = buf[15:13 16]
    # other: baudrate = baseline / (mantissa * 4^exponent), mantissa = buf[8:0],  exponent = buf[11:9]
    mantissa = PROLIFIC_BAUD_BASELINE // baud_rate
    if mantissa == 0:  # > unrealistic 384 MBaud
        raise UnsupportedOperationError("Baud rate too high")
    exponent = 0
    if device_type == DeviceType.DEVICE_TYPE_T:
        while mantissa >= 2048:
            if exponent >= 15:  # < 7 baud
                raise UnsupportedOperationError("Baud rate too low")
            mantissa >>= 1
            exponent += 1
        buf = mantissa + ((exponent & ~1) << 12) + ((exponent & 1) << 16) + (1 << 31)
        effective = (PROLIFIC_BAUD_BASELINE // mantissa) >> exponent
    else:
        while mantissa >= 512:
            if exponent >= 7:  # < 45.8 baud
                raise UnsupportedOperationError("Baud rate too low")
            mantissa >>= 2
            exponent += 1
        buf = mantissa + (exponent << 9) + (1 << 31)
        effective = (PROLIFIC_BAUD_BASELINE // mantissa) >> (exponent << 1)

    baud_rate_error = abs(1.0 - (effective / baud_rate))
    if baud_rate_error >= PROLIFIC_MAX_BAUD_ERROR:  # > unrealistic 11.6 Mbaud
        raise UnsupportedOperationError(
            f"Baud rate deviation {baud_rate_error * 100:.1f}% is higher than allowed 3%")
    logger.debug("baud rate=%d, effective=%d, error=%.1f%%, value=0x%08x, mantissa=%d, exponent=%d",
                 baud_rate, effective, baud_rate_error * 100, buf, mantissa, exponent)
    return buf & 0xFFFFFFFF


class ProlificSerialDriver(UsbSerialDriver):
    """
    Driver for Prolific PL2303 devices, always one port
    """

    def __init__(self, device) -> None:
        super().__init__(device)
        self._ports = [ProlificSerialPort(self, device, 0)]

    @classmethod
    def get_supported_devices(cls) -> Dict[int, Tuple[int, ...]]:
        return {
            usbid.VENDOR_PROLIFIC: (
                usbid.PROLIFIC_PL2303,
                usbid.PROLIFIC_PL2303GC,
                usbid.PROLIFIC_PL2303GB,
                usbid.PROLIFIC_PL2303GT,
                usbid.PROLIFIC_PL2303GL,
                usbid.PROLIFIC_PL2303GE,
                usbid.PROLIFIC_PL2303GS,
            )
        }


class ProlificSerialPort(CommonUsbSerialPort):
    """
    Line status comes from a background thread reading the interrupt endpoint,
    started by the first status query
    """

    def __init__(self, driver, device, port_number) -> None:
        super().__init__(driver, device, port_number)
        self._device_type = DeviceType.DEVICE_TYPE_HX
        self._interrupt_endpoint: Optional[UsbEndpoint] = None
        self._control_lines_value = 0
        self._line_request: Optional[bytes] = None

        self._status = 0
        self._read_status_thread: Optional[threading.Thread] = None
        self._read_status_thread_lock = threading.Lock()
        self._stop_read_status_thread = threading.Event()
        self._read_status_exception: Optional[Exception] = None

    @property
    def device_type(self) -> DeviceType:
        """ Returns the detected chip variant, valid once opened """
        return self._device_type

    def _supports_break(self) -> bool:
        return True

    def _supports_purge(self) -> bool:
        return True

    def __in_control_transfer(self, request_type: int, request: int, value: int, index: int,
                              length: int) -> bytearray:
        buf = bytearray(length)
        result = self._connection.control_transfer(
            request_type, request, value, index, buf, length, PROLIFIC_USB_READ_TIMEOUT)
        if result != length:
            raise IoTransferError(
                f"ControlTransfer {self._device_type.name} 0x{value:x} failed: {result}")
        return buf

    def __out_control_transfer(self, request_type: int, request: int, value: int, index: int,
                               data: Optional[bytes]) -> None:
        length = 0 if data is None else len(data)
        result = self._connection.control_transfer(
            request_type, request, value, index, data, length, PROLIFIC_USB_WRITE_TIMEOUT)
        if result != length:
            raise IoTransferError(
                f"ControlTransfer {self._device_type.name} 0x{value:x} failed: {result}")

    def __vendor_in(self, value: int, index: int, length: int) -> bytearray:
        if self._device_type == DeviceType.DEVICE_TYPE_HXN:
            request = PROLIFIC_VENDOR_READ_HXN_REQUEST
        else:
            request = PROLIFIC_VENDOR_READ_REQUEST
        return self.__in_control_transfer(PROLIFIC_VENDOR_IN_REQTYPE, request, value, index, length)

    def __vendor_out(self, value: int, index: int, data: Optional[bytes] = None) -> None:
        if self._device_type == DeviceType.DEVICE_TYPE_HXN:
            request = PROLIFIC_VENDOR_WRITE_HXN_REQUEST
        else:
            request = PROLIFIC_VENDOR_WRITE_REQUEST
        self.__out_control_transfer(PROLIFIC_VENDOR_OUT_REQTYPE, request, value, index, data)

    def __ctrl_out(self, request: int, value: int, index: int, data: Optional[bytes] = None) -> None:
        self.__out_control_transfer(PROLIFIC_CTRL_OUT_REQTYPE, request, value, index, data)

    def __reset_device(self) -> None:
        self.__purge(True, True)

    def __test_hx_status(self) -> bool:
        try:
            self.__in_control_transfer(PROLIFIC_VENDOR_IN_REQTYPE, PROLIFIC_VENDOR_READ_REQUEST, 0x8080, 0, 1)
        except IoTransferError:
            return False
        return True

    def __do_black_magic(self) -> None:
        if self._device_type == DeviceType.DEVICE_TYPE_HXN:
            return
        self.__vendor_in(0x8484, 0, 1)
        self.__vendor_out(0x0404, 0)
        self.__vendor_in(0x8484, 0, 1)
        self.__vendor_in(0x8383, 0, 1)
        self.__vendor_in(0x8484, 0, 1)
        self.__vendor_out(0x0404, 1)
        self.__vendor_in(0x8484, 0, 1)
        self.__vendor_in(0x8383, 0, 1)
        self.__vendor_out(0, 1)
        self.__vendor_out(1, 0)
        self.__vendor_out(2, 0x24 if self._device_type == DeviceType.DEVICE_TYPE_01 else 0x44)

    def __set_control_lines(self, value: int) -> None:
        self.__ctrl_out(PROLIFIC_SET_CONTROL_REQUEST, value, 0)
        self._control_lines_value = value

    def __read_status_thread_function(self) -> None:
        buf = bytearray(PROLIFIC_STATUS_BUFFER_SIZE)
        try:
            while not self._stop_read_status_thread.is_set():
                end = monotonic_ms() + PROLIFIC_STATUS_READ_TIMEOUT
                count = self._connection.bulk_transfer(
                    self._interrupt_endpoint, buf, PROLIFIC_STATUS_BUFFER_SIZE, PROLIFIC_STATUS_READ_TIMEOUT)
                if count == -1:
                    self._test_connection(monotonic_ms() < end)
                if count > 0:
                    if count != PROLIFIC_STATUS_BUFFER_SIZE:
                        raise IoTransferError(
                            f"Invalid status notification, expected {PROLIFIC_STATUS_BUFFER_SIZE} bytes, got {count}")
                    if buf[0] != PROLIFIC_STATUS_NOTIFICATION:
                        raise IoTransferError(
                            f"Invalid status notification, expected {PROLIFIC_STATUS_NOTIFICATION} request, got {buf[0]}")
                    self._status = buf[PROLIFIC_STATUS_BYTE_IDX]
        except IoTransferError as exc:
            if not self._stop_read_status_thread.is_set():
                logger.debug("%r: status thread stopped: %s", self, exc)
                self._read_status_exception = exc

    def __read_initial_status(self) -> int:
        status = 0
        if self._device_type == DeviceType.DEVICE_TYPE_HXN:
            data = self.__vendor_in(PROLIFIC_GET_CONTROL_HXN_REQUEST, 0, 1)
            flags = ((PROLIFIC_GET_CONTROL_HXN_FLAG_CTS, PROLIFIC_STATUS_FLAG_CTS),
                     (PROLIFIC_GET_CONTROL_HXN_FLAG_DSR, PROLIFIC_STATUS_FLAG_DSR),
                     (PROLIFIC_GET_CONTROL_HXN_FLAG_CD, PROLIFIC_STATUS_FLAG_CD),
                     (PROLIFIC_GET_CONTROL_HXN_FLAG_RI, PROLIFIC_STATUS_FLAG_RI))
        else:
            data = self.__vendor_in(PROLIFIC_GET_CONTROL_REQUEST, 0, 1)
            flags = ((PROLIFIC_GET_CONTROL_FLAG_CTS, PROLIFIC_STATUS_FLAG_CTS),
                     (PROLIFIC_GET_CONTROL_FLAG_DSR, PROLIFIC_STATUS_FLAG_DSR),
                     (PROLIFIC_GET_CONTROL_FLAG_CD, PROLIFIC_STATUS_FLAG_CD),
                     (PROLIFIC_GET_CONTROL_FLAG_RI, PROLIFIC_STATUS_FLAG_RI))
        for control_flag, status_flag in flags:
            if data[0] & control_flag == 0:
                status |= status_flag
        return status

    def __get_status(self) -> int:
        if self._read_status_thread is None and self._read_status_exception is None:
            with self._read_status_thread_lock:
                if self._read_status_thread is None:
                    self._status = self.__read_initial_status()
                    self._read_status_thread = threading.Thread(
                        target=self.__read_status_thread_function,
                        name="prolific-status", daemon=True)
                    self._read_status_thread.start()

        # raise and clear an error from the status thread
        exc = self._read_status_exception
        if exc is not None:
            self._read_status_exception = None
            raise IoTransferError(str(exc)) from exc

        return self._status

    def __test_status_flag(self, flag: int) -> bool:
        return self.__get_status() & flag == flag

    def _open_int(self) -> None:
        interface = self._device.get_interface(0)
        if not self._claim_interface(interface):
            raise IoTransferError("Error claiming Prolific interface 0")

        for endpoint in interface.endpoints:
            if endpoint.address == PROLIFIC_READ_ENDPOINT:
                self._read_endpoint = endpoint
            elif endpoint.address == PROLIFIC_WRITE_ENDPOINT:
                self._write_endpoint = endpoint
            elif endpoint.address == PROLIFIC_INTERRUPT_ENDPOINT:
                self._interrupt_endpoint = endpoint

        raw_descriptors = self._connection.raw_descriptors()
        if raw_descriptors is None or len(raw_descriptors) < 14:
            raise IoTransferError("Could not get device descriptors")
        usb_version = (raw_descriptors[3] << 8) + raw_descriptors[2]
        device_version = (raw_descriptors[13] << 8) + raw_descriptors[12]
        max_packet_size0 = raw_descriptors[7]
        if self._device.device_class == 0x02 or max_packet_size0 != 64:
            self._device_type = DeviceType.DEVICE_TYPE_01
        elif usb_version == 0x200:
            if device_version in (0x300, 0x500) and self.__test_hx_status():
                self._device_type = DeviceType.DEVICE_TYPE_T  # TA, TB
            else:
                self._device_type = DeviceType.DEVICE_TYPE_HXN
        else:
            self._device_type = DeviceType.DEVICE_TYPE_HX
        logger.debug("usbVersion=%x, deviceVersion=%x, deviceClass=%d, packetSize=%d => deviceType=%s",
                     usb_version, device_version, self._device.device_class, max_packet_size0,
                     self._device_type.name)

        self.__reset_device()
        self.__do_black_magic()
        self.__set_control_lines(self._control_lines_value)

    def _close_int(self) -> None:
        with self._read_status_thread_lock:
            if self._read_status_thread is not None:
                self._stop_read_status_thread.set()
                self._read_status_thread.join()
                self._stop_read_status_thread.clear()
                self._read_status_thread = None
                self._read_status_exception = None
        try:
            self.__reset_device()
        except IoTransferError as exc:
            logger.debug("%r: reset on close failed: %s", self, exc)

    def _set_parameters(self, config: SerialLineConfig) -> None:
        baud_rate = prolific_baud_rate(config.baud_rate, self._device_type)
        line_request = struct.pack("<IBBB", baud_rate, PROLIFIC_STOP_BITS[config.stop_bits],
                                   config.parity.value, config.data_bits.value)
        if line_request == self._line_request:
            # nothing to change
            return
        self.__ctrl_out(PROLIFIC_SET_LINE_REQUEST, 0, 0, line_request)
        self.__reset_device()
        self._line_request = line_request

    def get_supported_control_lines(self) -> Set[ControlLine]:
        return set(ControlLine)

    def _get_control_lines(self) -> Set[ControlLine]:
        status = self.__get_status()
        lines = set()
        if self._control_lines_value & PROLIFIC_CONTROL_RTS:
            lines.add(ControlLine.RTS)
        if status & PROLIFIC_STATUS_FLAG_CTS:
            lines.add(ControlLine.CTS)
        if self._control_lines_value & PROLIFIC_CONTROL_DTR:
            lines.add(ControlLine.DTR)
        if status & PROLIFIC_STATUS_FLAG_DSR:
            lines.add(ControlLine.DSR)
        if status & PROLIFIC_STATUS_FLAG_CD:
            lines.add(ControlLine.CD)
        if status & PROLIFIC_STATUS_FLAG_RI:
            lines.add(ControlLine.RI)
        return lines

    def _get_cd(self) -> bool:
        return self.__test_status_flag(PROLIFIC_STATUS_FLAG_CD)

    def _get_cts(self) -> bool:
        return self.__test_status_flag(PROLIFIC_STATUS_FLAG_CTS)

    def _get_dsr(self) -> bool:
        return self.__test_status_flag(PROLIFIC_STATUS_FLAG_DSR)

    def _get_ri(self) -> bool:
        return self.__test_status_flag(PROLIFIC_STATUS_FLAG_RI)

    def _get_dtr(self) -> bool:
        return bool(self._control_lines_value & PROLIFIC_CONTROL_DTR)

    def _get_rts(self) -> bool:
        return bool(self._control_lines_value & PROLIFIC_CONTROL_RTS)

    def _set_dtr(self, value: bool) -> None:
        if value:
            self.__set_control_lines(self._control_lines_value | PROLIFIC_CONTROL_DTR)
        else:
            self.__set_control_lines(self._control_lines_value & ~PROLIFIC_CONTROL_DTR)

    def _set_rts(self, value: bool) -> None:
        if value:
            self.__set_control_lines(self._control_lines_value | PROLIFIC_CONTROL_RTS)
        else:
            self.__set_control_lines(self._control_lines_value & ~PROLIFIC_CONTROL_RTS)

    def __purge(self, purge_write_buffers: bool, purge_read_buffers: bool) -> None:
        if self._device_type == DeviceType.DEVICE_TYPE_HXN:
            index = 0
            if purge_write_buffers:
                index |= PROLIFIC_RESET_HXN_RX_PIPE
            if purge_read_buffers:
                index |= PROLIFIC_RESET_HXN_TX_PIPE
            if index != 0:
                self.__vendor_out(PROLIFIC_RESET_HXN_REQUEST, index)
        else:
            if purge_write_buffers:
                self.__vendor_out(PROLIFIC_FLUSH_RX_REQUEST, 0)
            if purge_read_buffers:
                self.__vendor_out(PROLIFIC_FLUSH_TX_REQUEST, 0)

    def purge_hw_buffers(self, purge_write_buffers: bool, purge_read_buffers: bool) -> bool:
        self._test_connection(False)
        self.__purge(purge_write_buffers, purge_read_buffers)
        return True

    def set_break(self, value: bool) -> None:
        self._test_connection(False)
        self.__ctrl_out(PROLIFIC_SEND_BREAK_REQUEST, 0xFFFF if value else 0, 0)
