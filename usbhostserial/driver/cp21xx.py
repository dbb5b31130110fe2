"""
CP21xx driver for usbhostserial,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
Parts rewritten in Python for usbhostserial!
"""
import logging
import struct
from typing import Dict, Set, Tuple

from ..device.common import ControlLine, DataBits, Parity, SerialLineConfig, StopBits
from ..device.usb import USB_DIR_IN, USB_DIR_OUT
from ..errors import IoTransferError, UnsupportedOperationError
from .handler import CommonUsbSerialPort, UsbSerialDriver
from . import usbid

logger = logging.getLogger(__name__)

CP21XX_USB_WRITE_TIMEOUT = 5000

# configuration request types
CP21XX_REQTYPE_HOST_TO_DEVICE = 0x41
CP21XX_REQTYPE_DEVICE_TO_HOST = 0xC1

# configuration request codes
CP21XX_IFC_ENABLE_REQUEST_CODE = 0x00
CP21XX_SET_LINE_CTL_REQUEST_CODE = 0x03
CP21XX_SET_BREAK_REQUEST_CODE = 0x05
CP21XX_SET_MHS_REQUEST_CODE = 0x07
CP21XX_SET_BAUDRATE = 0x1E
CP21XX_FLUSH_REQUEST_CODE = 0x12
CP21XX_GET_MDMSTS_REQUEST_CODE = 0x08

CP21XX_FLUSH_READ_CODE = 0x0A
CP21XX_FLUSH_WRITE_CODE = 0x05

CP21XX_UART_ENABLE = 0x0001
CP21XX_UART_DISABLE = 0x0000

CP21XX_DTR_ENABLE = 0x101
CP21XX_DTR_DISABLE = 0x100
CP21XX_RTS_ENABLE = 0x202
CP21XX_RTS_DISABLE = 0x200

CP21XX_STATUS_CTS = 0x10
CP21XX_STATUS_DSR = 0x20
CP21XX_STATUS_RI = 0x40
CP21XX_STATUS_CD = 0x80

CP21XX_DATA_BITS = {
    DataBits.DATABITS_5: 0x0500,
    DataBits.DATABITS_6: 0x0600,
    DataBits.DATABITS_7: 0x0700,
    DataBits.DATABITS_8: 0x0800,
}

CP21XX_PARITY = {
    Parity.PARITY_NONE: 0x0000,
    Parity.PARITY_ODD: 0x0010,
    Parity.PARITY_EVEN: 0x0020,
    Parity.PARITY_MARK: 0x0030,
    Parity.PARITY_SPACE: 0x0040,
}

CP21XX_STOP_BITS_2 = 0x0002


class Cp21xxSerialDriver(UsbSerialDriver):
    """
    Driver for Silicon Labs CP2102 / CP2105 / CP2108 and friends
    One port per interface
    """

    def __init__(self, device) -> None:
        super().__init__(device)
        self._ports = [Cp21xxSerialPort(self, device, port) for port in range(device.interface_count)]

    @classmethod
    def get_supported_devices(cls) -> Dict[int, Tuple[int, ...]]:
        return {
            usbid.VENDOR_SILABS: (
                usbid.SILABS_CP2102,
                usbid.SILABS_CP2105,
                usbid.SILABS_CP2108,
            )
        }


class Cp21xxSerialPort(CommonUsbSerialPort):
    """
    The second port of a CP2105 is restricted: 8 data bits, no mark / space
    parity, 1 stop bit. Unsupported baud rates are refused by the chip itself.
    """

    def __init__(self, driver, device, port_number) -> None:
        super().__init__(driver, device, port_number)
        self._dtr = False
        self._rts = False

    @property
    def is_restricted_port(self) -> bool:
        return self._device.interface_count == 2 and self._port_number == 1

    def _is_restricted_port(self) -> bool:
        return self.is_restricted_port

    def _supports_break(self) -> bool:
        return True

    def _supports_purge(self) -> bool:
        return True

    def __set_config_single(self, request: int, value: int) -> None:
        result = self._connection.control_transfer(
            CP21XX_REQTYPE_HOST_TO_DEVICE, request, value, self._port_number,
            None, 0, CP21XX_USB_WRITE_TIMEOUT)
        if result != 0:
            raise IoTransferError(f"Control transfer failed: {request} / {value} -> {result}")

    def __get_status(self) -> int:
        buf = bytearray(1)
        result = self._connection.control_transfer(
            CP21XX_REQTYPE_DEVICE_TO_HOST, CP21XX_GET_MDMSTS_REQUEST_CODE, 0, self._port_number,
            buf, len(buf), CP21XX_USB_WRITE_TIMEOUT)
        if result != len(buf):
            raise IoTransferError(
                f"Control transfer failed: {CP21XX_GET_MDMSTS_REQUEST_CODE} / 0 -> {result}")
        return buf[0]

    def _open_int(self) -> None:
        if self._port_number >= self._device.interface_count:
            raise IoTransferError("Unknown port number")
        data_interface = self._device.get_interface(self._port_number)
        if not self._claim_interface(data_interface):
            raise IoTransferError(f"Could not claim interface {self._port_number}")
        self._read_endpoint = data_interface.find_endpoint(USB_DIR_IN)
        self._write_endpoint = data_interface.find_endpoint(USB_DIR_OUT)

        self.__set_config_single(CP21XX_IFC_ENABLE_REQUEST_CODE, CP21XX_UART_ENABLE)
        self.__set_config_single(
            CP21XX_SET_MHS_REQUEST_CODE,
            (CP21XX_DTR_ENABLE if self._dtr else CP21XX_DTR_DISABLE)
            | (CP21XX_RTS_ENABLE if self._rts else CP21XX_RTS_DISABLE))

    def _close_int(self) -> None:
        try:
            self.__set_config_single(CP21XX_IFC_ENABLE_REQUEST_CODE, CP21XX_UART_DISABLE)
        except IoTransferError as exc:
            logger.debug("%r: disabling UART failed: %s", self, exc)

    def __set_baud_rate(self, baud_rate: int) -> None:
        data = struct.pack("<I", baud_rate)
        ret = self._connection.control_transfer(
            CP21XX_REQTYPE_HOST_TO_DEVICE, CP21XX_SET_BAUDRATE, 0, self._port_number,
            data, len(data), CP21XX_USB_WRITE_TIMEOUT)
        if ret < 0:
            raise IoTransferError(f"Error setting baud rate {baud_rate}")

    def _set_parameters(self, config: SerialLineConfig) -> None:
        restricted = self.is_restricted_port
        if restricted and config.data_bits != DataBits.DATABITS_8:
            raise UnsupportedOperationError(f"Unsupported data bits: {config.data_bits.value}")
        if restricted and config.parity in (Parity.PARITY_MARK, Parity.PARITY_SPACE):
            raise UnsupportedOperationError(f"Unsupported parity: {config.parity.name}")
        if config.stop_bits == StopBits.STOPBITS_1_5:
            raise UnsupportedOperationError("Unsupported stop bits: 1.5")
        if restricted and config.stop_bits == StopBits.STOPBITS_2:
            raise UnsupportedOperationError("Unsupported stop bits: 2")

        self.__set_baud_rate(config.baud_rate)

        line = CP21XX_DATA_BITS[config.data_bits] | CP21XX_PARITY[config.parity]
        if config.stop_bits == StopBits.STOPBITS_2:
            line |= CP21XX_STOP_BITS_2
        self.__set_config_single(CP21XX_SET_LINE_CTL_REQUEST_CODE, line)

    def get_supported_control_lines(self) -> Set[ControlLine]:
        return set(ControlLine)

    def _get_control_lines(self) -> Set[ControlLine]:
        status = self.__get_status()
        lines = set()
        if self._rts:
            lines.add(ControlLine.RTS)
        if status & CP21XX_STATUS_CTS:
            lines.add(ControlLine.CTS)
        if self._dtr:
            lines.add(ControlLine.DTR)
        if status & CP21XX_STATUS_DSR:
            lines.add(ControlLine.DSR)
        if status & CP21XX_STATUS_CD:
            lines.add(ControlLine.CD)
        if status & CP21XX_STATUS_RI:
            lines.add(ControlLine.RI)
        return lines

    def _get_cd(self) -> bool:
        return bool(self.__get_status() & CP21XX_STATUS_CD)

    def _get_cts(self) -> bool:
        return bool(self.__get_status() & CP21XX_STATUS_CTS)

    def _get_dsr(self) -> bool:
        return bool(self.__get_status() & CP21XX_STATUS_DSR)

    def _get_ri(self) -> bool:
        return bool(self.__get_status() & CP21XX_STATUS_RI)

    def _get_dtr(self) -> bool:
        return self._dtr

    def _get_rts(self) -> bool:
        return self._rts

    def _set_dtr(self, value: bool) -> None:
        self._dtr = value
        self.__set_config_single(CP21XX_SET_MHS_REQUEST_CODE,
                                 CP21XX_DTR_ENABLE if value else CP21XX_DTR_DISABLE)

    def _set_rts(self, value: bool) -> None:
        self._rts = value
        self.__set_config_single(CP21XX_SET_MHS_REQUEST_CODE,
                                 CP21XX_RTS_ENABLE if value else CP21XX_RTS_DISABLE)

    def purge_hw_buffers(self, purge_write_buffers: bool, purge_read_buffers: bool) -> bool:
        # only working on some devices, others ignore it without error
        self._test_connection(False)
        value = ((CP21XX_FLUSH_READ_CODE if purge_read_buffers else 0)
                 | (CP21XX_FLUSH_WRITE_CODE if purge_write_buffers else 0))
        if value != 0:
            self.__set_config_single(CP21XX_FLUSH_REQUEST_CODE, value)
        return True

    def set_break(self, value: bool) -> None:
        self._test_connection(False)
        self.__set_config_single(CP21XX_SET_BREAK_REQUEST_CODE, 1 if value else 0)
