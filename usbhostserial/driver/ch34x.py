"""
CH34X driver for usbhostserial,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
Parts rewritten in Python for usbhostserial!
"""
import logging
from typing import Dict, Set, Tuple

from ..device.common import ControlLine, DataBits, Parity, SerialLineConfig, StopBits
from ..device.usb import USB_DIR_IN, USB_DIR_OUT
from ..errors import IoTransferError, UnsupportedOperationError
from .handler import CommonUsbSerialPort, UsbSerialDriver
from . import usbid

logger = logging.getLogger(__name__)

CH34X_LCR_ENABLE_RX = 0x80
CH34X_LCR_ENABLE_TX = 0x40
CH34X_LCR_CS8 = 0x03

CH34X_SCL_DTR = 0x20
CH34X_SCL_RTS = 0x40

# status bits are active low
CH34X_GCL_CTS = 0x01
CH34X_GCL_DSR = 0x02
CH34X_GCL_RI = 0x04
CH34X_GCL_CD = 0x08

CH34X_USB_TIMEOUT = 5000

CH34X_CTL_TO_DEVICE = 0x40 | USB_DIR_OUT
CH34X_CTL_TO_HOST = 0x40 | USB_DIR_IN

CH34X_DEFAULT_BAUD_RATE = 9600

# baud rate -> (0x1312 value, 0x0f2c value)
CH34X_BAUD_TABLE = {
    2400: (0xd901, 0x0038),
    4800: (0x6402, 0x001f),
    9600: (0xb202, 0x0013),
    19200: (0xd902, 0x000d),
    38400: (0x6403, 0x000a),
    115200: (0xcc03, 0x0008),
}


class Ch34xSerialDriver(UsbSerialDriver):
    """
    Driver for CH340 / CH341 USB Serial devices, always one port
    """

    def __init__(self, device) -> None:
        super().__init__(device)
        self._ports = [Ch34xSerialPort(self, device, 0)]

    @classmethod
    def get_supported_devices(cls) -> Dict[int, Tuple[int, ...]]:
        return {
            usbid.VENDOR_QINHENG: (
                usbid.QINHENG_CH340,
                usbid.QINHENG_CH341A,
            )
        }


class Ch34xSerialPort(CommonUsbSerialPort):
    """
    Known limitation: only the baud rate reaches the chip, data bits,
    stop bits and parity are validated but stay at 8N1
    """

    def __init__(self, driver, device, port_number) -> None:
        super().__init__(driver, device, port_number)
        self._dtr = False
        self._rts = False

    def _line_format_applied(self) -> bool:
        return False

    def _supports_break(self) -> bool:
        return True

    def _supports_purge(self) -> bool:
        return True

    def _open_int(self) -> None:
        for interface in self._device.interfaces:
            if not self._claim_interface(interface):
                raise IoTransferError(f"Could not claim data interface {interface.id}")

        data_interface = self._device.get_interface(self._device.interface_count - 1)
        self._read_endpoint = data_interface.find_endpoint(USB_DIR_IN)
        self._write_endpoint = data_interface.find_endpoint(USB_DIR_OUT)

        self.__initialize()
        self.__set_baud_rate(CH34X_DEFAULT_BAUD_RATE)

    def __control_out(self, request: int, value: int, index: int) -> int:
        """ Send control command to the USB device """
        return self._connection.control_transfer(
            CH34X_CTL_TO_DEVICE, request, value, index, None, 0, CH34X_USB_TIMEOUT)

    def __control_in(self, request: int, value: int, index: int, buf: bytearray) -> int:
        """ Send control command to the USB device and receive input """
        return self._connection.control_transfer(
            CH34X_CTL_TO_HOST, request, value, index, buf, len(buf), CH34X_USB_TIMEOUT)

    def __check_state(self, msg: str, request: int, value: int, expected) -> None:
        """ Send control command to the USB device and validate input """
        buf = bytearray(len(expected))
        ret = self.__control_in(request, value, 0, buf)
        if ret < 0:
            raise IoTransferError(f"Failed send cmd [{msg}]")

        if ret != len(expected):
            raise IoTransferError(f"Expected {len(expected)} bytes, but got {ret} [{msg}]")

        for i, v in enumerate(expected):
            if v == -1:
                continue
            cur = buf[i] & 0xFF
            if v != cur:
                raise IoTransferError(f"Expected 0x{v:X} byte, but got 0x{cur:X} [{msg}]")

    def __set_control_lines(self) -> None:
        value = 0
        if self._dtr:
            value |= CH34X_SCL_DTR
        if self._rts:
            value |= CH34X_SCL_RTS
        if self.__control_out(0xA4, ~value & 0xFFFF, 0) < 0:
            raise IoTransferError("Failed to set control lines")

    def __get_status(self) -> int:
        buf = bytearray(2)
        if self.__control_in(0x95, 0x0706, 0, buf) < 0:
            raise IoTransferError("Error getting control lines")
        return buf[0]

    def __initialize(self) -> None:
        self.__check_state("init #1", 0x5F, 0, [-1, 0x00])

        if self.__control_out(0xA1, 0, 0) < 0:
            raise IoTransferError("Init failed: #2")

        self.__set_baud_rate(CH34X_DEFAULT_BAUD_RATE)

        self.__check_state("init #4", 0x95, 0x2518, [-1, 0x00])

        if self.__control_out(0x9A, 0x2518, CH34X_LCR_ENABLE_RX | CH34X_LCR_ENABLE_TX | CH34X_LCR_CS8) < 0:
            raise IoTransferError("Init failed: #5")

        self.__check_state("init #6", 0x95, 0x0706, [-1, -1])

        if self.__control_out(0xA1, 0x501F, 0xD90A) < 0:
            raise IoTransferError("Init failed: #7")

        self.__set_baud_rate(CH34X_DEFAULT_BAUD_RATE)

        self.__set_control_lines()

        self.__check_state("init #10", 0x95, 0x0706, [-1, -1])

    def __set_baud_rate(self, rate: int) -> None:
        """ Set baud rate from the lookup table """
        if rate not in CH34X_BAUD_TABLE:
            raise UnsupportedOperationError(f"Baud rate {rate} currently not supported")
        val1, val2 = CH34X_BAUD_TABLE[rate]
        if self.__control_out(0x9A, 0x1312, val1) < 0:
            raise IoTransferError("Error setting baud rate: #1")
        if self.__control_out(0x9A, 0x0F2C, val2) < 0:
            raise IoTransferError("Error setting baud rate: #2")

    def _set_parameters(self, config: SerialLineConfig) -> None:
        if config.stop_bits == StopBits.STOPBITS_1_5:
            raise UnsupportedOperationError("Unsupported stop bits: 1.5")
        self.__set_baud_rate(config.baud_rate)
        if (config.data_bits != DataBits.DATABITS_8 or config.stop_bits != StopBits.STOPBITS_1
                or config.parity != Parity.PARITY_NONE):
            logger.warning("%r: line format %s/%s/%s is not applied, chip stays at 8N1",
                           self, config.data_bits.value, config.stop_bits.name, config.parity.name)

    def get_supported_control_lines(self) -> Set[ControlLine]:
        return set(ControlLine)

    def _get_control_lines(self) -> Set[ControlLine]:
        status = self.__get_status()
        lines = set()
        if self._rts:
            lines.add(ControlLine.RTS)
        if status & CH34X_GCL_CTS == 0:
            lines.add(ControlLine.CTS)
        if self._dtr:
            lines.add(ControlLine.DTR)
        if status & CH34X_GCL_DSR == 0:
            lines.add(ControlLine.DSR)
        if status & CH34X_GCL_CD == 0:
            lines.add(ControlLine.CD)
        if status & CH34X_GCL_RI == 0:
            lines.add(ControlLine.RI)
        return lines

    def _get_cd(self) -> bool:
        return self.__get_status() & CH34X_GCL_CD == 0

    def _get_cts(self) -> bool:
        return self.__get_status() & CH34X_GCL_CTS == 0

    def _get_dsr(self) -> bool:
        return self.__get_status() & CH34X_GCL_DSR == 0

    def _get_ri(self) -> bool:
        return self.__get_status() & CH34X_GCL_RI == 0

    def _get_dtr(self) -> bool:
        return self._dtr

    def _get_rts(self) -> bool:
        return self._rts

    def _set_dtr(self, value: bool) -> None:
        self._dtr = value
        self.__set_control_lines()

    def _set_rts(self, value: bool) -> None:
        self._rts = value
        self.__set_control_lines()

    def purge_hw_buffers(self, purge_write_buffers: bool, purge_read_buffers: bool) -> bool:
        # the chip has no purge request, there's nothing buffered to drop
        return True

    def set_break(self, value: bool) -> None:
        self._test_connection(False)
        req = bytearray(2)
        if self.__control_in(0x95, 0x1805, 0, req) < 0:
            raise IoTransferError("Error getting break condition")

        if value:
            req[0] &= ~1 & 0xFF
            req[1] &= ~0x40 & 0xFF
        else:
            req[0] |= 1
            req[1] |= 0x40

        ctl = (req[1] & 0xFF) << 8 | (req[0] & 0xFF)
        if self.__control_out(0x9A, 0x1805, ctl) < 0:
            raise IoTransferError("Error setting break condition")
