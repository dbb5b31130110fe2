"""
CDC-ACM driver for usbhostserial,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
    * the single interface logic is inspired by the cdc-acm driver in the Linux kernel
Parts rewritten in Python for usbhostserial!

USB CDC/ACM serial driver implementation, see
'Universal Serial Bus Class Definitions for Communication Devices, v1.1'
"""
import logging
import struct
from typing import Dict, Optional, Set, Tuple

from ..device.common import ControlLine, SerialLineConfig, StopBits
from ..device.usb import (USB_CLASS_CDC_DATA, USB_CLASS_COMM, USB_DIR_IN, USB_DIR_OUT,
                          USB_DT_INTERFACE_ASSOCIATION, USB_ENDPOINT_XFER_BULK,
                          USB_ENDPOINT_XFER_INT, UsbDevice, UsbEndpoint, UsbInterface,
                          split_descriptors)
from ..errors import IoTransferError
from .handler import CommonUsbSerialPort, UsbSerialDriver
from . import usbid

logger = logging.getLogger(__name__)

USB_SUBCLASS_ACM = 2

CDC_USB_WRITE_TIMEOUT = 5000

# class request to the control interface
CDC_REQTYPE_ACM = 0x20 | 0x01

# USB CDC 1.1 section 6.2
CDC_SET_LINE_CODING = 0x20
CDC_GET_LINE_CODING = 0x21
CDC_SET_CONTROL_LINE_STATE = 0x22
CDC_SEND_BREAK = 0x23

CDC_CONTROL_LINE_DTR = 0x01
CDC_CONTROL_LINE_RTS = 0x02

CDC_STOP_BITS = {
    StopBits.STOPBITS_1: 0,
    StopBits.STOPBITS_1_5: 1,
    StopBits.STOPBITS_2: 2,
}


def _is_acm_control_interface(interface: UsbInterface) -> bool:
    return interface.interface_class == USB_CLASS_COMM and interface.interface_subclass == USB_SUBCLASS_ACM


def count_ports(device: UsbDevice) -> int:
    """ Returns the number of control / data interface pairs of a device """
    control_interface_count = 0
    data_interface_count = 0
    for interface in device.interfaces:
        if _is_acm_control_interface(interface):
            control_interface_count += 1
        if interface.interface_class == USB_CLASS_CDC_DATA:
            data_interface_count += 1
    return min(control_interface_count, data_interface_count)


class CdcAcmSerialDriver(UsbSerialDriver):
    """
    Driver for standard CDC-ACM devices
    One port per control / data interface pair, a device without such a pair
    gets a single port (number -1) that uses interface 0 for everything
    """

    def __init__(self, device) -> None:
        super().__init__(device)
        self._ports = [CdcAcmSerialPort(self, device, port) for port in range(count_ports(device))]
        if not self._ports:
            self._ports.append(CdcAcmSerialPort(self, device, -1))

    @staticmethod
    def probe(device: UsbDevice) -> bool:
        """ Returns True if the device has at least one proper ACM port """
        return count_ports(device) > 0

    @classmethod
    def get_supported_devices(cls) -> Dict[int, Tuple[int, ...]]:
        return {
            usbid.VENDOR_ARDUINO: (
                usbid.ARDUINO_UNO,
                usbid.ARDUINO_UNO_R3,
                usbid.ARDUINO_MEGA_2560,
                usbid.ARDUINO_MEGA_2560_R3,
                usbid.ARDUINO_SERIAL_ADAPTER,
                usbid.ARDUINO_SERIAL_ADAPTER_R3,
                usbid.ARDUINO_MEGA_ADK,
                usbid.ARDUINO_MEGA_ADK_R3,
                usbid.ARDUINO_LEONARDO,
                usbid.ARDUINO_MICRO,
            ),
            usbid.VENDOR_VAN_OOIJEN_TECH: (
                usbid.VAN_OOIJEN_TECH_TEENSYDUINO_SERIAL,
            ),
            usbid.VENDOR_ATMEL: (
                usbid.ATMEL_LUFA_CDC_DEMO_APP,
            ),
            usbid.VENDOR_LEAFLABS: (
                usbid.LEAFLABS_MAPLE,
            ),
            usbid.VENDOR_ARM: (
                usbid.ARM_MBED,
            ),
            usbid.VENDOR_ST: (
                usbid.ST_CDC,
            ),
            usbid.VENDOR_RASPBERRY_PI: (
                usbid.RASPBERRY_PI_PICO_MICROPYTHON,
                usbid.RASPBERRY_PI_PICO_SDK,
            ),
            usbid.VENDOR_QINHENG: (
                usbid.QINHENG_CH9102F,
            ),
        }


class CdcAcmSerialPort(CommonUsbSerialPort):

    def __init__(self, driver, device, port_number) -> None:
        super().__init__(driver, device, port_number)
        self._control_interface: Optional[UsbInterface] = None
        self._data_interface: Optional[UsbInterface] = None
        self._control_endpoint: Optional[UsbEndpoint] = None
        self._control_index = 0
        self._dtr = False
        self._rts = False

    @property
    def control_endpoint(self) -> Optional[UsbEndpoint]:
        return self._control_endpoint

    def _supports_break(self) -> bool:
        return True

    def _open_int(self) -> None:
        if self._port_number == -1:
            logger.debug("%r: device might be castrated ACM device, trying single interface logic", self)
            self.__open_single_interface()
        else:
            logger.debug("%r: trying default interface logic", self)
            self.__open_interface()

    def __open_single_interface(self) -> None:
        self._control_index = 0
        self._control_interface = self._device.get_interface(0)
        self._data_interface = self._control_interface
        if not self._claim_interface(self._control_interface):
            raise IoTransferError("Could not claim shared control/data interface")

        for endpoint in self._control_interface.endpoints:
            if endpoint.direction == USB_DIR_IN and endpoint.type == USB_ENDPOINT_XFER_INT:
                self._control_endpoint = endpoint
            elif endpoint.direction == USB_DIR_IN and endpoint.type == USB_ENDPOINT_XFER_BULK:
                self._read_endpoint = endpoint
            elif endpoint.direction == USB_DIR_OUT and endpoint.type == USB_ENDPOINT_XFER_BULK:
                self._write_endpoint = endpoint
        if self._control_endpoint is None:
            raise IoTransferError("No control endpoint")

    def __interface_id_from_descriptors(self) -> int:
        """
        Returns the first interface of this port's interface association, -1 if there is none
        """
        descriptors = split_descriptors(self._connection.raw_descriptors())
        iad_count = 0
        for descriptor in descriptors:
            if (len(descriptor) == 8 and descriptor[1] == USB_DT_INTERFACE_ASSOCIATION
                    and descriptor[4] == USB_CLASS_COMM and descriptor[5] == USB_SUBCLASS_ACM):
                if iad_count == self._port_number:
                    return descriptor[2]
                iad_count += 1
        return -1

    def __open_interface(self) -> None:
        logger.debug("%r: claiming interfaces, count=%d", self, self._device.interface_count)

        self._control_interface = None
        self._data_interface = None
        first_id = self.__interface_id_from_descriptors()
        if first_id >= 0:
            for interface in self._device.interfaces:
                if interface.id not in (first_id, first_id + 1):
                    continue
                if _is_acm_control_interface(interface):
                    self._control_index = interface.id
                    self._control_interface = interface
                if interface.interface_class == USB_CLASS_CDC_DATA:
                    self._data_interface = interface

        if self._control_interface is None or self._data_interface is None:
            logger.debug("%r: no IAD fallback", self)
            control_interface_count = 0
            data_interface_count = 0
            for interface in self._device.interfaces:
                if _is_acm_control_interface(interface):
                    if control_interface_count == self._port_number:
                        self._control_index = interface.id
                        self._control_interface = interface
                    control_interface_count += 1
                if interface.interface_class == USB_CLASS_CDC_DATA:
                    if data_interface_count == self._port_number:
                        self._data_interface = interface
                    data_interface_count += 1

        if self._control_interface is None:
            raise IoTransferError("No control interface")
        logger.debug("%r: control iface=%s", self, self._control_interface)

        if not self._claim_interface(self._control_interface):
            raise IoTransferError("Could not claim control interface")

        if self._control_interface.endpoint_count == 0:
            raise IoTransferError("Invalid control endpoint")
        self._control_endpoint = self._control_interface.get_endpoint(0)
        if self._control_endpoint.direction != USB_DIR_IN or self._control_endpoint.type != USB_ENDPOINT_XFER_INT:
            raise IoTransferError("Invalid control endpoint")

        if self._data_interface is None:
            raise IoTransferError("No data interface")
        logger.debug("%r: data iface=%s", self, self._data_interface)

        if not self._claim_interface(self._data_interface):
            raise IoTransferError("Could not claim data interface")

        self._read_endpoint = self._data_interface.find_endpoint(USB_DIR_IN)
        self._write_endpoint = self._data_interface.find_endpoint(USB_DIR_OUT)

    def __send_acm_control_message(self, request: int, value: int, data: Optional[bytes] = None) -> int:
        length = self._connection.control_transfer(
            CDC_REQTYPE_ACM, request, value, self._control_index,
            data, 0 if data is None else len(data), CDC_USB_WRITE_TIMEOUT)
        if length < 0:
            raise IoTransferError("controlTransfer failed")
        return length

    def _set_parameters(self, config: SerialLineConfig) -> None:
        line_coding = struct.pack("<IBBB", config.baud_rate, CDC_STOP_BITS[config.stop_bits],
                                  config.parity.value, config.data_bits.value)
        self.__send_acm_control_message(CDC_SET_LINE_CODING, 0, line_coding)

    def get_supported_control_lines(self) -> Set[ControlLine]:
        return {ControlLine.RTS, ControlLine.DTR}

    def _get_control_lines(self) -> Set[ControlLine]:
        lines = set()
        if self._rts:
            lines.add(ControlLine.RTS)
        if self._dtr:
            lines.add(ControlLine.DTR)
        return lines

    def _get_dtr(self) -> bool:
        return self._dtr

    def _get_rts(self) -> bool:
        return self._rts

    def _set_dtr(self, value: bool) -> None:
        self._dtr = value
        self.__set_dtr_rts()

    def _set_rts(self, value: bool) -> None:
        self._rts = value
        self.__set_dtr_rts()

    def __set_dtr_rts(self) -> None:
        value = (CDC_CONTROL_LINE_RTS if self._rts else 0) | (CDC_CONTROL_LINE_DTR if self._dtr else 0)
        self.__send_acm_control_message(CDC_SET_CONTROL_LINE_STATE, value)

    def set_break(self, value: bool) -> None:
        self._test_connection(False)
        self.__send_acm_control_message(CDC_SEND_BREAK, 0xFFFF if value else 0)
