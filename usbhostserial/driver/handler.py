"""
Base classes for usbhostserial,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
Parts rewritten in Python for usbhostserial!
"""
import logging
import threading
import time
import weakref
from collections import deque
from typing import Deque, Dict, List, Optional, Set, Tuple

from ..device.common import (ControlLine, DataBits, Parity, PortCapabilities,
                             SerialLineConfig, StopBits)
from ..device.transport import CancelToken, UsbDeviceConnection, UsbRequest
from ..device.usb import UsbDevice, UsbEndpoint, UsbInterface
from ..errors import (ConnectionClosedError, InvalidArgumentError, InvalidStateError, IoTransferError,
                      SerialTimeoutError, UnsupportedOperationError)

logger = logging.getLogger(__name__)

# standard GET_STATUS request, used to tell a timeout from a vanished device
USB_RECIP_DEVICE_IN = 0x80
USB_REQUEST_GET_STATUS = 0
TEST_CONNECTION_TIMEOUT = 200


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class UsbSerialDriver:
    """
    Base class for chip drivers
    A driver is created for one USB device and enumerates its ports right away
    """

    def __init__(self, device: UsbDevice) -> None:
        self._device = device
        self._ports: List["CommonUsbSerialPort"] = []

    @property
    def device(self) -> UsbDevice:
        """ Returns the device this driver was created for """
        return self._device

    @property
    def ports(self) -> List["CommonUsbSerialPort"]:
        """ Returns all ports of the device """
        return list(self._ports)

    @classmethod
    def get_supported_devices(cls) -> Dict[int, Tuple[int, ...]]:
        """ Returns {vendor id: (product id, ...)} handled by this driver """
        return {}


class CommonUsbSerialPort:
    """
    Base class for serial ports
    Keeps the state shared by all chips (endpoints, write buffer, open / closed)
    and leaves the chip protocol to subclasses
    """
    def __init__(self, driver: UsbSerialDriver, device: UsbDevice, port_number: int) -> None:
        self._driver_ref = weakref.ref(driver)
        self._device = device
        self._port_number = port_number

        self._connection: Optional[UsbDeviceConnection] = None
        self._closed = False
        self._read_endpoint: Optional[UsbEndpoint] = None
        self._write_endpoint: Optional[UsbEndpoint] = None
        self._claimed: List[UsbInterface] = []

        self._read_cancel = CancelToken()
        self._read_request: Optional[UsbRequest] = None
        self._read_queue: Optional[Deque[UsbRequest]] = None
        self._read_queue_buffer_count = 0
        self._read_queue_buffer_size = 0

        self._write_buffer_lock = threading.Lock()
        self._write_buffer: Optional[bytearray] = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} device={self._device.name} port={self._port_number}>"

    @property
    def driver(self) -> Optional[UsbSerialDriver]:
        """ Returns the driver that created this port (not owned by the port) """
        return self._driver_ref()

    @property
    def device(self) -> UsbDevice:
        """ Returns the device backing this port """
        return self._device

    @property
    def port_number(self) -> int:
        """ Returns the port number within the device, -1 if unknown """
        return self._port_number

    @property
    def connection(self) -> Optional[UsbDeviceConnection]:
        """ Returns the device connection or None """
        return self._connection

    @property
    def read_endpoint(self) -> Optional[UsbEndpoint]:
        """ Returns the read endpoint or None """
        return self._read_endpoint

    @property
    def write_endpoint(self) -> Optional[UsbEndpoint]:
        """ Returns the write endpoint or None """
        return self._write_endpoint

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    @property
    def serial(self) -> Optional[str]:
        """ Returns the USB serial number string or None """
        if self._connection is None:
            return None
        return self._connection.serial

    @property
    def capabilities(self) -> PortCapabilities:
        """ Returns what this port supports """
        return PortCapabilities(
            supported_control_lines=frozenset(self.get_supported_control_lines()),
            restricted_port=self._is_restricted_port(),
            max_write_chunk=self._write_chunk_size(),
            line_format_applied=self._line_format_applied(),
            supports_break=self._supports_break(),
            supports_purge=self._supports_purge())

    def _is_restricted_port(self) -> bool:
        return False

    def _line_format_applied(self) -> bool:
        return True

    def _supports_break(self) -> bool:
        return False

    def _supports_purge(self) -> bool:
        return False

    def _write_chunk_size(self) -> Optional[int]:
        if self._write_buffer is not None:
            return len(self._write_buffer)
        if self._write_endpoint is not None:
            return self._write_endpoint.max_packet_size
        return None

    def set_write_buffer_size(self, size: int) -> None:
        """
        Sets the size of the chunks writes are split into
        0 or less resets it to the write endpoint's max packet size
        """
        with self._write_buffer_lock:
            if size <= 0:
                if self._write_endpoint is None:
                    self._write_buffer = None
                    return
                size = self._write_endpoint.max_packet_size
            if self._write_buffer is not None and size == len(self._write_buffer):
                return
            self._write_buffer = bytearray(size)

    def set_read_queue(self, buffer_count: int, buffer_size: int = 0) -> None:
        """
        Keep buffer_count reads of buffer_size bytes queued on the read endpoint,
        so no data is lost between two reads without timeout. 0 disables the queue,
        a buffer_size of 0 means the read endpoint's max packet size.

        With the queue enabled, reads need timeout 0 and a length of exactly buffer_size.
        While open, the count can only grow and the size can't change.
        """
        if buffer_count < 0:
            raise InvalidArgumentError(f"Invalid buffer count: {buffer_count}")
        if buffer_size < 0:
            raise InvalidArgumentError(f"Invalid buffer size: {buffer_size}")
        if self._connection is not None:
            if buffer_count < self._read_queue_buffer_count:
                raise InvalidStateError("Cannot reduce buffer count when port is open")
            max_packet_size = self._read_endpoint.max_packet_size
            buffer_size = buffer_size or max_packet_size
            current_size = self._read_queue_buffer_size or max_packet_size
            if self._read_queue_buffer_count != 0 and buffer_size != current_size:
                raise InvalidStateError("Cannot change buffer size when port is open")
            self.__fill_read_queue(buffer_count, buffer_size)
        self._read_queue_buffer_count = buffer_count
        self._read_queue_buffer_size = buffer_size

    def get_read_queue_buffer_count(self) -> int:
        return self._read_queue_buffer_count

    def get_read_queue_buffer_size(self) -> int:
        return self._read_queue_buffer_size

    def __fill_read_queue(self, buffer_count: int, buffer_size: int) -> None:
        if buffer_count == 0:
            return
        if self._read_queue is None:
            self._read_queue = deque()
        while len(self._read_queue) < buffer_count:
            request = self._connection.queue_async_read(self._read_endpoint, buffer_size)
            if request is None:
                raise IoTransferError("Queueing USB request failed")
            self._read_queue.append(request)

    def open(self, connection: UsbDeviceConnection) -> None:
        """
        Open the port on an opened device connection
        Either the port ends up open, or everything claimed so far is released again
        """
        if connection is None:
            raise InvalidArgumentError("Connection is None")
        if self._connection is not None:
            raise IoTransferError("Already open")
        if self._closed:
            raise ConnectionClosedError("Port was closed, create a new driver to reopen")
        self._connection = connection
        self._read_cancel = CancelToken()
        try:
            self._open_int()
            if self._read_endpoint is None or self._write_endpoint is None:
                raise IoTransferError("Could not get read & write endpoints")
            self.set_read_queue(self._read_queue_buffer_count, self._read_queue_buffer_size)
        except BaseException:
            self._teardown()
            raise
        logger.debug("%r: opened, read=0x%02x write=0x%02x", self,
                     self._read_endpoint.address, self._write_endpoint.address)

    def close(self) -> None:
        """
        Close the port, cancelling a pending read first
        A closed port can't be opened again
        """
        if self._connection is None:
            raise ConnectionClosedError("Already closed")
        self._closed = True
        self._teardown()
        logger.debug("%r: closed", self)

    def _teardown(self) -> None:
        self._read_cancel.cancel()
        request = self._read_request
        if request is not None:
            self._connection.cancel_async(request)
            request.wait_done(1.0)
        if self._read_queue is not None:
            # handle close() reaps the cancelled transfers
            for request in self._read_queue:
                self._connection.cancel_async(request)
            self._read_queue = None
        try:
            self._close_int()
        except Exception as exc:
            logger.debug("%r: close failed: %s", self, exc)
        for interface in reversed(self._claimed):
            self._connection.release_interface(interface)
        self._claimed = []
        try:
            self._connection.close()
        finally:
            self._connection = None

    def _claim_interface(self, interface: UsbInterface) -> bool:
        """ Claim an interface, remembering it so close() releases it """
        if not self._connection.claim_interface(interface, True):
            return False
        self._claimed.append(interface)
        return True

    def _open_int(self) -> None:
        """
        Needs to be overridden!
        Should claim interfaces, set _read_endpoint & _write_endpoint
        and run the chip bring-up
        """
        raise NotImplementedError

    def _close_int(self) -> None:
        """ Chip specific teardown, interfaces are released afterwards """

    def _test_connection(self, full: bool, message: str = "USB get_status request failed") -> None:
        """
        Raise if the port is closed
        With full, also ask the device for its status to see if it's still there
        """
        if self._connection is None:
            raise ConnectionClosedError("Connection closed")
        if not full:
            return
        buf = bytearray(2)
        result = self._connection.control_transfer(
            USB_RECIP_DEVICE_IN, USB_REQUEST_GET_STATUS, 0, 0, buf, len(buf), TEST_CONNECTION_TIMEOUT)
        if result < 0:
            raise IoTransferError(message)

    def read(self, dest: bytearray, timeout: int = 0, length: int = None) -> int:
        """
        Read into dest, returns the number of bytes read
        A timeout of 0 waits until data arrives or the port is closed
        """
        if length is None:
            length = len(dest)
        return self._read(dest, length, timeout, True)

    def _read(self, dest: bytearray, length: int, timeout: int, test_connection: bool) -> int:
        self._test_connection(False)
        if length <= 0:
            raise InvalidArgumentError("Read length too small")
        length = min(length, len(dest))
        if timeout != 0:
            if self._read_queue_buffer_count:
                raise InvalidStateError("Cannot use timeout != 0 if the read queue is enabled")
            end = monotonic_ms() + timeout
            nread = self._connection.bulk_transfer(self._read_endpoint, dest, length, timeout)
            if nread == -1 and test_connection:
                self._test_connection(monotonic_ms() < end)
        else:
            if self._read_queue_buffer_count:
                if length != self._read_queue_buffer_size:
                    raise InvalidStateError("Cannot use a different length if the read queue is enabled")
                request = self._read_queue.popleft()
            else:
                request = self._connection.queue_async_read(self._read_endpoint, length)
                if request is None:
                    raise IoTransferError("Queueing USB request failed")
            self._read_request = request
            try:
                nread = self._connection.wait_async(request, self._read_cancel)
            finally:
                self._read_request = None
            if self._read_cancel.cancelled:
                raise ConnectionClosedError("Read cancelled, port closed")
            if nread < 0:
                raise IoTransferError("Waiting for USB request failed")
            dest[:nread] = request.data
            if self._read_queue is not None:
                self.__fill_read_queue(self._read_queue_buffer_count, self._read_queue_buffer_size)
            if nread == 0 and test_connection:
                # an empty completion is what a disconnect looks like
                self._test_connection(True)
        return max(nread, 0)

    def write(self, src: bytes, timeout: int = 0) -> int:
        """
        Write all of src, split into chunks of the write buffer size
        Raises with bytes_transferred set if a chunk fails
        """
        offset = 0
        length = len(src)
        start = monotonic_ms()
        self._test_connection(False)
        while offset < length:
            with self._write_buffer_lock:
                if self._write_buffer is None:
                    self._write_buffer = bytearray(self._write_endpoint.max_packet_size)
                request_length = min(length - offset, len(self._write_buffer))
                self._write_buffer[:request_length] = src[offset:offset + request_length]
                if timeout == 0 or offset == 0:
                    request_timeout = timeout
                else:
                    request_timeout = start + timeout - monotonic_ms()
                    if request_timeout == 0:
                        request_timeout = -1
                if request_timeout < 0:
                    actual_length = -2
                else:
                    actual_length = self._connection.bulk_transfer(
                        self._write_endpoint, memoryview(self._write_buffer)[:request_length],
                        request_length, request_timeout)
            elapsed = monotonic_ms() - start
            if actual_length <= 0:
                message = (f"Error writing {request_length} bytes at offset {offset} "
                           f"of total {length} after {elapsed} msec, rc={actual_length}")
                if timeout != 0:
                    # a vanished device raises a plain IoTransferError here instead
                    self._test_connection(elapsed < timeout, message)
                    raise SerialTimeoutError(message, offset)
                raise IoTransferError(message, offset)
            offset += actual_length
        return offset

    def set_parameters(self, baud_rate: int, data_bits=DataBits.DATABITS_8,
                       stop_bits=StopBits.STOPBITS_1, parity=Parity.PARITY_NONE) -> None:
        """ Set baud rate, data bits, stop bits and parity """
        config = SerialLineConfig.create(baud_rate, data_bits, stop_bits, parity)
        self._test_connection(False)
        self._set_parameters(config)

    def _set_parameters(self, config: SerialLineConfig) -> None:
        raise UnsupportedOperationError(f"{type(self).__name__} can't set line parameters")

    def get_supported_control_lines(self) -> Set[ControlLine]:
        """ Returns the control lines this port has """
        return set()

    def get_control_lines(self) -> Set[ControlLine]:
        """ Returns the control lines that are currently set """
        self._test_connection(False)
        return self._get_control_lines()

    def _get_control_lines(self) -> Set[ControlLine]:
        return set()

    def _has_line(self, line: ControlLine) -> bool:
        if line not in self.get_supported_control_lines():
            return False
        self._test_connection(False)
        return True

    def get_cd(self) -> bool:
        return self._has_line(ControlLine.CD) and self._get_cd()

    def get_cts(self) -> bool:
        return self._has_line(ControlLine.CTS) and self._get_cts()

    def get_dsr(self) -> bool:
        return self._has_line(ControlLine.DSR) and self._get_dsr()

    def get_ri(self) -> bool:
        return self._has_line(ControlLine.RI) and self._get_ri()

    def get_dtr(self) -> bool:
        return self._has_line(ControlLine.DTR) and self._get_dtr()

    def get_rts(self) -> bool:
        return self._has_line(ControlLine.RTS) and self._get_rts()

    def set_dtr(self, value: bool) -> None:
        if self._has_line(ControlLine.DTR):
            self._set_dtr(value)
        else:
            logger.debug("%r: no DTR line, ignoring", self)

    def set_rts(self, value: bool) -> None:
        if self._has_line(ControlLine.RTS):
            self._set_rts(value)
        else:
            logger.debug("%r: no RTS line, ignoring", self)

    def _get_cd(self) -> bool:
        return ControlLine.CD in self.get_control_lines()

    def _get_cts(self) -> bool:
        return ControlLine.CTS in self.get_control_lines()

    def _get_dsr(self) -> bool:
        return ControlLine.DSR in self.get_control_lines()

    def _get_ri(self) -> bool:
        return ControlLine.RI in self.get_control_lines()

    def _get_dtr(self) -> bool:
        return ControlLine.DTR in self.get_control_lines()

    def _get_rts(self) -> bool:
        return ControlLine.RTS in self.get_control_lines()

    def _set_dtr(self, value: bool) -> None:
        raise NotImplementedError

    def _set_rts(self, value: bool) -> None:
        raise NotImplementedError

    def purge_hw_buffers(self, purge_write_buffers: bool, purge_read_buffers: bool) -> bool:
        """
        Flush the chip's buffers
        Returns False if the chip can't do that
        """
        return False

    def set_break(self, value: bool) -> None:
        """ Set or clear the break condition """
        raise UnsupportedOperationError(f"{type(self).__name__} can't send break")
