"""
USB transport for usbhostserial, backed by libusb1 (usb1)

Calls return the number of bytes transferred, or a negative number on
failure, so drivers can check results the same way whatever failed.
"""
import logging
import threading
from typing import Optional, Union

import usb1

from .usb import (UsbDevice, UsbEndpoint, UsbInterface, USB_DIR_IN,
                  USB_ENDPOINT_XFER_INT, USB_DT_CONFIG, USB_DT_DEVICE)

logger = logging.getLogger(__name__)

REQUEST_GET_DESCRIPTOR = 0x06
DEVICE_DESCRIPTOR_LENGTH = 18
CONFIG_DESCRIPTOR_HEADER_LENGTH = 9
DESCRIPTOR_TIMEOUT = 1000

# how long one libusb event pump waits before checking for cancellation (seconds)
EVENT_POLL_INTERVAL = 0.1

Buffer = Union[bytes, bytearray, memoryview]


class CancelToken:
    """
    Cancels a blocking async wait from another thread
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class UsbRequest:
    """
    A queued asynchronous read, created by UsbDeviceConnection.queue_async_read
    """

    def __init__(self, transfer: usb1.USBTransfer, endpoint: UsbEndpoint, length: int):
        self.endpoint = endpoint
        self.length = length
        self.status: Optional[int] = None
        self.data = b""
        self._transfer = transfer
        self._done = threading.Event()
        self._cancel_requested = False

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait_done(self, timeout: float = None) -> bool:
        return self._done.wait(timeout)

    def _callback(self, transfer: usb1.USBTransfer) -> None:
        self.status = transfer.getStatus()
        if self.status == usb1.TRANSFER_COMPLETED:
            self.data = bytes(transfer.getBuffer()[:transfer.getActualLength()])
        self._done.set()

    def _cancel(self) -> None:
        if self.done or self._cancel_requested:
            return
        self._cancel_requested = True
        try:
            self._transfer.cancel()
        except usb1.USBErrorNotFound:
            # already completed, the callback is on its way
            pass

    def _close(self) -> None:
        if self.done:
            self._transfer.close()


class UsbDeviceConnection:
    """
    An opened USB device: interface claiming, control / bulk / interrupt
    transfers and queued reads
    """

    def __init__(self, context: usb1.USBContext, handle: usb1.USBDeviceHandle):
        self._context = context
        self._handle = handle
        self._lock = threading.Lock()

    @classmethod
    def open(cls, context: usb1.USBContext, device: usb1.USBDevice) -> "UsbDeviceConnection":
        """ Open a usb1 device and wrap the handle """
        return cls(context, device.open())

    @property
    def handle(self) -> usb1.USBDeviceHandle:
        """ Returns the usb1 device handle or None once closed """
        return self._handle

    @property
    def serial(self) -> Optional[str]:
        """ Returns the USB serial number string or None """
        try:
            return self._handle.getSerialNumber()
        except usb1.USBError:
            return None

    def claim_interface(self, interface: UsbInterface, force: bool = True) -> bool:
        """ Claim an interface, detaching any kernel driver bound to it when forced """
        if force:
            try:
                if self._handle.kernelDriverActive(interface.id):
                    self._handle.detachKernelDriver(interface.id)
            except usb1.USBErrorNotSupported:
                pass
            except usb1.USBError as exc:
                logger.debug("detaching kernel driver from interface %d failed: %s", interface.id, exc)
        try:
            self._handle.claimInterface(interface.id)
            if interface.alternate_setting:
                self._handle.setInterfaceAltSetting(interface.id, interface.alternate_setting)
        except usb1.USBError as exc:
            logger.debug("claiming interface %d failed: %s", interface.id, exc)
            return False
        return True

    def release_interface(self, interface: UsbInterface) -> bool:
        try:
            self._handle.releaseInterface(interface.id)
        except usb1.USBError as exc:
            logger.debug("releasing interface %d failed: %s", interface.id, exc)
            return False
        return True

    def control_transfer(self, request_type: int, request: int, value: int, index: int,
                         buffer: Optional[Buffer], length: int, timeout: int) -> int:
        """
        Run a control transfer
        IN requests fill buffer, OUT requests send buffer[:length]
        """
        try:
            if request_type & USB_DIR_IN:
                data = self._handle.controlRead(request_type, request, value, index, length, timeout)
                buffer[:len(data)] = data
                return len(data)
            data = bytes(buffer[:length]) if buffer is not None else b""
            return self._handle.controlWrite(request_type, request, value, index, data, timeout)
        except usb1.USBError as exc:
            logger.debug("control transfer 0x%02x/0x%02x value=0x%04x index=0x%04x failed: %s",
                         request_type, request, value, index, exc)
            return -1

    def bulk_transfer(self, endpoint: UsbEndpoint, buffer: Buffer, length: int, timeout: int) -> int:
        """
        Run a bulk transfer (interrupt transfer on interrupt endpoints)
        Direction comes from the endpoint address
        """
        interrupt = endpoint.type == USB_ENDPOINT_XFER_INT
        if endpoint.direction == USB_DIR_IN:
            read = self._handle.interruptRead if interrupt else self._handle.bulkRead
            try:
                data = read(endpoint.address, length, timeout)
            except usb1.USBErrorTimeout as exc:
                data = getattr(exc, "received", b"")
                if not data:
                    return -1
            except usb1.USBError as exc:
                logger.debug("read from endpoint 0x%02x failed: %s", endpoint.address, exc)
                return -1
            buffer[:len(data)] = data
            return len(data)

        write = self._handle.interruptWrite if interrupt else self._handle.bulkWrite
        try:
            return write(endpoint.address, bytes(buffer[:length]), timeout)
        except usb1.USBErrorTimeout as exc:
            transferred = getattr(exc, "transferred", 0)
            return transferred if transferred > 0 else -1
        except usb1.USBError as exc:
            logger.debug("write to endpoint 0x%02x failed: %s", endpoint.address, exc)
            return -1

    def queue_async_read(self, endpoint: UsbEndpoint, length: int) -> Optional[UsbRequest]:
        """ Submit a read without timeout, returns None when submitting failed """
        transfer = self._handle.getTransfer()
        request = UsbRequest(transfer, endpoint, length)
        try:
            if endpoint.type == USB_ENDPOINT_XFER_INT:
                transfer.setInterrupt(endpoint.address, length, callback=request._callback)
            else:
                transfer.setBulk(endpoint.address, length, callback=request._callback)
            transfer.submit()
        except usb1.USBError as exc:
            logger.debug("queueing read on endpoint 0x%02x failed: %s", endpoint.address, exc)
            transfer.close()
            return None
        return request

    def wait_async(self, request: UsbRequest, cancel_token: CancelToken = None) -> int:
        """
        Block until a queued read finishes
        Returns the bytes read, or -1 if it failed or the token cancelled it
        """
        while not request.done:
            if cancel_token is not None and cancel_token.cancelled:
                request._cancel()
            try:
                self._context.handleEventsTimeout(EVENT_POLL_INTERVAL)
            except usb1.USBErrorInterrupted:
                continue
            except usb1.USBError as exc:
                logger.debug("handling USB events failed: %s", exc)
                request._cancel()
                if not request.wait_done(EVENT_POLL_INTERVAL):
                    return -1
        request._close()
        if request.status != usb1.TRANSFER_COMPLETED:
            return -1
        return len(request.data)

    def cancel_async(self, request: UsbRequest) -> None:
        request._cancel()

    def raw_descriptors(self) -> Optional[bytes]:
        """
        Returns the device descriptor followed by the whole active
        configuration descriptor, or None if they couldn't be read
        """
        try:
            device = self._handle.controlRead(
                USB_DIR_IN, REQUEST_GET_DESCRIPTOR, USB_DT_DEVICE << 8, 0,
                DEVICE_DESCRIPTOR_LENGTH, DESCRIPTOR_TIMEOUT)
            header = self._handle.controlRead(
                USB_DIR_IN, REQUEST_GET_DESCRIPTOR, USB_DT_CONFIG << 8, 0,
                CONFIG_DESCRIPTOR_HEADER_LENGTH, DESCRIPTOR_TIMEOUT)
            if len(header) < 4:
                return bytes(device)
            total_length = header[2] | header[3] << 8
            config = self._handle.controlRead(
                USB_DIR_IN, REQUEST_GET_DESCRIPTOR, USB_DT_CONFIG << 8, 0,
                total_length, DESCRIPTOR_TIMEOUT)
        except usb1.USBError as exc:
            logger.debug("reading raw descriptors failed: %s", exc)
            return None
        return bytes(device) + bytes(config)

    def get_device(self) -> UsbDevice:
        return UsbDevice.from_usb1(self._handle.getDevice())

    def close(self) -> None:
        with self._lock:
            if self._handle is None:
                return
            handle, self._handle = self._handle, None
        handle.close()
