"""
Exceptions raised by usbhostserial ports, drivers and the I/O manager
"""


class UsbSerialError(Exception):
    """ Base exception for usbhostserial """


class InvalidArgumentError(UsbSerialError, ValueError):
    """ A value outside of the documented domain was passed """


class UnsupportedOperationError(UsbSerialError):
    """ The value is well formed, but this chip or port can't do it """


class IoTransferError(UsbSerialError, IOError):
    """
    A USB transfer failed or came back short
    bytes_transferred holds how much was written before the failure
    """

    def __init__(self, message: str = "", bytes_transferred: int = 0):
        super().__init__(message)
        self.bytes_transferred = bytes_transferred


class ConnectionClosedError(IoTransferError):
    """ Operation attempted on a port that isn't open """


class SerialTimeoutError(IoTransferError, TimeoutError):
    """ A write couldn't complete within the caller's deadline """


class InvalidStateError(UsbSerialError, RuntimeError):
    """ The I/O manager isn't in a state that allows the call """
