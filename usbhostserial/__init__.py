"""
usbhostserial
Serial port drivers for USB to serial chips, running on the host's libusb
"""
from .device.common import ControlLine, DataBits, Parity, PortCapabilities, SerialLineConfig, StopBits
from .device.transport import UsbDeviceConnection
from .device.usb import UsbDevice
from .driver.prober import ProbeTable, UsbSerialProber, get_default_prober
from .errors import (ConnectionClosedError, InvalidArgumentError, InvalidStateError, IoTransferError,
                     SerialTimeoutError, UnsupportedOperationError, UsbSerialError)
from .util.iomanager import CallbackListener, SerialInputOutputManager, State

__version__ = "1.0.0"
