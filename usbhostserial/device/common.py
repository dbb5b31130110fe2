"""
Line configuration types for usbhostserial,
Inspired / based on:
    the usb-serial-for-android project made in Java,
        * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
        * https://github.com/mik3y/usb-serial-for-android
    the Linux serial port drivers,
        * https://github.com/torvalds/linux/tree/master/drivers/usb/serial
Some parts rewritten in Python for usbhostserial!
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional

from ..errors import InvalidArgumentError


class DataBits(Enum):
    """ Serial port databits value """
    # 5 data bits.
    DATABITS_5 = 5
    # 6 data bits.
    DATABITS_6 = 6
    # 7 data bits.
    DATABITS_7 = 7
    # 8 data bits.
    DATABITS_8 = 8


class StopBits(Enum):
    """ Serial port stopbits value """
    # 1 stop bit.
    STOPBITS_1 = 1
    # 1.5 stop bits.
    STOPBITS_1_5 = 3
    # 2 stop bits.
    STOPBITS_2 = 2


class Parity(Enum):
    """ Serial port parity value """
    # No parity.
    PARITY_NONE = 0
    # Odd parity.
    PARITY_ODD = 1
    # Even parity.
    PARITY_EVEN = 2
    # Mark parity.
    PARITY_MARK = 3
    # Space parity.
    PARITY_SPACE = 4


class ControlLine(Enum):
    """ Modem control lines """
    RTS = "RTS"
    CTS = "CTS"
    DTR = "DTR"
    DSR = "DSR"
    CD = "CD"
    RI = "RI"


ALL_CONTROL_LINES = frozenset(ControlLine)
# baud rates go over the wire as u32
MAX_BAUD_RATE = 0xFFFFFFFF


def _coerce(enum_type, value, what):
    if isinstance(value, enum_type):
        return value
    if isinstance(value, bool):
        raise InvalidArgumentError(f"Invalid {what}: {value!r}")
    if enum_type is StopBits and value == 1.5:
        return StopBits.STOPBITS_1_5
    try:
        return enum_type(value)
    except ValueError:
        raise InvalidArgumentError(f"Invalid {what}: {value!r}") from None


@dataclass(frozen=True)
class SerialLineConfig:
    """
    Baud rate, data bits, stop bits and parity as one unit
    Use create() to build one from raw values
    """
    baud_rate: int
    data_bits: DataBits = DataBits.DATABITS_8
    stop_bits: StopBits = StopBits.STOPBITS_1
    parity: Parity = Parity.PARITY_NONE

    @classmethod
    def create(cls, baud_rate, data_bits=DataBits.DATABITS_8,
               stop_bits=StopBits.STOPBITS_1, parity=Parity.PARITY_NONE) -> "SerialLineConfig":
        """ Validate and normalize a line configuration """
        if isinstance(baud_rate, bool) or not isinstance(baud_rate, int):
            raise InvalidArgumentError(f"Invalid baud rate: {baud_rate!r}")
        if not 0 < baud_rate <= MAX_BAUD_RATE:
            raise InvalidArgumentError(f"Invalid baud rate: {baud_rate}")
        return cls(baud_rate,
                   _coerce(DataBits, data_bits, "data bits"),
                   _coerce(StopBits, stop_bits, "stop bits"),
                   _coerce(Parity, parity, "parity"))


@dataclass(frozen=True)
class PortCapabilities:
    """
    What a port can do, for callers that would otherwise check the driver class
    """
    supported_control_lines: FrozenSet[ControlLine] = field(default_factory=frozenset)
    # second port of a multi-port chip with a reduced feature set
    restricted_port: bool = False
    # None until the port is open and the write endpoint is known
    max_write_chunk: Optional[int] = None
    # False where data bits, stop bits and parity are accepted but not sent to the chip
    line_format_applied: bool = True
    supports_break: bool = False
    supports_purge: bool = False
