"""
File-like access to a serial port
"""
import io
import logging
from typing import Optional

from ..device.common import DataBits, Parity, StopBits

logger = logging.getLogger(__name__)

STREAM_DEFAULT_BAUD_RATE = 115200
STREAM_WRITE_TIMEOUT = 1000


class SerialPortStream(io.RawIOBase):
    """
    Opens a port on a connection and wraps it as a raw binary stream
    Closing the stream closes the port

    Reads go through a packet buffer of at least the read endpoint's max packet size,
    so callers can ask for fewer bytes than a chip needs per transfer.
    When the read timeout passes without data, read() returns None as a
    non-blocking stream does, an empty result would mean end of stream.
    """

    def __init__(self, port, connection, baud_rate: int = STREAM_DEFAULT_BAUD_RATE,
                 data_bits=DataBits.DATABITS_8, stop_bits=StopBits.STOPBITS_1,
                 parity=Parity.PARITY_NONE, read_timeout: int = 0) -> None:
        super().__init__()
        self._port = port
        self._read_timeout = read_timeout
        self._pending = bytearray()
        port.open(connection)
        try:
            port.set_parameters(baud_rate, data_bits, stop_bits, parity)
        except Exception:
            port.close()
            raise
        logger.debug("%r: stream opened at %d baud", port, baud_rate)

    @property
    def port(self):
        return self._port

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return True

    def readinto(self, buffer) -> Optional[int]:
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        if len(buffer) == 0:
            return 0
        if not self._pending:
            packet = bytearray(max(len(buffer), self._port.read_endpoint.max_packet_size))
            count = self._port.read(packet, self._read_timeout)
            if count == 0:
                return None
            self._pending = packet[:count]
        count = min(len(buffer), len(self._pending))
        buffer[:count] = self._pending[:count]
        del self._pending[:count]
        return count

    def write(self, data) -> int:
        if self.closed:
            raise ValueError("I/O operation on closed stream")
        data = bytes(data)
        if not data:
            return 0
        return self._port.write(data, STREAM_WRITE_TIMEOUT)

    def close(self) -> None:
        if not self.closed and self._port.is_open:
            self._port.close()
        super().close()
