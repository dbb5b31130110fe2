"""
Expose a serial port as a pseudo terminal for usbhostserial,
    * usbpty by lotuspar (https://github.com/lotuspar)
Parts rewritten in Python for usbhostserial!
"""
import logging
import os
import pty
import select
import termios
import threading
import time
from typing import Optional

from .iomanager import DEFAULT_WRITE_TIMEOUT, SerialInputOutputManager, State

logger = logging.getLogger(__name__)

PTY_READ_SIZE = 4096
# how often the pty reader checks for stop() (seconds)
PTY_POLL_INTERVAL = 0.5
# how long to back off while the write buffer is full (seconds)
PTY_WRITE_RETRY_INTERVAL = 0.01
STOP_TIMEOUT = 5


class PtyBridge:
    """
    Pumps bytes between an open port and a pty symlinked at path
    The port's data is serviced by a SerialInputOutputManager, the bridge is its listener
    """

    def __init__(self, port, path: str, read_timeout: int = 0,
                 write_timeout: int = DEFAULT_WRITE_TIMEOUT) -> None:
        self._port = port
        self._path = path
        self._pty_mfd: Optional[int] = None
        self._pty_sfd: Optional[int] = None
        self._running = threading.Event()
        self._thread_pty_read: Optional[threading.Thread] = None
        self._error: Optional[Exception] = None

        self._manager = SerialInputOutputManager(port, self)
        self._manager.set_read_timeout(read_timeout)
        self._manager.set_write_timeout(write_timeout)

    @property
    def manager(self) -> SerialInputOutputManager:
        return self._manager

    @property
    def error(self) -> Optional[Exception]:
        """ Returns the error that stopped the bridge, if any """
        return self._error

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def start(self) -> None:
        # Remove previous (if any) pty before starting
        self.__delete_pty()
        self.__create_pty()
        self._running.set()
        self._manager.start()

        self._thread_pty_read = threading.Thread(
            target=self.__threadloop_pty_read, name="PtyBridge_pty_read", daemon=True)
        self._thread_pty_read.start()
        logger.info("Serving %r on %s", self._port, self._path)

    def wait(self, timeout: float = None) -> bool:
        """ Block until the bridge stops by itself, returns False on timeout """
        end = None if timeout is None else time.monotonic() + timeout
        while self._running.is_set():
            if end is not None and time.monotonic() >= end:
                return False
            self._manager.join(PTY_POLL_INTERVAL)
            if self._manager.get_state() == State.STOPPED:
                self._running.clear()
        return True

    def stop(self) -> None:
        """ Stop pumping, close the port and remove the pty """
        self._running.clear()
        self._manager.stop()
        if self._port.is_open:
            # ends a read blocking without timeout
            self._port.close()
        if not self._manager.join(STOP_TIMEOUT):
            logger.warning("I/O manager didn't stop within %d seconds", STOP_TIMEOUT)
        if self._thread_pty_read is not None:
            self._thread_pty_read.join()
            self._thread_pty_read = None
        self.__delete_pty()
        logger.info("Stopped serving %s", self._path)

    def on_new_data(self, data: bytes) -> None:
        try:
            os.write(self._pty_mfd, data)
        except (OSError, TypeError) as exc:
            # could happen after descriptors are closed
            logger.debug("Dropping %d bytes for pty: %s", len(data), exc)

    def on_run_error(self, exc: Exception) -> None:
        logger.error("Device I/O failed: %s", exc)
        if self._error is None:
            self._error = exc
        self._running.clear()

    def __threadloop_pty_read(self) -> None:
        while self._running.is_set():
            try:
                readable, _, _ = select.select([self._pty_mfd], [], [], PTY_POLL_INTERVAL)
                if not readable:
                    continue
                data = os.read(self._pty_mfd, PTY_READ_SIZE)
            except (OSError, ValueError) as exc:
                # could happen after descriptors are closed
                logger.debug("pty read failed: %s", exc)
                continue
            while self._running.is_set():
                try:
                    self._manager.write_async(data)
                    break
                except BufferError:
                    time.sleep(PTY_WRITE_RETRY_INTERVAL)

    def __create_pty(self) -> None:
        """
        This is mostly / fully taken from the Klipper / Klippy source code:
        https://github.com/Klipper3d/klipper/blob/a709ba43af8edaaa307775ed73cb49fac2b5e550/scripts/avrsim.py#L143
        """
        self._pty_mfd, self._pty_sfd = pty.openpty()
        filename = os.ttyname(self._pty_sfd)
        os.chmod(filename, 0o666)
        os.symlink(filename, self._path)
        tcattr = termios.tcgetattr(self._pty_mfd)
        tcattr[3] = tcattr[3] & ~termios.ECHO
        termios.tcsetattr(self._pty_mfd, termios.TCSAFLUSH, tcattr)

    def __delete_pty(self) -> None:
        if self._pty_sfd is not None:
            os.close(self._pty_sfd)
            self._pty_sfd = None
        if self._pty_mfd is not None:
            os.close(self._pty_mfd)
            self._pty_mfd = None
        try:
            os.unlink(self._path)
        except FileNotFoundError:
            pass
