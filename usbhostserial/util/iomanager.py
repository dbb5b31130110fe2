"""
Threaded read / write service for an open port,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
Parts rewritten in Python for usbhostserial!
"""
import logging
import os
import threading
from enum import Enum
from typing import Callable, Optional

from ..errors import ConnectionClosedError, InvalidArgumentError, InvalidStateError

logger = logging.getLogger(__name__)

DEFAULT_WRITE_BUFFER_SIZE = 4096
# msec, writes from the manager never block forever
DEFAULT_WRITE_TIMEOUT = 1000
# how often an idle write loop checks for stop() (seconds)
WRITE_POLL_INTERVAL = 0.1


class State(Enum):
    STOPPED = 0
    STARTING = 1
    RUNNING = 2
    STOPPING = 3


class CallbackListener:
    """
    Listener built from two callables
    A listener is any object with on_new_data(data: bytes) and on_run_error(exc: Exception)
    """

    def __init__(self, on_new_data: Callable[[bytes], None] = None,
                 on_run_error: Callable[[Exception], None] = None) -> None:
        self._on_new_data = on_new_data
        self._on_run_error = on_run_error

    def on_new_data(self, data: bytes) -> None:
        if self._on_new_data is not None:
            self._on_new_data(data)

    def on_run_error(self, exc: Exception) -> None:
        if self._on_run_error is not None:
            self._on_run_error(exc)


class SerialInputOutputManager:
    """
    Services a port with a read thread and a write thread

    Received data goes to listener.on_new_data on the read thread, data passed
    to write_async is written by the write thread in submission order.
    With the default read timeout of 0, close the port after stop() to end the blocking read.
    """

    def __init__(self, port, listener=None) -> None:
        self._port = port
        self._listener = listener
        self._listener_lock = threading.Lock()

        self._state = State.STOPPED
        self._state_condition = threading.Condition()
        self._ready_count = 0
        self._running_count = 0

        self._read_timeout = 0
        self._write_timeout = DEFAULT_WRITE_TIMEOUT
        self._thread_priority: Optional[int] = None

        self._read_buffer_lock = threading.Lock()
        self._read_buffer = bytearray(port.read_endpoint.max_packet_size)
        self._read_buffer_count = 1

        self._write_condition = threading.Condition()
        self._write_buffer = bytearray()
        self._write_buffer_size = DEFAULT_WRITE_BUFFER_SIZE

    def set_listener(self, listener) -> None:
        with self._listener_lock:
            self._listener = listener

    def get_listener(self):
        with self._listener_lock:
            return self._listener

    def set_thread_priority(self, priority: Optional[int]) -> None:
        """
        Set the niceness applied to both loop threads, None keeps the default
        Only possible while stopped
        """
        with self._state_condition:
            if self._state != State.STOPPED:
                raise InvalidStateError("Thread priority only configurable before the manager is started")
            self._thread_priority = priority

    def get_thread_priority(self) -> Optional[int]:
        return self._thread_priority

    def set_read_timeout(self, timeout: int) -> None:
        """ Read timeout in msec, 0 blocks until data arrives or the port is closed """
        if timeout < 0:
            raise InvalidArgumentError(f"Invalid read timeout: {timeout}")
        self._read_timeout = timeout

    def get_read_timeout(self) -> int:
        return self._read_timeout

    def set_write_timeout(self, timeout: int) -> None:
        """ Write timeout in msec, must be positive """
        if timeout <= 0:
            raise InvalidArgumentError(f"Invalid write timeout: {timeout}")
        self._write_timeout = timeout

    def get_write_timeout(self) -> int:
        return self._write_timeout

    def set_read_buffer_size(self, size: int) -> None:
        """ Replaces the read buffer, a read already in progress finishes with the old one """
        if size <= 0:
            raise InvalidArgumentError(f"Invalid read buffer size: {size}")
        if self._read_buffer_count > 1 and self.get_state() != State.STOPPED:
            raise InvalidStateError("Read buffer size is fixed while reads are queued")
        with self._read_buffer_lock:
            if size != len(self._read_buffer):
                self._read_buffer = bytearray(size)

    def get_read_buffer_size(self) -> int:
        with self._read_buffer_lock:
            return len(self._read_buffer)

    def set_read_buffer_count(self, count: int) -> None:
        """
        Number of reads kept queued on the port, 1 queues each read when it is issued
        More than 1 needs a read timeout of 0, only possible while stopped
        """
        if count < 1:
            raise InvalidArgumentError(f"Invalid read buffer count: {count}")
        with self._state_condition:
            if self._state != State.STOPPED:
                raise InvalidStateError("Read buffer count only configurable before the manager is started")
            self._read_buffer_count = count

    def get_read_buffer_count(self) -> int:
        return self._read_buffer_count

    def set_write_buffer_size(self, size: int) -> None:
        """ Sets the write buffer capacity, queued bytes are kept """
        with self._write_condition:
            if size <= 0 or size < len(self._write_buffer):
                raise InvalidArgumentError(
                    f"Invalid write buffer size: {size}, {len(self._write_buffer)} bytes queued")
            self._write_buffer_size = size

    def get_write_buffer_size(self) -> int:
        return self._write_buffer_size

    def write_async(self, data: bytes) -> None:
        """
        Queue data for the write thread
        Raises BufferError if it doesn't fit into the write buffer
        """
        with self._write_condition:
            if len(self._write_buffer) + len(data) > self._write_buffer_size:
                raise BufferError(
                    f"Write buffer overflow: {len(self._write_buffer)} + {len(data)} > {self._write_buffer_size}")
            self._write_buffer += data
            self._write_condition.notify()

    def get_state(self) -> State:
        with self._state_condition:
            return self._state

    def start(self) -> None:
        """ Start the read and write threads, returns once both are running """
        with self._state_condition:
            if self._state != State.STOPPED:
                raise InvalidStateError("already started")
            if self._read_buffer_count > 1:
                if self._read_timeout != 0:
                    raise InvalidStateError("Queued reads need a read timeout of 0")
                self._port.set_read_queue(self._read_buffer_count, self.get_read_buffer_size())
            self._state = State.STARTING
            self._ready_count = 0
            self._running_count = 2

        name = type(self).__name__
        threading.Thread(target=self.__run, args=(self.__step_read, "read"),
                         name=f"{name}_read", daemon=True).start()
        threading.Thread(target=self.__run, args=(self.__step_write, "write"),
                         name=f"{name}_write", daemon=True).start()

        with self._state_condition:
            self._state_condition.wait_for(lambda: self._ready_count == 2)
            if self._state == State.STARTING:
                self._state = State.RUNNING

    def stop(self) -> None:
        """
        Ask both threads to stop, ignored unless running
        The state turns STOPPED once both threads have finished
        """
        with self._state_condition:
            if self._state != State.RUNNING:
                return
            logger.info("Stop requested")
            self._state = State.STOPPING
        with self._write_condition:
            self._write_condition.notify_all()

    def join(self, timeout: float = None) -> bool:
        """ Wait for STOPPED, returns False on timeout """
        with self._state_condition:
            return self._state_condition.wait_for(lambda: self._state == State.STOPPED, timeout)

    def __is_active(self) -> bool:
        with self._state_condition:
            return self._state in (State.STARTING, State.RUNNING)

    def __apply_thread_priority(self) -> None:
        if self._thread_priority is None or not hasattr(os, "setpriority"):
            return
        try:
            os.setpriority(os.PRIO_PROCESS, threading.get_native_id(), self._thread_priority)
        except OSError as exc:
            logger.warning("Could not set thread priority %d: %s", self._thread_priority, exc)

    def __run(self, step: Callable[[], None], name: str) -> None:
        with self._state_condition:
            self._ready_count += 1
            self._state_condition.notify_all()
        logger.info("Running %s ...", name)
        try:
            self.__apply_thread_priority()
            while self.__is_active():
                step()
            logger.info("Stopping %s, state=%s", name, self.get_state().name)
        except Exception as exc:
            self.__handle_run_error(exc, name)
        finally:
            with self._state_condition:
                self._running_count -= 1
                if self._running_count == 0:
                    self._state = State.STOPPED
                self._state_condition.notify_all()
            with self._write_condition:
                self._write_condition.notify_all()

    def __handle_run_error(self, exc: Exception, name: str) -> None:
        with self._state_condition:
            stopping = self._state == State.STOPPING
            if self._state in (State.STARTING, State.RUNNING):
                self._state = State.STOPPING

        # closing the port is how a blocking read is ended after stop()
        if stopping and (isinstance(exc, ConnectionClosedError) or not self._port.is_open):
            logger.info("Stopping %s, port closed: %s", name, exc)
            return

        logger.warning("Run ending due to exception: %s", exc, exc_info=True)
        listener = self.get_listener()
        if listener is None:
            return
        try:
            listener.on_run_error(exc)
        except Exception:
            logger.exception("Exception in on_run_error")

    def __step_read(self) -> None:
        with self._read_buffer_lock:
            buffer = self._read_buffer
        length = self._port.read(buffer, self._read_timeout)
        if length <= 0:
            return
        data = bytes(buffer[:length])
        logger.debug("Read data len=%d", length)
        listener = self.get_listener()
        if listener is None:
            return
        try:
            listener.on_new_data(data)
        except Exception:
            logger.exception("Exception in on_new_data")

    def __step_write(self) -> None:
        with self._write_condition:
            if not self._write_buffer:
                self._write_condition.wait(WRITE_POLL_INTERVAL)
            if not self._write_buffer:
                return
            data = bytes(self._write_buffer)
            self._write_buffer.clear()
        logger.debug("Writing data len=%d", len(data))
        self._port.write(data, self._write_timeout)
