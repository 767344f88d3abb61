# core/serial_channel.py

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Optional

import serial

from core.constants import COMMAND_TERMINATOR, RESPONSE_TERMINATOR
from core.errors import TransportError, ResponseTimeout, ChannelBusy

logger = logging.getLogger(__name__)


class PortReader(threading.Thread):
    """
    Pulls whatever the port has waiting and hands it to `on_bytes`.
    `on_error` is called once if the port fails while the reader is live.
    """
    def __init__(self, port, on_bytes: Callable[[bytes], None],
                 on_error: Optional[Callable[[Exception], None]] = None):
        super().__init__(name=f"PortReader[{getattr(port, 'port', '?')}]", daemon=True)
        self.port = port
        self.on_bytes = on_bytes
        self.on_error = on_error
        self._stop_evt = threading.Event()

    def stop(self):
        self._stop_evt.set()

    def run(self):
        while not self._stop_evt.is_set():
            try:
                # read() returns after port.timeout with b"" when nothing arrived
                data = self.port.read(self.port.in_waiting or 1)
            except (serial.SerialException, OSError) as e:
                if not self._stop_evt.is_set():
                    logger.error("Serial read failed on %s: %s", getattr(self.port, "port", "?"), e)
                    if self.on_error is not None:
                        self.on_error(e)
                return
            if data:
                self.on_bytes(bytes(data))


class Transaction:
    """Proof of holding the channel. Only a live Transaction may exchange commands."""
    def __init__(self, channel: "SerialCommandChannel"):
        self._channel = channel
        self._live = True

    def send(self, command: str) -> str:
        if not self._live:
            raise TransportError("Transaction already released")
        return self._channel._exchange(command)

    def _release(self):
        self._live = False


class SerialCommandChannel:
    """
    Synchronous command/response on top of an asynchronous serial byte stream.

    A command is written with a CR terminator; the reply is everything the
    device sends up to the '>' prompt. The response slot holds exactly one
    reply, so exactly one transaction may be outstanding (see transaction()).
    """
    def __init__(self, port,
                 terminator: str = COMMAND_TERMINATOR,
                 end_of_response: bytes = RESPONSE_TERMINATOR,
                 timeout: Optional[float] = None):
        self._port = port
        self._terminator = terminator
        self._end = end_of_response[0]
        self.timeout = timeout

        self._cond = threading.Condition()
        self._line = bytearray()
        self._response: Optional[str] = None
        self._failure: Optional[Exception] = None
        self._closed = False

        self._flight = threading.Lock()
        self._reader: Optional[PortReader] = None

    # ---------------- lifecycle ----------------

    def start(self):
        """Attach the byte handler to the port."""
        if self._reader is None:
            self._reader = PortReader(self._port, self.feed, self._on_reader_error)
            self._reader.start()

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        if self._reader is not None:
            self._reader.stop()
        try:
            if self._port.is_open:
                self._port.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing serial port: %s", e)
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=1.0)
        self._reader = None

    @property
    def is_open(self) -> bool:
        return not self._closed and bool(self._port.is_open)

    @property
    def usable(self) -> bool:
        return self.is_open and self._failure is None

    # ---------------- byte handler ----------------

    def feed(self, data: bytes):
        """Byte callback: accumulate until '>' and commit the line as the response."""
        with self._cond:
            for b in data:
                if b == self._end:
                    self._response = self._line.decode("ascii", errors="replace").strip()
                    self._line.clear()
                    self._cond.notify_all()
                else:
                    self._line.append(b)

    def _on_reader_error(self, exc: Exception):
        with self._cond:
            self._failure = exc
            self._cond.notify_all()

    # ---------------- commands ----------------

    @contextmanager
    def transaction(self):
        if not self._flight.acquire(blocking=False):
            raise ChannelBusy("A command is already outstanding on this channel")
        txn = Transaction(self)
        try:
            yield txn
        finally:
            txn._release()
            self._flight.release()

    def send(self, command: str) -> str:
        with self.transaction() as txn:
            return txn.send(command)

    def _exchange(self, command: str) -> str:
        if self._failure is not None:
            raise TransportError(f"Channel unusable after earlier failure: {self._failure}")
        if not self.is_open:
            raise TransportError("Serial port is closed")

        try:
            self._port.reset_input_buffer()
            self._port.reset_output_buffer()
            # after the purge: anything committed so far belongs to an earlier command
            with self._cond:
                self._response = None
                self._line.clear()
            self._port.write((command + self._terminator).encode("ascii"))
        except (serial.SerialException, OSError) as e:
            self._failure = e
            raise TransportError(f"Write of '{command}' failed: {e}") from e

        with self._cond:
            answered = self._cond.wait_for(
                lambda: self._response is not None or self._failure is not None or self._closed,
                timeout=self.timeout,
            )
            if self._failure is not None:
                raise TransportError(f"Serial link failed waiting for '{command}': {self._failure}")
            if self._response is None:
                if self._closed:
                    raise TransportError(f"Channel closed while waiting for '{command}'")
                if not answered:
                    self._failure = ResponseTimeout(command)
                    raise ResponseTimeout(f"No response to '{command}' within {self.timeout} s")
            response, self._response = self._response, None
        logger.debug("%r -> %r", command, response)
        return response
