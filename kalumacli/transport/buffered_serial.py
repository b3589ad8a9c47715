"""Line-buffered serial transport for the Kaluma console."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Union

import serial

from ..config import ToolConfig
from ..errors import DeviceConnectionError, DeviceIOError, DeviceTimeoutError
from ..settings import DEFAULT_BAUDRATE, LINE_TERMINATOR, PROMPT

Predicate = Callable[[bytes], bool]
SerialFactory = Callable[..., serial.Serial]

_LOGGER = logging.getLogger(__name__)


def _assert_control_lines(ser: serial.Serial) -> None:
    """Best-effort DTR/RTS setup so USB CDC firmware starts talking."""
    try:
        ser.dtr = True
        ser.rts = False
    except (serial.SerialException, OSError, ValueError):
        _LOGGER.debug("Failed to set control lines", exc_info=True)


def prompt_predicate(after: Optional[bytes] = None) -> Predicate:
    """Return a predicate matching a buffer that ends with the console prompt.

    When *after* is given the prompt only counts once it follows that text.
    Callers that need to tell their own echo from an earlier command must
    pass text unique to the request.
    """

    def predicate(buffer: bytes) -> bool:
        if not buffer.endswith(PROMPT):
            return False
        if after is None:
            return True
        pos = buffer.rfind(after)
        return pos != -1 and pos + len(after) <= len(buffer) - len(PROMPT)

    return predicate


class BufferedSerial:
    """Owns one serial session and the single read buffer shared by protocols."""

    def __init__(
        self,
        port: str,
        *,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = 0.05,
        write_timeout: float = 1.0,
        open_timeout: float = 2.0,
        handshake: bool = True,
        serial_factory: SerialFactory = serial.Serial,
    ) -> None:
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.write_timeout = write_timeout
        self.open_timeout = open_timeout
        self.handshake = handshake
        self._serial_factory = serial_factory
        self._serial: Optional[serial.Serial] = None
        self._buffer = bytearray()
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, port: str, config: ToolConfig, **kwargs) -> "BufferedSerial":
        return cls(
            port,
            baudrate=config.baudrate,
            timeout=config.read_timeout,
            write_timeout=config.write_timeout,
            open_timeout=config.open_timeout,
            **kwargs,
        )

    @property
    def is_open(self) -> bool:
        return bool(self._serial is not None and self._serial.is_open)

    def open(self) -> "BufferedSerial":
        if self.is_open:
            return self
        if not self.port:
            raise DeviceConnectionError("No serial port given")
        try:
            ser = self._serial_factory(
                self.port,
                self.baudrate,
                timeout=self.timeout,
                write_timeout=self.write_timeout,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise DeviceConnectionError(f"Could not open {self.port}: {exc}") from exc

        self._serial = ser
        self._buffer.clear()
        _assert_control_lines(ser)
        if not self.handshake:
            return self
        try:
            self.write(LINE_TERMINATOR)
            self.read_until(prompt_predicate(), self.open_timeout)
        except (DeviceIOError, DeviceTimeoutError) as exc:
            self.close()
            raise DeviceConnectionError(
                f"No console prompt from {self.port} within {self.open_timeout}s"
            ) from exc
        _LOGGER.debug("Connected to %s at %d baud", self.port, self.baudrate)
        return self

    def close(self) -> None:
        ser = self._serial
        self._serial = None
        self._buffer.clear()
        if ser is None:
            return
        try:
            ser.close()
        except (serial.SerialException, OSError):
            _LOGGER.debug("Error while closing %s", self.port, exc_info=True)

    def __enter__(self) -> "BufferedSerial":
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _require_serial(self) -> serial.Serial:
        if self._serial is None or not self._serial.is_open:
            raise DeviceIOError(f"Serial port {self.port} is not open")
        return self._serial

    def write(self, data: Union[bytes, str]) -> None:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        with self._lock:
            ser = self._require_serial()
            try:
                ser.write(payload)
                ser.flush()
            except serial.SerialTimeoutException as exc:
                raise DeviceTimeoutError(
                    f"Write to {self.port} timed out after {self.write_timeout}s"
                ) from exc
            except (serial.SerialException, OSError) as exc:
                raise DeviceIOError(f"Write to {self.port} failed: {exc}") from exc
        _LOGGER.debug("-> %r", payload)

    def write_line(self, text: str) -> None:
        self.write(text.encode("utf-8") + LINE_TERMINATOR)

    def discard_input(self) -> None:
        """Drop buffered and pending input left over from earlier rounds."""
        with self._lock:
            ser = self._require_serial()
            self._buffer.clear()
            try:
                ser.reset_input_buffer()
            except (serial.SerialException, OSError) as exc:
                raise DeviceIOError(f"Could not reset input on {self.port}: {exc}") from exc

    def read_until(self, predicate: Predicate, timeout: float) -> bytes:
        """Accumulate input until *predicate* accepts the buffer.

        Returns the buffered bytes and clears the buffer. Raises
        ``DeviceTimeoutError`` carrying the partial buffer when *timeout*
        elapses first.
        """
        deadline = time.monotonic() + timeout
        with self._lock:
            ser = self._require_serial()
            while True:
                if predicate(bytes(self._buffer)):
                    data = bytes(self._buffer)
                    self._buffer.clear()
                    return data
                if time.monotonic() >= deadline:
                    partial = bytes(self._buffer)
                    self._buffer.clear()
                    raise DeviceTimeoutError(
                        f"No response from {self.port} within {timeout}s", partial
                    )
                try:
                    chunk = ser.read(ser.in_waiting or 1)
                except (serial.SerialException, OSError) as exc:
                    raise DeviceIOError(f"Read from {self.port} failed: {exc}") from exc
                if chunk:
                    _LOGGER.debug("<- %r", chunk)
                    self._buffer.extend(chunk)

    def read_until_prompt(self, timeout: float, after: Optional[bytes] = None) -> bytes:
        return self.read_until(prompt_predicate(after), timeout)


@contextmanager
def connect(port: str, config: ToolConfig, **kwargs) -> Iterator[BufferedSerial]:
    """Open *port* for the duration of one command and always close it."""
    transport = BufferedSerial.from_config(port, config, **kwargs)
    transport.open()
    try:
        yield transport
    finally:
        transport.close()
