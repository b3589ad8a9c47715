"""Scripted Kaluma console used in place of a serial.Serial handle."""

import base64
import json
from typing import Callable, Dict, List, Optional, Tuple

from kalumacli.protocol.evaluator import RESULT_MARKER, normalize_source
from kalumacli.protocol.get import READ_RANGE_FUNCTION, STAT_SIZE_FUNCTION
from kalumacli.protocol.put import APPEND_CHUNK_FUNCTION

PROMPT = b"> "
_EVAL_HEAD = "(function(t){var r;try{r={value:eval("
_EVAL_TAIL = ")};}catch(e){r={error:String(e)};}"


class FakeDeviceError(Exception):
    """Raised by handlers to simulate a JavaScript exception on the device."""


class FakeKaluma:
    def __init__(self, *, responsive: bool = True, flash_ack: bool = True) -> None:
        self.responsive = responsive
        self.flash_ack = flash_ack
        self.is_open = True
        self.dtr = False
        self.rts = True
        self.files: Dict[str, bytearray] = {}
        self.stored_code: Optional[bytes] = None
        self.loaded = False
        self.lines: List[str] = []
        self.calls: List[Tuple[str, list]] = []
        self.lose_replies = 0
        self.mute_after: Optional[int] = None
        self.after_call: Optional[Callable[[str, list], None]] = None
        self.lag_replies = False
        self._held = b""
        self._input = bytearray()
        self._output = bytearray()
        self._flashing = False
        self._flash_buffer = bytearray()
        self._functions: Dict[str, Tuple[str, Callable]] = {}
        self.define(APPEND_CHUNK_FUNCTION, self._append, name="append")
        self.define(STAT_SIZE_FUNCTION, self._stat, name="stat")
        self.define(READ_RANGE_FUNCTION, self._read_range, name="read")

    def define(self, source: str, handler: Callable, name: str = "custom") -> None:
        self._functions[normalize_source(source)] = (name, handler)

    def calls_named(self, name: str) -> List[list]:
        return [args for call, args in self.calls if call == name]

    # serial.Serial surface

    @property
    def in_waiting(self) -> int:
        return len(self._output)

    def read(self, size: int = 1) -> bytes:
        data = bytes(self._output[:size])
        del self._output[:size]
        return data

    def write(self, data: bytes) -> int:
        for value in bytes(data):
            self._feed(bytes([value]))
        return len(data)

    def flush(self) -> None:
        pass

    def reset_input_buffer(self) -> None:
        self._output.clear()

    def close(self) -> None:
        self.is_open = False

    # console emulation

    def _feed(self, byte: bytes) -> None:
        if self._flashing:
            if byte == b"\x1a":
                self._flashing = False
                self.stored_code = bytes(self._flash_buffer)
                if self.flash_ack:
                    self._emit(f"\r\n{len(self._flash_buffer)} bytes written\r\n".encode())
                    self._emit(PROMPT)
            else:
                self._flash_buffer.extend(byte)
            return
        if byte == b"\r":
            line = self._input.decode("utf-8")
            self._input.clear()
            if self.lag_replies:
                self._handle_lagged(line)
            else:
                self._handle_line(line)
        else:
            self._input.extend(byte)

    def _emit(self, data: bytes) -> None:
        self._output.extend(data)

    def _handle_lagged(self, line: str) -> None:
        # Output for a line reaches the wire only once the next line arrives.
        start = len(self._output)
        self._handle_line(line)
        reply = bytes(self._output[start:])
        del self._output[start:]
        self._emit(self._held)
        self._held = reply

    def _handle_line(self, line: str) -> None:
        self.lines.append(line)
        if not self.responsive or (
            self.mute_after is not None and len(self.lines) > self.mute_after
        ):
            return
        self._emit(line.encode("utf-8") + b"\r\n")
        if line == ".flash -w":
            self._flashing = True
            self._flash_buffer.clear()
            return
        if line == ".flash -e":
            self.stored_code = None
        elif line == ".load":
            self.loaded = True
        elif line.startswith(_EVAL_HEAD):
            reply = self._evaluate(line)
            if self.lose_replies:
                self.lose_replies -= 1
                return
            self._emit(reply)
            self._emit(b"undefined\r\n")
        elif line:
            self._emit(b"ReferenceError: not supported by fake\r\n")
        self._emit(PROMPT)

    def _evaluate(self, line: str) -> bytes:
        decoder = json.JSONDecoder()
        source, end = decoder.raw_decode(line, len(_EVAL_HEAD))
        args_text = line[end + 2 : line.rindex(_EVAL_TAIL)]
        args = json.loads("[" + args_text + "]")
        request_id = json.loads(line[line.rindex("})(") + 3 : -1])
        name, handler = self._functions.get(source[1:-1], ("unknown", None))
        self.calls.append((name, args))
        try:
            if handler is None:
                raise FakeDeviceError("ReferenceError: unknown function")
            value = handler(*args)
            envelope = {} if value is None else {"value": value}
        except FakeDeviceError as exc:
            envelope = {"error": str(exc)}
        if self.after_call is not None:
            self.after_call(name, args)
        return (f"{RESULT_MARKER}{request_id}:" + json.dumps(envelope)).encode("utf-8") + b"\r\n"

    # device filesystem

    def _stat(self, path: str) -> int:
        if path not in self.files:
            raise FakeDeviceError("Error: ENOENT")
        return len(self.files[path])

    def _append(self, path: str, data: str, offset: int) -> int:
        chunk = base64.b64decode(data)
        if offset > 0:
            size = self._stat(path)
            if size == offset + len(chunk):
                return len(chunk)
            if size != offset:
                raise FakeDeviceError(f"Error: remote size {size} does not match offset {offset}")
            self.files[path].extend(chunk)
        else:
            self.files[path] = bytearray(chunk)
        return len(chunk)

    def _read_range(self, path: str, offset: int, length: int) -> dict:
        size = self._stat(path)
        data = bytes(self.files[path][offset : offset + length])
        return {"size": size, "data": base64.b64encode(data).decode("ascii")}
