"""Remote evaluation of JavaScript functions on the device console."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Sequence

from ..errors import EvalError
from ..settings import LINE_TERMINATOR, PROMPT
from ..transport import BufferedSerial
from .codec import strip_ansi

RESULT_MARKER = "@@KALUMA@@"

# The function source travels as a JSON string literal handed to eval(), so
# its newlines and comments never reach the console as separate input lines.
# The request id closes the line and tags the result line.
_COMMAND_TEMPLATE = (
    "(function(t){{var r;try{{r={{value:eval({source})({args})}};}}"
    "catch(e){{r={{error:String(e)}};}}"
    "console.log({marker}+t+\":\"+JSON.stringify(r));}})({request_id})"
)
_ECHO_TAIL = 32

_LOGGER = logging.getLogger(__name__)


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


def normalize_source(source: str) -> str:
    """Strip indentation and blank lines from a function definition."""
    lines = (line.strip() for line in source.strip().splitlines())
    return "\n".join(line for line in lines if line)


def build_command(source: str, args: Sequence[Any] = (), request_id: str = "") -> str:
    """Return the single console line that runs *source* with *args*."""
    try:
        encoded_args = ",".join(json.dumps(arg, separators=(",", ":")) for arg in args)
    except (TypeError, ValueError) as exc:
        raise EvalError(f"Arguments are not JSON serialisable: {exc}") from exc
    return _COMMAND_TEMPLATE.format(
        source=json.dumps("(" + normalize_source(source) + ")"),
        args=encoded_args,
        marker=json.dumps(RESULT_MARKER),
        request_id=json.dumps(request_id),
    )


def parse_response(raw: bytes, command: str, request_id: str = "") -> Any:
    """Extract the evaluated value from console output.

    Everything up to the echo of *command* is dropped, along with the trailing
    prompt. Exactly one result line tagged with *request_id* must remain;
    result lines of other requests are ignored.
    """
    text = strip_ansi(raw).decode("utf-8", errors="replace")
    pos = text.rfind(command)
    if pos == -1:
        raise EvalError("Device did not echo the command", output=text.strip())
    text = text[pos + len(command) :]
    prompt = PROMPT.decode("ascii")
    if text.endswith(prompt):
        text = text[: -len(prompt)]
    output = text.strip()

    prefix = f"{RESULT_MARKER}{request_id}:"
    results = [
        line.strip()[len(prefix) :]
        for line in text.splitlines()
        if line.strip().startswith(prefix)
    ]
    if not results:
        raise EvalError("Device printed no result", output=output)
    if len(results) > 1:
        raise EvalError("Device printed more than one result", output=output)

    try:
        payload = json.loads(results[0])
    except ValueError as exc:
        raise EvalError(f"Unparseable result: {exc}", output=output) from exc
    if not isinstance(payload, dict):
        raise EvalError("Malformed result envelope", output=output)
    if "error" in payload:
        raise EvalError(f"Device raised {payload['error']}", output=output)
    return payload.get("value")


class Evaluator:
    """Runs self-contained functions on the device and decodes their results."""

    def __init__(
        self,
        transport: BufferedSerial,
        *,
        timeout: float = 5.0,
        max_line_length: int = 2048,
    ) -> None:
        self.transport = transport
        self.timeout = timeout
        self.max_line_length = max_line_length

    def command_length(self, source: str, *args: Any) -> int:
        """Bytes sent to the console for one evaluation, terminator included."""
        command = build_command(source, args, new_request_id())
        return len(command.encode("utf-8")) + len(LINE_TERMINATOR)

    def evaluate(self, source: str, *args: Any, timeout: float | None = None) -> Any:
        request_id = new_request_id()
        command = build_command(source, args, request_id)
        length = len(command.encode("utf-8")) + len(LINE_TERMINATOR)
        if length > self.max_line_length:
            raise EvalError(
                f"Command of {length} bytes exceeds the console line limit "
                f"of {self.max_line_length} bytes"
            )

        self.transport.discard_input()
        self.transport.write_line(command)
        # The tail holds the request id, so an earlier command's echo never matches.
        raw = self.transport.read_until_prompt(
            self.timeout if timeout is None else timeout,
            after=command[-_ECHO_TAIL:].encode("utf-8"),
        )
        value = parse_response(raw, command, request_id)
        _LOGGER.debug("Evaluated %d byte command -> %r", length, value)
        return value
