"""Writing and erasing the code stored on the device."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from ..errors import DeviceTimeoutError, EraseError, FlashError
from ..settings import (
    END_OF_CODE,
    FLASH_ERASE_COMMAND,
    FLASH_WRITE_COMMAND,
    INTERRUPT,
    LINE_TERMINATOR,
    LOAD_COMMAND,
)
from ..transport import BufferedSerial
from .codec import split_bytes

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlashReport:
    written_bytes: int
    chunks: int
    loaded: bool


def flash(
    transport: BufferedSerial,
    code: str,
    *,
    load: bool = True,
    chunk_size: int = 128,
    chunk_delay: float = 0.01,
    settle_delay: float = 1.0,
    load_delay: float = 1.0,
    prompt_timeout: float = 5.0,
) -> FlashReport:
    """Write *code* into the device's code store and optionally run it.

    The console gives no acknowledgement while it receives code, so the
    settle delays are heuristics; the prompt is polled afterwards to confirm
    the device is back at the console.
    """
    payload = code.encode("utf-8")
    for marker, name in ((END_OF_CODE, "end-of-code"), (INTERRUPT, "interrupt")):
        if marker in payload:
            raise FlashError(f"Code contains the {name} control character {marker!r}")

    transport.discard_input()
    transport.write(LINE_TERMINATOR)
    transport.write_line(FLASH_WRITE_COMMAND)
    time.sleep(settle_delay)

    chunks = split_bytes(payload, chunk_size)
    for index, chunk in enumerate(chunks):
        transport.write(chunk)
        _LOGGER.debug("Flash chunk %d/%d (%d bytes)", index + 1, len(chunks), len(chunk))
        if chunk_delay:
            time.sleep(chunk_delay)
    transport.write(END_OF_CODE)
    time.sleep(settle_delay)

    try:
        transport.read_until_prompt(
            prompt_timeout, after=FLASH_WRITE_COMMAND.encode("ascii")
        )
    except DeviceTimeoutError as exc:
        raise FlashError(
            f"Device did not return to the console within {prompt_timeout}s "
            f"after receiving {len(payload)} bytes"
        ) from exc

    if load:
        transport.write(LINE_TERMINATOR)
        transport.write_line(LOAD_COMMAND)
        time.sleep(load_delay)

    return FlashReport(written_bytes=len(payload), chunks=len(chunks), loaded=load)


def erase(transport: BufferedSerial, *, timeout: float = 5.0) -> None:
    """Delete the stored user code and wait for the console to confirm."""
    transport.discard_input()
    transport.write(LINE_TERMINATOR)
    transport.write_line(FLASH_ERASE_COMMAND)
    try:
        transport.read_until_prompt(timeout, after=FLASH_ERASE_COMMAND.encode("ascii"))
    except DeviceTimeoutError as exc:
        raise EraseError(f"No prompt within {timeout}s after erasing") from exc
    _LOGGER.debug("Erased stored code on %s", transport.port)
