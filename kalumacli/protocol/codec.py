"""Binary-safe text encoding for chunks exchanged over the console."""

from __future__ import annotations

import base64
import binascii
import re
from typing import BinaryIO, Iterator

_ANSI_ESCAPE = re.compile(rb"\x1b\[[0-9;?]*[A-Za-z]")


def encode_chunk(data: bytes) -> str:
    """Encode *data* using only characters the console passes through verbatim."""
    return base64.b64encode(data).decode("ascii")


def decode_chunk(text: str) -> bytes:
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"Invalid chunk encoding: {exc}") from exc


def iter_chunks(handle: BinaryIO, size: int) -> Iterator[bytes]:
    """Yield successive reads of at most *size* bytes until *handle* is drained."""
    if size <= 0:
        raise ValueError("Chunk size must be greater than zero")
    while True:
        chunk = handle.read(size)
        if not chunk:
            return
        yield chunk


def split_bytes(data: bytes, size: int) -> list[bytes]:
    if size <= 0:
        raise ValueError("Chunk size must be greater than zero")
    return [data[i : i + size] for i in range(0, len(data), size)]


def strip_ansi(raw: bytes) -> bytes:
    """Remove the colour and cursor sequences the REPL decorates output with."""
    return _ANSI_ESCAPE.sub(b"", raw)
