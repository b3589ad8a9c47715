"""Transport layer abstractions for kalumacli."""

from .buffered_serial import (
    BufferedSerial,
    connect,
    prompt_predicate,
)

__all__ = [
    "BufferedSerial",
    "connect",
    "prompt_predicate",
]
