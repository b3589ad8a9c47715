"""Error taxonomy shared by the transport, protocols and CLI."""

from __future__ import annotations

from typing import Optional


class KalumaError(Exception):
    """Base class for every failure raised by kalumacli."""


class DeviceConnectionError(KalumaError, ConnectionError):
    """The serial connection could not be opened or closed."""


class DeviceIOError(KalumaError, OSError):
    """A read or write failed on an established connection."""


class DeviceTimeoutError(KalumaError, TimeoutError):
    """No expected response arrived within the bound.

    ``partial`` holds whatever bytes were buffered when the read gave up.
    """

    def __init__(self, message: str, partial: bytes = b"") -> None:
        super().__init__(message)
        self.partial = partial


class EvalError(KalumaError):
    """The device raised an exception or printed an unparseable result."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class TransferError(KalumaError):
    """A put/get transfer could not be completed."""

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        offset: int = 0,
        chunk_index: Optional[int] = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.offset = offset
        self.chunk_index = chunk_index
        self.output = output

    def __str__(self) -> str:
        where = f"{self.operation} at offset {self.offset}"
        if self.chunk_index is not None:
            where += f" (chunk {self.chunk_index})"
        return f"{where}: {self.args[0]}"


class FlashError(KalumaError):
    """Code could not be written to the device."""


class EraseError(KalumaError):
    """The device did not confirm erasing its stored code."""


class BundleError(KalumaError):
    """The external bundler failed or could not be started."""
