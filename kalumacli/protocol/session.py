"""Transfer bookkeeping shared by the put and get protocols."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ..errors import DeviceTimeoutError, EvalError, TransferError

T = TypeVar("T")

_LOGGER = logging.getLogger(__name__)


@dataclass
class TransferSession:
    """Progress of one put/get invocation."""

    source: str
    destination: str
    total_size: int
    transferred: int = 0
    chunks: int = 0

    @property
    def complete(self) -> bool:
        return self.transferred == self.total_size

    def advance(self, count: int) -> None:
        if count < 0:
            raise ValueError("Transferred byte count cannot decrease")
        self.transferred += count
        self.chunks += 1


ProgressCallback = Callable[[TransferSession], None]


def run_round(
    round_trip: Callable[[], T],
    *,
    operation: str,
    session: TransferSession,
    retries: int,
    chunk_index: Optional[int] = None,
) -> T:
    """Run one request/response round, retrying it only when it times out.

    Timeouts past *retries* and device-side errors are reported as
    ``TransferError`` with the offset and chunk index of the round.
    """
    attempt = 0
    while True:
        try:
            return round_trip()
        except DeviceTimeoutError as exc:
            if attempt >= retries:
                raise TransferError(
                    f"No response after {attempt + 1} attempts",
                    operation=operation,
                    offset=session.transferred,
                    chunk_index=chunk_index,
                    output=exc.partial.decode("utf-8", errors="replace"),
                ) from exc
            attempt += 1
            _LOGGER.warning(
                "%s chunk %s at offset %d timed out, retry %d/%d",
                operation,
                chunk_index,
                session.transferred,
                attempt,
                retries,
            )
        except EvalError as exc:
            raise TransferError(
                str(exc),
                operation=operation,
                offset=session.transferred,
                chunk_index=chunk_index,
                output=exc.output,
            ) from exc
