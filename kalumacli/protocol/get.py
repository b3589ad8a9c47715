"""Chunked download of device files to the host."""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

from ..errors import TransferError
from .codec import decode_chunk
from .evaluator import Evaluator
from .session import ProgressCallback, TransferSession, run_round

# fs.stat is synchronous on the device and throws for a missing path.
STAT_SIZE_FUNCTION = """
function (path) {
  var fs = require('fs');
  return fs.stat(path).size;
}
"""

# Reports the file size next to each range so a file that changes while
# it is being read is detected on the next round.
READ_RANGE_FUNCTION = """
function (path, offset, length) {
  var fs = require('fs');
  var size = fs.stat(path).size;
  var buf = new Uint8Array(length);
  var fd = fs.open(path, 'r');
  var n;
  try {
    n = fs.read(fd, buf, 0, length, offset);
  } finally {
    fs.close(fd);
  }
  var bin = '';
  for (var i = 0; i < n; i++) {
    bin += String.fromCharCode(buf[i]);
  }
  return {size: size, data: btoa(bin)};
}
"""

_LOGGER = logging.getLogger(__name__)


class Downloader:
    """Reads a remote file by offset into a local file."""

    def __init__(
        self,
        evaluator: Evaluator,
        *,
        chunk_size: int = 256,
        retries: int = 3,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("Chunk size must be greater than zero")
        self.evaluator = evaluator
        self.chunk_size = chunk_size
        self.retries = retries
        self.on_progress = on_progress

    def remote_size(self, remote_path: str) -> int:
        probe = TransferSession(remote_path, "", 0)
        size = run_round(
            lambda: self.evaluator.evaluate(STAT_SIZE_FUNCTION, remote_path),
            operation="stat",
            session=probe,
            retries=self.retries,
        )
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise TransferError(
                f"Device reported an invalid size {size!r}", operation="stat"
            )
        return size

    def download(self, remote_path: str, local_path: Union[str, os.PathLike]) -> int:
        """Copy *remote_path* into *local_path* and return the bytes read.

        On failure the partially written local file is left in place.
        """
        size = self.remote_size(remote_path)
        session = TransferSession(remote_path, os.fspath(local_path), size)
        with open(local_path, "wb") as handle:
            index = 0
            while not session.complete:
                handle.write(self._read_range(session, index))
                index += 1
        _LOGGER.debug(
            "Downloaded %s to %s in %d chunks", remote_path, session.destination, session.chunks
        )
        return session.transferred

    def _read_range(self, session: TransferSession, index: int) -> bytes:
        offset = session.transferred
        length = min(self.chunk_size, session.total_size - offset)
        result = run_round(
            lambda: self.evaluator.evaluate(
                READ_RANGE_FUNCTION, session.source, offset, length
            ),
            operation="get",
            session=session,
            retries=self.retries,
            chunk_index=index,
        )
        if not isinstance(result, dict) or "data" not in result:
            raise TransferError(
                f"Malformed range reply {result!r}",
                operation="get",
                offset=offset,
                chunk_index=index,
            )
        if result.get("size") != session.total_size:
            raise TransferError(
                f"Remote size changed from {session.total_size} to {result.get('size')!r}",
                operation="get",
                offset=offset,
                chunk_index=index,
            )
        try:
            data = decode_chunk(str(result["data"]))
        except ValueError as exc:
            raise TransferError(
                str(exc), operation="get", offset=offset, chunk_index=index
            ) from exc
        if len(data) != length:
            raise TransferError(
                f"Expected {length} bytes but received {len(data)}",
                operation="get",
                offset=offset,
                chunk_index=index,
            )
        session.advance(len(data))
        if self.on_progress:
            self.on_progress(session)
        return data
