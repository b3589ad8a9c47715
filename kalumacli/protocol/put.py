"""Chunked upload of host files to the device filesystem."""

from __future__ import annotations

import itertools
import logging
import os
from typing import Optional, Union

from ..errors import TransferError
from .codec import encode_chunk, iter_chunks
from .evaluator import Evaluator
from .session import ProgressCallback, TransferSession, run_round

# Appends one decoded chunk at `offset`. A remote file that already holds
# the chunk means a previous attempt landed after its response was lost.
APPEND_CHUNK_FUNCTION = """
function (path, data, offset) {
  var fs = require('fs');
  var bin = atob(data);
  var buf = new Uint8Array(bin.length);
  for (var i = 0; i < bin.length; i++) {
    buf[i] = bin.charCodeAt(i);
  }
  if (offset > 0) {
    var size = fs.stat(path).size;
    if (size === offset + buf.length) {
      return buf.length;
    }
    if (size !== offset) {
      throw new Error('remote size ' + size + ' does not match offset ' + offset);
    }
  }
  var fd = fs.open(path, offset > 0 ? 'a' : 'w');
  try {
    return fs.write(fd, buf, 0, buf.length);
  } finally {
    fs.close(fd);
  }
}
"""

_LOGGER = logging.getLogger(__name__)


class Uploader:
    """Appends a local file to a remote path one acknowledged chunk at a time."""

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

    def upload(
        self,
        local_path: Union[str, os.PathLike],
        remote_path: str,
        declared_size: int,
    ) -> int:
        """Copy *local_path* to *remote_path* and return the bytes written.

        An empty source still performs one round so the remote file exists.
        """
        session = TransferSession(os.fspath(local_path), remote_path, declared_size)
        chunk_size = self.fitting_chunk_size(remote_path, declared_size)
        with open(local_path, "rb") as handle:
            chunks = iter_chunks(handle, chunk_size)
            first = next(chunks, b"")
            for index, chunk in enumerate(itertools.chain([first], chunks)):
                self._append(session, index, chunk)

        if not session.complete:
            raise TransferError(
                f"Wrote {session.transferred} bytes but {declared_size} were declared",
                operation="put",
                offset=session.transferred,
            )
        _LOGGER.debug(
            "Uploaded %s to %s in %d chunks", session.source, remote_path, session.chunks
        )
        return session.transferred

    def fitting_chunk_size(self, remote_path: str, declared_size: int) -> int:
        """Largest chunk, up to the configured size, whose append line fits the console."""
        overhead = self.evaluator.command_length(
            APPEND_CHUNK_FUNCTION, remote_path, "", max(declared_size, 0)
        )
        room = (self.evaluator.max_line_length - overhead) // 4 * 3
        if room <= 0:
            raise TransferError(
                f"Console line limit of {self.evaluator.max_line_length} bytes leaves "
                "no room for chunk data",
                operation="put",
            )
        if room < self.chunk_size:
            _LOGGER.debug("Chunk size reduced from %d to %d bytes", self.chunk_size, room)
            return room
        return self.chunk_size

    def _append(self, session: TransferSession, index: int, chunk: bytes) -> None:
        offset = session.transferred
        data = encode_chunk(chunk)
        written = run_round(
            lambda: self.evaluator.evaluate(
                APPEND_CHUNK_FUNCTION, session.destination, data, offset
            ),
            operation="put",
            session=session,
            retries=self.retries,
            chunk_index=index,
        )
        if written != len(chunk):
            raise TransferError(
                f"Device wrote {written!r} bytes of a {len(chunk)} byte chunk",
                operation="put",
                offset=offset,
                chunk_index=index,
            )
        session.advance(len(chunk))
        if self.on_progress:
            self.on_progress(session)
