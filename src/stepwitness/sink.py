"""Local output for signed envelopes.

The destination is acquired before the run starts and released exactly
once. File destinations are written to a sibling ``.partial`` file that
replaces the destination only after a complete write; on any failure the
partial file is removed and the destination is left untouched.
An empty path or ``-`` writes to standard output.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import IO

from stepwitness.dsse import Envelope
from stepwitness.errors import EnvelopeMarshalError, SinkWriteError

logger = logging.getLogger(__name__)

STDOUT_PATHS = ("", "-")


def marshal_envelope(envelope: Envelope) -> bytes:
    """Serialize a signed envelope to JSON bytes.

    Raises:
        EnvelopeMarshalError: If the envelope cannot be serialized
    """
    try:
        return envelope.to_json().encode("utf-8")
    except (TypeError, ValueError, AttributeError) as e:
        raise EnvelopeMarshalError(f"failed to marshal envelope: {e}") from e


class OutputSink:
    """Single-use output destination.

    Usage:
        with OutputSink(path) as sink:
            ...
            sink.write(data)
    """

    def __init__(self, path: str | Path | None):
        self.path = str(path or "")
        self._stream: IO[bytes] | None = None
        self._partial: Path | None = None
        self._written = False
        self._closed = False

    @property
    def is_stdout(self) -> bool:
        return self.path in STDOUT_PATHS

    @property
    def destination(self) -> Path | None:
        return None if self.is_stdout else Path(self.path)

    @property
    def written(self) -> bool:
        return self._written

    def local_paths(self) -> set[Path]:
        """Files this sink creates, resolved."""
        destination = self.destination
        if destination is None:
            return set()
        return {
            destination.resolve(),
            destination.with_name(f".{destination.name}.partial").resolve(),
        }

    def open(self) -> OutputSink:
        """Acquire the destination.

        Raises:
            SinkWriteError: If the destination cannot be opened
        """
        if self._stream is not None or self._closed:
            raise SinkWriteError("output sink can only be opened once")

        if self.is_stdout:
            self._stream = getattr(sys.stdout, "buffer", None)
            if self._stream is None:
                raise SinkWriteError("standard output does not accept bytes")
            return self

        destination = Path(self.path)
        self._partial = destination.with_name(f".{destination.name}.partial")
        try:
            self._stream = open(self._partial, "wb")
        except OSError as e:
            self._partial = None
            raise SinkWriteError(f"failed to open out file {destination}: {e}") from e
        logger.debug("Opened output %s", destination)
        return self

    def write(self, data: bytes) -> int:
        """Write the whole payload in one call.

        Raises:
            SinkWriteError: If the sink is not open, already written, or the write fails
        """
        if self._stream is None or self._closed:
            raise SinkWriteError("output sink is not open")
        if self._written:
            raise SinkWriteError("output sink has already been written")

        try:
            self._stream.write(data)
            self._stream.flush()
            if self._partial is not None:
                os.fsync(self._stream.fileno())
        except OSError as e:
            raise SinkWriteError(f"failed to write envelope to out file: {e}") from e

        self._written = True
        return len(data)

    def close(self, commit: bool = True) -> None:
        """Release the destination. Safe to call more than once.

        Args:
            commit: Move the written data into place; otherwise discard it

        Raises:
            SinkWriteError: If committing the written file fails
        """
        if self._closed:
            return
        self._closed = True

        if self._stream is None or self._partial is None:
            # Standard output stays open for the rest of the process
            return

        partial = self._partial
        try:
            self._stream.close()
            if commit and self._written:
                os.replace(partial, self.path)
                logger.info("Envelope written to %s", self.path)
                return
        except OSError as e:
            raise SinkWriteError(f"failed to finalize out file {self.path}: {e}") from e
        finally:
            if partial.exists():
                partial.unlink()

    def __enter__(self) -> OutputSink:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(commit=exc_type is None)


def write_envelope(sink: OutputSink, envelope: Envelope) -> bytes:
    """Serialize and write an envelope.

    Returns:
        The exact bytes written
    """
    data = marshal_envelope(envelope)
    sink.write(data)
    return data
