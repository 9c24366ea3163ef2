"""Reproducible attestation times.

Attestors stamp each claim with the time observation started and ended.
Inside ``determinism_mode()`` those stamps are pinned so that two runs over
the same working directory yield identical payload bytes:

    with determinism_mode():
        first = run("build", signer, attestors, work_dir)
        second = run("build", signer, attestors, work_dir)
    assert first.envelope.payload == second.envelope.payload
"""

from __future__ import annotations

import contextlib
import threading
from collections.abc import Iterator
from datetime import UTC, datetime

FIXED_TIMESTAMP = "2025-01-01T00:00:00Z"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class _PinnedClock(threading.local):
    depth = 0


_clock = _PinnedClock()


def is_deterministic() -> bool:
    """Whether times are pinned on this thread."""
    return _clock.depth > 0


@contextlib.contextmanager
def determinism_mode() -> Iterator[None]:
    """Pin attestation times for the current thread. Nests."""
    _clock.depth += 1
    try:
        yield
    finally:
        _clock.depth -= 1


def stable_timestamp() -> str:
    """UTC time in RFC 3339 seconds form, or FIXED_TIMESTAMP when pinned."""
    if is_deterministic():
        return FIXED_TIMESTAMP
    return datetime.now(UTC).strftime(TIMESTAMP_FORMAT)
