"""
Clock and claim-token generation.

Correctness never depends on clocks agreeing between processes: every
comparison is a single `now` value checked against one field of one message.
The only requirement is that a process never sees its own time go backwards,
which SystemClock enforces by clamping to the last value it returned.
"""

from __future__ import annotations

import dataclasses
import secrets
import threading
import time
from typing import Protocol

TOKEN_BYTES = 16


class Clock(Protocol):
    """Structural Protocol — anything returning epoch-millis from now()."""

    def now(self) -> int: ...


@dataclasses.dataclass
class SystemClock:
    """Wall-clock epoch-millis, non-decreasing per instance."""

    _last: int = dataclasses.field(default=0, init=False, repr=False)
    _lock: threading.Lock = dataclasses.field(
        default_factory=threading.Lock, init=False, repr=False
    )

    def now(self) -> int:
        wall = time.time_ns() // 1_000_000
        with self._lock:
            if wall > self._last:
                self._last = wall
            return self._last


def new_token() -> str:
    """128-bit random claim token, hex encoded."""
    return secrets.token_hex(TOKEN_BYTES)
