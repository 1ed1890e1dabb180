"""Human-sortable node identifier allocation.

Identifiers are the UTC wall-clock time at whole-second resolution,
``YYYYMMDD-HHMMSS``.  A second call within the same second appends a
strictly increasing counter (``-1``, ``-2``, ...), which resets when the
second changes::

    20240105-143000
    20240105-143000-1
    20240105-143001

If the clock steps backwards (NTP correction, a VM resume), the last
issued second is kept and the counter keeps climbing until the clock
catches up again, so an id is never handed out twice.

Each :class:`NodeIDGenerator` owns its own last-second/counter pair, so
independent generators (e.g. one per test) never share state.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable

ID_TIME_FORMAT = "%Y%m%d-%H%M%S"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NodeIDGenerator:
    """Thread-safe, monotonic node id allocator.

    Parameters
    ----------
    clock:
        Returns the current time; defaults to the current UTC time.
        Aware values are converted to UTC, naive values are taken as UTC.
        Injected by tests to pin the second.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._last = ""
        self._counter = 0

    def generate(self) -> str:
        """Return a new identifier, unique for this generator's lifetime."""
        with self._lock:
            now = self._clock()
            if now.tzinfo is not None:
                now = now.astimezone(timezone.utc)
            stamp = now.strftime(ID_TIME_FORMAT)
            if stamp > self._last:
                self._last = stamp
                self._counter = 0
                return stamp
            # Same second, or the clock went backwards: stay on _last.
            self._counter += 1
            return f"{self._last}-{self._counter}"

    __call__ = generate
