"""In-memory fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a single lock guards the key map, including the sweep.
- Expired windows are evicted by a background sweep thread so memory stays
  bounded by the number of callers seen within one window.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from admission.adapters.rate_limit.base import AbstractWindowStore, WindowCount

logger = logging.getLogger(__name__)


@dataclass
class _WindowEntry:
    count: int
    window_start: float
    reset_at: float

    def snapshot(self) -> WindowCount:
        return WindowCount(count=self.count, reset_at=self.reset_at)


class InMemoryWindowStore(AbstractWindowStore):
    """Keyed counters with one fixed window per key.

    A key's window opens on its first request and lasts ``window_seconds``.
    Requests after ``reset_at`` open a fresh window instead of incrementing
    the stale one.

    The sweep thread is started lazily on the first ``increment`` and stopped
    by ``destroy``; a destroyed store restarts it on next use.
    """

    def __init__(
        self,
        *,
        sweep_interval_seconds: float = 60.0,
        auto_sweep: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            sweep_interval_seconds: Delay between background cleanups.
            auto_sweep: Start the background sweep on first use.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If sweep_interval_seconds is not positive.
        """
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self._sweep_interval = sweep_interval_seconds
        self._auto_sweep = auto_sweep
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _WindowEntry] = {}
        self._sweep_stop: threading.Event | None = None
        self._sweep_thread: threading.Thread | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def sweeping(self) -> bool:
        """Whether the background sweep is currently scheduled."""
        with self._lock:
            return self._sweep_thread is not None and self._sweep_thread.is_alive()

    def increment(self, key: str, window_seconds: float) -> WindowCount:
        key = key or ""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is None or now >= entry.reset_at:
                entry = _WindowEntry(
                    count=1,
                    window_start=now,
                    reset_at=now + window_seconds,
                )
                self._entries[key] = entry
            else:
                entry.count += 1

            if self._auto_sweep and self._sweep_thread is None:
                self._start_sweep_locked()

            return entry.snapshot()

    def decrement(self, key: str, *, reset_at: float | None = None) -> WindowCount | None:
        key = key or ""
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None or entry.count <= 0:
                return None
            if reset_at is not None and entry.reset_at != reset_at:
                return None
            entry.count -= 1
            return entry.snapshot()

    def get(self, key: str) -> WindowCount | None:
        key = key or ""
        with self._lock:
            entry = self._live_entry_locked(key)
            return entry.snapshot() if entry else None

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key or "", None)

    def cleanup(self, max_age_seconds: float = 0.0) -> int:
        """Evict entries whose window ended at or before ``now - max_age_seconds``.

        ``cleanup(0)`` evicts every expired entry; live windows are kept. Use
        ``destroy`` (or ``reset`` for one key) to drop live windows too.

        Returns:
            Number of evicted entries.
        """
        with self._lock:
            cutoff = self._clock() - max_age_seconds
            expired = [k for k, e in self._entries.items() if e.reset_at <= cutoff]
            for key in expired:
                del self._entries[key]
            remaining = len(self._entries)

        if expired:
            logger.debug(
                "rate_limit.sweep",
                extra={"evicted": len(expired), "entries": remaining},
            )
        return len(expired)

    def destroy(self) -> None:
        with self._lock:
            if self._sweep_stop is not None:
                self._sweep_stop.set()
            self._sweep_stop = None
            self._sweep_thread = None
            self._entries.clear()

    def _live_entry_locked(self, key: str) -> _WindowEntry | None:
        entry = self._entries.get(key)
        if entry is None or self._clock() >= entry.reset_at:
            return None
        return entry

    def _start_sweep_locked(self) -> None:
        stop = threading.Event()
        thread = threading.Thread(
            target=self._sweep_loop,
            args=(stop,),
            name="rate-limit-sweep",
            daemon=True,
        )
        self._sweep_stop = stop
        self._sweep_thread = thread
        thread.start()

    def _sweep_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self._sweep_interval):
            try:
                self.cleanup()
            except Exception:
                # Keep sweeping; a failed pass is retried on the next tick.
                logger.exception("rate_limit.sweep_failed")
