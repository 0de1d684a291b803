"""Window store interfaces.

Limiters depend on this abstraction (not the concrete implementation) so the
in-memory store can later be swapped for a shared backend (e.g., Redis) with
minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowCount:
    """Snapshot of a key's counter after a store operation.

    Attributes:
        count: Requests counted in the current window.
        reset_at: UNIX epoch seconds when the current window ends.
    """

    count: int
    reset_at: float


class AbstractWindowStore(ABC):
    """Interface for keyed fixed-window counter stores."""

    @abstractmethod
    def increment(self, key: str, window_seconds: float) -> WindowCount:
        """Count one request for ``key``, opening a new window if needed.

        Args:
            key: Caller identity (e.g., namespaced IP address).
            window_seconds: Window length used when a new window is opened.

        Returns:
            WindowCount with the post-increment count and window end.
        """
        raise NotImplementedError

    @abstractmethod
    def decrement(self, key: str, *, reset_at: float | None = None) -> WindowCount | None:
        """Uncount one request for ``key`` within its live window.

        Args:
            key: Caller identity the request was counted under.
            reset_at: When given, only adjust the window ending at this time.

        Returns:
            The adjusted snapshot, or None when there was nothing to adjust.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, key: str) -> WindowCount | None:
        """Return a snapshot of the live window for ``key``, if any."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> None:
        """Forget ``key`` immediately."""
        raise NotImplementedError

    @abstractmethod
    def cleanup(self, max_age_seconds: float = 0.0) -> int:
        """Evict windows that ended more than ``max_age_seconds`` ago.

        Returns:
            Number of evicted entries.
        """
        raise NotImplementedError

    @abstractmethod
    def destroy(self) -> None:
        """Stop background work and drop all state; the store stays usable."""
        raise NotImplementedError
