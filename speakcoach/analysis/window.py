"""Rolling Window

Fixed-horizon, timestamp-ordered buffer used by the analyzers. Each window has
a single writer (its owning analyzer) and is only read during finalization,
so it carries no locking.
"""

import logging
from collections import deque
from typing import Deque, Generic, Iterator, List, Optional, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RollingWindow(Generic[T]):
    """Timestamp-ordered buffer that evicts entries older than its horizon.

    Entries must expose a ``timestamp`` attribute. After every push, all
    retained entries satisfy ``newest - horizon <= timestamp <= newest``.

    Attributes:
        horizon: Maximum age in seconds of a retained entry
    """

    def __init__(self, horizon: float):
        if horizon <= 0:
            raise ValueError(f"Invalid horizon: {horizon}, must be positive")
        self.horizon = float(horizon)
        self._entries: Deque[T] = deque()
        self._frozen = False

    def push(self, entry: T) -> bool:
        """Append an entry and evict stale ones.

        Args:
            entry: Object with a ``timestamp`` newer than the last pushed entry

        Returns:
            True if stored, False if the window is frozen and the entry was discarded

        Raises:
            ValueError: If the timestamp does not strictly increase
        """
        if self._frozen:
            logger.debug("Discarding entry pushed after window was frozen")
            return False

        latest = self.latest_timestamp
        if latest is not None and entry.timestamp <= latest:
            raise ValueError(
                f"Timestamps must strictly increase: {entry.timestamp} <= {latest}"
            )

        self._entries.append(entry)
        self.evict(entry.timestamp)
        return True

    def evict(self, now: float) -> int:
        """Drop entries older than ``now - horizon``.

        Returns:
            Number of entries evicted
        """
        cutoff = now - self.horizon
        evicted = 0
        while self._entries and self._entries[0].timestamp < cutoff:
            self._entries.popleft()
            evicted += 1
        return evicted

    def freeze(self) -> None:
        """Stop accepting entries; later pushes are discarded"""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def latest_timestamp(self) -> Optional[float]:
        return self._entries[-1].timestamp if self._entries else None

    @property
    def earliest_timestamp(self) -> Optional[float]:
        return self._entries[0].timestamp if self._entries else None

    def snapshot(self) -> List[T]:
        """Copy of the retained entries, oldest first"""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._entries))
