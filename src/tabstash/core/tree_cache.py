"""Short-lived cache for tree reads, dropped on every store mutation."""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from ..models.tree import TreeEvent

logger = logging.getLogger(__name__)


class TreeCache:
    """Holds derived views of the tree (raw tree, snapshot, id index).

    Entries expire after an absolute TTL and are all dropped when the store
    reports a mutation. Each invalidation bumps a generation counter; a value
    computed from a read that started in an older generation is not stored,
    so a read racing a mutation can never resurrect stale data.
    """

    def __init__(self, ttl_seconds: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, key: str) -> Optional[Any]:
        """Return a fresh cached value, or None."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        value, stored_at = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return None
        return value

    def put(self, key: str, value: Any, generation: Optional[int] = None) -> bool:
        """Store a value computed during the given generation.

        Returns:
            False if the cache was invalidated since that generation began
        """
        if generation is not None and generation != self._generation:
            return False
        self._entries[key] = (value, self._clock())
        return True

    def invalidate(self) -> None:
        self._generation += 1
        self._entries.clear()

    def on_tree_event(self, event: TreeEvent) -> None:
        """Store listener: any mutation drops everything."""
        logger.debug(f"Tree {event.value}, dropping cache generation {self._generation}")
        self.invalidate()
