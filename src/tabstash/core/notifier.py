"""Change notifications for UIs that mirror the stash."""

import logging
from enum import Enum
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)


class ChangeEvent(str, Enum):
    ITEMS_CHANGED = "items_changed"
    FOLDERS_CHANGED = "folders_changed"


ChangeListener = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """Fan-out of change events plus counters that polling clients can diff."""

    def __init__(self):
        self._listeners: List[ChangeListener] = []
        self._counters: Dict[ChangeEvent, int] = {event: 0 for event in ChangeEvent}

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def notify(self, event: ChangeEvent) -> None:
        self._counters[event] += 1
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Change listener failed on {event.value}: {e}")

    def items_changed(self) -> None:
        self.notify(ChangeEvent.ITEMS_CHANGED)

    def folders_changed(self) -> None:
        self.notify(ChangeEvent.FOLDERS_CHANGED)

    def counters(self) -> Dict[str, int]:
        return {event.value: count for event, count in self._counters.items()}
