"""Open-tab lookup used for status annotation and enrichment."""

import logging
from typing import Dict, Iterable, List, Optional, Protocol

from ..models.tabs import TabSummary
from ..utils.url_utils import NormalizationFlags, url_fingerprint

logger = logging.getLogger(__name__)


class TabProvider(Protocol):
    """Anything that can list the currently open browser tabs."""

    async def query_tabs(self) -> List[TabSummary]:
        ...


class OpenTabRegistry:
    """Holds the tabs most recently reported by the UI.

    The service cannot see the browser itself, so every command that carries
    tabs refreshes this registry.
    """

    def __init__(self, tabs: Optional[Iterable[TabSummary]] = None):
        self._tabs: Dict[int, TabSummary] = {}
        if tabs:
            self.replace(tabs)

    def replace(self, tabs: Iterable[TabSummary]) -> None:
        """Replace the known tabs with a complete report."""
        self._tabs = {tab.id: tab for tab in tabs}
        logger.debug(f"Tab registry now holds {len(self._tabs)} tab(s)")

    def update(self, tabs: Iterable[TabSummary]) -> None:
        """Merge a partial report into the known tabs."""
        for tab in tabs:
            self._tabs[tab.id] = tab

    async def query_tabs(self) -> List[TabSummary]:
        return list(self._tabs.values())


async def find_matching_tab(
    provider: TabProvider, url_hash: str, flags: NormalizationFlags
) -> Optional[TabSummary]:
    """Return the first open tab whose URL fingerprint equals url_hash."""
    for tab in await provider.query_tabs():
        if tab.url and url_fingerprint(tab.url, flags) == url_hash:
            return tab
    return None
