"""Background backfill of missing item titles and favicons.

Items are processed one at a time by a single drain task. For every item the
sources are tried in a fixed order and each field is filled independently:

1. an open browser tab with the same URL fingerprint
2. the page itself, fetched and scraped
3. fallbacks: the bare URL as title, the favicon service for the host
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Iterable, Optional, Set, Tuple

from ..config import SettingsProvider
from ..utils.url_utils import is_http_url, url_fingerprint
from .metadata_codec import strip_metadata
from .notifier import ChangeNotifier
from .page_scraper import DEFAULT_FAVICON_SERVICE, PageScraper, fallback_favicon_url
from .tab_registry import TabProvider, find_matching_tab
from .tree_repository import TreeRepository

logger = logging.getLogger(__name__)


class EnrichmentQueue:
    """Ordered pending item ids plus the subset marked for forced refresh.

    An id is queued at most once while it waits. Force-enqueueing an id that
    is already waiting only upgrades it to forced.
    """

    def __init__(self):
        self._pending: Deque[str] = deque()
        self._waiting: Set[str] = set()
        self._force: Set[str] = set()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._waiting

    def is_forced(self, item_id: str) -> bool:
        return item_id in self._force

    def enqueue(self, item_id: str, force: bool = False) -> bool:
        """Queue an id.

        Returns:
            True if the id was not already waiting
        """
        if force:
            self._force.add(item_id)
        if item_id in self._waiting:
            return False
        self._pending.append(item_id)
        self._waiting.add(item_id)
        return True

    def enqueue_many(self, item_ids: Iterable[str], force: bool = False) -> int:
        return sum(1 for item_id in item_ids if self.enqueue(item_id, force))

    def pop(self) -> Optional[Tuple[str, bool]]:
        """Take the next id and whether it was forced."""
        if not self._pending:
            return None
        item_id = self._pending.popleft()
        self._waiting.discard(item_id)
        forced = item_id in self._force
        self._force.discard(item_id)
        return item_id, forced


class MetadataEnricher:
    """Drains an EnrichmentQueue, rate limited, one item at a time."""

    def __init__(
        self,
        repository: TreeRepository,
        settings: SettingsProvider,
        tabs: TabProvider,
        scraper: Optional[PageScraper] = None,
        notifier: Optional[ChangeNotifier] = None,
        queue: Optional[EnrichmentQueue] = None,
        delay_seconds: float = 2.0,
        favicon_service_url: str = DEFAULT_FAVICON_SERVICE,
    ):
        """Initialize enricher.

        Args:
            repository: Tree repository holding the items
            settings: Source of URL normalization flags
            tabs: Open tab lookup
            scraper: Page scraper (default timeout and user agent when omitted)
            notifier: Receives items-changed events after writes
            queue: Pending work (a fresh queue when omitted)
            delay_seconds: Pause between items while more are queued
            favicon_service_url: Fallback favicon template with {domain}
        """
        self.repository = repository
        self.settings = settings
        self.tabs = tabs
        self.scraper = scraper or PageScraper()
        self.notifier = notifier
        self.queue = queue or EnrichmentQueue()
        self.delay_seconds = delay_seconds
        self.favicon_service_url = favicon_service_url
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(self, item_ids: Iterable[str], force: bool = False) -> int:
        """Queue items and make sure the drain task is running.

        Returns:
            Number of ids newly added to the queue
        """
        added = self.queue.enqueue_many(item_ids, force=force)
        if len(self.queue) and not self.is_running:
            self._task = asyncio.create_task(self._drain())
        return added

    async def wait_idle(self) -> None:
        """Wait until the queue is drained."""
        while self.is_running:
            await self._task

    async def aclose(self) -> None:
        """Cancel the drain task, dropping whatever is still queued."""
        if self.is_running:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _drain(self) -> None:
        logger.info(f"Metadata enrichment started, {len(self.queue)} item(s) queued")
        while len(self.queue) > 0:
            item_id, forced = self.queue.pop()
            try:
                await self.process_item(item_id, force=forced)
            except Exception as e:
                logger.warning(f"Metadata enrichment failed for {item_id}: {e}")

            if len(self.queue) > 0:
                await asyncio.sleep(self.delay_seconds)
        logger.info("Metadata enrichment queue drained")

    async def process_item(self, item_id: str, force: bool = False) -> bool:
        """Fill in title and favicon for one item.

        Args:
            item_id: Item to enrich
            force: Ignore the current title and favicon and look them up again

        Returns:
            True if the item was rewritten
        """
        entry = await self.repository.find_by_id(item_id)
        if entry is None:
            logger.debug(f"Item {item_id} no longer exists, skipping enrichment")
            return False

        item = entry.item
        clean_url = strip_metadata(entry.node.url)
        has_real_title = bool(item.title) and not is_http_url(item.title)

        if not force and has_real_title and item.favicon:
            return False

        title = None if force or not has_real_title else item.title
        favicon = None if force else item.favicon

        flags = self.settings.load_normalization_flags()
        url_hash = url_fingerprint(clean_url, flags)

        try:
            tab = await find_matching_tab(self.tabs, url_hash, flags)
        except Exception as e:
            logger.debug(f"Tab lookup failed for {item_id}: {e}")
            tab = None
        if tab is not None:
            title = title or tab.title
            favicon = favicon or tab.fav_icon_url

        if not title or not favicon:
            try:
                page = await self.scraper.scrape(
                    clean_url, want_title=not title, want_favicon=not favicon
                )
            except Exception as e:
                logger.debug(f"Could not scrape {clean_url}: {e}")
            else:
                title = title or page.title
                favicon = favicon or page.favicon

        if not title:
            title = clean_url
        if not favicon:
            favicon = fallback_favicon_url(clean_url, self.favicon_service_url)

        title_changed = bool(title) and title != item.title
        favicon_changed = bool(favicon) and favicon != item.favicon
        if not (title_changed or favicon_changed):
            return False

        updated = item.model_copy(
            update={"title": title or item.title, "favicon": favicon or item.favicon}
        )
        await self.repository.write_item(entry.node.id, updated)
        logger.info(f"Enriched item {item_id}: {updated.title}")

        if self.notifier is not None:
            self.notifier.items_changed()
        return True
