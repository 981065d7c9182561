"""Item manager: stash, import, query and edit stashed items."""

import logging
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from ..config import SettingsProvider
from ..models.item import (
    ARCHIVE_FOLDER_ID,
    TRASH_FOLDER_ID,
    UNSET,
    ExistingUrl,
    ImportEntry,
    ImportResult,
    Item,
    ItemPatch,
    StashResult,
    now_ms,
)
from ..models.tabs import TabSummary, TabWithStatus
from ..utils.url_utils import (
    NormalizationFlags,
    convert_tabxpert_url,
    is_http_url,
    is_stashable_url,
    url_fingerprint,
)
from .metadata_codec import strip_metadata
from .metadata_enricher import MetadataEnricher
from .notifier import ChangeNotifier
from .tab_registry import OpenTabRegistry
from .tree_repository import (
    ARCHIVE_ALIAS,
    TRASH_ALIAS,
    Placement,
    PlacementKind,
    StashedEntry,
    SystemFolders,
    TreeRepository,
    project,
)
from .tree_store import TreeStoreError

logger = logging.getLogger(__name__)

SEARCH_RESULT_LIMIT = 200


class ItemNotFoundError(Exception):
    """Item not found error."""

    pass


def matches_folder(placement: Placement, folder_id: str, system: SystemFolders) -> bool:
    """Check a placement against a logical or physical folder id."""
    if folder_id in (TRASH_FOLDER_ID, TRASH_ALIAS, system.trash_id):
        return placement.kind == PlacementKind.TRASH
    if folder_id in (ARCHIVE_FOLDER_ID, ARCHIVE_ALIAS, system.archive_id):
        return placement.kind == PlacementKind.ARCHIVE
    if folder_id in (system.unfiled_id, system.root_id):
        return placement.kind == PlacementKind.UNFILED
    return placement.folder_id == folder_id


class ItemManager:
    """UI-facing operations on stashed items.

    Each operation reads the URL normalization flags once and uses that
    snapshot for every comparison it makes.
    """

    def __init__(
        self,
        repository: TreeRepository,
        settings: SettingsProvider,
        enricher: Optional[MetadataEnricher] = None,
        notifier: Optional[ChangeNotifier] = None,
        tab_registry: Optional[OpenTabRegistry] = None,
    ):
        """Initialize item manager.

        Args:
            repository: Tree repository
            settings: Source of URL normalization flags
            enricher: Metadata enricher for items missing title or favicon
            notifier: Receives items-changed events
            tab_registry: Registry refreshed with tabs reported by the UI
        """
        self.repository = repository
        self.settings = settings
        self.enricher = enricher
        self.notifier = notifier or ChangeNotifier()
        self.tab_registry = tab_registry

    @staticmethod
    def _with_hash(item: Item, flags: NormalizationFlags) -> Item:
        return item.model_copy(update={"url_hash": url_fingerprint(item.url, flags)})

    def _queue_enrichment(self, item_ids: List[str], force: bool = False) -> int:
        if not item_ids or self.enricher is None:
            return 0
        return self.enricher.enqueue(item_ids, force=force)

    async def get_item(self, item_id: str) -> StashedEntry:
        """Get an item with its node.

        Raises:
            ItemNotFoundError: If no bookmark carries this item id
        """
        entry = await self.repository.find_by_id(item_id)
        if entry is None:
            raise ItemNotFoundError(f"Item not found: {item_id}")
        return entry

    # Tabs

    async def stash_tabs(
        self,
        tabs: List[TabSummary],
        tags: Optional[List[str]] = None,
        folder_id: Optional[str] = None,
    ) -> StashResult:
        """Stash open tabs as new items.

        Every http(s) tab becomes a new item, even if its URL is already
        stashed. Non-http tabs are skipped.

        Args:
            tabs: Tabs to stash
            tags: Tags applied to every new item
            folder_id: Target folder (Unfiled when None)

        Returns:
            Counts of added and updated items
        """
        if self.tab_registry is not None:
            self.tab_registry.update(tabs)

        parent_id = await self.repository.resolve_target_folder(folder_id)
        system = await self.repository.system_folders()
        placement = project(parent_id, system)

        added = 0
        needing_metadata = []
        for tab in tabs:
            url = convert_tabxpert_url(tab.url)
            if not is_http_url(url):
                continue

            now = now_ms()
            item = Item(
                id=str(uuid4()),
                url=url,
                title=tab.title or None,
                favicon=tab.fav_icon_url,
                created_at=now,
                last_seen_at=now,
                times_added=1,
                tags=list(tags or []),
                folder_id=placement.folder_id,
                sort_order=-now,
            )
            await self.repository.create_item(item, parent_id)
            added += 1

            if not item.title or not item.favicon:
                needing_metadata.append(item.id)

        self._queue_enrichment(needing_metadata)
        if added:
            logger.info(f"Stashed {added} tab(s)")
            self.notifier.items_changed()

        return StashResult(added=added, updated=0)

    async def tabs_with_status(self, tabs: List[TabSummary]) -> List[TabWithStatus]:
        """Annotate tabs with whether their URL is already stashed."""
        if self.tab_registry is not None:
            self.tab_registry.replace(tabs)

        flags = self.settings.load_normalization_flags()
        snapshot = await self.repository.snapshot()

        by_hash: Dict[str, StashedEntry] = {}
        for entry in snapshot.entries:
            by_hash.setdefault(url_fingerprint(entry.item.url, flags), entry)

        result = []
        for tab in tabs:
            url_hash = url_fingerprint(tab.url, flags)
            entry = by_hash.get(url_hash)
            result.append(
                TabWithStatus(
                    **tab.model_dump(),
                    url_hash=url_hash,
                    stashed=entry is not None,
                    item_id=entry.item.id if entry is not None else None,
                    stashable=is_stashable_url(tab.url),
                )
            )
        return result

    # Queries

    async def list_items(
        self,
        folder_id=UNSET,
        include_trash: bool = False,
        include_archive: bool = False,
        limit: Optional[int] = None,
    ) -> List[Item]:
        """List items by projected placement, newest first.

        Args:
            folder_id: UNSET for everything, None for Unfiled only, or a folder
                id, sentinel or alias
            include_trash: With UNSET, also list trashed items
            include_archive: With UNSET, also list archived items
            limit: Maximum number of items returned (0 or None for all)

        Returns:
            Items with folder_id set from their physical location
        """
        flags = self.settings.load_normalization_flags()
        snapshot = await self.repository.snapshot()

        items = []
        for entry in snapshot.entries:
            kind = entry.placement.kind
            if folder_id is UNSET:
                if kind == PlacementKind.TRASH and not include_trash:
                    continue
                if kind == PlacementKind.ARCHIVE and not include_archive:
                    continue
            elif folder_id is None:
                if kind != PlacementKind.UNFILED:
                    continue
            elif not matches_folder(entry.placement, folder_id, snapshot.system):
                continue
            items.append(self._with_hash(entry.item, flags))

        items.sort(key=lambda item: item.created_at, reverse=True)
        if limit:
            items = items[:limit]
        return items

    async def search_items(self, query: str, folder_id: Optional[str] = None) -> List[Item]:
        """Find items containing every word of the query.

        Words match case-insensitively anywhere in title, url, tags or notes.
        Trash and archive are searched only when asked for explicitly.
        """
        words = query.lower().split()
        flags = self.settings.load_normalization_flags()
        snapshot = await self.repository.snapshot()

        results = []
        for entry in snapshot.entries:
            placement = entry.placement
            if folder_id:
                if not matches_folder(placement, folder_id, snapshot.system):
                    continue
            elif placement.kind in (PlacementKind.TRASH, PlacementKind.ARCHIVE):
                continue

            item = entry.item
            searchable = " ".join(
                [(item.title or "").lower(), item.url.lower()]
                + [tag.lower() for tag in item.tags]
                + [(item.notes or "").lower()]
            )
            if all(word in searchable for word in words):
                results.append(self._with_hash(item, flags))

        results.sort(key=lambda item: item.created_at, reverse=True)
        return results[:SEARCH_RESULT_LIMIT]

    async def check_existing_urls(self, urls: Iterable[str]) -> List[ExistingUrl]:
        """Report which URLs are already stashed and in which folder."""
        flags = self.settings.load_normalization_flags()
        snapshot = await self.repository.snapshot()

        folder_by_hash = {
            url_fingerprint(entry.item.url, flags): snapshot.folder_name(entry.placement)
            for entry in snapshot.entries
        }

        existing = []
        for url in urls:
            folder_name = folder_by_hash.get(url_fingerprint(url, flags))
            if folder_name is not None:
                existing.append(ExistingUrl(url=url, folder_name=folder_name))
        return existing

    # Mutations

    async def update_item(self, item_id: str, patch: ItemPatch) -> Item:
        """Merge a patch into an item and write it back.

        Raises:
            ItemNotFoundError: If item doesn't exist
        """
        entry = await self.get_item(item_id)

        update_data = patch.model_dump(exclude_unset=True)
        if update_data.get("url"):
            update_data["url"] = strip_metadata(update_data["url"])
        if "tags" in update_data and update_data["tags"] is None:
            update_data["tags"] = []

        updated = entry.item.model_copy(update=update_data)
        await self.repository.write_item(entry.node.id, updated)

        logger.info(f"Updated item {item_id}")
        self.notifier.items_changed()
        return self._with_hash(updated, self.settings.load_normalization_flags())

    async def delete_item(self, item_id: str, soft: bool = False) -> None:
        """Delete an item permanently, or move it to Trash when soft.

        Raises:
            ItemNotFoundError: If item doesn't exist
        """
        entry = await self.get_item(item_id)

        if soft:
            system = await self.repository.system_folders()
            await self.repository.move_item(entry.node.id, entry.item, system.trash_id)
            logger.info(f"Moved item {item_id} to trash")
        else:
            await self.repository.remove_item(entry.node.id)
            logger.info(f"Deleted item {item_id}")

        self.notifier.items_changed()

    async def empty_trash(self) -> int:
        removed = await self.repository.empty_trash()
        self.notifier.items_changed()
        return removed

    async def move_items(self, item_ids: List[str], folder_id: Optional[str]) -> int:
        """Move items into a folder; unknown ids are skipped.

        Returns:
            Number of items moved
        """
        target_id = await self.repository.resolve_target_folder(folder_id)
        found = await self.repository.find_many(item_ids)

        moved = 0
        for item_id in item_ids:
            entry = found.get(item_id)
            if entry is None:
                continue
            await self.repository.move_item(entry.node.id, entry.item, target_id)
            moved += 1

        logger.info(f"Moved {moved} item(s) to {target_id}")
        self.notifier.items_changed()
        return moved

    async def bulk_add_tags(self, item_ids: List[str], tags: List[str]) -> int:
        found = await self.repository.find_many(item_ids)

        tagged = 0
        for item_id in item_ids:
            entry = found.get(item_id)
            if entry is None:
                continue
            current = entry.item.tags
            merged = current + [tag for tag in dict.fromkeys(tags) if tag not in current]
            await self.repository.write_item(
                entry.node.id, entry.item.model_copy(update={"tags": merged})
            )
            tagged += 1

        self.notifier.items_changed()
        return tagged

    async def bulk_remove_tags(self, item_ids: List[str], tags: List[str]) -> int:
        found = await self.repository.find_many(item_ids)
        removing = set(tags)

        untagged = 0
        for item_id in item_ids:
            entry = found.get(item_id)
            if entry is None:
                continue
            kept = [tag for tag in entry.item.tags if tag not in removing]
            await self.repository.write_item(
                entry.node.id, entry.item.model_copy(update={"tags": kept})
            )
            untagged += 1

        self.notifier.items_changed()
        return untagged

    async def reorder_items(self, item_ids: List[str]) -> int:
        """Set each item's sort_order to its position in item_ids."""
        found = await self.repository.find_many(item_ids)

        reordered = 0
        for position, item_id in enumerate(item_ids):
            entry = found.get(item_id)
            if entry is None:
                continue
            await self.repository.write_item(
                entry.node.id, entry.item.model_copy(update={"sort_order": position})
            )
            reordered += 1

        self.notifier.items_changed()
        return reordered

    async def import_items(
        self,
        entries: List[ImportEntry],
        allow_duplicates: bool = False,
        folder_path: Optional[str] = None,
    ) -> ImportResult:
        """Import parsed entries, merging into existing items by URL.

        Unless duplicates are allowed, an entry whose URL fingerprint matches a
        stashed item updates that item (tags merged, title replaced when given)
        instead of creating a new one. Entries that fail are logged and skipped.

        Args:
            entries: Parsed import entries
            allow_duplicates: Always create new items
            folder_path: Slash-separated folder path for new items

        Returns:
            Counts of imported, updated and enrichment-queued items
        """
        flags = self.settings.load_normalization_flags()
        if folder_path:
            default_parent = await self.repository.create_folder_hierarchy(folder_path)
        else:
            default_parent = await self.repository.resolve_target_folder(None)

        snapshot = await self.repository.snapshot()
        by_hash: Dict[str, StashedEntry] = {}
        if not allow_duplicates:
            for existing in snapshot.index.values():
                by_hash.setdefault(url_fingerprint(existing.item.url, flags), existing)

        imported = 0
        updated = 0
        needing_metadata = []
        for raw in entries:
            try:
                url = convert_tabxpert_url(raw.url)
                if not is_http_url(url):
                    continue

                now = now_ms()
                url_hash = url_fingerprint(url, flags)
                existing = by_hash.get(url_hash)

                if existing is not None:
                    merged_tags = list(dict.fromkeys(existing.item.tags + raw.tags))
                    merged = existing.item.model_copy(
                        update={
                            "title": raw.title if raw.title is not None else existing.item.title,
                            "tags": merged_tags,
                            "last_seen_at": now,
                        }
                    )
                    await self.repository.write_item(existing.node.id, merged)
                    by_hash[url_hash] = StashedEntry(existing.node, merged, existing.placement)
                    updated += 1
                    continue

                if raw.folder_id and snapshot.folder(raw.folder_id) is not None:
                    parent_id = raw.folder_id
                else:
                    parent_id = default_parent
                placement = project(parent_id, snapshot.system)

                created_at = raw.created_at if raw.created_at is not None else now
                item = Item(
                    id=str(uuid4()),
                    url=url,
                    title=raw.title,
                    created_at=created_at,
                    last_seen_at=now,
                    times_added=1,
                    tags=list(raw.tags),
                    folder_id=placement.folder_id,
                    sort_order=-created_at,
                )
                node = await self.repository.create_item(item, parent_id)
                if not allow_duplicates:
                    by_hash[url_hash] = StashedEntry(node, item, placement)
                imported += 1

                if not item.title or not item.favicon:
                    needing_metadata.append(item.id)

            except (TreeStoreError, ValueError) as e:
                logger.error(f"Failed to import {raw.url[:100]}: {e}")

        queued = self._queue_enrichment(needing_metadata)
        logger.info(f"Imported {imported} item(s), updated {updated}, queued {queued}")
        self.notifier.items_changed()

        return ImportResult(imported=imported, updated=updated, queued=queued)

    async def refresh_metadata(self, item_ids: List[str]) -> int:
        """Force re-enrichment of items.

        Returns:
            Number of ids newly queued
        """
        return self._queue_enrichment(list(item_ids), force=True)
