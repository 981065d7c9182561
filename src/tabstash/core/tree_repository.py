"""Tree repository: turns the bookmark tree into a cached, indexed item store.

The physical position of a bookmark is the ground truth for its folder and
status. The folder id embedded in its metadata is only a hint, rewritten
whenever the repository moves a node and reconciled on every read.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from ..models.item import ARCHIVE_FOLDER_ID, TRASH_FOLDER_ID, Item
from ..models.tree import TreeNode
from .metadata_codec import ReconstructedMetadata, decode_metadata, item_to_node, read_node
from .tree_cache import TreeCache
from .tree_store import (
    BOOKMARKS_BAR_TITLE,
    OTHER_BOOKMARKS_ID,
    OTHER_BOOKMARKS_TITLE,
    BookmarkTreeStore,
    TreeStoreError,
)

logger = logging.getLogger(__name__)

ROOT_FOLDER_NAME = "Tab Stash"
UNFILED_FOLDER_NAME = "Unfiled"
TRASH_FOLDER_NAME = "Trash"
ARCHIVE_FOLDER_NAME = "Archive"

# Folder id aliases accepted from callers
TRASH_ALIAS = "trash"
ARCHIVE_ALIAS = "archive"

_TREE_KEY = "tree"
_SYSTEM_KEY = "system"
_SNAPSHOT_KEY = "snapshot"


class FolderNotFoundError(Exception):
    """Folder not found error."""

    pass


class FolderOperationError(Exception):
    """Folder operation not allowed."""

    pass


class FolderDeleteAction(str, Enum):
    """What happens to the contents of a deleted folder."""

    DELETE_ITEMS = "delete_items"
    MOVE_TO_PARENT = "move_to_parent"
    MOVE_TO_UNFILED = "move_to_unfiled"


class PlacementKind(str, Enum):
    UNFILED = "unfiled"
    TRASH = "trash"
    ARCHIVE = "archive"
    FOLDER = "folder"


@dataclass(frozen=True)
class Placement:
    """Logical location of a node: its kind plus the folder id the UI sees."""

    kind: PlacementKind
    folder_id: Optional[str] = None


@dataclass(frozen=True)
class SystemFolders:
    """Node ids of the folder skeleton."""

    root_id: str
    unfiled_id: str
    trash_id: str
    archive_id: str

    @property
    def ids(self) -> frozenset:
        return frozenset({self.root_id, self.unfiled_id, self.trash_id, self.archive_id})


def project(parent_id: Optional[str], system: SystemFolders) -> Placement:
    """Derive the logical placement of a node from its physical parent."""
    if parent_id == system.trash_id:
        return Placement(PlacementKind.TRASH, TRASH_FOLDER_ID)
    if parent_id == system.archive_id:
        return Placement(PlacementKind.ARCHIVE, ARCHIVE_FOLDER_ID)
    if parent_id is None or parent_id in (system.unfiled_id, system.root_id):
        return Placement(PlacementKind.UNFILED, None)
    return Placement(PlacementKind.FOLDER, parent_id)


@dataclass
class StashedEntry:
    """A decoded bookmark together with its node and projected placement.

    item.folder_id always reflects the projection, never the stored hint.
    """

    node: TreeNode
    item: Item
    placement: Placement


@dataclass
class TreeSnapshot:
    """One bulk copy of the tree, partitioned into folders and items."""

    system: SystemFolders
    folders: List[TreeNode] = field(default_factory=list)
    entries: List[StashedEntry] = field(default_factory=list)
    index: Dict[str, StashedEntry] = field(default_factory=dict)

    def folder(self, folder_id: str) -> Optional[TreeNode]:
        for folder in self.folders:
            if folder.id == folder_id:
                return folder
        return None

    @property
    def custom_folders(self) -> List[TreeNode]:
        system_ids = self.system.ids
        return [f for f in self.folders if f.id not in system_ids]

    def folder_name(self, placement: Placement) -> str:
        """Human-readable name of a placement."""
        if placement.kind == PlacementKind.TRASH:
            return TRASH_FOLDER_NAME
        if placement.kind == PlacementKind.ARCHIVE:
            return ARCHIVE_FOLDER_NAME
        if placement.kind == PlacementKind.FOLDER:
            folder = self.folder(placement.folder_id)
            if folder is not None:
                return folder.title
        return UNFILED_FOLDER_NAME


def _find_folder_titled(node: TreeNode, title: str) -> Optional[TreeNode]:
    for candidate in node.iter_descendants():
        if candidate.is_folder and candidate.title == title:
            return candidate
    return None


def _child_folder_titled(node: TreeNode, title: str) -> Optional[TreeNode]:
    for child in node.children or []:
        if child.is_folder and child.title == title:
            return child
    return None


def _stash_root_parent(tree: TreeNode) -> str:
    """Choose where a brand-new root folder goes."""
    top = [c for c in tree.children or [] if c.is_folder]
    for child in top:
        if child.id == OTHER_BOOKMARKS_ID:
            return child.id
    for child in top:
        if child.title == OTHER_BOOKMARKS_TITLE:
            return child.id
    for child in top:
        if child.title != BOOKMARKS_BAR_TITLE:
            return child.id
    return tree.id


class TreeRepository:
    """Queryable view over a BookmarkTreeStore.

    Reads go through a TreeCache that the store's mutation events drop, so a
    read following a mutation always sees it.
    """

    def __init__(self, store: BookmarkTreeStore, cache: Optional[TreeCache] = None):
        """Initialize repository.

        Args:
            store: Host bookmark tree store
            cache: Cache for tree reads (a 5 s TTL cache when omitted)
        """
        self.store = store
        self.cache = cache or TreeCache()
        self._unsubscribe = store.subscribe(self.cache.on_tree_event)
        self._skeleton_lock = asyncio.Lock()

    def close(self) -> None:
        """Stop listening to store events."""
        self._unsubscribe()

    def invalidate(self) -> None:
        """Drop cached reads; for writers that bypass store notifications."""
        self.cache.invalidate()

    # Reads

    async def get_tree(self) -> TreeNode:
        cached = self.cache.get(_TREE_KEY)
        if cached is not None:
            return cached

        generation = self.cache.generation
        tree = await self.store.get_tree()
        self.cache.put(_TREE_KEY, tree, generation)
        return tree

    async def system_folders(self) -> SystemFolders:
        """Resolve the folder skeleton, creating whatever is missing.

        The whole tree is scanned for an existing root folder first, so a
        root the user moved elsewhere is found rather than duplicated.
        """
        cached = self.cache.get(_SYSTEM_KEY)
        if cached is not None:
            return cached

        async with self._skeleton_lock:
            cached = self.cache.get(_SYSTEM_KEY)
            if cached is not None:
                return cached

            tree = await self.get_tree()
            root = _find_folder_titled(tree, ROOT_FOLDER_NAME)
            if root is None:
                parent_id = _stash_root_parent(tree)
                root = await self.store.create(parent_id, ROOT_FOLDER_NAME)
                logger.info(f"Created '{ROOT_FOLDER_NAME}' folder {root.id} under {parent_id}")

            ids = {}
            for name in (UNFILED_FOLDER_NAME, TRASH_FOLDER_NAME, ARCHIVE_FOLDER_NAME):
                child = _child_folder_titled(root, name)
                if child is None:
                    child = await self.get_or_create_folder(name, root.id)
                ids[name] = child.id

            system = SystemFolders(
                root_id=root.id,
                unfiled_id=ids[UNFILED_FOLDER_NAME],
                trash_id=ids[TRASH_FOLDER_NAME],
                archive_id=ids[ARCHIVE_FOLDER_NAME],
            )
            self.cache.put(_SYSTEM_KEY, system, self.cache.generation)
            return system

    async def snapshot(self) -> TreeSnapshot:
        """Partition the tree into folders and items with one bulk fetch."""
        cached = self.cache.get(_SNAPSHOT_KEY)
        if cached is not None:
            return cached

        system = await self.system_folders()
        generation = self.cache.generation
        tree = await self.get_tree()

        snapshot = TreeSnapshot(system=system)
        self._walk(tree, snapshot, inside_root=False)

        self.cache.put(_SNAPSHOT_KEY, snapshot, generation)
        logger.debug(
            f"Built snapshot: {len(snapshot.folders)} folders, "
            f"{len(snapshot.entries)} items, {len(snapshot.index)} indexed"
        )
        return snapshot

    def _walk(self, node: TreeNode, snapshot: TreeSnapshot, inside_root: bool) -> None:
        """Single decoding pass over the tree, filling folders, entries and index."""
        for child in node.children or []:
            if child.is_folder:
                if inside_root:
                    snapshot.folders.append(child)
                self._walk(
                    child,
                    snapshot,
                    inside_root or child.id == snapshot.system.root_id,
                )
                continue

            if not inside_root:
                # Outside the stash only readable records are indexed
                if decode_metadata(child.url) is None:
                    continue

            result = read_node(child)
            placement = project(child.parent_id, snapshot.system)
            item = result.item.model_copy(update={"folder_id": placement.folder_id})
            entry = StashedEntry(node=child, item=item, placement=placement)

            if inside_root:
                snapshot.entries.append(entry)
            snapshot.index.setdefault(item.id, entry)
            if isinstance(result, ReconstructedMetadata):
                logger.debug(f"Bookmark {child.id} has no readable metadata")

    async def find_by_id(self, item_id: str) -> Optional[StashedEntry]:
        snapshot = await self.snapshot()
        return snapshot.index.get(item_id)

    async def find_many(self, item_ids: Iterable[str]) -> Dict[str, StashedEntry]:
        """Look up many items against a single index."""
        snapshot = await self.snapshot()
        found = {}
        for item_id in item_ids:
            entry = snapshot.index.get(item_id)
            if entry is not None:
                found[item_id] = entry
        return found

    # Folders

    async def get_or_create_folder(self, name: str, parent_id: str) -> TreeNode:
        """Find a direct child folder by exact title, creating it if absent."""
        for child in await self.store.get_children(parent_id):
            if child.is_folder and child.title == name:
                return child

        folder = await self.store.create(parent_id, name)
        logger.info(f"Created folder '{name}' ({folder.id}) under {parent_id}")
        return folder

    async def create_folder_hierarchy(self, path: str, parent_id: Optional[str] = None) -> str:
        """Resolve a slash-separated folder path, creating missing segments.

        Args:
            path: Path such as "Work/Research/AI"
            parent_id: Folder to start from (defaults to Unfiled)

        Returns:
            Id of the deepest folder
        """
        if parent_id is None:
            parent_id = (await self.system_folders()).unfiled_id

        for segment in path.split("/"):
            segment = segment.strip()
            if not segment:
                continue
            parent_id = (await self.get_or_create_folder(segment, parent_id)).id

        return parent_id

    async def resolve_target_folder(self, folder_id: Optional[str]) -> str:
        """Map a logical folder id to the physical parent node id.

        Accepts None (Unfiled), the trash/archive sentinels and aliases, system
        node ids and custom folder ids. Unknown custom ids fall back to Unfiled.
        """
        system = await self.system_folders()

        if not folder_id:
            return system.unfiled_id
        if folder_id in (TRASH_FOLDER_ID, TRASH_ALIAS):
            return system.trash_id
        if folder_id in (ARCHIVE_FOLDER_ID, ARCHIVE_ALIAS):
            return system.archive_id
        if folder_id in system.ids:
            return folder_id

        snapshot = await self.snapshot()
        if snapshot.folder(folder_id) is not None:
            return folder_id

        logger.warning(f"Unknown folder {folder_id}, using {UNFILED_FOLDER_NAME}")
        return system.unfiled_id

    # Items

    async def create_item(self, item: Item, parent_id: str) -> TreeNode:
        details = item_to_node(item)
        return await self.store.create(parent_id, details.title, details.url)

    async def write_item(self, node_id: str, item: Item) -> TreeNode:
        """Encode an item and write it over its node."""
        details = item_to_node(item)
        return await self.store.update(node_id, title=details.title, url=details.url)

    async def move_item(
        self,
        node_id: str,
        item: Item,
        target_parent_id: str,
        index: Optional[int] = None,
    ) -> Item:
        """Move a bookmark and rewrite its embedded folder hint to match.

        Returns:
            The item as now stored
        """
        system = await self.system_folders()
        await self.store.move(node_id, target_parent_id, index)

        placement = project(target_parent_id, system)
        moved = item.model_copy(update={"folder_id": placement.folder_id})
        await self.write_item(node_id, moved)
        return moved

    async def remove_item(self, node_id: str) -> None:
        await self.store.remove(node_id)

    # Folder deletion

    async def delete_folder(self, folder_id: str, action: FolderDeleteAction) -> int:
        """Delete a custom folder after relocating everything inside it.

        Bookmarks go to Trash (delete_items) or to the target folder. Subfolders
        are emptied bottom-up, then removed with the folder as one subtree
        (delete_items) or one by one (other actions). The folder node itself is
        removed last.

        Args:
            folder_id: Custom folder node id
            action: What to do with the contents

        Returns:
            Number of bookmarks relocated

        Raises:
            FolderOperationError: If folder_id is a system folder
            FolderNotFoundError: If the folder does not exist
        """
        action = FolderDeleteAction(action)
        system = await self.system_folders()
        if folder_id in system.ids:
            raise FolderOperationError(f"System folder cannot be deleted: {folder_id}")

        snapshot = await self.snapshot()
        folder = snapshot.folder(folder_id)
        if folder is None:
            raise FolderNotFoundError(f"Folder not found: {folder_id}")

        if action == FolderDeleteAction.DELETE_ITEMS:
            target_id = system.trash_id
        elif action == FolderDeleteAction.MOVE_TO_PARENT and folder.parent_id != system.root_id:
            target_id = folder.parent_id
        else:
            target_id = system.unfiled_id

        relocated = await self._empty_folder(folder_id, target_id, system, action)

        if action == FolderDeleteAction.DELETE_ITEMS:
            await self.store.remove_tree(folder_id)
        else:
            await self.store.remove(folder_id)

        logger.info(
            f"Deleted folder {folder_id} ({action.value}), relocated {relocated} item(s)"
        )
        return relocated

    async def _empty_folder(
        self,
        folder_id: str,
        target_id: str,
        system: SystemFolders,
        action: FolderDeleteAction,
    ) -> int:
        relocated = 0
        placement = project(target_id, system)

        for child in await self.store.get_children(folder_id):
            if child.is_folder:
                relocated += await self._empty_folder(child.id, target_id, system, action)
                if action != FolderDeleteAction.DELETE_ITEMS:
                    await self.store.remove(child.id)
                continue

            result = read_node(child)
            item = result.item.model_copy(update={"folder_id": placement.folder_id})
            await self.store.move(child.id, target_id)
            await self.write_item(child.id, item)
            relocated += 1

        return relocated

    async def empty_trash(self) -> int:
        """Permanently remove everything in Trash.

        Returns:
            Number of top-level entries removed
        """
        system = await self.system_folders()
        removed = 0

        for child in await self.store.get_children(system.trash_id):
            try:
                if child.is_folder:
                    await self.store.remove_tree(child.id)
                else:
                    await self.store.remove(child.id)
                removed += 1
            except TreeStoreError as e:
                logger.error(f"Failed to remove {child.id} from trash: {e}")

        logger.info(f"Emptied trash: {removed} entries removed")
        return removed
