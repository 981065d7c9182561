"""Folder manager: folder CRUD, ordering and per-folder statistics."""

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from ..models.item import (
    ARCHIVE_FOLDER_ID,
    TRASH_FOLDER_ID,
    UNFILED_STATS_KEY,
    UNSET,
    Folder,
    FolderListing,
    now_ms,
)
from ..models.tree import TreeNode
from .folder_colors import FolderColorStore
from .notifier import ChangeNotifier
from .tree_repository import (
    ARCHIVE_ALIAS,
    TRASH_ALIAS,
    FolderDeleteAction,
    FolderNotFoundError,
    FolderOperationError,
    PlacementKind,
    SystemFolders,
    TreeRepository,
    TreeSnapshot,
)
from .tree_store import TreeStoreError

logger = logging.getLogger(__name__)


def folder_parent(parent_id: Optional[str], system: SystemFolders) -> Optional[str]:
    """Folder parent as the UI sees it."""
    if parent_id == system.trash_id:
        return TRASH_FOLDER_ID
    if parent_id == system.archive_id:
        return ARCHIVE_FOLDER_ID
    if parent_id in (system.root_id, system.unfiled_id):
        return None
    return parent_id


class FolderManager:
    """UI-facing folder operations."""

    def __init__(
        self,
        repository: TreeRepository,
        colors: Optional[FolderColorStore] = None,
        notifier: Optional[ChangeNotifier] = None,
    ):
        self.repository = repository
        self.colors = colors or FolderColorStore()
        self.notifier = notifier or ChangeNotifier()

    async def _resolve_parent(self, parent_id: Optional[str]) -> str:
        system = await self.repository.system_folders()
        if not parent_id:
            return system.root_id
        if parent_id in (TRASH_FOLDER_ID, TRASH_ALIAS):
            return system.trash_id
        if parent_id in (ARCHIVE_FOLDER_ID, ARCHIVE_ALIAS):
            return system.archive_id
        if parent_id in system.ids:
            return parent_id

        snapshot = await self.repository.snapshot()
        if snapshot.folder(parent_id) is None:
            raise FolderNotFoundError(f"Parent folder not found: {parent_id}")
        return parent_id

    async def _custom_folder(self, folder_id: str) -> TreeNode:
        snapshot = await self.repository.snapshot()
        if folder_id in snapshot.system.ids:
            raise FolderOperationError(f"System folder cannot be modified: {folder_id}")
        folder = snapshot.folder(folder_id)
        if folder is None:
            raise FolderNotFoundError(f"Folder not found: {folder_id}")
        return folder

    @staticmethod
    def _stats(snapshot: TreeSnapshot) -> Dict[str, int]:
        stats: Dict[str, int] = defaultdict(int)
        for entry in snapshot.entries:
            placement = entry.placement
            if placement.kind == PlacementKind.UNFILED:
                stats[UNFILED_STATS_KEY] += 1
            else:
                stats[placement.folder_id] += 1
        return dict(stats)

    async def folders_with_stats(self) -> FolderListing:
        """List custom folders with their UI parent, order and color, plus counts."""
        snapshot = await self.repository.snapshot()
        system = snapshot.system
        colors = await self.colors.all()

        siblings: Dict[Optional[str], List[str]] = defaultdict(list)
        for folder in snapshot.folders:
            siblings[folder.parent_id].append(folder.id)

        folders = []
        for node in snapshot.custom_folders:
            folders.append(
                Folder(
                    id=node.id,
                    name=node.title,
                    parent_id=folder_parent(node.parent_id, system),
                    color=colors.get(node.id),
                    sort_order=siblings[node.parent_id].index(node.id),
                    created_at=node.date_added or 0,
                )
            )

        return FolderListing(
            folders=folders,
            trash_folder_id=system.trash_id,
            archive_folder_id=system.archive_id,
            folder_stats=self._stats(snapshot),
        )

    async def folder_stats(self) -> Dict[str, int]:
        return self._stats(await self.repository.snapshot())

    async def create_folder(
        self, name: str, parent_id: Optional[str] = None, color: Optional[str] = None
    ) -> Folder:
        """Create a folder (top level when parent_id is None).

        Raises:
            FolderNotFoundError: If the parent folder doesn't exist
        """
        parent = await self._resolve_parent(parent_id)
        node = await self.repository.store.create(parent, name)

        if color:
            await self.colors.set(node.id, color)

        system = await self.repository.system_folders()
        logger.info(f"Created folder '{name}' ({node.id})")
        self.notifier.folders_changed()

        return Folder(
            id=node.id,
            name=name,
            parent_id=folder_parent(parent, system),
            color=color,
            sort_order=node.index,
            created_at=node.date_added or now_ms(),
        )

    async def update_folder(
        self,
        folder_id: str,
        name: Optional[str] = None,
        parent_id=UNSET,
        color: Optional[str] = None,
        clear_color: bool = False,
    ) -> None:
        """Rename, move and/or recolor a custom folder.

        Raises:
            FolderOperationError: If folder_id is a system folder
            FolderNotFoundError: If the folder or new parent doesn't exist
        """
        await self._custom_folder(folder_id)

        if parent_id is not UNSET:
            target = await self._resolve_parent(parent_id)
            await self.repository.store.move(folder_id, target)

        if name:
            await self.repository.store.update(folder_id, title=name)

        if clear_color:
            await self.colors.remove(folder_id)
        elif color:
            await self.colors.set(folder_id, color)

        logger.info(f"Updated folder {folder_id}")
        self.notifier.folders_changed()

    async def delete_folder(
        self, folder_id: str, action: FolderDeleteAction = FolderDeleteAction.MOVE_TO_UNFILED
    ) -> int:
        """Delete a folder, relocating its items per action.

        Returns:
            Number of items relocated
        """
        relocated = await self.repository.delete_folder(folder_id, action)
        await self.colors.remove(folder_id)

        self.notifier.folders_changed()
        self.notifier.items_changed()
        return relocated

    async def reorder_folders(
        self, folder_ids: List[str], parent_id: Optional[str] = None
    ) -> int:
        """Move each folder to its position under parent_id.

        Folders that cannot be moved are skipped.

        Returns:
            Number of folders moved
        """
        parent = await self._resolve_parent(parent_id)

        reordered = 0
        for index, folder_id in enumerate(folder_ids):
            try:
                await self.repository.store.move(folder_id, parent, index)
                reordered += 1
            except TreeStoreError as e:
                logger.debug(f"Skipping folder {folder_id} in reorder: {e}")

        self.notifier.folders_changed()
        return reordered
