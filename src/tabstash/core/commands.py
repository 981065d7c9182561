"""Command protocol between the UI and the stash.

Requests form a closed union tagged by ``type``. The dispatcher owns exactly
one handler per variant and answers every request with either
``{"ok": true, ...payload}`` or ``{"ok": false, "error": message}``.
"""

import logging
from typing import (
    Annotated,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Literal,
    Optional,
    Union,
    get_args,
)

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..models.item import UNSET, ImportEntry, ItemPatch
from ..models.tabs import TabSummary
from .folder_manager import FolderManager
from .item_manager import ItemManager, ItemNotFoundError
from .tree_repository import FolderDeleteAction, FolderNotFoundError, FolderOperationError
from .tree_store import TreeStoreError

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Command protocol error."""

    pass


class _Command(BaseModel):
    model_config = ConfigDict(extra="forbid")


class PingCommand(_Command):
    type: Literal["PING"]


class GetTabsStatusCommand(_Command):
    type: Literal["GET_TABS_STATUS"]
    tabs: List[TabSummary] = Field(default_factory=list)


class StashTabsCommand(_Command):
    type: Literal["STASH_TABS"]
    tabs: List[TabSummary]
    tags: List[str] = Field(default_factory=list)
    folder_id: Optional[str] = None


class GetItemsCommand(_Command):
    """Omitting folder_id lists every folder; an explicit null lists Unfiled."""

    type: Literal["GET_ITEMS"]
    folder_id: Optional[str] = None
    include_trash: bool = False
    include_archive: bool = False
    limit: Optional[int] = Field(None, ge=0)


class SearchItemsCommand(_Command):
    type: Literal["SEARCH_ITEMS"]
    q: str
    folder_id: Optional[str] = None


class UpdateItemCommand(_Command):
    type: Literal["UPDATE_ITEM"]
    id: str
    patch: ItemPatch


class DeleteItemCommand(_Command):
    type: Literal["DELETE_ITEM"]
    id: str
    soft: bool = False


class EmptyTrashCommand(_Command):
    type: Literal["EMPTY_TRASH"]


class ImportItemsCommand(_Command):
    type: Literal["IMPORT_ITEMS"]
    items: List[ImportEntry]
    allow_duplicates: bool = False
    folder_path: Optional[str] = None


class GetFoldersWithStatsCommand(_Command):
    type: Literal["GET_FOLDERS_WITH_STATS"]


class GetFolderStatsCommand(_Command):
    type: Literal["GET_FOLDER_STATS"]


class CreateFolderCommand(_Command):
    type: Literal["CREATE_FOLDER"]
    name: str = Field(..., min_length=1)
    parent_id: Optional[str] = None
    color: Optional[str] = None


class FolderPatch(BaseModel):
    """Folder changes; a color given as null clears the color."""

    name: Optional[str] = None
    parent_id: Optional[str] = None
    color: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class UpdateFolderCommand(_Command):
    type: Literal["UPDATE_FOLDER"]
    id: str
    patch: FolderPatch


class DeleteFolderCommand(_Command):
    type: Literal["DELETE_FOLDER"]
    id: str
    action: FolderDeleteAction = FolderDeleteAction.MOVE_TO_UNFILED


class MoveItemsToFolderCommand(_Command):
    type: Literal["MOVE_ITEMS_TO_FOLDER"]
    item_ids: List[str]
    folder_id: Optional[str] = None


class BulkAddTagsCommand(_Command):
    type: Literal["BULK_ADD_TAGS"]
    item_ids: List[str]
    tags: List[str]


class BulkRemoveTagsCommand(_Command):
    type: Literal["BULK_REMOVE_TAGS"]
    item_ids: List[str]
    tags: List[str]


class ReorderItemsCommand(_Command):
    type: Literal["REORDER_ITEMS"]
    item_ids: List[str]


class ReorderFoldersCommand(_Command):
    type: Literal["REORDER_FOLDERS"]
    folder_ids: List[str]
    parent_id: Optional[str] = None


class RefreshMetadataCommand(_Command):
    type: Literal["REFRESH_METADATA"]
    item_ids: List[str]


class CheckExistingUrlsCommand(_Command):
    type: Literal["CHECK_EXISTING_URLS"]
    urls: List[str]


Command = Annotated[
    Union[
        PingCommand,
        GetTabsStatusCommand,
        StashTabsCommand,
        GetItemsCommand,
        SearchItemsCommand,
        UpdateItemCommand,
        DeleteItemCommand,
        EmptyTrashCommand,
        ImportItemsCommand,
        GetFoldersWithStatsCommand,
        GetFolderStatsCommand,
        CreateFolderCommand,
        UpdateFolderCommand,
        DeleteFolderCommand,
        MoveItemsToFolderCommand,
        BulkAddTagsCommand,
        BulkRemoveTagsCommand,
        ReorderItemsCommand,
        ReorderFoldersCommand,
        RefreshMetadataCommand,
        CheckExistingUrlsCommand,
    ],
    Field(discriminator="type"),
]

COMMAND_TYPES = get_args(get_args(Command)[0])

_command_adapter = TypeAdapter(Command)

Handler = Callable[[Any], Awaitable[Dict[str, Any]]]


def parse_command(raw: Any) -> BaseModel:
    """Validate a raw request into its command variant.

    Raises:
        ValidationError: If the request matches no variant
    """
    return _command_adapter.validate_python(raw)


def success(**payload: Any) -> Dict[str, Any]:
    return {"ok": True, **payload}


def failure(error: str) -> Dict[str, Any]:
    return {"ok": False, "error": error}


def _describe_validation_error(e: ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"Invalid command: {location}: {first['msg']}"
    return f"Invalid command: {first['msg']}"


class CommandDispatcher:
    """Routes each command variant to its handler."""

    def __init__(self, items: ItemManager, folders: FolderManager):
        """Initialize dispatcher.

        Raises:
            CommandError: If any command variant has no handler
        """
        self.items = items
        self.folders = folders

        self._handlers: Dict[type, Handler] = {
            PingCommand: self._ping,
            GetTabsStatusCommand: self._get_tabs_status,
            StashTabsCommand: self._stash_tabs,
            GetItemsCommand: self._get_items,
            SearchItemsCommand: self._search_items,
            UpdateItemCommand: self._update_item,
            DeleteItemCommand: self._delete_item,
            EmptyTrashCommand: self._empty_trash,
            ImportItemsCommand: self._import_items,
            GetFoldersWithStatsCommand: self._get_folders_with_stats,
            GetFolderStatsCommand: self._get_folder_stats,
            CreateFolderCommand: self._create_folder,
            UpdateFolderCommand: self._update_folder,
            DeleteFolderCommand: self._delete_folder,
            MoveItemsToFolderCommand: self._move_items_to_folder,
            BulkAddTagsCommand: self._bulk_add_tags,
            BulkRemoveTagsCommand: self._bulk_remove_tags,
            ReorderItemsCommand: self._reorder_items,
            ReorderFoldersCommand: self._reorder_folders,
            RefreshMetadataCommand: self._refresh_metadata,
            CheckExistingUrlsCommand: self._check_existing_urls,
        }

        missing = [cls.__name__ for cls in COMMAND_TYPES if cls not in self._handlers]
        if missing:
            raise CommandError(f"No handler for command(s): {', '.join(missing)}")

    async def dispatch(self, raw: Any) -> Dict[str, Any]:
        """Validate and execute a raw request.

        Never raises; every failure becomes ``{"ok": False, "error": ...}``.
        """
        try:
            command = parse_command(raw)
        except ValidationError as e:
            message = _describe_validation_error(e)
            logger.warning(message)
            return failure(message)

        return await self.execute(command)

    async def execute(self, command: BaseModel) -> Dict[str, Any]:
        handler = self._handlers[type(command)]
        try:
            return await handler(command)
        except (ItemNotFoundError, FolderNotFoundError, FolderOperationError) as e:
            logger.warning(f"{command.type} rejected: {e}")
            return failure(str(e))
        except (TreeStoreError, ValueError) as e:
            logger.error(f"{command.type} failed: {e}")
            return failure(str(e))
        except Exception as e:
            logger.error(f"Unexpected error handling {command.type}: {e}", exc_info=True)
            return failure(f"Internal error: {e}")

    # Handlers

    async def _ping(self, command: PingCommand):
        return success(pong=True)

    async def _get_tabs_status(self, command: GetTabsStatusCommand):
        tabs = await self.items.tabs_with_status(command.tabs)
        return success(tab_status=[tab.model_dump(mode="json") for tab in tabs])

    async def _stash_tabs(self, command: StashTabsCommand):
        result = await self.items.stash_tabs(command.tabs, command.tags, command.folder_id)
        return success(**result.model_dump())

    async def _get_items(self, command: GetItemsCommand):
        folder_id = command.folder_id if "folder_id" in command.model_fields_set else UNSET
        items = await self.items.list_items(
            folder_id=folder_id,
            include_trash=command.include_trash,
            include_archive=command.include_archive,
            limit=command.limit,
        )
        return success(items=[item.model_dump(mode="json") for item in items])

    async def _search_items(self, command: SearchItemsCommand):
        items = await self.items.search_items(command.q, command.folder_id)
        return success(items=[item.model_dump(mode="json") for item in items])

    async def _update_item(self, command: UpdateItemCommand):
        item = await self.items.update_item(command.id, command.patch)
        return success(updated=True, item=item.model_dump(mode="json"))

    async def _delete_item(self, command: DeleteItemCommand):
        await self.items.delete_item(command.id, soft=command.soft)
        return success(deleted=True)

    async def _empty_trash(self, command: EmptyTrashCommand):
        return success(deleted=await self.items.empty_trash())

    async def _import_items(self, command: ImportItemsCommand):
        result = await self.items.import_items(
            command.items, command.allow_duplicates, command.folder_path
        )
        return success(**result.model_dump())

    async def _get_folders_with_stats(self, command: GetFoldersWithStatsCommand):
        listing = await self.folders.folders_with_stats()
        return success(**listing.model_dump(mode="json"))

    async def _get_folder_stats(self, command: GetFolderStatsCommand):
        return success(folder_stats=await self.folders.folder_stats())

    async def _create_folder(self, command: CreateFolderCommand):
        folder = await self.folders.create_folder(
            command.name, command.parent_id, command.color
        )
        return success(folder=folder.model_dump(mode="json"))

    async def _update_folder(self, command: UpdateFolderCommand):
        patch = command.patch
        given = patch.model_fields_set
        await self.folders.update_folder(
            command.id,
            name=patch.name,
            parent_id=patch.parent_id if "parent_id" in given else UNSET,
            color=patch.color,
            clear_color="color" in given and patch.color is None,
        )
        return success(updated=True)

    async def _delete_folder(self, command: DeleteFolderCommand):
        relocated = await self.folders.delete_folder(command.id, command.action)
        return success(deleted=True, relocated=relocated)

    async def _move_items_to_folder(self, command: MoveItemsToFolderCommand):
        return success(moved=await self.items.move_items(command.item_ids, command.folder_id))

    async def _bulk_add_tags(self, command: BulkAddTagsCommand):
        return success(tagged=await self.items.bulk_add_tags(command.item_ids, command.tags))

    async def _bulk_remove_tags(self, command: BulkRemoveTagsCommand):
        untagged = await self.items.bulk_remove_tags(command.item_ids, command.tags)
        return success(untagged=untagged)

    async def _reorder_items(self, command: ReorderItemsCommand):
        return success(reordered=await self.items.reorder_items(command.item_ids))

    async def _reorder_folders(self, command: ReorderFoldersCommand):
        reordered = await self.folders.reorder_folders(command.folder_ids, command.parent_id)
        return success(reordered=reordered)

    async def _refresh_metadata(self, command: RefreshMetadataCommand):
        return success(queued=await self.items.refresh_metadata(command.item_ids))

    async def _check_existing_urls(self, command: CheckExistingUrlsCommand):
        existing = await self.items.check_existing_urls(command.urls)
        return success(existing=[entry.model_dump() for entry in existing])
