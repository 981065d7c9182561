"""Tests for ItemManager operations."""

from unittest.mock import MagicMock, patch

import pytest

from tabstash.config import StaticSettings
from tabstash.core.item_manager import ItemManager, ItemNotFoundError
from tabstash.core.notifier import ChangeEvent, ChangeNotifier
from tabstash.core.tab_registry import OpenTabRegistry
from tabstash.core.tree_cache import TreeCache
from tabstash.core.tree_repository import PlacementKind, TreeRepository
from tabstash.core.tree_store import FileTreeStore, InMemoryTreeStore, TreeStoreError
from tabstash.models.item import TRASH_FOLDER_ID, ImportEntry, ItemPatch
from tabstash.models.tabs import TabSummary
from tabstash.utils.url_utils import NormalizationFlags
from tabstash.utils.yaml_handler import YAMLError


def tab(tab_id: int, url: str, title=None, icon=None) -> TabSummary:
    return TabSummary(id=tab_id, url=url, title=title, fav_icon_url=icon)


@pytest.fixture
def store():
    return InMemoryTreeStore()


@pytest.fixture
def repository(store):
    repo = TreeRepository(store, TreeCache(ttl_seconds=60.0))
    yield repo
    repo.close()


@pytest.fixture
def enricher():
    fake = MagicMock()
    fake.enqueue.side_effect = lambda ids, force=False: len(list(ids))
    return fake


@pytest.fixture
def manager(repository, enricher):
    return ItemManager(
        repository,
        StaticSettings(),
        enricher=enricher,
        notifier=ChangeNotifier(),
        tab_registry=OpenTabRegistry(),
    )


class TestStashTabs:
    """Test stashing tabs."""

    @pytest.mark.asyncio
    async def test_stash_creates_items(self, manager):
        result = await manager.stash_tabs(
            [
                tab(1, "https://a.test/", "A", "https://a.test/icon.png"),
                tab(2, "https://b.test/"),
                tab(3, "chrome://settings"),
            ],
            tags=["later"],
        )

        assert result.added == 2
        assert result.updated == 0
        items = await manager.list_items()
        assert {i.url for i in items} == {"https://a.test/", "https://b.test/"}
        assert all(i.tags == ["later"] for i in items)
        assert all(i.folder_id is None for i in items)

    @pytest.mark.asyncio
    async def test_stash_same_url_twice_creates_two_items(self, manager):
        await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")])
        await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")])

        assert len(await manager.list_items()) == 2

    @pytest.mark.asyncio
    async def test_stash_queues_items_missing_metadata(self, manager, enricher):
        await manager.stash_tabs(
            [tab(1, "https://a.test/", "A", "https://a.test/i.png"), tab(2, "https://b.test/")]
        )

        queued_ids = list(enricher.enqueue.call_args[0][0])
        assert len(queued_ids) == 1
        assert (await manager.get_item(queued_ids[0])).item.url == "https://b.test/"

    @pytest.mark.asyncio
    async def test_stash_into_folder(self, manager, store, repository):
        system = await repository.system_folders()
        folder = await store.create(system.root_id, "Work")

        await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")], folder_id=folder.id)

        items = await manager.list_items(folder_id=folder.id)
        assert len(items) == 1
        assert items[0].folder_id == folder.id

    @pytest.mark.asyncio
    async def test_stash_converts_tabxpert_urls(self, manager):
        await manager.stash_tabs(
            [tab(1, "https://s.tabxpert.com/#!title=X&url=https%3A%2F%2Freal.test%2F", "X", "i")]
        )

        assert (await manager.list_items())[0].url == "https://real.test/"

    @pytest.mark.asyncio
    async def test_stash_notifies(self, manager):
        events = []
        manager.notifier.subscribe(events.append)

        await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")])

        assert events == [ChangeEvent.ITEMS_CHANGED]


class TestTabsStatus:
    """Test tab annotation."""

    @pytest.mark.asyncio
    async def test_tabs_with_status(self, manager):
        await manager.stash_tabs([tab(1, "https://a.test/page?utm_source=x", "A", "i")])

        statuses = await manager.tabs_with_status(
            [tab(5, "https://A.test/page/"), tab(6, "https://other.test/"), tab(7, "about:blank")]
        )

        assert [s.stashed for s in statuses] == [True, False, False]
        assert statuses[0].item_id is not None
        assert [s.stashable for s in statuses] == [True, True, False]

    @pytest.mark.asyncio
    async def test_tabs_status_refreshes_registry(self, manager):
        await manager.tabs_with_status([tab(5, "https://a.test/")])

        assert [t.id for t in await manager.tab_registry.query_tabs()] == [5]

    @pytest.mark.asyncio
    async def test_flags_read_per_operation(self, repository):
        """Test changing settings changes which URLs count as stashed."""
        settings = StaticSettings()
        manager = ItemManager(repository, settings)
        await manager.stash_tabs([tab(1, "https://a.test/?id=1", "A", "i")])

        assert (await manager.tabs_with_status([tab(2, "https://a.test/?id=2")]))[0].stashed is False

        settings.flags = NormalizationFlags(strip_all_params=True)
        assert (await manager.tabs_with_status([tab(2, "https://a.test/?id=2")]))[0].stashed is True


class TestQueries:
    """Test listing and searching."""

    @pytest.mark.asyncio
    async def test_list_excludes_trash_and_archive_by_default(self, manager):
        await manager.stash_tabs([tab(1, "https://keep.test/", "Keep", "i")])
        await manager.stash_tabs([tab(2, "https://trash.test/", "Trash", "i")], folder_id="trash")
        await manager.stash_tabs([tab(3, "https://arch.test/", "Arch", "i")], folder_id="archive")

        assert [i.title for i in await manager.list_items()] == ["Keep"]
        assert len(await manager.list_items(include_trash=True, include_archive=True)) == 3
        assert [i.title for i in await manager.list_items(folder_id=TRASH_FOLDER_ID)] == ["Trash"]
        assert [i.title for i in await manager.list_items(folder_id=None)] == ["Keep"]

    @pytest.mark.asyncio
    async def test_list_sets_url_hash_and_limit(self, manager):
        await manager.stash_tabs([tab(i, f"https://{i}.test/", str(i), "x") for i in range(3)])

        items = await manager.list_items(limit=2)

        assert len(items) == 2
        assert all(len(i.url_hash) == 64 for i in items)

    @pytest.mark.asyncio
    async def test_zero_limit_lists_everything(self, manager):
        await manager.stash_tabs([tab(i, f"https://{i}.test/", str(i), "x") for i in range(3)])

        assert len(await manager.list_items(limit=0)) == 3

    @pytest.mark.asyncio
    async def test_search_matches_every_word(self, manager):
        await manager.stash_tabs([tab(1, "https://docs.python.org/", "Python Docs", "i")])
        await manager.stash_tabs([tab(2, "https://rust-lang.org/", "Rust", "i")], tags=["lang"])

        assert [i.title for i in await manager.search_items("python docs")] == ["Python Docs"]
        assert [i.title for i in await manager.search_items("LANG")] == ["Rust"]
        assert await manager.search_items("python rust") == []

    @pytest.mark.asyncio
    async def test_search_skips_trash_unless_asked(self, manager):
        await manager.stash_tabs([tab(1, "https://old.test/", "Old", "i")], folder_id="trash")

        assert await manager.search_items("old") == []
        assert len(await manager.search_items("old", folder_id="trash")) == 1

    @pytest.mark.asyncio
    async def test_check_existing_urls(self, manager, store, repository):
        system = await repository.system_folders()
        folder = await store.create(system.root_id, "Reading")
        await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")], folder_id=folder.id)

        existing = await manager.check_existing_urls(["https://A.test", "https://b.test/"])

        assert [(e.url, e.folder_name) for e in existing] == [("https://A.test", "Reading")]


class TestMutations:
    """Test item edits."""

    async def _one(self, manager):
        await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")])
        return (await manager.list_items())[0]

    @pytest.mark.asyncio
    async def test_update_item(self, manager):
        item = await self._one(manager)

        updated = await manager.update_item(item.id, ItemPatch(title="New", notes="n", tags=["x"]))

        assert updated.title == "New"
        stored = (await manager.get_item(item.id)).item
        assert stored.notes == "n"
        assert stored.tags == ["x"]
        assert stored.url == "https://a.test/"

    @pytest.mark.asyncio
    async def test_update_missing_item(self, manager):
        with pytest.raises(ItemNotFoundError, match="Item not found"):
            await manager.update_item("missing", ItemPatch(title="x"))

    @pytest.mark.asyncio
    async def test_delete_item(self, manager):
        item = await self._one(manager)

        await manager.delete_item(item.id)

        with pytest.raises(ItemNotFoundError):
            await manager.get_item(item.id)

    @pytest.mark.asyncio
    async def test_soft_delete_moves_to_trash(self, manager):
        item = await self._one(manager)

        await manager.delete_item(item.id, soft=True)

        entry = await manager.get_item(item.id)
        assert entry.placement.kind == PlacementKind.TRASH
        assert entry.item.folder_id == TRASH_FOLDER_ID

    @pytest.mark.asyncio
    async def test_empty_trash(self, manager):
        item = await self._one(manager)
        await manager.delete_item(item.id, soft=True)

        assert await manager.empty_trash() == 1
        assert await manager.list_items(include_trash=True) == []

    @pytest.mark.asyncio
    async def test_move_items_skips_unknown(self, manager, store, repository):
        item = await self._one(manager)
        system = await repository.system_folders()
        folder = await store.create(system.root_id, "Work")

        moved = await manager.move_items([item.id, "missing"], folder.id)

        assert moved == 1
        assert (await manager.get_item(item.id)).item.folder_id == folder.id

    @pytest.mark.asyncio
    async def test_bulk_tags(self, manager):
        item = await self._one(manager)

        assert await manager.bulk_add_tags([item.id], ["a", "b", "a"]) == 1
        assert (await manager.get_item(item.id)).item.tags == ["a", "b"]

        assert await manager.bulk_remove_tags([item.id, "missing"], ["a"]) == 1
        assert (await manager.get_item(item.id)).item.tags == ["b"]

    @pytest.mark.asyncio
    async def test_reorder_items(self, manager):
        await manager.stash_tabs([tab(i, f"https://{i}.test/", str(i), "x") for i in range(3)])
        ids = [i.id for i in await manager.list_items()]

        assert await manager.reorder_items(list(reversed(ids))) == 3
        orders = {i.id: i.sort_order for i in await manager.list_items()}
        assert [orders[i] for i in reversed(ids)] == [0, 1, 2]


class TestImport:
    """Test importing parsed entries."""

    @pytest.mark.asyncio
    async def test_import_creates_and_merges(self, manager):
        await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")], tags=["old"])

        result = await manager.import_items(
            [
                ImportEntry(url="https://a.test/?utm_source=mail", title="A2", tags=["new"]),
                ImportEntry(url="https://b.test/", created_at=5000),
                ImportEntry(url="ftp://skip.test/"),
            ]
        )

        assert result.imported == 1
        assert result.updated == 1
        assert result.queued == 1
        by_url = {i.url: i for i in await manager.list_items()}
        assert by_url["https://a.test/"].title == "A2"
        assert by_url["https://a.test/"].tags == ["old", "new"]
        assert by_url["https://b.test/"].created_at == 5000
        assert by_url["https://b.test/"].sort_order == -5000

    @pytest.mark.asyncio
    async def test_import_duplicate_entries_in_one_batch_merge(self, manager):
        result = await manager.import_items(
            [ImportEntry(url="https://a.test/"), ImportEntry(url="https://a.test/", tags=["x"])]
        )

        assert (result.imported, result.updated) == (1, 1)

    @pytest.mark.asyncio
    async def test_import_allow_duplicates(self, manager):
        await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")])

        result = await manager.import_items(
            [ImportEntry(url="https://a.test/", title="Again")], allow_duplicates=True
        )

        assert result.imported == 1
        assert len(await manager.list_items()) == 2

    @pytest.mark.asyncio
    async def test_import_into_folder_path(self, manager, store, repository):
        await manager.import_items(
            [ImportEntry(url="https://a.test/", title="A")], folder_path="Imported/2024"
        )

        item = (await manager.list_items())[0]
        folder = await store.get(item.folder_id)
        assert folder.title == "2024"

    @pytest.mark.asyncio
    async def test_refresh_metadata_forces(self, manager, enricher):
        assert await manager.refresh_metadata(["a", "b"]) == 2
        enricher.enqueue.assert_called_with(["a", "b"], force=True)


class TestStoreFailure:
    """Test that a failed save leaves no trace of the operation."""

    @pytest.mark.asyncio
    async def test_failed_stash_is_not_listed(self, tmp_path, enricher):
        store = FileTreeStore(tmp_path / "bookmarks.yaml")
        await store.load()
        repository = TreeRepository(store, TreeCache(ttl_seconds=60.0))
        manager = ItemManager(repository, StaticSettings(), enricher=enricher)
        # Build the skeleton while saving still works
        await repository.system_folders()

        with patch(
            "tabstash.core.tree_store.save_tree_to_file",
            side_effect=YAMLError("disk full"),
        ):
            with pytest.raises(TreeStoreError):
                await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")])

        assert await manager.list_items() == []

        # A retry stashes exactly one item
        await manager.stash_tabs([tab(1, "https://a.test/", "A", "i")])
        assert len(await manager.list_items()) == 1
        repository.close()
