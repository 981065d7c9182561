"""Wiring of the stash components from configuration."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import ConfigManager, SettingsProvider
from ..models.config import AppConfig
from .commands import CommandDispatcher
from .folder_colors import FolderColorStore, YAMLFolderColorStore
from .folder_manager import FolderManager
from .item_manager import ItemManager
from .metadata_enricher import MetadataEnricher
from .notifier import ChangeNotifier
from .page_scraper import PageScraper
from .tab_registry import OpenTabRegistry
from .tree_cache import TreeCache
from .tree_repository import TreeRepository
from .tree_store import BookmarkTreeStore, FileTreeStore

logger = logging.getLogger(__name__)


@dataclass
class StashServices:
    """Everything a running stash needs, built once per process."""

    store: BookmarkTreeStore
    repository: TreeRepository
    notifier: ChangeNotifier
    tab_registry: OpenTabRegistry
    enricher: MetadataEnricher
    items: ItemManager
    folders: FolderManager
    dispatcher: CommandDispatcher

    async def aclose(self) -> None:
        await self.enricher.aclose()
        self.repository.close()


def build_services(
    app_config: AppConfig,
    settings: SettingsProvider,
    store: BookmarkTreeStore,
    colors: Optional[FolderColorStore] = None,
) -> StashServices:
    """Assemble the components around an already loaded tree store."""
    repository = TreeRepository(store, TreeCache(ttl_seconds=app_config.cache_ttl_seconds))
    notifier = ChangeNotifier()
    tab_registry = OpenTabRegistry()

    enricher = MetadataEnricher(
        repository=repository,
        settings=settings,
        tabs=tab_registry,
        scraper=PageScraper(
            timeout=app_config.fetch_timeout_seconds,
            user_agent=app_config.user_agent,
        ),
        notifier=notifier,
        delay_seconds=app_config.enrichment_delay_seconds,
        favicon_service_url=app_config.favicon_service_url,
    )
    items = ItemManager(
        repository,
        settings,
        enricher=enricher,
        notifier=notifier,
        tab_registry=tab_registry,
    )
    folders = FolderManager(repository, colors=colors, notifier=notifier)

    return StashServices(
        store=store,
        repository=repository,
        notifier=notifier,
        tab_registry=tab_registry,
        enricher=enricher,
        items=items,
        folders=folders,
        dispatcher=CommandDispatcher(items, folders),
    )


async def open_services(config_manager: ConfigManager, app_config: AppConfig) -> StashServices:
    """Load the file-backed tree and folder colors and build the services.

    Raises:
        TreeStoreError: If the tree file cannot be loaded
    """
    store_path = config_manager.get_store_path(app_config)
    store = FileTreeStore(store_path)
    await store.load()

    colors = YAMLFolderColorStore(config_manager.get_folder_colors_path(app_config))
    services = build_services(app_config, config_manager, store, colors)

    system = await services.repository.system_folders()
    logger.info(f"Stash ready at {store_path} (root folder {system.root_id})")
    return services
