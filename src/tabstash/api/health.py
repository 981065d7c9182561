"""Health check endpoint."""

import logging

from fastapi import APIRouter

from ..core.tree_store import TreeStoreError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    # Read live globals from api module at request time.
    from tabstash import api

    store_accessible = False
    root_folder_id = None
    item_count = 0
    if api.services is not None:
        try:
            snapshot = await api.services.repository.snapshot()
            store_accessible = True
            root_folder_id = snapshot.system.root_id
            item_count = len(snapshot.entries)
        except TreeStoreError as e:
            logger.warning(f"Health check could not read the bookmark tree: {e}")

    store_path = None
    if api.config_manager is not None and api.runtime_config is not None:
        store_path = str(api.config_manager.get_store_path(api.runtime_config))

    return {
        "status": "healthy" if store_accessible else "degraded",
        "version": api.VERSION,
        "store_accessible": store_accessible,
        "store_path": store_path,
        "root_folder_id": root_folder_id,
        "item_count": item_count,
        "enrichment_queued": len(api.services.enricher.queue) if api.services else 0,
    }
