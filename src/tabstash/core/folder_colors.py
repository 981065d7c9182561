"""Folder colors, kept beside the tree because bookmark nodes cannot hold them."""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from ..utils.yaml_handler import load_mapping_from_file, save_mapping_to_file

logger = logging.getLogger(__name__)


class FolderColorStore:
    """In-memory folder id -> color mapping."""

    def __init__(self, colors: Optional[Dict[str, str]] = None):
        self._colors: Dict[str, str] = dict(colors or {})

    async def all(self) -> Dict[str, str]:
        return dict(self._colors)

    async def get(self, folder_id: str) -> Optional[str]:
        return self._colors.get(folder_id)

    async def set(self, folder_id: str, color: str) -> None:
        self._colors[folder_id] = color
        await self._save()

    async def remove(self, folder_id: str) -> None:
        if self._colors.pop(folder_id, None) is not None:
            await self._save()

    async def _save(self) -> None:
        """Persist hook (no-op in memory)."""


class YAMLFolderColorStore(FolderColorStore):
    """Folder colors persisted to a YAML mapping file."""

    def __init__(self, file_path: Path):
        self.file_path = Path(file_path)
        super().__init__(load_mapping_from_file(self.file_path))

    async def _save(self) -> None:
        await asyncio.to_thread(save_mapping_to_file, dict(self._colors), self.file_path)
        logger.debug(f"Saved {len(self._colors)} folder color(s) to {self.file_path}")
