"""Bookmark tree node model."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class TreeEvent(str, Enum):
    """Coarse mutation notifications emitted by a tree store."""

    CREATED = "created"
    REMOVED = "removed"
    CHANGED = "changed"
    MOVED = "moved"


class TreeNode(BaseModel):
    """A node in the host bookmark tree (folder when url is None)."""

    id: str
    parent_id: Optional[str] = None
    index: int = 0
    title: str = ""
    url: Optional[str] = None
    date_added: Optional[int] = None
    children: Optional[List["TreeNode"]] = Field(
        None, description="Child nodes (folders only, None for bookmarks)"
    )

    @property
    def is_folder(self) -> bool:
        return self.url is None

    def iter_descendants(self):
        """Yield every node below this one, depth first."""
        for child in self.children or []:
            yield child
            yield from child.iter_descendants()


class NodeDetails(BaseModel):
    """Title/url pair written to a bookmark node."""

    url: str
    title: str


TreeNode.model_rebuild()
