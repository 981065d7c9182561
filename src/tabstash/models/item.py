"""Stashed item, folder and wire-metadata models."""

import time
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Reserved logical folder ids for the two status folders
TRASH_FOLDER_ID = "__trash__"
ARCHIVE_FOLDER_ID = "__archive__"
UNFILED_STATS_KEY = "__unfiled__"

# Argument marker for "not given", distinct from None
UNSET = object()


def now_ms() -> int:
    """Current time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


class Item(BaseModel):
    """A stashed tab as seen by the rest of the application."""

    id: str = Field(..., description="Opaque identifier, assigned once")
    url: str = Field(..., description="Display URL (metadata suffix stripped)")
    url_hash: str = Field(
        default="",
        description="Fingerprint of the normalized URL (derived, never persisted)",
    )
    title: Optional[str] = Field(None, description="Page title")
    favicon: Optional[str] = Field(None, description="Favicon URL")
    created_at: int = Field(..., description="Creation time (epoch ms)")
    last_seen_at: int = Field(..., description="Last time the URL was stashed (epoch ms)")
    times_added: int = Field(default=1, ge=0)
    notes: Optional[str] = Field(None, description="User notes")
    tags: List[str] = Field(default_factory=list, description="User-defined tags")
    folder_id: Optional[str] = Field(
        None,
        description="Logical folder: None = unfiled, or a sentinel/custom folder id",
    )
    sort_order: int = Field(default=0, description="Ascending sort key within a folder")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "2f0c6a4e-5c1b-4b8e-9a43-2d7a0e0f3c11",
                "url": "https://github.com/python/cpython",
                "title": "CPython Official Repository",
                "favicon": "https://github.com/favicon.ico",
                "created_at": 1767225600000,
                "last_seen_at": 1767225600000,
                "times_added": 1,
                "tags": ["python"],
                "folder_id": None,
                "sort_order": -1767225600000,
            }
        }
    )

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Optional[List[str]]) -> List[str]:
        """Treat a missing tag list as empty."""
        if v is None:
            return []
        return v


class Folder(BaseModel):
    """A user folder projected out of the bookmark tree."""

    id: str
    name: str
    parent_id: Optional[str] = None
    color: Optional[str] = None
    sort_order: int = 0
    created_at: int = 0


class BookmarkMetadata(BaseModel):
    """Record embedded in a bookmark URL.

    JSON keys are fixed by the on-disk format, so fields carry explicit
    aliases. Title is not part of the record; it lives in the node title.
    """

    id: str
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    favicon: Optional[str] = None
    times_added: Optional[int] = Field(None, alias="timesAdded")
    created: int
    last_seen: int = Field(..., alias="lastSeen")
    folder_id: Optional[str] = Field(None, alias="folderId")
    sort_order: Optional[int] = Field(None, alias="sortOrder")

    # Records written by other tools may carry numeric ids
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class ItemPatch(BaseModel):
    """Fields a caller may change on an existing item."""

    title: Optional[str] = None
    url: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    favicon: Optional[str] = None
    sort_order: Optional[int] = None

    model_config = ConfigDict(extra="forbid")


class StashResult(BaseModel):
    """Outcome of stashing a batch of tabs."""

    added: int = 0
    updated: int = 0


class ImportResult(BaseModel):
    """Outcome of importing a batch of parsed entries."""

    imported: int = 0
    updated: int = 0
    queued: int = 0


class ImportEntry(BaseModel):
    """One parsed entry from an import file."""

    url: str
    title: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[int] = None
    folder_id: Optional[str] = Field(
        None, description="Existing folder to import into, if it still exists"
    )

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Optional[List[str]]) -> List[str]:
        if v is None:
            return []
        return v


class ExistingUrl(BaseModel):
    """A URL that is already stashed, and where."""

    url: str
    folder_name: str


class FolderListing(BaseModel):
    """Custom folders plus item counts per placement."""

    folders: List[Folder] = Field(default_factory=list)
    trash_folder_id: str
    archive_folder_id: str
    folder_stats: Dict[str, int] = Field(
        default_factory=dict,
        description="Item count keyed by folder id or __unfiled__/__trash__/__archive__",
    )
