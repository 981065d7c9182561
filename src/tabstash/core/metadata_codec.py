"""Metadata codec: embeds item records inside bookmark URLs.

A bookmark node only has a title and a URL, so everything else about a
stashed item travels in a URL fragment suffix:

    https://example.com/page#tab-stash:<base64(JSON record)>

Decoding is tolerant. A node whose suffix is missing, truncated by the host,
or otherwise unreadable still produces an item reconstructed from the bare
node, so data degrades instead of disappearing.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Optional, Union

from ..models.item import BookmarkMetadata, Item, now_ms
from ..models.tree import NodeDetails, TreeNode

logger = logging.getLogger(__name__)

METADATA_DELIMITER = "#tab-stash:"


@dataclass(frozen=True)
class ValidMetadata:
    """Node carried a readable embedded record."""

    record: BookmarkMetadata
    item: Item


@dataclass(frozen=True)
class ReconstructedMetadata:
    """Node had no readable record; item was rebuilt from the node itself."""

    item: Item


MetadataResult = Union[ValidMetadata, ReconstructedMetadata]


def to_metadata(item: Item) -> BookmarkMetadata:
    """Project an item onto the embeddable wire record."""
    return BookmarkMetadata(
        id=item.id,
        tags=item.tags,
        notes=item.notes,
        favicon=item.favicon,
        times_added=item.times_added,
        created=item.created_at,
        last_seen=item.last_seen_at,
        folder_id=item.folder_id,
        sort_order=item.sort_order,
    )


def encode_metadata(item: Item) -> str:
    """Encode an item's record as a URL suffix (delimiter included)."""
    payload = to_metadata(item).model_dump_json(by_alias=True, exclude_none=True)
    encoded = base64.b64encode(payload.encode("utf-8")).decode("ascii")
    return METADATA_DELIMITER + encoded


def _b64decode_forgiving(data: str) -> bytes:
    """Base64-decode, ignoring whitespace and missing padding."""
    compact = "".join(data.split())
    compact += "=" * (-len(compact) % 4)
    return base64.b64decode(compact, validate=True)


def decode_metadata(node_url: Optional[str]) -> Optional[BookmarkMetadata]:
    """Decode the embedded record from a bookmark URL.

    Returns:
        The record, or None when the URL has no suffix or it cannot be read.
        Never raises.
    """
    if not node_url:
        return None

    idx = node_url.find(METADATA_DELIMITER)
    if idx == -1:
        return None

    try:
        raw = _b64decode_forgiving(node_url[idx + len(METADATA_DELIMITER):])
        return BookmarkMetadata.model_validate_json(raw)
    except (ValueError, TypeError) as e:
        logger.debug(f"Unreadable metadata suffix: {e}")
        return None


def strip_metadata(node_url: str) -> str:
    """Remove the metadata suffix from a bookmark URL (identity if absent)."""
    idx = node_url.find(METADATA_DELIMITER)
    return node_url if idx == -1 else node_url[:idx]


def read_node(node: TreeNode) -> Optional[MetadataResult]:
    """Decode a bookmark node into an item.

    Returns:
        ValidMetadata or ReconstructedMetadata, or None for folder nodes
    """
    if node.url is None:
        return None

    clean_url = strip_metadata(node.url)
    record = decode_metadata(node.url)

    if record is None:
        now = now_ms()
        item = Item(
            id=node.id,
            url=clean_url,
            title=node.title or clean_url,
            favicon=None,
            created_at=node.date_added or now,
            last_seen_at=now,
            times_added=1,
            notes=None,
            tags=[],
            folder_id=None,
            sort_order=node.date_added or now,
        )
        return ReconstructedMetadata(item=item)

    if record.sort_order is not None:
        sort_order = record.sort_order
    else:
        sort_order = node.date_added or 0

    item = Item(
        id=record.id,
        url=clean_url,
        title=node.title or None,
        favicon=record.favicon,
        created_at=record.created,
        last_seen_at=record.last_seen,
        times_added=record.times_added if record.times_added is not None else 1,
        notes=record.notes,
        tags=list(record.tags or []),
        folder_id=record.folder_id,
        sort_order=sort_order,
    )
    return ValidMetadata(record=record, item=item)


def node_to_item(node: TreeNode) -> Optional[Item]:
    """Decode a bookmark node into an item, ignoring how it was obtained."""
    result = read_node(node)
    return result.item if result is not None else None


def item_to_node(item: Item) -> NodeDetails:
    """Build the title/url pair to write for an item."""
    raw_url = strip_metadata(item.url)
    return NodeDetails(
        url=raw_url + encode_metadata(item),
        title=item.title or raw_url,
    )
