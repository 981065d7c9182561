"""Tests for the URL-embedded metadata codec."""

import base64
import json

from tabstash.core.metadata_codec import (
    METADATA_DELIMITER,
    ReconstructedMetadata,
    ValidMetadata,
    decode_metadata,
    encode_metadata,
    item_to_node,
    node_to_item,
    read_node,
    strip_metadata,
)
from tabstash.models.item import Item
from tabstash.models.tree import TreeNode


def _item(**overrides) -> Item:
    data = dict(
        id="abc",
        url="https://example.com/page",
        title="Example Page",
        favicon="https://example.com/favicon.ico",
        created_at=1000,
        last_seen_at=2000,
        times_added=3,
        notes="read later",
        tags=["python", "docs"],
        folder_id="42",
        sort_order=-1000,
    )
    data.update(overrides)
    return Item(**data)


def _suffix(record: dict) -> str:
    return METADATA_DELIMITER + base64.b64encode(json.dumps(record).encode()).decode()


class TestEncodeDecode:
    """Test encoding records into URLs and reading them back."""

    def test_decode_minimal_record(self):
        """Test a hand-built record with only the required keys."""
        url = "https://x.test/" + _suffix({"id": "abc", "created": 1000, "lastSeen": 1000})

        record = decode_metadata(url)

        assert record is not None
        assert record.id == "abc"
        assert record.created == 1000
        assert record.tags is None

    def test_encoded_record_uses_wire_keys(self):
        suffix = encode_metadata(_item())
        payload = json.loads(base64.b64decode(suffix[len(METADATA_DELIMITER):]))

        assert payload["id"] == "abc"
        assert payload["timesAdded"] == 3
        assert payload["lastSeen"] == 2000
        assert payload["folderId"] == "42"
        assert payload["sortOrder"] == -1000
        assert "title" not in payload

    def test_none_fields_are_omitted(self):
        suffix = encode_metadata(_item(notes=None, folder_id=None, favicon=None))
        payload = json.loads(base64.b64decode(suffix[len(METADATA_DELIMITER):]))

        assert "notes" not in payload
        assert "folderId" not in payload
        assert "favicon" not in payload

    def test_node_round_trip_preserves_item(self):
        """Test an item written to a node reads back unchanged."""
        original = _item()
        details = item_to_node(original)
        node = TreeNode(id="7", parent_id="3", title=details.title, url=details.url)

        item = node_to_item(node)

        assert item.model_dump(exclude={"url_hash"}) == original.model_dump(exclude={"url_hash"})

    def test_missing_padding_is_tolerated(self):
        suffix = _suffix({"id": "pad", "created": 1, "lastSeen": 2}).rstrip("=")
        assert decode_metadata("https://x.test/" + suffix).id == "pad"

    def test_garbage_suffix_decodes_to_none(self):
        assert decode_metadata("https://x.test/#tab-stash:!!!not-base64!!!") is None
        assert decode_metadata("https://x.test/#tab-stash:" + base64.b64encode(b"[1,2").decode()) is None

    def test_record_missing_required_keys_decodes_to_none(self):
        assert decode_metadata("https://x.test/" + _suffix({"id": "abc"})) is None

    def test_no_suffix_decodes_to_none(self):
        assert decode_metadata("https://x.test/page") is None
        assert decode_metadata(None) is None
        assert decode_metadata("") is None

    def test_unknown_keys_are_ignored(self):
        url = "https://x.test/" + _suffix(
            {"id": "abc", "created": 1, "lastSeen": 1, "future": True}
        )
        assert decode_metadata(url).id == "abc"

    def test_numeric_id_keeps_record(self):
        """Test a record with a numeric id still decodes with its tags and notes."""
        url = "https://x.test/" + _suffix(
            {"id": 123, "created": 1, "lastSeen": 1, "tags": ["t"], "notes": "n"}
        )

        record = decode_metadata(url)

        assert record is not None
        assert record.id == "123"
        assert record.tags == ["t"]
        assert record.notes == "n"


class TestStripMetadata:
    """Test removing the suffix from node URLs."""

    def test_strip_removes_suffix(self):
        url = "https://example.com/page" + encode_metadata(_item())
        assert strip_metadata(url) == "https://example.com/page"

    def test_strip_is_identity_without_suffix(self):
        assert strip_metadata("https://example.com/#anchor") == "https://example.com/#anchor"

    def test_item_to_node_does_not_stack_suffixes(self):
        item = _item()
        stored = item_to_node(item).url
        rewritten = item_to_node(item.model_copy(update={"url": stored})).url

        assert rewritten.count(METADATA_DELIMITER) == 1

    def test_item_without_title_uses_url_as_node_title(self):
        details = item_to_node(_item(title=None))
        assert details.title == "https://example.com/page"


class TestReadNode:
    """Test decoding nodes into valid or reconstructed items."""

    def test_folder_reads_as_none(self):
        assert read_node(TreeNode(id="5", title="Folder", children=[])) is None

    def test_valid_node(self):
        details = item_to_node(_item())
        result = read_node(TreeNode(id="7", title=details.title, url=details.url))

        assert isinstance(result, ValidMetadata)
        assert result.record.id == "abc"
        assert result.item.title == "Example Page"
        assert result.item.url == "https://example.com/page"

    def test_plain_bookmark_is_reconstructed(self):
        """Test a node without metadata still yields an item keyed by node id."""
        node = TreeNode(id="9", title="", url="https://plain.test/", date_added=5000)

        result = read_node(node)

        assert isinstance(result, ReconstructedMetadata)
        assert result.item.id == "9"
        assert result.item.title == "https://plain.test/"
        assert result.item.created_at == 5000
        assert result.item.tags == []
        assert result.item.times_added == 1
        assert result.item.folder_id is None

    def test_truncated_suffix_is_reconstructed(self):
        details = item_to_node(_item())
        node = TreeNode(id="9", title="Kept title", url=details.url[:-12])

        result = read_node(node)

        assert isinstance(result, ReconstructedMetadata)
        assert result.item.url == "https://example.com/page"
        assert result.item.title == "Kept title"

    def test_missing_optional_fields_get_defaults(self):
        node = TreeNode(
            id="9",
            title="T",
            url="https://x.test/" + _suffix({"id": "abc", "created": 1, "lastSeen": 2}),
            date_added=77,
        )

        item = node_to_item(node)

        assert item.times_added == 1
        assert item.tags == []
        assert item.sort_order == 77
