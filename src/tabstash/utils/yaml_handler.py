"""YAML serialization utilities for the bookmark tree and side files."""

from pathlib import Path
from typing import Dict, Tuple

import yaml

from ..models.tree import TreeNode

TREE_FORMAT_VERSION = 1


class YAMLError(Exception):
    """YAML processing error."""

    pass


def serialize_tree(root: TreeNode, next_id: int) -> str:
    """Serialize a bookmark tree to YAML string.

    Args:
        root: Root node of the tree
        next_id: Next node id the store will assign

    Returns:
        YAML string representation

    Raises:
        YAMLError: If serialization fails
    """
    try:
        data = {
            "version": TREE_FORMAT_VERSION,
            "next_id": next_id,
            "root": root.model_dump(mode="json", exclude_none=True),
        }

        return yaml.safe_dump(
            data,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

    except Exception as e:
        raise YAMLError(f"Failed to serialize bookmark tree: {e}") from e


def deserialize_tree(yaml_str: str) -> Tuple[TreeNode, int]:
    """Deserialize a bookmark tree from YAML string.

    Args:
        yaml_str: YAML string to deserialize

    Returns:
        Tuple of (root node, next node id)

    Raises:
        YAMLError: If deserialization fails
    """
    try:
        data = yaml.safe_load(yaml_str)

        if data is None:
            raise YAMLError("YAML content is empty")
        if not isinstance(data, dict) or "root" not in data:
            raise YAMLError("Missing required field in YAML: root")

        root = TreeNode.model_validate(data["root"])
        next_id = int(data.get("next_id") or 0)

        return root, next_id

    except yaml.YAMLError as e:
        raise YAMLError(f"Invalid YAML format: {e}") from e
    except YAMLError:
        raise
    except Exception as e:
        raise YAMLError(f"Failed to deserialize bookmark tree: {e}") from e


def load_tree_from_file(file_path: Path) -> Tuple[TreeNode, int]:
    """Load a bookmark tree from YAML file.

    Raises:
        YAMLError: If file reading or parsing fails
    """
    try:
        if not file_path.exists():
            raise YAMLError(f"File not found: {file_path}")

        yaml_str = file_path.read_text(encoding="utf-8")
        return deserialize_tree(yaml_str)

    except YAMLError:
        raise
    except Exception as e:
        raise YAMLError(f"Failed to load bookmark tree from {file_path}: {e}") from e


def save_tree_to_file(root: TreeNode, next_id: int, file_path: Path) -> None:
    """Save a bookmark tree to YAML file.

    The file is written to a temporary sibling first and then renamed, so a
    crash mid-write leaves the previous tree intact.

    Raises:
        YAMLError: If file writing fails
    """
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        yaml_str = serialize_tree(root, next_id)
        tmp_path = file_path.with_name(file_path.name + ".tmp")
        tmp_path.write_text(yaml_str, encoding="utf-8")
        tmp_path.replace(file_path)

    except YAMLError:
        raise
    except Exception as e:
        raise YAMLError(f"Failed to save bookmark tree to {file_path}: {e}") from e


def load_mapping_from_file(file_path: Path) -> Dict[str, str]:
    """Load a flat string mapping (e.g. folder colors) from YAML file.

    A missing file is an empty mapping.

    Raises:
        YAMLError: If the file exists but is not a mapping
    """
    try:
        if not file_path.exists():
            return {}

        data = yaml.safe_load(file_path.read_text(encoding="utf-8"))
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise YAMLError(f"Expected a mapping in {file_path}")

        return {str(k): str(v) for k, v in data.items()}

    except yaml.YAMLError as e:
        raise YAMLError(f"Invalid YAML format in {file_path}: {e}") from e
    except YAMLError:
        raise
    except Exception as e:
        raise YAMLError(f"Failed to load {file_path}: {e}") from e


def save_mapping_to_file(mapping: Dict[str, str], file_path: Path) -> None:
    """Save a flat string mapping to YAML file.

    Raises:
        YAMLError: If file writing fails
    """
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(
            yaml.safe_dump(dict(mapping), default_flow_style=False, allow_unicode=True),
            encoding="utf-8",
        )
    except Exception as e:
        raise YAMLError(f"Failed to save {file_path}: {e}") from e
