"""Bookmark tree store: the host interface and its local implementations."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..models.item import now_ms
from ..models.tree import TreeEvent, TreeNode
from ..utils.file_lock import FileLocker, FileLockError
from ..utils.yaml_handler import YAMLError, load_tree_from_file, save_tree_to_file

logger = logging.getLogger(__name__)

ROOT_NODE_ID = "0"
BOOKMARKS_BAR_ID = "1"
OTHER_BOOKMARKS_ID = "2"
BOOKMARKS_BAR_TITLE = "Bookmarks bar"
OTHER_BOOKMARKS_TITLE = "Other bookmarks"

TreeListener = Callable[[TreeEvent], None]


class TreeStoreError(Exception):
    """Bookmark tree store operation error."""

    pass


class BookmarkTreeStore(ABC):
    """CRUD over a tree of titled URL nodes.

    The store offers no transactions. Mutations are announced to subscribers
    as coarse events without payload.
    """

    def __init__(self):
        self._listeners: List[TreeListener] = []

    def subscribe(self, listener: TreeListener) -> Callable[[], None]:
        """Register a mutation listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: TreeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Tree listener failed on {event.value}: {e}")

    @abstractmethod
    async def create(
        self,
        parent_id: str,
        title: str,
        url: Optional[str] = None,
        index: Optional[int] = None,
    ) -> TreeNode:
        """Create a bookmark (url given) or folder (url None)."""

    @abstractmethod
    async def get(self, node_id: str) -> TreeNode:
        """Get a single node without its children."""

    @abstractmethod
    async def get_children(self, node_id: str) -> List[TreeNode]:
        """Get the direct children of a folder, in order."""

    @abstractmethod
    async def get_subtree(self, node_id: str) -> TreeNode:
        """Get a node with all of its descendants."""

    @abstractmethod
    async def search(
        self, query: Optional[str] = None, url: Optional[str] = None
    ) -> List[TreeNode]:
        """Find bookmarks by exact url or by substring of title/url."""

    @abstractmethod
    async def update(
        self, node_id: str, title: Optional[str] = None, url: Optional[str] = None
    ) -> TreeNode:
        """Change a node's title and/or url."""

    @abstractmethod
    async def move(
        self, node_id: str, parent_id: str, index: Optional[int] = None
    ) -> TreeNode:
        """Move a node under a new parent (appended when index is None)."""

    @abstractmethod
    async def remove(self, node_id: str) -> None:
        """Remove a bookmark or an empty folder."""

    @abstractmethod
    async def remove_tree(self, node_id: str) -> None:
        """Remove a folder and everything below it."""

    @abstractmethod
    async def get_tree(self) -> TreeNode:
        """Get the whole tree in one call."""


def default_tree() -> TreeNode:
    """Build the empty profile tree: root with bookmarks bar and other bookmarks."""
    now = now_ms()
    return TreeNode(
        id=ROOT_NODE_ID,
        title="",
        date_added=now,
        children=[
            TreeNode(
                id=BOOKMARKS_BAR_ID,
                parent_id=ROOT_NODE_ID,
                index=0,
                title=BOOKMARKS_BAR_TITLE,
                date_added=now,
                children=[],
            ),
            TreeNode(
                id=OTHER_BOOKMARKS_ID,
                parent_id=ROOT_NODE_ID,
                index=1,
                title=OTHER_BOOKMARKS_TITLE,
                date_added=now,
                children=[],
            ),
        ],
    )


class InMemoryTreeStore(BookmarkTreeStore):
    """Tree store held in process memory, shaped like a browser profile.

    Nodes handed out are copies, so callers can never mutate the store
    behind its back. The root and its two top-level folders are fixed.
    """

    PROTECTED_IDS = frozenset({ROOT_NODE_ID, BOOKMARKS_BAR_ID, OTHER_BOOKMARKS_ID})

    def __init__(self, root: Optional[TreeNode] = None, next_id: int = 0):
        super().__init__()
        self._set_tree(root or default_tree(), next_id)

    def _set_tree(self, root: TreeNode, next_id: int) -> None:
        self._root = root
        self._nodes: Dict[str, TreeNode] = {root.id: root}
        for node in root.iter_descendants():
            self._nodes[node.id] = node

        highest = max((int(n) for n in self._nodes if n.isdigit()), default=0)
        self._next_id = max(next_id, highest + 1)

    # Internal helpers

    def _node(self, node_id: str) -> TreeNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise TreeStoreError(f"Node not found: {node_id}")
        return node

    def _folder(self, node_id: str) -> TreeNode:
        node = self._node(node_id)
        if not node.is_folder:
            raise TreeStoreError(f"Node is not a folder: {node_id}")
        return node

    def _check_modifiable(self, node_id: str) -> None:
        if node_id in self.PROTECTED_IDS:
            raise TreeStoreError(f"Can't modify the root bookmark folders: {node_id}")

    @staticmethod
    def _shallow(node: TreeNode) -> TreeNode:
        return node.model_copy(
            update={"children": [] if node.is_folder else None}
        )

    @staticmethod
    def _reindex(parent: TreeNode) -> None:
        for i, child in enumerate(parent.children or []):
            child.index = i

    def _detach(self, node: TreeNode) -> None:
        parent = self._nodes[node.parent_id]
        parent.children = [c for c in parent.children if c is not node]
        self._reindex(parent)

    @staticmethod
    def _insert(parent: TreeNode, node: TreeNode, index: Optional[int]) -> None:
        children = parent.children if parent.children is not None else []
        if index is None or index > len(children):
            index = len(children)
        if index < 0:
            raise TreeStoreError(f"Invalid index: {index}")
        children.insert(index, node)
        parent.children = children
        node.parent_id = parent.id
        InMemoryTreeStore._reindex(parent)

    async def _commit(self, event: TreeEvent) -> None:
        """Hook run after every successful mutation."""
        self._emit(event)

    # Read operations

    async def get(self, node_id: str) -> TreeNode:
        return self._shallow(self._node(node_id))

    async def get_children(self, node_id: str) -> List[TreeNode]:
        folder = self._folder(node_id)
        return [self._shallow(child) for child in folder.children or []]

    async def get_subtree(self, node_id: str) -> TreeNode:
        return self._node(node_id).model_copy(deep=True)

    async def get_tree(self) -> TreeNode:
        return self._root.model_copy(deep=True)

    async def search(
        self, query: Optional[str] = None, url: Optional[str] = None
    ) -> List[TreeNode]:
        needle = query.lower() if query else None
        results = []
        for node in self._root.iter_descendants():
            if node.is_folder:
                continue
            if url is not None and node.url != url:
                continue
            if needle and needle not in node.title.lower() and needle not in node.url.lower():
                continue
            results.append(self._shallow(node))
        return results

    # Mutations

    async def create(
        self,
        parent_id: str,
        title: str,
        url: Optional[str] = None,
        index: Optional[int] = None,
    ) -> TreeNode:
        parent = self._folder(parent_id)

        node = TreeNode(
            id=str(self._next_id),
            parent_id=parent_id,
            title=title,
            url=url,
            date_added=now_ms(),
            children=None if url is not None else [],
        )
        self._next_id += 1
        self._insert(parent, node, index)
        self._nodes[node.id] = node

        await self._commit(TreeEvent.CREATED)
        return self._shallow(node)

    async def update(
        self, node_id: str, title: Optional[str] = None, url: Optional[str] = None
    ) -> TreeNode:
        self._check_modifiable(node_id)
        node = self._node(node_id)
        if url is not None and node.is_folder:
            raise TreeStoreError(f"Can't set a URL on folder {node_id}")

        if title is not None:
            node.title = title
        if url is not None:
            node.url = url

        await self._commit(TreeEvent.CHANGED)
        return self._shallow(node)

    async def move(
        self, node_id: str, parent_id: str, index: Optional[int] = None
    ) -> TreeNode:
        self._check_modifiable(node_id)
        node = self._node(node_id)
        parent = self._folder(parent_id)
        if parent_id == node_id or any(d.id == parent_id for d in node.iter_descendants()):
            raise TreeStoreError(f"Can't move {node_id} into its own subtree")

        self._detach(node)
        self._insert(parent, node, index)

        await self._commit(TreeEvent.MOVED)
        return self._shallow(node)

    async def remove(self, node_id: str) -> None:
        self._check_modifiable(node_id)
        node = self._node(node_id)
        if node.is_folder and node.children:
            raise TreeStoreError(f"Can't remove non-empty folder {node_id}")

        self._detach(node)
        del self._nodes[node_id]

        await self._commit(TreeEvent.REMOVED)

    async def remove_tree(self, node_id: str) -> None:
        self._check_modifiable(node_id)
        node = self._folder(node_id)

        self._detach(node)
        for descendant in node.iter_descendants():
            del self._nodes[descendant.id]
        del self._nodes[node_id]

        await self._commit(TreeEvent.REMOVED)


class FileTreeStore(InMemoryTreeStore):
    """In-memory tree store persisted to a YAML file after every mutation."""

    def __init__(self, file_path: Path, lock_timeout: float = 5.0):
        """Initialize file-backed store.

        Call load() before use.

        Args:
            file_path: YAML file holding the tree
            lock_timeout: Seconds to wait for the file lock
        """
        super().__init__()
        self.file_path = Path(file_path)
        self.lock_timeout = lock_timeout
        self._saved = (self._root.model_copy(deep=True), self._next_id)

    async def load(self) -> None:
        """Load the tree from disk, creating the file when it does not exist.

        Raises:
            TreeStoreError: If the file exists but cannot be read
        """
        try:
            async with FileLocker(self.file_path, timeout=self.lock_timeout):
                if self.file_path.exists():
                    root, next_id = await asyncio.to_thread(
                        load_tree_from_file, self.file_path
                    )
                    self._set_tree(root, next_id)
                    self._saved = (root.model_copy(deep=True), self._next_id)
                    logger.info(f"Loaded bookmark tree from {self.file_path}")
                else:
                    await asyncio.to_thread(
                        save_tree_to_file, self._root, self._next_id, self.file_path
                    )
                    logger.info(f"Created bookmark tree at {self.file_path}")
        except (YAMLError, FileLockError) as e:
            raise TreeStoreError(f"Failed to load bookmark tree: {e}") from e

    async def _commit(self, event: TreeEvent) -> None:
        """Persist the mutated tree, rolling memory back to the last saved tree on failure."""
        snapshot = self._root.model_copy(deep=True)
        try:
            async with FileLocker(self.file_path, timeout=self.lock_timeout):
                await asyncio.to_thread(
                    save_tree_to_file, snapshot, self._next_id, self.file_path
                )
            self._saved = (snapshot, self._next_id)
        except (YAMLError, FileLockError) as e:
            saved_root, saved_next_id = self._saved
            self._set_tree(saved_root.model_copy(deep=True), saved_next_id)
            logger.error(f"Failed to persist bookmark tree, mutation rolled back: {e}")
            raise TreeStoreError(f"Failed to persist bookmark tree: {e}") from e
        finally:
            self._emit(event)
