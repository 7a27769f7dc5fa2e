# =============================================================================
# Folder Tree & Cache
# =============================================================================
# Converts the server's flat folder listing into a forest of FolderNode
# objects and caches one forest per account.
#
# Tree building is two-pass because servers do not promise to list a parent
# before its children:
#
#   pass 1:  path -> FolderNode for every entry
#   pass 2:  attach each node to nodes[parent_path]; unknown parent -> root
#
# Nodes hold no reference to their parent. Parent lookups go through the
# cache's per-account path index instead.
# =============================================================================

import logging
from typing import Iterable

from kestrel_mail.core import FolderEntry, FolderNode

logger = logging.getLogger(__name__)


def build_folder_tree(entries: Iterable[FolderEntry]) -> list[FolderNode]:
    """
    Build a folder forest from a flat listing.

    Roots and children keep the order of the listing. A node whose parent is
    missing from the listing becomes a root instead of being dropped.

    Example:
        >>> entries = [
        ...     FolderEntry(path="Work/Alpha", name="Alpha", parent_path="Work"),
        ...     FolderEntry(path="Work", name="Work"),
        ... ]
        >>> [n.path for n in build_folder_tree(entries)]
        ['Work']
    """
    entries = list(entries)
    nodes: dict[str, FolderNode] = {}

    for entry in entries:
        if entry.path in nodes:
            logger.warning(f"Duplicate folder in listing: {entry.path}")
            continue
        nodes[entry.path] = FolderNode(
            path=entry.path,
            display_name=entry.name or entry.path,
            delimiter=entry.delimiter,
            special_use=entry.special_use,
            total_messages=entry.messages,
            unseen_messages=entry.unseen,
            parent_path=entry.parent_path,
            selectable=entry.selectable,
        )

    roots: list[FolderNode] = []
    for node in nodes.values():
        parent = nodes.get(node.parent_path) if node.parent_path else None
        if parent is None or parent is node:
            roots.append(node)
        else:
            parent.add_child(node)

    return roots


def iter_nodes(forest: Iterable[FolderNode]) -> Iterable[FolderNode]:
    """Every node in the forest, depth first."""
    for node in forest:
        yield node
        if node.children:
            yield from iter_nodes(node.children)


def count_unseen(forest: Iterable[FolderNode]) -> int:
    """Sum of unseen messages over every node and all its descendants."""
    return sum(node.unseen_messages or 0 for node in iter_nodes(forest))


class FolderCache:
    """
    One folder forest per account, invalidated wholesale.

    Usage:
        >>> cache = FolderCache()
        >>> cache.store("acct", build_folder_tree(entries))
        >>> cache.node("acct", "Work/Alpha").display_name
        'Alpha'
        >>> cache.parent_of("acct", "Work/Alpha").path
        'Work'
    """

    def __init__(self) -> None:
        self._forests: dict[str, list[FolderNode]] = {}
        self._index: dict[str, dict[str, FolderNode]] = {}

    def get(self, account_id: str) -> list[FolderNode] | None:
        """The cached forest for an account, or None if not cached."""
        return self._forests.get(account_id)

    def store(self, account_id: str, forest: list[FolderNode]) -> None:
        self._forests[account_id] = forest
        self._index[account_id] = {node.path: node for node in iter_nodes(forest)}

    def invalidate(self, account_id: str) -> None:
        self._forests.pop(account_id, None)
        self._index.pop(account_id, None)

    def clear(self) -> None:
        self._forests.clear()
        self._index.clear()

    def accounts(self) -> list[str]:
        return list(self._forests)

    def node(self, account_id: str, path: str) -> FolderNode | None:
        return self._index.get(account_id, {}).get(path)

    def parent_of(self, account_id: str, path: str) -> FolderNode | None:
        """The parent node of a folder; None for roots and unknown paths."""
        node = self.node(account_id, path)
        if node is None or not node.parent_path:
            return None
        parent = self.node(account_id, node.parent_path)
        # Orphans were made roots, so only a real attachment counts
        if parent is not None and any(child is node for child in parent.children or []):
            return parent
        return None

    def unseen_total(self) -> int:
        """Unread count over every cached account."""
        return sum(count_unseen(forest) for forest in self._forests.values())

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._forests
