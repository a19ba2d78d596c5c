"""Resource nodes and the arena that owns them.

Nodes reference their parent and children by id rather than by object, so
evicting a subtree is a matter of dropping ids from the arena.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

from azvm_cli.core.models import NodeKind, ResourceItem

ROOT_ID = "/"
LOAD_MORE_SUFFIX = "/#loadMore"


def node_key(node_id: str) -> str:
    """Azure resource ids are case-insensitive."""
    return node_id.lower()


class ResourceNode:
    """Handle for one entity in the resource hierarchy."""

    __slots__ = (
        "child_ids",
        "cursor",
        "description",
        "expandable",
        "generation",
        "id",
        "kind",
        "label",
        "loaded_at",
        "parent_id",
        "properties",
    )

    def __init__(
        self,
        node_id: str,
        label: str,
        kind: NodeKind,
        *,
        parent_id: str | None = None,
        expandable: bool = True,
        description: str | None = None,
        properties: dict[str, Any] | None = None,
    ) -> None:
        self.id = node_id
        self.label = label
        self.kind = kind
        self.parent_id = parent_id
        self.expandable = expandable
        self.description = description
        self.properties: dict[str, Any] = dict(properties or {})
        self.child_ids: list[str] = []
        self.cursor: str | None = None
        self.loaded_at: datetime | None = None
        self.generation = 0

    @classmethod
    def from_item(cls, item: ResourceItem, parent: ResourceNode) -> ResourceNode:
        return cls(
            item.id,
            item.name,
            item.kind,
            parent_id=parent.id,
            expandable=item.expandable,
            description=item.description,
            properties=item.properties,
        )

    @property
    def is_loaded(self) -> bool:
        return self.loaded_at is not None

    @property
    def is_exhausted(self) -> bool:
        return self.is_loaded and self.cursor is None

    @property
    def is_load_more(self) -> bool:
        return self.kind is NodeKind.GROUPING and self.id.endswith(LOAD_MORE_SUFFIX)

    @property
    def subscription_id(self) -> str | None:
        parts = self.id.strip("/").split("/")
        if len(parts) >= 2 and parts[0].lower() == "subscriptions":
            return parts[1]
        return None

    def mark_page_loaded(self, cursor: str | None) -> None:
        self.cursor = cursor
        self.loaded_at = datetime.now(UTC)

    def reset(self) -> None:
        self.child_ids = []
        self.cursor = None
        self.loaded_at = None
        self.generation += 1

    def __repr__(self) -> str:
        return f"ResourceNode(id={self.id!r}, kind={self.kind.value!r}, label={self.label!r})"


def make_load_more_node(parent: ResourceNode) -> ResourceNode:
    """Build the synthetic trailing node used to request the next page."""
    return ResourceNode(
        f"{parent.id.rstrip('/')}{LOAD_MORE_SUFFIX}",
        "Load more...",
        NodeKind.GROUPING,
        parent_id=parent.id,
        expandable=False,
    )


class NodeArena:
    """All live nodes of one tree, keyed by id."""

    def __init__(self, root: ResourceNode) -> None:
        self._nodes: dict[str, ResourceNode] = {}
        self.root = root
        self.add(root)

    def add(self, node: ResourceNode) -> None:
        self._nodes[node_key(node.id)] = node

    def get(self, node_id: str) -> ResourceNode | None:
        return self._nodes.get(node_key(node_id))

    def __contains__(self, node_id: object) -> bool:
        return isinstance(node_id, str) and node_key(node_id) in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def parent_of(self, node: ResourceNode) -> ResourceNode | None:
        if node.parent_id is None:
            return None
        return self.get(node.parent_id)

    def children_of(self, node: ResourceNode) -> list[ResourceNode]:
        children: list[ResourceNode] = []
        for child_id in node.child_ids:
            child = self.get(child_id)
            if child is not None:
                children.append(child)
        return children

    def descendants_of(self, node: ResourceNode) -> Iterator[ResourceNode]:
        stack = list(reversed(self.children_of(node)))
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(self.children_of(current)))

    def append_children(self, parent: ResourceNode, items: tuple[ResourceItem, ...], cursor: str | None) -> int:
        """Append one page of items to ``parent``; returns how many were new.

        Runs without suspension so readers see either none or all of the page.
        """
        existing = {node_key(child_id) for child_id in parent.child_ids}
        added = 0
        for item in items:
            key = node_key(item.id)
            if key in existing:
                continue
            existing.add(key)
            self.add(ResourceNode.from_item(item, parent))
            parent.child_ids.append(item.id)
            added += 1
        parent.mark_page_loaded(cursor)
        return added

    def evict_subtree(self, node: ResourceNode) -> int:
        """Drop every descendant of ``node`` and reset its cache state."""
        evicted = list(self.descendants_of(node))
        for descendant in evicted:
            self._nodes.pop(node_key(descendant.id), None)
            # Orphaned nodes may still be held by an in-flight fetch
            descendant.reset()
        node.reset()
        return len(evicted)

    def clear(self) -> None:
        self.evict_subtree(self.root)


__all__ = [
    "LOAD_MORE_SUFFIX",
    "ROOT_ID",
    "NodeArena",
    "ResourceNode",
    "make_load_more_node",
    "node_key",
]
