"""Custom Textual widgets for the resource browser."""

from __future__ import annotations

from typing import Any

from rich.text import Text
from textual.validation import ValidationResult, Validator
from textual.widgets import Tree
from textual.widgets.tree import TreeNode

from azvm_cli.core.models import NodeKind
from azvm_cli.core.nodes import ResourceNode, node_key

_KIND_ICONS: dict[NodeKind, str] = {
    NodeKind.ACCOUNT: "☁",
    NodeKind.SUBSCRIPTION: "🔑",
    NodeKind.RESOURCE_GROUP: "📁",
    NodeKind.VIRTUAL_MACHINE: "🖥",
    NodeKind.GROUPING: "…",
}


class RequiredValidator(Validator):
    """Validator that requires non-empty input."""

    def validate(self, value: str) -> ValidationResult:
        if value.strip():
            return self.success()
        return self.failure("This field is required")


def format_label(node: ResourceNode) -> Text:
    """Render a node as icon, label and dimmed description."""
    if node.is_load_more:
        return Text(node.label, style="italic cyan")
    label = Text(f"{_KIND_ICONS[node.kind]} {node.label}")
    if node.description:
        label.append(f"  {node.description}", style="dim")
    return label


class ResourceTree(Tree[ResourceNode]):
    """Tree widget mirroring the cached state of the tree provider.

    Children are only ever appended between refreshes, so syncing a node adds
    the missing entries and keeps existing ones (and their expansion state).
    A node whose cached children no longer contain a rendered child was
    refreshed and is rebuilt from scratch.
    """

    def __init__(self, root: ResourceNode, **kwargs: Any) -> None:
        super().__init__(format_label(root), data=root, **kwargs)
        self._tree_nodes: dict[str, TreeNode[ResourceNode]] = {node_key(root.id): self.root}

    def find(self, node_id: str) -> TreeNode[ResourceNode] | None:
        return self._tree_nodes.get(node_key(node_id))

    @property
    def selected_resource(self) -> ResourceNode | None:
        cursor = self.cursor_node
        if cursor is None or cursor.data is None or cursor.data.is_load_more:
            return None
        return cursor.data

    def _forget(self, tree_node: TreeNode[ResourceNode]) -> None:
        for child in tree_node.children:
            self._forget(child)
            if child.data is not None and not child.data.is_load_more:
                self._tree_nodes.pop(node_key(child.data.id), None)

    def sync_children(self, node: ResourceNode, children: list[ResourceNode]) -> TreeNode[ResourceNode] | None:
        tree_node = self.find(node.id)
        if tree_node is None:
            return None
        tree_node.set_label(format_label(node))

        wanted = {node_key(child.id) for child in children if not child.is_load_more}
        rendered: dict[str, TreeNode[ResourceNode]] = {}
        for child_node in list(tree_node.children):
            data = child_node.data
            if data is None or data.is_load_more:
                child_node.remove()
            else:
                rendered[node_key(data.id)] = child_node

        if any(key not in wanted for key in rendered):
            self._forget(tree_node)
            tree_node.remove_children()
            rendered = {}

        for child in children:
            if child.is_load_more:
                tree_node.add_leaf(format_label(child), data=child)
                continue
            key = node_key(child.id)
            existing = rendered.get(key)
            if existing is not None:
                existing.set_label(format_label(child))
                continue
            added = tree_node.add(format_label(child), data=child, allow_expand=child.expandable)
            self._tree_nodes[key] = added
        return tree_node
