"""Lazy, paginated and cache-coherent resource tree.

The provider owns the account root and an arena of every node fetched so far.
Children are loaded one page at a time using the cursor handed back by the
remote API, cached write-through, and thrown away only when the node (or one
of its ancestors) is refreshed.

Operations on the same node are serialized: concurrent ``load_more`` calls
attach to the single in-flight fetch, and ``refresh`` waits for it to settle
before discarding the cache. Pages are appended without suspending, so a
reader never observes half a page.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from azvm_cli.core.context import ActionContext
from azvm_cli.core.exceptions import NodeNotFoundError, PageFetchError, UserCancelledError
from azvm_cli.core.models import NodeKind
from azvm_cli.core.nodes import LOAD_MORE_SUFFIX, ROOT_ID, NodeArena, ResourceNode, make_load_more_node, node_key
from azvm_cli.core.remote import ResourceClient

logger = structlog.get_logger(__name__)

ChangeListener = Callable[[ResourceNode], None]

_KIND_LABELS: dict[NodeKind, str] = {
    NodeKind.ACCOUNT: "account",
    NodeKind.SUBSCRIPTION: "subscription",
    NodeKind.RESOURCE_GROUP: "resource group",
    NodeKind.VIRTUAL_MACHINE: "virtual machine",
    NodeKind.GROUPING: "item",
}


class TreeDataProvider:
    """Tree cache shared by every command of one application instance."""

    def __init__(self, client: ResourceClient, *, root_label: str = "Azure") -> None:
        self._client = client
        self._arena = NodeArena(ResourceNode(ROOT_ID, root_label, NodeKind.ACCOUNT))
        self._inflight: dict[str, asyncio.Task[None]] = {}
        self._listeners: list[ChangeListener] = []

    @property
    def root(self) -> ResourceNode:
        return self._arena.root

    def get_node(self, node_id: str) -> ResourceNode | None:
        return self._arena.get(node_id)

    def parent_of(self, node: ResourceNode) -> ResourceNode | None:
        return self._arena.parent_of(node)

    def ancestor_of_kind(self, node: ResourceNode, kind: NodeKind) -> ResourceNode | None:
        current: ResourceNode | None = node
        while current is not None and current.kind is not kind:
            current = self._arena.parent_of(current)
        return current

    def is_fetching(self, node: ResourceNode) -> bool:
        task = self._inflight.get(node_key(node.id))
        return task is not None and not task.done()

    def _resolve(self, node: ResourceNode | str | None, *, paging: bool = False) -> ResourceNode:
        """Look ``node`` up in the arena.

        With ``paging`` a "Load more..." node stands for the parent it pages.
        """
        if node is None:
            return self.root
        node_id = node if isinstance(node, str) else node.id
        if paging and _is_load_more_id(node_id):
            node_id = node_id[: -len(LOAD_MORE_SUFFIX)] or ROOT_ID
        resolved = self._arena.get(node_id)
        if resolved is None:
            raise NodeNotFoundError(f"'{node_id}' is no longer in the tree; refresh and try again")
        return resolved

    # Reading

    def cached_children(self, node: ResourceNode | str | None = None) -> list[ResourceNode]:
        """Return what is cached for ``node`` without fetching anything."""
        if _is_load_more(node):
            return []
        target = self._resolve(node)
        children = self._arena.children_of(target)
        if target.is_loaded and not target.is_exhausted:
            children.append(make_load_more_node(target))
        return children

    async def get_children(self, context: ActionContext, node: ResourceNode | str | None = None) -> list[ResourceNode]:
        if _is_load_more(node):
            return []
        target = self._resolve(node)
        if not target.expandable:
            return []
        if not target.is_loaded:
            await self.load_more(context, target)
        return self.cached_children(target)

    # Mutation

    async def load_more(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        target = self._resolve(node, paging=True)
        if not target.expandable or target.is_exhausted:
            return
        context.token.raise_if_cancelled("loadMore")
        key = node_key(target.id)
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(self._fetch_page(target, target.generation), name=f"fetch:{target.id}")
            task.add_done_callback(_consume_result)
            self._inflight[key] = task
        else:
            logger.debug("fetch-attached", node=target.id)
        await context.token.wait_for(task, step="loadMore")

    async def _fetch_page(self, target: ResourceNode, generation: int) -> None:
        key = node_key(target.id)
        mid_pagination = target.is_loaded
        try:
            logger.debug("fetch-start", node=target.id, mid_pagination=mid_pagination)
            try:
                page = await self._client.list_children(target, target.cursor)
            except (UserCancelledError, asyncio.CancelledError):
                raise
            except Exception as exc:
                logger.warning("fetch-failed", node=target.id, error=str(exc), mid_pagination=mid_pagination)
                raise PageFetchError(target.id, mid_pagination=mid_pagination, cause=exc) from exc

            if target.generation != generation:
                logger.debug("fetch-discarded", node=target.id)
                return
            added = self._arena.append_children(target, page.items, page.next_cursor)
            logger.debug("fetch-complete", node=target.id, added=added, exhausted=page.exhausted)
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]
        self._notify(target)

    async def refresh(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        """Discard the cached subtree of ``node`` (the whole tree for ``None``)."""
        try:
            target = self._resolve(node, paging=True)
        except NodeNotFoundError:
            # Already evicted by an ancestor's refresh
            logger.debug("refresh-skipped", node=node if isinstance(node, str) else getattr(node, "id", None))
            return
        key = node_key(target.id)
        task = self._inflight.get(key)
        if task is not None and not task.done():
            await context.token.wait_for(asyncio.wait({task}), step="refresh")
        # A re-created descendant must not attach to a fetch started for its evicted predecessor
        stale_keys = [key, *(node_key(descendant.id) for descendant in self._arena.descendants_of(target))]
        evicted = self._arena.evict_subtree(target)
        for stale_key in stale_keys:
            if self._inflight.pop(stale_key, None) is not None:
                logger.debug("fetch-orphaned", node=stale_key)
        logger.info("tree-refreshed", node=target.id, evicted=evicted)
        self._notify(target)

    def notify_changed(self, node: ResourceNode) -> None:
        """Tell listeners that ``node``'s own state (label, description) changed."""
        self._notify(node)

    # Lookup

    async def find_node(self, context: ActionContext, resource_id: str) -> ResourceNode:
        """Reveal ``resource_id`` by walking and paging down from the root."""
        wanted = node_key(resource_id.rstrip("/") or ROOT_ID)
        existing = self._arena.get(wanted)
        if existing is not None:
            return existing

        current = self.root
        while True:
            await self.get_children(context, current)
            next_node: ResourceNode | None = None
            while next_node is None:
                for child in self._arena.children_of(current):
                    child_key = node_key(child.id)
                    if child_key == wanted:
                        return child
                    if wanted.startswith(f"{child_key}/"):
                        next_node = child
                        break
                if next_node is None:
                    if current.is_exhausted:
                        raise NodeNotFoundError(f"Resource '{resource_id}' was not found")
                    await self.load_more(context, current)
            current = next_node

    async def pick_node(self, context: ActionContext, kind: NodeKind) -> ResourceNode:
        """Let the user walk the tree with quick picks until a ``kind`` node is chosen."""
        current = self.root
        while current.kind is not kind:
            children = await self.get_children(context, current)
            real_children = [child for child in children if not child.is_load_more]
            if not children:
                raise NodeNotFoundError(f"No {_KIND_LABELS[kind]} found in '{current.label}'")
            choices = _unique_labels(children)
            next_kind = real_children[0].kind if real_children else kind
            picked = await context.ui.show_quick_pick(
                list(choices),
                placeholder=f"Select a {_KIND_LABELS[next_kind]}",
            )
            chosen = choices.get(picked)
            if chosen is None:
                raise UserCancelledError("pick")
            if chosen.is_load_more:
                await self.load_more(context, chosen)
                continue
            if chosen.kind is not kind and not chosen.expandable:
                raise NodeNotFoundError(f"'{chosen.label}' is not a {_KIND_LABELS[kind]}")
            current = chosen
        return current

    # Change notification

    def add_change_listener(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, node: ResourceNode) -> None:
        for listener in list(self._listeners):
            try:
                listener(node)
            except Exception as exc:
                logger.warning("tree-listener-failed", node=node.id, error=str(exc))

    def dispose(self) -> None:
        """Cancel in-flight fetches and drop every cached node."""
        for task in self._inflight.values():
            task.cancel()
        self._inflight.clear()
        self._arena.clear()
        self._listeners.clear()
        logger.debug("tree-disposed")


def _consume_result(task: asyncio.Task[None]) -> None:
    # Every waiter may have abandoned the fetch; keep asyncio from warning
    if not task.cancelled():
        task.exception()


def _is_load_more_id(node_id: str) -> bool:
    return node_key(node_id).endswith(LOAD_MORE_SUFFIX.lower())


def _is_load_more(node: ResourceNode | str | None) -> bool:
    if node is None:
        return False
    return _is_load_more_id(node if isinstance(node, str) else node.id)


def _unique_labels(children: list[ResourceNode]) -> dict[str, ResourceNode]:
    choices: dict[str, ResourceNode] = {}
    for child in children:
        label = child.label
        if label in choices and child.description:
            label = f"{label} ({child.description})"
        suffix = 2
        base = label
        while label in choices:
            label = f"{base} #{suffix}"
            suffix += 1
        choices[label] = child
    return choices


__all__ = ["ChangeListener", "TreeDataProvider"]
