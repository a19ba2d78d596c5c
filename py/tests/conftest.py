"""Shared in-memory fakes for the engine tests."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import pytest

from azvm_cli.core.commands import ActionRunner, CommandRegistry
from azvm_cli.core.context import ActionContext
from azvm_cli.core.errors import ErrorReporter
from azvm_cli.core.exceptions import UserCancelledError
from azvm_cli.core.models import NodeKind, NotificationAction, ResourceItem, ResourcePage, Severity
from azvm_cli.core.nodes import ResourceNode
from azvm_cli.core.tree import TreeDataProvider

SUB_ID = "/subscriptions/sub-1"
RG_ID = f"{SUB_ID}/resourceGroups/rg-1"


def vm_id(index: int, group: str = RG_ID) -> str:
    return f"{group}/providers/Microsoft.Compute/virtualMachines/vm-{index}"


def make_vms(count: int, group: str = RG_ID) -> list[ResourceItem]:
    return [
        ResourceItem(id=vm_id(index, group), name=f"vm-{index}", kind=NodeKind.VIRTUAL_MACHINE, expandable=False)
        for index in range(count)
    ]


def default_hierarchy() -> dict[str, list[ResourceItem]]:
    return {
        "/": [
            ResourceItem(
                id=SUB_ID,
                name="Dev subscription",
                kind=NodeKind.SUBSCRIPTION,
                properties={"tenantId": "tenant-1"},
            ),
            ResourceItem(id="/subscriptions/sub-2", name="Prod subscription", kind=NodeKind.SUBSCRIPTION),
        ],
        SUB_ID: [
            ResourceItem(id=RG_ID, name="rg-1", kind=NodeKind.RESOURCE_GROUP),
            ResourceItem(id=f"{SUB_ID}/resourceGroups/rg-2", name="rg-2", kind=NodeKind.RESOURCE_GROUP),
        ],
        RG_ID: make_vms(3),
    }


class PagedResourceClient:
    """Serves fixed children per parent id, ``page_size`` items at a time."""

    def __init__(self, children: Mapping[str, list[ResourceItem]] | None = None, *, page_size: int = 100) -> None:
        self.children = dict(children if children is not None else default_hierarchy())
        self.page_size = page_size
        self.calls: list[tuple[str, str | None]] = []
        self.failures: dict[tuple[str, str | None], Exception] = {}
        self.gate: asyncio.Event | None = None
        self.operations: list[tuple[str, str]] = []
        self.operation_params: list[dict[str, Any]] = []
        self.operation_results: dict[str, Any] = {}
        self.operation_errors: dict[str, Exception] = {}

    def calls_for(self, parent_id: str) -> list[tuple[str, str | None]]:
        return [call for call in self.calls if call[0] == parent_id]

    async def list_children(self, parent: ResourceNode, cursor: str | None) -> ResourcePage:
        self.calls.append((parent.id, cursor))
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        failure = self.failures.pop((parent.id, cursor), None)
        if failure is not None:
            raise failure
        items = self.children.get(parent.id, [])
        start = int(cursor) if cursor else 0
        end = start + self.page_size
        return ResourcePage(
            items=tuple(items[start:end]),
            next_cursor=str(end) if end < len(items) else None,
        )

    async def invoke_lifecycle_operation(
        self, resource_id: str, operation: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        self.operations.append((resource_id, operation))
        self.operation_params.append(dict(params or {}))
        await asyncio.sleep(0)
        error = self.operation_errors.get(operation)
        if error is not None:
            raise error
        return self.operation_results.get(operation, {})


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[Severity, str, tuple[NotificationAction, ...]]] = []

    def show(self, severity: Severity, message: str, actions: Sequence[NotificationAction]) -> None:
        self.messages.append((severity, message, tuple(actions)))


class RecordingTelemetry:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, str], dict[str, float]]] = []

    def record(self, event_name: str, properties: Mapping[str, str], measurements: Mapping[str, float]) -> None:
        self.events.append((event_name, dict(properties), dict(measurements)))

    def named(self, event_name: str) -> list[dict[str, str]]:
        return [properties for name, properties, _ in self.events if name == event_name]


class ScriptedUserInput:
    """Answers prompts from a queue; a ``None`` answer cancels."""

    def __init__(self, answers: Sequence[str | None] = ()) -> None:
        self.answers: list[str | None] = list(answers)
        self.prompts: list[str] = []
        self.opened: list[str] = []
        self.clipboard: list[str] = []
        self.texts: list[tuple[str, str]] = []

    def _next(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {prompt}")
        answer = self.answers.pop(0)
        if answer is None:
            raise UserCancelledError(prompt)
        return answer

    async def show_quick_pick(self, items: Sequence[str], *, placeholder: str) -> str:
        return self._next(placeholder)

    async def show_input_box(self, prompt: str, *, default: str | None = None) -> str:
        return self._next(prompt)

    async def show_warning_message(self, message: str, *actions: str) -> str:
        return self._next(message)

    async def open_external(self, url: str) -> None:
        self.opened.append(url)

    async def copy_to_clipboard(self, text: str) -> None:
        self.clipboard.append(text)

    async def show_text(self, title: str, text: str) -> None:
        self.texts.append((title, text))


@pytest.fixture
def client() -> PagedResourceClient:
    return PagedResourceClient()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture
def ui() -> ScriptedUserInput:
    return ScriptedUserInput()


@pytest.fixture
def reporter(notifier: RecordingNotifier) -> ErrorReporter:
    return ErrorReporter(notifier)


@pytest.fixture
def runner(ui: ScriptedUserInput, reporter: ErrorReporter, telemetry: RecordingTelemetry) -> ActionRunner:
    return ActionRunner(ui=ui, reporter=reporter, telemetry=telemetry)


@pytest.fixture
def registry(runner: ActionRunner) -> CommandRegistry:
    return CommandRegistry(runner)


@pytest.fixture
def tree(client: PagedResourceClient) -> TreeDataProvider:
    return TreeDataProvider(client)


@pytest.fixture
def context(ui: ScriptedUserInput) -> ActionContext:
    return ActionContext(callback_id="test", ui=ui)
