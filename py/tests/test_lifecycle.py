from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import pytest
import pytest_asyncio
from conftest import (
    RG_ID,
    SUB_ID,
    PagedResourceClient,
    RecordingNotifier,
    RecordingTelemetry,
    ScriptedUserInput,
    make_vms,
    vm_id,
)

from azvm_cli.core.config import Settings
from azvm_cli.core.context import ActionContext
from azvm_cli.core.exceptions import RemoteError
from azvm_cli.core.lifecycle import DELETE_ACTION
from azvm_cli.core.models import Severity
from azvm_cli.extension import ACTIVATE_EVENT, ExtensionContext, activate, deactivate
from azvm_cli.utils.process import CommandResult


class FakeCLI:
    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def run(self, args: Sequence[str], *, check: bool = True) -> CommandResult:
        self.calls.append(list(args))
        return CommandResult(stdout="", stderr="", returncode=0)


@pytest_asyncio.fixture
async def ext(
    client: PagedResourceClient,
    ui: ScriptedUserInput,
    notifier: RecordingNotifier,
    telemetry: RecordingTelemetry,
) -> AsyncIterator[ExtensionContext]:
    extension = await activate(
        Settings(portal_url="https://portal.example"),
        ui=ui,
        notifier=notifier,
        client=client,
        telemetry=telemetry,
        cli=FakeCLI(),  # type: ignore[arg-type]
    )
    yield extension
    deactivate(extension)


@pytest.mark.asyncio
async def test_activation_registers_every_command(ext: ExtensionContext, telemetry: RecordingTelemetry) -> None:
    assert ext.registry.command_ids == (
        "azureVirtualMachines.addSshKey",
        "azureVirtualMachines.copyIpAddress",
        "azureVirtualMachines.createVirtualMachine",
        "azureVirtualMachines.createVirtualMachineAdvanced",
        "azureVirtualMachines.deleteVirtualMachine",
        "azureVirtualMachines.loadMore",
        "azureVirtualMachines.openInPortal",
        "azureVirtualMachines.openInRemoteSsh",
        "azureVirtualMachines.refresh",
        "azureVirtualMachines.reportIssue",
        "azureVirtualMachines.restartVirtualMachine",
        "azureVirtualMachines.showOutputChannel",
        "azureVirtualMachines.signIn",
        "azureVirtualMachines.startVirtualMachine",
        "azureVirtualMachines.stopVirtualMachine",
        "azureVirtualMachines.viewProperties",
    )
    name, properties, measurements = telemetry.events[0]
    assert name == ACTIVATE_EVENT
    assert properties["isActivationEvent"] == "true"
    assert properties["outcome"] == "success"
    assert "activationTime" in measurements


@pytest.mark.asyncio
async def test_start_by_resource_id_updates_node(
    ext: ExtensionContext, client: PagedResourceClient, telemetry: RecordingTelemetry
) -> None:
    await ext.registry.execute("azureVirtualMachines.startVirtualMachine", vm_id(1))

    assert client.operations == [(vm_id(1), "start")]
    node = ext.tree.get_node(vm_id(1))
    assert node is not None
    assert node.description == "running"
    assert node.properties["powerState"] == "running"
    properties = telemetry.named("azureVirtualMachines.startVirtualMachine")[0]
    assert properties["resourceKind"] == "virtualMachine"
    assert properties["outcome"] == "success"


@pytest.mark.asyncio
async def test_stop_prompts_for_virtual_machine(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput
) -> None:
    ui.answers = ["Dev subscription", "rg-1", "vm-0"]

    await ext.registry.execute("azureVirtualMachines.stopVirtualMachine")

    assert client.operations == [(vm_id(0), "deallocate")]


@pytest.mark.asyncio
async def test_quota_failure_restores_description_and_warns(
    ext: ExtensionContext,
    client: PagedResourceClient,
    notifier: RecordingNotifier,
    telemetry: RecordingTelemetry,
) -> None:
    client.operation_errors["start"] = RemoteError("QuotaExceeded", "Exceeds the regional vCPU quota.")

    result = await ext.registry.execute("azureVirtualMachines.startVirtualMachine", vm_id(0))

    assert result is None
    node = ext.tree.get_node(vm_id(0))
    assert node is not None
    assert node.description is None
    assert len(notifier.messages) == 1
    severity, message, actions = notifier.messages[0]
    assert severity is Severity.WARNING
    assert "quota" in message.lower()
    assert actions[0].url is not None
    assert telemetry.named("azureVirtualMachines.startVirtualMachine")[0]["outcome"] == "error"


@pytest.mark.asyncio
async def test_dismissed_delete_is_cancelled_silently(
    ext: ExtensionContext,
    client: PagedResourceClient,
    ui: ScriptedUserInput,
    notifier: RecordingNotifier,
    telemetry: RecordingTelemetry,
) -> None:
    ui.answers = [None]

    await ext.registry.execute("azureVirtualMachines.deleteVirtualMachine", vm_id(2))

    assert client.operations == []
    assert notifier.messages == []
    assert telemetry.named("azureVirtualMachines.deleteVirtualMachine")[0]["outcome"] == "cancelled"


@pytest.mark.asyncio
async def test_confirmed_delete_refreshes_parent(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput
) -> None:
    ui.answers = [DELETE_ACTION]

    await ext.registry.execute("azureVirtualMachines.deleteVirtualMachine", vm_id(2))

    assert client.operations == [(vm_id(2), "delete")]
    group = ext.tree.get_node(RG_ID)
    assert group is not None
    assert not group.is_loaded
    assert ext.tree.get_node(vm_id(2)) is None
    assert "delete" in ui.prompts[0]


@pytest.mark.asyncio
async def test_view_properties_shows_json(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput
) -> None:
    client.operation_results["show"] = {"name": "vm-0", "powerState": "VM running"}

    await ext.registry.execute("azureVirtualMachines.viewProperties", vm_id(0))

    title, text = ui.texts[0]
    assert title == "vm-0 properties"
    assert '"powerState": "VM running"' in text


@pytest.mark.asyncio
async def test_open_in_portal_uses_tenant(ext: ExtensionContext, ui: ScriptedUserInput) -> None:
    await ext.registry.execute("azureVirtualMachines.openInPortal", vm_id(0))

    assert ui.opened == [f"https://portal.example/#@tenant-1/resource{vm_id(0)}"]


@pytest.mark.asyncio
async def test_open_in_portal_accepts_any_resource(ext: ExtensionContext, ui: ScriptedUserInput) -> None:
    await ext.registry.execute("azureVirtualMachines.openInPortal", SUB_ID)

    assert ui.opened == [f"https://portal.example/#@tenant-1/resource{SUB_ID}"]


@pytest.mark.asyncio
async def test_copy_ip_address(ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput) -> None:
    client.operation_results["listIpAddresses"] = [
        {"virtualMachine": {"network": {"publicIpAddresses": [{"ipAddress": "20.0.0.4"}]}}}
    ]

    await ext.registry.execute("azureVirtualMachines.copyIpAddress", vm_id(0))

    assert ui.clipboard == ["20.0.0.4"]


@pytest.mark.asyncio
async def test_lifecycle_command_rejects_non_vm_node(ext: ExtensionContext, notifier: RecordingNotifier) -> None:
    await ext.registry.execute("azureVirtualMachines.startVirtualMachine", RG_ID)

    assert len(notifier.messages) == 1
    assert "not a virtual machine" in notifier.messages[0][1]


@pytest.mark.asyncio
async def test_report_issue_uses_last_unexpected_failure(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput, notifier: RecordingNotifier
) -> None:
    client.operation_errors["restart"] = RuntimeError("socket closed")

    with pytest.raises(RuntimeError):
        await ext.registry.execute("azureVirtualMachines.restartVirtualMachine", vm_id(0))
    await ext.registry.execute("azureVirtualMachines.reportIssue")

    # Report-issue action is suppressed per error by default
    assert notifier.messages[0][2] == ()
    query = parse_qs(urlparse(ui.opened[0]).query)
    assert query["title"] == ["RuntimeError in azureVirtualMachines.restartVirtualMachine"]


@pytest.mark.asyncio
async def test_sign_in_runs_az_login_and_refreshes(ext: ExtensionContext) -> None:
    await ext.tree.get_children(_context(ext), None)

    await ext.registry.execute("azureVirtualMachines.signIn")

    assert ext.cli.calls == [["login"]]  # type: ignore[attr-defined]
    assert not ext.tree.root.is_loaded


@pytest.mark.asyncio
async def test_load_more_command_accepts_node_id(ext: ExtensionContext, client: PagedResourceClient) -> None:
    await ext.tree.get_children(_context(ext), None)

    await ext.registry.execute("azureVirtualMachines.loadMore", SUB_ID)

    subscription = ext.tree.get_node(SUB_ID)
    assert subscription is not None
    assert subscription.is_loaded
    assert client.calls_for(SUB_ID) == [(SUB_ID, None)]


@pytest.mark.asyncio
async def test_create_wizard_creates_in_group_and_refreshes_it(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput, telemetry: RecordingTelemetry
) -> None:
    group = await ext.tree.find_node(_context(ext), RG_ID)
    await ext.tree.get_children(_context(ext), group)
    client.children[RG_ID] = make_vms(4)
    ui.answers = ["vm-3", "Ubuntu2204", "Standard_B2s"]

    await ext.registry.execute("azureVirtualMachines.createVirtualMachine", RG_ID)

    assert client.operations == [(RG_ID, "create")]
    assert client.operation_params == [
        {"name": "vm-3", "image": "Ubuntu2204", "size": "Standard_B2s", "generate_ssh_keys": True}
    ]
    children = await ext.tree.get_children(_context(ext), RG_ID)
    assert [child.label for child in children] == ["vm-0", "vm-1", "vm-2", "vm-3"]
    assert len(client.calls_for(RG_ID)) == 2
    properties = telemetry.named("azureVirtualMachines.createVirtualMachine")[0]
    assert properties["image"] == "Ubuntu2204"
    assert properties["outcome"] == "success"


@pytest.mark.asyncio
async def test_create_wizard_picks_group_when_none_given(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput
) -> None:
    ui.answers = ["Dev subscription", "rg-1", "vm-9", "Debian11", "Standard_B1s"]

    await ext.registry.execute("azureVirtualMachines.createVirtualMachine")

    assert client.operations == [(RG_ID, "create")]
    assert ui.prompts[:2] == ["Select a subscription", "Select a resource group"]


@pytest.mark.asyncio
async def test_create_from_vm_node_uses_its_group(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput
) -> None:
    ui.answers = ["vm-9", "Debian11", "Standard_B1s"]

    await ext.registry.execute("azureVirtualMachines.createVirtualMachine", vm_id(1))

    assert client.operations == [(RG_ID, "create")]


@pytest.mark.asyncio
async def test_create_wizard_asks_again_for_invalid_name(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput
) -> None:
    ui.answers = ["bad_name!", "vm-ok", "Ubuntu2204", "Standard_B1s"]

    await ext.registry.execute("azureVirtualMachines.createVirtualMachine", RG_ID)

    assert "not a valid name" in ui.prompts[1]
    assert client.operation_params[0]["name"] == "vm-ok"


@pytest.mark.asyncio
async def test_cancelled_create_wizard_is_silent(
    ext: ExtensionContext,
    client: PagedResourceClient,
    ui: ScriptedUserInput,
    notifier: RecordingNotifier,
    telemetry: RecordingTelemetry,
) -> None:
    ui.answers = ["vm-3", None]

    result = await ext.registry.execute("azureVirtualMachines.createVirtualMachine", RG_ID)

    assert result is None
    assert client.operations == []
    assert notifier.messages == []
    assert telemetry.named("azureVirtualMachines.createVirtualMachine")[0]["outcome"] == "cancelled"


@pytest.mark.asyncio
async def test_refresh_while_create_wizard_waits_for_input(
    ext: ExtensionContext,
    client: PagedResourceClient,
    ui: ScriptedUserInput,
    notifier: RecordingNotifier,
    telemetry: RecordingTelemetry,
) -> None:
    group = await ext.tree.find_node(_context(ext), RG_ID)
    await ext.tree.get_children(_context(ext), group)
    ui.answers = ["vm-3", "Ubuntu2204", "Standard_B1s"]
    waiting = asyncio.Event()
    release = asyncio.Event()
    answer = ui.show_quick_pick

    async def slow_pick(items: Sequence[str], *, placeholder: str) -> str:
        waiting.set()
        await release.wait()
        return await answer(items, placeholder=placeholder)

    ui.show_quick_pick = slow_pick  # type: ignore[method-assign]

    creating = asyncio.create_task(ext.registry.execute("azureVirtualMachines.createVirtualMachine", RG_ID))
    await waiting.wait()
    await ext.registry.execute("azureVirtualMachines.refresh", None)
    release.set()
    await creating

    assert client.operations == [(RG_ID, "create")]
    assert not ext.tree.root.is_loaded
    assert notifier.messages == []
    outcomes = [properties["outcome"] for properties in telemetry.named("azureVirtualMachines.refresh")]
    outcomes += [properties["outcome"] for properties in telemetry.named("azureVirtualMachines.createVirtualMachine")]
    assert outcomes == ["success", "success"]


@pytest.mark.asyncio
async def test_advanced_create_uses_given_key_and_user(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput, tmp_path: Path
) -> None:
    key = tmp_path / "id_ed25519.pub"
    ui.answers = ["vm-3", "Ubuntu2204", "Standard_B2s", "westeurope", "admin", str(key)]

    await ext.registry.execute("azureVirtualMachines.createVirtualMachineAdvanced", RG_ID)

    assert client.operation_params == [
        {
            "name": "vm-3",
            "image": "Ubuntu2204",
            "size": "Standard_B2s",
            "location": "westeurope",
            "admin_username": "admin",
            "ssh_key_values": str(key),
        }
    ]


@pytest.mark.asyncio
async def test_add_ssh_key_sends_public_key(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput, tmp_path: Path
) -> None:
    key = tmp_path / "id_ed25519.pub"
    key.write_text("ssh-ed25519 AAAAC3Nza user@host\n")
    ui.answers = ["azureuser", str(key)]

    await ext.registry.execute("azureVirtualMachines.addSshKey", vm_id(0))

    assert client.operations == [(vm_id(0), "addSshKey")]
    assert client.operation_params == [{"username": "azureuser", "ssh_key_value": "ssh-ed25519 AAAAC3Nza user@host"}]


@pytest.mark.asyncio
async def test_add_ssh_key_with_missing_file_warns(
    ext: ExtensionContext,
    client: PagedResourceClient,
    ui: ScriptedUserInput,
    notifier: RecordingNotifier,
    tmp_path: Path,
) -> None:
    ui.answers = ["azureuser", str(tmp_path / "missing.pub")]

    await ext.registry.execute("azureVirtualMachines.addSshKey", vm_id(0))

    assert client.operations == []
    severity, message, _actions = notifier.messages[0]
    assert severity is Severity.WARNING
    assert "Cannot read SSH public key" in message
    assert ext.reporter.last_issue is None


@pytest.mark.asyncio
async def test_add_ssh_key_rejects_private_key(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput, notifier: RecordingNotifier
) -> None:
    ui.answers = ["azureuser", "~/.ssh/id_rsa"]

    await ext.registry.execute("azureVirtualMachines.addSshKey", vm_id(0))

    assert client.operations == []
    assert "not a public key file" in notifier.messages[0][1]


@pytest.mark.asyncio
async def test_open_in_remote_ssh_opens_ssh_target(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput
) -> None:
    client.operation_results["listIpAddresses"] = [
        {"virtualMachine": {"network": {"publicIpAddresses": [{"ipAddress": "20.0.0.4"}]}}}
    ]
    ui.answers = ["azureuser"]

    await ext.registry.execute("azureVirtualMachines.openInRemoteSsh", vm_id(0))

    assert ui.opened == ["ssh://azureuser@20.0.0.4"]


@pytest.mark.asyncio
async def test_open_in_remote_ssh_without_public_ip_warns(
    ext: ExtensionContext, client: PagedResourceClient, ui: ScriptedUserInput, notifier: RecordingNotifier
) -> None:
    client.operation_results["listIpAddresses"] = []

    await ext.registry.execute("azureVirtualMachines.openInRemoteSsh", vm_id(0))

    assert ui.opened == []
    assert ui.prompts == []
    assert notifier.messages[0][0] is Severity.WARNING
    assert ext.reporter.last_issue is None


def _context(ext: ExtensionContext) -> ActionContext:
    return ActionContext(callback_id="test", ui=ext.ui)
