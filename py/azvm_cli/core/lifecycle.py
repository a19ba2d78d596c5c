"""Virtual machine lifecycle commands.

Each command is a thin call into the resource client plus a prompt sequence;
telemetry, cancellation and failure reporting come from the command wrapper.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import structlog

from azvm_cli.core.commands import CommandRegistry
from azvm_cli.core.config import Settings
from azvm_cli.core.context import ActionContext
from azvm_cli.core.errors import ErrorReporter, build_issue_url
from azvm_cli.core.exceptions import InvalidInputError, NodeNotFoundError, UserCancelledError
from azvm_cli.core.models import NodeKind
from azvm_cli.core.nodes import ResourceNode
from azvm_cli.core.remote import ResourceClient, first_public_ip
from azvm_cli.core.tree import TreeDataProvider

logger = structlog.get_logger(__name__)

COMMAND_PREFIX = "azureVirtualMachines"
DELETE_ACTION = "Delete"
DEFAULT_ADMIN_USERNAME = "azureuser"
DEFAULT_SSH_PUBLIC_KEY = "~/.ssh/id_rsa.pub"

# Aliases accepted by `az vm create --image`
VM_IMAGES = ("Ubuntu2204", "Debian11", "RHELRaw8LVMGen2", "CentOS85Gen2")
VM_SIZES = ("Standard_B1s", "Standard_B2s", "Standard_D2s_v5", "Standard_D4s_v5")

_VM_NAME = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,62}[A-Za-z0-9])?$")
_SSH_KEY_PREFIXES = ("ssh-", "ecdsa-", "sk-")


class VirtualMachineCommands:
    """Lifecycle operations against virtual machine nodes."""

    def __init__(
        self,
        *,
        tree: TreeDataProvider,
        client: ResourceClient,
        settings: Settings,
        reporter: ErrorReporter,
    ) -> None:
        self._tree = tree
        self._client = client
        self._settings = settings
        self._reporter = reporter

    def register(self, registry: CommandRegistry) -> None:
        for name, handler in (
            ("startVirtualMachine", self.start_virtual_machine),
            ("stopVirtualMachine", self.stop_virtual_machine),
            ("restartVirtualMachine", self.restart_virtual_machine),
            ("deleteVirtualMachine", self.delete_virtual_machine),
            ("viewProperties", self.view_properties),
            ("openInPortal", self.open_in_portal),
            ("copyIpAddress", self.copy_ip_address),
            ("createVirtualMachine", self.create_virtual_machine),
            ("createVirtualMachineAdvanced", self.create_virtual_machine_advanced),
            ("addSshKey", self.add_ssh_key),
            ("openInRemoteSsh", self.open_in_remote_ssh),
            ("reportIssue", self.report_issue),
        ):
            registry.register(f"{COMMAND_PREFIX}.{name}", handler)

    async def _resolve_vm(self, context: ActionContext, node: ResourceNode | str | None) -> ResourceNode:
        if node is None:
            vm = await self._tree.pick_node(context, NodeKind.VIRTUAL_MACHINE)
        elif isinstance(node, str):
            vm = await self._tree.find_node(context, node)
        else:
            vm = node
        if vm.kind is not NodeKind.VIRTUAL_MACHINE:
            raise NodeNotFoundError(f"'{vm.label}' is not a virtual machine")
        context.set_properties({"resourceKind": vm.kind.value})
        return vm

    async def _run_operation(self, context: ActionContext, vm: ResourceNode, operation: str, state: str) -> Any:
        previous = vm.description
        vm.description = f"{operation}..."
        self._tree.notify_changed(vm)
        try:
            result = await context.token.wait_for(
                self._client.invoke_lifecycle_operation(vm.id, operation),
                step=operation,
            )
        except BaseException:
            vm.description = previous
            self._tree.notify_changed(vm)
            raise
        vm.properties["powerState"] = state
        vm.description = state
        self._tree.notify_changed(vm)
        logger.info("vm-operation-complete", vm=vm.label, operation=operation, state=state)
        return result

    async def start_virtual_machine(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        vm = await self._resolve_vm(context, node)
        await self._run_operation(context, vm, "start", "running")

    async def stop_virtual_machine(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        vm = await self._resolve_vm(context, node)
        await self._run_operation(context, vm, "deallocate", "deallocated")

    async def restart_virtual_machine(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        vm = await self._resolve_vm(context, node)
        await self._run_operation(context, vm, "restart", "running")

    async def delete_virtual_machine(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        vm = await self._resolve_vm(context, node)
        answer = await context.ui.show_warning_message(
            f"Are you sure you want to delete virtual machine '{vm.label}'? This cannot be undone.",
            DELETE_ACTION,
        )
        if answer != DELETE_ACTION:
            raise UserCancelledError("confirmDelete")
        parent = self._tree.parent_of(vm)
        await self._run_operation(context, vm, "delete", "deleted")
        if parent is not None:
            await self._tree.refresh(context, parent)

    async def view_properties(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        vm = await self._resolve_vm(context, node)
        details = await context.token.wait_for(self._client.invoke_lifecycle_operation(vm.id, "show"), step="show")
        await context.ui.show_text(f"{vm.label} properties", json.dumps(details, indent=2, sort_keys=True))

    async def open_in_portal(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        if node is None:
            target = await self._resolve_vm(context, None)
        elif isinstance(node, str):
            target = await self._tree.find_node(context, node)
        else:
            target = node
        subscription = self._tree.ancestor_of_kind(target, NodeKind.SUBSCRIPTION)
        tenant = subscription.properties.get("tenantId") if subscription is not None else None
        tenant_segment = f"@{tenant}" if tenant else ""
        await context.ui.open_external(f"{self._settings.portal_url}/#{tenant_segment}/resource{target.id}")

    async def copy_ip_address(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        vm = await self._resolve_vm(context, node)
        ip_address = await context.token.wait_for(first_public_ip(self._client, vm.id), step="listIpAddresses")
        await context.ui.copy_to_clipboard(ip_address)
        logger.info("ip-copied", vm=vm.label)

    # Creation

    async def _resolve_group(self, context: ActionContext, node: ResourceNode | str | None) -> ResourceNode:
        if isinstance(node, str):
            node = await self._tree.find_node(context, node)
        group = self._tree.ancestor_of_kind(node, NodeKind.RESOURCE_GROUP) if node is not None else None
        if group is None:
            group = await self._tree.pick_node(context, NodeKind.RESOURCE_GROUP)
        return group

    async def _prompt_vm_name(self, context: ActionContext) -> str:
        prompt = "Enter a name for the new virtual machine"
        while True:
            name = await context.ui.show_input_box(prompt)
            if _VM_NAME.match(name):
                return name
            prompt = f"'{name}' is not a valid name; use 1-64 letters, digits or hyphens"

    async def _create(self, context: ActionContext, node: ResourceNode | str | None, *, advanced: bool) -> None:
        group = await self._resolve_group(context, node)
        name = await self._prompt_vm_name(context)
        image = await context.ui.show_quick_pick(list(VM_IMAGES), placeholder="Select an image")
        size = await context.ui.show_quick_pick(list(VM_SIZES), placeholder="Select a size")
        params: dict[str, Any] = {"name": name, "image": image, "size": size}
        if advanced:
            params["location"] = await context.ui.show_input_box(
                "Enter a location", default=group.properties.get("location")
            )
            params["admin_username"] = await context.ui.show_input_box(
                "Enter the administrator user name", default=DEFAULT_ADMIN_USERNAME
            )
            key_path = await context.ui.show_input_box("Enter the SSH public key file", default=DEFAULT_SSH_PUBLIC_KEY)
            params["ssh_key_values"] = str(_public_key_path(key_path))
        else:
            params["generate_ssh_keys"] = True
        context.set_properties({"image": image, "size": size, "advanced": str(advanced).lower()})

        await context.token.wait_for(
            self._client.invoke_lifecycle_operation(group.id, "create", params),
            step="create",
        )
        logger.info("vm-created", vm=name, group=group.label, image=image, size=size)
        await self._tree.refresh(context, group)

    async def create_virtual_machine(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        await self._create(context, node, advanced=False)

    async def create_virtual_machine_advanced(
        self, context: ActionContext, node: ResourceNode | str | None = None
    ) -> None:
        """Like :meth:`create_virtual_machine`, also asking for location, admin user and SSH key."""
        await self._create(context, node, advanced=True)

    # SSH

    async def add_ssh_key(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        vm = await self._resolve_vm(context, node)
        username = await context.ui.show_input_box("Enter the user name", default=DEFAULT_ADMIN_USERNAME)
        key_path = _public_key_path(
            await context.ui.show_input_box("Enter the SSH public key file", default=DEFAULT_SSH_PUBLIC_KEY)
        )
        try:
            public_key = key_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise InvalidInputError(f"Cannot read SSH public key '{key_path}': {exc.strerror or exc}") from exc
        if not public_key.startswith(_SSH_KEY_PREFIXES):
            raise InvalidInputError(f"'{key_path}' does not contain an SSH public key")

        await context.token.wait_for(
            self._client.invoke_lifecycle_operation(
                vm.id, "addSshKey", {"username": username, "ssh_key_value": public_key}
            ),
            step="addSshKey",
        )
        logger.info("ssh-key-added", vm=vm.label, username=username)

    async def open_in_remote_ssh(self, context: ActionContext, node: ResourceNode | str | None = None) -> None:
        vm = await self._resolve_vm(context, node)
        ip_address = await context.token.wait_for(first_public_ip(self._client, vm.id), step="listIpAddresses")
        username = await context.ui.show_input_box("Enter the SSH user name", default=DEFAULT_ADMIN_USERNAME)
        await context.ui.open_external(f"ssh://{username}@{ip_address}")

    async def report_issue(self, context: ActionContext) -> None:
        await context.ui.open_external(build_issue_url(self._settings.report_issue_url, self._reporter.last_issue))


def _public_key_path(value: str) -> Path:
    path = Path(value).expanduser()
    if path.suffix != ".pub":
        raise InvalidInputError(f"'{value}' is not a public key file (expected a .pub file)")
    return path


__all__ = ["COMMAND_PREFIX", "DELETE_ACTION", "VM_IMAGES", "VM_SIZES", "VirtualMachineCommands"]
