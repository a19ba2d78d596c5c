"""Remote resource API used by the tree and the lifecycle commands."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, cast

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from azvm_cli.core.exceptions import CommandExecutionError, RemoteError
from azvm_cli.core.models import NodeKind, ResourceItem, ResourcePage
from azvm_cli.core.nodes import ResourceNode
from azvm_cli.utils.process import AzureCLI

logger = structlog.get_logger(__name__)

SUBSCRIPTIONS_API_VERSION = "2022-12-01"
RESOURCE_GROUPS_API_VERSION = "2021-04-01"
COMPUTE_API_VERSION = "2023-03-01"

LIFECYCLE_OPERATIONS: Mapping[str, tuple[str, ...]] = {
    "start": ("vm", "start"),
    "deallocate": ("vm", "deallocate"),
    "powerOff": ("vm", "stop"),
    "restart": ("vm", "restart"),
    "delete": ("vm", "delete", "--yes"),
    "show": ("vm", "show", "--show-details"),
    "listIpAddresses": ("vm", "list-ip-addresses"),
    "create": ("vm", "create"),
    "addSshKey": ("vm", "user", "update"),
}

# Operations addressed to the resource group that will contain the VM
GROUP_SCOPED_OPERATIONS = frozenset({"create"})


class ResourceClient(Protocol):
    """Opaque asynchronous access to the management API."""

    async def list_children(self, parent: ResourceNode, cursor: str | None) -> ResourcePage: ...

    async def invoke_lifecycle_operation(
        self, resource_id: str, operation: str, params: Mapping[str, Any] | None = None
    ) -> Any: ...


# ARM payload models


class _ArmRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SubscriptionRecord(_ArmRecord):
    id: str
    subscription_id: str = Field(alias="subscriptionId")
    display_name: str | None = Field(default=None, alias="displayName")
    state: str | None = None
    tenant_id: str | None = Field(default=None, alias="tenantId")


class ResourceGroupRecord(_ArmRecord):
    id: str
    name: str
    location: str | None = None


class VirtualMachineRecord(_ArmRecord):
    id: str
    name: str
    location: str | None = None
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def vm_size(self) -> str | None:
        hardware = cast(dict[str, Any], self.properties.get("hardwareProfile") or {})
        return cast(str | None, hardware.get("vmSize"))

    @property
    def os_type(self) -> str | None:
        storage = cast(dict[str, Any], self.properties.get("storageProfile") or {})
        os_disk = cast(dict[str, Any], storage.get("osDisk") or {})
        return cast(str | None, os_disk.get("osType"))


class ArmListResponse(_ArmRecord):
    value: list[dict[str, Any]] = Field(default_factory=list)
    next_link: str | None = Field(default=None, alias="nextLink")


SUBSCRIPTION_LIST_ADAPTER = TypeAdapter(list[SubscriptionRecord])
RESOURCE_GROUP_LIST_ADAPTER = TypeAdapter(list[ResourceGroupRecord])
VM_LIST_ADAPTER = TypeAdapter(list[VirtualMachineRecord])


class AzureResourceClient:
    """Resource client that shells out to the Azure CLI.

    Listing goes through ``az rest`` so that ARM's ``nextLink`` can serve as
    the continuation token; lifecycle operations use ``az vm`` which waits
    for long-running operations to finish.
    """

    def __init__(self, cli: AzureCLI, *, page_size: int = 100) -> None:
        self._cli = cli
        self._page_size = page_size

    async def list_children(self, parent: ResourceNode, cursor: str | None) -> ResourcePage:
        if parent.kind not in (NodeKind.ACCOUNT, NodeKind.SUBSCRIPTION, NodeKind.RESOURCE_GROUP):
            return ResourcePage()
        url = cursor or self._first_page_url(parent)
        payload = await self._cli.run_json(["rest", "--method", "get", "--url", url])
        try:
            response = ArmListResponse.model_validate(payload or {})
            items = self._to_items(parent.kind, response.value)
        except ValidationError as exc:
            raise CommandExecutionError(f"Invalid payload listing children of {parent.id}: {exc}") from exc
        logger.debug("page-fetched", parent=parent.id, count=len(items), has_more=response.next_link is not None)
        return ResourcePage(items=tuple(items), next_cursor=response.next_link)

    async def invoke_lifecycle_operation(
        self, resource_id: str, operation: str, params: Mapping[str, Any] | None = None
    ) -> Any:
        try:
            base_args = LIFECYCLE_OPERATIONS[operation]
        except KeyError:
            raise ValueError(f"Unsupported lifecycle operation: {operation}") from None
        if operation in GROUP_SCOPED_OPERATIONS:
            subscription_id, group_name = split_group_id(resource_id)
            args = [*base_args, "--resource-group", group_name, "--subscription", subscription_id]
        else:
            args = [*base_args, "--ids", resource_id]
        for key, value in (params or {}).items():
            flag = f"--{key.replace('_', '-')}"
            if value is True:
                args.append(flag)
            elif value not in (None, False):
                args.extend([flag, str(value)])
        logger.info("lifecycle-operation", resource=resource_id, operation=operation)
        result = await self._cli.run_json(args)
        return result if result is not None else {}

    def _first_page_url(self, parent: ResourceNode) -> str:
        if parent.kind is NodeKind.ACCOUNT:
            return f"/subscriptions?api-version={SUBSCRIPTIONS_API_VERSION}"
        if parent.kind is NodeKind.SUBSCRIPTION:
            return f"{parent.id}/resourcegroups?api-version={RESOURCE_GROUPS_API_VERSION}&$top={self._page_size}"
        return f"{parent.id}/providers/Microsoft.Compute/virtualMachines?api-version={COMPUTE_API_VERSION}"

    def _to_items(self, kind: NodeKind, values: list[dict[str, Any]]) -> list[ResourceItem]:
        if kind is NodeKind.ACCOUNT:
            return [
                ResourceItem(
                    id=record.id,
                    name=record.display_name or record.subscription_id,
                    kind=NodeKind.SUBSCRIPTION,
                    description=record.subscription_id,
                    properties={"tenantId": record.tenant_id, "state": record.state},
                )
                for record in SUBSCRIPTION_LIST_ADAPTER.validate_python(values)
            ]
        if kind is NodeKind.SUBSCRIPTION:
            return [
                ResourceItem(
                    id=record.id,
                    name=record.name,
                    kind=NodeKind.RESOURCE_GROUP,
                    description=record.location,
                    properties={"location": record.location},
                )
                for record in RESOURCE_GROUP_LIST_ADAPTER.validate_python(values)
            ]
        return [
            ResourceItem(
                id=record.id,
                name=record.name,
                kind=NodeKind.VIRTUAL_MACHINE,
                expandable=False,
                description=record.vm_size,
                properties={"location": record.location, "vmSize": record.vm_size, "osType": record.os_type},
            )
            for record in VM_LIST_ADAPTER.validate_python(values)
        ]


def split_group_id(resource_id: str) -> tuple[str, str]:
    """Return ``(subscription id, group name)`` for a resource group id."""
    parts = resource_id.strip("/").split("/")
    if len(parts) < 4 or parts[0].lower() != "subscriptions" or parts[2].lower() != "resourcegroups":
        raise ValueError(f"Not a resource group id: {resource_id}")
    return parts[1], parts[3]


async def first_public_ip(client: ResourceClient, resource_id: str) -> str:
    """Return the first public IP of a VM or raise a :class:`RemoteError`."""
    payload = await client.invoke_lifecycle_operation(resource_id, "listIpAddresses")
    entries = cast(list[dict[str, Any]], payload if isinstance(payload, list) else [payload])
    for entry in entries:
        network = cast(dict[str, Any], entry.get("virtualMachine", {}).get("network", {}))
        for address in cast(list[dict[str, Any]], network.get("publicIpAddresses") or []):
            ip = address.get("ipAddress")
            if ip:
                return cast(str, ip)
    raise RemoteError("PublicIpNotFound", "The virtual machine has no public IP address.")


__all__ = [
    "GROUP_SCOPED_OPERATIONS",
    "LIFECYCLE_OPERATIONS",
    "AzureResourceClient",
    "ResourceClient",
    "first_public_ip",
    "split_group_id",
]
