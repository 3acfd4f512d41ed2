"""Domain models for Terraform state bootstrapping."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Optional

DRY_RUN_PLACEHOLDER = "<DRY-RUN>"
DRY_RUN_SECRET_PLACEHOLDER = "<NEW-DRY-RUN-SECRET>"
REDACTED_SECRET = "<REDACTED>"


def mask_secret(value: Optional[str]) -> str:
    """Return a log-safe rendering of a secret."""
    if not value:
        return "<empty>"
    if value.startswith("<") and value.endswith(">"):
        return value
    return f"{value[:3]}***"


class ResourceKind(str, enum.Enum):
    RESOURCE_GROUP = "resource group"
    SERVICE_PRINCIPAL = "service principal"
    STORAGE_ACCOUNT = "storage account"
    BLOB_CONTAINER = "blob container"


@dataclass(frozen=True, slots=True)
class ManagedResource:
    """A resource owned by the bootstrap, addressed through its parent."""

    kind: ResourceKind
    name: str
    parent: Optional["ManagedResource"] = None

    def __str__(self) -> str:
        return f"{self.kind.value} {self.name}"


@dataclass(frozen=True, slots=True)
class ResourcePlan:
    """The four managed resources, in the order they are provisioned."""

    resource_group: ManagedResource
    service_principal: ManagedResource
    storage_account: ManagedResource
    blob_container: ManagedResource

    def provision_order(self) -> list[ManagedResource]:
        return [self.resource_group, self.service_principal, self.storage_account, self.blob_container]

    def destroy_order(self) -> list[ManagedResource]:
        return [self.blob_container, self.storage_account, self.service_principal, self.resource_group]


class RunAction(str, enum.Enum):
    PROVISION = "provision"
    DESTROY = "destroy"


@dataclass(frozen=True, slots=True)
class RunMode:
    """Immutable description of what a single invocation does."""

    action: RunAction
    simulate: bool = False
    assume_yes: bool = False

    @property
    def requires_confirmation(self) -> bool:
        return not self.simulate and not self.assume_yes


@dataclass(frozen=True, slots=True)
class AccountContext:
    subscription_id: str
    tenant_id: str
    display_name: str = ""


@dataclass(frozen=True, slots=True)
class ServicePrincipalIdentity:
    """Lookup result for an existing service principal."""

    object_id: str
    display_name: str
    client_id: str
    app_object_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ServicePrincipalCredentials:
    identity: ServicePrincipalIdentity
    client_secret: str = field(repr=False)

    @property
    def client_id(self) -> str:
        return self.identity.client_id


@dataclass(frozen=True, slots=True)
class ProvisioningResult:
    """Identifiers handed to Terraform through the variables file."""

    client_id: str
    client_secret: str = field(repr=False)
    tenant_id: str = ""
    subscription_id: str = ""
    resource_group: str = ""
    region: str = ""
    project_name: str = ""
    subfix: str = ""
    container_name: str = ""


class Outcome(str, enum.Enum):
    CREATED = "created"
    EXISTS = "exists"
    DELETED = "deleted"
    ABSENT = "absent"


@dataclass(slots=True)
class ReconcileSummary:
    """Per-resource outcome of one provision or destroy pass."""

    action: RunAction
    simulated: bool
    outcomes: Dict[ResourceKind, Outcome] = field(default_factory=dict)
    secret_issued: bool = False
    tfvars_written: bool = False
    tfvars_removed: bool = False
    result: Optional[ProvisioningResult] = None

    def record(self, resource: ManagedResource, outcome: Outcome) -> None:
        self.outcomes[resource.kind] = outcome
