from __future__ import annotations

from typing import Optional

import pytest

from tfstate_bootstrap.config import ProjectConfig
from tfstate_bootstrap.models import (
    AccountContext,
    ManagedResource,
    ResourceKind,
    ServicePrincipalCredentials,
    ServicePrincipalIdentity,
)

MUTATING_CALLS = {
    "create_resource_group",
    "create_service_principal",
    "reset_service_principal_secret",
    "create_storage_account",
    "create_blob_container",
    "delete_blob_container",
    "delete_storage_account",
    "delete_service_principal",
    "delete_resource_group",
}


class InMemoryCloud:
    """CloudClient fake holding the live state as a set of (kind, name) pairs."""

    def __init__(self) -> None:
        self.present: set[tuple[ResourceKind, str]] = set()
        self.principals: dict[str, ServicePrincipalIdentity] = {}
        self.calls: list[tuple[str, str]] = []
        self.secret_counter = 0
        self.role_scopes: dict[str, str] = {}
        self.locations: dict[str, str] = {}

    def seed(self, resource: ManagedResource) -> None:
        self.present.add((resource.kind, resource.name))
        if resource.kind is ResourceKind.SERVICE_PRINCIPAL:
            self.principals[resource.name] = ServicePrincipalIdentity(
                object_id=f"{resource.name}-object",
                display_name=resource.name,
                client_id=f"{resource.name}-app-id",
            )

    @property
    def mutations(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def account_context(self) -> AccountContext:
        self.calls.append(("account_context", ""))
        return AccountContext(subscription_id="00000000-sub", tenant_id="11111111-tenant")

    def exists(self, resource: ManagedResource) -> bool:
        self.calls.append(("exists", resource.name))
        return (resource.kind, resource.name) in self.present

    def find_service_principal(self, resource: ManagedResource) -> Optional[ServicePrincipalIdentity]:
        self.calls.append(("find_service_principal", resource.name))
        return self.principals.get(resource.name)

    def storage_account_key(self, account: ManagedResource) -> Optional[str]:
        self.calls.append(("storage_account_key", account.name))
        if (ResourceKind.STORAGE_ACCOUNT, account.name) not in self.present:
            return None
        return f"{account.name}-key"

    def create_resource_group(self, resource: ManagedResource, location: str) -> None:
        self.calls.append(("create_resource_group", resource.name))
        self.locations[resource.name] = location
        self.seed(resource)

    def create_service_principal(self, resource: ManagedResource) -> ServicePrincipalCredentials:
        self.calls.append(("create_service_principal", resource.name))
        self.seed(resource)
        return ServicePrincipalCredentials(identity=self.principals[resource.name], client_secret=self._next_secret())

    def ensure_service_principal_access(self, resource: ManagedResource, identity: ServicePrincipalIdentity) -> None:
        self.calls.append(("ensure_service_principal_access", resource.name))
        assert identity.client_id == f"{resource.name}-app-id"
        self.role_scopes[resource.name] = resource.parent.name if resource.parent else ""

    def reset_service_principal_secret(
        self, resource: ManagedResource, identity: ServicePrincipalIdentity
    ) -> ServicePrincipalCredentials:
        self.calls.append(("reset_service_principal_secret", resource.name))
        return ServicePrincipalCredentials(identity=identity, client_secret=self._next_secret())

    def create_storage_account(self, resource: ManagedResource, location: str) -> None:
        self.calls.append(("create_storage_account", resource.name))
        self.locations[resource.name] = location
        self.seed(resource)

    def create_blob_container(self, resource: ManagedResource, account_key: str) -> None:
        assert account_key == f"{resource.parent.name}-key"  # type: ignore[union-attr]
        self.calls.append(("create_blob_container", resource.name))
        self.seed(resource)

    def delete_blob_container(self, resource: ManagedResource, account_key: str) -> bool:
        assert account_key == f"{resource.parent.name}-key"  # type: ignore[union-attr]
        self.calls.append(("delete_blob_container", resource.name))
        return self._remove(resource)

    def delete_storage_account(self, resource: ManagedResource) -> bool:
        self.calls.append(("delete_storage_account", resource.name))
        return self._remove(resource)

    def delete_service_principal(self, resource: ManagedResource, identity: ServicePrincipalIdentity) -> bool:
        self.calls.append(("delete_service_principal", resource.name))
        self.principals.pop(resource.name, None)
        return self._remove(resource)

    def delete_resource_group(self, resource: ManagedResource) -> bool:
        self.calls.append(("delete_resource_group", resource.name))
        return self._remove(resource)

    def _remove(self, resource: ManagedResource) -> bool:
        key = (resource.kind, resource.name)
        if key not in self.present:
            return False
        self.present.discard(key)
        return True

    def _next_secret(self) -> str:
        self.secret_counter += 1
        return f"s3cr3t-{self.secret_counter}"


@pytest.fixture()
def project() -> ProjectConfig:
    return ProjectConfig(subfix="ea001", projectname="paperless", region="westeurope")


@pytest.fixture()
def cloud() -> InMemoryCloud:
    return InMemoryCloud()


@pytest.fixture()
def populated_cloud(project: ProjectConfig) -> InMemoryCloud:
    fake = InMemoryCloud()
    for resource in project.resource_plan().provision_order():
        fake.seed(resource)
    return fake
