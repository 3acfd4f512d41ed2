"""Typed cloud operations over the managed resources.

``CloudClient`` is the only surface the reconciler talks to: one probe per
resource kind plus the create/delete operations. ``AzureCloud`` maps them onto
Resource Manager, Microsoft Graph and the blob data plane. ``SimulatedCloud``
wraps any client for dry runs: probes and key lookups still reach the real
account, while every mutation is logged and skipped.
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Protocol

from .auth import ClientCredentialProvider
from .azure import AzureProvisioner
from .blob import BlobContainerManager, ServiceClientFactory
from .config import AzureConfig
from .http import CloudAPIError
from .identity import IdentityProvisioner
from .models import (
    DRY_RUN_PLACEHOLDER,
    DRY_RUN_SECRET_PLACEHOLDER,
    AccountContext,
    ManagedResource,
    ResourceKind,
    ServicePrincipalCredentials,
    ServicePrincipalIdentity,
)

logger = logging.getLogger(__name__)

SECRET_DISPLAY_NAME = "tfstate-bootstrap"


class CloudClient(Protocol):
    def account_context(self) -> AccountContext: ...

    def exists(self, resource: ManagedResource) -> bool: ...

    def find_service_principal(self, resource: ManagedResource) -> Optional[ServicePrincipalIdentity]: ...

    def storage_account_key(self, account: ManagedResource) -> Optional[str]: ...

    def create_resource_group(self, resource: ManagedResource, location: str) -> None: ...

    def create_service_principal(self, resource: ManagedResource) -> ServicePrincipalCredentials: ...

    def ensure_service_principal_access(self, resource: ManagedResource, identity: ServicePrincipalIdentity) -> None: ...

    def reset_service_principal_secret(
        self, resource: ManagedResource, identity: ServicePrincipalIdentity
    ) -> ServicePrincipalCredentials: ...

    def create_storage_account(self, resource: ManagedResource, location: str) -> None: ...

    def create_blob_container(self, resource: ManagedResource, account_key: str) -> None: ...

    def delete_blob_container(self, resource: ManagedResource, account_key: str) -> bool: ...

    def delete_storage_account(self, resource: ManagedResource) -> bool: ...

    def delete_service_principal(self, resource: ManagedResource, identity: ServicePrincipalIdentity) -> bool: ...

    def delete_resource_group(self, resource: ManagedResource) -> bool: ...


def _parent(resource: ManagedResource) -> ManagedResource:
    if resource.parent is None:
        raise ValueError(f"{resource} has no parent resource")
    return resource.parent


class AzureCloud:
    """CloudClient backed by the Azure REST APIs."""

    def __init__(
        self,
        azure: AzureProvisioner,
        identity: IdentityProvisioner,
        *,
        tenant_id: str,
        storage_dns_suffix: str = "core.windows.net",
        blob_client_factory: Optional[ServiceClientFactory] = None,
    ) -> None:
        self._azure = azure
        self._identity = identity
        self._tenant_id = tenant_id
        self._dns_suffix = storage_dns_suffix
        self._blob_client_factory = blob_client_factory
        self._probes: Dict[ResourceKind, Callable[[ManagedResource], bool]] = {
            ResourceKind.RESOURCE_GROUP: self._resource_group_exists,
            ResourceKind.SERVICE_PRINCIPAL: lambda resource: self.find_service_principal(resource) is not None,
            ResourceKind.STORAGE_ACCOUNT: self._storage_account_exists,
            ResourceKind.BLOB_CONTAINER: self._blob_container_exists,
        }

    def account_context(self) -> AccountContext:
        subscription = self._azure.get_subscription()
        return AccountContext(
            subscription_id=subscription.subscription_id,
            tenant_id=subscription.tenant_id or self._tenant_id,
            display_name=subscription.display_name,
        )

    def exists(self, resource: ManagedResource) -> bool:
        return self._probes[resource.kind](resource)

    def _resource_group_exists(self, resource: ManagedResource) -> bool:
        return self._azure.get_resource_group(resource.name) is not None

    def _storage_account_exists(self, resource: ManagedResource) -> bool:
        return self._azure.get_storage_account(_parent(resource).name, resource.name) is not None

    def _blob_container_exists(self, resource: ManagedResource) -> bool:
        account_key = self.storage_account_key(_parent(resource))
        if account_key is None:
            return False
        return self._containers(_parent(resource), account_key).exists(resource.name)

    def find_service_principal(self, resource: ManagedResource) -> Optional[ServicePrincipalIdentity]:
        principal = self._identity.find_service_principal(resource.name)
        if principal is None:
            return None
        return ServicePrincipalIdentity(
            object_id=principal.object_id,
            display_name=principal.display_name,
            client_id=principal.app_id,
        )

    def storage_account_key(self, account: ManagedResource) -> Optional[str]:
        return self._azure.list_storage_account_key(_parent(account).name, account.name)

    def create_resource_group(self, resource: ManagedResource, location: str) -> None:
        self._azure.create_resource_group(resource.name, location)

    def create_service_principal(self, resource: ManagedResource) -> ServicePrincipalCredentials:
        application = self._identity.find_application_by_name(resource.name)
        if application is None:
            application = self._identity.create_application(resource.name)
        else:
            # Left behind by an interrupted run that never got as far as the principal.
            logger.info("Reusing application registration '%s' (appId %s)", application.display_name, application.app_id)
        principal = self._identity.create_service_principal(application.app_id)
        secret = self._identity.create_application_secret(application.object_id, display_name=SECRET_DISPLAY_NAME)
        return ServicePrincipalCredentials(
            identity=ServicePrincipalIdentity(
                object_id=principal.object_id,
                display_name=principal.display_name,
                client_id=principal.app_id,
                app_object_id=application.object_id,
            ),
            client_secret=secret.secret_text,
        )

    def ensure_service_principal_access(self, resource: ManagedResource, identity: ServicePrincipalIdentity) -> None:
        scope = self._azure.resource_group_id(_parent(resource).name)
        self._azure.ensure_role_assignment(identity.object_id, scope)

    def reset_service_principal_secret(
        self, resource: ManagedResource, identity: ServicePrincipalIdentity
    ) -> ServicePrincipalCredentials:
        application = self._identity.find_application(identity.client_id)
        if application is None:
            raise CloudAPIError(f"Application backing {resource} (appId {identity.client_id}) was not found")
        secret = self._identity.reset_application_secret(application.object_id, display_name=SECRET_DISPLAY_NAME)
        return ServicePrincipalCredentials(identity=identity, client_secret=secret.secret_text)

    def create_storage_account(self, resource: ManagedResource, location: str) -> None:
        self._azure.create_storage_account(_parent(resource).name, resource.name, location)

    def create_blob_container(self, resource: ManagedResource, account_key: str) -> None:
        self._containers(_parent(resource), account_key).create(resource.name)

    def delete_blob_container(self, resource: ManagedResource, account_key: str) -> bool:
        return self._containers(_parent(resource), account_key).delete(resource.name)

    def delete_storage_account(self, resource: ManagedResource) -> bool:
        return self._azure.delete_storage_account(_parent(resource).name, resource.name)

    def delete_service_principal(self, resource: ManagedResource, identity: ServicePrincipalIdentity) -> bool:
        deleted = self._identity.delete_service_principal(identity.object_id)
        application = self._identity.find_application(identity.client_id)
        if application is not None:
            self._identity.delete_application(application.object_id)
            logger.info("Deleted application registration '%s'", application.display_name)
        return deleted

    def delete_resource_group(self, resource: ManagedResource) -> bool:
        return self._azure.delete_resource_group(resource.name)

    def _containers(self, account: ManagedResource, account_key: str) -> BlobContainerManager:
        return BlobContainerManager(
            account.name,
            account_key,
            dns_suffix=self._dns_suffix,
            client_factory=self._blob_client_factory,
        )


class SimulatedCloud:
    """Dry-run decorator: reads pass through, mutations are only described."""

    def __init__(self, inner: CloudClient) -> None:
        self._inner = inner

    @staticmethod
    def _would(message: str, *args: object) -> None:
        logger.info("[DRY-RUN] Would " + message, *args)

    def account_context(self) -> AccountContext:
        return self._inner.account_context()

    def exists(self, resource: ManagedResource) -> bool:
        return self._inner.exists(resource)

    def find_service_principal(self, resource: ManagedResource) -> Optional[ServicePrincipalIdentity]:
        return self._inner.find_service_principal(resource)

    def storage_account_key(self, account: ManagedResource) -> Optional[str]:
        account_key = self._inner.storage_account_key(account)
        if account_key is None:
            return DRY_RUN_PLACEHOLDER
        return account_key

    def create_resource_group(self, resource: ManagedResource, location: str) -> None:
        self._would("create resource group %s in %s", resource.name, location)

    def create_service_principal(self, resource: ManagedResource) -> ServicePrincipalCredentials:
        self._would("create service principal %s", resource.name)
        identity = ServicePrincipalIdentity(
            object_id=DRY_RUN_PLACEHOLDER,
            display_name=resource.name,
            client_id=DRY_RUN_PLACEHOLDER,
        )
        return ServicePrincipalCredentials(identity=identity, client_secret=DRY_RUN_PLACEHOLDER)

    def ensure_service_principal_access(self, resource: ManagedResource, identity: ServicePrincipalIdentity) -> None:
        self._would(
            "grant service principal %s the Contributor role on resource group %s",
            resource.name,
            _parent(resource).name,
        )

    def reset_service_principal_secret(
        self, resource: ManagedResource, identity: ServicePrincipalIdentity
    ) -> ServicePrincipalCredentials:
        self._would("reset credentials for existing service principal %s", resource.name)
        return ServicePrincipalCredentials(identity=identity, client_secret=DRY_RUN_SECRET_PLACEHOLDER)

    def create_storage_account(self, resource: ManagedResource, location: str) -> None:
        self._would(
            "create storage account %s in %s (Standard_LRS, blob encryption)",
            resource.name,
            location,
        )

    def create_blob_container(self, resource: ManagedResource, account_key: str) -> None:
        self._would("create blob container %s in storage account %s", resource.name, _parent(resource).name)

    def delete_blob_container(self, resource: ManagedResource, account_key: str) -> bool:
        self._would("delete blob container %s from storage account %s", resource.name, _parent(resource).name)
        return True

    def delete_storage_account(self, resource: ManagedResource) -> bool:
        self._would("delete storage account %s", resource.name)
        return True

    def delete_service_principal(self, resource: ManagedResource, identity: ServicePrincipalIdentity) -> bool:
        self._would("delete service principal %s (appId %s)", resource.name, identity.client_id)
        return True

    def delete_resource_group(self, resource: ManagedResource) -> bool:
        self._would("delete resource group %s (no wait)", resource.name)
        return True


def build_cloud(config: AzureConfig) -> AzureCloud:
    credentials = ClientCredentialProvider(
        tenant_id=config.tenant_id,
        client_id=config.client_id,
        client_secret=config.client_secret,
        authority=config.authority_url,
    )
    return AzureCloud(
        AzureProvisioner(config, credentials),
        IdentityProvisioner(config, credentials),
        tenant_id=config.tenant_id,
        storage_dns_suffix=config.storage_dns_suffix,
    )
