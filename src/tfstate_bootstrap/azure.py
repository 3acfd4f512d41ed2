"""Azure Resource Manager helpers for the state backend resources."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import requests
from tenacity import (
    RetryError,
    Retrying,
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)

from .auth import ClientCredentialProvider
from .config import AzureConfig
from .http import CloudAPIError, ensure_success, is_not_found, parse_json, send

logger = logging.getLogger(__name__)

AZURE_MANAGEMENT_SCOPE = "https://management.azure.com/.default"
ROLE_CONTRIBUTOR = "b24988ac-6180-42a0-ab88-20f7382dd24c"

RESOURCE_GROUP_API_VERSION = "2021-04-01"
SUBSCRIPTION_API_VERSION = "2022-12-01"
STORAGE_API_VERSION = "2023-01-01"
ROLE_ASSIGNMENT_API_VERSION = "2022-04-01"

STORAGE_SKU = "Standard_LRS"
STORAGE_KIND = "StorageV2"
_TERMINAL_PROVISIONING_STATES = {"Succeeded", "Failed", "Canceled"}


@dataclass(slots=True)
class AzureSubscription:
    subscription_id: str
    tenant_id: str
    display_name: str


@dataclass(slots=True)
class AzureResourceGroup:
    name: str
    location: str
    resource_id: str


@dataclass(slots=True)
class AzureStorageAccount:
    name: str
    location: str
    resource_id: str
    provisioning_state: str


class PrincipalNotReplicatedError(CloudAPIError):
    """Raised while a new service principal is not yet visible to Resource Manager."""


def _still_provisioning(account: Optional[AzureStorageAccount]) -> bool:
    return account is None or account.provisioning_state not in _TERMINAL_PROVISIONING_STATES


class AzureProvisioner:
    """Performs Resource Manager calls for the Terraform state backend."""

    def __init__(
        self,
        config: AzureConfig,
        credential_provider: ClientCredentialProvider,
        *,
        provisioning_timeout: float = 600,
        poll_interval: float = 5,
    ) -> None:
        self._config = config
        self._credentials = credential_provider
        self._mgmt_url = config.management_url.rstrip("/")
        self._scope = f"{self._mgmt_url}/.default" if self._mgmt_url else AZURE_MANAGEMENT_SCOPE
        self._provisioning_timeout = provisioning_timeout
        self._poll_interval = poll_interval

    @property
    def subscription_id(self) -> str:
        return self._config.subscription_id

    def get_subscription(self) -> AzureSubscription:
        url = f"{self._mgmt_url}/subscriptions/{self.subscription_id}?api-version={SUBSCRIPTION_API_VERSION}"
        response = self._authorized_request("GET", url)
        ensure_success(response, f"Reading subscription '{self.subscription_id}'")
        payload = parse_json(response)
        return AzureSubscription(
            subscription_id=payload.get("subscriptionId", self.subscription_id),
            tenant_id=payload.get("tenantId") or self._config.tenant_id,
            display_name=payload.get("displayName", ""),
        )

    def get_resource_group(self, name: str) -> Optional[AzureResourceGroup]:
        url = f"{self._mgmt_url}{self.resource_group_id(name)}?api-version={RESOURCE_GROUP_API_VERSION}"
        response = self._authorized_request("GET", url)
        if is_not_found(response):
            return None
        ensure_success(response, f"Reading resource group '{name}'")
        payload = parse_json(response)
        return AzureResourceGroup(name=payload["name"], location=payload["location"], resource_id=payload["id"])

    def create_resource_group(self, name: str, location: str) -> AzureResourceGroup:
        url = f"{self._mgmt_url}{self.resource_group_id(name)}?api-version={RESOURCE_GROUP_API_VERSION}"
        logger.debug("PUT resource group '%s' in '%s'", name, location)
        response = self._authorized_request("PUT", url, json={"location": location})
        ensure_success(response, f"Creating resource group '{name}'")
        payload = parse_json(response)
        return AzureResourceGroup(name=payload["name"], location=payload["location"], resource_id=payload["id"])

    def delete_resource_group(self, name: str) -> bool:
        """Request deletion; Resource Manager completes it asynchronously."""
        url = f"{self._mgmt_url}{self.resource_group_id(name)}?api-version={RESOURCE_GROUP_API_VERSION}"
        response = self._authorized_request("DELETE", url)
        if response.status_code in {200, 202, 204}:
            return True
        if is_not_found(response):
            logger.info("Resource group '%s' not found during delete", name)
            return False
        ensure_success(response, f"Deleting resource group '{name}'")
        return False

    def get_storage_account(self, resource_group: str, name: str) -> Optional[AzureStorageAccount]:
        url = f"{self._mgmt_url}{self.storage_account_id(resource_group, name)}?api-version={STORAGE_API_VERSION}"
        response = self._authorized_request("GET", url)
        if is_not_found(response):
            return None
        ensure_success(response, f"Reading storage account '{name}'")
        return self._storage_account_from_payload(parse_json(response))

    def create_storage_account(self, resource_group: str, name: str, location: str) -> AzureStorageAccount:
        url = f"{self._mgmt_url}{self.storage_account_id(resource_group, name)}?api-version={STORAGE_API_VERSION}"
        body = {
            "sku": {"name": STORAGE_SKU},
            "kind": STORAGE_KIND,
            "location": location,
            "properties": {
                "supportsHttpsTrafficOnly": True,
                "minimumTlsVersion": "TLS1_2",
                "allowBlobPublicAccess": False,
                "encryption": {
                    "keySource": "Microsoft.Storage",
                    "services": {"blob": {"enabled": True}},
                },
            },
        }
        response = self._authorized_request("PUT", url, json=body)
        ensure_success(response, f"Creating storage account '{name}'")
        if response.status_code == 200 and response.content:
            account = self._storage_account_from_payload(parse_json(response))
            if account.provisioning_state == "Succeeded":
                return account
        logger.info("Waiting for storage account '%s' to finish provisioning", name)
        return self._wait_for_storage_account(resource_group, name)

    def _wait_for_storage_account(self, resource_group: str, name: str) -> AzureStorageAccount:
        poller = Retrying(
            stop=stop_after_delay(self._provisioning_timeout),
            wait=wait_fixed(self._poll_interval),
            retry=retry_if_result(_still_provisioning),
        )
        try:
            account = poller(self.get_storage_account, resource_group, name)
        except RetryError as exc:
            raise CloudAPIError(
                f"Storage account '{name}' did not finish provisioning within {self._provisioning_timeout:.0f}s"
            ) from exc
        if account.provisioning_state != "Succeeded":
            raise CloudAPIError(f"Storage account '{name}' provisioning ended in state '{account.provisioning_state}'")
        return account

    def list_storage_account_key(self, resource_group: str, name: str) -> Optional[str]:
        """Return the first access key, or None when the account does not exist."""
        url = (
            f"{self._mgmt_url}{self.storage_account_id(resource_group, name)}/listKeys"
            f"?api-version={STORAGE_API_VERSION}"
        )
        response = self._authorized_request("POST", url)
        if is_not_found(response):
            return None
        ensure_success(response, f"Listing keys of storage account '{name}'")
        keys = parse_json(response).get("keys") or []
        if not keys or not keys[0].get("value"):
            raise CloudAPIError(f"Storage account '{name}' returned no access keys")
        return keys[0]["value"]

    def delete_storage_account(self, resource_group: str, name: str) -> bool:
        url = f"{self._mgmt_url}{self.storage_account_id(resource_group, name)}?api-version={STORAGE_API_VERSION}"
        response = self._authorized_request("DELETE", url)
        if response.status_code == 204:
            # Storage returns 204 when there was nothing to delete.
            logger.info("Storage account '%s' not found during delete", name)
            return False
        if response.status_code in {200, 202}:
            return True
        if is_not_found(response):
            logger.info("Storage account '%s' not found during delete", name)
            return False
        ensure_success(response, f"Deleting storage account '{name}'")
        return False

    @retry(
        stop=stop_after_attempt(6),
        wait=wait_exponential(multiplier=1, min=2, max=15),
        retry=retry_if_exception_type(PrincipalNotReplicatedError),
        reraise=True,
    )
    def ensure_role_assignment(self, principal_id: str, scope: str, role_definition_id: str = ROLE_CONTRIBUTOR) -> str:
        assignment_id = str(uuid.uuid4())
        url = (
            f"{self._mgmt_url}{scope}/providers/Microsoft.Authorization/roleAssignments/{assignment_id}"
            f"?api-version={ROLE_ASSIGNMENT_API_VERSION}"
        )
        body = {
            "properties": {
                "roleDefinitionId": f"/subscriptions/{self.subscription_id}/providers/Microsoft.Authorization/roleDefinitions/{role_definition_id}",
                "principalId": principal_id,
                "principalType": "ServicePrincipal",
            }
        }
        logger.info("Assigning role '%s' on scope '%s'", role_definition_id, scope)
        response = self._authorized_request("PUT", url, json=body)
        if response.status_code in {200, 201}:
            return assignment_id
        if response.status_code == 409:
            logger.info("Role assignment already exists for principal '%s'", principal_id)
            return assignment_id
        try:
            ensure_success(response, f"Assigning role on '{scope}'")
        except CloudAPIError as exc:
            if exc.code == "PrincipalNotFound":
                logger.info("Principal '%s' not replicated yet; waiting before retrying role assignment", principal_id)
                raise PrincipalNotReplicatedError(
                    exc.message, status_code=exc.status_code, url=exc.url, code=exc.code
                ) from exc
            raise
        return assignment_id

    def resource_group_id(self, name: str) -> str:
        return f"/subscriptions/{self.subscription_id}/resourceGroups/{name}"

    def storage_account_id(self, resource_group: str, name: str) -> str:
        return (
            f"{self.resource_group_id(resource_group)}"
            f"/providers/Microsoft.Storage/storageAccounts/{name}"
        )

    @staticmethod
    def _storage_account_from_payload(payload: dict[str, Any]) -> AzureStorageAccount:
        properties = payload.get("properties") or {}
        return AzureStorageAccount(
            name=payload["name"],
            location=payload.get("location", ""),
            resource_id=payload["id"],
            provisioning_state=properties.get("provisioningState", "Succeeded"),
        )

    def _authorized_request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        token = self._credentials.acquire_token(self._scope)
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {token}"
        headers.setdefault("Content-Type", "application/json")
        headers.setdefault("Accept", "application/json")
        return send(method, url, headers=headers, timeout=60, **kwargs)
