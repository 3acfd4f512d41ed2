"""Blob data-plane access for the Terraform state container."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from azure.core.exceptions import AzureError, HttpResponseError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient

from .http import CloudAPIError

logger = logging.getLogger(__name__)

ServiceClientFactory = Callable[[str, str], BlobServiceClient]


def default_service_client(account_url: str, account_key: str) -> BlobServiceClient:
    return BlobServiceClient(account_url=account_url, credential=account_key)


def _as_cloud_error(action: str, exc: AzureError) -> CloudAPIError:
    if isinstance(exc, HttpResponseError):
        return CloudAPIError(
            f"{action} failed: {exc.reason or exc.__class__.__name__}",
            status_code=exc.status_code,
            code=getattr(exc, "error_code", None),
        )
    return CloudAPIError(f"{action} failed: {exc.__class__.__name__}")


class BlobContainerManager:
    """Checks, creates and deletes containers using a storage account key."""

    def __init__(
        self,
        account_name: str,
        account_key: str,
        *,
        dns_suffix: str = "core.windows.net",
        client_factory: Optional[ServiceClientFactory] = None,
    ) -> None:
        self.account_name = account_name
        self.account_url = f"https://{account_name}.blob.{dns_suffix}"
        factory = client_factory or default_service_client
        self._service = factory(self.account_url, account_key)

    def exists(self, container_name: str) -> bool:
        action = f"Checking blob container '{container_name}' in '{self.account_name}'"
        try:
            return bool(self._service.get_container_client(container_name).exists())
        except ResourceNotFoundError:
            return False
        except AzureError as exc:
            raise _as_cloud_error(action, exc) from exc

    def create(self, container_name: str) -> bool:
        action = f"Creating blob container '{container_name}' in '{self.account_name}'"
        try:
            self._service.create_container(container_name)
        except ResourceExistsError:
            logger.info("Blob container '%s' already exists", container_name)
            return False
        except AzureError as exc:
            raise _as_cloud_error(action, exc) from exc
        return True

    def delete(self, container_name: str) -> bool:
        action = f"Deleting blob container '{container_name}' in '{self.account_name}'"
        try:
            self._service.delete_container(container_name)
        except ResourceNotFoundError:
            logger.info("Blob container '%s' not found during delete", container_name)
            return False
        except AzureError as exc:
            raise _as_cloud_error(action, exc) from exc
        return True
