"""Microsoft Entra ID (Azure AD) helpers for the Terraform service principal."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import requests

from .auth import ClientCredentialProvider
from .config import AzureConfig
from .http import CloudAPIError, ensure_success, is_not_found, parse_json, send

logger = logging.getLogger(__name__)

GRAPH_SCOPE = "https://graph.microsoft.com/.default"


def _odata_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


@dataclass(slots=True)
class DirectoryObject:
    object_id: str
    display_name: str


@dataclass(slots=True)
class Application(DirectoryObject):
    app_id: str


@dataclass(slots=True)
class ServicePrincipal(DirectoryObject):
    app_id: str


@dataclass(slots=True)
class ApplicationSecret:
    key_id: str
    display_name: str
    secret_text: str
    expires_on: datetime


class IdentityProvisioner:
    """Creates, looks up and removes applications and service principals."""

    def __init__(self, config: AzureConfig, credential_provider: ClientCredentialProvider) -> None:
        self._config = config
        self._credentials = credential_provider
        self._base_url = config.graph_url.rstrip("/")
        self._scope = f"{self._base_url}/.default" if self._base_url else GRAPH_SCOPE

    def find_service_principal(self, display_name: str) -> Optional[ServicePrincipal]:
        query = f"$filter=displayName eq {_odata_literal(display_name)}"
        response = self._authorized_request("GET", f"/v1.0/servicePrincipals?{query}")
        ensure_success(response, f"Looking up service principal '{display_name}'")
        data = parse_json(response).get("value", [])
        if not data:
            return None
        if len(data) > 1:
            logger.warning("Found %d service principals named '%s'; using the first", len(data), display_name)
        item = data[0]
        return ServicePrincipal(object_id=item["id"], display_name=item["displayName"], app_id=item["appId"])

    def find_application(self, app_id: str) -> Optional[Application]:
        return self._find_application(f"appId eq {_odata_literal(app_id)}", f"application '{app_id}'")

    def find_application_by_name(self, display_name: str) -> Optional[Application]:
        return self._find_application(
            f"displayName eq {_odata_literal(display_name)}",
            f"application named '{display_name}'",
        )

    def _find_application(self, odata_filter: str, description: str) -> Optional[Application]:
        response = self._authorized_request("GET", f"/v1.0/applications?$filter={odata_filter}")
        ensure_success(response, f"Looking up {description}")
        data = parse_json(response).get("value", [])
        if not data:
            return None
        if len(data) > 1:
            logger.warning("Found %d matches for %s; using the first", len(data), description)
        item = data[0]
        return Application(object_id=item["id"], display_name=item["displayName"], app_id=item["appId"])

    def create_application(self, name: str) -> Application:
        payload = {
            "displayName": name,
            "signInAudience": "AzureADMyOrg",
        }
        response = self._authorized_request("POST", "/v1.0/applications", json=payload)
        ensure_success(response, f"Creating application '{name}'")
        body = parse_json(response)
        return Application(object_id=body["id"], display_name=body["displayName"], app_id=body["appId"])

    def create_service_principal(self, app_id: str) -> ServicePrincipal:
        response = self._authorized_request("POST", "/v1.0/servicePrincipals", json={"appId": app_id})
        ensure_success(response, f"Creating service principal for application '{app_id}'")
        body = parse_json(response)
        return ServicePrincipal(object_id=body["id"], display_name=body["displayName"], app_id=body["appId"])

    def create_application_secret(
        self,
        app_object_id: str,
        *,
        display_name: Optional[str] = None,
        validity_days: int = 365,
    ) -> ApplicationSecret:
        end_time = datetime.utcnow() + timedelta(days=validity_days)
        payload = {
            "passwordCredential": {
                "displayName": display_name or "tfstate-bootstrap",
                "endDateTime": end_time.replace(microsecond=0).isoformat() + "Z",
            }
        }
        response = self._authorized_request(
            "POST",
            f"/v1.0/applications/{app_object_id}/addPassword",
            json=payload,
        )
        ensure_success(response, f"Adding password to application '{app_object_id}'")
        body = parse_json(response)
        secret_text = body.get("secretText")
        if not secret_text:
            raise CloudAPIError("Azure AD did not return a client secret for the application password")
        expires_raw = body.get("endDateTime")
        expires_on = end_time
        if isinstance(expires_raw, str):
            try:
                expires_on = datetime.fromisoformat(expires_raw.rstrip("Z"))
            except ValueError:
                logger.debug("Unparseable endDateTime %r; keeping requested expiry", expires_raw)
        return ApplicationSecret(
            key_id=body.get("keyId", ""),
            display_name=body.get("displayName", display_name or ""),
            secret_text=secret_text,
            expires_on=expires_on,
        )

    def reset_application_secret(self, app_object_id: str, *, display_name: Optional[str] = None) -> ApplicationSecret:
        """Replace every password of the application with a single new one.

        Any client secret issued earlier for the application stops working.
        """
        response = self._authorized_request(
            "GET",
            f"/v1.0/applications/{app_object_id}?$select=id,passwordCredentials",
        )
        ensure_success(response, f"Reading passwords of application '{app_object_id}'")
        credentials = parse_json(response).get("passwordCredentials") or []
        for credential in credentials:
            key_id = credential.get("keyId")
            if not key_id:
                continue
            removal = self._authorized_request(
                "POST",
                f"/v1.0/applications/{app_object_id}/removePassword",
                json={"keyId": key_id},
            )
            if is_not_found(removal):
                continue
            ensure_success(removal, f"Removing password '{key_id}' from application '{app_object_id}'")
        if credentials:
            logger.info("Removed %d existing password(s) from application '%s'", len(credentials), app_object_id)
        return self.create_application_secret(app_object_id, display_name=display_name)

    def delete_service_principal(self, object_id: str) -> bool:
        response = self._authorized_request("DELETE", f"/v1.0/servicePrincipals/{object_id}")
        if response.status_code in {200, 202, 204}:
            return True
        if is_not_found(response):
            logger.info("Service principal '%s' not found during delete", object_id)
            return False
        ensure_success(response, f"Deleting service principal '{object_id}'")
        return False

    def delete_application(self, object_id: str) -> bool:
        response = self._authorized_request("DELETE", f"/v1.0/applications/{object_id}")
        if response.status_code in {200, 202, 204}:
            return True
        if is_not_found(response):
            logger.info("Application '%s' not found during delete", object_id)
            return False
        ensure_success(response, f"Deleting application '{object_id}'")
        return False

    def _authorized_request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        token = self._credentials.acquire_token(self._scope)
        headers = kwargs.pop("headers", {})
        headers["Authorization"] = f"Bearer {token}"
        headers.setdefault("Content-Type", "application/json")
        headers.setdefault("Accept", "application/json")
        url = f"{self._base_url}{path}"
        return send(method, url, headers=headers, timeout=40, **kwargs)
