"""OAuth2 client-credential tokens for Resource Manager and Microsoft Graph."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict

from .http import ensure_success, parse_json, send

logger = logging.getLogger(__name__)

DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
TOKEN_REFRESH_MARGIN = 60


@dataclass(frozen=True, slots=True)
class AccessToken:
    value: str
    expires_on: float

    def usable(self, margin: float = TOKEN_REFRESH_MARGIN) -> bool:
        return time.time() < self.expires_on - margin


class ClientCredentialProvider:
    """Acquires bearer tokens for the operator identity, one cached token per scope."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        authority: str = DEFAULT_AUTHORITY,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.token_url = f"{authority.rstrip('/')}/{tenant_id}/oauth2/v2.0/token"
        self._tokens: Dict[str, AccessToken] = {}

    def acquire_token(self, scope: str) -> str:
        token = self._tokens.get(scope)
        if token is None or not token.usable():
            logger.debug("Requesting token for scope '%s'", scope)
            token = self._fetch(scope)
            self._tokens[scope] = token
        return token.value

    def _fetch(self, scope: str) -> AccessToken:
        form = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "scope": scope,
        }
        response = send("POST", self.token_url, data=form, timeout=30)
        if response.status_code >= 400:
            logger.error("Token request for client '%s' was rejected (status %s)", self.client_id, response.status_code)
        ensure_success(response, f"Token request for scope '{scope}'")
        body = parse_json(response)
        return AccessToken(value=body["access_token"], expires_on=time.time() + int(body.get("expires_in", 3600)))
