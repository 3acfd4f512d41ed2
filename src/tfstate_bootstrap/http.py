"""HTTP utilities for working with Azure control-plane responses."""
from __future__ import annotations

import json
from typing import Any, Optional, Tuple

import requests
from requests import Response

NOT_FOUND_ERROR_CODES = frozenset(
    {
        "ResourceNotFound",
        "ResourceGroupNotFound",
        "StorageAccountNotFound",
        "Request_ResourceNotFound",
        "ContainerNotFound",
    }
)


class CloudAPIError(RuntimeError):
    """Raised when a cloud call fails for any reason other than "not found"."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        url: str = "<unknown>",
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.url = url
        self.code = code

    def __str__(self) -> str:
        details = []
        if self.status_code is not None:
            details.append(f"status {self.status_code}")
        if self.code:
            details.append(self.code)
        suffix = f" ({', '.join(details)})" if details else ""
        return f"{self.message}{suffix}"


class UnexpectedResponseError(CloudAPIError):
    """Raised when an HTTP response payload is not the expected JSON."""

    def __init__(self, status_code: int, url: str, body_preview: str) -> None:
        super().__init__(
            f"Unexpected response while calling {url} (status {status_code}): {body_preview}",
            status_code=status_code,
            url=url,
        )
        self.body_preview = body_preview

    def __str__(self) -> str:  # noqa: D401 - simple representation
        return self.message


def _request_url(response: Response) -> str:
    return response.request.url if response.request else "<unknown>"


def parse_json(response: Response) -> Any:
    """Return JSON content or raise UnexpectedResponseError with helpful context."""

    if not response.content:
        raise UnexpectedResponseError(
            status_code=response.status_code,
            url=_request_url(response),
            body_preview="<empty body>",
        )
    try:
        return response.json()
    except json.JSONDecodeError as exc:  # pragma: no cover - depends on http responses
        text = response.text
        preview = text[:500].replace("\n", " ").strip()
        raise UnexpectedResponseError(
            status_code=response.status_code,
            url=_request_url(response),
            body_preview=preview or "<no text>",
        ) from exc


def error_details(response: Response) -> Tuple[Optional[str], str]:
    """Extract the (code, message) pair from an ARM, Graph or OAuth error body."""
    try:
        body = response.json()
    except ValueError:
        text = (response.text or "").replace("\n", " ").strip()
        return None, text[:300] or f"HTTP {response.status_code}"
    if not isinstance(body, dict):
        return None, str(body)[:300]
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("code"), error.get("message") or ""
    if isinstance(error, str):
        return error, body.get("error_description") or error
    return None, str(body)[:300]


def is_not_found(response: Response) -> bool:
    if response.status_code == 404:
        return True
    if response.status_code < 400:
        return False
    code, _ = error_details(response)
    return code in NOT_FOUND_ERROR_CODES


def ensure_success(response: Response, action: str) -> Response:
    """Raise CloudAPIError for any error status, naming the attempted action."""
    if response.status_code < 400:
        return response
    code, message = error_details(response)
    raise CloudAPIError(
        f"{action} failed: {message}",
        status_code=response.status_code,
        url=_request_url(response),
        code=code,
    )


def send(method: str, url: str, *, timeout: int, **kwargs: Any) -> Response:
    """Issue a request, surfacing transport failures as CloudAPIError."""
    try:
        return requests.request(method, url, timeout=timeout, **kwargs)
    except requests.RequestException as exc:
        raise CloudAPIError(f"{method} {url.split('?', 1)[0]} failed: {exc.__class__.__name__}", url=url) from exc
