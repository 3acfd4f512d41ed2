from __future__ import annotations

import json

import pytest
import requests
from requests import Request, Response

from tfstate_bootstrap.http import (
    CloudAPIError,
    UnexpectedResponseError,
    ensure_success,
    error_details,
    is_not_found,
    parse_json,
    send,
)


def _response_with_content(content: bytes, status: int = 200, url: str = "https://example.com") -> Response:
    response = Response()
    response.status_code = status
    response._content = content
    response.request = Request("GET", url).prepare()
    response.headers["Content-Type"] = "application/json"
    response.encoding = "utf-8"
    return response


def _error_response(status: int, code: str, message: str = "boom") -> Response:
    body = json.dumps({"error": {"code": code, "message": message}}).encode("utf-8")
    return _response_with_content(body, status=status, url="https://management.azure.com/subscriptions/sub")


def test_parse_json_returns_payload() -> None:
    response = _response_with_content(b'{"value": 42}')

    data = parse_json(response)

    assert data == {"value": 42}


def test_parse_json_raises_on_empty_body() -> None:
    response = _response_with_content(b"", status=204)

    with pytest.raises(UnexpectedResponseError) as excinfo:
        parse_json(response)

    assert excinfo.value.status_code == 204
    assert "<empty body>" in str(excinfo.value)


def test_parse_json_raises_on_invalid_json() -> None:
    response = _response_with_content(b"{invalid}")

    with pytest.raises(UnexpectedResponseError) as excinfo:
        parse_json(response)

    assert excinfo.value.status_code == 200
    assert "Unexpected response" in str(excinfo.value)


def test_unexpected_response_error_is_a_cloud_error() -> None:
    error = UnexpectedResponseError(
        status_code=500,
        url="https://example.com/api",
        body_preview="Internal Server Error",
    )

    message = str(error)

    assert isinstance(error, CloudAPIError)
    assert "500" in message
    assert "https://example.com/api" in message
    assert "Internal Server Error" in message


def test_is_not_found_distinguishes_absence_from_failure() -> None:
    assert is_not_found(_error_response(404, "ResourceGroupNotFound")) is True
    assert is_not_found(_error_response(400, "ResourceGroupNotFound")) is True
    assert is_not_found(_error_response(403, "AuthorizationFailed")) is False
    assert is_not_found(_error_response(401, "InvalidAuthenticationToken")) is False
    assert is_not_found(_response_with_content(b"{}")) is False


def test_ensure_success_raises_with_code_and_action() -> None:
    response = _error_response(403, "AuthorizationFailed", "The client does not have authorization")

    with pytest.raises(CloudAPIError) as excinfo:
        ensure_success(response, "Reading resource group 'paperless-rg'")

    error = excinfo.value
    assert error.status_code == 403
    assert error.code == "AuthorizationFailed"
    assert "Reading resource group 'paperless-rg' failed" in str(error)
    assert "AuthorizationFailed" in str(error)


def test_ensure_success_passes_through_success() -> None:
    response = _response_with_content(b"{}", status=201)

    assert ensure_success(response, "anything") is response


def test_error_details_handles_oauth_errors() -> None:
    body = json.dumps({"error": "invalid_client", "error_description": "AADSTS7000215: Invalid client secret"})
    response = _response_with_content(body.encode("utf-8"), status=401)

    code, message = error_details(response)

    assert code == "invalid_client"
    assert message.startswith("AADSTS7000215")


def test_error_details_handles_plain_text() -> None:
    response = _response_with_content(b"Bad Gateway", status=502)

    assert error_details(response) == (None, "Bad Gateway")


def test_send_wraps_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_request(method: str, url: str, **kwargs) -> Response:
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr("tfstate_bootstrap.http.requests.request", fake_request)

    with pytest.raises(CloudAPIError) as excinfo:
        send("GET", "https://management.azure.com/subscriptions/sub?api-version=1", timeout=5)

    assert "ConnectionError" in str(excinfo.value)
    assert "api-version" not in excinfo.value.message
