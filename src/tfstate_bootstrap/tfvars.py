"""Rendering and persistence of the ``terraform.tfvars`` hand-off file.

The file carries the service principal secret in cleartext. It is the single
point where credentials are handed to Terraform, so it is written with
owner-only permissions and must be kept out of version control; no other
artifact of a run ever contains the secret.
"""
from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import hcl2

from .models import ProvisioningResult, mask_secret

logger = logging.getLogger(__name__)

TFVARS_KEYS = (
    "resource_group_name",
    "resource_group_location",
    "project_name",
    "subfix",
    "storage_container_name",
    "client_id",
    "client_secret",
    "tenant_id",
    "subscription_id",
)
SECRET_KEYS = frozenset({"client_secret"})
_PROJECT_KEYS = TFVARS_KEYS[:5]
_CREDENTIAL_KEYS = TFVARS_KEYS[5:]


def tfvars_values(result: ProvisioningResult) -> Dict[str, str]:
    return {
        "resource_group_name": result.resource_group,
        "resource_group_location": result.region,
        "project_name": result.project_name,
        "subfix": result.subfix,
        "storage_container_name": result.container_name,
        "client_id": result.client_id,
        "client_secret": result.client_secret,
        "tenant_id": result.tenant_id,
        "subscription_id": result.subscription_id,
    }


def _hcl_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("${", "$${").replace("%{", "%%{")
    return f'"{escaped}"'


def _render_block(values: Dict[str, str], keys: tuple[str, ...]) -> list[str]:
    width = max(len(key) for key in keys)
    return [f"{key.ljust(width)} = {_hcl_string(values[key])}" for key in keys]


def render_tfvars(result: ProvisioningResult) -> str:
    values = tfvars_values(result)
    missing = [key for key in TFVARS_KEYS if not values.get(key)]
    if missing:
        raise ValueError("Cannot render terraform.tfvars without: " + ", ".join(missing))
    lines = _render_block(values, _PROJECT_KEYS) + [""] + _render_block(values, _CREDENTIAL_KEYS)
    return "\n".join(lines) + "\n"


def describe_tfvars(result: ProvisioningResult) -> list[str]:
    """Log-safe ``key = value`` lines with secrets masked."""
    values = tfvars_values(result)
    return [
        f"{key} = {mask_secret(values[key]) if key in SECRET_KEYS else values[key]}"
        for key in TFVARS_KEYS
    ]


def write_tfvars(path: str | Path, result: ProvisioningResult) -> Path:
    """Atomically replace ``path`` with the rendered variables."""
    content = render_tfvars(result)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, target)
    except BaseException:
        Path(tmp_path).unlink(missing_ok=True)
        raise
    logger.debug("Wrote %d variables to %s", len(TFVARS_KEYS), target)
    return target


_HCL_ESCAPE = re.compile(r'\\(.)|\$\$\{|%%\{')
_HCL_CONTROL = {"n": "\n", "r": "\r", "t": "\t"}


def _unescape_hcl(value: str) -> str:
    def replace(match: re.Match[str]) -> str:
        escaped = match.group(1)
        if escaped is None:
            return match.group(0)[1:]
        return _HCL_CONTROL.get(escaped, escaped)

    return _HCL_ESCAPE.sub(replace, value)


def _unquote(value: Any) -> Any:
    """Turn a parsed string literal back into the value ``_hcl_string`` was given."""
    if not isinstance(value, str):
        return value
    # Newer python-hcl2 releases keep the surrounding quotes of string literals.
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
    return _unescape_hcl(value)


def read_tfvars(path: str | Path) -> Dict[str, Any]:
    with Path(path).open(encoding="utf-8") as handle:
        data = hcl2.load(handle)
    return {key: _unquote(value) for key, value in data.items()}


def read_existing_secret(path: str | Path) -> Optional[str]:
    """Return the client secret recorded in an existing file, if any."""
    try:
        data = read_tfvars(path)
    except FileNotFoundError:
        return None
    except Exception as exc:  # noqa: BLE001 - parser raises lark errors of several types
        logger.warning("Could not parse %s (%s); existing client secret is unknown", path, exc.__class__.__name__)
        return None
    secret = data.get("client_secret")
    if isinstance(secret, str) and secret:
        return secret
    return None


def remove_tfvars(path: str | Path) -> bool:
    target = Path(path)
    if not target.exists():
        return False
    target.unlink()
    return True
