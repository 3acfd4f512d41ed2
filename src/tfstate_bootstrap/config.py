"""Configuration loading for the Terraform state bootstrap."""
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .models import ManagedResource, ResourceKind, ResourcePlan

STORAGE_ACCOUNT_PREFIX = "terraformstate"
CONTAINER_NAME = "tfstate"
_STORAGE_ACCOUNT_NAME = re.compile(r"^[a-z0-9]{3,24}$")
_RESOURCE_GROUP_NAME = re.compile(r"^[A-Za-z0-9_.()-]+$")

AZURE_ENVIRONMENT = {
    "tenant_id": "AZURE_TENANT_ID",
    "client_id": "AZURE_CLIENT_ID",
    "client_secret": "AZURE_CLIENT_SECRET",
    "subscription_id": "AZURE_SUBSCRIPTION_ID",
}
AZURE_OPTIONAL_ENVIRONMENT = {
    "management_url": "AZURE_MANAGEMENT_URL",
    "graph_url": "AZURE_GRAPH_URL",
    "authority_url": "AZURE_AUTHORITY_URL",
    "storage_dns_suffix": "AZURE_STORAGE_DNS_SUFFIX",
}


class ConfigError(ValueError):
    """Raised when project or operator configuration is missing or malformed."""


class ProjectConfig(BaseModel):
    """The three project settings every derived resource name comes from."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, extra="ignore")

    subfix: str = Field(min_length=1, description="Suffix making the storage account name globally unique")
    projectname: str = Field(min_length=1, description="Project name used as resource prefix")
    region: str = Field(min_length=1, description="Azure region for the resource group and storage account")

    @field_validator("projectname")
    def validate_projectname(cls, value: str) -> str:  # noqa: D417 - pydantic validator signature
        if not _RESOURCE_GROUP_NAME.match(value) or value.endswith("."):
            raise ValueError(
                "projectname may only contain letters, digits, '-', '_', '.', '(' and ')' and must not end with '.'"
            )
        return value

    @model_validator(mode="after")
    def _ensure_storage_account_name(self) -> "ProjectConfig":
        if not _STORAGE_ACCOUNT_NAME.match(self.storage_account_name):
            raise ValueError(
                f"Derived storage account name '{self.storage_account_name}' must be 3-24 lowercase "
                "letters or digits; adjust 'subfix'"
            )
        return self

    @property
    def resource_group(self) -> str:
        return f"{self.projectname}-rg"

    @property
    def service_principal_name(self) -> str:
        return f"{self.projectname}-sp"

    @property
    def storage_account_name(self) -> str:
        return f"{STORAGE_ACCOUNT_PREFIX}{self.subfix}"

    @property
    def container_name(self) -> str:
        return CONTAINER_NAME

    def resource_plan(self) -> ResourcePlan:
        resource_group = ManagedResource(ResourceKind.RESOURCE_GROUP, self.resource_group)
        storage_account = ManagedResource(ResourceKind.STORAGE_ACCOUNT, self.storage_account_name, resource_group)
        return ResourcePlan(
            resource_group=resource_group,
            service_principal=ManagedResource(ResourceKind.SERVICE_PRINCIPAL, self.service_principal_name, resource_group),
            storage_account=storage_account,
            blob_container=ManagedResource(ResourceKind.BLOB_CONTAINER, self.container_name, storage_account),
        )


class AzureConfig(BaseModel):
    """Credentials of the operator identity that performs the bootstrap."""

    tenant_id: str
    client_id: str
    client_secret: str = Field(repr=False)
    subscription_id: str
    management_url: str = "https://management.azure.com"
    graph_url: str = "https://graph.microsoft.com"
    authority_url: str = "https://login.microsoftonline.com"
    storage_dns_suffix: str = Field(
        "core.windows.net",
        description="DNS suffix for blob service endpoints",
    )


def _format_validation_error(source: str, exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        if error["type"] == "missing":
            problems.append(f"missing field '{location}'")
        else:
            problems.append(f"{location}: {error['msg']}")
    return f"Invalid configuration in {source}: " + "; ".join(problems)


def load_project_config(path: str | Path) -> ProjectConfig:
    """Load a ProjectConfig from a JSON or YAML file."""
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        raise ConfigError(f"Configuration file {config_path} not found!")
    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file {config_path} is not valid JSON/YAML: {exc}") from exc
    return project_config_from_dict(data, source=str(config_path))


def project_config_from_dict(raw: Any, source: str = "<config>") -> ProjectConfig:
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration in {source} must be an object with subfix, projectname and region")
    try:
        return ProjectConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(source, exc)) from exc


def load_azure_config(
    environ: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str | Path] = None,
) -> AzureConfig:
    """Read operator credentials from the environment, seeding it from a .env file."""
    if environ is None:
        load_dotenv(dotenv_path, override=False)
        environ = os.environ

    values: Dict[str, str] = {}
    missing = []
    for field_name, variable in AZURE_ENVIRONMENT.items():
        value = (environ.get(variable) or "").strip()
        if not value:
            missing.append(variable)
        values[field_name] = value
    if missing:
        raise ConfigError("Missing Azure operator credentials: " + ", ".join(missing))

    for field_name, variable in AZURE_OPTIONAL_ENVIRONMENT.items():
        value = (environ.get(variable) or "").strip()
        if value:
            values[field_name] = value.rstrip("/")
    return AzureConfig(**values)
