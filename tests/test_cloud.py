from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import pytest

from tfstate_bootstrap.azure import AzureSubscription
from tfstate_bootstrap.cloud import AzureCloud, SimulatedCloud
from tfstate_bootstrap.http import CloudAPIError
from tfstate_bootstrap.identity import Application, ApplicationSecret, ServicePrincipal
from tfstate_bootstrap.models import DRY_RUN_PLACEHOLDER, DRY_RUN_SECRET_PLACEHOLDER, ServicePrincipalIdentity

RG_ID = "/subscriptions/sub/resourceGroups/paperless-rg"


class FakeAzure:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.account_key: Optional[str] = None
        self.role_assignments: list[tuple[str, str]] = []

    def get_subscription(self) -> AzureSubscription:
        return AzureSubscription(subscription_id="sub", tenant_id="", display_name="Dev")

    def get_resource_group(self, name: str):
        self.calls.append(("get_resource_group", name))
        return None

    def get_storage_account(self, resource_group: str, name: str):
        self.calls.append(("get_storage_account", resource_group, name))
        return None

    def list_storage_account_key(self, resource_group: str, name: str) -> Optional[str]:
        self.calls.append(("list_storage_account_key", resource_group, name))
        return self.account_key

    def resource_group_id(self, name: str) -> str:
        return f"/subscriptions/sub/resourceGroups/{name}"

    def ensure_role_assignment(self, principal_id: str, scope: str) -> str:
        self.role_assignments.append((principal_id, scope))
        return "assignment"


class FakeIdentity:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.application: Optional[Application] = Application(
            object_id="app-object", display_name="paperless-sp", app_id="app-id"
        )
        self.registered: list[Application] = []
        self.principal_failures = 0

    def find_service_principal(self, display_name: str) -> Optional[ServicePrincipal]:
        self.calls.append(("find_service_principal", display_name))
        return None

    def find_application(self, app_id: str) -> Optional[Application]:
        self.calls.append(("find_application", app_id))
        return self.application

    def find_application_by_name(self, display_name: str) -> Optional[Application]:
        self.calls.append(("find_application_by_name", display_name))
        return next((app for app in self.registered if app.display_name == display_name), None)

    def create_application(self, name: str) -> Application:
        self.calls.append(("create_application", name))
        suffix = f"-{len(self.registered)}" if self.registered else ""
        application = Application(object_id=f"app-object{suffix}", display_name=name, app_id=f"app-id{suffix}")
        self.registered.append(application)
        return application

    def create_service_principal(self, app_id: str) -> ServicePrincipal:
        self.calls.append(("create_service_principal", app_id))
        if self.principal_failures:
            self.principal_failures -= 1
            raise CloudAPIError("Creating service principal failed: Service Unavailable", status_code=503)
        return ServicePrincipal(object_id="sp-object", display_name="paperless-sp", app_id=app_id)

    def create_application_secret(self, app_object_id: str, *, display_name: str) -> ApplicationSecret:
        self.calls.append(("create_application_secret", app_object_id))
        return _secret("first")

    def reset_application_secret(self, app_object_id: str, *, display_name: str) -> ApplicationSecret:
        self.calls.append(("reset_application_secret", app_object_id))
        return _secret("rotated")

    def delete_service_principal(self, object_id: str) -> bool:
        self.calls.append(("delete_service_principal", object_id))
        return True

    def delete_application(self, object_id: str) -> bool:
        self.calls.append(("delete_application", object_id))
        return True


def _secret(text: str) -> ApplicationSecret:
    return ApplicationSecret(
        key_id="key",
        display_name="tfstate-bootstrap",
        secret_text=text,
        expires_on=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )


def _identity() -> ServicePrincipalIdentity:
    return ServicePrincipalIdentity(object_id="sp-object", display_name="paperless-sp", client_id="app-id")


@pytest.fixture()
def azure() -> FakeAzure:
    return FakeAzure()


@pytest.fixture()
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture()
def azure_cloud(azure: FakeAzure, identity: FakeIdentity) -> AzureCloud:
    return AzureCloud(azure, identity, tenant_id="tenant-from-config")  # type: ignore[arg-type]


def test_account_context_falls_back_to_configured_tenant(azure_cloud: AzureCloud) -> None:
    context = azure_cloud.account_context()

    assert context.subscription_id == "sub"
    assert context.tenant_id == "tenant-from-config"


def test_probes_address_resources_through_their_parent(azure_cloud: AzureCloud, azure: FakeAzure, project) -> None:
    plan = project.resource_plan()

    assert azure_cloud.exists(plan.resource_group) is False
    assert azure_cloud.exists(plan.storage_account) is False

    assert azure.calls == [
        ("get_resource_group", "paperless-rg"),
        ("get_storage_account", "paperless-rg", "terraformstateea001"),
    ]


def test_container_probe_without_storage_account_is_absent(azure_cloud: AzureCloud, azure: FakeAzure, project) -> None:
    assert azure_cloud.exists(project.resource_plan().blob_container) is False
    assert azure.calls == [("list_storage_account_key", "paperless-rg", "terraformstateea001")]


def test_create_service_principal_registers_application_and_password(
    azure_cloud: AzureCloud, azure: FakeAzure, identity: FakeIdentity, project
) -> None:
    credentials = azure_cloud.create_service_principal(project.resource_plan().service_principal)

    assert credentials.client_id == "app-id"
    assert credentials.client_secret == "first"
    assert credentials.identity.app_object_id == "app-object"
    assert [call[0] for call in identity.calls] == [
        "find_application_by_name",
        "create_application",
        "create_service_principal",
        "create_application_secret",
    ]
    assert azure.role_assignments == []


def test_create_after_interrupted_attempt_reuses_application(
    azure_cloud: AzureCloud, identity: FakeIdentity, project
) -> None:
    principal = project.resource_plan().service_principal
    identity.principal_failures = 1

    with pytest.raises(CloudAPIError):
        azure_cloud.create_service_principal(principal)
    credentials = azure_cloud.create_service_principal(principal)

    assert [app.display_name for app in identity.registered] == ["paperless-sp"]
    assert credentials.identity.app_object_id == "app-object"
    assert [call[0] for call in identity.calls].count("create_application") == 1


def test_service_principal_access_is_scoped_to_resource_group(
    azure_cloud: AzureCloud, azure: FakeAzure, project
) -> None:
    azure_cloud.ensure_service_principal_access(project.resource_plan().service_principal, _identity())

    assert azure.role_assignments == [("sp-object", RG_ID)]


def test_reset_secret_targets_backing_application(azure_cloud: AzureCloud, identity: FakeIdentity, project) -> None:
    credentials = azure_cloud.reset_service_principal_secret(project.resource_plan().service_principal, _identity())

    assert credentials.client_secret == "rotated"
    assert identity.calls == [("find_application", "app-id"), ("reset_application_secret", "app-object")]


def test_reset_secret_without_application_fails(azure_cloud: AzureCloud, identity: FakeIdentity, project) -> None:
    identity.application = None

    with pytest.raises(CloudAPIError):
        azure_cloud.reset_service_principal_secret(project.resource_plan().service_principal, _identity())


def test_delete_service_principal_removes_application(azure_cloud: AzureCloud, identity: FakeIdentity, project) -> None:
    assert azure_cloud.delete_service_principal(project.resource_plan().service_principal, _identity()) is True

    assert identity.calls == [
        ("delete_service_principal", "sp-object"),
        ("find_application", "app-id"),
        ("delete_application", "app-object"),
    ]


def test_simulated_cloud_forwards_reads(project, populated_cloud) -> None:
    simulated = SimulatedCloud(populated_cloud)
    plan = project.resource_plan()

    assert simulated.exists(plan.resource_group) is True
    assert simulated.find_service_principal(plan.service_principal) is not None
    assert simulated.storage_account_key(plan.storage_account) == "terraformstateea001-key"
    assert populated_cloud.mutations == []


def test_simulated_cloud_uses_placeholder_key_for_missing_account(project, cloud) -> None:
    assert SimulatedCloud(cloud).storage_account_key(project.resource_plan().storage_account) == DRY_RUN_PLACEHOLDER


def test_simulated_cloud_logs_mutations_only(project, populated_cloud, caplog) -> None:
    caplog.set_level(logging.INFO)
    simulated = SimulatedCloud(populated_cloud)
    plan = project.resource_plan()

    created = simulated.create_service_principal(plan.service_principal)
    reset = simulated.reset_service_principal_secret(plan.service_principal, _identity())
    simulated.ensure_service_principal_access(plan.service_principal, _identity())
    simulated.create_storage_account(plan.storage_account, "westeurope")
    assert simulated.delete_blob_container(plan.blob_container, DRY_RUN_PLACEHOLDER) is True
    assert simulated.delete_resource_group(plan.resource_group) is True

    assert populated_cloud.mutations == []
    assert created.client_id == DRY_RUN_PLACEHOLDER
    assert populated_cloud.role_scopes == {}
    assert reset.client_secret == DRY_RUN_SECRET_PLACEHOLDER
    messages = [record.getMessage() for record in caplog.records]
    assert all(message.startswith("[DRY-RUN] Would ") for message in messages)
    assert "[DRY-RUN] Would create service principal paperless-sp" in messages
    assert "[DRY-RUN] Would grant service principal paperless-sp the Contributor role on resource group paperless-rg" in messages
    assert "[DRY-RUN] Would delete resource group paperless-rg (no wait)" in messages
