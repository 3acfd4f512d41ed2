"""Provision and destroy the Terraform state backend resources."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .cloud import CloudClient, SimulatedCloud
from .config import ProjectConfig
from .http import CloudAPIError
from .models import (
    REDACTED_SECRET,
    AccountContext,
    Outcome,
    ProvisioningResult,
    ReconcileSummary,
    RunAction,
    RunMode,
    ServicePrincipalIdentity,
)
from .tfvars import describe_tfvars, read_existing_secret, remove_tfvars, write_tfvars
from .workflow import WorkflowRunner, WorkflowStep

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _ProvisionState:
    summary: ReconcileSummary
    account: Optional[AccountContext] = None
    client_id: str = ""
    client_secret: str = ""


class Reconciler:
    """Converges the live account towards the project's backend resources.

    Provisioning walks the dependency chain (resource group, service principal,
    storage account, blob container) and only creates what is missing.
    Destroying walks it backwards and treats every absent resource as already
    removed, so both directions can be re-run after an interrupted run.
    """

    def __init__(
        self,
        project: ProjectConfig,
        cloud: CloudClient,
        tfvars_path: str | Path,
        mode: RunMode,
    ) -> None:
        self._project = project
        self._plan = project.resource_plan()
        self._cloud: CloudClient = SimulatedCloud(cloud) if mode.simulate else cloud
        self._tfvars_path = Path(tfvars_path)
        self._mode = mode

    def run(self) -> ReconcileSummary:
        if self._mode.action is RunAction.DESTROY:
            return self.destroy()
        return self.provision()

    def provision(self) -> ReconcileSummary:
        logger.info("Provisioning resources...")
        state = _ProvisionState(summary=ReconcileSummary(RunAction.PROVISION, simulated=self._mode.simulate))
        steps = [
            WorkflowStep("account", self._load_account),
            WorkflowStep("resource-group", self._ensure_resource_group),
            WorkflowStep("service-principal", self._ensure_service_principal),
            WorkflowStep("storage-account", self._ensure_storage_account),
            WorkflowStep("blob-container", self._ensure_blob_container),
            WorkflowStep("tfvars", self._emit_tfvars),
        ]
        WorkflowRunner().run(steps, state)
        logger.info("Provision complete.")
        return state.summary

    def _load_account(self, state: _ProvisionState) -> None:
        state.account = self._cloud.account_context()
        logger.info("Using subscription %s in tenant %s", state.account.subscription_id, state.account.tenant_id)

    def _ensure_resource_group(self, state: _ProvisionState) -> None:
        resource_group = self._plan.resource_group
        if self._cloud.exists(resource_group):
            logger.info("Resource group %s already exists.", resource_group.name)
            state.summary.record(resource_group, Outcome.EXISTS)
            return
        logger.info("Creating resource group %s in %s...", resource_group.name, self._project.region)
        self._cloud.create_resource_group(resource_group, self._project.region)
        state.summary.record(resource_group, Outcome.CREATED)

    def _ensure_service_principal(self, state: _ProvisionState) -> None:
        principal = self._plan.service_principal
        identity = self._cloud.find_service_principal(principal)
        if identity is None:
            logger.info("Creating service principal %s...", principal.name)
            credentials = self._cloud.create_service_principal(principal)
            state.client_id = credentials.client_id
            state.client_secret = credentials.client_secret
            state.summary.secret_issued = True
            state.summary.record(principal, Outcome.CREATED)
            self._grant_access(credentials.identity)
            return

        logger.info("Service principal %s already exists.", principal.name)
        state.summary.record(principal, Outcome.EXISTS)
        state.client_id = identity.client_id
        # An earlier run may have stopped between creating the principal and assigning its role.
        self._grant_access(identity)
        if self._tfvars_path.exists():
            # Credentials in an existing tfvars file may already be baked into Terraform state.
            existing = read_existing_secret(self._tfvars_path)
            if existing is None:
                logger.warning(
                    "%s has no readable client_secret; writing %s placeholder",
                    self._tfvars_path,
                    REDACTED_SECRET,
                )
            state.client_secret = existing or REDACTED_SECRET
            logger.info("Keeping the existing client secret from %s.", self._tfvars_path)
            return

        logger.info("Generating new client secret for %s...", principal.name)
        credentials = self._cloud.reset_service_principal_secret(principal, identity)
        state.client_secret = credentials.client_secret
        state.summary.secret_issued = True

    def _grant_access(self, identity: ServicePrincipalIdentity) -> None:
        principal = self._plan.service_principal
        logger.info("Ensuring %s has the Contributor role on %s...", principal.name, self._plan.resource_group.name)
        self._cloud.ensure_service_principal_access(principal, identity)

    def _ensure_storage_account(self, state: _ProvisionState) -> None:
        account = self._plan.storage_account
        if self._cloud.exists(account):
            logger.info("Storage account %s already exists.", account.name)
            state.summary.record(account, Outcome.EXISTS)
            return
        logger.info("Creating storage account %s...", account.name)
        self._cloud.create_storage_account(account, self._project.region)
        state.summary.record(account, Outcome.CREATED)

    def _ensure_blob_container(self, state: _ProvisionState) -> None:
        container = self._plan.blob_container
        if self._cloud.exists(container):
            logger.info("Blob container %s already exists.", container.name)
            state.summary.record(container, Outcome.EXISTS)
            return
        account_key = self._cloud.storage_account_key(self._plan.storage_account)
        if account_key is None:
            raise CloudAPIError(f"No access key available for storage account {self._plan.storage_account.name}")
        logger.info("Creating blob container %s...", container.name)
        self._cloud.create_blob_container(container, account_key)
        state.summary.record(container, Outcome.CREATED)

    def _emit_tfvars(self, state: _ProvisionState) -> None:
        account = state.account
        if account is None:
            raise RuntimeError("Account context must be loaded before writing tfvars")
        result = ProvisioningResult(
            client_id=state.client_id,
            client_secret=state.client_secret,
            tenant_id=account.tenant_id,
            subscription_id=account.subscription_id,
            resource_group=self._project.resource_group,
            region=self._project.region,
            project_name=self._project.projectname,
            subfix=self._project.subfix,
            container_name=self._project.container_name,
        )
        state.summary.result = result
        if self._mode.simulate:
            logger.info("[DRY-RUN] Would write %s with:", self._tfvars_path)
            for line in describe_tfvars(result):
                logger.info("[DRY-RUN]   %s", line)
            return
        logger.info("Writing terraform.tfvars to %s...", self._tfvars_path)
        write_tfvars(self._tfvars_path, result)
        state.summary.tfvars_written = True
        logger.info("terraform.tfvars created successfully.")

    def destroy(self) -> ReconcileSummary:
        logger.info("Destroying resources...")
        summary = ReconcileSummary(RunAction.DESTROY, simulated=self._mode.simulate)
        steps = [
            WorkflowStep("blob-container", self._remove_blob_container),
            WorkflowStep("storage-account", self._remove_storage_account),
            WorkflowStep("service-principal", self._remove_service_principal),
            WorkflowStep("resource-group", self._remove_resource_group),
            WorkflowStep("tfvars", self._remove_tfvars),
        ]
        WorkflowRunner().run(steps, summary)
        logger.info("Destroy complete.")
        return summary

    def _remove_blob_container(self, summary: ReconcileSummary) -> None:
        container = self._plan.blob_container
        logger.info("Deleting blob container %s...", container.name)
        if not self._cloud.exists(container):
            logger.warning("Blob container %s not found or already deleted.", container.name)
            summary.record(container, Outcome.ABSENT)
            return
        account_key = self._cloud.storage_account_key(self._plan.storage_account)
        if account_key is None:
            logger.warning("Blob container %s not found or already deleted.", container.name)
            summary.record(container, Outcome.ABSENT)
            return
        self._cloud.delete_blob_container(container, account_key)
        summary.record(container, Outcome.DELETED)

    def _remove_storage_account(self, summary: ReconcileSummary) -> None:
        account = self._plan.storage_account
        logger.info("Deleting storage account %s...", account.name)
        if not self._cloud.exists(account):
            logger.warning("Storage account %s not found or already deleted.", account.name)
            summary.record(account, Outcome.ABSENT)
            return
        self._cloud.delete_storage_account(account)
        summary.record(account, Outcome.DELETED)

    def _remove_service_principal(self, summary: ReconcileSummary) -> None:
        principal = self._plan.service_principal
        identity = self._cloud.find_service_principal(principal)
        if identity is None:
            logger.warning("Service principal %s not found or already deleted.", principal.name)
            summary.record(principal, Outcome.ABSENT)
            return
        logger.info("Deleting service principal %s...", principal.name)
        self._cloud.delete_service_principal(principal, identity)
        summary.record(principal, Outcome.DELETED)

    def _remove_resource_group(self, summary: ReconcileSummary) -> None:
        resource_group = self._plan.resource_group
        logger.info("Deleting resource group %s...", resource_group.name)
        if not self._cloud.exists(resource_group):
            logger.warning("Resource group %s not found or already deleted.", resource_group.name)
            summary.record(resource_group, Outcome.ABSENT)
            return
        self._cloud.delete_resource_group(resource_group)
        logger.info("Deletion of resource group %s requested; it completes in the background.", resource_group.name)
        summary.record(resource_group, Outcome.DELETED)

    def _remove_tfvars(self, summary: ReconcileSummary) -> None:
        if not self._tfvars_path.exists():
            logger.info("No tfvars file found to delete.")
            return
        if self._mode.simulate:
            logger.info("[DRY-RUN] Would remove %s", self._tfvars_path)
            return
        logger.info("Removing %s...", self._tfvars_path)
        summary.tfvars_removed = remove_tfvars(self._tfvars_path)
