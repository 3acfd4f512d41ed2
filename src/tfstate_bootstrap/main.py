"""CLI entrypoint for the Terraform state bootstrap."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import typer

from .cloud import build_cloud
from .config import ConfigError, load_azure_config, load_project_config
from .http import CloudAPIError
from .models import RunAction, RunMode
from .reconciler import Reconciler
from .workflow import WorkflowExecutionError

logger = logging.getLogger(__name__)

PROG_NAME = "tfstate-bootstrap"
DEFAULT_CONFIG_PATH = Path("config.json")
DEFAULT_TFVARS_PATH = Path("terraform") / "terraform.tfvars"

USAGE = f"""
Usage: {PROG_NAME} [--provision | --destroy | --dry-run | --yes | --help | --usage]
  --provision   Creates resources (if not already existing)
  --destroy     Destroys created resources in reverse order
  --dry-run     Shows the actions without executing them
  --yes         Skip confirmation prompt (for automation)
  --help        Displays detailed help information
  --usage       Displays brief usage info
"""

EXAMPLES = (
    f"Examples: {PROG_NAME} --provision (create infrastructure with checks);  "
    f"{PROG_NAME} --provision --yes (provision without prompting);  "
    f"{PROG_NAME} --dry-run (simulate provisioning steps);  "
    f"{PROG_NAME} --destroy (tear down all created resources)"
)


class UserAbort(Exception):
    """Raised when the operator declines the confirmation prompt."""


def _configure_logging() -> None:
    env_level = os.getenv("TFSTATE_BOOTSTRAP_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, env_level, None)
    if not isinstance(level, int):
        level = logging.INFO
        logging.warning(
            "Unrecognized TFSTATE_BOOTSTRAP_LOG_LEVEL '%s'; defaulting to INFO",
            env_level,
        )
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")


_configure_logging()

app = typer.Typer(add_completion=False)


def _fail(message: str, *, show_usage: bool = False) -> typer.Exit:
    typer.secho(f"[ERROR] {message}", fg=typer.colors.RED, err=True)
    if show_usage:
        typer.echo(USAGE, err=True)
    return typer.Exit(code=1)


def resolve_run_mode(provision: bool, destroy: bool, dry_run: bool, assume_yes: bool) -> Optional[RunMode]:
    """Translate flags into a RunMode; None means nothing to do."""
    if provision and destroy:
        raise ValueError("--provision and --destroy cannot be combined")
    if destroy:
        return RunMode(RunAction.DESTROY, simulate=dry_run, assume_yes=assume_yes)
    if provision or dry_run:
        if dry_run and not provision:
            logger.info("Dry-run mode enabled. Defaulting to provision simulation.")
        return RunMode(RunAction.PROVISION, simulate=dry_run, assume_yes=assume_yes)
    return None


def confirm_changes() -> None:
    typer.secho("\nYou are about to perform real changes to your Azure environment.", fg=typer.colors.YELLOW)
    typer.secho("It is highly recommended to run this command first with '--dry-run'.\n", fg=typer.colors.YELLOW)
    answer = typer.prompt("Are you sure you want to continue? (y/N)", default="N", show_default=False)
    if answer.strip() not in {"y", "Y"}:
        raise UserAbort()


@app.command(
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
    epilog=EXAMPLES,
)
def bootstrap(
    ctx: typer.Context,
    provision: bool = typer.Option(False, "--provision", help="Creates resources (if not already existing)"),
    destroy: bool = typer.Option(False, "--destroy", help="Destroys created resources in reverse order"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Shows the actions without executing them"),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation prompt (for automation)"),
    usage: bool = typer.Option(False, "--usage", help="Displays brief usage info"),
    config: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        envvar="TFSTATE_BOOTSTRAP_CONFIG",
        help="Path to the project config (subfix, projectname, region)",
    ),
    tfvars: Path = typer.Option(
        DEFAULT_TFVARS_PATH,
        "--tfvars",
        envvar="TFSTATE_BOOTSTRAP_TFVARS",
        help="Where terraform.tfvars is written (and removed on destroy)",
    ),
) -> None:
    """Provisions or destroys Azure infrastructure for a Terraform project.

    Creates a resource group, a service principal scoped to it, a storage
    account and a blob container for remote state, then writes the
    credentials to terraform.tfvars.
    """

    if ctx.args:
        raise _fail(f"Unknown option: {ctx.args[0]}", show_usage=True)
    if usage:
        typer.echo(USAGE)
        raise typer.Exit()

    try:
        mode = resolve_run_mode(provision, destroy, dry_run, yes)
    except ValueError as exc:
        raise _fail(str(exc), show_usage=True) from exc
    if mode is None:
        typer.echo(USAGE)
        raise typer.Exit()

    try:
        project = load_project_config(config)
        azure_config = load_azure_config()
    except ConfigError as exc:
        raise _fail(str(exc)) from exc

    if mode.requires_confirmation:
        try:
            confirm_changes()
        except UserAbort:
            typer.secho("Aborted by user.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

    reconciler = Reconciler(project, build_cloud(azure_config), tfvars, mode)
    try:
        reconciler.run()
    except WorkflowExecutionError as exc:
        cause = exc.__cause__
        if isinstance(cause, (CloudAPIError, OSError, ValueError)):
            raise _fail(f"Step '{exc.step_name}' failed: {cause}") from exc
        raise


if __name__ == "__main__":
    app()
