"""Paragon operator CLI (paragon-operator).

Usage:
    paragon-operator apply                 # Reconcile every declared resource
    paragon-operator refresh               # Re-read recorded resources, no mutations
    paragon-operator destroy               # Delete every recorded resource
    paragon-operator validate              # Check the declaration file only
    paragon-operator body tokenize FILE    # Template string -> webhook body JSON
    paragon-operator body render FILE      # Webhook body JSON -> template string
"""

from __future__ import annotations

import dataclasses
import json
import os
from pathlib import Path
from typing import IO, Any

import click
from pydantic import ValidationError

from .config import DEFAULT_SPEC_FILE, Config, ConfigurationError
from .main import run_command, setup_logging
from .spec_loader import SpecLoadError, load_declaration
from .webhook_body import WebhookBody, render, tokenize


def load_config(overrides: dict[str, Any]) -> Config:
    """Load configuration from the environment and apply CLI overrides.

    Raises:
        click.ClickException: If configuration is invalid.
    """
    try:
        config = Config.from_env()
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(config, **changes) if changes else config
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(version="0.1.0", prog_name="paragon-operator")
@click.option(
    "--spec-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Resource declaration file (overrides SPEC_FILE)",
)
@click.option(
    "--state-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="State file (overrides STATE_FILE)",
)
@click.option("--text-logs", is_flag=True, help="Plain text logs instead of JSON")
@click.pass_context
def cli(ctx: click.Context, spec_file: Path | None, state_file: Path | None, text_logs: bool) -> None:
    """Paragon operator.

    Reconciles declared integration credentials and workflow deployments
    against the Paragon API.

    \b
    Quick Start:
        export PARAGON_ACCESS_TOKEN=...
        paragon-operator validate --spec-file resources.yaml
        paragon-operator --spec-file resources.yaml apply
    """
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {"spec_file": spec_file, "state_file": state_file}
    if text_logs:
        ctx.obj["overrides"]["enable_json_logging"] = False


def _reconcile(ctx: click.Context, command: str) -> None:
    config = load_config(ctx.obj["overrides"])
    setup_logging(json_output=config.enable_json_logging)
    ctx.exit(run_command(command, config))


# =============================================================================
# Reconciliation Commands
# =============================================================================


@cli.command()
@click.pass_context
def apply(ctx: click.Context) -> None:
    """Create, update or delete resources to match the declaration."""
    _reconcile(ctx, "apply")


@cli.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Refresh recorded resources from the remote API."""
    _reconcile(ctx, "refresh")


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
def destroy(ctx: click.Context, yes: bool) -> None:
    """Delete every resource recorded in state."""
    if not yes:
        click.confirm("Delete every recorded credential and deployment?", abort=True)
    _reconcile(ctx, "destroy")


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Validate the resource declaration file without contacting the API."""
    spec_file = ctx.obj["overrides"].get("spec_file") or Path(
        os.environ.get("SPEC_FILE", DEFAULT_SPEC_FILE)
    )
    try:
        declaration = load_declaration(spec_file)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    click.echo(
        f"{spec_file}: {len(declaration.credentials)} credential(s), "
        f"{len(declaration.deployments)} deployment(s)"
    )


# =============================================================================
# Webhook Body Commands
# =============================================================================


@cli.group()
def body() -> None:
    """Webhook body templating: tokenize, render."""
    pass


@body.command("tokenize")
@click.argument("source", type=click.File("r"), default="-")
def body_tokenize(source: IO[str]) -> None:
    """Convert a {{$.path}} template into the webhook body JSON."""
    click.echo(json.dumps(tokenize(source.read()).to_payload(), indent=2))


@body.command("render")
@click.argument("source", type=click.File("r"), default="-")
def body_render(source: IO[str]) -> None:
    """Convert webhook body JSON back into its template string."""
    try:
        parsed = WebhookBody.model_validate_json(source.read())
    except ValidationError as e:
        raise click.ClickException(f"Invalid webhook body: {e}") from e
    click.echo(render(parsed), nl=False)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
