"""Command line interface for the provision-like-user service."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from .config import AppConfig, ConfigurationError, describe_config, load_config
from .models import ProvisionRequest
from .provisioning import ProvisionLikeUser
from .validation import SecurityKeyMismatchError

app = typer.Typer(help="Create directory users modelled on an existing user.")


def _load_configuration(config_path: Optional[Path]) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("provision")
def provision(
    new_user_email: str = typer.Option(..., "--new-user-email", help="Principal name of the user to create."),
    existing_user_email: str = typer.Option(
        ..., "--existing-user-email", help="Principal name of the user to copy."
    ),
    first_name: str = typer.Option(..., "--first-name", help="New user's first name."),
    last_name: str = typer.Option(..., "--last-name", help="New user's last name."),
    display_name: Optional[str] = typer.Option(
        None, "--display-name", help="Display name (defaults to 'First Last')."
    ),
    tenant_id: Optional[str] = typer.Option(None, "--tenant-id", help="Override the configured tenant."),
    ticket_id: str = typer.Option("", "--ticket-id", help="Ticket reference echoed in the result."),
    security_key: Optional[str] = typer.Option(
        None, "--security-key", help="Shared secret, when one is configured."
    ),
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
) -> None:
    """Create a user with the licenses and groups of an existing user."""

    config = _load_configuration(config_path)
    provision_request = ProvisionRequest(
        new_user_email=new_user_email,
        existing_user_email=existing_user_email,
        new_user_first_name=first_name,
        new_user_last_name=last_name,
        new_user_display_name=display_name,
        tenant_id=tenant_id,
        ticket_id=ticket_id,
        security_key=security_key,
    )

    try:
        report = ProvisionLikeUser(config).run(provision_request)
    except SecurityKeyMismatchError:
        typer.echo("Error: security key does not match.", err=True)
        raise typer.Exit(code=2)

    typer.echo(json.dumps(report.result.to_dict(), indent=2))
    if report.result.result_code != 200:
        raise typer.Exit(code=1)


@app.command("check-config")
def check_config(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a specific settings file (overrides default)."
    ),
) -> None:
    """Show which integrations are configured, with secrets masked."""

    config = _load_configuration(config_path)
    typer.echo(json.dumps(describe_config(config), indent=2))


def run():
    app()


if __name__ == "__main__":
    run()
