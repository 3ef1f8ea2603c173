"""opmetrics command-line interface."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from ..config import MetricsSettings, get_permission, update_permission
from ..errors import MetricsError


def _echo_status(enabled: bool) -> None:
    click.echo(f"Status: {'Enabled' if enabled else 'Disabled'}")
    click.echo("")


def run_telemetry_command(action: str, config_path: Path) -> bool:
    """Apply ``action`` to the permission record and report the resulting state."""

    if action == "enable":
        permission = update_permission(config_path, True)
        _echo_status(permission.enabled)
        click.echo(
            "Telemetry is completely anonymous. Thank you for helping us improve the experience!"
        )
    elif action == "disable":
        permission = update_permission(config_path, False)
        _echo_status(permission.enabled)
        click.echo("No longer collecting anonymous usage data.")
    elif action == "status":
        permission = get_permission(config_path)
        _echo_status(permission.enabled)
    else:
        raise MetricsError(f"Unknown telemetry action '{action}'", hint="Use status, enable or disable.")
    return permission.enabled


@click.group()
@click.version_option(package_name="opmetrics")
def app() -> None:
    """opmetrics CLI - manage anonymous usage telemetry."""


@app.command()
@click.argument(
    "action",
    type=click.Choice(["status", "enable", "disable"], case_sensitive=False),
    default="status",
)
@click.option(
    "--config-path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Metrics config file (defaults to $OPMETRICS_CONFIG_PATH or ~/.opmetrics/metrics.json).",
)
def telemetry(action: str, config_path: Path | None) -> None:
    """Show, enable or disable telemetry collection."""
    path = config_path or MetricsSettings.from_env().config_path
    try:
        run_telemetry_command(action.lower(), path)
    except (MetricsError, OSError) as e:
        click.echo(f"✗ {e}", err=True)
        hint = getattr(e, "hint", None)
        if hint:
            click.echo(f"  Hint: {hint}", err=True)
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()
