from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from .session import SessionContext


@click.command("license")
@click.option(
    "--file",
    "license_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Read PLAYFORCE_LICENSE from this file instead of the configured one.",
)
@click.pass_context
def license_cmd(ctx: click.Context, license_file: Optional[Path]) -> None:
    """Show the license status used for write operations."""
    session: SessionContext = ctx.obj
    status = session.get_license_info(license_file)
    if not status.licensed:
        click.echo(f"Not licensed: {status.message}")
        ctx.exit(1)

    click.echo(f"Licensed to {status.organization} <{status.licensee_email}>")
    click.echo(f"Tier: {status.tier or '-'} ({'paid' if status.is_paid else 'free'})")
    if status.expires:
        click.echo(f"Expires: {status.expires.date().isoformat()}")
