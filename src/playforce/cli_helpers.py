from __future__ import annotations

import json
from typing import Any, Optional

import click

from .exceptions import LicenseError, PlayforceError, ValidationError
from .session import SessionContext


def open_profile(ctx: click.Context, profile: str) -> SessionContext:
    """Select ``profile`` on the command's session or fail with a friendly message."""
    session: SessionContext = ctx.obj
    if not session.select_config(profile):
        available = ", ".join(session.list_configs()) or "(none)"
        raise click.ClickException(
            f"No config named {profile!r} in {session.configs.config_dir}.\n"
            f"Available configs: {available}"
        )
    return session


def friendly_error(e: PlayforceError) -> click.ClickException:
    if isinstance(e, ValidationError):
        return click.ClickException(
            f"{e}\n\nAdd the missing fields to the profile JSON, e.g.:\n"
            '  "username": "me@example.com",\n'
            '  "password": "password+securitytoken"'
        )
    if isinstance(e, LicenseError):
        return click.ClickException(f"{e}\nRun `playforce license` to check the license status.")
    return click.ClickException(str(e))


def echo_json(data: Any, pretty: bool = True) -> None:
    click.echo(json.dumps(data, indent=2 if pretty else None, default=str))


def parse_json_option(value: Optional[str]) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON: {e}") from e
