from __future__ import annotations

from typing import Optional

import click

from .cli_helpers import echo_json, friendly_error, open_profile, parse_json_option
from .exceptions import PlayforceError


@click.command("rest")
@click.argument("profile")
@click.argument("path")
@click.option(
    "-X",
    "--method",
    type=click.Choice(["GET", "HEAD", "POST", "PATCH", "PUT", "DELETE"], case_sensitive=False),
    default="GET",
    show_default=True,
    help="HTTP method. Anything but GET/HEAD needs a license.",
)
@click.option("--data", default=None, help="JSON request body.")
@click.pass_context
def rest_cmd(ctx: click.Context, profile: str, path: str, method: str, data: Optional[str]) -> None:
    """Call the sObjects REST API, e.g. `rest prod Account/001xx0000000001`."""
    body = parse_json_option(data)
    session = open_profile(ctx, profile)
    try:
        res = session.execute_rest(path, method.upper(), body)
    except PlayforceError as e:
        raise friendly_error(e) from e

    if res is None:
        click.echo(f"{method.upper()} {path}: no content")
        return
    echo_json(res)
