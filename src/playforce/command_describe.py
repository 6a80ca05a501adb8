from __future__ import annotations

from typing import Optional

import click

from .cli_helpers import friendly_error, open_profile
from .exceptions import PlayforceError


@click.command("describe")
@click.argument("profile")
@click.argument("object_name", required=False)
@click.option(
    "--all",
    "show_all",
    is_flag=True,
    help="With no object: show all sObjects (default: only queryable).",
)
@click.pass_context
def describe_cmd(ctx: click.Context, profile: str, object_name: Optional[str], show_all: bool) -> None:
    """List sObjects, or the fields of OBJECT_NAME."""
    session = open_profile(ctx, profile)
    try:
        if object_name:
            for name in session.queries.field_names(object_name):
                click.echo(name)
            return
        g = session.describe_global()
    except PlayforceError as e:
        raise friendly_error(e) from e

    sobjs = g.get("sobjects", [])

    def want(s: dict) -> bool:
        return show_all or s.get("queryable")

    names = sorted(s["name"] for s in sobjs if want(s))
    for n in names:
        click.echo(n)
