"""Console entry point: ``playforce`` / ``python -m playforce``."""

from __future__ import annotations

import sys
from typing import List, Optional

import click

from .cli import cli
from .exceptions import PlayforceError


def _configure_stdio() -> None:
    # Record values can hold any Unicode; never crash printing them.
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.reconfigure(encoding="utf-8", errors="backslashreplace")
        except (AttributeError, ValueError):
            pass


def main(argv: Optional[List[str]] = None) -> None:
    _configure_stdio()
    try:
        # PLAYFORCE_CONFIG_DIR / PLAYFORCE_LICENSE_FILE fill the group options
        rv = cli.main(args=argv, prog_name="playforce", auto_envvar_prefix="PLAYFORCE", standalone_mode=False)
    except click.exceptions.Abort:
        sys.exit(1)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except PlayforceError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if isinstance(rv, int) and rv:
        # ctx.exit(n) comes back as a return value outside standalone mode
        sys.exit(rv)


if __name__ == "__main__":
    main()
