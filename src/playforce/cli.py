from __future__ import annotations

import json
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from pathlib import Path
from typing import Optional, cast

import click
from click import Command
from tqdm import tqdm

from . import __version__
from .cli_helpers import friendly_error, open_profile
from .command_describe import describe_cmd
from .command_license import license_cmd
from .command_rest import rest_cmd
from .env_loader import load_env_files
from .exceptions import AuthError, PlayforceError
from .logging_config import configure_logging
from .query import QueryProgress
from .session import SessionContext
from .utils import write_records_csv

_logger = logging.getLogger(__name__)

# Load .env very early, so everything else sees env vars
load_env_files()


@click.group(
    context_settings={"help_option_names": ["-h", "--help"]},
    invoke_without_command=True,
)
@click.version_option(__version__, "--version", prog_name="playforce")
@click.option(
    "-v",
    "--verbose",
    "loglevel",
    flag_value=logging.INFO,
    default=None,
    help="Enable INFO logs.",
)
@click.option(
    "-vv",
    "--very-verbose",
    "loglevel",
    flag_value=logging.DEBUG,
    help="Enable DEBUG logs.",
)
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory of <profile>.json files (default: $PLAYFORCE_CONFIG_DIR or ./configs).",
)
@click.option(
    "--license-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="File holding PLAYFORCE_LICENSE (default: $PLAYFORCE_LICENSE_FILE or ./.env).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    loglevel: Optional[int],
    config_dir: Optional[Path],
    license_file: Optional[Path],
) -> None:
    """Playforce: run SOQL and REST calls against Salesforce connection profiles."""
    configure_logging(loglevel)
    _logger.debug("CLI start, version=%s", __version__)
    session = SessionContext.create(config_dir, license_file=license_file)
    ctx.obj = session
    ctx.call_on_close(session.shutdown)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("configs")
@click.pass_context
def cmd_configs(ctx: click.Context) -> None:
    """List available connection profiles."""
    session: SessionContext = ctx.obj
    names = session.list_configs()
    if not names:
        click.echo(f"No configs found in {session.configs.config_dir}", err=True)
        return
    for name in names:
        click.echo(name)


@cli.command("login")
@click.argument("profile")
@click.option("--oauth", is_flag=True, help="Go straight to the browser login.")
@click.option("--no-browser", is_flag=True, help="Print the login URL instead of opening it.")
@click.option("--timeout", default=120, show_default=True, help="Seconds to wait for the browser.")
@click.pass_context
def cmd_login(ctx: click.Context, profile: str, oauth: bool, no_browser: bool, timeout: int) -> None:
    """Authenticate a profile, falling back to browser login when needed."""
    session = open_profile(ctx, profile)
    try:
        if not oauth:
            attempt = session.try_authenticate()
            if attempt.success:
                token = session.current_token()
                click.echo(f"✅  Authenticated {profile} ({attempt.grant_type}).")
                click.echo(f"Instance: {token.instance_url}")
                click.echo(f"Token preview: {token.preview}")
                return
            if not attempt.needs_oauth:
                raise AuthError(attempt.error or "Authentication failed")
            click.echo("Client credentials were rejected; switching to browser login.")

        flow = session.start_oauth_flow(open_browser=not no_browser)
        if no_browser:
            click.echo(f"Open this URL to log in:\n{flow.authorization_url}")
        else:
            click.echo(f"Waiting for browser login on {flow.redirect_uri} ...")
        token = session.complete_oauth_flow(flow, timeout=timeout)
    except PlayforceError as e:
        click.echo(f"❌  Login failed: {e}", err=True)
        raise click.Abort() from None

    click.echo(f"✅  Authenticated {profile} (authorization_code).")
    click.echo(f"Instance: {token.instance_url}")
    click.echo(f"Token preview: {token.preview}")


@cli.command("query")
@click.argument("profile")
@click.argument("soql")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write flattened records to this CSV file instead of printing JSON.",
)
@click.pass_context
def cmd_query(ctx: click.Context, profile: str, soql: str, pretty: bool, csv_path: Optional[Path]) -> None:
    """Run a SOQL query, following every result page. Ctrl-C stops between pages."""
    session = open_profile(ctx, profile)
    query_id = uuid.uuid4().hex
    bar = tqdm(desc="Records", unit="rec", disable=None, leave=False)

    def on_progress(event: QueryProgress) -> None:
        bar.total = event.total
        bar.n = event.fetched
        bar.refresh()

    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(session.execute_soql, soql, on_progress=on_progress, query_id=query_id)
        try:
            while True:
                try:
                    result = future.result(timeout=0.2)
                    break
                except FutureTimeout:
                    continue
        except KeyboardInterrupt:
            session.abort_query(query_id)
            click.echo("\nStopping after the current page...", err=True)
            try:
                result = future.result()
            except PlayforceError as e:
                bar.close()
                raise friendly_error(e) from e
        except PlayforceError as e:
            bar.close()
            raise friendly_error(e) from e
    bar.close()

    if result.aborted:
        click.echo(
            f"Aborted: fetched {result.fetched_count} of {result.total_size} records.", err=True
        )
        return
    if not result.complete:
        click.echo(f"Warning: result is partial ({result.error})", err=True)

    if csv_path is not None:
        n = write_records_csv(csv_path, result.records)
        click.echo(f"Wrote {n} records to {csv_path}")
        return

    click.echo(json.dumps(result.to_dict(), indent=2 if pretty else None))


# Cast ensures IDE knows of the Command type
cli.add_command(cast(Command, rest_cmd))
cli.add_command(cast(Command, describe_cmd))
cli.add_command(cast(Command, license_cmd))
