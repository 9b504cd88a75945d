"""
CLI for gsuite.

Authentication and account commands; mail and calendar commands build on
service.new_gmail_client().
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from gsuite import __version__, service
from gsuite.config import ServiceConfig
from gsuite.errors import GsuiteError

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class CliState:
    """Per-invocation options shared by all subcommands."""

    def __init__(self, config: ServiceConfig, output_format: str):
        self.config = config
        self.output_format = output_format

    @property
    def json(self) -> bool:
        return self.output_format == "json"


pass_state = click.make_pass_decorator(CliState)


def _fail(exc: Exception) -> NoReturn:
    err_console.print(f"[red]Error:[/red] {escape(str(exc))}", highlight=False, soft_wrap=True)
    sys.exit(1)


def _output_json(value: Any) -> None:
    click.echo(json.dumps(value, indent=2))


def _show_auth_url(url: str) -> None:
    console.print(
        Panel(
            "1. Your browser will now open to sign in and grant access.\n"
            "2. If it doesn't open, copy the URL below into a browser.",
            title="gsuite login",
            style="bold blue",
        )
    )
    # soft_wrap keeps the URL on one line so it can be copied
    console.print(url, soft_wrap=True, highlight=False)
    console.print()


@click.group()
@click.version_option(__version__, prog_name="gsuite")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option(
    "--credentials-file", "-c",
    type=click.Path(dir_okay=False),
    help="Path to OAuth2 client credentials JSON",
)
@click.option("--account", "-a", help="Account email to use instead of the active one")
@click.option(
    "--format", "-f", "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Output format",
)
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="GSUITE_CONFIG_DIR",
    hidden=True,
)
@click.pass_context
def main(
    ctx: click.Context,
    verbose: bool,
    credentials_file: Optional[str],
    account: Optional[str],
    output_format: str,
    config_dir: Optional[Path],
):
    """gsuite - Gmail and Calendar from the command line."""
    setup_logging(verbose)
    ctx.obj = CliState(
        ServiceConfig(account=account, credentials_file=credentials_file, config_dir=config_dir),
        output_format,
    )


# ---------------------------------------------------------------------------
# login / logout / whoami
# ---------------------------------------------------------------------------


@main.command()
@pass_state
def login(state: CliState):
    """Sign in with the OAuth2 browser flow.

    Opens your browser for Google consent, then stores the token for the
    account you signed in as and makes it the active account. Run again
    to add another account.
    """
    try:
        email = service.login(state.config, announce=_show_auth_url)
    except GsuiteError as e:
        _fail(e)
    if state.json:
        _output_json({"email": email})
    else:
        console.print(f"[green]Logged in as[/green] {email}", highlight=False)


@main.command()
@pass_state
def logout(state: CliState):
    """Remove the active (or --account) account and its saved token."""
    try:
        email = service.logout(state.config)
    except GsuiteError as e:
        _fail(e)
    console.print(f"Logged out {email}", highlight=False)


@main.command()
@pass_state
def whoami(state: CliState):
    """Show the Gmail profile of the account in use."""
    try:
        profile = service.whoami(state.config)
    except GsuiteError as e:
        _fail(e)

    result = {
        "email": profile.get("emailAddress", ""),
        "messages_total": int(profile.get("messagesTotal", 0)),
        "threads_total": int(profile.get("threadsTotal", 0)),
    }
    if state.json:
        _output_json(result)
        return

    table = Table(show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Email", result["email"])
    table.add_row("Messages Total", str(result["messages_total"]))
    table.add_row("Threads Total", str(result["threads_total"]))
    console.print(table)


# ---------------------------------------------------------------------------
# accounts
# ---------------------------------------------------------------------------


@main.group()
def accounts():
    """List, switch between, or remove signed-in accounts."""


@accounts.command("list")
@pass_state
def accounts_list(state: CliState):
    """List signed-in accounts. The active one is marked with *."""
    try:
        entries, store = service.list_accounts(state.config)
    except GsuiteError as e:
        _fail(e)

    if state.json:
        _output_json([
            {
                "email": entry.email,
                "added_at": entry.added_at.strftime("%Y-%m-%d"),
                "active": store.is_active(entry.email),
            }
            for entry in entries
        ])
        return

    if not entries:
        console.print("No authenticated accounts. Run 'gsuite login' to add one.")
        return

    for entry in entries:
        marker = "*" if store.is_active(entry.email) else " "
        console.print(
            f"{marker} {entry.email}  (added {entry.added_at:%Y-%m-%d})",
            highlight=False,
        )


@accounts.command("switch")
@click.argument("email")
@pass_state
def accounts_switch(state: CliState, email: str):
    """Make EMAIL the active account."""
    try:
        service.switch_account(state.config, email)
    except GsuiteError as e:
        _fail(e)
    console.print(f"Switched to {email}", highlight=False)


@accounts.command("remove")
@click.argument("email")
@pass_state
def accounts_remove(state: CliState, email: str):
    """Remove EMAIL and delete its saved token."""
    try:
        service.remove_account(state.config, email)
    except GsuiteError as e:
        _fail(e)
    console.print(f"Removed account {email}", highlight=False)


if __name__ == "__main__":
    main()
