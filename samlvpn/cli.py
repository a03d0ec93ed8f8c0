"""Command line interface for samlvpn."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .core.config import Config, load_config
from .core.manager import ConnectionManager
from .core.session import SessionContext, load_session
from .core.supervisor import OutcomeKind
from .errors import SamlVPNError
from .utils.logging import get_logger, setup_console_logging, setup_file_logging

console = Console()
err_console = Console(stderr=True)
logger = get_logger("cli")
app = typer.Typer(add_completion=False, help="Connect to SAML-authenticated OpenVPN endpoints")

ConfigOption = typer.Option(None, "--config", "-c", help="Path to the samlvpn YAML config file")


def _fail(exc: SamlVPNError) -> typer.Exit:
    err_console.print(f"[red]{escape(f'[{exc.phase}] {exc}')}[/red]", highlight=False)
    logger.debug("Failure details", exc_info=exc)
    return typer.Exit(code=1)


def _cancelled() -> typer.Exit:
    err_console.print("Cancelled.")
    return typer.Exit(code=130)


def _load(config_path: Optional[Path]) -> tuple[Config, SessionContext]:
    config = load_config(config_path)
    problems = config.validate()
    if problems:
        err_console.print("The configuration contains the following error(s):")
        for problem in problems:
            err_console.print(f"  - {problem}", markup=False)
        raise typer.Exit(code=1)
    return config, load_session(config)


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", help="Show debug logging")) -> None:
    setup_console_logging(debug, err_console)
    setup_file_logging()


@app.command()
def connect(
    config_path: Optional[Path] = ConfigOption,
    run: Optional[bool] = typer.Option(
        None, "--run/--print", help="Run OpenVPN, or only print the command (overrides run_command)"
    ),
    retries: Optional[int] = typer.Option(
        None, "--retries", min=0, help="Retries after AUTH_FAILED (overrides auth_failed_retries)"
    ),
) -> None:
    """Authenticate through the browser and start the VPN."""

    try:
        config, session = _load(config_path)
        if run is not None:
            config.run_command = run
        if retries is not None:
            config.auth_failed_retries = retries
        manager = ConnectionManager(config, session=session, console=console)
        outcome = asyncio.run(manager.connect())
    except SamlVPNError as exc:
        raise _fail(exc) from exc
    except KeyboardInterrupt:
        raise _cancelled() from None
    if outcome is None:
        return
    if outcome.kind is OutcomeKind.CONNECTION_LOST:
        err_console.print("[yellow]Connection lost. Run samlvpn again to reconnect.[/yellow]")
    elif outcome.kind is OutcomeKind.USER_CANCELLED:
        err_console.print("Disconnected.")


@app.command()
def check(config_path: Optional[Path] = ConfigOption) -> None:
    """Validate the configuration and show the effective settings."""

    try:
        config, session = _load(config_path)
    except SamlVPNError as exc:
        raise _fail(exc) from exc
    table = Table(title="samlvpn configuration")
    table.add_column("Setting")
    table.add_column("Value")
    rows: List[tuple[str, str]] = [
        ("OpenVPN binary", str(config.openvpn_binary)),
        ("OpenVPN config", str(config.openvpn_config_file)),
        ("Remote", session.display_name()),
        ("Callback address", config.server_address),
        ("Callback timeout", f"{config.server_timeout:g}s"),
        ("Browser command", " ".join(config.browser_command) or "-"),
        ("Run command", "Yes" if config.run_command else "No (print only)"),
        ("Auth retries", str(config.auth_failed_retries)),
        ("Connection lost command", " ".join(config.connection_lost_command) or "-"),
        (
            "Credentials file",
            f"{config.temp_credentials_file_path} ({config.temp_credentials_file_permissions:04o})",
        ),
    ]
    for name, value in rows:
        table.add_row(name, value)
    console.print(table)


@app.command()
def probe(config_path: Optional[Path] = ConfigOption) -> None:
    """Fetch and show the SAML challenge without connecting.

    Each probe uses up an authentication attempt on the server.
    """

    try:
        config, session = _load(config_path)
        manager = ConnectionManager(config, session=session, console=console)
        challenge = asyncio.run(manager.fetch_challenge())
    except SamlVPNError as exc:
        raise _fail(exc) from exc
    except KeyboardInterrupt:
        raise _cancelled() from None
    console.print(f"SID: {challenge.sid}", markup=False, highlight=False)
    console.print(f"URL: {challenge.url}", markup=False, highlight=False)


def run_cli(argv: List[str] | None = None) -> int:
    try:
        app(args=argv, prog_name="samlvpn")
    except SystemExit as exc:
        if isinstance(exc.code, int):
            return exc.code
        return 0 if exc.code is None else 1
    return 0
