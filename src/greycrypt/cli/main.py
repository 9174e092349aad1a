# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/cli/main.py

"""
GreyCrypt command line.

Commands resolve their configuration the same way: an explicit --config
file, or the merged standard locations. When greycrypt.yml carries no
encryption_key, the key is derived from a password prompt and the salt kept
in the sync dir, so every machine that knows the password gets the same key.
"""

# Standard library imports
import os
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional

# Third-party imports
import humanize
import orjson
import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Local imports
from greycrypt.config.manager import SyncConfig, validate_config
from greycrypt.core.engine import SyncEngine, SyncReport
from greycrypt.core.scanner import is_duplicate_marker
from greycrypt.data.crypto import KEYCHECK_FILE, check_key, derive_key, load_or_create_salt, write_key_check
from greycrypt.data.syncdb import RevisionLedger
from greycrypt.data.syncfile import SYNC_EXT, from_syncfile, get_metadata_hash
from greycrypt.system.exceptions import ConfigError, GreyCryptError, IoError
from greycrypt.system.locking import ProcessLock
from greycrypt.system.logging_setup import SyncLog, setup_logging

REKEY_SUFFIX = ".rekey"

app = typer.Typer(
    help="""greycrypt - Encrypted file sync through a shared folder

[bold green]Core Operations:[/bold green] sync
[bold magenta]Inspection:[/bold magenta] show-meta
[bold red]Maintenance:[/bold red] change-password, validate-config
""",
    rich_markup_mode="rich"
)

console = Console()

_options = {"debug": False}

ConfigOption = typer.Option(None, "--config", "-c", help="Path to greycrypt.yml (default: search standard locations)")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        try:
            pkg_version = version("greycrypt")
        except PackageNotFoundError:
            pkg_version = "unknown"
        console.print(f"greycrypt version {pkg_version}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Optional[bool] = typer.Option(
        None, "--version", callback=version_callback, is_eager=True,
        help="Show version and exit"
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """greycrypt - peer-to-peer encrypted file synchronization."""
    _options["debug"] = debug
    setup_logging(debug=debug)


# ---- helpers ----

def _fail(message: str) -> None:
    console.print(f"[red]✗[/red] {escape(message)}", soft_wrap=True)
    raise typer.Exit(1)


def load_config(config_path: Optional[Path]) -> SyncConfig:
    """Load config, then switch logging to the configured local log if any."""
    try:
        cfg = SyncConfig.load(config_path)
    except ConfigError as e:
        _fail(f"Configuration error: {e}")
    if cfg.local_log:
        setup_logging(cfg.local_log, debug=_options["debug"])
    return cfg


def resolve_key(cfg: SyncConfig, prompt: str = "Password") -> SyncConfig:
    """Config with a usable key: the configured one, else one derived from a password prompt.

    A derived key is checked against the sync dir's key check file before
    anything is written with it.
    """
    if cfg.encryption_key is not None:
        return cfg
    salt = load_or_create_salt(cfg.sync_dir)
    password = typer.prompt(prompt, hide_input=True)
    key = derive_key(password, salt)
    check_key(cfg.sync_dir, key)
    return cfg.with_key(key)


def _iter_syncfiles(sync_dir: Path):
    for path in sorted(sync_dir.rglob(f"*{SYNC_EXT}")):
        if path.is_file() and not is_duplicate_marker(path):
            yield path


def display_report(report: SyncReport) -> Table:
    title = "Sync summary (dry run)" if report.dry_run else "Sync summary"
    table = Table(title=title)
    table.add_column("Outcome", style="cyan")
    table.add_column("Files", justify="right")
    for label, ids in (
        ("Pushed", report.pushed),
        ("Materialized", report.materialized),
        ("Unchanged", report.unchanged),
        ("Remote changed (not pulled)", report.remote_changed),
        ("Deleted locally", report.local_deletions),
        ("Skipped", report.skipped),
    ):
        table.add_row(label, str(len(ids)))
    return table


# =============================================================================
# CORE OPERATIONS
# =============================================================================

@app.command()
def sync(
    config_path: Optional[Path] = ConfigOption,
    dry_run: bool = typer.Option(False, "--dry-run", help="Classify only; write nothing"),
    to_json: bool = typer.Option(False, "--json", help="Output results as JSON"),
) -> None:
    """[bold green]Core Operations[/bold green]: Run one sync pass against the shared sync dir."""
    cfg = load_config(config_path)
    try:
        cfg = resolve_key(cfg)
        with ProcessLock(str(cfg.sync_dir), operation="sync"):
            ledger = RevisionLedger.from_config(cfg)
            report = SyncEngine(cfg, ledger, SyncLog()).run(dry_run=dry_run)
    except GreyCryptError as e:
        logger.error(f"Sync aborted: {e}")
        _fail(f"Sync aborted: {e}")

    if to_json:
        typer.echo(orjson.dumps(report.model_dump(), option=orjson.OPT_INDENT_2).decode())
        return
    console.print(display_report(report))
    if report.changes == 0 and not report.remote_changed:
        console.print("[green]✓[/green] Everything up to date")


# =============================================================================
# INSPECTION
# =============================================================================

@app.command(name="show-meta")
def show_meta(
    syncfile: Path = typer.Argument(..., help="Syncfile (.dat) to inspect"),
    config_path: Optional[Path] = ConfigOption,
) -> None:
    """[bold magenta]Inspection[/bold magenta]: Show metadata, ledger state and content of a syncfile."""
    if not syncfile.is_file():
        _fail(f"No such syncfile: {syncfile}")
    cfg = load_config(config_path)
    try:
        cfg = resolve_key(cfg)
        meta = get_metadata_hash(cfg, syncfile)
        sf = from_syncfile(cfg, syncfile)
        entry = RevisionLedger.from_config(cfg).get(sf.syncid)
        data = sf.decrypt_bytes(cfg)
    except GreyCryptError as e:
        _fail(f"Cannot read {syncfile}: {e}")

    table = Table(title=f"{syncfile.name}")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", overflow="fold")
    for key in sorted(meta):
        table.add_row(key, escape(meta[key]))
    if entry is None:
        table.add_row("ledger", "[yellow]no entry on this machine[/yellow]")
    else:
        table.add_row("ledger revguid", str(entry.revguid))
        table.add_row("ledger native_mtime", str(entry.native_mtime))
    table.add_row("decrypted size", humanize.naturalsize(len(data)))
    console.print(table)

    if not sf.is_binary:
        console.print(data.decode("utf-8"), markup=False, highlight=False)


# =============================================================================
# MAINTENANCE
# =============================================================================

@app.command(name="change-password")
def change_password(config_path: Optional[Path] = ConfigOption) -> None:
    """[bold red]Maintenance[/bold red]: Re-encrypt every syncfile under a new password.

    Revision tokens are kept, so other machines see no content change. Every
    syncfile is re-encrypted to a staging file first; originals are replaced
    only when all of them succeeded.
    """
    cfg = load_config(config_path)
    if cfg.encryption_key is not None:
        _fail("encryption_key is set in greycrypt.yml; change it there instead")

    try:
        old_cfg = resolve_key(cfg, prompt="Old password")
        new_password = typer.prompt("New password", hide_input=True, confirmation_prompt=True)
        new_key = derive_key(new_password, load_or_create_salt(cfg.sync_dir))
    except GreyCryptError as e:
        _fail(f"Password change aborted: {e}")
    new_cfg = cfg.with_key(new_key)

    staged: list[tuple[Path, Path]] = []
    try:
        with ProcessLock(str(cfg.sync_dir), operation="change-password"):
            for path in _iter_syncfiles(cfg.sync_dir):
                sf = from_syncfile(old_cfg, path)
                staging = path.with_name(path.name + REKEY_SUFFIX)
                sf.save_with_data(new_cfg, staging, sf.decrypt_bytes(old_cfg))
                staged.append((staging, path))

            # key check is swapped in after every syncfile
            check_path = cfg.sync_dir / KEYCHECK_FILE
            check_staging = check_path.with_name(check_path.name + REKEY_SUFFIX)
            write_key_check(check_staging, new_key)
            staged.append((check_staging, check_path))

            for staging, path in staged:
                try:
                    os.replace(staging, path)
                except OSError as e:
                    raise IoError(f"Cannot replace {path}: {e}", path=str(path)) from e
    except GreyCryptError as e:
        for staging, _ in staged:
            staging.unlink(missing_ok=True)
        _fail(f"Password change aborted: {e}")

    console.print(f"[green]✓[/green] Re-encrypted {len(staged) - 1} syncfiles")


@app.command(name="validate-config")
def validate_config_command(config_path: Optional[Path] = ConfigOption) -> None:
    """[bold red]Maintenance[/bold red]: Check greycrypt.yml for this machine."""
    errors = validate_config(config_path)
    if errors:
        for error in errors:
            console.print(f"[red]✗[/red] {escape(error)}", soft_wrap=True)
        raise typer.Exit(1)
    console.print("[green]✓[/green] Configuration is valid")


# =============================================================================
# ENTRY POINT
# =============================================================================

def main() -> None:  # pragma: no cover - entry point
    """Entry point for the greycrypt CLI application."""
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
