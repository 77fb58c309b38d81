"""
Antigravity Accounts CLI

Command-line interface for inspecting and managing stored Antigravity accounts.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from antigravity_accounts import (
    AccountStore,
    __version__,
    remove_account_by_email,
    set_active_account,
)
from antigravity_accounts.migrations import now_ms
from antigravity_accounts.schema import detect_version


app = typer.Typer(
    name="antigravity-accounts",
    help="Inspect and manage stored Antigravity accounts.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def _store(ctx: typer.Context) -> AccountStore:
    return ctx.obj


def _format_reset(reset_at: float) -> str:
    try:
        return datetime.fromtimestamp(reset_at / 1000).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        # Outside the platform's datetime range
        return f"{reset_at} ms"


def _stored_version(store: AccountStore) -> Optional[int]:
    """Schema version currently written on disk."""
    try:
        data = json.loads(store.path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return detect_version(data) if isinstance(data, dict) else None


@app.callback()
def main_callback(
    ctx: typer.Context,
    storage: Optional[Path] = typer.Option(None, "--storage", "-s", help="Path to the accounts file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
):
    """
    Inspect and manage stored Antigravity accounts.
    """
    package_logger = logging.getLogger("antigravity_accounts")
    package_logger.handlers.clear()
    package_logger.addHandler(RichHandler(console=err_console, show_path=False))
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    ctx.obj = AccountStore(storage)


@app.command("list")
def accounts_list(ctx: typer.Context):
    """
    List all stored accounts.
    """
    store = _store(ctx)
    storage = store.load()

    if not storage or not storage.accounts:
        console.print("[yellow]No accounts configured.[/yellow]")
        return

    now = now_ms()
    table = Table(title="Antigravity Accounts")
    table.add_column("#", style="dim", width=3)
    table.add_column("Email", style="cyan")
    table.add_column("Project ID", style="green")
    table.add_column("Rate Limited", style="red")
    table.add_column("Status", style="yellow")

    for i, account in enumerate(storage.accounts):
        limits = account.rate_limit_reset_times
        limited = limits.limited_quotas(now) if limits else []
        table.add_row(
            str(i + 1),
            account.email or "(unknown)",
            account.project_id or "(default)",
            ", ".join(limited),
            "✓ Active" if i == storage.active_index else "",
        )

    console.print(table)
    console.print(f"\n[dim]Storage: {store.path}[/dim]")


@app.command("status")
def accounts_status(ctx: typer.Context):
    """
    Show the active account.
    """
    storage = _store(ctx).load()

    if not storage or not storage.accounts:
        console.print(Panel.fit(
            "[yellow]No accounts[/yellow]\n\nAdd an account with the Antigravity login flow.",
            title="Account Status",
        ))
        return

    active_account = storage.accounts[storage.active_index]
    lines = [
        f"[bold]Email:[/bold] {active_account.email or '(unknown)'}",
        f"[bold]Project ID:[/bold] {active_account.project_id or '(default)'}",
        f"[bold]Accounts:[/bold] {len(storage.accounts)}",
        f"[bold]Active:[/bold] #{storage.active_index + 1}",
    ]
    if active_account.rate_limit_reset_times:
        limits = active_account.rate_limit_reset_times.model_dump(by_alias=True, exclude_none=True)
        for quota, reset_at in limits.items():
            lines.append(f"[bold]Limited ({quota}):[/bold] until {_format_reset(reset_at)}")

    console.print(Panel.fit("\n".join(lines), title="Account Status"))


@app.command("switch")
def accounts_switch(
    ctx: typer.Context,
    index: int = typer.Argument(..., help="Account number to switch to (1-based)"),
):
    """
    Switch to a different account.
    """
    store = _store(ctx)
    storage = store.load()

    if not storage or not storage.accounts:
        console.print("[red]No accounts configured.[/red]")
        raise typer.Exit(1)

    # Convert to 0-based index
    idx = index - 1

    if idx < 0 or idx >= len(storage.accounts):
        console.print(f"[red]Invalid account number. Choose 1-{len(storage.accounts)}.[/red]")
        raise typer.Exit(1)

    try:
        switched = set_active_account(store, idx)
    except OSError as e:
        console.print(f"[red]Failed to save accounts: {e}[/red]")
        raise typer.Exit(1)

    if not switched:
        console.print("[red]Failed to switch account.[/red]")
        raise typer.Exit(1)

    account = storage.accounts[idx]
    console.print(f"[green]Switched to account #{index}: {account.email or '(unknown)'}[/green]")


@app.command("remove")
def accounts_remove(
    ctx: typer.Context,
    email: str = typer.Argument(..., help="Email of account to remove"),
):
    """
    Remove an account by email.
    """
    try:
        removed = remove_account_by_email(_store(ctx), email)
    except OSError as e:
        console.print(f"[red]Failed to save accounts: {e}[/red]")
        raise typer.Exit(1)

    if not removed:
        console.print(f"[red]Account not found: {email}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]Removed account: {email}[/green]")


@app.command("clear")
def accounts_clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """
    Remove all stored accounts.
    """
    if not yes and not typer.confirm("Are you sure you want to remove ALL accounts?"):
        raise typer.Abort()

    _store(ctx).clear()
    console.print("[green]All accounts removed.[/green]")


@app.command("migrate")
def accounts_migrate(ctx: typer.Context):
    """
    Upgrade the accounts file to the current schema version.
    """
    store = _store(ctx)
    storage = store.load()

    if storage is None:
        console.print(f"[yellow]No readable accounts file at {store.path}[/yellow]")
        raise typer.Exit(1)

    stored_version = _stored_version(store)
    if stored_version != storage.version:
        console.print("[red]Failed to write the migrated accounts file.[/red]")
        console.print(f"[dim]{store.path} is still at schema v{stored_version}[/dim]")
        raise typer.Exit(1)

    console.print(
        f"[green]Accounts file is at schema v{storage.version} "
        f"({len(storage.accounts)} account(s)).[/green]"
    )


@app.command("path")
def accounts_path(ctx: typer.Context):
    """Show the accounts file location."""
    typer.echo(str(_store(ctx).path))


@app.command("version")
def version():
    """Show the version."""
    console.print(f"antigravity-accounts {__version__}")


def main():
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
