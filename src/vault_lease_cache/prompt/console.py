"""Terminal front end: log in, watch the configured secrets, show renewals.

The console never prints secret values.  Each leaf is shown masked, with its
lease, so an operator can see that renewals happen without leaking anything
into scrollback.
"""

from __future__ import annotations

import asyncio
import getpass
import logging
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vault_lease_cache.client import VaultClient
from vault_lease_cache.config import Settings
from vault_lease_cache.errors import VaultClientError
from vault_lease_cache.events import TOPIC_ERROR, TOPIC_LOGIN_ERROR, secret_topic

logger = logging.getLogger(__name__)
console = Console()

_PASSWORD_BACKENDS = ("userpass", "ldap")


def mask(value: Any) -> str:
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"{text[:2]}{'*' * min(len(text) - 2, 12)}"


def _flatten(value: Any, prefix: str = "") -> list[tuple[str, Any]]:
    if not isinstance(value, dict):
        return [(prefix or ".", value)]
    rows: list[tuple[str, Any]] = []
    for key, child in value.items():
        rows.extend(_flatten(child, f"{prefix}.{key}" if prefix else key))
    return rows


def render_table(client: VaultClient) -> Table:
    table = Table(title="Cached Secrets")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")
    for key, value in _flatten(client.secret()):
        table.add_row(key, mask(value))
    return table


def _auth_options(settings: Settings) -> dict[str, Any]:
    options = dict(settings.auth_options)
    if settings.auth_backend in _PASSWORD_BACKENDS and not options.get("password"):
        if not options.get("username"):
            options["username"] = input("  Username: ").strip()
        options["password"] = getpass.getpass("  Password: ")
    return options


async def watch_secrets(settings: Settings, once: bool = False) -> int:
    """Log in, watch ``settings.secrets`` and keep them fresh until interrupted."""
    console.print(
        Panel(
            f"[bold]vault-lease-cache[/bold]\n{settings.vault_address}",
            border_style="blue",
        )
    )

    async with VaultClient.from_settings(settings) as client:
        client.on(TOPIC_ERROR, lambda exc: console.print(f"[red]Error:[/red] {exc}"))
        client.on(TOPIC_LOGIN_ERROR, lambda exc: console.print(f"[red]Login error:[/red] {exc}"))
        for spec in settings.secrets:
            client.on(
                secret_topic(spec.address),
                lambda _value, address=spec.address: console.print(
                    f"[dim]Refreshed[/dim] [bold]{address}[/bold]"
                ),
            )

        try:
            session = await client.login(settings.auth_backend, _auth_options(settings))
        except VaultClientError as exc:
            console.print(f"[red]Authentication failed:[/red] {exc}")
            return 1
        console.print(f"  [green]Authenticated[/green] ({settings.auth_backend}), lease {session.lease_duration}s\n")

        if not settings.secrets:
            console.print("[yellow]No secrets configured.[/yellow]")
            return 0

        try:
            await client.watch(list(settings.secrets))
        except VaultClientError as exc:
            console.print(f"[red]Initial fetch failed:[/red] {exc}")
            return 1

        console.print(render_table(client))
        if once:
            return 0

        console.print("\nWatching for renewals.  Press [bold]Ctrl-C[/bold] to stop.\n")
        await asyncio.Event().wait()
    return 0


def run_console(settings: Settings, once: bool = False) -> int:
    """Blocking entry point used by ``main``."""
    try:
        return asyncio.run(watch_secrets(settings, once=once))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")
        return 0
