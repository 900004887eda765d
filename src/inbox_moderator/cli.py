"""CLI entry point for Inbox Moderator."""

from __future__ import annotations

import asyncio
import importlib
import inspect
from datetime import datetime
from typing import Any

import click
import httpx

from .api_client import ModeratorAPIError, ModeratorClient
from .app import Moderator
from .auth import AuthState, AuthStore, token_expiry, uid_from_token
from .cache import ActionCache, LocalStore
from .constants import API_URL_ENVVAR, DEFAULT_API_URL
from .display import console, display_action_records, display_cache_info, display_scan_summary, setup_logging
from .export import export_actions
from .gate import normalize_timestamp

api_url_option = click.option(
    "--api-url",
    envvar=API_URL_ENVVAR,
    default=DEFAULT_API_URL,
    show_default=True,
    help=f"Moderation backend base URL (or set {API_URL_ENVVAR}).",
)


async def load_page(target: str) -> Any:
    """Build a host page adapter from a ``module:factory`` path."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise click.BadParameter("expected 'module:factory'", param_hint="--page")
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(f"cannot load {target}: {e}", param_hint="--page") from e

    page = factory()
    if inspect.isawaitable(page):
        page = await page
    return page


@click.group()
@click.version_option(version="0.1.0", prog_name="inbox-moderator")
def cli() -> None:
    """Inbox Moderator - keyword and AI moderation for a web inbox."""


@cli.command()
@click.option("--page", "page_target", required=True, help="Host page adapter factory, as 'module:factory'.")
@api_url_option
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
def run(page_target: str, api_url: str, verbose: bool) -> None:
    """Moderate the inbox rendered by a host page adapter until interrupted."""
    setup_logging(verbose)

    if not AuthStore().load().access_token:
        raise click.ClickException("Not connected. Run 'inbox-moderator login' first.")

    async def _main() -> None:
        page = await load_page(page_target)
        with LocalStore() as store:
            client = ModeratorClient(api_url)
            moderator = Moderator(page, client, store, on_stats=display_scan_summary)
            await moderator.run_forever()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


@cli.command()
@click.option("--access-token", prompt=True, hide_input=True, help="Session access token.")
@click.option("--refresh-token", default="", help="Session refresh token.")
def login(access_token: str, refresh_token: str) -> None:
    """Store a session token pair for the moderation backend."""
    access_token = access_token.strip()
    if not access_token:
        raise click.ClickException("Access token must not be empty.")
    AuthStore().save(AuthState(access_token=access_token, refresh_token=refresh_token.strip()))
    console.print(f"[green]Signed in as {uid_from_token(access_token)}.[/green]")


@cli.command()
def logout() -> None:
    """Forget the stored session."""
    AuthStore().clear()
    console.print("[green]Signed out.[/green]")


@cli.command()
@api_url_option
def auth(api_url: str) -> None:
    """Test the stored session against the backend."""
    store = AuthStore()
    state = store.load()
    if not state.access_token:
        raise click.ClickException("Not connected. Run 'inbox-moderator login' first.")

    console.print(f"[bold]User:[/bold] {uid_from_token(state.access_token)}")
    exp = token_expiry(state.access_token)
    if exp:
        console.print(f"[bold]Token expires:[/bold] {datetime.fromtimestamp(exp).isoformat(timespec='seconds')}")

    async def _check() -> dict:
        async with ModeratorClient(api_url, auth=store) as client:
            return await client.fetch_config()

    try:
        config = asyncio.run(_check())
    except (httpx.HTTPError, ModeratorAPIError) as e:
        raise click.ClickException(f"Authentication failed: {e}") from e

    console.print(f"[green]Authenticated.[/green] {len(config.get('keywords') or [])} keyword rules configured.")


@cli.command()
@api_url_option
def timestamp(api_url: str) -> None:
    """Show the server-side gate timestamp."""

    async def _fetch() -> Any:
        async with ModeratorClient(api_url) as client:
            return await client.get_last_timestamp()

    try:
        value = normalize_timestamp(asyncio.run(_fetch()))
    except (httpx.HTTPError, ModeratorAPIError) as e:
        raise click.ClickException(str(e)) from e

    if not value:
        console.print("[dim]No gate timestamp recorded yet.[/dim]")
        return
    console.print(f"[bold]Gate:[/bold] {value} ({datetime.fromtimestamp(value).isoformat(timespec='seconds')})")


@cli.command(name="export")
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["csv", "json"]),
    default="csv",
    help="Output format.",
)
@click.option("-o", "--output", required=True, help="Output file path.")
@click.option("--user", default=None, help="User id (defaults to the signed-in user).")
def export_cmd(fmt: str, output: str, user: str | None) -> None:
    """Export cached moderation outcomes to CSV or JSON."""
    with LocalStore() as store:
        cache = ActionCache(store)
        cache.load(user or AuthStore().user_id())
        records = cache.records()

    if not records:
        raise click.ClickException("No cached actions found. Run 'run' first.")

    count = export_actions(records, format=fmt, output_path=output)
    console.print(f"Exported {count} records to {output}")


@cli.group(name="cache")
def cache_group() -> None:
    """Manage the local action cache."""


@cache_group.command(name="info")
@click.option("--show", "show_records", is_flag=True, help="List recent actions of the signed-in user.")
def cache_info(show_records: bool) -> None:
    """Show cache statistics."""
    with LocalStore() as store:
        info = store.get_info()
        records = []
        if show_records:
            cache = ActionCache(store)
            cache.load(AuthStore().user_id())
            records = cache.records()

    if not info["users"] and not info["config_snapshots"]:
        console.print("[dim]Cache is empty.[/dim]")
        return

    display_cache_info(info)
    if records:
        display_action_records(records)


@cache_group.command(name="clear")
def cache_clear() -> None:
    """Clear the action cache and config snapshots."""
    with LocalStore() as store:
        store.clear()
    console.print("[green]Cache cleared.[/green]")
