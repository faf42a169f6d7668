"""Main CLI entry point."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..cache.resource_cache import deserialize_entities
from ..config import SyncConfig
from ..github_client.models import ALL_KEYS, EntityState, ResourceKey
from ..storage.disk_cache import DiskCache
from ..sync.service import SyncService, read_last_refresh
from .options import (
    CACHE_DIR_OPTION,
    ITEMS_PER_PAGE_OPTION,
    MAX_ITEMS_OPTION,
    OWNER_OPTION,
    REPO_OPTION,
    TOKEN_OPTION,
    WAIT_OPTION,
)

# Load environment variables from .env file
load_dotenv()

app = typer.Typer(
    name="github-issue-sync",
    help="Keep a local, rate-limit aware cache of a repository's issues and PRs",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()

CLOSE_REASONS = ("completed", "not_planned", "duplicate")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Sync GitHub issues and pull requests into the local cache."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_config(
    owner: str | None,
    repo: str | None,
    token: str | None,
    items_per_page: int | None = None,
    max_items: int | None = None,
    cache_dir: Path | None = None,
    refresh_interval: int | None = None,
    require_token: bool = True,
) -> SyncConfig:
    try:
        config = SyncConfig.from_env(
            owner=owner,
            repo=repo,
            token=token,
            items_per_page=items_per_page,
            max_recent_items=max_items,
            cache_dir=cache_dir,
            refresh_interval=refresh_interval,
        )
    except ValidationError as e:
        console.print(f"❌ [red]Invalid configuration:[/red]\n{escape(str(e))}")
        raise typer.Exit(1)

    has_repo = bool(config.owner and config.repo)
    if not has_repo or (require_token and not config.token):
        console.print(
            "❌ [red]Error: token, owner and repo are all required "
            "(--token/--owner/--repo or GITHUB_TOKEN/GITHUB_OWNER/GITHUB_REPO)[/red]"
        )
        raise typer.Exit(1)
    return config


def _partitions_table(
    service: SyncService, changed: dict[ResourceKey, bool] | None = None
) -> Table:
    table = Table(title=f"{service.config.owner}/{service.config.repo}")
    table.add_column("Partition", style="cyan")
    table.add_column("Items", style="green", justify="right")
    table.add_column("Comments", justify="right")
    if changed is not None:
        table.add_column("Rebuilt")

    for key in ALL_KEYS:
        tree = service.trees[key]
        comment_count = sum(len(node.comments) for node in tree.roots)
        row = [key.slug, str(len(tree)), str(comment_count)]
        if changed is not None:
            row.append("yes" if changed.get(key) else "no")
        table.add_row(*row)
    return table


@app.command()
def refresh(
    owner: str | None = OWNER_OPTION,
    repo: str | None = REPO_OPTION,
    token: str | None = TOKEN_OPTION,
    items_per_page: int | None = ITEMS_PER_PAGE_OPTION,
    max_items: int | None = MAX_ITEMS_OPTION,
    cache_dir: Path | None = CACHE_DIR_OPTION,
) -> None:
    """Fetch all four partitions once and update the disk cache.

    Examples:
        github-issue-sync refresh --owner octocat --repo hello-world
        github-issue-sync refresh --max-items 100 --items-per-page 50
    """
    config = _load_config(owner, repo, token, items_per_page, max_items, cache_dir)

    async def _run() -> None:
        service = SyncService(config)
        try:
            changed = await service.refresh_all(expire=True)
            service.record_refresh()
            console.print(_partitions_table(service, changed))
            if service.limiter.is_limited():
                console.print(
                    "⚠️  [yellow]Rate limited; results were served from the "
                    "disk cache[/yellow]"
                )
        finally:
            await service.aclose()

    asyncio.run(_run())


@app.command()
def watch(
    owner: str | None = OWNER_OPTION,
    repo: str | None = REPO_OPTION,
    token: str | None = TOKEN_OPTION,
    items_per_page: int | None = ITEMS_PER_PAGE_OPTION,
    max_items: int | None = MAX_ITEMS_OPTION,
    cache_dir: Path | None = CACHE_DIR_OPTION,
    refresh_interval: int | None = typer.Option(
        None, "--interval", help="Minutes between refreshes"
    ),
) -> None:
    """Keep the cache fresh, refreshing every interval until interrupted."""
    config = _load_config(
        owner, repo, token, items_per_page, max_items, cache_dir, refresh_interval
    )
    console.print(
        f"🔄 Watching {config.owner}/{config.repo} "
        f"every {config.refresh_interval} minute(s); Ctrl+C to stop"
    )

    async def _run() -> None:
        service = SyncService(config)
        stop = asyncio.Event()
        try:
            await service.run(stop)
        finally:
            await service.aclose()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("👋 Stopped")


def _change_state(
    number: int,
    new_state: EntityState,
    reason: str | None,
    wait: bool,
    config: SyncConfig,
) -> None:
    async def _run() -> int:
        service = SyncService(config)
        try:
            await service.refresh_all()
            entity = service.find_entity(number)
            if entity is None:
                console.print(
                    f"❌ [red]#{number} is not among the cached issues and pull "
                    f"requests of {config.owner}/{config.repo}[/red]"
                )
                return 1

            result = await service.apply_state_change(entity, new_state, reason)
            if result.skipped:
                console.print(f"ℹ️  {result.message}")
                return 0
            if not result.success:
                console.print(
                    Panel(
                        escape(result.message),
                        title=f"Failed to Update #{number}",
                        border_style="red",
                    )
                )
                return 1

            console.print(f"✅ {result.message}")
            if wait and not await service.wait_for_state(number, new_state):
                console.print(
                    f"⚠️  [yellow]GitHub does not report #{number} as "
                    f"{new_state.value} yet[/yellow]"
                )
            return 0
        finally:
            await service.aclose()

    exit_code = asyncio.run(_run())
    if exit_code:
        raise typer.Exit(exit_code)


@app.command()
def close(
    number: int = typer.Argument(..., help="Issue or pull request number"),
    reason: str = typer.Option(
        "completed", "--reason", help="completed, not_planned or duplicate"
    ),
    wait: bool = WAIT_OPTION,
    owner: str | None = OWNER_OPTION,
    repo: str | None = REPO_OPTION,
    token: str | None = TOKEN_OPTION,
) -> None:
    """Close an issue and move it to the closed partition."""
    if reason not in CLOSE_REASONS:
        console.print(
            f"❌ [red]Error: --reason must be one of {', '.join(CLOSE_REASONS)}[/red]"
        )
        raise typer.Exit(1)
    config = _load_config(owner, repo, token)
    _change_state(number, EntityState.CLOSED, reason, wait, config)


@app.command()
def reopen(
    number: int = typer.Argument(..., help="Issue or pull request number"),
    wait: bool = WAIT_OPTION,
    owner: str | None = OWNER_OPTION,
    repo: str | None = REPO_OPTION,
    token: str | None = TOKEN_OPTION,
) -> None:
    """Reopen a closed issue and move it to the open partition."""
    config = _load_config(owner, repo, token)
    _change_state(number, EntityState.OPEN, None, wait, config)


@app.command()
def status(
    owner: str | None = OWNER_OPTION,
    repo: str | None = REPO_OPTION,
    cache_dir: Path | None = CACHE_DIR_OPTION,
) -> None:
    """Show what is in the disk cache without contacting GitHub."""
    config = _load_config(
        owner, repo, None, cache_dir=cache_dir, require_token=False
    )
    if config.owner is None or config.repo is None:
        raise typer.Exit(1)
    disk = DiskCache(config.cache_dir, config.owner, config.repo)

    table = Table(title="Disk Cache")
    table.add_column("Partition", style="cyan")
    table.add_column("Cached Items", style="green", justify="right")
    for key in ALL_KEYS:
        snapshot = deserialize_entities(disk.load(key.slug))
        table.add_row(key.slug, "-" if snapshot is None else str(len(snapshot)))
    console.print(table)

    stats = disk.get_stats()
    console.print(f"📁 Cache path: {stats['path']}")
    console.print(f"📦 {stats['files']} files, {stats['total_size_mb']} MB")
    last = read_last_refresh(disk)
    if last:
        stamp = datetime.fromtimestamp(last).strftime("%Y-%m-%d %H:%M")
        console.print(f"🕒 Last refresh: {stamp}")
    else:
        console.print("🕒 Never refreshed")


@app.command()
def version() -> None:
    """Show version information."""
    from github_issue_sync import __version__

    console.print(f"GitHub Issue Sync v{__version__}")


if __name__ == "__main__":
    app()
