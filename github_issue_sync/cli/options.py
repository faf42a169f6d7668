"""Shared CLI option definitions so every command spells them the same way."""

import typer

OWNER_OPTION = typer.Option(
    None, "--owner", "-o", help="Repository owner (defaults to GITHUB_OWNER)"
)

REPO_OPTION = typer.Option(
    None, "--repo", "-r", help="Repository name (defaults to GITHUB_REPO)"
)

TOKEN_OPTION = typer.Option(
    None, "--token", help="GitHub API token (defaults to GITHUB_TOKEN env var)"
)

ITEMS_PER_PAGE_OPTION = typer.Option(
    None, "--items-per-page", help="Records requested per page (1-100)"
)

MAX_ITEMS_OPTION = typer.Option(
    None, "--max-items", help="Maximum records kept per partition (1-1000)"
)

CACHE_DIR_OPTION = typer.Option(
    None, "--cache-dir", help="Disk cache root directory"
)

WAIT_OPTION = typer.Option(
    False, "--wait", "-w", help="Poll GitHub until the new state is visible"
)
