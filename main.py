#!/usr/bin/env python3
"""
main.py – Content Launcher CLI
==============================
Entry point: search the content catalogs, show item details and install
mods with their dependencies into an instance.

    python main.py search sodium --category mods --loader fabric
    python main.py details modrinth AANobbMI
    python main.py install survival modrinth:AANobbMI --game-version 1.20.1 --loader fabric
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from catalog_aggregator import CatalogAggregator
from content_errors import AggregateFailure, ContentError
from content_models import (
    ALL_PLATFORMS,
    Category,
    CatalogFilters,
    CatalogPage,
    DependencyCandidate,
    InstalledDelta,
    ItemDetails,
    SortDirection,
    SortMode,
    Source,
    format_downloads,
)
from content_providers import build_providers
from fetch_client import FetchClient
from launcher_config import DEFAULT_CONFIG_PATH, ConfigStore
from mod_installer import DirectoryPlacement, JsonInstanceRegistry, ModInstaller

logger = logging.getLogger("content_launcher")
console = Console()

LOG_DIR = Path("logs")


# ──────────────────────────────────────────────
#  Logging
# ──────────────────────────────────────────────

def setup_logging(verbose: bool = False) -> None:
    LOG_DIR.mkdir(exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "launcher.log", encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )


# ──────────────────────────────────────────────
#  CLI
# ──────────────────────────────────────────────

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Content Launcher – search and install Minecraft content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to launcher_config.json")
    p.add_argument("--offline", action="store_true", help="Serve cached data only")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("search", help="Search all catalogs")
    s.add_argument("query", nargs="?", default=None)
    s.add_argument("--category", default=None, help="mods, modpacks, shaders, resource packs, ...")
    s.add_argument("--game-version", default=None)
    s.add_argument("--loader", default=None)
    s.add_argument("--platform", default=None, choices=[ALL_PLATFORMS] + [x.value for x in Source])
    s.add_argument("--sort", default=None, choices=[m.value for m in SortMode])
    s.add_argument("--direction", default=None, choices=[d.value for d in SortDirection])
    s.add_argument("--page", type=int, default=0)
    s.add_argument("--page-size", type=int, default=None)

    d = sub.add_parser("details", help="Show one item")
    d.add_argument("source", choices=[x.value for x in Source])
    d.add_argument("id")

    i = sub.add_parser("install", help="Install items and their dependencies")
    i.add_argument("instance")
    i.add_argument("items", nargs="+", metavar="SOURCE:ID")
    i.add_argument("--game-version", default=None)
    i.add_argument("--loader", default=None)
    i.add_argument("--include-optional", action="store_true")

    return p.parse_args(argv)


def effective_filters(args: argparse.Namespace, saved: CatalogFilters) -> CatalogFilters:
    """Command-line flags over the last-used filters."""
    return CatalogFilters(
        query=args.query if args.query is not None else saved.query,
        category=Category.parse(args.category) if args.category else saved.category,
        game_version=args.game_version if args.game_version is not None else saved.game_version,
        loader=args.loader if args.loader is not None else saved.loader,
        platform=args.platform or saved.platform,
        sort=args.sort or saved.sort,
        direction=args.direction or saved.direction,
        page=args.page,
        page_size=args.page_size or saved.page_size,
    )


def parse_item_ref(ref: str) -> DependencyCandidate:
    source, sep, native_id = ref.partition(":")
    if not sep or not native_id:
        raise ValueError(f"Expected SOURCE:ID, got {ref!r}")
    return DependencyCandidate(id=native_id, source=Source(source.lower()), required=True)


# ──────────────────────────────────────────────
#  Rendering
# ──────────────────────────────────────────────

def render_page(page: CatalogPage) -> None:
    t = Table(title=f"Results (page {page.page + 1})")
    t.add_column("Source", style="cyan")
    t.add_column("ID", style="dim")
    t.add_column("Name", style="bold")
    t.add_column("Author")
    t.add_column("Downloads", justify="right")
    t.add_column("Updated")
    for item in page.items:
        updated = item.updated.date().isoformat() if item.updated else "-"
        t.add_row(item.source.value, item.native_id, item.name, item.author, item.downloads, updated)
    console.print(t)
    console.print(f"[bold]Total:[/] {page.total}   [bold]More:[/] {'yes' if page.has_more else 'no'}")
    if page.partial:
        console.print(f"[yellow]Reduced results, unavailable: {', '.join(page.failed_sources)}[/]")


def render_details(details: ItemDetails) -> None:
    console.print(f"\n[bold green]{details.title}[/] by {details.author or 'unknown'} ({details.source.value})")
    console.print(details.description or "No description.")
    console.print(f"[bold]Downloads:[/] {format_downloads(details.raw_downloads)}")
    if details.url:
        console.print(f"[bold]URL:[/] {details.url}")
    if details.dependencies:
        console.print(f"[bold]Dependencies:[/] {', '.join(details.dependencies)}")

    t = Table(title="Versions")
    t.add_column("Version", style="cyan")
    t.add_column("Channel")
    t.add_column("Game versions")
    t.add_column("Loaders")
    t.add_column("File", style="dim")
    for v in details.versions[:20]:
        t.add_row(v.name, v.channel, ", ".join(v.game_versions), ", ".join(v.loaders), v.file_name or "-")
    console.print(t)


def render_delta(delta: InstalledDelta) -> None:
    t = Table(title=f"Installed into {delta.instance_id}")
    t.add_column("Name", style="bold")
    t.add_column("Source", style="cyan")
    t.add_column("Version")
    t.add_column("File", style="dim")
    t.add_column("Required by")
    for mod in delta.installed:
        t.add_row(mod.name, mod.source, mod.version_name, mod.file_name, mod.required_by or "-")
    console.print(t)
    if delta.detected_loader:
        console.print(f"[bold]Loader:[/] {delta.detected_loader}{' (changed)' if delta.loader_changed else ''}")
    if delta.offline:
        console.print("[yellow]Installed in offline context (no access token)[/]")


# ──────────────────────────────────────────────
#  Commands
# ──────────────────────────────────────────────

async def run_command(args: argparse.Namespace, store: ConfigStore) -> int:
    async with FetchClient(offline=args.offline, **store.network_settings()) as client:
        providers = build_providers(
            client,
            curseforge_api_key=store.curseforge_api_key(),
            private_catalog=store.private_catalog(),
        )
        aggregator = CatalogAggregator(providers)

        if args.command == "search":
            filters = effective_filters(args, store.load_filters())
            store.save_filters(filters)
            render_page(await aggregator.search_all(filters))

        elif args.command == "details":
            render_details(await aggregator.lookup(args.source, args.id))

        elif args.command == "install":
            selection: List[DependencyCandidate] = [parse_item_ref(r) for r in args.items]
            instances_dir = store.instances_dir()
            installer = ModInstaller(
                aggregator,
                DirectoryPlacement(instances_dir, client),
                user_provider=store.active_user,
                include_optional=args.include_optional,
            )
            delta = await installer.install(selection, args.game_version, args.loader, args.instance)
            JsonInstanceRegistry(instances_dir).apply(delta)
            render_delta(delta)

    return 0


# ──────────────────────────────────────────────
#  Entry Point
# ──────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    store = ConfigStore(args.config)

    try:
        return asyncio.run(run_command(args, store))
    except AggregateFailure as exc:
        logger.error("Search failed: %s", exc)
        console.print(f"[bold red]{exc}[/]")
    except ContentError as exc:
        logger.error("%s failed: %s", args.command, exc)
        console.print(f"[bold red]{args.command} failed:[/] {exc}")
    except ValueError as exc:
        console.print(f"[bold red]Invalid argument:[/] {exc}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
