"""Command-line interface for Podroll.

Provides commands for running a sync, inspecting the cache, and serving the API.
"""

import argparse
import asyncio
import sys

from podroll.config import get_settings
from podroll.logging import setup_logging
from podroll.query import QueryService, Unavailable
from podroll.storage import PodrollStore, StoreUnavailable
from podroll.sync import PipelineResult, SyncRunResult, SyncScheduler


def _print_pipeline(result: PipelineResult | None) -> None:
    if result is None:
        return
    if result.skipped:
        print(f"  {result.stage}: skipped (not configured)")
    elif not result.success:
        print(f"  {result.stage}: FAILED - {result.error}")
    elif result.inserted is not None:
        print(
            f"  {result.stage}: {result.total} synced "
            f"({result.inserted} new, {result.updated} updated)"
        )
    else:
        print(f"  {result.stage}: {result.total} synced")


def _print_run(result: SyncRunResult) -> None:
    print(f"\nSync ({result.trigger}) at {result.timestamp:%Y-%m-%d %H:%M:%S}")
    if result.already_running:
        print("  Another sync is already running")
        return
    _print_pipeline(result.episodes)
    _print_pipeline(result.sources)


def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync against the configured aggregator."""
    setup_logging(log_level="INFO")
    settings = get_settings()

    store = PodrollStore()
    scheduler = SyncScheduler(store, settings.sync)
    try:
        result = asyncio.run(scheduler.run_once(trigger="cli"))
    finally:
        store.close()

    _print_run(result)
    return 0 if result.success else 1


def cmd_clear(args: argparse.Namespace) -> int:
    """Clear the cache (keeping settings) and resync."""
    setup_logging(log_level="INFO")
    settings = get_settings()

    store = PodrollStore()
    scheduler = SyncScheduler(store, settings.sync)
    try:
        result = asyncio.run(scheduler.clear_and_resync())
    except StoreUnavailable as e:
        print(f"Error: {e}")
        return 1
    finally:
        store.close()

    _print_run(result)
    return 0 if result.success else 1


def cmd_status(args: argparse.Namespace) -> int:
    """Show cache counts and last sync times."""
    setup_logging(log_level="WARNING")

    status = QueryService(PodrollStore()).get_status()
    if isinstance(status, Unavailable):
        print(f"\nStore unavailable: {status.message}")
        return 1

    print(f"\nEpisodes: {status.episode_count}")
    print(f"  Last sync: {status.last_episodes_sync or 'never'}")
    print(f"Sources:  {status.source_count}")
    print(f"  Last sync: {status.last_sources_sync or 'never'}")
    return 0


def cmd_episodes(args: argparse.Namespace) -> int:
    """List cached episodes, newest first."""
    setup_logging(log_level="WARNING")

    page = QueryService(PodrollStore()).list_episodes(
        limit=args.limit, offset=args.offset, source=args.source
    )
    if isinstance(page, Unavailable):
        print(f"\nStore unavailable: {page.message}")
        return 1

    if not page.items:
        print("\nNo episodes found.")
        print("Run: podroll sync")
        return 0

    print(f"\nShowing {len(page.items)} of {page.total} episodes\n")
    for i, ep in enumerate(page.items, page.offset + 1):
        podcast = ep.podcast.title if ep.podcast else "N/A"
        print(f"{i}. {ep.title}")
        print(f"   Podcast:   {podcast}")
        print(f"   Published: {ep.published:%Y-%m-%d %H:%M}")
        if ep.enclosure:
            print(f"   Audio:     {ep.enclosure.url}")
        print()

    if page.has_more:
        print(f"More available: --offset {page.offset + len(page.items)}")
    return 0


def cmd_sources(args: argparse.Namespace) -> int:
    """List podcast sources from the latest OPML snapshot."""
    setup_logging(log_level="WARNING")

    result = QueryService(PodrollStore()).list_sources(category=args.category)
    if isinstance(result, Unavailable):
        print(f"\nStore unavailable: {result.message}")
        return 1

    if not result.items:
        print("\nNo sources found.")
        return 0

    current = None
    for source in result.items:
        if source.category != current:
            current = source.category
            print(f"\n[{current or 'Uncategorized'}]")
        print(f"  {source.title}")
        print(f"    {source.xml_url}")

    print(f"\n{result.total} sources")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the FastAPI server with background sync."""
    import uvicorn

    host = args.host
    port = args.port
    print(f"\nStarting Podroll API on {host}:{port}")
    uvicorn.run("podroll.api:app", host=host, port=port, reload=args.reload)
    return 0


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="podroll",
        description="Podcast roll - sync episodes and OPML sources from an aggregator",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Run one sync now")
    sync_parser.set_defaults(func=cmd_sync)

    # clear command
    clear_parser = subparsers.add_parser("clear", help="Clear cached data and resync")
    clear_parser.set_defaults(func=cmd_clear)

    # status command
    st_parser = subparsers.add_parser("status", help="Show cache status")
    st_parser.set_defaults(func=cmd_status)

    # episodes command
    ep_parser = subparsers.add_parser("episodes", help="List cached episodes")
    ep_parser.add_argument("--limit", "-n", type=int, default=20, help="Episodes to show")
    ep_parser.add_argument("--offset", type=int, default=0, help="Episodes to skip")
    ep_parser.add_argument("--source", "-s", help="Filter by podcast title")
    ep_parser.set_defaults(func=cmd_episodes)

    # sources command
    src_parser = subparsers.add_parser("sources", help="List OPML sources")
    src_parser.add_argument("--category", "-c", help="Filter by category")
    src_parser.set_defaults(func=cmd_sources)

    # serve command
    sv_parser = subparsers.add_parser("serve", help="Start the API with background sync")
    sv_parser.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    sv_parser.add_argument("--port", "-p", type=int, default=8000, help="Port (default: 8000)")
    sv_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    sv_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
