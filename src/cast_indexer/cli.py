"""CLI for cast indexing."""
import asyncio
import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone

from .config import settings
from .database import create_engine_for, create_session_factory, init_db
from .indexer import CastIndexer
from .store import CastStore
from .suggester import select_suggester


logger = logging.getLogger(__name__)


def _session_factory():
    engine = create_engine_for(settings.database_url)
    init_db(engine)
    return create_session_factory(engine)


def cmd_init(args):
    """Initialize the database."""
    print("Initializing database...")
    _session_factory()
    print("Database initialized successfully")


async def cmd_index_async(args):
    """Run a single indexing cycle with an empty processed set."""
    SessionLocal = _session_factory()
    db = SessionLocal()

    try:
        async with CastIndexer(CastStore(db), suggester=select_suggester(settings)) as indexer:
            hashes = await indexer.index_casts(set(), limit=args.limit)
        print(f"Indexed {len(hashes)} casts")
        return hashes
    finally:
        db.close()


def cmd_index(args):
    """Run a single indexing cycle (sync wrapper)."""
    return asyncio.run(cmd_index_async(args))


async def cmd_watch_async(args):
    """Index on a fixed interval, carrying processed hashes between runs."""
    SessionLocal = _session_factory()
    suggester = select_suggester(settings)
    processed: set[str] = set()
    runs = 0

    while True:
        db = SessionLocal()
        indexer = CastIndexer(CastStore(db), suggester=suggester)
        try:
            async with indexer:
                hashes = await indexer.index_casts(frozenset(processed), limit=args.limit)
        except Exception as e:
            logger.exception(f"Indexing run failed: {e}")
            hashes = indexer.persisted_hashes
        finally:
            db.close()

        processed.update(hashes)
        runs += 1
        logger.info(f"Run {runs}: {len(hashes)} casts, {len(processed)} processed in total")

        if args.max_runs and runs >= args.max_runs:
            return processed

        await asyncio.sleep(args.interval)


def cmd_watch(args):
    """Index on a schedule (sync wrapper)."""
    return asyncio.run(cmd_watch_async(args))


def cmd_stats(args):
    """Show database statistics."""
    SessionLocal = _session_factory()
    db = SessionLocal()

    try:
        store = CastStore(db)
        tag_counts = store.count_tags()

        print("Cast Index Statistics")
        print("=" * 40)
        print(f"Casts: {store.count_casts()}")
        print(f"Explicit tags: {tag_counts['explicit']}")
        print(f"Tag mentions: {tag_counts['implicit']}")
        print(f"Suggested tags: {tag_counts['suggested']}")
    finally:
        db.close()


def cmd_tags(args):
    """List the most used tags in a recent window."""
    SessionLocal = _session_factory()
    db = SessionLocal()

    try:
        since = datetime.now(timezone.utc) - timedelta(hours=args.hours)
        top = CastStore(db).top_tags(since, limit=args.limit)

        if not top:
            print("No tags found")
            return

        print(f"Top tags in the last {args.hours}h (limit {args.limit}):")
        print("-" * 40)
        for tag, uses in top:
            print(f"  {tag}: {uses}")
    finally:
        db.close()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Cast Indexer - cast ingestion and tagging"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # init
    init_parser = subparsers.add_parser("init", help="Initialize database")
    init_parser.set_defaults(func=cmd_init)

    # index
    index_parser = subparsers.add_parser("index", help="Run one indexing cycle")
    index_parser.add_argument("--limit", type=int, help="Max casts to fetch")
    index_parser.set_defaults(func=cmd_index)

    # watch
    watch_parser = subparsers.add_parser("watch", help="Index on a schedule")
    watch_parser.add_argument("--limit", type=int, default=settings.index_limit, help="Max casts per run")
    watch_parser.add_argument("--interval", type=int, default=settings.index_interval_seconds, help="Seconds between runs")
    watch_parser.add_argument("--max-runs", type=int, help="Stop after this many runs")
    watch_parser.set_defaults(func=cmd_watch)

    # stats
    stats_parser = subparsers.add_parser("stats", help="Show statistics")
    stats_parser.set_defaults(func=cmd_stats)

    # tags
    tags_parser = subparsers.add_parser("tags", help="List top tags")
    tags_parser.add_argument("--hours", type=int, default=24, help="Window size in hours")
    tags_parser.add_argument("--limit", type=int, default=20, help="Number of tags")
    tags_parser.set_defaults(func=cmd_tags)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    args.func(args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
