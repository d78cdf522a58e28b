#!/usr/bin/env python3
"""
Generate a usage report for the tag catalog.

Shows:
- Trending tags by useCount
- Tag counts per tag type

Usage:
    cd snapshot-tags-api
    uv run python scripts/tag_usage_report.py [--limit 20] [--watch]

Options:
    --limit N  Number of trending tags to show (default: 20)
    --watch    Continuously update the report every 30 seconds
"""

import argparse
import asyncio
import os
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from snapshot_api.services.document_store import MongoDocumentStore
from snapshot_api.services.models import TAG_TYPES, Tag
from snapshot_api.services.tag_repository import TagRepository


async def collect(repo: TagRepository, limit: int) -> dict:
    """Gather trending tags and per-type counts."""
    trending = await repo.get_trending_tags(limit)
    by_type = {}
    for tag_type in TAG_TYPES:
        by_type[tag_type] = len(await repo.get_tags_by_type(tag_type))
    return {"trending": trending, "by_type": by_type}


def print_report(trending: list[Tag], by_type: dict[str, int]):
    """Print the usage report."""
    print()
    print("=" * 60)
    print("  SnapShot Tag Usage Report")
    print(f"  Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 60)
    print()

    print("TRENDING TAGS")
    print("-" * 40)
    if not trending:
        print("  (no tags)")
    for rank, tag in enumerate(trending, start=1):
        print(f"  {rank:>3}. {tag.name:<24} {tag.tag_type:<9} {tag.use_count:>6}")
    print()

    print("TAGS BY TYPE")
    print("-" * 40)
    for tag_type, count in by_type.items():
        print(f"  {tag_type.capitalize() + ':':<12} {count:>6}")
    print(f"  {'Total:':<12} {sum(by_type.values()):>6}")
    print()


async def main():
    parser = argparse.ArgumentParser(
        description="Generate tag usage report"
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of trending tags to show (default: 20)"
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Continuously update the report"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=30,
        help="Update interval in seconds (default: 30)"
    )

    args = parser.parse_args()

    # Validate environment
    mongodb_url = os.environ.get("MONGODB_URL")
    if not mongodb_url:
        print("ERROR: MONGODB_URL environment variable not set")
        sys.exit(1)

    store = MongoDocumentStore(mongodb_url, os.environ.get("MONGODB_DATABASE", "snapshot"))
    store.connect()
    repo = TagRepository(store)

    try:
        if args.watch:
            print("Watching tag usage (Ctrl+C to stop)...")
            try:
                while True:
                    # Clear screen
                    print("\033[2J\033[H", end="")

                    report = await collect(repo, args.limit)
                    print_report(report["trending"], report["by_type"])

                    print(f"(Refreshing every {args.interval} seconds, Ctrl+C to stop)")

                    await asyncio.sleep(args.interval)
            except KeyboardInterrupt:
                print("\nStopped watching.")
        else:
            report = await collect(repo, args.limit)
            print_report(report["trending"], report["by_type"])
    finally:
        await store.close()


if __name__ == "__main__":
    asyncio.run(main())
