#!/usr/bin/env python3
"""
Seed the tag catalog from a CSV file.

Tags are created out-of-band: the services only read them and move their
useCount. This script loads a CSV with the columns

    tag_id, name, tag_type, description

into the ``tags`` collection with useCount 0. Rows whose tag already exists
are skipped so the script can be re-run without resetting counters.

Usage:
    cd snapshot-tags-api
    uv run python scripts/seed_tags.py tags.csv

Options:
    --dry-run       Show what would be loaded without writing
    --verbose       Show detailed output for each tag
"""

import argparse
import asyncio
import csv
import os
import sys
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from snapshot_api.services.document_store import MongoDocumentStore
from snapshot_api.services.errors import TagNotFoundError
from snapshot_api.services.models import TAG_TYPES, Tag
from snapshot_api.services.tag_repository import TagRepository


def parse_tag(row: dict) -> Optional[Tag]:
    """
    Parse a tag from a CSV row.

    Returns None for rows without a name or with an unknown tag type.
    """
    name = (row.get("name") or "").strip()
    tag_type = (row.get("tag_type") or "").strip().lower()

    if not name or tag_type not in TAG_TYPES:
        return None

    return Tag(
        tag_id=(row.get("tag_id") or "").strip(),
        name=name,
        tag_type=tag_type,
        description=(row.get("description") or "").strip(),
    )


async def seed(csv_path: Path, repo: Optional[TagRepository], verbose: bool) -> dict:
    """Load tags from ``csv_path``. With ``repo=None`` nothing is written."""
    total = 0
    created = 0
    skipped_invalid = 0
    skipped_existing = 0

    with open(csv_path, "r", encoding="utf-8") as f:
        reader = csv.DictReader(f)

        for row in reader:
            total += 1

            tag = parse_tag(row)
            if tag is None:
                skipped_invalid += 1
                if verbose:
                    print(f"  Skipped row {total}: missing name or unknown tag_type")
                continue

            if repo is not None and tag.tag_id:
                try:
                    await repo.get_tag_by_id(tag.tag_id)
                    skipped_existing += 1
                    if verbose:
                        print(f"  Skipped {tag.tag_id}: already exists")
                    continue
                except TagNotFoundError:
                    pass

            if verbose:
                print(f"  Loading {tag.tag_id or '(new id)'}: {tag.tag_type} '{tag.name}'")

            if repo is not None:
                await repo.create_tag(tag)

            created += 1

    return {
        "total": total,
        "created": created,
        "skipped_invalid": skipped_invalid,
        "skipped_existing": skipped_existing,
    }


async def main():
    parser = argparse.ArgumentParser(
        description="Seed the tag catalog from CSV"
    )
    parser.add_argument(
        "csv",
        type=Path,
        help="Path to tags CSV file"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be loaded without writing"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show detailed output"
    )

    args = parser.parse_args()

    mongodb_url = os.environ.get("MONGODB_URL")
    if not mongodb_url and not args.dry_run:
        print("ERROR: MONGODB_URL environment variable not set")
        sys.exit(1)

    print(f"Reading tags from: {args.csv}")

    store = None
    repo = None
    if not args.dry_run:
        store = MongoDocumentStore(mongodb_url, os.environ.get("MONGODB_DATABASE", "snapshot"))
        store.connect()
        repo = TagRepository(store)

    try:
        stats = await seed(args.csv, repo, args.verbose)
    finally:
        if store is not None:
            await store.close()

    # Summary
    print()
    print("=" * 50)
    print("Tag Seeding Summary")
    print("=" * 50)
    print(f"Total rows:              {stats['total']}")
    print(f"Created:                 {stats['created']}")
    print(f"Skipped (invalid):       {stats['skipped_invalid']}")
    print(f"Skipped (already exist): {stats['skipped_existing']}")
    print()

    if args.dry_run:
        print("DRY RUN - no changes saved")


if __name__ == "__main__":
    asyncio.run(main())
