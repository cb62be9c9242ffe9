#!/usr/bin/env python3
"""
Recompute every category's productCount from the active products.

Runs one batch reconciliation against the configured document store
(STORE_BACKEND / SUPABASE_URL / SUPABASE_SERVICE_KEY) and prints a summary.

Usage:
    # From project root, with venv active:
    PYTHONPATH=src python scripts/sync_category_counts.py

    # Print the raw result as JSON (for cron logs):
    PYTHONPATH=src python scripts/sync_category_counts.py --json

    # Only show the currently persisted counts, write nothing:
    PYTHONPATH=src python scripts/sync_category_counts.py --list
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv()

from config.database import get_document_store
from core.logging import configure_logging
from realtime_sync.reconciler import CategoryCountReconciler
from search.errors import QueryExecutionError, ReconciliationError


async def list_counts(reconciler: CategoryCountReconciler) -> int:
    records = await reconciler.list_category_counts()
    for record in records:
        print(f"  {record.category_id:<30} {record.product_count:>6}  {record.name or ''}")
    print(f"\n{len(records)} categories")
    return 0


async def sync_counts(reconciler: CategoryCountReconciler, as_json: bool) -> int:
    result = await reconciler.synchronize_category_counts()

    if as_json:
        print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
        return 0

    print(result.message)
    for entry in result.summary:
        print(f"  {entry.category_id:<30} {entry.count:>6}")
    if result.zero_count_categories:
        print(f"\nCategories with no active products ({len(result.zero_count_categories)}):")
        for category in result.zero_count_categories:
            print(f"  {category.id:<30} {category.name or ''}")
    return 0


async def main_async(args: argparse.Namespace) -> int:
    reconciler = CategoryCountReconciler(get_document_store())
    try:
        if args.list:
            return await list_counts(reconciler)
        return await sync_counts(reconciler, args.json)
    except (ReconciliationError, QueryExecutionError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Recompute category product counts")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--list", action="store_true", help="Only list persisted counts")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    configure_logging(json_logs=False, log_level="DEBUG" if args.verbose else "WARNING")
    return asyncio.run(main_async(args))


if __name__ == "__main__":
    sys.exit(main())
