#!/usr/bin/env python3
"""
Batch Indexer Runner
Embeds pending records and loads them into the vector index. Exits non-zero
when the run is aborted by a safety valve or an authentication failure.
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from catalog_recommender.core.bootstrap import create_engine


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Embed pending records into the vector index")
    parser.add_argument("--db-path", default=None, help="Record store path (default: DB_PATH)")
    parser.add_argument("--record-id", action="append", dest="record_ids",
                        help="Only process this record (repeatable)")
    parser.add_argument("--reprocess-failed", action="store_true",
                        help="Move FAILED records back to PENDING before the run")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads (default: INDEX_WORKERS)")
    parser.add_argument("--chunk-size", type=int, default=None, help="Records per provider call")
    parser.add_argument("--json", action="store_true", help="Print the run report as JSON")
    return parser.parse_args(argv)


def main(argv=None):
    """Run one indexing pass over pending records."""
    args = parse_args(argv)

    engine = create_engine(db_path=args.db_path, warm=False,
                           workers=args.workers, chunk_size=args.chunk_size)

    if args.reprocess_failed:
        requeued = engine.indexer.reprocess_failed(args.record_ids)
        print(f"✓ Re-queued {requeued} failed records")

    print(f"Record status before run: {engine.record_store.count_by_status()}")
    print("Starting batch indexing...")

    report = engine.indexer.index_batch(args.record_ids)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(f"Processed {report.processed} records "
              f"({report.embedded} embedded, {report.failed} failed) "
              f"in {report.duration_sec:.1f}s over {report.chunks_processed} chunks")

    if report.aborted:
        print(f"ERROR: Run aborted: {report.abort_reason}")
        sys.exit(1)

    print(f"Record status after run: {engine.record_store.count_by_status()}")
    print("Indexing complete!")


if __name__ == "__main__":
    main()
