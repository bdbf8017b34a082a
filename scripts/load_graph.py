#!/usr/bin/env python3
"""
CLI tool to load raw records into an LMDB graph store.

Example:
    graphbuilder-load nodes.jsonl edges.jsonl --store graph.lmdb
"""

import argparse
import logging
import sys
from pathlib import Path

from graphbuilder import load_into_store

from scripts.common import add_pipeline_arguments, config_from_args, configure_logging, fatal_exit


def main():
    parser = argparse.ArgumentParser(
        description="Deduplicate raw records and insert them into a graph store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic usage
  graphbuilder-load nodes.jsonl edges.jsonl --store graph.lmdb

  # Count duplicate edges and commit every 50k edges
  graphbuilder-load edges.jsonl --store graph.lmdb \\
      --edge-combiner count --commit-batch-size 50000
        """,
    )

    add_pipeline_arguments(parser)

    parser.add_argument(
        "--store", "-s", required=True, type=Path, help="LMDB store directory"
    )

    parser.add_argument(
        "--commit-batch-size",
        type=int,
        help="Edges inserted between commits (default: 10,000)",
    )

    args = parser.parse_args()
    configure_logging(getattr(logging, args.log_level))

    try:
        config = config_from_args(args, commit_batch_size=args.commit_batch_size)
        summary = load_into_store(args.inputs, args.store, config)
    except Exception as e:
        fatal_exit(e)

    print("\nGraph loaded successfully!")
    print(f"  Vertices inserted: {summary.sink.vertices_inserted:,}")
    print(f"  Edges inserted: {summary.sink.edges_inserted:,}")
    print(f"  Unresolved references: "
          f"{summary.sink.source_misses + summary.sink.target_misses:,}")
    print(f"  Commits: {summary.sink.commits:,}")
    print(f"  Store: {args.store}")
    print(f"  Time: {summary.seconds:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
