#!/usr/bin/env python3
"""
CLI tool to resolve raw vertex ids into dense surrogate ids.

Example:
    graphbuilder-build nodes.jsonl edges.jsonl --output out/ --partitions 8
"""

import argparse
import logging
import sys
from pathlib import Path

from graphbuilder import build_surrogate_graph
from graphbuilder.ingress import INGRESS

from scripts.common import add_pipeline_arguments, config_from_args, configure_logging, fatal_exit


def main():
    parser = argparse.ArgumentParser(
        description="Deduplicate raw records and resolve every edge to surrogate ids",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic usage
  graphbuilder-build nodes.jsonl edges.jsonl --output out/

  # Tab-separated input, 64 partitions, one edge per unordered pair
  graphbuilder-build graph.tsv --tokenizer tsv --output out/ \\
      --partitions 64 --clean-bidirectional

  # Also write a memory-mappable CSR of the result
  graphbuilder-build nodes.jsonl edges.jsonl --output out/ --csr

  # Vertex-cut partition the result into 9 partitions with greedy placement
  graphbuilder-build nodes.jsonl edges.jsonl --output out/ \\
      --ingress constrainedgreedy --ingress-partitions 9
        """,
    )

    add_pipeline_arguments(parser)

    parser.add_argument(
        "--output", "-o", required=True, type=Path, help="Output directory"
    )

    parser.add_argument(
        "--lines-per-shard",
        type=int,
        help="Vertex records per id-assignment shard (default: 6,000,000)",
    )

    parser.add_argument(
        "--csr",
        action="store_true",
        help="Build a CSR adjacency of the resolved graph under OUTPUT/csr",
    )

    parser.add_argument(
        "--ingress", choices=sorted(INGRESS),
        help="Vertex-cut partition the resolved graph under OUTPUT/partitions",
    )

    parser.add_argument(
        "--ingress-partitions", type=int,
        help="Number of vertex-cut partitions (default: --partitions)",
    )

    parser.add_argument(
        "--seed", type=int,
        help="Seed for the random choices of the ingress strategies",
    )

    args = parser.parse_args()
    configure_logging(getattr(logging, args.log_level))

    try:
        config = config_from_args(
            args,
            lines_per_shard=args.lines_per_shard,
            ingress=args.ingress,
            ingress_partitions=args.ingress_partitions,
            seed=args.seed,
        )
        summary = build_surrogate_graph(args.inputs, args.output, config, build_csr=args.csr)
    except Exception as e:
        fatal_exit(e)

    print("\nGraph built successfully!")
    print(f"  Vertices: {summary.dense_ids.ids_assigned:,}")
    print(f"  Edges resolved: {summary.edge_join.edges_resolved:,}")
    print(f"  Unresolved references: {summary.edge_join.misses:,}")
    print(f"  Self loops dropped: {summary.merge.self_loops_dropped:,}")
    print(f"  Reverse duplicates dropped: {summary.merge.bidirectional_dropped:,}")
    if summary.graph is not None:
        print(f"  CSR: {summary.graph.num_vertices:,} rows, {summary.graph.num_edges:,} edges")
    if summary.ingress is not None:
        print(f"  Partitions: {summary.ingress.num_partitions} ({summary.ingress.strategy}), "
              f"replication factor {summary.ingress.replication_factor:.2f}")
    print(f"  Output: {summary.output_dir}")
    print(f"  Time: {summary.seconds:.2f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
