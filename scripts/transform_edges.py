#!/usr/bin/env python3
"""
CLI tool to transform edge values per source or target vertex.

Example:
    graphbuilder-transform out/resolved/edges-r-* --output weights/
"""

import argparse
import logging
import shutil
import sys
import tempfile
from pathlib import Path

from graphbuilder.execution import EXECUTOR_CHOICES, get_executor_class
from graphbuilder.transform import FUNCTIONALS, SOURCE, TARGET, transform_edges

from scripts.common import configure_logging, fatal_exit


def main():
    parser = argparse.ArgumentParser(
        description="Reduce edge values per vertex and apply the result to every edge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Normalise out-edge weights so they sum to 1 per source
  graphbuilder-transform out/resolved/edges-r-* --output weights/

  # Divide each in-edge score by the largest in-edge score of its target
  graphbuilder-transform edges.tsv --output scaled/ --endpoint target \\
      --reduce max --value-key score
        """,
    )

    parser.add_argument("inputs", nargs="+", type=str, help="Edge files (src<TAB>dst<TAB>json)")

    parser.add_argument(
        "--output", "-o", required=True, type=Path, help="Output directory"
    )

    parser.add_argument(
        "--endpoint", choices=[SOURCE, TARGET], default=SOURCE,
        help="Group edges by this endpoint (default: source)",
    )

    parser.add_argument(
        "--reduce", choices=sorted(FUNCTIONALS), default="sum", dest="reduce_fn",
        help="Fold over the values of a group (default: sum)",
    )

    parser.add_argument(
        "--apply", choices=sorted(FUNCTIONALS), default="divide", dest="apply_fn",
        help="Combine each value with the group result (default: divide)",
    )

    parser.add_argument(
        "--value-key", default="weight",
        help="Edge data key holding the value; missing values count as 1 (default: weight)",
    )

    parser.add_argument(
        "--partitions", "-n", type=int, default=16, dest="num_partitions",
        help="Number of hash partitions for the shuffle (default: 16)",
    )

    parser.add_argument(
        "--executor", choices=EXECUTOR_CHOICES, default="auto",
        help="Worker pool policy (default: auto)",
    )

    parser.add_argument(
        "--workers", type=int, help="Worker pool size (default: CPU count)"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()
    configure_logging(getattr(logging, args.log_level))

    work_dir = Path(tempfile.mkdtemp(prefix="graphbuilder_transform_"))
    try:
        stats = transform_edges(
            args.inputs,
            args.output,
            work_dir,
            endpoint=args.endpoint,
            reduce_fn=args.reduce_fn,
            apply_fn=args.apply_fn,
            value_key=args.value_key,
            num_partitions=args.num_partitions,
            executor_class=get_executor_class(args.executor),
            workers=args.workers,
        )
    except Exception as e:
        fatal_exit(e)
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)

    print("\nEdges transformed successfully!")
    print(f"  Edges: {stats.edges_out:,}")
    print(f"  Groups: {stats.groups:,}")
    print(f"  Skipped lines: {stats.parse_errors:,}")
    print(f"  Output: {args.output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
