"""Helpers shared by the graphbuilder console scripts."""

import argparse
import logging
import sys

from graphbuilder import PipelineConfig
from graphbuilder.combine import COMBINERS
from graphbuilder.errors import as_graphbuilder_error
from graphbuilder.execution import EXECUTOR_CHOICES
from graphbuilder.tokenizers import TOKENIZERS

logger = logging.getLogger("graphbuilder")


def configure_logging(level: int = logging.INFO) -> None:
    """Configure logging to write to stderr."""
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def add_pipeline_arguments(parser: argparse.ArgumentParser) -> None:
    """Options that map onto ``PipelineConfig`` fields.

    Every option defaults to ``None`` so that ``GRAPHBUILDER_*`` environment
    variables apply when it is not given.
    """
    parser.add_argument(
        "inputs", nargs="+", type=str, help="Raw input files"
    )

    parser.add_argument(
        "--tokenizer",
        choices=sorted(TOKENIZERS),
        help="Input record format (default: jsonl)",
    )

    parser.add_argument(
        "--partitions", "-n", type=int, dest="num_partitions",
        help="Number of hash partitions for every shuffle (default: 16)",
    )

    parser.add_argument(
        "--vertex-combiner", choices=sorted(COMBINERS),
        help="How duplicate vertex properties are merged (default: keep first)",
    )

    parser.add_argument(
        "--edge-combiner", choices=sorted(COMBINERS),
        help="How duplicate edge properties are merged (default: keep first)",
    )

    parser.add_argument(
        "--clean-bidirectional",
        action="store_true",
        default=None,
        help="Keep only one edge of each (a, b, label) / (b, a, label) pair",
    )

    parser.add_argument(
        "--executor", choices=EXECUTOR_CHOICES,
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


def config_from_args(args, **extra) -> PipelineConfig:
    return PipelineConfig.from_env(
        num_partitions=args.num_partitions,
        tokenizer=args.tokenizer,
        vertex_combiner=args.vertex_combiner,
        edge_combiner=args.edge_combiner,
        clean_bidirectional=args.clean_bidirectional,
        executor=args.executor,
        workers=args.workers,
        **extra,
    )


def fatal_exit(exc):
    """Log a fatal error and exit with its status code.

    Exceptions other than ``GraphBuilderError`` exit with
    ``UNHANDLED_IO_EXCEPTION`` (``OSError``) or ``INDESCRIBABLE_FAILURE``.
    """
    error = as_graphbuilder_error(exc)
    logger.debug("fatal error", exc_info=exc)
    logger.critical("%s", error)
    print(f"Error: {error}", file=sys.stderr)
    sys.exit(error.status.code)
