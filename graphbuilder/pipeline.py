"""End-to-end runs.

``build_surrogate_graph``: surrogate id path

    tokenize -> shuffle by element id -> merge (vertex/edge lists)
    -> HashId -> SortDict -> SortEdge -> TransEdge pass 1 -> pass 2
    -> optional CSR -> optional vertex-cut partitioning

``load_into_store``: external store path

    tokenize -> sink pass 1 (insert vertices, tag edges) -> sink pass 2

Both validate the configuration before reading any record, work in a
temporary directory and remove it on every exit path.
"""

import functools
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from graphbuilder.config import PipelineConfig
from graphbuilder.dense_ids import VDATA_DIR, VIDMAP_DIR, DenseIdStats, assign_dense_ids
from graphbuilder.dictionary import DictionaryShardBuilder, DictionaryStats
from graphbuilder.edge_join import EdgeJoinResult, EdgeRepartitionJoin
from graphbuilder.errors import ConfigurationError, StatusCode
from graphbuilder.execution import (
    EXECUTOR_ENV,
    describe_executor,
    get_executor_class,
    is_gil_enabled,
    run_tasks,
)
from graphbuilder.graph import CSRGraph
from graphbuilder.hashing import PartitionHasher
from graphbuilder.ingress import IngressResult, partition_edges
from graphbuilder.keyfunctions import ElementIdKeyFunction
from graphbuilder.merge import EDGE_LIST_DIR, VERTEX_LIST_DIR, MergeStats, merge_bucket
from graphbuilder.shuffle import shuffle_elements
from graphbuilder.sink import ExternalSinkIdPropagator, SinkStats
from graphbuilder.store import open_store
from graphbuilder.tokenizers import TokenizeStats, get_tokenizer, tokenize_files

logger = logging.getLogger(__name__)

MERGED_DIR = "merged"
DICTIONARY_DIR = "dictionary"
RESOLVED_DIR = "resolved"
CSR_DIR = "csr"
PARTITIONS_DIR = "partitions"


@dataclass
class BuildSummary:
    output_dir: Path
    tokenize: TokenizeStats = field(default_factory=TokenizeStats)
    merge: MergeStats = field(default_factory=MergeStats)
    dense_ids: DenseIdStats = field(default_factory=DenseIdStats)
    dictionary: DictionaryStats = field(default_factory=DictionaryStats)
    edge_join: EdgeJoinResult = field(default_factory=EdgeJoinResult)
    graph: Optional[CSRGraph] = None
    ingress: Optional[IngressResult] = None
    seconds: float = 0.0

    @property
    def resolved_edge_paths(self) -> List[Path]:
        return self.edge_join.output_paths


@dataclass
class LoadSummary:
    store_path: Optional[Path]
    tokenize: TokenizeStats = field(default_factory=TokenizeStats)
    sink: SinkStats = field(default_factory=SinkStats)
    seconds: float = 0.0


def _check_inputs(paths):
    paths = [Path(p) for p in paths]
    if not paths:
        raise ConfigurationError("no input files given", status=StatusCode.UNABLE_TO_LOAD_INPUT_FILE)
    for path in paths:
        if not path.is_file():
            raise ConfigurationError(
                f"input file not found: {path}", status=StatusCode.UNABLE_TO_LOAD_INPUT_FILE
            )
    return paths


def _log_start(name, config, executor_class):
    override = os.environ.get(EXECUTOR_ENV, "")
    override_info = f", {EXECUTOR_ENV}={override}" if override else ""
    logger.info(
        "Starting %s: partitions=%d, lines_per_shard=%d, workers=%s, executor=%s, GIL=%s%s",
        name,
        config.num_partitions,
        config.lines_per_shard,
        "auto" if config.workers is None else config.workers,
        describe_executor(executor_class),
        "enabled" if is_gil_enabled() else "disabled",
        override_info,
    )


def build_surrogate_graph(input_paths, output_dir, config: Optional[PipelineConfig] = None,
                          build_csr: bool = False) -> BuildSummary:
    """Resolve raw ids in the input into dense surrogate ids.

    Writes under ``output_dir``:

    - ``merged/vertices``, ``merged/edges``: unique vertex and edge lists
    - ``vidmap``, ``vdata``: HashId output
    - ``dictionary``: sharded raw-id dictionary with its manifest
    - ``resolved``: ``srcId<TAB>dstId<TAB>json`` edges
    - ``csr``: mmap-friendly CSR arrays when ``build_csr`` is set
    - ``partitions``: per-partition edges and vertex records when
      ``config.ingress`` names a strategy
    """
    config = (config or PipelineConfig()).validate()
    input_paths = _check_inputs(input_paths)
    tokenizer = get_tokenizer(config.tokenizer)
    executor_class = get_executor_class(config.executor)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    # Leftovers of an earlier run must go.
    for name in (MERGED_DIR, VIDMAP_DIR, VDATA_DIR, DICTIONARY_DIR, RESOLVED_DIR, CSR_DIR,
                 PARTITIONS_DIR):
        shutil.rmtree(output_dir / name, ignore_errors=True)
    summary = BuildSummary(output_dir=output_dir)

    total_start = time.perf_counter()
    _log_start("surrogate id build", config, executor_class)
    tmp_dir = Path(tempfile.mkdtemp(prefix="graphbuilder_build_"))
    try:
        # Initial merge: both directions of a pair share a bucket.
        t0 = time.perf_counter()
        hasher = PartitionHasher(config.num_partitions)
        bucket_paths, _ = shuffle_elements(
            tokenize_files(input_paths, tokenizer, summary.tokenize),
            ElementIdKeyFunction(),
            hasher,
            tmp_dir / "create",
        )
        merged_dir = output_dir / MERGED_DIR
        tasks = [
            (bucket, str(path), str(merged_dir), config.vertex_combiner,
             config.edge_combiner, config.clean_bidirectional)
            for bucket, path in sorted(bucket_paths.items())
        ]
        for stats in run_tasks(merge_bucket, tasks, executor_class, config.workers):
            summary.merge.add(stats)
        if summary.tokenize.malformed_lines:
            logger.warning("Tokenize: %d malformed lines skipped (read=%d)",
                           summary.tokenize.malformed_lines, summary.tokenize.lines_read)
        logger.info("Merge done: %d vertices, %d edges (%d self loops, %d reverse duplicates "
                    "dropped) in %.2fs",
                    summary.merge.vertices_out, summary.merge.edges_out,
                    summary.merge.self_loops_dropped, summary.merge.bidirectional_dropped,
                    time.perf_counter() - t0)

        vertex_paths = sorted((merged_dir / VERTEX_LIST_DIR).glob("part-*"))
        edge_paths = sorted((merged_dir / EDGE_LIST_DIR).glob("part-*"))

        summary.dense_ids = assign_dense_ids(
            vertex_paths, output_dir, config.lines_per_shard, tmp_dir,
            executor_class, config.workers,
        )

        dictionary_dir = output_dir / DICTIONARY_DIR
        builder = DictionaryShardBuilder(config.dictionary_shards)
        summary.dictionary = builder.build(
            sorted((output_dir / VIDMAP_DIR).glob("part-*")), dictionary_dir,
            executor_class, config.workers,
        )

        join = EdgeRepartitionJoin(dictionary_dir, config.num_partitions,
                                   executor_class, config.workers)
        summary.edge_join = join.run(edge_paths, tmp_dir / "join", output_dir / RESOLVED_DIR)

        if build_csr:
            summary.graph = CSRGraph.from_edge_files(summary.resolved_edge_paths,
                                                     workers=config.workers)
            summary.graph.save_mmap(output_dir / CSR_DIR)

        if config.ingress:
            summary.ingress = partition_edges(
                summary.resolved_edge_paths,
                output_dir / PARTITIONS_DIR,
                config.ingress_partitions,
                config.ingress,
                vdata_paths=sorted((output_dir / VDATA_DIR).glob("part-*")),
                seed=config.seed,
                combiner=config.vertex_combiner,
                executor_class=executor_class,
                workers=config.workers,
            )
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)

    summary.seconds = time.perf_counter() - total_start
    logger.info("Build done: %d edges resolved, %d misses (total %.2fs)",
                summary.edge_join.edges_resolved, summary.edge_join.misses, summary.seconds)
    return summary


def load_into_store(input_paths, store_path=None, config: Optional[PipelineConfig] = None,
                    store_factory=None, store_kind: str = "lmdb") -> LoadSummary:
    """Load the input into an external graph store.

    ``store_factory`` (a zero-argument callable) takes precedence over
    ``store_kind``/``store_path``.
    """
    config = (config or PipelineConfig()).validate()
    input_paths = _check_inputs(input_paths)
    tokenizer = get_tokenizer(config.tokenizer)
    if store_factory is None:
        if store_path is None:
            raise ConfigurationError("a store path or a store factory is required")
        store_factory = functools.partial(open_store, store_kind, str(store_path))
    summary = LoadSummary(store_path=Path(store_path) if store_path else None)

    total_start = time.perf_counter()
    _log_start("store load", config, None)
    tmp_dir = Path(tempfile.mkdtemp(prefix="graphbuilder_load_"))
    try:
        propagator = ExternalSinkIdPropagator(
            store_factory,
            config.num_partitions,
            vertex_combiner=config.vertex_combiner,
            edge_combiner=config.edge_combiner,
            clean_bidirectional=config.clean_bidirectional,
            commit_batch_size=config.commit_batch_size,
        )
        summary.sink = propagator.run(
            tokenize_files(input_paths, tokenizer, summary.tokenize), tmp_dir
        )
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)

    summary.seconds = time.perf_counter() - total_start
    logger.info("Load done: %d vertices, %d edges (total %.2fs)",
                summary.sink.vertices_inserted, summary.sink.edges_inserted, summary.seconds)
    return summary
