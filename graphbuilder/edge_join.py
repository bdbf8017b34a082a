"""Edge endpoint resolution (the SortEdge and TransEdge stages).

Rewrites every ``src<TAB>dst<TAB>edata`` edge of the unique edge list into
``srcId<TAB>dstId<TAB>edata`` without ever holding more than one dictionary
shard in memory per worker:

SortEdge:  partition edges by hash(src) into ``sortedge-{k:05d}``.
Pass 1:    worker ``k`` loads dictionary shard ``k``, replaces ``src`` by its
           surrogate id and appends the record to
           ``transedge-shard{k'}-m-{k:05d}`` where ``k' = hash(dst)``.
Pass 2:    worker ``k'`` gathers every ``transedge-shard{k'}-m-*`` file, loads
           dictionary shard ``k'``, replaces ``dst`` and writes
           ``edges-r-{k':05d}``.

Edges whose source or target has no dictionary entry are logged and dropped.
Pass 2 only starts after every pass-1 writer is closed. Intermediate and
output files left by an earlier run in the same directories are removed first.
"""

import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from graphbuilder.dictionary import read_manifest
from graphbuilder.errors import ConfigurationError, RecordParseError, StatusCode
from graphbuilder.execution import run_tasks
from graphbuilder.hashing import PartitionHasher
from graphbuilder.join import JoinStats, ShardFileLookup, resolve_or_log
from graphbuilder.shuffle import BucketWriter, list_bucket_files, read_lines, split_fields

logger = logging.getLogger(__name__)

SORTEDGE_DIR = "sortedge"
TRANSEDGE_DIR = "transedge"
TRANSEDGE_TOKEN = "transedge-shard{bucket}-m-"
OUTPUT_PREFIX = "edges-r-"


@dataclass
class EdgeJoinResult:
    sort_stats: JoinStats = field(default_factory=JoinStats)
    source_stats: JoinStats = field(default_factory=JoinStats)
    target_stats: JoinStats = field(default_factory=JoinStats)
    output_paths: List[Path] = field(default_factory=list)

    @property
    def edges_resolved(self):
        return self.target_stats.resolved

    @property
    def misses(self):
        return self.source_stats.misses + self.target_stats.misses


class SourceResolver:
    """Pass-1 worker: resolves edge sources, re-keys by target.

    Keeps its lookup between calls, so feeding it buckets in grouped order
    loads each dictionary shard once.
    """

    def __init__(self, dictionary_dir, num_partitions, out_dir):
        self.lookup = ShardFileLookup(dictionary_dir)
        self.hasher = PartitionHasher(num_partitions)
        self.out_dir = Path(out_dir)

    def process(self, bucket, lines) -> JoinStats:
        stats = JoinStats()
        loads_before = self.lookup.loads
        name_format = f"transedge-shard{{bucket}}-m-{bucket:05d}"
        with BucketWriter(self.out_dir, name_format) as writer:
            for line in lines:
                stats.records_in += 1
                try:
                    src, dst, edata = split_fields(line, 3)
                except RecordParseError as exc:
                    stats.parse_errors += 1
                    logger.warning("pass 1 bucket %d: skipping edge: %s: %r", bucket, exc, line)
                    continue
                src_id = resolve_or_log(self.lookup, bucket, src, line, stats)
                if src_id is None:
                    continue
                writer.write_line(self.hasher(dst), f"{src_id}\t{dst}\t{edata}")
        stats.table_loads = self.lookup.loads - loads_before
        return stats


class TargetResolver:
    """Pass-2 worker: resolves edge targets and writes final edges."""

    def __init__(self, dictionary_dir, out_dir):
        self.lookup = ShardFileLookup(dictionary_dir)
        self.out_dir = Path(out_dir)
        self.out_dir.mkdir(parents=True, exist_ok=True)

    def process(self, bucket, lines) -> JoinStats:
        stats = JoinStats()
        loads_before = self.lookup.loads
        with open(self.out_dir / f"{OUTPUT_PREFIX}{bucket:05d}", "w", encoding="utf-8") as out:
            for line in lines:
                stats.records_in += 1
                try:
                    src_id, dst, edata = split_fields(line, 3)
                except RecordParseError as exc:
                    stats.parse_errors += 1
                    logger.warning("pass 2 bucket %d: skipping edge: %s: %r", bucket, exc, line)
                    continue
                dst_id = resolve_or_log(self.lookup, bucket, dst, line, stats)
                if dst_id is None:
                    continue
                if edata:
                    out.write(f"{src_id}\t{dst_id}\t{edata}\n")
                else:
                    out.write(f"{src_id}\t{dst_id}\n")
        stats.table_loads = self.lookup.loads - loads_before
        return stats


def _chain_lines(paths):
    for path in paths:
        yield from read_lines(path)


def _source_pass_task(args):
    bucket, path, dictionary_dir, num_partitions, out_dir = args
    resolver = SourceResolver(dictionary_dir, num_partitions, out_dir)
    return resolver.process(bucket, read_lines(path))


def _target_pass_task(args):
    bucket, paths, dictionary_dir, out_dir = args
    resolver = TargetResolver(dictionary_dir, out_dir)
    return resolver.process(bucket, _chain_lines(paths))


class EdgeRepartitionJoin:
    """Two-pass repartition join of the edge list against a sharded dictionary.

    The dictionary must exist, be keyed by raw id and have exactly
    ``num_partitions`` shards; anything else is rejected here, before any
    edge is read.
    """

    def __init__(self, dictionary_dir, num_partitions: int, executor_class=None, workers=None):
        self.hasher = PartitionHasher(num_partitions)
        manifest = read_manifest(dictionary_dir)
        if manifest.key_space != "raw":
            raise ConfigurationError(
                f"edge join needs a raw-id keyed dictionary, {dictionary_dir} is "
                f"keyed by {manifest.key_space}",
                status=StatusCode.MISSING_DICTIONARY,
            )
        if manifest.num_shards != num_partitions:
            raise ConfigurationError(
                f"dictionary at {dictionary_dir} has {manifest.num_shards} shards but "
                f"edges are partitioned into {num_partitions} buckets",
                status=StatusCode.SHARD_COUNT_MISMATCH,
            )
        self.dictionary_dir = str(dictionary_dir)
        self.num_partitions = num_partitions
        self.executor_class = executor_class
        self.workers = workers

    def sort_edges(self, edge_paths, work_dir):
        """Partition edge list lines by hash(src). Returns ``({bucket: path}, stats)``."""
        stats = JoinStats()
        with BucketWriter(Path(work_dir) / SORTEDGE_DIR, "sortedge-{bucket:05d}") as writer:
            for path in edge_paths:
                for line in read_lines(path):
                    stats.records_in += 1
                    try:
                        src, _, _ = split_fields(line, 3)
                    except RecordParseError as exc:
                        stats.parse_errors += 1
                        logger.warning("SortEdge: skipping edge: %s: %r", exc, line)
                        continue
                    writer.write_line(self.hasher(src), line)
        return writer.paths(), stats

    def resolve_sources(self, bucket_paths: Dict[int, Path], work_dir) -> JoinStats:
        out_dir = Path(work_dir) / TRANSEDGE_DIR
        out_dir.mkdir(parents=True, exist_ok=True)
        tasks = [
            (bucket, str(path), self.dictionary_dir, self.num_partitions, str(out_dir))
            for bucket, path in sorted(bucket_paths.items())
        ]
        total = JoinStats()
        for stats in run_tasks(_source_pass_task, tasks, self.executor_class, self.workers):
            total.add(stats)
        return total

    def resolve_targets(self, work_dir, out_dir) -> JoinStats:
        trans_dir = Path(work_dir) / TRANSEDGE_DIR
        tasks = []
        for bucket in range(self.num_partitions):
            paths = list_bucket_files(trans_dir, bucket, TRANSEDGE_TOKEN)
            if paths:
                tasks.append((bucket, [str(p) for p in paths], self.dictionary_dir, str(out_dir)))
        total = JoinStats()
        for stats in run_tasks(_target_pass_task, tasks, self.executor_class, self.workers):
            total.add(stats)
        return total

    def run(self, edge_paths, work_dir, out_dir) -> EdgeJoinResult:
        """SortEdge, pass 1 and pass 2. Returns stats and the output files."""
        result = EdgeJoinResult()
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        for name in (SORTEDGE_DIR, TRANSEDGE_DIR):
            shutil.rmtree(Path(work_dir) / name, ignore_errors=True)
        for stale in out_dir.glob(f"{OUTPUT_PREFIX}*"):
            stale.unlink()

        t0 = time.perf_counter()
        bucket_paths, result.sort_stats = self.sort_edges(edge_paths, work_dir)
        logger.info("SortEdge done: %d edges into %d non-empty buckets in %.2fs",
                    result.sort_stats.records_in, len(bucket_paths), time.perf_counter() - t0)

        t1 = time.perf_counter()
        result.source_stats = self.resolve_sources(bucket_paths, work_dir)
        logger.info("TransEdge pass 1 done: %d sources resolved, %d misses, %d shard loads in %.2fs",
                    result.source_stats.resolved, result.source_stats.misses,
                    result.source_stats.table_loads, time.perf_counter() - t1)

        t2 = time.perf_counter()
        result.target_stats = self.resolve_targets(work_dir, out_dir)
        logger.info("TransEdge pass 2 done: %d edges resolved, %d misses in %.2fs",
                    result.target_stats.resolved, result.target_stats.misses,
                    time.perf_counter() - t2)

        result.output_paths = sorted(out_dir.glob(f"{OUTPUT_PREFIX}*"))
        return result
