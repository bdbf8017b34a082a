"""Dense surrogate id assignment (the HashId stage).

The unique vertex list (``rawId[<TAB>json]`` lines) is cut into shards of at
most ``lines_per_shard`` lines. Shard ``s`` assigns ids

    s * lines_per_shard + seq

where ``seq`` counts the records of that shard that parsed, in input order.
Because the stride equals the largest possible shard, two shards can never
produce the same id. Ids are dense over ``[0, vertex_count)`` only when every
shard except the last is full and no record failed to parse; otherwise they
are unique with gaps.

Each shard writes two streams from one pass:

    vidmap/part-SSSSS   surrogateId<TAB>rawId
    vdata/part-SSSSS    surrogateId<TAB>json properties
"""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from graphbuilder.errors import ConfigurationError, RecordParseError
from graphbuilder.execution import run_tasks

logger = logging.getLogger(__name__)

VIDMAP_DIR = "vidmap"
VDATA_DIR = "vdata"


@dataclass
class DenseIdStats:
    """Counters for one or more shards."""

    shards: int = 0
    records_read: int = 0
    ids_assigned: int = 0
    parse_errors: int = 0

    def add(self, other):
        self.shards += other.shards
        self.records_read += other.records_read
        self.ids_assigned += other.ids_assigned
        self.parse_errors += other.parse_errors
        return self


def parse_vertex_line(line):
    """Split a vertex list line into ``(raw_id, properties)``."""
    raw_id, sep, data = line.partition("\t")
    if not raw_id:
        raise RecordParseError("empty raw id", line=line)
    if not sep or not data:
        return raw_id, {}
    try:
        props = json.loads(data)
    except json.JSONDecodeError as exc:
        raise RecordParseError(f"invalid vertex data: {exc}", line=line) from exc
    if not isinstance(props, dict):
        raise RecordParseError("vertex data is not a JSON object", line=line)
    return raw_id, props


class DenseIdAssigner:
    """Assign block-strided dense ids to one shard of unique vertex records."""

    def __init__(self, lines_per_shard: int):
        if not isinstance(lines_per_shard, int) or lines_per_shard <= 0:
            raise ConfigurationError(
                f"lines_per_shard must be a positive integer, got {lines_per_shard!r}"
            )
        self.lines_per_shard = lines_per_shard

    def shard_base(self, shard_index: int) -> int:
        return shard_index * self.lines_per_shard

    def assign(self, shard_index, lines, stats=None):
        """Yield ``(surrogate_id, raw_id, properties)`` for one shard.

        Blank lines are ignored. Lines that do not parse are logged and get
        no id. A shard with more records than the stride is rejected because
        its ids would run into the next shard's block.
        """
        stats = stats if stats is not None else DenseIdStats()
        base = self.shard_base(shard_index)
        seq = 0
        for line in lines:
            line = line.rstrip("\n\r")
            if not line:
                continue
            stats.records_read += 1
            try:
                raw_id, props = parse_vertex_line(line)
            except RecordParseError as exc:
                stats.parse_errors += 1
                logger.warning("shard %d: skipping vertex record: %s: %r", shard_index, exc, line)
                continue
            if seq >= self.lines_per_shard:
                raise ConfigurationError(
                    f"shard {shard_index} holds more than {self.lines_per_shard} records"
                )
            yield base + seq, raw_id, props
            seq += 1
            stats.ids_assigned += 1

    def write_shard(self, shard_index, lines, out_dir) -> DenseIdStats:
        """Run ``assign`` and write the vidmap and vdata streams for one shard."""
        out_dir = Path(out_dir)
        vidmap_dir = out_dir / VIDMAP_DIR
        vdata_dir = out_dir / VDATA_DIR
        vidmap_dir.mkdir(parents=True, exist_ok=True)
        vdata_dir.mkdir(parents=True, exist_ok=True)

        stats = DenseIdStats(shards=1)
        name = f"part-{shard_index:05d}"
        with open(vidmap_dir / name, "w", encoding="utf-8") as vidmap, \
                open(vdata_dir / name, "w", encoding="utf-8") as vdata:
            for new_id, raw_id, props in self.assign(shard_index, lines, stats):
                vidmap.write(f"{new_id}\t{raw_id}\n")
                vdata.write(f"{new_id}\t{json.dumps(props, separators=(',', ':'))}\n")
        logger.debug(
            "shard %d: %d ids assigned, %d parse errors",
            shard_index, stats.ids_assigned, stats.parse_errors,
        )
        return stats


def split_into_shards(paths, lines_per_shard, shard_dir):
    """Cut vertex list files into shard files of at most ``lines_per_shard`` lines.

    Stands in for the input splitter of the execution substrate. Returns the
    shard file paths in shard order.
    """
    shard_dir = Path(shard_dir)
    shard_dir.mkdir(parents=True, exist_ok=True)
    shard_paths = []
    out = None
    count = 0
    try:
        for path in paths:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    if not line.strip():
                        continue
                    if out is None or count == lines_per_shard:
                        if out is not None:
                            out.close()
                        shard_path = shard_dir / f"shard-{len(shard_paths):05d}"
                        shard_paths.append(shard_path)
                        out = open(shard_path, "w", encoding="utf-8")
                        count = 0
                    out.write(line if line.endswith("\n") else line + "\n")
                    count += 1
    finally:
        if out is not None:
            out.close()
    return shard_paths


def _assign_shard_task(args):
    shard_index, shard_path, out_dir, lines_per_shard = args
    assigner = DenseIdAssigner(lines_per_shard)
    with open(shard_path, "r", encoding="utf-8") as f:
        return assigner.write_shard(shard_index, f, out_dir)


def assign_dense_ids(vertex_paths, out_dir, lines_per_shard, work_dir,
                     executor_class=None, workers=None) -> DenseIdStats:
    """Split the vertex list into shards and assign ids to every shard.

    Returns the combined stats. The vidmap stream lands in
    ``out_dir/vidmap`` and the renamed vertex data in ``out_dir/vdata``.
    """
    t0 = time.perf_counter()
    shard_paths = split_into_shards(vertex_paths, lines_per_shard, Path(work_dir) / "hashid-input")
    tasks = [(i, str(p), str(out_dir), lines_per_shard) for i, p in enumerate(shard_paths)]
    total = DenseIdStats()
    for stats in run_tasks(_assign_shard_task, tasks, executor_class, workers):
        total.add(stats)
    if total.parse_errors:
        logger.warning("HashId: %d vertex records skipped", total.parse_errors)
    logger.info(
        "HashId done: %d ids over %d shards in %.2fs",
        total.ids_assigned, total.shards, time.perf_counter() - t0,
    )
    return total
