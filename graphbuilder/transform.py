"""Per-vertex edge value transforms.

Edges are grouped by one endpoint (``source`` or ``target``). Within a group
the chosen edge value is folded with a reduce function, and an apply function
then combines every edge's own value with that result. The classic use is
normalising out-edge weights: reduce with ``sum``, apply ``divide``.

    r = reduce.identity()
    for value in group: r = reduce.reduce(value, r)
    for each edge:      edge[value_key] = apply.reduce(value, r)

Input and output are ``src<TAB>dst[<TAB>json]`` edge files. An edge without
``value_key`` in its data counts as ``1``.
"""

import json
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from graphbuilder.errors import ConfigurationError, RecordParseError, StatusCode
from graphbuilder.execution import run_tasks
from graphbuilder.hashing import PartitionHasher
from graphbuilder.shuffle import BucketWriter, read_lines, split_fields

logger = logging.getLogger(__name__)

SOURCE = "source"
TARGET = "target"
OUTPUT_PREFIX = "transformed-r-"


class Functional:
    """A value fold: ``acc = reduce(value, acc)`` starting at ``identity()``."""

    name = None

    def identity(self):
        raise NotImplementedError

    def reduce(self, value, accumulated):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class SumFunc(Functional):
    name = "sum"

    def identity(self):
        return 0

    def reduce(self, value, accumulated):
        return accumulated + value


class CountFunc(Functional):
    name = "count"

    def identity(self):
        return 0

    def reduce(self, value, accumulated):
        return accumulated + 1


class MaxFunc(Functional):
    name = "max"

    def identity(self):
        return float("-inf")

    def reduce(self, value, accumulated):
        return max(value, accumulated)


class DivideFunc(Functional):
    """As an apply function: the edge value divided by the group result."""

    name = "divide"

    def identity(self):
        return 1

    def reduce(self, value, accumulated):
        if accumulated == 0:
            return 0.0
        return value / accumulated


FUNCTIONALS = {cls.name: cls for cls in (SumFunc, CountFunc, MaxFunc, DivideFunc)}


def get_functional(name) -> Functional:
    if isinstance(name, Functional):
        return name
    try:
        return FUNCTIONALS[name]()
    except KeyError:
        raise ConfigurationError(
            f"unknown function {name!r}; choose from {sorted(FUNCTIONALS)}",
            status=StatusCode.CLASS_INSTANTIATION_ERROR,
        ) from None


@dataclass
class TransformStats:
    edges_in: int = 0
    edges_out: int = 0
    groups: int = 0
    parse_errors: int = 0

    def add(self, other):
        self.edges_in += other.edges_in
        self.edges_out += other.edges_out
        self.groups += other.groups
        self.parse_errors += other.parse_errors


def _parse_edge(line):
    src, dst, edata = split_fields(line, 3)
    data = {}
    if edata:
        try:
            data = json.loads(edata)
        except json.JSONDecodeError as exc:
            raise RecordParseError(f"invalid edge data: {exc}", line=line) from exc
        if not isinstance(data, dict):
            raise RecordParseError("edge data is not a JSON object", line=line)
    return src, dst, data


def transform_group(edges, reduce_fn, apply_fn, value_key):
    """Transform the ``(src, dst, data)`` edges of one group in place."""
    values = [data.get(value_key, 1) for _, _, data in edges]
    result = reduce_fn.identity()
    for value in values:
        result = reduce_fn.reduce(value, result)
    for (_, _, data), value in zip(edges, values):
        data[value_key] = apply_fn.reduce(value, result)
    return edges


def _transform_bucket(args):
    bucket, path, out_dir, endpoint, reduce_name, apply_name, value_key = args
    reduce_fn = get_functional(reduce_name)
    apply_fn = get_functional(apply_name)
    stats = TransformStats()
    groups = {}
    for line in read_lines(path):
        stats.edges_in += 1
        try:
            src, dst, data = _parse_edge(line)
        except RecordParseError as exc:
            stats.parse_errors += 1
            logger.warning("bucket %d: skipping edge: %s: %r", bucket, exc, line)
            continue
        key = src if endpoint == SOURCE else dst
        groups.setdefault(key, []).append((src, dst, data))

    with open(Path(out_dir) / f"{OUTPUT_PREFIX}{bucket:05d}", "w", encoding="utf-8") as out:
        for key in sorted(groups):
            for src, dst, data in transform_group(groups[key], reduce_fn, apply_fn, value_key):
                out.write(f"{src}\t{dst}\t{json.dumps(data, separators=(',', ':'))}\n")
                stats.edges_out += 1
            stats.groups += 1
    return stats


def transform_edges(edge_paths, out_dir, work_dir, endpoint=SOURCE, reduce_fn="sum",
                    apply_fn="divide", value_key="weight", num_partitions=16,
                    executor_class=None, workers=None) -> TransformStats:
    """Shuffle edges by ``endpoint`` and transform each group's values."""
    if endpoint not in (SOURCE, TARGET):
        raise ConfigurationError(f"endpoint must be {SOURCE!r} or {TARGET!r}, got {endpoint!r}")
    get_functional(reduce_fn)
    get_functional(apply_fn)
    hasher = PartitionHasher(num_partitions)
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    for stale in out_dir.glob(f"{OUTPUT_PREFIX}*"):
        stale.unlink()
    shuffle_dir = Path(work_dir) / "transform"
    shutil.rmtree(shuffle_dir, ignore_errors=True)

    t0 = time.perf_counter()
    total = TransformStats()
    field_index = 0 if endpoint == SOURCE else 1
    with BucketWriter(shuffle_dir, "transform-{bucket:05d}") as writer:
        for path in edge_paths:
            for line in read_lines(path):
                try:
                    fields = split_fields(line, 3)
                except RecordParseError as exc:
                    total.parse_errors += 1
                    logger.warning("%s: skipping edge: %s", Path(path).name, exc)
                    continue
                writer.write_line(hasher(fields[field_index]), line)

    tasks = [
        (bucket, str(path), str(out_dir), endpoint, reduce_fn, apply_fn, value_key)
        for bucket, path in sorted(writer.paths().items())
    ]
    for stats in run_tasks(_transform_bucket, tasks, executor_class, workers):
        total.add(stats)
    shutil.rmtree(shuffle_dir, ignore_errors=True)
    logger.info("Edge transform done: %d edges in %d %s groups (%s, %s) in %.2fs",
                total.edges_out, total.groups, endpoint, reduce_fn, apply_fn,
                time.perf_counter() - t0)
    return total
