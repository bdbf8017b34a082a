"""Vertex-cut partitioning of a resolved graph.

Every edge is assigned to exactly one of ``num_procs`` partitions by an
ingress strategy; a vertex is then present on every partition that holds one
of its edges. One of those partitions becomes the vertex's *owner*, the
others hold *mirrors*.

Edge ingress:    one sequential pass over the edge files. Each edge goes to
                 ``edges-{pid:05d}`` and emits a vertex fragment for both of
                 its endpoints into ``vfrag-{k:05d}`` where ``k = hash(vid)``.
                 Vertex data lines (``vid<TAB>json``) add fragments without a
                 partition.
Vertex records:  worker ``k`` folds the fragments of bucket ``k`` into one
                 ``VertexRecord`` per vertex, picks the owner and writes the
                 record to ``vrecords-{pid:05d}-m-{k:05d}`` for the owner and
                 every mirror.

Strategies:

``random``               ``hash(src, dst) mod n``.
``greedy``               Prefer partitions that already hold either endpoint,
                         then the least loaded one.
``constrainedrandom``    Random choice among the partitions allowed for both
                         endpoints by a grid constraint.
``constrainedgreedy``    Greedy choice among the same candidates.
``constrainedpdsrandom`` Random choice with a perfect difference set
                         constraint, or the grid when ``n`` is not
                         ``p*p + p + 1``.

The greedy strategies carry state from one edge to the next, so the edge pass
always runs in a single process.
"""

import json
import logging
import math
import random
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

import numpy as np

from graphbuilder.combine import get_combiner
from graphbuilder.errors import ConfigurationError, RecordParseError, StatusCode
from graphbuilder.execution import run_tasks
from graphbuilder.hashing import PartitionHasher, bucket_of, stable_hash
from graphbuilder.shuffle import BucketWriter, list_bucket_files, read_lines, split_fields

logger = logging.getLogger(__name__)

EDGES_PREFIX = "edges-"
VRECORD_TOKEN = "vrecords-{bucket:05d}-m-"
FRAGMENT_DIR = "vfrag"
META_NAME = "_META.json"

_TIE_TOLERANCE = 1e-5
_BALANCE_EPSILON = 0.01


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class Ingress:
    """Assigns an edge to a partition in ``[0, num_procs)``."""

    name = None

    def __init__(self, num_procs: int, seed: Optional[int] = None):
        if not isinstance(num_procs, int) or num_procs <= 0:
            raise ConfigurationError(
                f"partition count must be a positive integer, got {num_procs!r}"
            )
        self.num_procs = num_procs
        self.rng = random.Random(seed)

    def master(self, vid) -> int:
        """The partition a vertex hashes to."""
        return bucket_of(stable_hash(vid), self.num_procs)

    def compute_pid(self, source, target) -> int:
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}(num_procs={self.num_procs})"


class RandomIngress(Ingress):
    name = "random"

    def compute_pid(self, source, target):
        return bucket_of(stable_hash((source, target)), self.num_procs)


class GreedyIngress(Ingress):
    """Score every partition by load balance plus endpoint presence.

    ``score(j) = (max - load[j]) / (max - min + 0.01) + has(src, j) + has(dst, j)``
    where ``has(v, j)`` is 1 when ``j`` already holds an edge of ``v`` or is
    ``v``'s hash partition. Ties are broken at random.
    """

    name = "greedy"

    def __init__(self, num_procs, seed=None):
        super().__init__(num_procs, seed)
        self.loads = np.zeros(num_procs, dtype=np.int64)
        self.presence: Dict[object, Set[int]] = {}

    def _presence_mask(self, vid):
        mask = np.zeros(self.num_procs, dtype=np.float64)
        mask[list(self.presence.get(vid, ()))] = 1.0
        mask[self.master(vid)] = 1.0
        return mask

    def candidates(self, source, target):
        return np.arange(self.num_procs)

    def compute_pid(self, source, target):
        candidates = self.candidates(source, target)
        lo, hi = self.loads.min(), self.loads.max()
        balance = (hi - self.loads) / (hi - lo + _BALANCE_EPSILON)
        scores = balance + self._presence_mask(source) + self._presence_mask(target)
        scores = scores[candidates]
        best = candidates[np.abs(scores - scores.max()) < _TIE_TOLERANCE]
        pid = int(best[self.rng.randrange(len(best))])
        self.loads[pid] += 1
        self.presence.setdefault(source, set()).add(pid)
        self.presence.setdefault(target, set()).add(pid)
        return pid


def grid_constraint(num_procs: int) -> Dict[int, List[int]]:
    """Each partition may share edges with its row and its column.

    Partitions are laid out row-major on a grid ``floor(sqrt(n))`` wide, so any
    two partitions share at least the cell at (row of one, column of other).
    """
    cols = math.isqrt(num_procs)
    if num_procs % cols:
        raise ConfigurationError(
            f"grid constraint needs a partition count divisible by {cols}, got {num_procs}",
            status=StatusCode.BAD_COMMAND_LINE,
        )
    constraint = {}
    for i in range(num_procs):
        row_begin = (i // cols) * cols
        row = range(row_begin, row_begin + cols)
        column = range(i % cols, num_procs, cols)
        constraint[i] = sorted(set(row) | set(column))
    return constraint


def _difference_set_sequence(a, b, c, p):
    """Zeros of ``s[i] = a*s[i-1] + b*s[i-2] + c*s[i-3] mod p`` over one period.

    Returns the positions of the zeros when they form a perfect difference set
    modulo ``p*p + p + 1``, otherwise ``None``.
    """
    length = p * p + p + 1
    seq = [0, 0, 1]
    zeros = 2
    for i in range(3, length + 3):
        seq.append((a * seq[i - 1] + b * seq[i - 2] + c * seq[i - 3]) % p)
        if seq[i] == 0:
            zeros += 1
        if i < length and zeros > p + 1:
            return None
    if seq[length] != 0 or seq[length + 1] != 0:
        return None
    pds = [i for i in range(length) if seq[i] == 0]
    if len(pds) != p + 1:
        return None
    return pds


def find_perfect_difference_set(p: int) -> List[int]:
    """Search the linear recurrences mod ``p`` for a perfect difference set."""
    for a in range(p):
        for b in range(p):
            if a == 0 and b == 0:
                continue
            for c in range(1, p):
                pds = _difference_set_sequence(a, b, c, p)
                if pds is not None:
                    return pds
    return []


def pds_constraint(num_procs: int) -> Dict[int, List[int]]:
    """Translates of a perfect difference set; any two share exactly one partition.

    Falls back to ``grid_constraint`` when ``num_procs`` is not ``p*p + p + 1``
    or no difference set is found for ``p``.
    """
    p = math.isqrt(num_procs - 1) if num_procs > 1 else 0
    if p < 2 or num_procs != p * p + p + 1:
        return grid_constraint(num_procs)
    pds = find_perfect_difference_set(p)
    if not pds:
        logger.warning("no perfect difference set for p=%d, using the grid constraint", p)
        return grid_constraint(num_procs)
    return {i: sorted((d + i) % num_procs for d in pds) for i in range(num_procs)}


class _Constrained:
    """Mixin: candidates are the partitions allowed for both endpoint masters."""

    constraint: Dict[int, List[int]]

    def candidates(self, source, target):
        allowed = set(self.constraint[self.master(target)])
        return np.array(
            [j for j in self.constraint[self.master(source)] if j in allowed], dtype=np.int64
        )


class ConstrainedRandomIngress(_Constrained, Ingress):
    name = "constrainedrandom"

    def __init__(self, num_procs, seed=None):
        super().__init__(num_procs, seed)
        self.constraint = self.build_constraint(num_procs)

    @staticmethod
    def build_constraint(num_procs):
        return grid_constraint(num_procs)

    def compute_pid(self, source, target):
        candidates = self.candidates(source, target)
        index = bucket_of(stable_hash((source, target)), len(candidates))
        return int(candidates[index])


class ConstrainedPDSRandomIngress(ConstrainedRandomIngress):
    name = "constrainedpdsrandom"

    @staticmethod
    def build_constraint(num_procs):
        return pds_constraint(num_procs)


class ConstrainedGreedyIngress(_Constrained, GreedyIngress):
    name = "constrainedgreedy"

    def __init__(self, num_procs, seed=None):
        super().__init__(num_procs, seed)
        self.constraint = grid_constraint(num_procs)


INGRESS = {
    cls.name: cls
    for cls in (
        RandomIngress,
        GreedyIngress,
        ConstrainedRandomIngress,
        ConstrainedGreedyIngress,
        ConstrainedPDSRandomIngress,
    )
}


def get_ingress(name, num_procs, seed=None) -> Ingress:
    """Instantiate an ingress strategy by registry name."""
    if isinstance(name, Ingress):
        return name
    try:
        cls = INGRESS[name]
    except KeyError:
        raise ConfigurationError(
            f"unknown ingress {name!r}; choose from {sorted(INGRESS)}",
            status=StatusCode.CLASS_INSTANTIATION_ERROR,
        ) from None
    return cls(num_procs, seed)


# ---------------------------------------------------------------------------
# Vertex records
# ---------------------------------------------------------------------------


@dataclass
class VertexRecord:
    """Placement of one vertex: its owner, its mirrors and its degree."""

    vid: int
    owner: int = -1
    mirrors: Set[int] = field(default_factory=set)
    in_edges: int = 0
    out_edges: int = 0
    vdata: Optional[dict] = None

    def partitions(self):
        """Owner first, then the mirrors in ascending order."""
        return [self.owner] + sorted(self.mirrors)

    def to_json(self) -> str:
        return json.dumps(
            {
                "vid": self.vid,
                "owner": self.owner,
                "mirrors": sorted(self.mirrors),
                "in_edges": self.in_edges,
                "out_edges": self.out_edges,
                "vdata": self.vdata,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, text: str) -> "VertexRecord":
        obj = json.loads(text)
        return cls(
            obj["vid"], obj["owner"], set(obj["mirrors"]),
            obj["in_edges"], obj["out_edges"], obj.get("vdata"),
        )


@dataclass
class VertexRecordStats:
    vertices: List[int] = field(default_factory=list)
    own_vertices: List[int] = field(default_factory=list)
    distinct_vertices: int = 0
    parse_errors: int = 0

    def add(self, other):
        if not self.vertices:
            self.vertices = [0] * len(other.vertices)
            self.own_vertices = [0] * len(other.own_vertices)
        for i, n in enumerate(other.vertices):
            self.vertices[i] += n
        for i, n in enumerate(other.own_vertices):
            self.own_vertices[i] += n
        self.distinct_vertices += other.distinct_vertices
        self.parse_errors += other.parse_errors


def fold_vertex_fragments(lines, num_procs, rng, combiner=None):
    """Fold ``vid<TAB>pid<TAB>in<TAB>out[<TAB>json]`` fragments into records.

    A fragment with ``pid == -1`` only carries vertex data. The owner is a
    random partition among the ones holding the vertex's edges (a random
    partition when there are none) and is removed from the mirror set.
    """
    combiner = get_combiner(combiner or "first")
    records: Dict[int, VertexRecord] = {}
    errors = 0
    for line in lines:
        try:
            vid, pid, in_edges, out_edges, vdata = split_fields(line, 5)
            vid, pid = int(vid), int(pid)
            in_edges, out_edges = int(in_edges), int(out_edges)
            props = json.loads(vdata) if vdata else None
        except (RecordParseError, ValueError) as exc:
            errors += 1
            logger.warning("skipping vertex fragment: %s: %r", exc, line)
            continue
        record = records.get(vid)
        if record is None:
            record = records[vid] = VertexRecord(vid)
        if pid >= 0:
            record.mirrors.add(pid)
        record.in_edges += in_edges
        record.out_edges += out_edges
        if props is not None:
            if record.vdata is None:
                record.vdata = combiner.reduce(props, combiner.identity())
            else:
                record.vdata = combiner.reduce(props, record.vdata)

    for vid in sorted(records):
        record = records[vid]
        if record.mirrors:
            record.owner = rng.choice(sorted(record.mirrors))
            record.mirrors.discard(record.owner)
        else:
            record.owner = rng.randrange(num_procs)
    return [records[vid] for vid in sorted(records)], errors


def _vertex_record_task(args):
    bucket, path, num_procs, seed, out_dir, combiner = args
    rng = random.Random(None if seed is None else seed * 1_000_003 + bucket)
    records, errors = fold_vertex_fragments(read_lines(path), num_procs, rng, combiner)
    stats = VertexRecordStats([0] * num_procs, [0] * num_procs, len(records), errors)
    with BucketWriter(out_dir, f"vrecords-{{bucket:05d}}-m-{bucket:05d}") as writer:
        for record in records:
            text = record.to_json()
            for pid in record.partitions():
                writer.write_line(pid, text)
                stats.vertices[pid] += 1
            stats.own_vertices[record.owner] += 1
    return stats


def read_partition_records(out_dir, pid: int):
    """Yield every ``VertexRecord`` placed on partition ``pid``."""
    for path in list_bucket_files(out_dir, pid, VRECORD_TOKEN):
        for line in read_lines(path):
            yield VertexRecord.from_json(line)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


@dataclass
class IngressResult:
    strategy: str = ""
    num_partitions: int = 0
    edges: List[int] = field(default_factory=list)
    vertices: List[int] = field(default_factory=list)
    own_vertices: List[int] = field(default_factory=list)
    distinct_vertices: int = 0
    parse_errors: int = 0
    output_dir: Optional[Path] = None

    @property
    def replication_factor(self) -> float:
        """Average number of partitions a vertex is present on."""
        if not self.distinct_vertices:
            return 0.0
        return sum(self.vertices) / self.distinct_vertices

    def to_dict(self):
        return {
            "strategy": self.strategy,
            "num_partitions": self.num_partitions,
            "distinct_vertices": self.distinct_vertices,
            "replication_factor": self.replication_factor,
            "partitions": [
                {
                    "pid": pid,
                    "edges": self.edges[pid],
                    "vertices": self.vertices[pid],
                    "own_vertices": self.own_vertices[pid],
                }
                for pid in range(self.num_partitions)
            ],
        }


def _parse_edge(line):
    src, dst, edata = split_fields(line, 3)
    try:
        return int(src), int(dst), edata
    except ValueError:
        raise RecordParseError("endpoint ids must be integers", line=line) from None


def _parse_vdata(line):
    vid, data = split_fields(line, 2)
    try:
        return int(vid), data
    except ValueError:
        raise RecordParseError("vertex id must be an integer", line=line) from None


def partition_edges(edge_paths, out_dir, num_procs: int, strategy="random",
                    vdata_paths=(), seed=None, combiner=None,
                    executor_class=None, workers=None) -> IngressResult:
    """Place every resolved edge on one partition and build vertex records.

    Reads ``srcId<TAB>dstId[<TAB>json]`` edge files and optional
    ``vid<TAB>json`` vertex data files. Writes ``edges-{pid:05d}``,
    ``vrecords-{pid:05d}-m-*`` and ``_META.json`` under ``out_dir``.
    """
    ingress = get_ingress(strategy, num_procs, seed)
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    for pattern in (f"{EDGES_PREFIX}*", "vrecords-*", META_NAME):
        for stale in out_dir.glob(pattern):
            stale.unlink()
    result = IngressResult(ingress.name, num_procs, [0] * num_procs, output_dir=out_dir)
    hasher = PartitionHasher(num_procs)
    frag_dir = out_dir / FRAGMENT_DIR
    shutil.rmtree(frag_dir, ignore_errors=True)

    t0 = time.perf_counter()
    with BucketWriter(out_dir, f"{EDGES_PREFIX}{{bucket:05d}}") as edges, \
            BucketWriter(frag_dir, "vfrag-{bucket:05d}") as fragments:
        for path in edge_paths:
            for line in read_lines(path):
                try:
                    src, dst, edata = _parse_edge(line)
                except RecordParseError as exc:
                    result.parse_errors += 1
                    logger.warning("%s: skipping edge: %s", Path(path).name, exc)
                    continue
                pid = ingress.compute_pid(src, dst)
                edges.write_line(pid, f"{src}\t{dst}\t{edata}" if edata else f"{src}\t{dst}")
                result.edges[pid] += 1
                fragments.write_line(hasher(src), f"{src}\t{pid}\t0\t1")
                fragments.write_line(hasher(dst), f"{dst}\t{pid}\t1\t0")
        for path in vdata_paths:
            for line in read_lines(path):
                try:
                    vid, data = _parse_vdata(line)
                except RecordParseError as exc:
                    result.parse_errors += 1
                    logger.warning("%s: skipping vertex data: %s", Path(path).name, exc)
                    continue
                fragments.write_line(hasher(vid), f"{vid}\t-1\t0\t0\t{data}")
    logger.info("Edge ingress done: %d edges over %d partitions (%s) in %.2fs",
                sum(result.edges), num_procs, ingress.name, time.perf_counter() - t0)

    t1 = time.perf_counter()
    tasks = [
        (bucket, str(path), num_procs, seed, str(out_dir), combiner)
        for bucket, path in sorted(fragments.paths().items())
    ]
    totals = VertexRecordStats([0] * num_procs, [0] * num_procs)
    for stats in run_tasks(_vertex_record_task, tasks, executor_class, workers):
        totals.add(stats)
    shutil.rmtree(frag_dir, ignore_errors=True)
    result.vertices = totals.vertices
    result.own_vertices = totals.own_vertices
    result.distinct_vertices = totals.distinct_vertices
    result.parse_errors += totals.parse_errors

    with open(out_dir / META_NAME, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2)
    logger.info("Vertex records done: %d vertices, replication factor %.3f in %.2fs",
                result.distinct_vertices, result.replication_factor, time.perf_counter() - t1)
    return result
