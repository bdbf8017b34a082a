"""Deduplication and property merging of grouped graph elements.

``GraphElementMerger.merge`` takes every element delivered to one group and
returns one vertex per distinct ``VertexID`` and one edge per distinct
``EdgeID``. Self edges are always dropped. With bidirectional cleaning on, an
edge whose reverse ``(dst, src, label)`` was already accepted in the same
group is dropped as well, so exactly one direction of each pair survives.
Which direction survives depends on arrival order.

The initial merge stage (``merge_bucket``) runs the merger over one shuffle
bucket and writes the unique vertex and edge lists used by the surrogate id
path:

    vertices/part-BBBBB   rawId<TAB>json properties
    edges/part-BBBBB      srcRawId<TAB>dstRawId<TAB>json properties (+ "label")
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from graphbuilder.combine import get_combiner
from graphbuilder.elements import Edge, EdgeID, ElementKind, Vertex, VertexID
from graphbuilder.shuffle import read_elements

logger = logging.getLogger(__name__)

VERTEX_LIST_DIR = "vertices"
EDGE_LIST_DIR = "edges"
EDGE_LABEL_KEY = "label"


@dataclass
class MergeStats:
    vertices_in: int = 0
    edges_in: int = 0
    vertices_out: int = 0
    edges_out: int = 0
    self_loops_dropped: int = 0
    bidirectional_dropped: int = 0
    unwritable_ids: int = 0

    def add(self, other):
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))
        return self


@dataclass
class MergedGroup:
    vertices: List[Vertex] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    stats: MergeStats = field(default_factory=MergeStats)

    def __iter__(self):
        yield from self.vertices
        yield from self.edges


class GraphElementMerger:
    """Merge duplicate vertices and edges within one group.

    Args:
        vertex_combiner: Combiner (or registry name) for vertex properties.
            ``None`` keeps the first value seen per key.
        edge_combiner: Same for edge properties.
        clean_bidirectional: Drop one edge of every ``(a, b, l)`` / ``(b, a, l)``
            pair seen in the same group.
    """

    def __init__(self, vertex_combiner=None, edge_combiner=None, clean_bidirectional=False):
        self.vertex_combiner = get_combiner(vertex_combiner)
        self.edge_combiner = get_combiner(edge_combiner)
        self.clean_bidirectional = clean_bidirectional

    @staticmethod
    def _fold(combiner, properties, accumulated):
        if combiner is None:
            if accumulated is None:
                return dict(properties)
            for key, value in properties.items():
                accumulated.setdefault(key, value)
            return accumulated
        if accumulated is None:
            accumulated = combiner.identity()
        return combiner.reduce(properties, accumulated)

    def merge(self, elements) -> MergedGroup:
        stats = MergeStats()
        vertices: Dict[VertexID, dict] = {}
        edges: Dict[EdgeID, dict] = {}

        for element in elements:
            if element.kind is ElementKind.VERTEX:
                stats.vertices_in += 1
                vid = element.id
                vertices[vid] = self._fold(
                    self.vertex_combiner, element.properties, vertices.get(vid)
                )
            elif element.kind is ElementKind.EDGE:
                stats.edges_in += 1
                eid = element.id
                if eid.is_self_edge:
                    stats.self_loops_dropped += 1
                    continue
                if eid not in edges and self.clean_bidirectional and eid.reverse() in edges:
                    stats.bidirectional_dropped += 1
                    continue
                edges[eid] = self._fold(self.edge_combiner, element.properties, edges.get(eid))
            else:
                raise TypeError(f"not a graph element: {element!r}")

        group = MergedGroup(
            vertices=[Vertex(vid, props) for vid, props in vertices.items()],
            edges=[Edge(eid, props) for eid, props in edges.items()],
            stats=stats,
        )
        stats.vertices_out = len(group.vertices)
        stats.edges_out = len(group.edges)
        return group


def _writable(raw_id):
    return "\t" not in raw_id and "\n" not in raw_id and "\r" not in raw_id


def _dumps(props):
    return json.dumps(props, separators=(",", ":"), sort_keys=True)


def write_merged_group(bucket, group, out_dir, stats):
    """Write one merged group as vertex list and edge list part files."""
    out_dir = Path(out_dir)
    vertex_dir = out_dir / VERTEX_LIST_DIR
    edge_dir = out_dir / EDGE_LIST_DIR
    vertex_dir.mkdir(parents=True, exist_ok=True)
    edge_dir.mkdir(parents=True, exist_ok=True)
    name = f"part-{bucket:05d}"

    with open(vertex_dir / name, "w", encoding="utf-8") as f:
        for vertex in group.vertices:
            raw_id = vertex.id.raw_id
            if not _writable(raw_id):
                stats.unwritable_ids += 1
                logger.warning("vertex id %r contains a tab or newline, skipped", raw_id)
                continue
            f.write(f"{raw_id}\t{_dumps(vertex.properties)}\n")

    with open(edge_dir / name, "w", encoding="utf-8") as f:
        for edge in group.edges:
            src, dst = edge.src.raw_id, edge.dst.raw_id
            if not (_writable(src) and _writable(dst)):
                stats.unwritable_ids += 1
                logger.warning("edge %s has a tab or newline in an endpoint, skipped", edge.id)
                continue
            data = dict(edge.properties)
            data[EDGE_LABEL_KEY] = edge.label
            f.write(f"{src}\t{dst}\t{_dumps(data)}\n")


def merge_bucket(args) -> MergeStats:
    """Merge one shuffle bucket and write its unique vertices and edges."""
    bucket, path, out_dir, vertex_combiner, edge_combiner, clean_bidirectional = args
    merger = GraphElementMerger(vertex_combiner, edge_combiner, clean_bidirectional)
    group = merger.merge(read_elements(path))
    write_merged_group(bucket, group, out_dir, group.stats)
    logger.debug("bucket %d: %d vertices, %d edges", bucket,
                 group.stats.vertices_out, group.stats.edges_out)
    return group.stats
