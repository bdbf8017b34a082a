"""Compressed sparse row view of a resolved surrogate-id graph.

Reads the ``srcId<TAB>dstId[<TAB>json]`` files written by the edge join,
sorts edges by (src, dst, label) with ``np.lexsort`` and builds forward
offsets with ``np.searchsorted``. Surrogate ids are used directly as row
indices, so ids that were never assigned show up as rows of degree zero.
"""

import json
import logging
import pickle
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from graphbuilder.errors import RecordParseError
from graphbuilder.execution import parallel_for
from graphbuilder.shuffle import read_lines, split_fields

logger = logging.getLogger(__name__)


def _parse_resolved_edge(line):
    src, dst, data = split_fields(line, 3)
    try:
        src, dst = int(src), int(dst)
    except ValueError:
        raise RecordParseError("endpoint ids must be integers", line=line) from None
    label = None
    if data:
        try:
            props = json.loads(data)
        except json.JSONDecodeError as exc:
            raise RecordParseError(f"invalid edge data: {exc}", line=line) from exc
        if isinstance(props, dict):
            label = props.get("label")
    return src, dst, label


@dataclass
class _EdgeFilePart:
    src: List[int] = field(default_factory=list)
    dst: List[int] = field(default_factory=list)
    labels: list = field(default_factory=list)
    skipped: int = 0


def _read_edge_file(path):
    part = _EdgeFilePart()
    for line in read_lines(path):
        try:
            src, dst, label = _parse_resolved_edge(line)
        except RecordParseError as exc:
            part.skipped += 1
            logger.warning("%s: skipping edge: %s", Path(path).name, exc)
            continue
        part.src.append(src)
        part.dst.append(dst)
        part.labels.append(label)
    return part


class CSRGraph:
    """Forward CSR adjacency over surrogate ids.

    ``fwd_offsets[v]:fwd_offsets[v + 1]`` slices ``fwd_targets`` and
    ``fwd_labels`` for the out-edges of ``v``. Labels are interned;
    ``labels[i]`` is the text of label index ``i`` (``None`` for edges
    without one).
    """

    def __init__(self, num_vertices, fwd_offsets, fwd_targets, fwd_labels, labels):
        self.num_vertices = num_vertices
        self.fwd_offsets = fwd_offsets
        self.fwd_targets = fwd_targets
        self.fwd_labels = fwd_labels
        self.labels = labels
        self.label_to_idx = {label: idx for idx, label in enumerate(labels)}

    @classmethod
    def from_edge_files(cls, paths, num_vertices: Optional[int] = None, workers=None):
        """Build the graph from resolved edge files.

        Files are parsed concurrently with ``parallel_for``. ``num_vertices``
        defaults to one past the largest id seen.
        """
        t0 = time.perf_counter()
        src_list, dst_list, label_list = [], [], []
        label_to_idx = {}
        skipped = 0
        for part in parallel_for(paths, _read_edge_file, workers):
            skipped += part.skipped
            src_list.extend(part.src)
            dst_list.extend(part.dst)
            for label in part.labels:
                if label not in label_to_idx:
                    label_to_idx[label] = len(label_to_idx)
                label_list.append(label_to_idx[label])

        src = np.asarray(src_list, dtype=np.int64)
        dst = np.asarray(dst_list, dtype=np.int64)
        lab = np.asarray(label_list, dtype=np.int32)
        del src_list, dst_list, label_list

        if num_vertices is None:
            num_vertices = int(max(src.max(initial=-1), dst.max(initial=-1))) + 1

        # Sort by (src, dst, label) using lexsort (last key is primary)
        order = np.lexsort((lab, dst, src))
        src, dst, lab = src[order], dst[order], lab[order]

        fwd_offsets = np.zeros(num_vertices + 1, dtype=np.int64)
        if len(src) > 0:
            fwd_offsets = np.searchsorted(src, np.arange(num_vertices + 1)).astype(np.int64)

        labels = [None] * len(label_to_idx)
        for label, idx in label_to_idx.items():
            labels[idx] = label

        graph = cls(num_vertices, fwd_offsets, dst, lab, labels)
        logger.info("CSR built: %d vertices, %d edges (%d skipped) in %.2fs",
                    graph.num_vertices, graph.num_edges, skipped, time.perf_counter() - t0)
        return graph

    @property
    def num_edges(self):
        return len(self.fwd_targets)

    def _check(self, vertex):
        if not 0 <= vertex < self.num_vertices:
            raise IndexError(f"vertex {vertex} out of range [0, {self.num_vertices})")

    def degree(self, vertex):
        self._check(vertex)
        return int(self.fwd_offsets[vertex + 1] - self.fwd_offsets[vertex])

    def neighbors(self, vertex, label=None):
        """Targets of the out-edges of ``vertex``, optionally for one label only."""
        self._check(vertex)
        start, end = int(self.fwd_offsets[vertex]), int(self.fwd_offsets[vertex + 1])
        targets = self.fwd_targets[start:end]
        if label is None:
            return targets
        idx = self.label_to_idx.get(label)
        if idx is None:
            return targets[:0]
        return targets[self.fwd_labels[start:end] == idx]

    def edges(self, vertex):
        """``(target, label)`` pairs for the out-edges of ``vertex``."""
        self._check(vertex)
        start, end = int(self.fwd_offsets[vertex]), int(self.fwd_offsets[vertex + 1])
        return [
            (int(t), self.labels[int(l)])
            for t, l in zip(self.fwd_targets[start:end], self.fwd_labels[start:end])
        ]

    def save_mmap(self, directory: Union[str, Path]):
        """Save as ``.npy`` arrays plus a pickled metadata file."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        np.save(directory / "fwd_offsets.npy", self.fwd_offsets)
        np.save(directory / "fwd_targets.npy", self.fwd_targets)
        np.save(directory / "fwd_labels.npy", self.fwd_labels)

        metadata = {
            "num_vertices": self.num_vertices,
            "labels": self.labels,
        }
        with open(directory / "metadata.pkl", "wb") as f:
            pickle.dump(metadata, f, protocol=pickle.HIGHEST_PROTOCOL)

    @staticmethod
    def load_mmap(directory: Union[str, Path], mmap_mode: str = "r"):
        """Load a graph saved by ``save_mmap``, memory-mapping the arrays."""
        directory = Path(directory)
        with open(directory / "metadata.pkl", "rb") as f:
            metadata = pickle.load(f)
        return CSRGraph(
            metadata["num_vertices"],
            np.load(directory / "fwd_offsets.npy", mmap_mode=mmap_mode),
            np.load(directory / "fwd_targets.npy", mmap_mode=mmap_mode),
            np.load(directory / "fwd_labels.npy", mmap_mode=mmap_mode),
            metadata["labels"],
        )
