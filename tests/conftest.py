"""Pytest fixtures shared across all test modules."""

import os

import pytest

from graphbuilder.dense_ids import VIDMAP_DIR, assign_dense_ids
from graphbuilder.dictionary import DictionaryShardBuilder, parse_entry
from graphbuilder.shuffle import read_lines
from graphbuilder.store import EdgeHandle, GraphStore


FIXTURES_DIR = os.path.join(os.path.dirname(__file__), "fixtures")
NODES_FILE = os.path.join(FIXTURES_DIR, "nodes.jsonl")
EDGES_FILE = os.path.join(FIXTURES_DIR, "edges.jsonl")
NOISY_FILE = os.path.join(FIXTURES_DIR, "noisy.jsonl")
TSV_FILE = os.path.join(FIXTURES_DIR, "graph.tsv")


@pytest.fixture(autouse=True)
def serial_executor(monkeypatch):
    """Run every stage in the calling thread unless a test says otherwise."""
    monkeypatch.setenv("GRAPHBUILDER_EXECUTOR", "serial")


class RecordingStore(GraphStore):
    """In-memory store client that records every call in order.

    Store ids start at 100 so they can never be confused with list
    positions. ``fail_on`` names a method that raises ``RuntimeError`` on
    its ``fail_after``-th call (1-based). ``fail_close`` makes every
    ``close`` raise after it has been recorded.
    """

    def __init__(self, fail_on=None, fail_after=1, fail_close=False):
        self.calls = []
        self.vertices = {}
        self.edges = {}
        self.returned_vertex_ids = []
        self.opened = 0
        self.closed = 0
        self.fail_on = fail_on
        self.fail_after = fail_after
        self.fail_close = fail_close
        self._counts = {}
        self._next_vertex = 100
        self._next_edge = 0

    def __call__(self):
        self.opened += 1
        return self

    def _maybe_fail(self, name):
        self._counts[name] = self._counts.get(name, 0) + 1
        if self.fail_on == name and self._counts[name] >= self.fail_after:
            raise RuntimeError(f"{name} rejected by test store")

    def insert_vertex(self):
        self._maybe_fail("insert_vertex")
        vid = self._next_vertex
        self._next_vertex += 1
        self.vertices[vid] = {}
        self.returned_vertex_ids.append(vid)
        self.calls.append(("insert_vertex", vid))
        return vid

    def insert_edge(self, src, dst, label):
        self._maybe_fail("insert_edge")
        handle = EdgeHandle(self._next_edge, src, dst, label)
        self._next_edge += 1
        self.edges[handle.id] = {"src": src, "dst": dst, "label": label, "properties": {}}
        self.calls.append(("insert_edge", src, dst, label))
        return handle

    def set_property(self, handle, key, value):
        self._maybe_fail("set_property")
        if isinstance(handle, EdgeHandle):
            self.edges[handle.id]["properties"][key] = value
        else:
            self.vertices[handle][key] = value
        self.calls.append(("set_property", handle, key, value))

    def commit(self):
        self._maybe_fail("commit")
        self.calls.append(("commit",))

    def close(self):
        self.closed += 1
        self.calls.append(("close",))
        if self.fail_close:
            raise RuntimeError("close rejected by test store")

    def vertex_by_gb_id(self, gb_id):
        for vid, props in self.vertices.items():
            if props.get("gb_id") == gb_id:
                return vid
        raise KeyError(gb_id)

    def edge_triples(self):
        """Edges as ``(src gb_id, dst gb_id, label)`` triples."""
        names = {vid: props.get("gb_id") for vid, props in self.vertices.items()}
        return sorted(
            (names[e["src"]], names[e["dst"]], e["label"]) for e in self.edges.values()
        )


@pytest.fixture
def recording_store():
    return RecordingStore()


@pytest.fixture
def failing_store():
    return RecordingStore(fail_on="insert_edge", fail_after=2)


def write_lines(path, lines):
    """Write lines to ``path`` (newline-terminated) and return it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line + "\n")
    return path


def build_dictionary(root, raw_ids, num_shards, lines_per_shard=4):
    """Assign ids to ``raw_ids`` and shard them. Returns ``(dictionary_dir, mapping)``."""
    vertex_file = write_lines(root / "vertex-list" / "part-00000", raw_ids)
    assign_dense_ids([vertex_file], root / "hashid", lines_per_shard, root / "work")
    vidmap_paths = sorted((root / "hashid" / VIDMAP_DIR).glob("part-*"))
    dictionary_dir = root / "dictionary"
    DictionaryShardBuilder(num_shards).build(vidmap_paths, dictionary_dir)
    mapping = {}
    for path in vidmap_paths:
        for line in read_lines(path):
            sid, raw_id = parse_entry(line)
            mapping[raw_id] = sid
    return dictionary_dir, mapping


@pytest.fixture
def fixture_raw_ids():
    return [
        "CHEBI:6801",
        "MONDO:0005148",
        "NCBIGene:5468",
        "HP:0001943",
        "GO:0006006",
    ]


@pytest.fixture
def fixture_edge_lines():
    return [
        'CHEBI:6801\tMONDO:0005148\t{"label":"biolink:treats"}',
        'CHEBI:6801\tNCBIGene:5468\t{"label":"biolink:affects"}',
        'NCBIGene:5468\tMONDO:0005148\t{"label":"biolink:gene_associated_with_condition"}',
        'MONDO:0005148\tHP:0001943\t{"label":"biolink:has_phenotype"}',
        'NCBIGene:5468\tGO:0006006\t{"label":"biolink:participates_in"}',
        'CHEBI:6801\tHP:0001943\t{"label":"biolink:has_adverse_event"}',
    ]
