"""Unit tests for graphbuilder.sink module."""

import logging

import pytest

from graphbuilder.elements import Vertex, VertexID, make_edge
from graphbuilder.errors import StatusCode, StoreError
from graphbuilder.shuffle import BucketWriter, read_elements
from graphbuilder.sink import (
    GB_ID,
    SRC_STORE_ID_TAG,
    STORE_ID_TAG,
    ExternalSinkIdPropagator,
)
from graphbuilder.tokenizers import JsonlTokenizer, tokenize_files

from conftest import EDGES_FILE, NODES_FILE, NOISY_FILE, RecordingStore


@pytest.fixture
def elements():
    return list(tokenize_files([NODES_FILE, EDGES_FILE], JsonlTokenizer()))


def _expected_triples():
    edges = list(tokenize_files([EDGES_FILE], JsonlTokenizer()))
    return sorted((e.src.raw_id, e.dst.raw_id, e.label) for e in edges)


class TestOrdering:
    """No edge references a store id that was not returned by a prior insert_vertex."""

    def test_edge_endpoints_previously_returned(self, tmp_path, elements, recording_store):
        ExternalSinkIdPropagator(recording_store, 4, commit_batch_size=4).run(elements, tmp_path)

        returned = set()
        edge_calls = 0
        for call in recording_store.calls:
            if call[0] == "insert_vertex":
                returned.add(call[1])
            elif call[0] == "insert_edge":
                edge_calls += 1
                _, src, dst, _ = call
                assert src in returned
                assert dst in returned
        assert edge_calls == 6

    def test_all_vertices_before_any_edge(self, tmp_path, elements, recording_store):
        ExternalSinkIdPropagator(recording_store, 4).run(elements, tmp_path)
        names = [c[0] for c in recording_store.calls]
        last_vertex = max(i for i, n in enumerate(names) if n == "insert_vertex")
        first_edge = names.index("insert_edge")
        assert last_vertex < first_edge

    def test_ordering_holds_for_every_partition_count(self, tmp_path, elements):
        for n in (1, 2, 3, 16):
            store = RecordingStore()
            stats = ExternalSinkIdPropagator(store, n).run(elements, tmp_path / str(n))
            returned = set()
            for call in store.calls:
                if call[0] == "insert_vertex":
                    returned.add(call[1])
                elif call[0] == "insert_edge":
                    assert {call[1], call[2]} <= returned
            assert stats.edges_inserted == 6


class TestLoadedGraph:
    """What ends up in the store."""

    def test_graph_matches_input(self, tmp_path, elements, recording_store):
        stats = ExternalSinkIdPropagator(recording_store, 4).run(elements, tmp_path)
        assert stats.vertices_inserted == 5
        assert stats.edges_inserted == 6
        assert recording_store.edge_triples() == _expected_triples()

    def test_vertex_properties_and_gb_id(self, tmp_path, elements, recording_store):
        ExternalSinkIdPropagator(recording_store, 4).run(elements, tmp_path)
        vid = recording_store.vertex_by_gb_id("CHEBI:6801")
        props = recording_store.vertices[vid]
        assert props[GB_ID] == "CHEBI:6801"
        assert props["name"] == "Metformin"
        assert STORE_ID_TAG not in props

    def test_tags_stripped_from_edges(self, tmp_path, elements, recording_store):
        ExternalSinkIdPropagator(recording_store, 4).run(elements, tmp_path)
        for edge in recording_store.edges.values():
            assert SRC_STORE_ID_TAG not in edge["properties"]
            assert STORE_ID_TAG not in edge["properties"]
        treats = [e for e in recording_store.edges.values() if e["label"] == "biolink:treats"]
        assert treats[0]["properties"] == {"knowledge_level": "knowledge_assertion"}

    def test_rerun_in_same_work_dir(self, tmp_path, elements):
        ExternalSinkIdPropagator(RecordingStore(), 4).run(elements, tmp_path)
        store = RecordingStore()
        stats = ExternalSinkIdPropagator(store, 4).run(elements, tmp_path)
        assert stats.vertices_inserted == 5
        assert stats.edges_inserted == 6
        assert store.edge_triples() == _expected_triples()

    def test_duplicates_merged_before_insert(self, tmp_path, recording_store):
        noisy = list(tokenize_files([NOISY_FILE], JsonlTokenizer()))
        stats = ExternalSinkIdPropagator(recording_store, 4).run(noisy, tmp_path)
        assert stats.vertices_inserted == 3
        assert stats.self_loops_dropped == 1
        treats = [
            t for t in recording_store.edge_triples()
            if t == ("CHEBI:6801", "MONDO:0005148", "biolink:treats")
        ]
        assert len(treats) == 1


class TestCommits:
    """Bounded commit window in pass 2."""

    def test_commit_every_batch_plus_final(self, tmp_path, elements, recording_store):
        ExternalSinkIdPropagator(recording_store, 4, commit_batch_size=4).run(elements, tmp_path)
        names = [c[0] for c in recording_store.calls]
        first_edge = names.index("insert_edge")
        pass2 = names[first_edge:]
        assert pass2.count("commit") == 2
        # Four edges, commit, two edges, final commit.
        edge_positions = [i for i, n in enumerate(pass2) if n == "insert_edge"]
        first_commit = pass2.index("commit")
        assert sum(1 for i in edge_positions if i < first_commit) == 4

    def test_one_handle_per_pass(self, tmp_path, elements, recording_store):
        ExternalSinkIdPropagator(recording_store, 4).run(elements, tmp_path)
        assert recording_store.opened == 2
        assert recording_store.closed == 2


class TestFailures:
    """Store errors are fatal; missing references are not."""

    def test_edge_insert_failure_is_fatal(self, tmp_path, elements, failing_store):
        with pytest.raises(StoreError) as info:
            ExternalSinkIdPropagator(failing_store, 4).run(elements, tmp_path)
        assert info.value.status is StatusCode.STORE_ERROR
        assert isinstance(info.value.__cause__, RuntimeError)
        assert failing_store.closed == 2

    def test_vertex_insert_failure_stops_before_edges(self, tmp_path, elements):
        store = RecordingStore(fail_on="insert_vertex", fail_after=3)
        with pytest.raises(StoreError):
            ExternalSinkIdPropagator(store, 4).run(elements, tmp_path)
        assert not [c for c in store.calls if c[0] == "insert_edge"]
        assert store.closed == 1

    def test_close_failure_does_not_hide_pass_error(self, tmp_path, elements, caplog):
        store = RecordingStore(fail_on="insert_vertex", fail_after=2, fail_close=True)
        with caplog.at_level(logging.ERROR, logger="graphbuilder.sink"):
            with pytest.raises(StoreError) as info:
                ExternalSinkIdPropagator(store, 4).run(elements, tmp_path)
        assert "insert_vertex rejected" in str(info.value.__cause__)
        assert "close rejected" in caplog.text
        assert store.closed == 1

    def test_close_failure_alone_is_fatal(self, tmp_path, elements):
        store = RecordingStore(fail_close=True)
        with pytest.raises(StoreError) as info:
            ExternalSinkIdPropagator(store, 4).run(elements, tmp_path)
        assert "close" in str(info.value)
        assert store.closed == 1
        assert not [c for c in store.calls if c[0] == "insert_edge"]

    def test_dangling_target_dropped(self, tmp_path, recording_store, caplog):
        noisy = list(tokenize_files([NOISY_FILE], JsonlTokenizer()))
        with caplog.at_level(logging.ERROR, logger="graphbuilder.join"):
            stats = ExternalSinkIdPropagator(recording_store, 4).run(noisy, tmp_path)
        assert stats.target_misses == 1
        assert stats.source_misses == 0
        assert stats.edges_inserted == 3
        assert "MONDO:0000000" in caplog.text

    def test_dangling_source_dropped(self, tmp_path, recording_store):
        elements = [Vertex(VertexID("B")), make_edge("A", "B", "knows")]
        stats = ExternalSinkIdPropagator(recording_store, 2).run(elements, tmp_path)
        assert stats.source_misses == 1
        assert stats.edges_inserted == 0


class TestPassOneGroup:
    """insert_vertices_and_tag on a single group."""

    def test_edges_tagged_with_source_store_id(self, tmp_path, recording_store):
        propagator = ExternalSinkIdPropagator(recording_store, 1)
        group = [
            Vertex(VertexID("A"), {"name": "alpha"}),
            make_edge("A", "B", "knows"),
            make_edge("A", "C", "knows"),
        ]
        with BucketWriter(tmp_path, "out-{bucket:05d}") as writer:
            propagator.insert_vertices_and_tag(0, group, recording_store, writer)
        out = list(read_elements(writer.paths()[0]))
        a_store_id = recording_store.vertex_by_gb_id("A")
        vertices = [e for e in out if isinstance(e, Vertex)]
        edges = [e for e in out if not isinstance(e, Vertex)]
        assert vertices[0].properties[STORE_ID_TAG] == a_store_id
        assert [e.properties[SRC_STORE_ID_TAG] for e in edges] == [a_store_id, a_store_id]
        assert recording_store.calls[-1] == ("commit",)
