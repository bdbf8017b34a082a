"""Unit tests for graphbuilder.graph module."""

import numpy as np
import pytest

from graphbuilder.graph import CSRGraph

from conftest import write_lines


@pytest.fixture
def edge_file(tmp_path):
    return write_lines(tmp_path / "edges-r-00000", [
        '0\t2\t{"label":"knows"}',
        '0\t1\t{"label":"knows"}',
        '0\t1\t{"label":"likes"}',
        '2\t0\t{"label":"knows"}',
        '4\t3',
    ])


@pytest.fixture
def graph(edge_file):
    return CSRGraph.from_edge_files([edge_file])


class TestFromEdgeFiles:
    """Tests for CSRGraph.from_edge_files."""

    def test_sizes(self, graph):
        assert graph.num_vertices == 5
        assert graph.num_edges == 5

    def test_neighbors_sorted(self, graph):
        assert list(graph.neighbors(0)) == [1, 1, 2]
        assert list(graph.neighbors(2)) == [0]

    def test_degree(self, graph):
        assert [graph.degree(v) for v in range(5)] == [3, 0, 1, 0, 1]

    def test_label_filter(self, graph):
        assert list(graph.neighbors(0, label="likes")) == [1]
        assert list(graph.neighbors(0, label="missing")) == []

    def test_edges_without_label(self, graph):
        assert graph.edges(4) == [(3, None)]

    def test_explicit_vertex_count(self, edge_file):
        graph = CSRGraph.from_edge_files([edge_file], num_vertices=8)
        assert graph.num_vertices == 8
        assert graph.degree(7) == 0

    def test_out_of_range(self, graph):
        with pytest.raises(IndexError):
            graph.neighbors(5)

    def test_bad_lines_skipped(self, tmp_path):
        path = write_lines(tmp_path / "e", ["0\t1", "x\t1", "1\t0\t{oops"])
        graph = CSRGraph.from_edge_files([path])
        assert graph.num_edges == 1

    def test_many_files_match_one(self, tmp_path, edge_file, graph):
        lines = edge_file.read_text(encoding="utf-8").splitlines()
        paths = [
            write_lines(tmp_path / "split" / f"edges-r-{i:05d}", [line])
            for i, line in enumerate(lines)
        ]
        split = CSRGraph.from_edge_files(paths, workers=3)
        assert split.num_edges == graph.num_edges
        for v in range(graph.num_vertices):
            assert split.edges(v) == graph.edges(v)

    def test_empty(self, tmp_path):
        path = write_lines(tmp_path / "e", [])
        graph = CSRGraph.from_edge_files([path])
        assert graph.num_vertices == 0
        assert graph.num_edges == 0


class TestMmap:
    def test_save_and_load(self, graph, tmp_path):
        graph.save_mmap(tmp_path / "csr")
        loaded = CSRGraph.load_mmap(tmp_path / "csr")
        assert loaded.num_vertices == graph.num_vertices
        assert np.array_equal(loaded.fwd_offsets, graph.fwd_offsets)
        assert np.array_equal(loaded.fwd_targets, graph.fwd_targets)
        assert loaded.edges(0) == graph.edges(0)
