"""Unit tests for graphbuilder.tokenizers module."""

import logging

import pytest

from graphbuilder.elements import ElementKind, VertexID
from graphbuilder.errors import ConfigurationError, RecordParseError, StatusCode
from graphbuilder.tokenizers import (
    JsonlTokenizer,
    TokenizeStats,
    TsvTokenizer,
    get_tokenizer,
    tokenize_files,
)

from conftest import EDGES_FILE, NODES_FILE, NOISY_FILE, TSV_FILE


class TestJsonlTokenizer:
    """Tests for the jsonl tokenizer."""

    def test_node_line(self):
        vertices, edges = JsonlTokenizer().tokenize(
            '{"id": "CHEBI:6801", "name": "Metformin", "category": ["biolink:SmallMolecule"]}'
        )
        assert edges == []
        assert vertices[0].id == VertexID("CHEBI:6801")
        assert vertices[0].properties == {
            "name": "Metformin",
            "category": ["biolink:SmallMolecule"],
        }

    def test_node_label(self):
        vertices, _ = JsonlTokenizer().tokenize('{"id": "6801", "label": "chebi"}')
        assert vertices[0].id == VertexID("6801", "chebi")

    def test_edge_line(self):
        _, edges = JsonlTokenizer().tokenize(
            '{"subject": "A", "predicate": "biolink:treats", "object": "B", "score": 0.5}'
        )
        edge = edges[0]
        assert (edge.src, edge.dst, edge.label) == (VertexID("A"), VertexID("B"), "biolink:treats")
        assert edge.properties == {"score": 0.5}

    def test_classifier(self):
        tok = JsonlTokenizer()
        assert tok.is_vertex_record('{"id": "A"}')
        assert not tok.is_edge_record('{"id": "A"}')
        assert tok.is_edge_record('{"subject": "A", "object": "B", "predicate": "x"}')
        assert not tok.is_vertex_record("not json")

    @pytest.mark.parametrize("line", [
        "not json",
        "[1, 2]",
        '{"name": "no id"}',
        '{"subject": "A", "object": "B"}',
    ])
    def test_malformed(self, line):
        with pytest.raises(RecordParseError):
            JsonlTokenizer().tokenize(line)


class TestTsvTokenizer:
    """Tests for the tsv tokenizer."""

    def test_vertex_with_and_without_properties(self):
        tok = TsvTokenizer()
        vertices, _ = tok.tokenize('V\tA\t{"name": "alpha"}')
        assert vertices[0].properties == {"name": "alpha"}
        vertices, _ = tok.tokenize("V\tB")
        assert vertices[0].properties == {}

    def test_edge(self):
        _, edges = TsvTokenizer().tokenize('E\tB\tC\tknows\t{"weight": 2}\n')
        assert edges[0].id.label == "knows"
        assert edges[0].properties == {"weight": 2}

    def test_classifier(self):
        tok = TsvTokenizer()
        assert tok.is_vertex_record("V\tA")
        assert tok.is_edge_record("E\tA\tB\tx")
        assert not tok.is_vertex_record("E\tA\tB\tx")

    @pytest.mark.parametrize("line", ["X\tA", "E\tA\tB", "V\t", 'V\tA\t{"bad"'])
    def test_malformed(self, line):
        with pytest.raises(RecordParseError):
            TsvTokenizer().tokenize(line)


class TestTokenizeFiles:
    """Tests for tokenize_files."""

    def test_fixture_counts(self):
        stats = TokenizeStats()
        elements = list(tokenize_files([NODES_FILE, EDGES_FILE], JsonlTokenizer(), stats))
        assert stats.vertices == 5
        assert stats.edges == 6
        assert sum(e.kind is ElementKind.VERTEX for e in elements) == 5

    def test_tsv_fixture(self):
        elements = list(tokenize_files([TSV_FILE], TsvTokenizer()))
        assert len(elements) == 6

    def test_malformed_lines_skipped_and_logged(self, caplog):
        stats = TokenizeStats()
        with caplog.at_level(logging.WARNING, logger="graphbuilder.tokenizers"):
            elements = list(tokenize_files([NOISY_FILE], JsonlTokenizer(), stats))
        assert stats.malformed_lines == 1
        assert len(elements) == 10
        assert "skipping record" in caplog.text


class TestRegistry:
    def test_lookup(self):
        assert isinstance(get_tokenizer("tsv"), TsvTokenizer)

    def test_unknown(self):
        with pytest.raises(ConfigurationError) as info:
            get_tokenizer("xml")
        assert info.value.status is StatusCode.CLASS_INSTANTIATION_ERROR
