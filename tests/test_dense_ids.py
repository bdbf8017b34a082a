"""Unit tests for graphbuilder.dense_ids module."""

import json
import logging

import pytest

from graphbuilder.dense_ids import (
    DenseIdAssigner,
    assign_dense_ids,
    parse_vertex_line,
    split_into_shards,
)
from graphbuilder.errors import ConfigurationError, RecordParseError
from graphbuilder.shuffle import read_lines

from conftest import write_lines


class TestAssign:
    """Tests for DenseIdAssigner.assign."""

    def test_block_layout(self):
        """Shard s assigns s * lines_per_shard + seq."""
        assigner = DenseIdAssigner(lines_per_shard=10)
        out = list(assigner.assign(3, ["a", "b", "c"]))
        assert [(i, raw) for i, raw, _ in out] == [(30, "a"), (31, "b"), (32, "c")]

    def test_unique_over_many_shards(self):
        """K unique raw ids spread over several shards get K distinct ids."""
        assigner = DenseIdAssigner(lines_per_shard=64)
        raw_ids = [f"node-{i}" for i in range(1000)]
        ids = []
        for shard in range(0, 1000, 64):
            ids.extend(i for i, _, _ in assigner.assign(shard // 64, raw_ids[shard:shard + 64]))
        assert len(ids) == 1000
        assert len(set(ids)) == 1000

    def test_parse_failure_logged_and_skipped(self, caplog):
        """A bad record gets no id; the next good record takes its sequence number."""
        assigner = DenseIdAssigner(lines_per_shard=10)
        with caplog.at_level(logging.WARNING, logger="graphbuilder.dense_ids"):
            out = list(assigner.assign(0, ["a", "b\t{not json", "c"]))
        assert [(i, raw) for i, raw, _ in out] == [(0, "a"), (1, "c")]
        assert "skipping vertex record" in caplog.text

    def test_blank_lines_ignored(self):
        out = list(DenseIdAssigner(5).assign(0, ["a\n", "\n", "", "b\n"]))
        assert [i for i, _, _ in out] == [0, 1]

    def test_overfull_shard_rejected(self):
        assigner = DenseIdAssigner(lines_per_shard=2)
        with pytest.raises(ConfigurationError):
            list(assigner.assign(0, ["a", "b", "c"]))

    def test_bad_stride(self):
        with pytest.raises(ConfigurationError):
            DenseIdAssigner(0)


class TestParseVertexLine:
    def test_with_data(self):
        assert parse_vertex_line('A\t{"name": "alpha"}') == ("A", {"name": "alpha"})

    def test_without_data(self):
        assert parse_vertex_line("A") == ("A", {})

    def test_non_object(self):
        with pytest.raises(RecordParseError):
            parse_vertex_line("A\t[1]")


class TestWriteShard:
    """One pass writes the vidmap and vdata streams."""

    def test_two_streams(self, tmp_path):
        stats = DenseIdAssigner(100).write_shard(2, ['A\t{"x": 1}', "B"], tmp_path)
        vidmap = list(read_lines(tmp_path / "vidmap" / "part-00002"))
        vdata = list(read_lines(tmp_path / "vdata" / "part-00002"))
        assert vidmap == ["200\tA", "201\tB"]
        assert [line.split("\t")[0] for line in vdata] == ["200", "201"]
        assert json.loads(vdata[0].split("\t")[1]) == {"x": 1}
        assert stats.ids_assigned == 2


class TestAssignDenseIds:
    """End-to-end HashId over split shards."""

    def test_split_into_shards(self, tmp_path):
        source = write_lines(tmp_path / "vertices", [f"v{i}" for i in range(10)])
        paths = split_into_shards([source], 4, tmp_path / "shards")
        assert [len(list(read_lines(p))) for p in paths] == [4, 4, 2]

    def test_dense_when_shards_full(self, tmp_path):
        """Full shards except the last give ids 0..n-1 with no holes."""
        source = write_lines(tmp_path / "vertices", [f"v{i}" for i in range(10)])
        stats = assign_dense_ids([source], tmp_path / "out", 4, tmp_path / "work")
        ids = []
        for path in sorted((tmp_path / "out" / "vidmap").glob("part-*")):
            ids.extend(int(line.split("\t")[0]) for line in read_lines(path))
        assert sorted(ids) == list(range(10))
        assert stats.shards == 3

    def test_unique_but_not_dense_with_failures(self, tmp_path):
        """A skipped record leaves a hole: ids stay unique, packing is lost."""
        lines = ["v0", "v1\t{bad", "v2", "v3", "v4"]
        source = write_lines(tmp_path / "vertices", lines)
        stats = assign_dense_ids([source], tmp_path / "out", 2, tmp_path / "work")
        ids = []
        for path in sorted((tmp_path / "out" / "vidmap").glob("part-*")):
            ids.extend(int(line.split("\t")[0]) for line in read_lines(path))
        assert ids == [0, 2, 3, 4]
        assert stats.parse_errors == 1
