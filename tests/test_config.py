"""Unit tests for graphbuilder.config module."""

import pytest

from graphbuilder.config import PipelineConfig
from graphbuilder.errors import ConfigurationError, StatusCode


class TestDefaults:
    def test_dictionary_shards_follow_partitions(self):
        config = PipelineConfig(num_partitions=8)
        assert config.dictionary_shards == 8
        assert config.lines_per_shard == 6_000_000
        assert config.commit_batch_size == 10_000
        assert config.validate() is config


class TestFromEnv:
    """GRAPHBUILDER_* variables and overrides."""

    def test_reads_environment(self):
        env = {
            "GRAPHBUILDER_NUM_PARTITIONS": "32",
            "GRAPHBUILDER_CLEAN_BIDIRECTIONAL": "true",
            "GRAPHBUILDER_EDGE_COMBINER": "count",
            "GRAPHBUILDER_TOKENIZER": "tsv",
        }
        config = PipelineConfig.from_env(env)
        assert config.num_partitions == 32
        assert config.dictionary_shards == 32
        assert config.clean_bidirectional is True
        assert config.edge_combiner == "count"
        assert config.tokenizer == "tsv"

    def test_overrides_win_and_none_falls_through(self):
        env = {"GRAPHBUILDER_NUM_PARTITIONS": "32", "GRAPHBUILDER_WORKERS": "3"}
        config = PipelineConfig.from_env(env, num_partitions=4, workers=None)
        assert config.num_partitions == 4
        assert config.workers == 3

    def test_process_environment(self, monkeypatch):
        monkeypatch.setenv("GRAPHBUILDER_LINES_PER_SHARD", "100")
        assert PipelineConfig.from_env().lines_per_shard == 100

    def test_bad_integer(self):
        with pytest.raises(ConfigurationError):
            PipelineConfig.from_env({"GRAPHBUILDER_NUM_PARTITIONS": "many"})


class TestValidate:
    """Configuration errors are raised before any record is processed."""

    def test_shard_count_mismatch(self):
        config = PipelineConfig(num_partitions=8, dictionary_shards=4)
        with pytest.raises(ConfigurationError) as info:
            config.validate()
        assert info.value.status is StatusCode.SHARD_COUNT_MISMATCH

    @pytest.mark.parametrize("field", ["num_partitions", "lines_per_shard", "commit_batch_size"])
    def test_non_positive(self, field):
        config = PipelineConfig(**{field: 0})
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_unknown_combiner(self):
        with pytest.raises(ConfigurationError) as info:
            PipelineConfig(vertex_combiner="median").validate()
        assert info.value.status is StatusCode.CLASS_INSTANTIATION_ERROR

    def test_unknown_tokenizer(self):
        with pytest.raises(ConfigurationError):
            PipelineConfig(tokenizer="xml").validate()

    def test_unknown_executor(self):
        with pytest.raises(ConfigurationError):
            PipelineConfig(executor="cluster").validate()

    def test_error_message_carries_status(self):
        with pytest.raises(ConfigurationError) as info:
            PipelineConfig(num_partitions=8, dictionary_shards=4).validate()
        assert str(info.value).startswith("GRAPHBUILDER: dictionary shards do not match")

    def test_unknown_ingress(self):
        with pytest.raises(ConfigurationError) as info:
            PipelineConfig(ingress="oblivious").validate()
        assert info.value.status is StatusCode.CLASS_INSTANTIATION_ERROR

    def test_grid_ingress_needs_full_grid(self):
        PipelineConfig(ingress="constrainedgreedy", ingress_partitions=9).validate()
        with pytest.raises(ConfigurationError):
            PipelineConfig(ingress="constrainedgreedy", ingress_partitions=7).validate()


class TestIngressDefaults:
    def test_ingress_partitions_follow_partitions(self):
        config = PipelineConfig(num_partitions=4)
        assert config.ingress is None
        assert config.ingress_partitions == 4

    def test_ingress_from_environment(self):
        env = {"GRAPHBUILDER_INGRESS": "greedy", "GRAPHBUILDER_INGRESS_PARTITIONS": "6",
               "GRAPHBUILDER_SEED": "11"}
        config = PipelineConfig.from_env(env)
        assert config.ingress == "greedy"
        assert config.ingress_partitions == 6
        assert config.seed == 11
