"""Run configuration for a graph construction run.

Values come from ``GRAPHBUILDER_*`` environment variables and are then
overridden by whatever the caller (usually a console script) passes in.
``validate()`` must pass before any record is processed.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Optional

from graphbuilder.combine import COMBINERS
from graphbuilder.errors import ConfigurationError, StatusCode
from graphbuilder.execution import EXECUTOR_CHOICES
from graphbuilder.ingress import get_ingress
from graphbuilder.tokenizers import TOKENIZERS

ENV_PREFIX = "GRAPHBUILDER_"

DEFAULT_LINES_PER_SHARD = 6_000_000
DEFAULT_COMMIT_BATCH_SIZE = 10_000


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PipelineConfig:
    num_partitions: int = 16
    dictionary_shards: Optional[int] = None
    lines_per_shard: int = DEFAULT_LINES_PER_SHARD
    clean_bidirectional: bool = False
    vertex_combiner: Optional[str] = None
    edge_combiner: Optional[str] = None
    commit_batch_size: int = DEFAULT_COMMIT_BATCH_SIZE
    tokenizer: str = "jsonl"
    executor: str = "auto"
    workers: Optional[int] = None
    ingress: Optional[str] = None
    ingress_partitions: Optional[int] = None
    seed: Optional[int] = None

    def __post_init__(self):
        if self.dictionary_shards is None:
            self.dictionary_shards = self.num_partitions
        if self.ingress_partitions is None:
            self.ingress_partitions = self.num_partitions

    @classmethod
    def from_env(cls, environ=None, **overrides):
        """Build a config from ``GRAPHBUILDER_*`` variables plus overrides.

        Overrides whose value is ``None`` are ignored so that unset CLI
        options fall through to the environment.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                if f.name == "clean_bidirectional":
                    values[f.name] = _env_bool(raw)
                elif f.name in ("num_partitions", "dictionary_shards", "lines_per_shard",
                                "commit_batch_size", "workers", "ingress_partitions", "seed"):
                    values[f.name] = int(raw)
                else:
                    values[f.name] = raw
            except ValueError:
                raise ConfigurationError(
                    f"{ENV_PREFIX}{f.name.upper()}={raw!r} is not a valid integer"
                ) from None
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **overrides):
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self):
        """Raise ``ConfigurationError`` if the run cannot be executed as configured."""
        for name in ("num_partitions", "dictionary_shards", "lines_per_shard",
                     "commit_batch_size", "ingress_partitions"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if self.workers is not None and self.workers <= 0:
            raise ConfigurationError(f"workers must be positive, got {self.workers!r}")
        if self.dictionary_shards != self.num_partitions:
            raise ConfigurationError(
                f"dictionary has {self.dictionary_shards} shards but edges are "
                f"partitioned into {self.num_partitions} buckets",
                status=StatusCode.SHARD_COUNT_MISMATCH,
            )
        for name in ("vertex_combiner", "edge_combiner"):
            value = getattr(self, name)
            if value is not None and value not in COMBINERS:
                raise ConfigurationError(
                    f"unknown {name} {value!r}; choose from {sorted(COMBINERS)}",
                    status=StatusCode.CLASS_INSTANTIATION_ERROR,
                )
        if self.tokenizer not in TOKENIZERS:
            raise ConfigurationError(
                f"unknown tokenizer {self.tokenizer!r}; choose from {sorted(TOKENIZERS)}",
                status=StatusCode.CLASS_INSTANTIATION_ERROR,
            )
        if self.executor not in EXECUTOR_CHOICES:
            raise ConfigurationError(
                f"unknown executor {self.executor!r}; choose from {list(EXECUTOR_CHOICES)}"
            )
        if self.ingress is not None:
            get_ingress(self.ingress, self.ingress_partitions)
        return self
