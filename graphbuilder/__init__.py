"""
GraphBuilder - Raw records to a deduplicated property graph with resolved ids
"""

__version__ = "0.1.0"

from graphbuilder.combine import COMBINERS, Combiner, get_combiner
from graphbuilder.config import PipelineConfig
from graphbuilder.dense_ids import DenseIdAssigner, assign_dense_ids
from graphbuilder.dictionary import DictionaryShardBuilder, load_shard, read_manifest
from graphbuilder.edge_join import EdgeRepartitionJoin
from graphbuilder.elements import (
    Edge,
    EdgeID,
    ElementKind,
    GraphElement,
    Vertex,
    VertexID,
    make_edge,
)
from graphbuilder.errors import (
    ConfigurationError,
    GraphBuilderError,
    RecordParseError,
    StatusCode,
    StoreError,
)
from graphbuilder.graph import CSRGraph
from graphbuilder.hashing import PartitionHasher, bucket_of, stable_hash
from graphbuilder.ingress import INGRESS, IngressResult, VertexRecord, get_ingress, partition_edges
from graphbuilder.join import GroupScanLookup, ShardFileLookup
from graphbuilder.keyfunctions import (
    DestinationVertexKeyFunction,
    ElementIdKeyFunction,
    SourceVertexKeyFunction,
)
from graphbuilder.merge import GraphElementMerger
from graphbuilder.pipeline import build_surrogate_graph, load_into_store
from graphbuilder.sink import ExternalSinkIdPropagator
from graphbuilder.store import GraphStore, LMDBGraphStore, open_store
from graphbuilder.tokenizers import TOKENIZERS, get_tokenizer
from graphbuilder.transform import FUNCTIONALS, get_functional, transform_edges

__all__ = [
    # Elements
    "Edge",
    "EdgeID",
    "ElementKind",
    "GraphElement",
    "Vertex",
    "VertexID",
    "make_edge",
    # Errors
    "ConfigurationError",
    "GraphBuilderError",
    "RecordParseError",
    "StatusCode",
    "StoreError",
    # Stages
    "PartitionHasher",
    "bucket_of",
    "stable_hash",
    "DenseIdAssigner",
    "assign_dense_ids",
    "DictionaryShardBuilder",
    "load_shard",
    "read_manifest",
    "EdgeRepartitionJoin",
    "ShardFileLookup",
    "GroupScanLookup",
    "GraphElementMerger",
    "ExternalSinkIdPropagator",
    "partition_edges",
    "IngressResult",
    "VertexRecord",
    "transform_edges",
    # Key functions
    "ElementIdKeyFunction",
    "SourceVertexKeyFunction",
    "DestinationVertexKeyFunction",
    # Registries
    "COMBINERS",
    "Combiner",
    "get_combiner",
    "TOKENIZERS",
    "get_tokenizer",
    "INGRESS",
    "get_ingress",
    "FUNCTIONALS",
    "get_functional",
    # Stores
    "GraphStore",
    "LMDBGraphStore",
    "open_store",
    # Graph
    "CSRGraph",
    # Runs
    "PipelineConfig",
    "build_surrogate_graph",
    "load_into_store",
]
