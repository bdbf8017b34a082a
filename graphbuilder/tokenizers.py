"""Raw record tokenizers.

A tokenizer turns one raw input line into a finite list of vertices and a
finite list of edges. It also acts as the record classifier
(``is_vertex_record`` / ``is_edge_record``). Implementations are looked up by
name in ``TOKENIZERS``.

jsonl format (one object per line)::

    {"id": "CHEBI:6801", "category": "biolink:SmallMolecule", "name": "metformin"}
    {"subject": "CHEBI:6801", "predicate": "biolink:treats", "object": "MONDO:0005148"}

Node lines are recognised by ``id``; edge lines by ``subject`` + ``object``.
An optional ``label`` on node lines (and ``subject_label`` / ``object_label``
on edge lines) becomes the VertexID label. All remaining fields are
properties.

tsv format::

    V<TAB>rawId[<TAB>json properties]
    E<TAB>src<TAB>dst<TAB>label[<TAB>json properties]
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Tuple

from graphbuilder.elements import Edge, EdgeID, Vertex, VertexID
from graphbuilder.errors import ConfigurationError, RecordParseError, StatusCode

logger = logging.getLogger(__name__)


# Fields that are structural (not stored as properties)
_NODE_CORE_FIELDS = {"id", "label"}
_EDGE_CORE_FIELDS = {"subject", "object", "predicate", "subject_label", "object_label"}


@dataclass
class TokenizeStats:
    lines_read: int = 0
    malformed_lines: int = 0
    vertices: int = 0
    edges: int = 0


class Tokenizer:
    name = None

    def is_vertex_record(self, line: str) -> bool:
        raise NotImplementedError

    def is_edge_record(self, line: str) -> bool:
        raise NotImplementedError

    def tokenize(self, line: str) -> Tuple[List[Vertex], List[Edge]]:
        raise NotImplementedError


class JsonlTokenizer(Tokenizer):
    name = "jsonl"

    @staticmethod
    def _load(line):
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            raise RecordParseError(f"invalid JSON: {exc}", line=line) from exc
        if not isinstance(data, dict):
            raise RecordParseError("record is not a JSON object", line=line)
        return data

    def is_vertex_record(self, line):
        try:
            data = self._load(line)
        except RecordParseError:
            return False
        return "id" in data and "subject" not in data

    def is_edge_record(self, line):
        try:
            data = self._load(line)
        except RecordParseError:
            return False
        return "subject" in data and "object" in data

    def tokenize(self, line):
        data = self._load(line)
        if "subject" in data and "object" in data:
            if "predicate" not in data:
                raise RecordParseError("edge record has no predicate", line=line)
            eid = EdgeID(
                VertexID(data["subject"], data.get("subject_label")),
                VertexID(data["object"], data.get("object_label")),
                data["predicate"],
            )
            props = {k: v for k, v in data.items() if k not in _EDGE_CORE_FIELDS}
            return [], [Edge(eid, props)]
        if "id" in data:
            vid = VertexID(data["id"], data.get("label"))
            props = {k: v for k, v in data.items() if k not in _NODE_CORE_FIELDS}
            return [Vertex(vid, props)], []
        raise RecordParseError("record is neither a node nor an edge", line=line)


class TsvTokenizer(Tokenizer):
    name = "tsv"

    def is_vertex_record(self, line):
        return line.startswith("V\t")

    def is_edge_record(self, line):
        return line.startswith("E\t")

    @staticmethod
    def _props(text, line):
        if not text:
            return {}
        try:
            props = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RecordParseError(f"invalid property map: {exc}", line=line) from exc
        if not isinstance(props, dict):
            raise RecordParseError("property map is not a JSON object", line=line)
        return props

    def tokenize(self, line):
        parts = line.rstrip("\n\r").split("\t")
        tag = parts[0]
        if tag == "V" and len(parts) in (2, 3) and parts[1]:
            props = self._props(parts[2] if len(parts) == 3 else "", line)
            return [Vertex(VertexID(parts[1]), props)], []
        if tag == "E" and len(parts) in (4, 5) and parts[1] and parts[2]:
            props = self._props(parts[4] if len(parts) == 5 else "", line)
            eid = EdgeID(VertexID(parts[1]), VertexID(parts[2]), parts[3])
            return [], [Edge(eid, props)]
        raise RecordParseError(f"malformed tsv record ({len(parts)} fields)", line=line)


TOKENIZERS = {cls.name: cls for cls in (JsonlTokenizer, TsvTokenizer)}


def get_tokenizer(name):
    try:
        return TOKENIZERS[name]()
    except KeyError:
        raise ConfigurationError(
            f"unknown tokenizer {name!r}; choose from {sorted(TOKENIZERS)}",
            status=StatusCode.CLASS_INSTANTIATION_ERROR,
        ) from None


def tokenize_files(paths, tokenizer, stats=None):
    """Yield every vertex and edge from the given input files.

    Blank lines are ignored. Lines that fail to parse are logged at WARNING
    and skipped; ``stats`` (a ``TokenizeStats``) is updated if supplied.
    """
    for path in paths:
        with open(path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, 1):
                if not line.strip():
                    continue
                if stats is not None:
                    stats.lines_read += 1
                try:
                    vertices, edges = tokenizer.tokenize(line)
                except RecordParseError as exc:
                    if stats is not None:
                        stats.malformed_lines += 1
                    logger.warning("%s:%d: skipping record: %s", path, lineno, exc)
                    continue
                if stats is not None:
                    stats.vertices += len(vertices)
                    stats.edges += len(edges)
                yield from vertices
                yield from edges
