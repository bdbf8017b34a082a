"""Property graph elements: vertex and edge identifiers plus property maps.

Vertices and edges travel through the same partitioned channels, so every
element carries an explicit ``kind`` tag (``ElementKind.VERTEX`` or
``ElementKind.EDGE``) and stages dispatch on that tag.

Element identity never includes properties: two vertices are duplicates when
their ``VertexID`` values are equal, two edges when their ``EdgeID`` values
(source, destination, label) are equal.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

import msgpack

from graphbuilder.errors import RecordParseError


class ElementKind(Enum):
    VERTEX = "V"
    EDGE = "E"


RAW_ID_SEPARATOR = "."
_ESCAPE = "\\"


def _escape(text: str) -> str:
    return text.replace(_ESCAPE, _ESCAPE * 2).replace(RAW_ID_SEPARATOR, _ESCAPE + RAW_ID_SEPARATOR)


@dataclass(frozen=True)
class VertexID:
    """Identity of a vertex: a name and an optional label.

    Names and labels are stored as strings, so ``VertexID(5)`` and
    ``VertexID("5")`` are the same vertex; a missing name is stored as "".
    Equality on ``VertexID`` and equality on ``raw_id`` always agree.
    """

    name: Any
    label: Optional[str] = None

    def __post_init__(self):
        if self.name is None:
            object.__setattr__(self, "name", "")
        elif not isinstance(self.name, str):
            object.__setattr__(self, "name", str(self.name))
        if self.label is not None and not isinstance(self.label, str):
            object.__setattr__(self, "label", str(self.label))

    @property
    def raw_id(self) -> str:
        """Text form used as the raw id in dictionaries and edge lists.

        ``label.name`` with backslash escapes for ``.`` and ``\\`` inside
        either part; an unlabelled id is just its escaped name. An unescaped
        ``.`` therefore appears exactly when the id carries a label.
        """
        name = _escape(self.name)
        if self.label is None:
            return name
        return f"{_escape(self.label)}{RAW_ID_SEPARATOR}{name}"

    @classmethod
    def from_raw_id(cls, text: str) -> "VertexID":
        """Inverse of ``raw_id``."""
        parts = [[]]
        chars = iter(text)
        for ch in chars:
            if ch == _ESCAPE:
                parts[-1].append(next(chars, _ESCAPE))
            elif ch == RAW_ID_SEPARATOR and len(parts) == 1:
                parts.append([])
            else:
                parts[-1].append(ch)
        if len(parts) == 1:
            return cls("".join(parts[0]))
        return cls("".join(parts[1]), "".join(parts[0]))

    def __str__(self):
        return self.raw_id


@dataclass(frozen=True)
class EdgeID:
    """Identity of an edge: (source, destination, label)."""

    src: VertexID
    dst: VertexID
    label: str

    def reverse(self) -> "EdgeID":
        return EdgeID(self.dst, self.src, self.label)

    @property
    def is_self_edge(self) -> bool:
        return self.src == self.dst

    def __str__(self):
        return f"({self.src}, {self.dst}, {self.label})"


@dataclass
class Vertex:
    id: VertexID
    properties: Dict[str, Any] = field(default_factory=dict)
    kind: ElementKind = field(default=ElementKind.VERTEX, init=False)


@dataclass
class Edge:
    id: EdgeID
    properties: Dict[str, Any] = field(default_factory=dict)
    kind: ElementKind = field(default=ElementKind.EDGE, init=False)

    @property
    def src(self) -> VertexID:
        return self.id.src

    @property
    def dst(self) -> VertexID:
        return self.id.dst

    @property
    def label(self) -> str:
        return self.id.label


GraphElement = Union[Vertex, Edge]


def make_edge(src, dst, label, properties=None, src_label=None, dst_label=None):
    """Build an edge from bare vertex names."""
    return Edge(
        EdgeID(VertexID(src, src_label), VertexID(dst, dst_label), label),
        dict(properties or {}),
    )


# ---------------------------------------------------------------------------
# Shuffle framing
# ---------------------------------------------------------------------------


def element_to_record(element: GraphElement) -> list:
    """Flatten an element into a msgpack-friendly list."""
    if element.kind is ElementKind.VERTEX:
        vid = element.id
        return [ElementKind.VERTEX.value, vid.name, vid.label, element.properties]
    eid = element.id
    return [
        ElementKind.EDGE.value,
        eid.src.name,
        eid.src.label,
        eid.dst.name,
        eid.dst.label,
        eid.label,
        element.properties,
    ]


def element_from_record(record) -> GraphElement:
    """Inverse of ``element_to_record``."""
    tag = record[0]
    if tag == ElementKind.VERTEX.value:
        _, name, label, props = record
        return Vertex(VertexID(name, label), dict(props))
    if tag == ElementKind.EDGE.value:
        _, src, src_label, dst, dst_label, label, props = record
        return Edge(
            EdgeID(VertexID(src, src_label), VertexID(dst, dst_label), label),
            dict(props),
        )
    raise RecordParseError(f"Unknown element tag {tag!r}")


def pack_element(element: GraphElement) -> bytes:
    return msgpack.packb(element_to_record(element), use_bin_type=True)
