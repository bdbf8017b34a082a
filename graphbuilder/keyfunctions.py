"""Partition key functions for graph elements.

A key function maps a graph element to the value the shuffle partitions on.
Vertices are always keyed by their own id; the three functions differ in how
edges are keyed, which decides what an edge is co-located with.
``ElementIdKeyFunction`` keys on the ``raw_id`` text, the same key the
vertex list and the dictionary are written with.
"""

from graphbuilder.elements import ElementKind


class KeyFunction:
    def vertex_key(self, vertex):
        return vertex.id

    def edge_key(self, edge):
        raise NotImplementedError

    def __call__(self, element):
        if element.kind is ElementKind.VERTEX:
            return self.vertex_key(element)
        return self.edge_key(element)


class ElementIdKeyFunction(KeyFunction):
    """Edges keyed by their unordered endpoint pair and label.

    Both directions of a pair land in the same group, which is what lets the
    merger drop one of them when bidirectional cleaning is on.
    """

    def vertex_key(self, vertex):
        return vertex.id.raw_id

    def edge_key(self, edge):
        a, b = sorted((edge.src.raw_id, edge.dst.raw_id))
        return (a, b, edge.label)


class SourceVertexKeyFunction(KeyFunction):
    """Edges keyed by their source vertex id."""

    def edge_key(self, edge):
        return edge.src


class DestinationVertexKeyFunction(KeyFunction):
    """Edges keyed by their destination vertex id."""

    def edge_key(self, edge):
        return edge.dst
