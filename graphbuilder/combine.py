"""Property-map combine functions.

A combiner folds the property map of a duplicate element into an accumulated
map: ``accumulated = combiner.reduce(properties, accumulated)``, starting from
``combiner.identity()``. Merge results are only deterministic across runs when
the combiner is associative and commutative, because group arrival order is
not.

Combiners are selected by registry name so that worker callables stay
picklable for process pools.
"""

from typing import Any, Dict

from graphbuilder.errors import ConfigurationError, StatusCode


class Combiner:
    """Base combiner. Subclasses override ``reduce``."""

    name = None

    def identity(self) -> Dict[str, Any]:
        return {}

    def reduce(self, properties, accumulated):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class FirstValueCombiner(Combiner):
    """Keep the first value seen per key.

    Which value is "first" depends on arrival order inside a group, which is
    not stable across runs.
    """

    name = "first"

    def reduce(self, properties, accumulated):
        for key, value in properties.items():
            accumulated.setdefault(key, value)
        return accumulated


class OverwriteCombiner(Combiner):
    """Later values replace earlier ones."""

    name = "overwrite"

    def reduce(self, properties, accumulated):
        accumulated.update(properties)
        return accumulated


class CountCombiner(Combiner):
    """Count merged duplicates under the ``count`` key."""

    name = "count"

    def identity(self):
        return {"count": 0}

    def reduce(self, properties, accumulated):
        accumulated["count"] = accumulated.get("count", 0) + 1
        return accumulated


class SumCombiner(Combiner):
    """Sum numeric values per key; non-numeric values keep the first seen."""

    name = "sum"

    def reduce(self, properties, accumulated):
        for key, value in properties.items():
            current = accumulated.get(key)
            if (
                current is not None
                and _is_number(current)
                and _is_number(value)
            ):
                accumulated[key] = current + value
            else:
                accumulated.setdefault(key, value)
        return accumulated


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


COMBINERS = {
    cls.name: cls
    for cls in (FirstValueCombiner, OverwriteCombiner, CountCombiner, SumCombiner)
}


def get_combiner(name):
    """Instantiate a combiner by registry name. ``None`` means no combiner."""
    if name is None:
        return None
    if isinstance(name, Combiner):
        return name
    try:
        return COMBINERS[name]()
    except KeyError:
        raise ConfigurationError(
            f"unknown combine function {name!r}; choose from {sorted(COMBINERS)}",
            status=StatusCode.CLASS_INSTANTIATION_ERROR,
        ) from None
