"""Stable partition hashing.

Python's built-in ``hash()`` is salted per process for strings, so it cannot
be used to co-locate records across workers or across runs. Every value is
hashed here from a canonical byte encoding (UTF-8 for strings, msgpack for
other scalars) with CRC-32, and folded to a signed 32-bit integer. Pairs are
combined with the boost ``hash_combine`` recipe.
"""

import math
import zlib

import msgpack

from graphbuilder.elements import EdgeID, VertexID
from graphbuilder.errors import ConfigurationError

_GOLDEN = 0x9E3779B9


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    if value & 0x80000000:
        return value - 0x100000000
    return value


def _scalar_hash(value) -> int:
    if isinstance(value, str):
        data = value.encode("utf-8")
    elif isinstance(value, bytes):
        data = value
    else:
        data = msgpack.packb(value, use_bin_type=True)
    return _to_int32(zlib.crc32(data))


def combine(seed: int, value) -> int:
    """Fold the hash of ``value`` into ``seed``."""
    return _to_int32(stable_hash(value) + _GOLDEN + (seed << 6) + (seed >> 2))


def stable_hash(value) -> int:
    """Deterministic signed 32-bit hash of a raw id, vertex id or edge id."""
    if isinstance(value, VertexID):
        if value.label is None:
            return _scalar_hash(value.name)
        return combine(combine(0, value.label), value.name)
    if isinstance(value, EdgeID):
        return combine(combine(combine(0, value.src), value.dst), value.label)
    if isinstance(value, tuple):
        seed = 0
        for item in value:
            seed = combine(seed, item)
        return seed
    return _scalar_hash(value)


def bucket_of(code: int, num_buckets: int) -> int:
    """Map a signed hash code into ``[0, num_buckets)``.

    Uses truncated remainder, so negative codes give negative remainders that
    are folded back by adding ``num_buckets``.
    """
    bucket = int(math.fmod(code, num_buckets))
    if bucket < 0:
        bucket += num_buckets
    return bucket


class PartitionHasher:
    """Hash keys into one of ``num_buckets`` buckets.

    The bucket count is fixed for the lifetime of a run; any two stages whose
    partitions must line up have to be built with equal counts.
    """

    def __init__(self, num_buckets: int):
        if not isinstance(num_buckets, int) or num_buckets <= 0:
            raise ConfigurationError(
                f"bucket count must be a positive integer, got {num_buckets!r}"
            )
        self.num_buckets = num_buckets

    def bucket(self, key) -> int:
        return bucket_of(stable_hash(key), self.num_buckets)

    __call__ = bucket

    def __repr__(self):
        return f"PartitionHasher(num_buckets={self.num_buckets})"

    def __eq__(self, other):
        return isinstance(other, PartitionHasher) and other.num_buckets == self.num_buckets

    def __hash__(self):
        return hash(self.num_buckets)
