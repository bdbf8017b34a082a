"""Bucketed lookups and the resolve step shared by both two-pass joins.

A worker resolving records of bucket ``k`` holds exactly one lookup table,
the one for ``k``. When a record for a different bucket arrives the table is
dropped and the one for the new bucket is loaded. Reloading on mismatch keeps
the result correct even when the input is not grouped; it only costs extra
loads, which ``loads`` counts.

Two table sources exist:

- ``ShardFileLookup`` reads dictionary shard files from disk.
- ``GroupScanLookup`` builds the table by scanning the vertices delivered in
  the same group.
"""

import logging
from dataclasses import dataclass

from graphbuilder.dictionary import load_shard

logger = logging.getLogger(__name__)


@dataclass
class JoinStats:
    """Counters for one resolve pass."""

    records_in: int = 0
    resolved: int = 0
    misses: int = 0
    parse_errors: int = 0
    table_loads: int = 0

    def add(self, other):
        self.records_in += other.records_in
        self.resolved += other.resolved
        self.misses += other.misses
        self.parse_errors += other.parse_errors
        self.table_loads += other.table_loads
        return self


class BucketedLookup:
    """Holds the lookup table for one bucket at a time."""

    def __init__(self):
        self.bucket = None
        self.table = {}
        self.loads = 0

    def load(self, bucket):
        raise NotImplementedError

    def ensure(self, bucket):
        if self.bucket != bucket:
            self.table = {}
            self.table = self.load(bucket)
            self.bucket = bucket
            self.loads += 1
            logger.debug("%s: loaded %d entries for bucket %d",
                         type(self).__name__, len(self.table), bucket)
        return self.table

    def resolve(self, bucket, key):
        """Return the value for ``key`` in ``bucket``, or ``None`` if absent."""
        return self.ensure(bucket).get(key)


class ShardFileLookup(BucketedLookup):
    """Dictionary shard files as the table source.

    Forward lookups map raw id to surrogate id; ``reverse=True`` maps
    surrogate id to raw id and expects a dictionary sharded by surrogate id.
    """

    def __init__(self, dictionary_dir, reverse=False):
        super().__init__()
        self.dictionary_dir = dictionary_dir
        self.reverse = reverse

    def load(self, bucket):
        return load_shard(self.dictionary_dir, bucket, reverse=self.reverse)


class GroupScanLookup(BucketedLookup):
    """Vertices of the current group as the table source.

    ``attach(bucket, elements)`` hands over the group; ``extract(elements)``
    turns it into a dict when the table for that bucket is first needed.
    """

    def __init__(self, extract):
        super().__init__()
        self._extract = extract
        self._pending = None

    def attach(self, bucket, elements):
        self._pending = (bucket, elements)
        if self.bucket == bucket:
            # Same bucket number, new group contents.
            self.bucket = None

    def load(self, bucket):
        if self._pending is None or self._pending[0] != bucket:
            return {}
        return self._extract(self._pending[1])


def resolve_or_log(lookup, bucket, key, line, stats):
    """Resolve ``key`` or log the miss at ERROR and count it.

    A miss means the key was referenced but never assigned an id; the caller
    must drop the record.
    """
    value = lookup.resolve(bucket, key)
    if value is None:
        stats.misses += 1
        logger.error("Cannot find key %r in bucket %d: %s", key, bucket, line)
        return None
    stats.resolved += 1
    return value
