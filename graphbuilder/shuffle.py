"""Local shuffle: hash-partitioned bucket files on disk.

Records are appended to one file per bucket through an LRU cache of open
handles, so the number of buckets is not limited by the file descriptor
limit. A bucket file is truncated the first time a writer touches it, so a
rerun never sees records left by an earlier run. Graph elements are framed
as consecutive msgpack arrays; text records are newline-delimited UTF-8
lines.

Every writer must be closed before the next pass lists its inputs. That close
is the barrier between passes.
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict

import msgpack

from graphbuilder.elements import element_from_record, pack_element
from graphbuilder.errors import RecordParseError

logger = logging.getLogger(__name__)

# 1MB buffer for efficient I/O.
BUFFER_SIZE = 1024 * 1024

# Maximum number of file handles to keep open at once (LRU cache limit).
MAX_OPEN_HANDLES = 128


@dataclass
class ShuffleStats:
    """Statistics from one shuffle write."""

    records_written: int = 0
    records_skipped: int = 0


class LRUFileCache:
    """LRU cache for file handles to prevent file descriptor exhaustion."""

    def __init__(self, max_handles: int, directory: Path, path_for):
        self._max_handles = max_handles
        self._directory = Path(directory)
        self._path_for = path_for
        self._cache: "OrderedDict[int, BinaryIO]" = OrderedDict()
        self._opened = set()

    def write(self, bucket_idx: int, data: bytes) -> None:
        """Write data to the specified bucket, opening handle if needed."""
        if bucket_idx in self._cache:
            self._cache.move_to_end(bucket_idx)
            handle = self._cache[bucket_idx]
        else:
            while len(self._cache) >= self._max_handles:
                _, old_handle = self._cache.popitem(last=False)
                old_handle.close()

            # Truncate on first open, append after an eviction.
            mode = "ab" if bucket_idx in self._opened else "wb"
            handle = open(self._directory / self._path_for(bucket_idx), mode, buffering=BUFFER_SIZE)
            self._opened.add(bucket_idx)
            self._cache[bucket_idx] = handle

        handle.write(data)

    def close_all(self) -> None:
        """Close all open file handles."""
        for handle in self._cache.values():
            handle.close()
        self._cache.clear()


class BucketWriter:
    """Write records to per-bucket files named by ``name_format``.

    ``name_format`` is a ``str.format`` template with a ``{bucket}`` field,
    e.g. ``"transedge-shard{bucket}-m-00003"``.
    """

    def __init__(self, directory, name_format="bucket-{bucket:05d}", max_handles=MAX_OPEN_HANDLES):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.name_format = name_format
        self.counts: Dict[int, int] = {}
        self._cache = LRUFileCache(max_handles, self.directory, self.file_name)

    def file_name(self, bucket: int) -> str:
        return self.name_format.format(bucket=bucket)

    def _write(self, bucket, data):
        self._cache.write(bucket, data)
        self.counts[bucket] = self.counts.get(bucket, 0) + 1

    def write_line(self, bucket: int, line: str) -> None:
        self._write(bucket, line.encode("utf-8") + b"\n")

    def write_element(self, bucket: int, element) -> None:
        self._write(bucket, pack_element(element))

    def paths(self):
        """Paths of the buckets that received at least one record, by bucket index."""
        return {b: self.directory / self.file_name(b) for b in sorted(self.counts)}

    def close(self):
        self._cache.close_all()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def shuffle_elements(elements, key_fn, hasher, directory, name_format="bucket-{bucket:05d}"):
    """Partition graph elements into bucket files by ``hasher(key_fn(element))``.

    Returns ``(paths, stats)`` where ``paths`` maps bucket index to file for
    every non-empty bucket.
    """
    stats = ShuffleStats()
    with BucketWriter(directory, name_format) as writer:
        for element in elements:
            writer.write_element(hasher(key_fn(element)), element)
            stats.records_written += 1
    return writer.paths(), stats


def read_elements(path):
    """Yield every graph element stored in a msgpack bucket file."""
    with open(path, "rb") as f:
        unpacker = msgpack.Unpacker(f, raw=False, strict_map_key=False)
        for record in unpacker:
            yield element_from_record(record)


def read_lines(path):
    """Yield the non-empty lines of a text bucket file, without the newline."""
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.rstrip("\n\r")
            if line:
                yield line


def list_bucket_files(directory, bucket: int, token_format: str):
    """List files in ``directory`` whose name carries the token for ``bucket``.

    ``token_format`` is a template like ``"shard{bucket}-r-"``; the token is
    matched as a substring of the file name so that ``shard1-`` never matches
    ``shard11-``.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []
    pattern = re.compile(re.escape(token_format.format(bucket=bucket)))
    return sorted(p for p in directory.iterdir() if p.is_file() and pattern.search(p.name))


def split_fields(line: str, expected: int):
    """Split a tab-separated record into at most ``expected`` fields.

    The last field keeps any embedded tabs. Raises ``RecordParseError`` when
    fewer than ``expected - 1`` fields are present (the last is optional).
    """
    parts = line.split("\t", expected - 1)
    if len(parts) < expected - 1 or any(p == "" for p in parts[: expected - 1]):
        raise RecordParseError(f"expected {expected} tab-separated fields", line=line)
    if len(parts) < expected:
        parts.append("")
    return parts
