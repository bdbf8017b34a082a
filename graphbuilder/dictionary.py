"""Sharded raw-id dictionary (the SortDict stage).

Repartitions ``surrogateId<TAB>rawId`` entries into ``num_shards`` shards by
``hash(rawId)`` (key space ``raw``, used to resolve edge endpoints) or by
``hash(surrogateId)`` (key space ``surrogate``, used for reverse lookups).
Every vidmap part file is handled by one worker that appends to

    vidmap-shard{k}-r-{part:05d}

so the files of shard ``k`` are found by listing the directory and matching
the token ``shard{k}-r-``. Lines keep the ``surrogateId<TAB>rawId`` order in
both key spaces.

A ``_MANIFEST.json`` with the shard count and key space is written last; a
directory without one is not a finished dictionary.
"""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from graphbuilder.errors import ConfigurationError, RecordParseError, StatusCode
from graphbuilder.execution import run_tasks
from graphbuilder.hashing import PartitionHasher
from graphbuilder.shuffle import BucketWriter, list_bucket_files, read_lines

logger = logging.getLogger(__name__)

MANIFEST_NAME = "_MANIFEST.json"
SHARD_PREFIX = "vidmap"
SHARD_TOKEN = "shard{bucket}-r-"

KEY_SPACES = ("raw", "surrogate")


@dataclass
class DictionaryStats:
    entries: int = 0
    parse_errors: int = 0

    def add(self, other):
        self.entries += other.entries
        self.parse_errors += other.parse_errors
        return self


@dataclass
class DictionaryManifest:
    num_shards: int
    key_space: str
    entries: int = 0

    def to_dict(self):
        return {"num_shards": self.num_shards, "key_space": self.key_space, "entries": self.entries}


def parse_entry(line):
    """Parse one ``surrogateId<TAB>rawId`` dictionary line."""
    sid, sep, raw_id = line.partition("\t")
    if not sep or not raw_id:
        raise RecordParseError("dictionary entry needs two fields", line=line)
    try:
        return int(sid), raw_id
    except ValueError:
        raise RecordParseError(f"surrogate id {sid!r} is not an integer", line=line) from None


def read_manifest(dictionary_dir) -> DictionaryManifest:
    """Load the manifest; a missing one is a fatal configuration error."""
    path = Path(dictionary_dir) / MANIFEST_NAME
    if not path.is_file():
        raise ConfigurationError(
            f"no dictionary found at {dictionary_dir} ({MANIFEST_NAME} is missing)",
            status=StatusCode.MISSING_DICTIONARY,
        )
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return DictionaryManifest(
        num_shards=int(data["num_shards"]),
        key_space=data.get("key_space", "raw"),
        entries=int(data.get("entries", 0)),
    )


def load_shard(dictionary_dir, shard: int, reverse: bool = False):
    """Load one dictionary shard into a dict.

    ``reverse=False`` gives ``rawId -> surrogateId``; ``reverse=True`` gives
    ``surrogateId -> rawId`` (for dictionaries sharded by surrogate id).
    Malformed lines are logged and skipped.
    """
    table = {}
    for path in list_bucket_files(dictionary_dir, shard, SHARD_TOKEN):
        for line in read_lines(path):
            try:
                sid, raw_id = parse_entry(line)
            except RecordParseError as exc:
                logger.warning("%s: skipping dictionary entry: %s", path.name, exc)
                continue
            if reverse:
                table[sid] = raw_id
            else:
                table[raw_id] = sid
    return table


class DictionaryShardBuilder:
    """Repartition vidmap entries into a sharded on-disk dictionary."""

    def __init__(self, num_shards: int, key_space: str = "raw"):
        if key_space not in KEY_SPACES:
            raise ConfigurationError(f"unknown dictionary key space {key_space!r}")
        self.hasher = PartitionHasher(num_shards)
        self.num_shards = num_shards
        self.key_space = key_space

    def shard_of(self, surrogate_id: int, raw_id: str) -> int:
        if self.key_space == "raw":
            return self.hasher(raw_id)
        return self.hasher(surrogate_id)

    def write_part(self, part: int, lines, out_dir) -> DictionaryStats:
        """Shard the entries of one vidmap part file."""
        stats = DictionaryStats()
        name_format = f"{SHARD_PREFIX}-shard{{bucket}}-r-{part:05d}"
        with BucketWriter(out_dir, name_format) as writer:
            for line in lines:
                try:
                    sid, raw_id = parse_entry(line)
                except RecordParseError as exc:
                    stats.parse_errors += 1
                    logger.warning("vidmap part %d: skipping entry: %s", part, exc)
                    continue
                writer.write_line(self.shard_of(sid, raw_id), f"{sid}\t{raw_id}")
                stats.entries += 1
        return stats

    def write_manifest(self, out_dir, entries=0):
        manifest = DictionaryManifest(self.num_shards, self.key_space, entries)
        with open(Path(out_dir) / MANIFEST_NAME, "w", encoding="utf-8") as f:
            json.dump(manifest.to_dict(), f, indent=2)
        return manifest

    def build(self, vidmap_paths, out_dir, executor_class=None, workers=None) -> DictionaryStats:
        """Shard every vidmap part file and then write the manifest."""
        t0 = time.perf_counter()
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        manifest_path = out_dir / MANIFEST_NAME
        if manifest_path.exists():
            manifest_path.unlink()
        for stale in out_dir.glob(f"{SHARD_PREFIX}-shard*"):
            stale.unlink()

        tasks = [
            (self.num_shards, self.key_space, part, str(path), str(out_dir))
            for part, path in enumerate(sorted(vidmap_paths))
        ]
        total = DictionaryStats()
        for stats in run_tasks(_shard_part_task, tasks, executor_class, workers):
            total.add(stats)
        self.write_manifest(out_dir, total.entries)
        logger.info(
            "SortDict done: %d entries into %d %s-keyed shards in %.2fs",
            total.entries, self.num_shards, self.key_space, time.perf_counter() - t0,
        )
        return total


def _shard_part_task(args):
    num_shards, key_space, part, path, out_dir = args
    builder = DictionaryShardBuilder(num_shards, key_space)
    return builder.write_part(part, read_lines(path), out_dir)
