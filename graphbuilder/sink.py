"""Loading a merged graph into an external store that assigns its own ids.

Pass 1 groups elements by ``SourceVertexKeyFunction``: a group holds the
vertices whose id hashes to the bucket and every edge whose *source* hashes
there. The group is merged, each vertex is inserted and its store id recorded
on it under ``gb_store_id``, and only then is every edge of the group tagged
with its source's store id (``gb_src_store_id``). Tagged elements are
re-shuffled by ``DestinationVertexKeyFunction``.

Pass 2 sees each edge next to its destination vertex, which already carries
its store id from pass 1. The edge is inserted with both endpoints resolved;
commits happen every ``commit_batch_size`` edges and once more at the end.

Unresolvable endpoints are logged and dropped. Any exception from the store
client is raised as ``StoreError`` and ends the run. Each pass opens one
store handle at its start and closes it on every exit path; if that close
fails after the pass itself failed, the close error is logged and the pass
error is raised.
"""

import logging
import shutil
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from graphbuilder.elements import ElementKind
from graphbuilder.errors import StoreError
from graphbuilder.hashing import PartitionHasher
from graphbuilder.join import GroupScanLookup, JoinStats, resolve_or_log
from graphbuilder.keyfunctions import DestinationVertexKeyFunction, SourceVertexKeyFunction
from graphbuilder.merge import GraphElementMerger
from graphbuilder.shuffle import BucketWriter, read_elements, shuffle_elements

logger = logging.getLogger(__name__)

GB_ID = "gb_id"
STORE_ID_TAG = "gb_store_id"
SRC_STORE_ID_TAG = "gb_src_store_id"

_TAGS = (STORE_ID_TAG, SRC_STORE_ID_TAG)

PASS1_DIR = "sink-pass1"
PASS2_DIR = "sink-pass2"


@dataclass
class SinkStats:
    vertices_inserted: int = 0
    edges_tagged: int = 0
    edges_inserted: int = 0
    source_misses: int = 0
    target_misses: int = 0
    self_loops_dropped: int = 0
    bidirectional_dropped: int = 0
    commits: int = 0


def _store_ids(elements):
    return {
        e.id: e.properties[STORE_ID_TAG]
        for e in elements
        if e.kind is ElementKind.VERTEX and STORE_ID_TAG in e.properties
    }


class ExternalSinkIdPropagator:
    """Two-pass load of graph elements into an external store.

    Args:
        store_factory: Zero-argument callable returning an open store client.
            Called once per pass.
        num_partitions: Bucket count for both shuffles.
        vertex_combiner, edge_combiner, clean_bidirectional: passed to the
            pass-1 ``GraphElementMerger``.
        commit_batch_size: Edges inserted between two commits in pass 2.
    """

    def __init__(self, store_factory, num_partitions, vertex_combiner=None,
                 edge_combiner=None, clean_bidirectional=False, commit_batch_size=10_000):
        self.store_factory = store_factory
        self.hasher = PartitionHasher(num_partitions)
        self.merger = GraphElementMerger(vertex_combiner, edge_combiner, clean_bidirectional)
        self.commit_batch_size = commit_batch_size
        self.source_key = SourceVertexKeyFunction()
        self.destination_key = DestinationVertexKeyFunction()
        self.stats = SinkStats()
        self._pending_edges = 0

    # -- store access ------------------------------------------------------

    @staticmethod
    def _call(fn, *args):
        try:
            return fn(*args)
        except StoreError:
            raise
        except Exception as exc:
            name = getattr(fn, "__name__", repr(fn))
            raise StoreError(f"{name}{args!r} failed: {exc}") from exc

    def _open_store(self):
        return self._call(self.store_factory)

    def _commit(self, store):
        self._call(store.commit)
        self.stats.commits += 1

    @contextmanager
    def _store_session(self):
        """Open a store handle and close it on every exit path.

        A failing close after a failed pass is logged; the pass's own error
        is the one raised.
        """
        store = self._open_store()
        try:
            yield store
        except BaseException:
            try:
                store.close()
            except Exception as close_exc:
                logger.error("closing the store after a failed pass also failed: %s", close_exc)
            raise
        self._call(store.close)

    # -- pass 1 --------------------------------------------------------------

    def insert_vertices_and_tag(self, bucket, elements, store, writer, lookup=None):
        """Merge one pass-1 group, insert its vertices, tag its edges.

        Tagged vertices and edges are written to ``writer`` keyed by
        destination.
        """
        group = self.merger.merge(elements)
        self.stats.self_loops_dropped += group.stats.self_loops_dropped
        self.stats.bidirectional_dropped += group.stats.bidirectional_dropped

        for vertex in group.vertices:
            store_id = self._call(store.insert_vertex)
            self._call(store.set_property, store_id, GB_ID, vertex.id.raw_id)
            for key, value in vertex.properties.items():
                self._call(store.set_property, store_id, key, value)
            vertex.properties[STORE_ID_TAG] = store_id
            self.stats.vertices_inserted += 1
        if group.vertices:
            self._commit(store)

        lookup = lookup or GroupScanLookup(_store_ids)
        lookup.attach(bucket, group.vertices)
        join_stats = JoinStats()
        for vertex in group.vertices:
            writer.write_element(self.hasher(self.destination_key(vertex)), vertex)
        for edge in group.edges:
            src_store_id = resolve_or_log(lookup, bucket, edge.src, edge.id, join_stats)
            if src_store_id is None:
                continue
            edge.properties[SRC_STORE_ID_TAG] = src_store_id
            writer.write_element(self.hasher(self.destination_key(edge)), edge)
            self.stats.edges_tagged += 1
        self.stats.source_misses += join_stats.misses
        return group

    def run_pass1(self, bucket_paths, out_dir):
        lookup = GroupScanLookup(_store_ids)
        with self._store_session() as store:
            with BucketWriter(out_dir, "sink2-{bucket:05d}") as writer:
                for bucket, path in sorted(bucket_paths.items()):
                    self.insert_vertices_and_tag(bucket, read_elements(path), store, writer, lookup)
        return writer.paths()

    # -- pass 2 --------------------------------------------------------------

    def insert_edges(self, bucket, elements, store, lookup=None):
        """Insert the edges of one pass-2 group with both endpoints resolved."""
        elements = list(elements)
        lookup = lookup or GroupScanLookup(_store_ids)
        lookup.attach(bucket, elements)
        join_stats = JoinStats()
        for edge in elements:
            if edge.kind is not ElementKind.EDGE:
                continue
            dst_store_id = resolve_or_log(lookup, bucket, edge.dst, edge.id, join_stats)
            if dst_store_id is None:
                continue
            props = dict(edge.properties)
            src_store_id = props.pop(SRC_STORE_ID_TAG)
            for tag in _TAGS:
                props.pop(tag, None)
            handle = self._call(store.insert_edge, src_store_id, dst_store_id, edge.label)
            for key, value in props.items():
                self._call(store.set_property, handle, key, value)
            self.stats.edges_inserted += 1
            self._pending_edges += 1
            if self._pending_edges >= self.commit_batch_size:
                self._commit(store)
                self._pending_edges = 0
        self.stats.target_misses += join_stats.misses

    def run_pass2(self, bucket_paths):
        lookup = GroupScanLookup(_store_ids)
        with self._store_session() as store:
            self._pending_edges = 0
            for bucket, path in sorted(bucket_paths.items()):
                self.insert_edges(bucket, read_elements(path), store, lookup)
            self._commit(store)
            self._pending_edges = 0

    def run(self, elements, work_dir) -> SinkStats:
        """Shuffle, pass 1, barrier, pass 2. Returns the run's counters."""
        work_dir = Path(work_dir)
        for name in (PASS1_DIR, PASS2_DIR):
            shutil.rmtree(work_dir / name, ignore_errors=True)

        t0 = time.perf_counter()
        pass1_paths, shuffle_stats = shuffle_elements(
            elements,
            self.source_key,
            self.hasher,
            work_dir / PASS1_DIR,
            "sink1-{bucket:05d}",
        )
        logger.info("Sink shuffle done: %d elements into %d buckets in %.2fs",
                    shuffle_stats.records_written, len(pass1_paths), time.perf_counter() - t0)

        t1 = time.perf_counter()
        pass2_paths = self.run_pass1(pass1_paths, work_dir / PASS2_DIR)
        logger.info("Sink pass 1 done: %d vertices inserted, %d edges tagged, %d misses in %.2fs",
                    self.stats.vertices_inserted, self.stats.edges_tagged,
                    self.stats.source_misses, time.perf_counter() - t1)

        t2 = time.perf_counter()
        self.run_pass2(pass2_paths)
        logger.info("Sink pass 2 done: %d edges inserted, %d misses, %d commits in %.2fs",
                    self.stats.edges_inserted, self.stats.target_misses,
                    self.stats.commits, time.perf_counter() - t2)
        return self.stats
