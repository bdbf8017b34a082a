"""External graph store clients.

The sink pipeline talks to a store through five calls:

    insert_vertex() -> store id
    insert_edge(src_store_id, dst_store_id, label) -> EdgeHandle
    set_property(handle, key, value)     handle: vertex store id or EdgeHandle
    commit()
    close()

Stores are opened explicitly at the start of a pass and closed at its end;
``open_store`` maps a registry name to a constructor.

``LMDBGraphStore`` is the bundled implementation. LMDB is a memory-mapped
B-tree; vertices and edges live in two named databases keyed by 8-byte
big-endian ids, values are msgpack blobs. The next free ids are kept in a
``meta`` database so a reopened store keeps counting where it stopped.
"""

import logging
import struct
from collections import namedtuple
from pathlib import Path

import lmdb
import msgpack

from graphbuilder.errors import ConfigurationError, StatusCode, StoreError

logger = logging.getLogger(__name__)


# 50 GB virtual address space (not allocated until used)
_DEFAULT_MAP_SIZE = 50 * 1024 * 1024 * 1024

_NEXT_VERTEX_KEY = b"next_vertex_id"
_NEXT_EDGE_KEY = b"next_edge_id"

EdgeHandle = namedtuple("EdgeHandle", ["id", "src", "dst", "label"])


def _encode_key(idx: int) -> bytes:
    """Encode an id as 8-byte big-endian for correct LMDB sort order."""
    return struct.pack(">Q", idx)


def _decode_key(key: bytes) -> int:
    """Decode 8-byte big-endian key back to an id."""
    return struct.unpack(">Q", bytes(key))[0]


class GraphStore:
    """Interface of an external graph store client."""

    def insert_vertex(self) -> int:
        raise NotImplementedError

    def insert_edge(self, src: int, dst: int, label: str) -> EdgeHandle:
        raise NotImplementedError

    def set_property(self, handle, key, value):
        raise NotImplementedError

    def commit(self):
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class LMDBGraphStore(GraphStore):
    """Graph store backed by a local LMDB environment.

    Writes go into one open write transaction that ``commit()`` closes.
    ``close()`` aborts whatever was not committed.
    """

    def __init__(self, path, map_size=_DEFAULT_MAP_SIZE):
        self._env = None
        self._txn = None
        self._path = Path(path)
        self._path.mkdir(parents=True, exist_ok=True)
        self._env = lmdb.open(
            str(self._path),
            map_size=map_size,
            max_dbs=3,
            readahead=False,
        )
        self._vertices = self._env.open_db(b"vertices")
        self._edges = self._env.open_db(b"edges")
        self._meta = self._env.open_db(b"meta")

    @property
    def path(self):
        return self._path

    def _write_txn(self):
        if self._env is None:
            raise StoreError(f"store at {self._path} is closed")
        if self._txn is None:
            self._txn = self._env.begin(write=True)
        return self._txn

    def _next_id(self, txn, key):
        raw = txn.get(key, db=self._meta)
        idx = 0 if raw is None else _decode_key(raw)
        txn.put(key, _encode_key(idx + 1), db=self._meta)
        return idx

    def insert_vertex(self) -> int:
        txn = self._write_txn()
        vid = self._next_id(txn, _NEXT_VERTEX_KEY)
        txn.put(_encode_key(vid), msgpack.packb({}, use_bin_type=True), db=self._vertices)
        return vid

    def insert_edge(self, src, dst, label) -> EdgeHandle:
        txn = self._write_txn()
        for endpoint in (src, dst):
            if txn.get(_encode_key(endpoint), db=self._vertices) is None:
                raise StoreError(f"edge {label!r} references unknown vertex {endpoint}")
        eid = self._next_id(txn, _NEXT_EDGE_KEY)
        record = {"src": src, "dst": dst, "label": label, "properties": {}}
        txn.put(_encode_key(eid), msgpack.packb(record, use_bin_type=True), db=self._edges)
        return EdgeHandle(eid, src, dst, label)

    def set_property(self, handle, key, value):
        txn = self._write_txn()
        if isinstance(handle, EdgeHandle):
            db, k = self._edges, _encode_key(handle.id)
            raw = txn.get(k, db=db)
            if raw is None:
                raise StoreError(f"unknown edge {handle.id}")
            record = msgpack.unpackb(raw, raw=False)
            record["properties"][key] = value
        else:
            db, k = self._vertices, _encode_key(handle)
            raw = txn.get(k, db=db)
            if raw is None:
                raise StoreError(f"unknown vertex {handle}")
            record = msgpack.unpackb(raw, raw=False)
            record[key] = value
        txn.put(k, msgpack.packb(record, use_bin_type=True), db=db)

    def commit(self):
        if self._txn is not None:
            self._txn.commit()
            self._txn = None

    def close(self):
        """Abort uncommitted writes and close the LMDB environment."""
        if self._txn is not None:
            self._txn.abort()
            self._txn = None
        if self._env is not None:
            self._env.close()
            self._env = None

    def __del__(self):
        self.close()

    # Read helpers

    def get_vertex(self, vid):
        """Properties of one vertex, or ``None`` if it does not exist."""
        with self._env.begin(buffers=True) as txn:
            val = txn.get(_encode_key(vid), db=self._vertices)
            if val is None:
                return None
            return msgpack.unpackb(val, raw=False)

    def iter_vertices(self):
        """Yield ``(store_id, properties)`` in id order."""
        with self._env.begin() as txn:
            for key, val in txn.cursor(db=self._vertices):
                yield _decode_key(key), msgpack.unpackb(val, raw=False)

    def iter_edges(self):
        """Yield ``(edge_id, src, dst, label, properties)`` in id order."""
        with self._env.begin() as txn:
            for key, val in txn.cursor(db=self._edges):
                record = msgpack.unpackb(val, raw=False)
                yield (_decode_key(key), record["src"], record["dst"],
                       record["label"], record["properties"])

    def count(self):
        """Return ``(num_vertices, num_edges)``."""
        with self._env.begin() as txn:
            return (txn.stat(self._vertices)["entries"],
                    txn.stat(self._edges)["entries"])


STORES = {
    "lmdb": LMDBGraphStore,
}


def open_store(kind, *args, **kwargs) -> GraphStore:
    """Open a store by registry name."""
    try:
        cls = STORES[kind]
    except KeyError:
        raise ConfigurationError(
            f"unknown graph store {kind!r}; choose from {sorted(STORES)}",
            status=StatusCode.CLASS_INSTANTIATION_ERROR,
        ) from None
    logger.debug("opening %s store %s", kind, args)
    return cls(*args, **kwargs)
