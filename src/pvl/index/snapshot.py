"""Binary snapshot format for :class:`~pvl.index.hnsw.HNSWIndex`.

Layout (little endian)::

    header   magic "PVLHNSW\\0", version, dim, node count, live count,
             M, ef_construction, ef_search, max level, metadata length
    metadata UTF-8 JSON: ids, levels, adjacency per layer, tombstones,
             entry point, seed, RNG state
    vectors  float32 matrix, node count x dim
    trailer  CRC32 of everything above
"""

import json
import struct
import zlib

import numpy as np

from ..errors import SnapshotError

MAGIC = b"PVLHNSW\x00"
VERSION = 1
_HEADER = struct.Struct("<8sHIIIIIIiQ")
_TRAILER = struct.Struct("<I")


def encode_snapshot(index) -> bytes:
    """Serialize ``index``. The caller holds the index read lock."""
    meta, vectors = index._export_state()
    meta_bytes = json.dumps(meta, separators=(",", ":")).encode("utf-8")
    node_count = len(meta["ids"])
    header = _HEADER.pack(
        MAGIC,
        VERSION,
        index.dim,
        node_count,
        node_count - len(meta["deleted"]),
        index.m,
        index.ef_construction,
        index.ef_search,
        meta["max_level"],
        len(meta_bytes),
    )
    body = header + meta_bytes + np.ascontiguousarray(vectors, dtype="<f4").tobytes()
    return body + _TRAILER.pack(zlib.crc32(body) & 0xFFFFFFFF)


def decode_snapshot(data: bytes):
    """Rebuild an index from :func:`encode_snapshot` output.

    Raises:
        SnapshotError: The blob is truncated, from another format version or
            fails its checksum.
    """
    from .hnsw import HNSWIndex

    if len(data) < _HEADER.size + _TRAILER.size:
        raise SnapshotError("Snapshot is truncated")

    body, trailer = data[:-_TRAILER.size], data[-_TRAILER.size:]
    (expected_crc,) = _TRAILER.unpack(trailer)
    if zlib.crc32(body) & 0xFFFFFFFF != expected_crc:
        raise SnapshotError("Snapshot checksum mismatch")

    (magic, version, dim, node_count, live_count, m, ef_construction,
     ef_search, max_level, meta_len) = _HEADER.unpack_from(body, 0)
    if magic != MAGIC:
        raise SnapshotError("Not a PVL index snapshot")
    if version != VERSION:
        raise SnapshotError(f"Unsupported snapshot version {version}")

    offset = _HEADER.size
    vector_bytes = node_count * dim * 4
    if len(body) != offset + meta_len + vector_bytes:
        raise SnapshotError("Snapshot length does not match its header")

    try:
        meta = json.loads(body[offset:offset + meta_len].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SnapshotError(f"Snapshot metadata is unreadable: {e}") from e

    if len(meta.get("ids", [])) != node_count or meta.get("max_level") != max_level:
        raise SnapshotError("Snapshot metadata does not match its header")

    vectors = np.frombuffer(body, dtype="<f4", count=node_count * dim, offset=offset + meta_len)
    vectors = vectors.reshape(node_count, dim).astype(np.float32)

    index = HNSWIndex(dim=dim, m=m, ef_construction=ef_construction, ef_search=ef_search, seed=meta.get("seed"))
    try:
        index._restore_state(meta, vectors)
    except (KeyError, TypeError, ValueError) as e:
        raise SnapshotError(f"Snapshot metadata is incomplete: {e}") from e

    if len(index) != live_count:
        raise SnapshotError("Snapshot live count does not match its metadata")
    return index
