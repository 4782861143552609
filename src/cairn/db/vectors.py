"""On-disk embedding encoding: contiguous little-endian float32 arrays."""

from __future__ import annotations

import json
import struct


def encode_embedding(embedding: list[float]) -> bytes:
    """Serialize *embedding* to a little-endian float32 BLOB.

    Examples:
        [1.0, 0.0] -> b"\\x00\\x00\\x80?\\x00\\x00\\x00\\x00"
    """
    return struct.pack(f"<{len(embedding)}f", *embedding)


def decode_embedding(blob: bytes | None) -> list[float] | None:
    """Inverse of encode_embedding(). Returns None for a NULL column."""
    if blob is None:
        return None
    if len(blob) % 4:
        raise ValueError(f"Embedding BLOB length {len(blob)} is not a multiple of 4")
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


def to_pgvector(embedding: list[float]) -> str:
    """Format *embedding* as a pgvector literal, e.g. ``[0.1,0.2]``."""
    return "[" + ",".join(repr(float(v)) for v in embedding) + "]"


def from_pgvector(value: str | list[float] | None) -> list[float] | None:
    """Parse a pgvector column value (PostgREST returns it as a string)."""
    if value is None:
        return None
    if isinstance(value, str):
        return [float(v) for v in json.loads(value)]
    return [float(v) for v in value]
