"""Byte-limited payload chunking for republished events."""

from __future__ import annotations


def chunk_payload(payload: str | bytes, limit: int = 512) -> list[str]:
    """Split a payload into UTF-8 chunks of at most ``limit`` bytes each.

    A boundary never falls inside a multi-byte UTF-8 sequence, so every
    chunk decodes on its own. An empty payload yields a single empty chunk.
    """
    if limit < 4:
        raise ValueError("chunk limit must be at least 4 bytes")

    raw = payload.encode("utf-8") if isinstance(payload, str) else payload
    if len(raw) <= limit:
        return [raw.decode("utf-8", errors="replace")]

    chunks: list[str] = []
    start = 0
    while start < len(raw):
        end = min(start + limit, len(raw))
        if end < len(raw):
            end = _char_boundary(raw, start, end)
        chunks.append(raw[start:end].decode("utf-8", errors="replace"))
        start = end
    return chunks


def _char_boundary(raw: bytes, start: int, end: int) -> int:
    """Move ``end`` back so it does not land on a UTF-8 continuation byte."""
    cut = end
    while cut > start and (raw[cut] & 0xC0) == 0x80:
        cut -= 1
    # Not valid UTF-8 around here; fall back to the raw byte limit
    if cut == start:
        return end
    return cut
