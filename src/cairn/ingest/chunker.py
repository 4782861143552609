"""Sentence-packing chunker with whole-sentence overlap.

Text is whitespace-normalized, split on sentence terminators (``.``, ``!``,
``?`` followed by whitespace) and packed greedily into chunks of at most
``chunk_size`` characters. Each new chunk is seeded with the trailing whole
sentences of the previous one that fit within ``overlap`` characters.

Edge cases:
- A sentence longer than ``chunk_size`` becomes its own oversized chunk.
- A trailing fragment shorter than ``min_chunk_size`` is appended to the
  previous chunk (without repeating its overlap) rather than emitted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
_OFFSET_PREFIX = 50


@dataclass
class TextChunk:
    """One chunker output item.

    ``char_start`` is a best-effort offset into the original (un-normalized)
    text, -1 when the fragment cannot be located. ``overlap_length`` is the
    number of leading characters repeated from the previous chunk.
    """

    content: str
    index: int
    char_start: int
    char_length: int
    overlap_length: int = 0


class SentenceChunker:
    """Split prose into overlapping, sentence-aligned chunks.

    Args:
        chunk_size: Target maximum chunk length in characters.
        overlap: Maximum characters of trailing sentences carried into the
            next chunk.
        min_chunk_size: Trailing fragments shorter than this merge into the
            previous chunk.
    """

    def __init__(self, chunk_size: int = 800, overlap: int = 200, min_chunk_size: int = 100) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        if min_chunk_size < 0:
            raise ValueError("min_chunk_size must be >= 0")
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.min_chunk_size = min_chunk_size

    def chunk(self, text: str) -> list[TextChunk]:
        """Return the ordered chunks of *text* (empty list for blank input)."""
        normalized = " ".join(text.split())
        if not normalized:
            return []
        if len(normalized) <= self.chunk_size:
            return self._finish(text, [(normalized, 0)])

        pieces: list[tuple[list[str], int]] = []  # (sentences, seeded count)
        current: list[str] = []
        seeded = 0

        for sentence in _SENTENCE_RE.split(normalized):
            if not sentence:
                continue
            if not current or _joined_len(current + [sentence]) <= self.chunk_size:
                current.append(sentence)
                continue

            pieces.append((current, seeded))
            seed = self._overlap_tail(current)
            while seed and _joined_len(seed + [sentence]) > self.chunk_size:
                seed.pop(0)
            current = seed + [sentence]
            seeded = len(seed)

        if current:
            if pieces and _joined_len(current) < self.min_chunk_size:
                last, last_seeded = pieces[-1]
                pieces[-1] = (last + current[seeded:], last_seeded)
            else:
                pieces.append((current, seeded))

        return self._finish(
            text,
            [(" ".join(sents), _joined_len(sents[:n]) if n else 0) for sents, n in pieces],
        )

    def _overlap_tail(self, sentences: list[str]) -> list[str]:
        """Trailing whole sentences whose joined length fits in ``overlap``."""
        tail: list[str] = []
        for sentence in reversed(sentences):
            if _joined_len([sentence] + tail) > self.overlap:
                break
            tail.insert(0, sentence)
        # Never carry the whole chunk forward.
        if len(tail) == len(sentences):
            tail = tail[1:]
        return tail

    @staticmethod
    def _finish(original: str, items: list[tuple[str, int]]) -> list[TextChunk]:
        return [
            TextChunk(
                content=content,
                index=i,
                char_start=original.find(content[:_OFFSET_PREFIX]),
                char_length=len(content),
                overlap_length=overlap_length,
            )
            for i, (content, overlap_length) in enumerate(items)
        ]


def _joined_len(sentences: list[str]) -> int:
    """Length of ``" ".join(sentences)`` without building the string."""
    if not sentences:
        return 0
    return sum(len(s) for s in sentences) + len(sentences) - 1
