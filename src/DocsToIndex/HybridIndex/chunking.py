"""Adaptive paragraph/sentence chunking for hybrid index ingestion.

Text is first split on blank lines into paragraphs. Paragraphs that fit within
``max_chars`` are emitted unchanged. Longer paragraphs are split into
sentences and packed greedily into chunks; each new chunk is seeded with the
trailing ``overlap`` characters of the previous one so adjacent chunks share
context. A sentence longer than ``max_chars`` is never cut, it becomes an
oversized chunk of its own.
"""
from __future__ import annotations

import re
from typing import List

__all__ = ("AdaptiveChunker", "adaptive_chunk", "split_paragraphs", "split_sentences")

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
# ASCII and full-width terminators followed by whitespace.
_SENTENCE_BREAK = re.compile(r"(?<=[。！？.!?．])\s+")


def split_paragraphs(text: str) -> List[str]:
    """Return the non-blank paragraphs of ``text`` with surrounding whitespace removed."""

    paragraphs = (part.strip() for part in _PARAGRAPH_BREAK.split(text))
    return [paragraph for paragraph in paragraphs if paragraph]


def split_sentences(paragraph: str) -> List[str]:
    """Return the non-blank sentences of ``paragraph`` in order."""

    sentences = (part.strip() for part in _SENTENCE_BREAK.split(paragraph))
    return [sentence for sentence in sentences if sentence]


def adaptive_chunk(text: str, max_chars: int, overlap: int) -> List[str]:
    """Split ``text`` into ordered, overlapping chunks of at most ``max_chars``.

    Args:
        text: Raw text to chunk. ``None``-like empty input yields no chunks.
        max_chars: Soft upper bound on chunk length; single sentences longer
            than this are emitted whole.
        overlap: Number of trailing characters of a flushed chunk that seed
            the next chunk of the same paragraph.

    Returns:
        Chunks in document order. Identical inputs always produce identical
        output.

    Raises:
        ValueError: If ``max_chars`` is not positive or ``overlap`` is negative.

    Examples:
        >>> adaptive_chunk("First para.\\n\\nSecond para.", 100, 10)
        ['First para.', 'Second para.']
    """

    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    if overlap < 0:
        raise ValueError("overlap must be non-negative")
    if not text or not text.strip():
        return []

    chunks: List[str] = []
    for paragraph in split_paragraphs(text):
        if len(paragraph) <= max_chars:
            chunks.append(paragraph)
            continue
        buffer = ""
        for sentence in split_sentences(paragraph):
            if buffer and len(buffer) + len(sentence) > max_chars:
                flushed = buffer.strip()
                if flushed:
                    chunks.append(flushed)
                buffer = buffer[-overlap:] if overlap else ""
            buffer += sentence + " "
        tail = buffer.strip()
        if tail:
            chunks.append(tail)
    return chunks


class AdaptiveChunker:
    """Bind chunk limits once and reuse them across many texts.

    Examples:
        >>> chunker = AdaptiveChunker(max_chars=300, overlap=50)
        >>> chunker.chunk("")
        []
    """

    def __init__(self, *, max_chars: int, overlap: int) -> None:
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        if overlap < 0 or overlap >= max_chars:
            raise ValueError("overlap must be within [0, max_chars)")
        self._max_chars = max_chars
        self._overlap = overlap

    @property
    def max_chars(self) -> int:
        return self._max_chars

    @property
    def overlap(self) -> int:
        return self._overlap

    def chunk(self, text: str) -> List[str]:
        return adaptive_chunk(text, self._max_chars, self._overlap)
