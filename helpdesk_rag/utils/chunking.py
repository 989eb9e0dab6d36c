"""Utilities for splitting documents into manageable chunks."""

from __future__ import annotations

import re
from typing import List

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50
MIN_CHUNK_LENGTH = 20

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+")


def split_sentences(text: str) -> List[str]:
    """Split ``text`` on sentence terminators, dropping empty pieces."""

    return [piece.strip() for piece in _SENTENCE_BOUNDARY.split(text) if piece.strip()]


def chunk_text(
    text: str,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[str]:
    """Split ``text`` into overlapping, sentence-bounded chunks.

    Sentences are accumulated until adding the next one would push the
    buffer past ``chunk_size`` characters. The following chunk then starts
    with the last ``chunk_overlap`` words of the one just emitted. A single
    sentence longer than ``chunk_size`` is kept whole, and chunks of
    ``MIN_CHUNK_LENGTH`` characters or fewer are discarded.
    """

    if not text or not text.strip():
        return []

    chunks: List[str] = []
    current = ""

    for sentence in split_sentences(text):
        if len(current) + len(sentence) > chunk_size and current:
            chunks.append(current.strip())
            overlap = current.split()[-chunk_overlap:] if chunk_overlap > 0 else []
            current = " ".join(overlap + [sentence])
        else:
            current = f"{current} {sentence}" if current else sentence

    if current.strip():
        chunks.append(current.strip())

    return [chunk for chunk in chunks if len(chunk) > MIN_CHUNK_LENGTH]

