"""
Overlapping Window Chunker
---------------------------
Splits a SourceDocument into fixed-size character windows that overlap by a
configured amount, so a concept that straddles one window boundary still
appears whole in the neighbouring window.

    window=1000, overlap=200, 1200-char document
        -> [0:1000], [800:1200]

A document no longer than one window becomes a single chunk.  Windows that
contain only whitespace are dropped.  Provenance (source, page) is copied
onto every chunk unchanged.
"""
from __future__ import annotations

from typing import Iterator

from loguru import logger

from askresearch.schemas import Chunk, SourceDocument

WINDOW_CHARS = 1000
OVERLAP_CHARS = 200


class WindowChunker:
    """
    Usage:
        chunker = WindowChunker(window=1000, overlap=200)
        chunks = chunker.chunk_batch(documents)
    """

    def __init__(self, window: int = WINDOW_CHARS, overlap: int = OVERLAP_CHARS) -> None:
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")
        if not 0 <= overlap < window:
            raise ValueError(f"overlap must be in [0, window), got {overlap} for window {window}")
        self.window = window
        self.overlap = overlap

    @property
    def stride(self) -> int:
        return self.window - self.overlap

    def window_offsets(self, length: int) -> list[int]:
        """Start offsets of every window for a text of the given length."""
        offsets: list[int] = []
        i = 0
        while i < length:
            offsets.append(i)
            i += self.stride
            if i + self.overlap >= length:
                break
        return offsets

    def chunk_document(self, doc: SourceDocument) -> list[Chunk]:
        chunks = list(self._windows(doc))
        logger.debug(
            f"[Chunker] {doc.metadata.source} p.{doc.metadata.page or '-'} | "
            f"{len(doc.content)} chars -> {len(chunks)} chunk(s)"
        )
        return chunks

    def chunk_batch(self, docs: list[SourceDocument]) -> list[Chunk]:
        """Chunk a list of documents. Returns flat list of all chunks, in input order."""
        all_chunks: list[Chunk] = []
        for doc in docs:
            all_chunks.extend(self.chunk_document(doc))
        return all_chunks

    def _windows(self, doc: SourceDocument) -> Iterator[Chunk]:
        chunk_index = 0
        for start in self.window_offsets(len(doc.content)):
            text = doc.content[start: start + self.window]
            if not text.strip():
                continue
            yield Chunk(
                content=text,
                metadata=doc.metadata,
                chunk_index=chunk_index,
                start=start,
            )
            chunk_index += 1


def whole_chunks(docs: list[SourceDocument]) -> list[Chunk]:
    """One chunk per document, content untouched (used for the in-memory sample corpus)."""
    return [Chunk(content=doc.content, metadata=doc.metadata) for doc in docs]
