"""
Core Pydantic schemas for the AskResearch RAG core.

Ingestion, retrieval, generation and serving all share these models so a
retrieved passage carries its provenance from the source document all the
way to the citation shown to the caller.
"""
from __future__ import annotations

import hashlib
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# --- Provenance ---------------------------------------------------------------

class ChunkMetadata(BaseModel):
    """Where a piece of text came from: a document filename and, optionally, a page."""

    model_config = ConfigDict(frozen=True)

    source: str                          # e.g. "DI_Tech-trends-2025.pdf"
    page: Optional[int] = None           # 1-based page number, when known


class SourceDocument(BaseModel):
    """
    Unit of ingestion input.

    A sample record becomes one SourceDocument; a PDF becomes one
    SourceDocument per page.  Both backends converge on this shape so the
    chunker never needs to know where the text came from.
    """

    content: str
    metadata: ChunkMetadata


# --- Corpus -------------------------------------------------------------------

class Chunk(BaseModel):
    """
    A bounded window of source text, the atomic unit that gets embedded.

    Immutable once created.  Its identity inside a corpus is its position;
    once persisted, the content checksum identifies it.
    """

    model_config = ConfigDict(frozen=True)

    content: str
    metadata: ChunkMetadata
    chunk_index: int = 0                 # Position within the parent document
    start: int = 0                       # Character offset within the parent document

    @computed_field
    @property
    def checksum(self) -> str:
        """SHA-256 of content."""
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()


class SimilarityResult(BaseModel):
    """One ranked hit: a corpus position and its cosine score."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int
    score: float


class RankedChunk(BaseModel):
    """A SimilarityResult joined with its Chunk, in ranked order (rank 1 = best)."""

    rank: int
    chunk_index: int
    score: float
    chunk: Chunk


# --- Response -----------------------------------------------------------------

class Source(BaseModel):
    """Outward-facing citation: truncated content plus provenance."""

    content: str
    metadata: ChunkMetadata


class RAGResponse(BaseModel):
    """Structured result of one answered question."""

    model_config = ConfigDict(populate_by_name=True)

    answer: str
    sources: list[Source] = Field(default_factory=list)
    follow_up_questions: list[str] = Field(
        default_factory=list, alias="followUpQuestions"
    )
