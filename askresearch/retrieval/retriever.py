"""
Dense Retriever
----------------
Embeds the user question and ranks the corpus against it.

The retriever is stateless per query -- call retrieve() as many times as you
like from the same instance and from several threads at once.
"""
from __future__ import annotations

import numpy as np
from langsmith import traceable
from loguru import logger

from askresearch.embedding.embedder import Embedder
from askresearch.embedding.index import CorpusIndex
from askresearch.errors import ConfigurationError
from askresearch.schemas import RankedChunk

TOP_K = 3


def check_model_identity(index: CorpusIndex, embedder: Embedder) -> None:
    """Refuse to compare vectors from different embedding models."""
    if index.embedding_model != embedder.model or index.dimensions != embedder.dimensions:
        raise ConfigurationError(
            f"Corpus index was embedded with {index.embedding_model} "
            f"({index.dimensions} dims) but queries use {embedder.model} "
            f"({embedder.dimensions} dims). Re-run ingestion."
        )


class Retriever:
    """Query embedding + cosine ranking over a CorpusIndex."""

    def __init__(self, embedder: Embedder, top_k: int = TOP_K) -> None:
        self.embedder = embedder
        self.top_k = top_k

    def embed(self, question: str) -> np.ndarray:
        return self.embedder.embed_query(question)

    @traceable(name="rank", run_type="retriever")
    def rank(self, index: CorpusIndex, query_vec: np.ndarray) -> list[RankedChunk]:
        """
        Returns:
            Up to top_k RankedChunks, best first (rank 1).
        """
        check_model_identity(index, self.embedder)
        hits = index.search(query_vec, self.top_k)
        ranked = [
            RankedChunk(
                rank=position,
                chunk_index=hit.chunk_index,
                score=hit.score,
                chunk=index.chunks[hit.chunk_index],
            )
            for position, hit in enumerate(hits, start=1)
        ]

        if ranked:
            logger.info(
                f"[Retriever] {len(ranked)} of {len(index)} chunks "
                f"| top score: {ranked[0].score:.4f} ({ranked[0].chunk.metadata.source})"
            )
        else:
            logger.info("[Retriever] No results")
        return ranked

    def retrieve(self, index: CorpusIndex, question: str) -> list[RankedChunk]:
        """Embed the question and return the top_k chunks."""
        logger.debug(f"[Retriever] Query: {question[:80]!r}")
        return self.rank(index, self.embed(question))
