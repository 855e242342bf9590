"""
Corpus Index
-------------
Holds the corpus as two parallel structures:
  - A FAISS IndexFlatIP of L2-normalised float32 vectors (row i <-> chunk i)
  - The list of Chunk records (the metadata table)

Query-time scoring goes through retrieval.ranker (exact cosine, stable
ties, zero-vector guard) over the vectors stored in the FAISS index, so a
freshly built index and one loaded from disk rank identically.

Persistence (one directory):
  - faiss.index          FAISS flat index
  - chunks.json          chunk metadata table, same row order
  - index_manifest.json  embedding model identity, dimensions, counts

LazyCorpusIndex wraps a builder so the corpus is populated at most once per
process, even when the first queries arrive concurrently.
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import faiss
import numpy as np
from loguru import logger

from askresearch.errors import ConfigurationError
from askresearch.retrieval.ranker import l2_normalise, rank
from askresearch.schemas import Chunk, SimilarityResult
from askresearch.utils.helpers import load_json, save_json

INDEX_DIR = Path("data/index")
FAISS_FILE = "faiss.index"
CHUNKS_FILE = "chunks.json"
MANIFEST_FILE = "index_manifest.json"


class CorpusIndex:
    """
    Read-only corpus of chunks and their embeddings for one embedding model.

    Build with CorpusIndex.build(), persist with save(), restore with
    CorpusIndex.load().
    """

    def __init__(self, embedding_model: str, dimensions: int) -> None:
        self.embedding_model = embedding_model
        self.dimensions = dimensions
        self.faiss_index: faiss.IndexFlatIP = faiss.IndexFlatIP(dimensions)
        self.chunks: list[Chunk] = []
        self._vectors: np.ndarray = np.empty((0, dimensions), dtype=np.float32)

    # --- Build ----------------------------------------------------------------

    @classmethod
    def build(
        cls,
        chunks: list[Chunk],
        embeddings: np.ndarray,
        embedding_model: str,
    ) -> "CorpusIndex":
        """
        Create an index from chunks and their pre-computed embeddings.

        Args:
            chunks: Chunk records, in corpus order.
            embeddings: Float array of shape (len(chunks), dimensions).
            embedding_model: Identity of the model that produced the embeddings.
        """
        embeddings = np.asarray(embeddings, dtype=np.float32)
        if embeddings.ndim != 2:
            raise ValueError(f"embeddings must be 2-D, got shape {embeddings.shape}")
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Mismatch: {len(chunks)} chunks vs {len(embeddings)} embeddings"
            )

        instance = cls(embedding_model=embedding_model, dimensions=embeddings.shape[1])
        normalised = np.ascontiguousarray(l2_normalise(embeddings))
        instance.faiss_index.add(normalised)
        instance.chunks = list(chunks)
        instance._vectors = normalised

        logger.info(
            f"[CorpusIndex] Built: {instance.faiss_index.ntotal} vectors "
            f"| {instance.dimensions} dims | model={embedding_model}"
        )
        return instance

    # --- Search ---------------------------------------------------------------

    @property
    def vectors(self) -> np.ndarray:
        return self._vectors

    def search(self, query_vec: np.ndarray, top_k: int) -> list[SimilarityResult]:
        """Rank every chunk against the query vector; returns min(top_k, size) results."""
        query_vec = np.asarray(query_vec, dtype=np.float32).reshape(-1)
        if query_vec.shape[0] != self.dimensions:
            raise ConfigurationError(
                f"Query vector has {query_vec.shape[0]} dims but the corpus index "
                f"was built with {self.dimensions} ({self.embedding_model})"
            )
        return rank(query_vec, self._vectors, top_k)

    # --- Persistence ----------------------------------------------------------

    def save(self, index_dir: Path = INDEX_DIR) -> None:
        """Persist FAISS index + chunk metadata + manifest to disk."""
        index_dir = Path(index_dir)
        index_dir.mkdir(parents=True, exist_ok=True)

        faiss.write_index(self.faiss_index, str(index_dir / FAISS_FILE))
        logger.info(f"[CorpusIndex] FAISS index saved -> {index_dir}/{FAISS_FILE}")

        save_json([c.model_dump(mode="json") for c in self.chunks], index_dir / CHUNKS_FILE)
        logger.info(f"[CorpusIndex] {len(self.chunks)} chunk records saved -> {index_dir}/{CHUNKS_FILE}")

        save_json(self.manifest(), index_dir / MANIFEST_FILE)

    def manifest(self) -> dict:
        return {
            "embedding_model": self.embedding_model,
            "dimensions": self.dimensions,
            "total_vectors": int(self.faiss_index.ntotal),
            "total_chunks": len(self.chunks),
            "sources": sorted({c.metadata.source for c in self.chunks}),
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

    @classmethod
    def load(cls, index_dir: Path = INDEX_DIR) -> "CorpusIndex":
        """
        Load a persisted index from disk.

        Raises:
            ConfigurationError: a file is missing or the parts disagree.
        """
        index_dir = Path(index_dir)
        for name in (FAISS_FILE, CHUNKS_FILE, MANIFEST_FILE):
            if not (index_dir / name).exists():
                raise ConfigurationError(
                    f"Corpus index incomplete: {index_dir / name} not found. "
                    "Run ingestion first: python -m askresearch.main ingest"
                )

        manifest = load_json(index_dir / MANIFEST_FILE)
        instance = cls(
            embedding_model=manifest["embedding_model"],
            dimensions=int(manifest["dimensions"]),
        )
        instance.faiss_index = faiss.read_index(str(index_dir / FAISS_FILE))
        if instance.faiss_index.d != instance.dimensions:
            raise ConfigurationError(
                f"FAISS index has {instance.faiss_index.d} dims, manifest says {instance.dimensions}"
            )

        raw_chunks = load_json(index_dir / CHUNKS_FILE)
        for record in raw_chunks:
            record.pop("checksum", None)
        instance.chunks = [Chunk(**c) for c in raw_chunks]

        if instance.faiss_index.ntotal != len(instance.chunks):
            raise ConfigurationError(
                f"Corpus index corrupt: {instance.faiss_index.ntotal} vectors vs "
                f"{len(instance.chunks)} chunk records in {index_dir}"
            )

        if instance.faiss_index.ntotal:
            instance._vectors = instance.faiss_index.reconstruct_n(0, instance.faiss_index.ntotal)

        logger.info(
            f"[CorpusIndex] Loaded: {instance.faiss_index.ntotal} vectors, "
            f"{len(instance.chunks)} chunks | model={instance.embedding_model}"
        )
        return instance

    def __len__(self) -> int:
        return len(self.chunks)


class LazyCorpusIndex:
    """
    At-most-once holder for a CorpusIndex.

    The first get() runs the builder under a lock; concurrent first callers
    wait for that single build instead of starting their own.  A failed build
    leaves nothing cached, so the next caller retries.
    """

    def __init__(self, builder: Callable[[], CorpusIndex]) -> None:
        self._builder = builder
        self._index: Optional[CorpusIndex] = None
        self._lock = threading.Lock()

    @classmethod
    def ready(cls, index: CorpusIndex) -> "LazyCorpusIndex":
        """Wrap an index that is already built (e.g. loaded from disk)."""
        holder = cls(lambda: index)
        holder._index = index
        return holder

    @property
    def is_loaded(self) -> bool:
        return self._index is not None

    def get(self) -> CorpusIndex:
        index = self._index
        if index is not None:
            return index
        with self._lock:
            if self._index is None:
                logger.info("[CorpusIndex] Populating corpus on first use...")
                self._index = self._builder()
            return self._index
