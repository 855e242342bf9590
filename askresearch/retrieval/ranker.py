"""
Cosine Similarity Ranker
-------------------------
Exact in-memory linear scan: every query is scored against every corpus
vector, O(corpus_size x dimensions).  That is the ceiling of this approach
and is comfortable up to the low thousands of chunks.

    score = dot(q, v) / (|q| * |v|)

A zero-norm vector on either side has no defined cosine; it scores -inf so
it can never win a top-K slot, and NaN never reaches the caller.  Results
are ordered by descending score and ties keep corpus order (stable sort).
"""
from __future__ import annotations

import numpy as np

from askresearch.schemas import SimilarityResult


def l2_normalise(matrix: np.ndarray) -> np.ndarray:
    """Row-normalise a 2-D float array; zero rows stay zero."""
    matrix = np.asarray(matrix, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms = np.where(norms == 0, 1, norms)  # avoid div-by-zero
    return (matrix / norms).astype(np.float32)


def cosine_scores(query: np.ndarray, corpus: np.ndarray) -> np.ndarray:
    """Cosine similarity of one query vector against each corpus row (float64)."""
    q = np.asarray(query, dtype=np.float64).reshape(-1)
    m = np.asarray(corpus, dtype=np.float64)
    if m.ndim != 2:
        raise ValueError(f"corpus must be 2-D, got shape {m.shape}")
    if m.shape[0] and m.shape[1] != q.shape[0]:
        raise ValueError(
            f"Dimension mismatch: query has {q.shape[0]} dims, corpus has {m.shape[1]}"
        )

    q_norm = np.linalg.norm(q)
    row_norms = np.linalg.norm(m, axis=1)
    denom = row_norms * q_norm

    scores = np.full(m.shape[0], -np.inf, dtype=np.float64)
    valid = denom > 0
    # Rounding can push identical vectors a hair past 1.0
    scores[valid] = np.clip((m[valid] @ q) / denom[valid], -1.0, 1.0)
    return scores


def rank(query: np.ndarray, corpus: np.ndarray, k: int) -> list[SimilarityResult]:
    """
    Top-k corpus positions by cosine similarity.

    Returns min(k, len(corpus)) results, sorted by non-increasing score.
    """
    if k < 0:
        raise ValueError(f"k must be non-negative, got {k}")
    scores = cosine_scores(query, corpus)
    order = np.argsort(-scores, kind="stable")[:k]
    return [SimilarityResult(chunk_index=int(i), score=float(scores[i])) for i in order]
