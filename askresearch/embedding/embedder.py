"""
OpenAI Embedding Client
------------------------
Wraps the OpenAI embeddings API with:
  - Batching (order-preserving; results re-sorted by the API's index field)
  - A bounded per-call timeout; timeouts surface as errors.Timeout
  - Retry of transient rate-limit / connection errors via tenacity
  - Input truncation at the model's token limit (tiktoken)
  - Token usage logging and LangSmith tracing

Vectors are returned exactly as the model produced them; normalisation is
the index's job.
"""
from __future__ import annotations

import threading
import time
from functools import lru_cache
from typing import Optional

import numpy as np
import openai
import tiktoken
from langsmith import traceable
from loguru import logger
from openai import OpenAI
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from askresearch.errors import ProviderError, Timeout

MODEL = "text-embedding-3-small"
DIMENSIONS = 1536          # text-embedding-3-small native dimensions
BATCH_SIZE = 512           # OpenAI allows up to 2048; 512 keeps requests < 1 MB
MAX_INPUT_TOKENS = 8191    # Embedding model context window


@lru_cache(maxsize=1)
def _encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding("cl100k_base")


def truncate_to_tokens(text: str, max_tokens: int = MAX_INPUT_TOKENS) -> str:
    """Cut text at a token boundary so it fits the embedding model."""
    # A BPE token spans at least one UTF-8 byte, so byte length bounds the token count.
    if len(text.encode("utf-8")) <= max_tokens:
        return text
    tokens = _encoding().encode(text)
    if len(tokens) <= max_tokens:
        return text
    logger.warning(f"[Embedder] Truncating input from {len(tokens)} to {max_tokens} tokens")
    return _encoding().decode(tokens[:max_tokens])


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, openai.APITimeoutError):
        return False
    return isinstance(exc, (openai.RateLimitError, openai.APIConnectionError))


class Embedder:
    """
    Embedding Provider: text -> fixed-length float32 vector.

    One Embedder corresponds to one embedding-model identity; a corpus must
    be embedded and queried with the same model.
    """

    def __init__(
        self,
        model: str = MODEL,
        dimensions: int = DIMENSIONS,
        batch_size: int = BATCH_SIZE,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client=None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.total_tokens_used: int = 0
        self.total_api_calls: int = 0
        self._usage_lock = threading.Lock()

    @traceable(name="embed_texts", run_type="embedding")
    def embed_texts(self, texts: list[str]) -> np.ndarray:
        """
        Embed a list of strings and return an (N, dimensions) float32 array
        whose rows follow the input order.
        """
        if not texts:
            return np.empty((0, self.dimensions), dtype=np.float32)

        all_embeddings: list[list[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i: i + self.batch_size]
            try:
                embeddings, tokens = self._embed_batch(batch)
            except openai.APITimeoutError as exc:
                raise Timeout(f"Embedding request timed out ({self.model})") from exc
            except openai.OpenAIError as exc:
                raise ProviderError(f"Embedding request failed ({self.model}): {exc}") from exc

            all_embeddings.extend(embeddings)
            with self._usage_lock:
                self.total_tokens_used += tokens
                self.total_api_calls += 1
                running_total = self.total_tokens_used

            logger.debug(
                f"[Embedder] Batch {i // self.batch_size + 1} | "
                f"{len(batch)} texts | {tokens} tokens | "
                f"Running total: {running_total} tokens"
            )

        matrix = np.array(all_embeddings, dtype=np.float32)
        if matrix.shape != (len(texts), self.dimensions):
            raise ProviderError(
                f"Expected {len(texts)} x {self.dimensions} embeddings from {self.model}, "
                f"got {matrix.shape}"
            )
        return matrix

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _embed_batch(self, texts: list[str]) -> tuple[list[list[float]], int]:
        """Call the OpenAI Embeddings API for a single batch."""
        # Replace empty strings with a space to avoid API errors
        safe_texts = [truncate_to_tokens(t) if t.strip() else " " for t in texts]
        start = time.perf_counter()
        response = self._client.embeddings.create(model=self.model, input=safe_texts)
        elapsed = time.perf_counter() - start

        embeddings = [item.embedding for item in sorted(response.data, key=lambda x: x.index)]
        tokens_used = response.usage.total_tokens
        logger.debug(f"[Embedder] API call: {len(texts)} texts, {tokens_used} tokens, {elapsed:.2f}s")
        return embeddings, tokens_used

    def embed_query(self, text: str) -> np.ndarray:
        """Embed a single query string. Returns shape (dimensions,) float32 array."""
        return self.embed_texts([text])[0]

    def usage_summary(self) -> dict:
        with self._usage_lock:
            calls, tokens = self.total_api_calls, self.total_tokens_used
        return {
            "model": self.model,
            "total_api_calls": calls,
            "total_tokens_used": tokens,
            # text-embedding-3-small: $0.020 per million tokens
            "estimated_cost_usd": round(tokens / 1_000_000 * 0.020, 6),
        }
