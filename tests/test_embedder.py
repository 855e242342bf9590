"""Tests for the OpenAI embedding wrapper (offline, via a fake client)."""
import threading
from types import SimpleNamespace

import httpx
import numpy as np
import openai
import pytest
from tenacity import wait_none

from askresearch.embedding.embedder import MAX_INPUT_TOKENS, Embedder, truncate_to_tokens
from askresearch.errors import ProviderError, Timeout

from conftest import FAKE_MODEL, FakeEmbeddingsClient, hashed_bag_of_words, make_embedder


class TestEmbedTexts:
    def test_rows_follow_input_order(self, embedder):
        texts = ["alpha beta", "gamma", "delta epsilon zeta"]
        matrix = embedder.embed_texts(texts)
        assert matrix.shape == (3, embedder.dimensions)
        assert matrix.dtype == np.float32
        for row, text in zip(matrix, texts):
            assert row.tolist() == hashed_bag_of_words(text, embedder.dimensions)

    def test_batches_by_batch_size(self):
        client = FakeEmbeddingsClient()
        embedder = Embedder(model=FAKE_MODEL, dimensions=client.dims, batch_size=2, client=client)
        matrix = embedder.embed_texts([f"text {i}" for i in range(5)])
        assert matrix.shape[0] == 5
        assert [len(c) for c in client.calls] == [2, 2, 1]
        assert embedder.total_api_calls == 3

    def test_empty_input_makes_no_call(self, embedder, embedding_client):
        assert embedder.embed_texts([]).shape == (0, embedder.dimensions)
        assert embedding_client.call_count == 0

    def test_blank_text_sent_as_space(self, embedder, embedding_client):
        embedder.embed_texts(["", "words"])
        assert embedding_client.calls[0][0] == " "

    def test_embed_query_is_one_row(self, embedder):
        assert embedder.embed_query("what is new").shape == (embedder.dimensions,)

    def test_usage_tracked(self, embedder):
        embedder.embed_texts(["one two three"])
        usage = embedder.usage_summary()
        assert usage["model"] == FAKE_MODEL
        assert usage["total_tokens_used"] == 3


class TestErrors:
    def test_timeout_maps_to_timeout(self):
        error = openai.APITimeoutError(
            request=httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        )
        client = FakeEmbeddingsClient(error=error)
        with pytest.raises(Timeout):
            make_embedder(client).embed_texts(["x"])
        # Timeouts are not retried
        assert client.call_count == 1

    def test_api_error_maps_to_provider_error(self):
        error = openai.AuthenticationError(
            "bad key",
            response=httpx.Response(401, request=httpx.Request("POST", "https://api.openai.com")),
            body=None,
        )
        client = FakeEmbeddingsClient(error=error)
        with pytest.raises(ProviderError):
            make_embedder(client).embed_texts(["x"])
        assert client.call_count == 1

    def test_wrong_dimensions_rejected(self):
        client = FakeEmbeddingsClient(dims=8)
        embedder = Embedder(model=FAKE_MODEL, dimensions=16, client=client)
        with pytest.raises(ProviderError):
            embedder.embed_texts(["x"])

    def test_missing_rows_rejected(self):
        def short_create(model, input):
            return SimpleNamespace(
                data=[SimpleNamespace(index=0, embedding=[1.0, 0.0])],
                usage=SimpleNamespace(total_tokens=1),
            )

        client = SimpleNamespace(embeddings=SimpleNamespace(create=short_create))
        embedder = Embedder(model=FAKE_MODEL, dimensions=2, client=client)
        with pytest.raises(ProviderError):
            embedder.embed_texts(["a", "b"])


class ByteEncoding:
    """One token per UTF-8 byte: the worst case for multi-byte text."""

    def __init__(self) -> None:
        self.encoded = 0

    def encode(self, text: str) -> list[int]:
        self.encoded += 1
        return list(text.encode("utf-8"))

    def decode(self, tokens: list[int]) -> str:
        return bytes(tokens).decode("utf-8", errors="ignore")


class FlakyEmbeddingsClient(FakeEmbeddingsClient):
    """Raises the queued errors first, then answers normally."""

    def __init__(self, failures: list[Exception]) -> None:
        super().__init__()
        self.failures = list(failures)

    def _create(self, model: str, input: list[str]):
        if self.failures:
            with self._lock:
                self.calls.append(list(input))
            raise self.failures.pop(0)
        return super()._create(model, input)


def _rate_limited() -> openai.RateLimitError:
    return openai.RateLimitError(
        "slow down",
        response=httpx.Response(429, request=httpx.Request("POST", "https://api.openai.com")),
        body=None,
    )


def _connection_dropped() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com"))


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr(Embedder._embed_batch.retry, "wait", wait_none())


class TestRetry:
    def test_transient_errors_retried_until_success(self, no_backoff):
        client = FlakyEmbeddingsClient([_rate_limited(), _connection_dropped()])
        matrix = make_embedder(client).embed_texts(["edge ai"])
        assert client.call_count == 3
        assert matrix.shape == (1, client.dims)

    def test_gives_up_after_three_attempts(self, no_backoff):
        client = FlakyEmbeddingsClient([_rate_limited()] * 3)
        with pytest.raises(ProviderError):
            make_embedder(client).embed_texts(["edge ai"])
        assert client.call_count == 3


class TestTruncation:
    @pytest.fixture
    def encoding(self, monkeypatch) -> ByteEncoding:
        encoding = ByteEncoding()
        monkeypatch.setattr("askresearch.embedding.embedder._encoding", lambda: encoding)
        return encoding

    def test_short_text_untouched(self, encoding):
        assert truncate_to_tokens("short text", max_tokens=100) == "short text"
        assert encoding.encoded == 0

    def test_long_text_cut_at_limit(self, encoding):
        assert truncate_to_tokens("a" * 9000) == "a" * MAX_INPUT_TOKENS

    def test_multibyte_text_shorter_than_limit_in_characters_still_cut(self, encoding):
        text = "\U0001F600" * 5000  # 5000 characters, 20000 bytes
        truncated = truncate_to_tokens(text)
        assert encoding.encoded == 1
        assert len(truncated.encode("utf-8")) <= MAX_INPUT_TOKENS
        assert truncated == "\U0001F600" * (MAX_INPUT_TOKENS // 4)

    def test_oversized_input_truncated_before_request(self, encoding, embedder, embedding_client):
        embedder.embed_texts(["b" * 10000])
        assert embedding_client.calls[0][0] == "b" * MAX_INPUT_TOKENS


class TestUsage:
    def test_counters_consistent_under_concurrent_calls(self, embedder):
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            for _ in range(25):
                embedder.embed_texts(["one two"])

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        usage = embedder.usage_summary()
        assert usage["total_api_calls"] == 200
        assert usage["total_tokens_used"] == 400
