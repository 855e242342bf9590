"""Shared pytest fixtures: offline stand-ins for the OpenAI client surface."""
from __future__ import annotations

import hashlib
import re
import threading
from types import SimpleNamespace
from typing import Callable, Optional

import pytest
from loguru import logger

from askresearch.embedding.embedder import Embedder
from askresearch.embedding.index import LazyCorpusIndex
from askresearch.generation.generator import AnswerGenerator, ChatModel, FollowUpGenerator
from askresearch.retrieval.retriever import Retriever
from askresearch.serving.pipeline import RAGPipeline, build_sample_index

FAKE_MODEL = "fake-embedding"
FAKE_DIMS = 1024

_TOKEN = re.compile(r"[a-z0-9]+")


def hashed_bag_of_words(text: str, dims: int = FAKE_DIMS) -> list[float]:
    """Deterministic term-count vector: each lowercase token hashed into a bucket."""
    vector = [0.0] * dims
    for token in _TOKEN.findall(text.lower()):
        bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % dims
        vector[bucket] += 1.0
    return vector


# -- Embeddings --

class FakeEmbeddingsClient:
    """Mimics `client.embeddings.create(model=..., input=[...])`."""

    def __init__(self, dims: int = FAKE_DIMS, error: Optional[Exception] = None) -> None:
        self.dims = dims
        self.error = error
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()
        self.embeddings = SimpleNamespace(create=self._create)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def _create(self, model: str, input: list[str]):
        with self._lock:
            self.calls.append(list(input))
        if self.error is not None:
            raise self.error
        # Reverse the payload order to prove callers re-sort by index
        data = [
            SimpleNamespace(index=i, embedding=hashed_bag_of_words(text, self.dims))
            for i, text in enumerate(input)
        ][::-1]
        tokens = sum(len(_TOKEN.findall(t.lower())) for t in input)
        return SimpleNamespace(data=data, usage=SimpleNamespace(total_tokens=tokens))


# -- Chat --

DEFAULT_ANSWER = (
    "AI agents becoming more autonomous and generative AI adoption across "
    "enterprises are the leading trends [Source 1]."
)
DEFAULT_FOLLOW_UPS = (
    "1. Which industries lead generative AI adoption?\n"
    "2. How are enterprises governing AI agents?\n"
    "\n"
    "3. What limits edge AI deployments?\n"
    "4. What does multi-modal AI cost?"
)


def is_follow_up_prompt(prompt: str) -> bool:
    return "follow-up questions" in prompt


class FakeChatClient:
    """
    Mimics `client.chat.completions.create(...)`.

    `answer_error` / `follow_up_error` make the matching call raise.
    """

    def __init__(
        self,
        answer: str = DEFAULT_ANSWER,
        follow_ups: str = DEFAULT_FOLLOW_UPS,
        answer_error: Optional[Exception] = None,
        follow_up_error: Optional[Exception] = None,
        responder: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.answer = answer
        self.follow_ups = follow_ups
        self.answer_error = answer_error
        self.follow_up_error = follow_up_error
        self.responder = responder
        self.prompts: list[str] = []
        self.kwargs: list[dict] = []
        self._lock = threading.Lock()
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    def _create(self, model: str, messages: list[dict], **kwargs):
        prompt = messages[-1]["content"]
        with self._lock:
            self.prompts.append(prompt)
            self.kwargs.append(dict(kwargs, model=model))

        if is_follow_up_prompt(prompt):
            if self.follow_up_error is not None:
                raise self.follow_up_error
            text = self.follow_ups
        else:
            if self.answer_error is not None:
                raise self.answer_error
            text = self.responder(prompt) if self.responder else self.answer

        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
            usage=SimpleNamespace(prompt_tokens=len(prompt) // 4, completion_tokens=len(text) // 4),
        )


# -- Builders --

def make_embedder(client: Optional[FakeEmbeddingsClient] = None) -> Embedder:
    client = client or FakeEmbeddingsClient()
    return Embedder(model=FAKE_MODEL, dimensions=client.dims, client=client)


def make_pipeline(
    embedding_client: Optional[FakeEmbeddingsClient] = None,
    chat_client: Optional[FakeChatClient] = None,
    corpus: Optional[LazyCorpusIndex] = None,
    top_k: int = 3,
    follow_up_generator: Optional[FollowUpGenerator] = None,
) -> RAGPipeline:
    embedder = make_embedder(embedding_client)
    chat = ChatModel(model="gpt-4o-mini", client=chat_client or FakeChatClient())
    return RAGPipeline(
        corpus=corpus or LazyCorpusIndex(lambda: build_sample_index(embedder)),
        retriever=Retriever(embedder, top_k=top_k),
        answer_generator=AnswerGenerator(chat),
        follow_up_generator=follow_up_generator or FollowUpGenerator(chat),
    )


# -- Fixtures --

@pytest.fixture(autouse=True)
def reset_logging():
    # CLI and server entry points install sinks bound to streams that close after the test
    yield
    logger.remove()


@pytest.fixture
def embedding_client() -> FakeEmbeddingsClient:
    return FakeEmbeddingsClient()


@pytest.fixture
def chat_client() -> FakeChatClient:
    return FakeChatClient()


@pytest.fixture
def embedder(embedding_client) -> Embedder:
    return make_embedder(embedding_client)


@pytest.fixture
def pipeline(embedding_client, chat_client) -> RAGPipeline:
    return make_pipeline(embedding_client, chat_client)


class BrokenFollowUpGenerator(FollowUpGenerator):
    """A follow-up generator that raises instead of degrading on its own."""

    def __init__(self) -> None:
        pass

    def follow_ups(self, question: str, answer: str) -> list[str]:
        raise RuntimeError("follow-up generator crashed")
