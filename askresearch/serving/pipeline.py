"""
RAG Serving Pipeline
---------------------
Orchestrates the full query lifecycle as an explicit stage machine:

    RECEIVED        question validated (>= 3 chars after trimming)
        |
    EMBEDDING       corpus populated on first use, question embedded
        |
    RANKING         cosine top-K over the corpus
        |
    CONTEXT_BUILT   numbered [Source N] context assembled
        |
    ANSWERING       grounded answer (fatal on failure)
        |
    FOLLOWING_UP    next-question suggestions (failure -> [])
        |
    COMPLETED

EMBEDDING, RANKING and ANSWERING may end in FAILED; FOLLOWING_UP always
reaches COMPLETED.  Validation happens before any provider call.

The pipeline holds no per-query state, so one instance serves concurrent
callers; the only shared data is the read-only corpus behind a single-flight
LazyCorpusIndex.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from langsmith import traceable
from loguru import logger

from askresearch.chunking.chunker import whole_chunks
from askresearch.config import Settings
from askresearch.embedding.embedder import Embedder
from askresearch.embedding.index import CorpusIndex, LazyCorpusIndex
from askresearch.errors import GenerationFailed, RAGError, Timeout, ValidationError
from askresearch.generation.context import assemble_context, summarise_sources
from askresearch.generation.generator import AnswerGenerator, ChatModel, FollowUpGenerator
from askresearch.ingestion.sources import sample_documents
from askresearch.retrieval.retriever import Retriever, check_model_identity
from askresearch.schemas import RAGResponse

MIN_QUESTION_CHARS = 3


class QueryStage(str, Enum):
    RECEIVED = "received"
    EMBEDDING = "embedding"
    RANKING = "ranking"
    CONTEXT_BUILT = "context_built"
    ANSWERING = "answering"
    FOLLOWING_UP = "following_up"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Result schema
# ---------------------------------------------------------------------------

@dataclass
class QueryOutcome:
    """
    Result of one orchestrated run.  Timing fields are in milliseconds.

    On COMPLETED, `response` is set.  On FAILED, `response` is None,
    `failed_stage` names where it stopped and `error` is the exception
    process() would raise.
    """

    question: str
    stage: QueryStage
    response: Optional[RAGResponse] = None
    error: Optional[RAGError] = None
    failed_stage: Optional[QueryStage] = None
    timings_ms: dict[str, float] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.stage is QueryStage.COMPLETED

    @property
    def total_ms(self) -> float:
        return sum(self.timings_ms.values())


def validate_question(question: Optional[str]) -> str:
    """Return the trimmed question or raise ValidationError."""
    text = (question or "").strip()
    if len(text) < MIN_QUESTION_CHARS:
        raise ValidationError(f"Question must be at least {MIN_QUESTION_CHARS} characters")
    return text


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class RAGPipeline:
    """
    Single entry point of the RAG core.

    Usage:
        pipeline = RAGPipeline.from_settings(load_settings())
        response = pipeline.process("What are the top AI trends in 2025?")
        print(response.answer)
    """

    def __init__(
        self,
        corpus: LazyCorpusIndex,
        retriever: Retriever,
        answer_generator: AnswerGenerator,
        follow_up_generator: FollowUpGenerator,
        source_preview_chars: int = 200,
    ) -> None:
        self.corpus = corpus
        self.retriever = retriever
        self.answer_generator = answer_generator
        self.follow_up_generator = follow_up_generator
        self.source_preview_chars = source_preview_chars

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        embedding_client=None,
        chat_client=None,
    ) -> "RAGPipeline":
        """
        Wire the pipeline from configuration.

        In "index" mode the persisted corpus is loaded now and checked against
        the configured embedding model; in "sample" mode the bundled records
        are embedded on the first query.
        """
        injected = embedding_client is not None and chat_client is not None
        api_key = None if injected else settings.require_api_key()
        timeout = settings.provider.request_timeout

        embedder = Embedder(
            model=settings.embedding.model,
            dimensions=settings.embedding.dimensions,
            batch_size=settings.embedding.batch_size,
            api_key=api_key,
            timeout=timeout,
            client=embedding_client,
        )
        chat = ChatModel(
            model=settings.generation.model,
            temperature=settings.generation.temperature,
            max_tokens=settings.generation.max_tokens,
            api_key=api_key,
            timeout=timeout,
            client=chat_client,
        )

        if settings.corpus.mode == "index":
            index = CorpusIndex.load(Path(settings.corpus.index_dir))
            check_model_identity(index, embedder)
            corpus = LazyCorpusIndex.ready(index)
        else:
            corpus = LazyCorpusIndex(lambda: build_sample_index(embedder))

        return cls(
            corpus=corpus,
            retriever=Retriever(embedder, top_k=settings.retrieval.top_k),
            answer_generator=AnswerGenerator(chat),
            follow_up_generator=FollowUpGenerator(
                chat,
                count=settings.generation.follow_up_count,
                answer_chars=settings.generation.follow_up_answer_chars,
            ),
            source_preview_chars=settings.retrieval.source_preview_chars,
        )

    def process(self, question: str) -> RAGResponse:
        """
        Answer one question.

        Raises:
            ValidationError: question empty or shorter than 3 characters.
            Timeout: a provider call exceeded the configured bound.
            GenerationFailed: embedding, ranking or answering failed.
        """
        outcome = self.run(question)
        if outcome.error is not None:
            raise outcome.error
        return outcome.response

    @traceable(name="rag_query", run_type="chain")
    def run(self, question: str) -> QueryOutcome:
        """Run the stage machine; raises only ValidationError, otherwise reports via QueryOutcome."""
        text = validate_question(question)
        outcome = QueryOutcome(question=text, stage=QueryStage.RECEIVED)
        logger.info(f"[Pipeline] Query: {text[:100]!r}")

        try:
            # -- Embedding --------------------------------------------------------
            outcome.stage = QueryStage.EMBEDDING
            t0 = time.perf_counter()
            index = self.corpus.get()
            query_vec = self.retriever.embed(text)
            outcome.timings_ms["embedding"] = (time.perf_counter() - t0) * 1000

            # -- Ranking ----------------------------------------------------------
            outcome.stage = QueryStage.RANKING
            t1 = time.perf_counter()
            ranked = self.retriever.rank(index, query_vec)
            outcome.timings_ms["ranking"] = (time.perf_counter() - t1) * 1000

            # -- Context ----------------------------------------------------------
            context = assemble_context(ranked)
            outcome.stage = QueryStage.CONTEXT_BUILT

            # -- Answering --------------------------------------------------------
            outcome.stage = QueryStage.ANSWERING
            t2 = time.perf_counter()
            answer = self.answer_generator.answer(text, context)
            outcome.timings_ms["answering"] = (time.perf_counter() - t2) * 1000
        except Exception as exc:
            return self._fail(outcome, exc)

        # -- Follow-ups (never fatal) ---------------------------------------------
        outcome.stage = QueryStage.FOLLOWING_UP
        t3 = time.perf_counter()
        try:
            follow_ups = self.follow_up_generator.follow_ups(text, answer)
        except Exception as exc:
            logger.warning(
                f"[Pipeline] Follow-ups dropped at stage={QueryStage.FOLLOWING_UP.value} | "
                f"query={text[:80]!r} | {type(exc).__name__}: {exc}"
            )
            follow_ups = []
        outcome.timings_ms["following_up"] = (time.perf_counter() - t3) * 1000

        outcome.response = RAGResponse(
            answer=answer,
            sources=summarise_sources(ranked, self.source_preview_chars),
            follow_up_questions=follow_ups,
        )
        outcome.stage = QueryStage.COMPLETED

        logger.info(
            f"[Pipeline] Complete in {outcome.total_ms:.0f}ms | "
            + " ".join(f"{name}={ms:.0f}ms" for name, ms in outcome.timings_ms.items())
            + f" | sources={len(ranked)} follow_ups={len(follow_ups)}"
        )
        return outcome

    @staticmethod
    def _fail(outcome: QueryOutcome, exc: Exception) -> QueryOutcome:
        failed_stage = outcome.stage
        logger.error(
            f"[Pipeline] Failed at stage={failed_stage.value} | "
            f"query={outcome.question[:80]!r} | {type(exc).__name__}: {exc}"
        )
        if isinstance(exc, Timeout):
            error: RAGError = exc
        else:
            error = GenerationFailed(
                f"Query failed during {failed_stage.value}", stage=failed_stage.value
            )
            error.__cause__ = exc
        outcome.stage = QueryStage.FAILED
        outcome.failed_stage = failed_stage
        outcome.error = error
        return outcome


def build_sample_index(embedder: Embedder) -> CorpusIndex:
    """Embed the bundled sample records, one chunk per record."""
    chunks = whole_chunks(sample_documents())
    embeddings = embedder.embed_texts([c.content for c in chunks])
    return CorpusIndex.build(chunks, embeddings, embedding_model=embedder.model)
