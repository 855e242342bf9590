"""
AskResearch - Web API Server
-----------------------------
FastAPI server that wraps the RAGPipeline.

Endpoints:
  GET  /api/health    -> corpus status and configured models
  POST /api/search    -> {question} -> {answer, sources, followUpQuestions}

Errors are returned as {"error": "..."}: 400 for an invalid question, 500 for
anything else.  Internal details are logged, never returned.

Run from the project root:
    uvicorn app.server:app --reload --port 8000
"""
from __future__ import annotations

import asyncio
import sys
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

# Windows cp1252 terminal fix
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from askresearch.config import load_settings
from askresearch.errors import RAGError, ValidationError
from askresearch.schemas import RAGResponse
from askresearch.serving.pipeline import RAGPipeline
from askresearch.utils.logger import setup_logger

INVALID_QUESTION_MESSAGE = "Question must be at least 3 characters"
INTERNAL_ERROR_MESSAGE = "Failed to process question"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the RAG pipeline once at startup.  ConfigurationError aborts startup."""
    if getattr(app.state, "pipeline", None) is None:
        settings = load_settings()
        setup_logger(settings.logging.level, settings.logging.file)
        settings.require_api_key()
        logger.info(f"[Server] Loading RAG pipeline | corpus={settings.corpus.mode}")
        app.state.pipeline = RAGPipeline.from_settings(settings)
        app.state.corpus_mode = settings.corpus.mode
    logger.info("[Server] Pipeline ready")
    yield
    app.state.pipeline = None
    logger.info("[Server] Pipeline unloaded.")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AskResearch API",
    description="Retrieval-augmented answers over a research document corpus",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request model
# ---------------------------------------------------------------------------

class SearchRequest(BaseModel):
    question: Optional[str] = None


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.exception_handler(ValidationError)
async def invalid_question(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": INVALID_QUESTION_MESSAGE})


@app.exception_handler(RequestValidationError)
async def malformed_body(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": INVALID_QUESTION_MESSAGE})


@app.exception_handler(RAGError)
async def internal_error(request: Request, exc: RAGError):
    logger.exception(f"[API] Search failed | {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})


@app.exception_handler(Exception)
async def unexpected_error(request: Request, exc: Exception):
    logger.exception(f"[API] Unhandled error | {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _pipeline(request: Request) -> RAGPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise RAGError("Pipeline not ready")
    return pipeline


@app.get("/api/health")
async def health(request: Request):
    """Return corpus status and configured models."""
    pipeline = _pipeline(request)
    corpus = pipeline.corpus
    return {
        "status": "ok",
        "corpus_mode": getattr(request.app.state, "corpus_mode", "sample"),
        "corpus_loaded": corpus.is_loaded,
        "chunks": len(corpus.get()) if corpus.is_loaded else 0,
        "embedding_model": pipeline.retriever.embedder.model,
        "chat_model": pipeline.answer_generator.chat.model,
        "top_k": pipeline.retriever.top_k,
    }


@app.post("/api/search", response_model=RAGResponse)
async def search(body: SearchRequest, request: Request):
    """
    Answer a question from the corpus.

    The blocking pipeline.process() call runs in a thread-pool executor to
    avoid stalling FastAPI's async event loop.
    """
    pipeline = _pipeline(request)
    question = (body.question or "").strip()
    if len(question) < 3:
        raise ValidationError(INVALID_QUESTION_MESSAGE)

    logger.info(f"[API] Search | query={question[:80]!r}")

    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(pipeline.process, question))
