"""
Ingestion Pipeline - Load, Chunk, Embed, Index
-----------------------------------------------
Batch job, run offline before serving in "index" mode:

  1. Load each document (or the bundled sample records)
  2. Split into overlapping character windows
  3. Embed every chunk with the configured OpenAI embedding model
  4. Build the CorpusIndex and save it to the index directory

A document that fails to load is recorded and skipped; the rest of the batch
still runs.  The caller decides the exit status from the returned report.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import numpy as np
from loguru import logger
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from askresearch.chunking.chunker import WindowChunker
from askresearch.embedding.embedder import Embedder
from askresearch.embedding.index import CorpusIndex
from askresearch.errors import IngestionError
from askresearch.ingestion.sources import load_document, sample_documents
from askresearch.schemas import Chunk, SourceDocument

console = Console(stderr=True)


@dataclass
class DocumentStatus:
    name: str
    ok: bool
    pages: int = 0
    chunks: int = 0
    error: str = ""


@dataclass
class IngestReport:
    documents: list[DocumentStatus] = field(default_factory=list)
    total_chunks: int = 0
    index_dir: Optional[str] = None
    embedding_model: str = ""
    tokens_used: int = 0
    estimated_cost_usd: float = 0.0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    @property
    def failed(self) -> list[DocumentStatus]:
        return [d for d in self.documents if not d.ok]

    @property
    def succeeded(self) -> bool:
        return not self.failed and self.total_chunks > 0


def collect_documents(
    paths: list[str],
    chunker: WindowChunker,
    report: IngestReport,
) -> list[Chunk]:
    """Load and chunk each path, recording per-document success or failure."""
    chunks: list[Chunk] = []
    for path in paths:
        name = Path(path).name
        try:
            docs = load_document(path)
        except IngestionError as exc:
            logger.error(f"[Ingest] {name}: {exc}")
            report.documents.append(DocumentStatus(name=name, ok=False, error=str(exc)))
            continue

        doc_chunks = chunker.chunk_batch(docs)
        chunks.extend(doc_chunks)
        report.documents.append(
            DocumentStatus(name=name, ok=True, pages=len(docs), chunks=len(doc_chunks))
        )
        logger.info(f"[Ingest] {name}: {len(docs)} page(s) -> {len(doc_chunks)} chunk(s)")
    return chunks


def collect_sample(chunker: WindowChunker, report: IngestReport) -> list[Chunk]:
    docs: list[SourceDocument] = sample_documents()
    chunks = chunker.chunk_batch(docs)
    by_source: dict[str, DocumentStatus] = {}
    for doc in docs:
        status = by_source.setdefault(
            doc.metadata.source, DocumentStatus(name=doc.metadata.source, ok=True)
        )
        status.pages += 1
    for chunk in chunks:
        by_source[chunk.metadata.source].chunks += 1
    report.documents.extend(by_source.values())
    return chunks


def run_ingest(
    embedder: Embedder,
    paths: Optional[list[str]] = None,
    sample: bool = False,
    index_dir: str = "data/index",
    window: int = 1000,
    overlap: int = 200,
) -> IngestReport:
    """
    Execute the ingestion batch and, if any chunks were produced, write the
    index to index_dir.

    Returns:
        IngestReport with per-document status and embedding usage.
    """
    report = IngestReport(embedding_model=embedder.model)
    chunker = WindowChunker(window=window, overlap=overlap)

    if sample:
        chunks = collect_sample(chunker, report)
    else:
        chunks = collect_documents(paths or [], chunker, report)

    report.total_chunks = len(chunks)
    if not chunks:
        logger.error("[Ingest] No chunks produced; index not written")
        report.completed_at = datetime.now(timezone.utc)
        return report

    texts = [c.content for c in chunks]
    embeddings = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(
            f"[cyan]Embedding {len(texts)} chunks ({embedder.model})...[/cyan]",
            total=len(texts),
        )
        for i in range(0, len(texts), embedder.batch_size):
            batch = texts[i: i + embedder.batch_size]
            embeddings.append(embedder.embed_texts(batch))
            progress.advance(task, advance=len(batch))

    matrix = np.concatenate(embeddings, axis=0)
    index = CorpusIndex.build(chunks, matrix, embedding_model=embedder.model)
    index.save(Path(index_dir))

    usage = embedder.usage_summary()
    report.index_dir = index_dir
    report.tokens_used = usage["total_tokens_used"]
    report.estimated_cost_usd = usage["estimated_cost_usd"]
    report.completed_at = datetime.now(timezone.utc)
    logger.info(
        f"[Ingest] Index written -> {index_dir} | {len(chunks)} chunks | "
        f"{report.tokens_used} tokens | ${report.estimated_cost_usd:.4f}"
    )
    return report
