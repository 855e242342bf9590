"""
Context Assembler
------------------
Turns ranked chunks into the numbered context string fed to the answer
prompt, and into the truncated Source summaries returned to the caller.

Numbering is 1-based in ranked order, so "[Source 1]" in an answer always
refers to the best-matching chunk.  Chunk content is never truncated here;
only the outward-facing summaries are.
"""
from __future__ import annotations

from askresearch.generation.prompts import (
    CONTEXT_BLOCK_TEMPLATE,
    CONTEXT_SEPARATOR,
    MISSING_PAGE,
)
from askresearch.schemas import RankedChunk, Source
from askresearch.utils.helpers import truncate_text


def assemble_context(ranked: list[RankedChunk]) -> str:
    blocks = [
        CONTEXT_BLOCK_TEMPLATE.format(
            index=i,
            source=item.chunk.metadata.source,
            page=item.chunk.metadata.page if item.chunk.metadata.page is not None else MISSING_PAGE,
            content=item.chunk.content,
        )
        for i, item in enumerate(ranked, start=1)
    ]
    return CONTEXT_SEPARATOR.join(blocks)


def summarise_sources(ranked: list[RankedChunk], max_chars: int = 200) -> list[Source]:
    return [
        Source(
            content=truncate_text(item.chunk.content, max_chars),
            metadata=item.chunk.metadata,
        )
        for item in ranked
    ]
