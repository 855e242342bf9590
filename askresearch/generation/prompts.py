"""
Prompt templates for the AskResearch generators.

Templates are versioned constants and the builders are pure functions of
their inputs, so prompt text can be golden-tested without a provider.
Bump PROMPT_VERSION whenever a template's wording changes.
"""
from __future__ import annotations

PROMPT_VERSION = "2025-01"

# ---------------------------------------------------------------------------
# Answer prompt
# ---------------------------------------------------------------------------

ANSWER_PROMPT = """\
You are AskResearch, an AI assistant that provides factual answers based on research documents.

Context from research papers:
{context}

Question: {question}

Instructions:
- Answer based ONLY on the provided context
- Cite sources using [Source N] notation
- If the context doesn't contain enough information, say so
- Be concise and authoritative
- Use a neutral, professional analyst tone

Answer:"""

# ---------------------------------------------------------------------------
# Follow-up prompt
# ---------------------------------------------------------------------------

FOLLOW_UP_PROMPT = """\
Based on this question and answer, generate {count} relevant follow-up questions that a user might want to ask next.

Question: {question}

Answer: {answer_excerpt}

Generate {count} specific, relevant follow-up questions (one per line, no numbering):"""

# ---------------------------------------------------------------------------
# Context block
# ---------------------------------------------------------------------------

CONTEXT_BLOCK_TEMPLATE = "[Source {index}: {source}, Page {page}]\n{content}"
CONTEXT_SEPARATOR = "\n\n---\n\n"
MISSING_PAGE = "N/A"


def build_answer_prompt(context: str, question: str) -> str:
    return ANSWER_PROMPT.format(context=context, question=question)


def build_follow_up_prompt(
    question: str,
    answer: str,
    count: int = 3,
    answer_chars: int = 500,
) -> str:
    return FOLLOW_UP_PROMPT.format(
        question=question,
        answer_excerpt=answer[:answer_chars],
        count=count,
    )
