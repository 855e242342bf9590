"""
Generators
-----------
Two OpenAI chat-completion steps share one client wrapper:

  AnswerGenerator    -- grounded answer from (question, assembled context).
                        Failure is fatal to the query.
  FollowUpGenerator  -- up to N next questions from (question, answer).
                        Failure is logged and degrades to [] -- never raises.

Both run at temperature 0 so identical (question, corpus) pairs give stable
answers.  Each call carries the client's bounded timeout; transient
rate-limit / connection errors are retried, timeouts are not.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

import openai
from langsmith import traceable
from loguru import logger
from openai import OpenAI
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from askresearch.errors import ProviderError, Timeout
from askresearch.generation.prompts import build_answer_prompt, build_follow_up_prompt


# ---------------------------------------------------------------------------
# Model pricing table  (input_$/M, output_$/M)
# ---------------------------------------------------------------------------

_MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.150, 0.600),
    "gpt-4o":      (2.500, 10.000),
}


def _cost_usd(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Compute estimated cost in USD for a given model and token counts."""
    rates = _MODEL_PRICING.get(model, (0.150, 0.600))
    return (prompt_tokens * rates[0] + completion_tokens * rates[1]) / 1_000_000


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, openai.APITimeoutError):
        return False
    return isinstance(exc, (openai.RateLimitError, openai.APIConnectionError))


# Leading "1.", "2)", "-", "*" or "•" markers on a follow-up line
_ENUMERATION = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")


@dataclass
class Completion:
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def estimated_cost_usd(self) -> float:
        return _cost_usd(self.model, self.prompt_tokens, self.completion_tokens)


# ---------------------------------------------------------------------------
# Shared chat client
# ---------------------------------------------------------------------------

class ChatModel:
    """
    Thin wrapper over chat.completions for single-prompt calls.

    Supported models: gpt-4o-mini (default, fast), gpt-4o (higher quality).
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        temperature: float = 0.0,
        max_tokens: int = 1024,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client=None,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def complete(self, prompt: str) -> Completion:
        try:
            response = self._create(prompt)
        except openai.APITimeoutError as exc:
            raise Timeout(f"Chat completion timed out ({self.model})") from exc
        except openai.OpenAIError as exc:
            raise ProviderError(f"Chat completion failed ({self.model}): {exc}") from exc

        usage = response.usage
        completion = Completion(
            text=response.choices[0].message.content or "",
            model=self.model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )
        logger.debug(
            f"[ChatModel] {self.model} | prompt={completion.prompt_tokens} "
            f"completion={completion.completion_tokens} | "
            f"cost=${completion.estimated_cost_usd:.5f}"
        )
        return completion

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    def _create(self, prompt: str):
        return self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


# ---------------------------------------------------------------------------
# Answer Generator
# ---------------------------------------------------------------------------

class AnswerGenerator:
    """Grounded answer synthesis; cites chunks as [Source N]."""

    def __init__(self, chat: ChatModel) -> None:
        self.chat = chat

    @traceable(name="generate_answer", run_type="llm")
    def generate(self, question: str, context: str) -> Completion:
        prompt = build_answer_prompt(context, question)
        logger.debug(f"[AnswerGenerator] {self.chat.model} | query={question[:60]!r}")

        completion = self.chat.complete(prompt)

        logger.info(
            f"[AnswerGenerator] Done | prompt={completion.prompt_tokens} "
            f"completion={completion.completion_tokens} | "
            f"cost=${completion.estimated_cost_usd:.5f}"
        )
        return completion

    def answer(self, question: str, context: str) -> str:
        return self.generate(question, context).text


# ---------------------------------------------------------------------------
# Follow-up Generator
# ---------------------------------------------------------------------------

def parse_follow_ups(text: str, limit: int = 3) -> list[str]:
    """One question per non-blank line, enumeration markers stripped, at most `limit`."""
    questions: list[str] = []
    for line in text.splitlines():
        cleaned = _ENUMERATION.sub("", line).strip()
        if cleaned:
            questions.append(cleaned)
    return questions[:limit]


class FollowUpGenerator:
    """
    Suggests next questions.  Best-effort: any failure is logged and yields [].
    """

    def __init__(self, chat: ChatModel, count: int = 3, answer_chars: int = 500) -> None:
        self.chat = chat
        self.count = count
        self.answer_chars = answer_chars

    @traceable(name="generate_follow_ups", run_type="llm")
    def follow_ups(self, question: str, answer: str) -> list[str]:
        prompt = build_follow_up_prompt(
            question, answer, count=self.count, answer_chars=self.answer_chars
        )
        try:
            completion = self.chat.complete(prompt)
        except Exception as exc:
            logger.warning(
                f"[FollowUpGenerator] Failed to generate follow-up questions | "
                f"query={question[:60]!r} | {type(exc).__name__}: {exc}"
            )
            return []

        questions = parse_follow_ups(completion.text, self.count)
        logger.debug(f"[FollowUpGenerator] {len(questions)} follow-up(s)")
        return questions
