"""Tests for prompt building, context assembly and the generators."""
import httpx
import openai
import pytest

from askresearch.errors import ProviderError, Timeout
from askresearch.generation.context import assemble_context, summarise_sources
from askresearch.generation.generator import (
    AnswerGenerator,
    ChatModel,
    FollowUpGenerator,
    parse_follow_ups,
)
from askresearch.generation.prompts import (
    ANSWER_PROMPT,
    PROMPT_VERSION,
    build_answer_prompt,
    build_follow_up_prompt,
)
from askresearch.schemas import Chunk, ChunkMetadata, RankedChunk

from conftest import FakeChatClient


def _ranked(content: str, source: str, page, rank: int = 1) -> RankedChunk:
    chunk = Chunk(content=content, metadata=ChunkMetadata(source=source, page=page))
    return RankedChunk(rank=rank, chunk_index=rank - 1, score=0.9, chunk=chunk)


def _timeout_error() -> openai.APITimeoutError:
    return openai.APITimeoutError(
        request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    )


class TestPrompts:
    def test_answer_prompt_golden(self):
        prompt = build_answer_prompt("[Source 1: a.pdf, Page 2]\nBody", "What is new?")
        assert prompt == (
            "You are AskResearch, an AI assistant that provides factual answers based on research documents.\n"
            "\n"
            "Context from research papers:\n"
            "[Source 1: a.pdf, Page 2]\n"
            "Body\n"
            "\n"
            "Question: What is new?\n"
            "\n"
            "Instructions:\n"
            "- Answer based ONLY on the provided context\n"
            "- Cite sources using [Source N] notation\n"
            "- If the context doesn't contain enough information, say so\n"
            "- Be concise and authoritative\n"
            "- Use a neutral, professional analyst tone\n"
            "\n"
            "Answer:"
        )

    def test_answer_prompt_is_pure(self):
        assert build_answer_prompt("ctx", "q?") == build_answer_prompt("ctx", "q?")
        assert PROMPT_VERSION
        assert "{context}" in ANSWER_PROMPT and "{question}" in ANSWER_PROMPT

    def test_follow_up_prompt_truncates_answer(self):
        prompt = build_follow_up_prompt("Why?", "a" * 600 + "TAIL", count=3, answer_chars=500)
        assert "a" * 500 in prompt
        assert "TAIL" not in prompt
        assert "generate 3 relevant follow-up questions" in prompt


class TestContextAssembler:
    def test_blocks_numbered_in_ranked_order(self):
        ranked = [
            _ranked("First body", "a.pdf", 1, rank=1),
            _ranked("Second body", "b.pdf", 12, rank=2),
        ]
        assert assemble_context(ranked) == (
            "[Source 1: a.pdf, Page 1]\nFirst body"
            "\n\n---\n\n"
            "[Source 2: b.pdf, Page 12]\nSecond body"
        )

    def test_missing_page_placeholder(self):
        assert assemble_context([_ranked("Body", "notes.md", None)]).startswith(
            "[Source 1: notes.md, Page N/A]"
        )

    def test_content_not_truncated(self):
        body = "x" * 5000
        assert body in assemble_context([_ranked(body, "a.pdf", 1)])

    def test_empty(self):
        assert assemble_context([]) == ""

    def test_source_summaries_truncate(self):
        long_body = "y" * 300
        sources = summarise_sources([_ranked(long_body, "a.pdf", 1), _ranked("short", "b.pdf", 2)])
        assert sources[0].content == "y" * 200 + "..."
        assert sources[0].metadata.page == 1
        assert sources[1].content == "short"


class TestParseFollowUps:
    def test_strips_enumeration_and_blank_lines(self):
        text = "1. First?\n\n2) Second?\n- Third?\n4. Fourth?"
        assert parse_follow_ups(text) == ["First?", "Second?", "Third?"]

    def test_plain_lines_kept(self):
        assert parse_follow_ups("What next?\nAnd then?") == ["What next?", "And then?"]

    def test_empty(self):
        assert parse_follow_ups("  \n\n") == []


class TestAnswerGenerator:
    def test_uses_temperature_zero_and_returns_text(self):
        client = FakeChatClient(answer="Grounded [Source 1].")
        generator = AnswerGenerator(ChatModel(client=client))

        assert generator.answer("What?", "[Source 1: a.pdf, Page 1]\nBody") == "Grounded [Source 1]."
        assert client.kwargs[0]["temperature"] == 0.0
        assert "Question: What?" in client.prompts[0]

    def test_timeout_surfaces_as_timeout(self):
        generator = AnswerGenerator(ChatModel(client=FakeChatClient(answer_error=_timeout_error())))
        with pytest.raises(Timeout):
            generator.answer("What?", "ctx")

    def test_provider_failure_surfaces_as_provider_error(self):
        error = openai.AuthenticationError(
            "bad key",
            response=httpx.Response(401, request=httpx.Request("POST", "https://api.openai.com")),
            body=None,
        )
        generator = AnswerGenerator(ChatModel(client=FakeChatClient(answer_error=error)))
        with pytest.raises(ProviderError):
            generator.answer("What?", "ctx")


class TestFollowUpGenerator:
    def test_at_most_three_clean_questions(self):
        generator = FollowUpGenerator(ChatModel(client=FakeChatClient()))
        questions = generator.follow_ups("What?", "Answer")
        assert questions == [
            "Which industries lead generative AI adoption?",
            "How are enterprises governing AI agents?",
            "What limits edge AI deployments?",
        ]

    @pytest.mark.parametrize("error", [RuntimeError("boom"), _timeout_error()])
    def test_failure_returns_empty_list(self, error):
        generator = FollowUpGenerator(ChatModel(client=FakeChatClient(follow_up_error=error)))
        assert generator.follow_ups("What?", "Answer") == []
