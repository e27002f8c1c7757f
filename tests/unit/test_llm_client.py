"""
Unit tests for assistant/common/llm_client.py

The langchain-openai models are replaced with mocks; tests cover tier
selection, budget-clipped timeouts and error mapping.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from assistant.common.errors import EmbeddingError, LLMError, LLMTimeoutError
from assistant.common.llm_client import (
    MIN_CALL_TIMEOUT_SECONDS,
    CompletionOptions,
    EmbedOptions,
    LLMClient,
)
from assistant.common.model_tiers import TIER_CONFIGS, ModelTier


@pytest.fixture
def chat_openai():
    """Patch ChatOpenAI; the instance's ainvoke returns an AIMessage-like object."""
    with patch("assistant.common.llm_client.ChatOpenAI") as mock_cls:
        instance = MagicMock()
        instance.ainvoke = AsyncMock(return_value=SimpleNamespace(content='{"type": "detail"}'))
        mock_cls.return_value = instance
        yield mock_cls


@pytest.fixture
def embeddings():
    with patch("assistant.common.llm_client.OpenAIEmbeddings") as mock_cls:
        instance = MagicMock()
        instance.aembed_documents = AsyncMock(side_effect=lambda batch: [[float(len(t))] for t in batch])
        mock_cls.return_value = instance
        yield instance


# ===== TESTS: Tiers =====

class TestModelTiers:
    """Tests for the tier table."""

    def test_both_tiers_configured(self):
        assert set(TIER_CONFIGS) == {ModelTier.FAST, ModelTier.GENERAL}
        assert TIER_CONFIGS[ModelTier.FAST].default_max_tokens < TIER_CONFIGS[ModelTier.GENERAL].default_max_tokens

    def test_tier_values(self):
        assert ModelTier("fast") is ModelTier.FAST
        assert ModelTier.GENERAL.value == "general"


# ===== TESTS: Budget =====

class TestBudget:
    """Tests for timeout clipping."""

    def test_without_budget(self):
        assert LLMClient(api_key="k")._bounded(5000) == 5.0

    def test_clipped_to_budget(self):
        client = LLMClient(budget=lambda: 2.5, api_key="k")

        assert client._bounded(60000) == 2.5

    def test_floor(self):
        client = LLMClient(budget=lambda: 0.0, api_key="k")

        assert client._bounded(60000) == MIN_CALL_TIMEOUT_SECONDS


# ===== TESTS: complete =====

class TestComplete:
    """Tests for LLMClient.complete."""

    @pytest.mark.asyncio
    async def test_uses_tier_model(self, chat_openai):
        client = LLMClient(api_key="k")

        text = await client.complete("Classify", ModelTier.GENERAL)

        assert text == '{"type": "detail"}'
        kwargs = chat_openai.call_args.kwargs
        assert kwargs["model"] == TIER_CONFIGS[ModelTier.GENERAL].model
        assert kwargs["max_tokens"] == TIER_CONFIGS[ModelTier.GENERAL].default_max_tokens
        assert kwargs["model_kwargs"] == {}

    @pytest.mark.asyncio
    async def test_json_format(self, chat_openai):
        """JSON mode sets response_format and mentions JSON in the prompt."""
        client = LLMClient(api_key="k")

        await client.complete("Classify this page", ModelTier.FAST, CompletionOptions(format="json", max_tokens=64))

        kwargs = chat_openai.call_args.kwargs
        assert kwargs["model_kwargs"] == {"response_format": {"type": "json_object"}}
        assert kwargs["max_tokens"] == 64
        messages = chat_openai.return_value.ainvoke.call_args.args[0]
        assert messages[-1].content.endswith("Respond with JSON only.")

    @pytest.mark.asyncio
    async def test_system_message(self, chat_openai):
        client = LLMClient(api_key="k")

        await client.complete("Hi", options=CompletionOptions(system="You are terse."))

        messages = chat_openai.return_value.ainvoke.call_args.args[0]
        assert [m.content for m in messages] == ["You are terse.", "Hi"]

    @pytest.mark.asyncio
    async def test_models_cached(self, chat_openai):
        client = LLMClient(api_key="k")

        await client.complete("a")
        await client.complete("b")

        assert chat_openai.call_count == 1

    @pytest.mark.asyncio
    async def test_list_content_joined(self, chat_openai):
        chat_openai.return_value.ainvoke.return_value = SimpleNamespace(content=[{"text": "ab"}, "c"])

        assert await LLMClient(api_key="k").complete("x") == "abc"

    @pytest.mark.asyncio
    async def test_timeout(self, chat_openai):
        """A call that outlives its budget raises LLMTimeoutError without retry."""
        async def slow(_messages):
            await asyncio.sleep(5)

        chat_openai.return_value.ainvoke = AsyncMock(side_effect=slow)
        client = LLMClient(api_key="k")

        with pytest.raises(LLMTimeoutError):
            await client.complete("x", options=CompletionOptions(timeout_ms=1))

        assert chat_openai.return_value.ainvoke.call_count == 1

    @pytest.mark.asyncio
    async def test_provider_error(self, chat_openai):
        """Provider failures are retried once, then surface as LLMError."""
        chat_openai.return_value.ainvoke = AsyncMock(side_effect=RuntimeError("rate limited"))

        with pytest.raises(LLMError, match="rate limited"):
            await LLMClient(api_key="k").complete("x")

        assert chat_openai.return_value.ainvoke.call_count == 2


# ===== TESTS: embed =====

class TestEmbed:
    """Tests for LLMClient.embed."""

    @pytest.mark.asyncio
    async def test_empty(self, embeddings):
        assert await LLMClient(api_key="k").embed([]) == []
        embeddings.aembed_documents.assert_not_called()

    @pytest.mark.asyncio
    async def test_batches_in_order(self, embeddings):
        vectors = await LLMClient(api_key="k").embed(["a", "bb", "ccc"], EmbedOptions(batch_size=2))

        assert vectors == [[1.0], [2.0], [3.0]]
        assert embeddings.aembed_documents.call_count == 2

    @pytest.mark.asyncio
    async def test_failure(self, embeddings):
        embeddings.aembed_documents = AsyncMock(side_effect=RuntimeError("model not found"))

        with pytest.raises(EmbeddingError, match="model not found"):
            await LLMClient(api_key="k").embed(["a"])

    @pytest.mark.asyncio
    async def test_count_mismatch(self, embeddings):
        embeddings.aembed_documents = AsyncMock(return_value=[])

        with pytest.raises(EmbeddingError, match="Expected 1 vectors"):
            await LLMClient(api_key="k").embed(["a"])
