"""
LLM Client Module.

Wraps the two model capabilities the pipeline consumes:

- ``complete(prompt, tier, options) -> str``: chat completion via
  langchain-openai ``ChatOpenAI``
- ``embed(texts, options) -> list[vector]``: embeddings via
  langchain-openai ``OpenAIEmbeddings``

Every call is bounded by its own timeout and, when a run budget is attached,
by the time remaining in the run.

Usage:
    from assistant.common.llm_client import LLMClient, CompletionOptions
    from assistant.common.model_tiers import ModelTier

    client = LLMClient()
    text = await client.complete(
        "Classify this page...",
        ModelTier.FAST,
        CompletionOptions(format="json", temperature=0.1, max_tokens=128),
    )
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI, OpenAIEmbeddings
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from assistant.common.config import Config
from assistant.common.errors import EmbeddingError, LLMError, LLMTimeoutError
from assistant.common.model_tiers import TIER_CONFIGS, ModelTier

logger = logging.getLogger(__name__)

# Never issue a call with less than this much time
MIN_CALL_TIMEOUT_SECONDS = 1.0


# ===== OPTIONS =====

@dataclass(frozen=True)
class CompletionOptions:
    """Recognized options for a completion call."""

    format: str = "text"  # "json" | "text"
    temperature: float = Config.ANALYTICAL_TEMPERATURE
    max_tokens: Optional[int] = None  # None = tier default
    timeout_ms: Optional[int] = None  # None = tier default
    system: Optional[str] = None


@dataclass(frozen=True)
class EmbedOptions:
    """Recognized options for an embedding call."""

    batch_size: int = 8
    timeout_ms: int = Config.EMBED_TIMEOUT_MS


# ===== CLIENT =====

class LLMClient:
    """
    Completion and embedding capability used by every pipeline stage.

    Args:
        budget: Optional callable returning the seconds left in the run; call
            timeouts are clipped to it.
        api_key: Defaults to Config.get_llm_api_key()
        base_url: Defaults to Config.get_llm_base_url()
    """

    def __init__(
        self,
        budget: Optional[Callable[[], float]] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.budget = budget
        self._api_key = api_key or Config.get_llm_api_key()
        self._base_url = base_url if base_url is not None else Config.get_llm_base_url()
        self._chat_models: Dict[Tuple, ChatOpenAI] = {}
        self._embedder: Optional[OpenAIEmbeddings] = None

    def _bounded(self, timeout_ms: int) -> float:
        seconds = timeout_ms / 1000
        if self.budget is not None:
            seconds = min(seconds, self.budget())
        return max(seconds, MIN_CALL_TIMEOUT_SECONDS)

    def _chat_model(self, tier: ModelTier, options: CompletionOptions) -> ChatOpenAI:
        tier_config = TIER_CONFIGS[tier]
        max_tokens = options.max_tokens or tier_config.default_max_tokens
        key = (tier, options.temperature, max_tokens, options.format)
        if key not in self._chat_models:
            model_kwargs = {}
            if options.format == "json":
                model_kwargs["response_format"] = {"type": "json_object"}
            self._chat_models[key] = ChatOpenAI(
                model=tier_config.model,
                temperature=options.temperature,
                max_tokens=max_tokens,
                api_key=self._api_key,
                base_url=self._base_url,
                model_kwargs=model_kwargs,
                max_retries=0,
            )
            logger.debug(f"Created chat model: tier={tier.value} model={tier_config.model}")
        return self._chat_models[key]

    async def complete(
        self,
        prompt: str,
        tier: ModelTier = ModelTier.FAST,
        options: Optional[CompletionOptions] = None,
    ) -> str:
        """
        Run one completion.

        Args:
            prompt: User prompt
            tier: Model tier
            options: CompletionOptions (format, temperature, max_tokens, timeout_ms)

        Returns:
            Raw response text

        Raises:
            LLMTimeoutError: If the call exceeded its (budget-clipped) timeout
            LLMError: For any other provider failure
        """
        options = options or CompletionOptions()
        timeout_ms = options.timeout_ms or TIER_CONFIGS[tier].default_timeout_ms
        timeout = self._bounded(timeout_ms)

        messages = []
        if options.system:
            messages.append(SystemMessage(content=options.system))
        if options.format == "json" and "json" not in prompt.lower():
            # OpenAI json mode requires the word "JSON" in the messages
            prompt = f"{prompt}\n\nRespond with JSON only."
        messages.append(HumanMessage(content=prompt))

        return await self._invoke(tier, options, messages, timeout)

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        retry=retry_if_not_exception_type(LLMTimeoutError),
        reraise=True,
    )
    async def _invoke(self, tier: ModelTier, options: CompletionOptions, messages: list, timeout: float) -> str:
        llm = self._chat_model(tier, options)
        try:
            response = await asyncio.wait_for(llm.ainvoke(messages), timeout=timeout)
        except asyncio.TimeoutError:
            raise LLMTimeoutError(f"{tier.value} completion timed out after {timeout:.1f}s")
        except Exception as e:
            raise LLMError(f"{tier.value} completion failed: {e}") from e

        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        return content or ""

    async def embed(self, texts: List[str], options: Optional[EmbedOptions] = None) -> List[List[float]]:
        """
        Embed texts in batches.

        Args:
            texts: Texts to embed
            options: EmbedOptions (batch_size, timeout_ms per batch)

        Returns:
            One vector per input text, in input order

        Raises:
            EmbeddingError: On any failure, including an unknown model
        """
        options = options or EmbedOptions()
        if not texts:
            return []

        if self._embedder is None:
            self._embedder = OpenAIEmbeddings(
                model=Config.EMBEDDING_MODEL,
                api_key=self._api_key,
                base_url=self._base_url,
                chunk_size=options.batch_size,
                max_retries=0,
            )

        vectors: List[List[float]] = []
        for start in range(0, len(texts), options.batch_size):
            batch = texts[start:start + options.batch_size]
            timeout = self._bounded(options.timeout_ms)
            try:
                vectors.extend(
                    await asyncio.wait_for(self._embedder.aembed_documents(batch), timeout=timeout)
                )
            except asyncio.TimeoutError:
                raise EmbeddingError(f"Embedding batch timed out after {timeout:.1f}s")
            except Exception as e:
                raise EmbeddingError(f"Embedding failed ({Config.EMBEDDING_MODEL}): {e}") from e

        if len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} vectors, got {len(vectors)}")
        return vectors
