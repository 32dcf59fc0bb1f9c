"""
LLM Gateway: chat completion calls via LiteLLM.

Sits between the query service and the hosted model:

    QueryService  →  list[ChatMessage]
                          ↓
    LLMGateway.generate() / LLMGateway.stream()
                          ↓
                 LiteLLM acompletion()
                          ↓
        LLMResponse  /  async iterator of text deltas

LiteLLM keeps the provider swappable: "gemini/gemini-2.0-flash-lite",
"openai/gpt-4o-mini" or a local "ollama/llama3" differ only in the model
string. Every failure coming out of LiteLLM is re-raised as
UpstreamProviderError with the provider's message attached.
"""

from __future__ import annotations

from typing import Any, AsyncIterator

from litellm import acompletion

from ragproxy.config.logging import get_logger
from ragproxy.config.settings import LLMSettings
from ragproxy.llm.models import LLMResponse, TokenUsage
from ragproxy.rag.base import ChatMessage
from ragproxy.rag.errors import UpstreamProviderError

logger = get_logger(__name__)


class LLMGateway:
    """
    Stateless chat-completion client.

    Each call sends the full message list it is given; the gateway keeps no
    conversation state of its own.

    Args:
        settings: LLM configuration (model, temperature, max_tokens, api_key)
    """

    def __init__(self, settings: LLMSettings):
        self._settings = settings

    @property
    def model(self) -> str:
        return self._settings.model

    def _completion_kwargs(
        self, messages: list[ChatMessage], stream: bool, model: str | None = None
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model or self._settings.model,
            "messages": [message.to_litellm() for message in messages],
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
            "stream": stream,
        }
        # Without an explicit key LiteLLM reads the provider's own env var
        if self._settings.api_key:
            kwargs["api_key"] = self._settings.api_key
        return kwargs

    async def generate(self, messages: list[ChatMessage], model: str | None = None) -> LLMResponse:
        """
        Run a completion and wait for the whole answer.

        Args:
            messages: Conversation to complete
            model: LiteLLM model string overriding the configured one

        Raises:
            UpstreamProviderError: If the API call fails or returns no choices
        """
        model = model or self._settings.model
        try:
            response = await acompletion(**self._completion_kwargs(messages, stream=False, model=model))
        except Exception as e:
            logger.error(f"LLM API call failed ({model}): {e}")
            raise UpstreamProviderError(f"LLM API call failed: {e}", cause=e) from e

        if not response.choices:
            raise UpstreamProviderError(f"LLM returned no choices ({model})")

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        result = LLMResponse(
            text=choice.message.content or "",
            model=response.model or model,
            finish_reason=choice.finish_reason or "stop",
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )
        logger.info(
            f"LLM response from {result.model}: {len(result.text)} chars, "
            f"{result.usage.total_tokens} tokens, finish_reason={result.finish_reason}"
        )
        return result

    async def stream(self, messages: list[ChatMessage], model: str | None = None) -> AsyncIterator[str]:
        """
        Run a streaming completion, yielding text deltas as they arrive.

        Each delta is yielded before the next one is requested from the
        provider. If the consumer stops early (aclose, cancellation) the
        upstream stream is closed.

        Raises:
            UpstreamProviderError: If the call fails before or during streaming
        """
        model = model or self._settings.model
        try:
            response = await acompletion(**self._completion_kwargs(messages, stream=True, model=model))
        except Exception as e:
            logger.error(f"LLM streaming call failed ({model}): {e}")
            raise UpstreamProviderError(f"LLM API call failed: {e}", cause=e) from e

        deltas = 0
        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    deltas += 1
                    yield text
        except Exception as e:
            logger.error(f"LLM stream failed after {deltas} chunks ({model}): {e}")
            raise UpstreamProviderError(f"LLM stream failed: {e}", cause=e) from e
        finally:
            close = getattr(response, "aclose", None)
            if close is not None:
                await close()
            logger.debug(f"LLM stream closed after {deltas} chunks")
