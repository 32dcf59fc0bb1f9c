"""
Data models for the LLM layer.

- LLMResponse: a finished (non-streamed) completion
- TokenUsage: token accounting reported by the provider
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """Token counts for one completion."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMResponse(BaseModel):
    """
    A complete model response.

    Attributes:
        text: Generated text (empty string if the model returned none)
        model: Model name as reported by the provider
        finish_reason: Why generation stopped ("stop", "length", ...)
        usage: Token accounting
    """

    text: str
    model: str = ""
    finish_reason: str = "stop"
    usage: TokenUsage = Field(default_factory=TokenUsage)
