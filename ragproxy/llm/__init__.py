"""
LLM layer.

Calls the hosted chat model through LiteLLM (provider-agnostic), in batch or
streaming mode. Prompt assembly happens upstream in the RAG engine; this
layer only relays messages and classifies provider failures.
"""

from ragproxy.llm.gateway import LLMGateway
from ragproxy.llm.models import LLMResponse, TokenUsage

__all__ = [
    "LLMGateway",
    "LLMResponse",
    "TokenUsage",
]
