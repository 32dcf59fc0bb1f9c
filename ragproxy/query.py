"""
Query service: retrieval, augmentation and the chat model call.

    QueryRequest
        ↓ validate (rag_type, query, k, window_size)
    RAGEngine        → context strings → augmented message list
        ↓
    LLMGateway       → LLMResponse  (answer)
                     → text deltas  (stream)

All retrieval work finishes before the model is called, so validation and
store errors surface as ordinary exceptions. Once streaming has started, a
model failure arrives as a final error event instead.
"""

from __future__ import annotations

from typing import AsyncIterator, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ragproxy.config.logging import get_logger
from ragproxy.config.settings import LLMSettings
from ragproxy.llm.gateway import LLMGateway
from ragproxy.llm.models import TokenUsage
from ragproxy.rag.base import ChatMessage, RAGType
from ragproxy.rag.engine import RAGEngine
from ragproxy.rag.errors import InvalidRequestError, UpstreamProviderError

logger = get_logger(__name__)

LLM_FAILURE_MESSAGE = "Failed to get response from LLM provider."


class QueryRequest(BaseModel):
    """
    Input of a query.

    Field names are accepted in snake_case or camelCase
    (``rag_type`` / ``ragType``).
    """

    query: str = Field(description="The user's latest message")
    rag_type: RAGType | None = Field(None, description="'basic' or 'advanced'")
    k: int | None = Field(None, description="Chunks to retrieve; missing or <= 0 uses the default")
    conversation_history: list[ChatMessage] = Field(
        default_factory=list, description="Earlier turns, oldest first"
    )
    window_size: int | None = Field(
        None, ge=0, description="Trailing messages used for retrieval; 0 = all"
    )
    stream: bool = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query is required and must be a non-empty string")
        return value

    @classmethod
    def parse(cls, data: dict) -> "QueryRequest":
        """Validate a raw payload, raising InvalidRequestError on bad input."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidRequestError(describe_validation_error(e)) from e


class PreparedQuery(BaseModel):
    """Messages ready for the chat model, plus how they were built."""

    messages: list[ChatMessage]
    rag_type: RAGType
    context_count: int = 0


class QueryResult(BaseModel):
    """A finished batch answer."""

    text: str
    model: str
    finish_reason: str
    usage: TokenUsage
    rag_type: RAGType
    context_count: int


class StreamEvent(BaseModel):
    """One event of a streamed answer."""

    type: Literal["delta", "error", "done"]
    text: str | None = None
    error: str | None = None
    details: str | None = None

    @classmethod
    def delta(cls, text: str) -> "StreamEvent":
        return cls(type="delta", text=text)

    @classmethod
    def failure(cls, error: str, details: str | None = None) -> "StreamEvent":
        return cls(type="error", error=error, details=details)

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(type="done")


class QueryService:
    """
    Answers queries with retrieval-augmented prompts.

    Args:
        engine: Retrieval-augmentation engine
        llm: Chat model gateway
        llm_settings: Source of the plain and context-aware system prompts
        window_size: Default conversation window for retrieval (0 = all)
    """

    def __init__(
        self,
        engine: RAGEngine,
        llm: LLMGateway,
        llm_settings: LLMSettings,
        window_size: int = 0,
    ):
        self.engine = engine
        self.llm = llm
        self.llm_settings = llm_settings
        self.window_size = window_size

    async def prepare(self, request: QueryRequest) -> PreparedQuery:
        """
        Retrieve context and build the message list for the model.

        Single queries become one augmented user message. With conversation
        history, the new query is appended as the last user turn and context
        is prefixed onto it; earlier turns pass through unchanged.

        Raises:
            InvalidRequestError: Bad window_size or empty conversation text
            QueryEmbeddingError: The retrieval query could not be embedded
            StoreError: A store failed or is not ready
        """
        if request.conversation_history:
            conversation = [*request.conversation_history, ChatMessage(role="user", content=request.query)]
            return await self.prepare_conversation(
                conversation, request.rag_type, request.k, request.window_size
            )

        strategy = self.engine.resolve_rag_type(request.rag_type)
        context = await self.engine.retrieve_context(request.query, strategy, request.k)
        prompt = self.engine.format_prompt(request.query, context, strategy)
        return self._with_system_prompt([ChatMessage(role="user", content=prompt)], context, strategy)

    async def prepare_conversation(
        self,
        conversation: list[ChatMessage],
        rag_type: RAGType | str | None = None,
        k: int | None = None,
        window_size: int | None = None,
    ) -> PreparedQuery:
        """
        Build the message list for a conversation whose last turn is the
        new user message.

        The retrieval query comes from the windowed conversation; context
        is prefixed onto the last turn only.
        """
        strategy = self.engine.resolve_rag_type(rag_type)
        window = self.window_size if window_size is None else window_size
        context = await self.engine.conversation_context(conversation, strategy, k, window)
        messages = self.engine.format_conversation(conversation, context, strategy)
        return self._with_system_prompt(messages, context, strategy)

    def _with_system_prompt(
        self, messages: list[ChatMessage], context: list[str], strategy: RAGType
    ) -> PreparedQuery:
        system_prompt = (
            self.llm_settings.context_system_prompt if context else self.llm_settings.system_prompt
        )
        return PreparedQuery(
            messages=[ChatMessage(role="system", content=system_prompt), *messages],
            rag_type=strategy,
            context_count=len(context),
        )

    async def answer(self, request: QueryRequest) -> QueryResult:
        """
        Answer a query in one piece.

        Raises:
            UpstreamProviderError: The chat model call failed
            (plus everything ``prepare`` raises)
        """
        return await self.complete(await self.prepare(request))

    async def complete(self, prepared: PreparedQuery, model: str | None = None) -> QueryResult:
        """Send prepared messages to the chat model and wait for the answer."""
        logger.info(
            f"Answering query (rag_type={prepared.rag_type.value}, "
            f"context entries={prepared.context_count}, messages={len(prepared.messages)})"
        )
        response = await self.llm.generate(prepared.messages, model=model)
        return QueryResult(
            text=response.text,
            model=response.model,
            finish_reason=response.finish_reason,
            usage=response.usage,
            rag_type=prepared.rag_type,
            context_count=prepared.context_count,
        )

    async def stream(self, request: QueryRequest) -> AsyncIterator[StreamEvent]:
        """
        Prepare a query, then return an iterator of its answer events.

        Preparation errors raise here, before any event exists. The
        iterator yields ``delta`` events, then either ``done`` or a single
        ``error`` event if the model fails mid-way.
        """
        return self.relay(await self.prepare(request))

    def relay(self, prepared: PreparedQuery, model: str | None = None) -> AsyncIterator[StreamEvent]:
        """Stream the answer to prepared messages as events."""
        logger.info(
            f"Streaming answer (rag_type={prepared.rag_type.value}, "
            f"context entries={prepared.context_count})"
        )
        return self._relay(prepared.messages, model)

    async def _relay(self, messages: list[ChatMessage], model: str | None) -> AsyncIterator[StreamEvent]:
        upstream = self.llm.stream(messages, model=model)
        try:
            async for text in upstream:
                yield StreamEvent.delta(text)
        except UpstreamProviderError as e:
            details = str(e.cause) if e.cause else str(e)
            yield StreamEvent.failure(LLM_FAILURE_MESSAGE, details)
            return
        finally:
            await upstream.aclose()
        yield StreamEvent.done()


def describe_validation_error(error: ValidationError) -> str:
    """Flatten a pydantic ValidationError into one readable line."""
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        message = item.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"
