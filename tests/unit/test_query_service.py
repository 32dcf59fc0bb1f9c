"""
Unit tests for QueryService and QueryRequest.

A real RAGEngine runs over mocked collaborators so the tests see the exact
messages handed to the chat model.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ragproxy.config.settings import LLMSettings
from ragproxy.llm.models import LLMResponse, TokenUsage
from ragproxy.query import (
    LLM_FAILURE_MESSAGE,
    QueryRequest,
    QueryService,
    StreamEvent,
)
from ragproxy.rag.base import ChatMessage, RAGType, RetrievedChunk, RetrievedMetadata
from ragproxy.rag.engine import RAGEngine
from ragproxy.rag.errors import InvalidRequestError, StoreError, UpstreamProviderError


def _chunk(text: str) -> RetrievedChunk:
    return RetrievedChunk(
        id=text, metadata=RetrievedMetadata(text_chunk=text, parent_document_id="doc")
    )


@pytest.fixture
def mock_gateway():
    gateway = MagicMock()
    gateway.embed = AsyncMock(return_value=[0.1, 0.2])
    return gateway


@pytest.fixture
def mock_index():
    index = MagicMock()
    index.query = AsyncMock(return_value=[_chunk("Paragraph 1.")])
    return index


@pytest.fixture
def mock_llm():
    llm = MagicMock()
    llm.generate = AsyncMock(
        return_value=LLMResponse(
            text="Answer.",
            model="gemini/gemini-2.0-flash-lite",
            usage=TokenUsage(prompt_tokens=10, completion_tokens=2),
        )
    )
    return llm


@pytest.fixture
def llm_settings():
    return LLMSettings(system_prompt="PLAIN", context_system_prompt="WITH CONTEXT")


@pytest.fixture
def service(mock_gateway, mock_index, mock_llm, llm_settings):
    engine = RAGEngine(mock_gateway, mock_index, MagicMock(), default_k=3)
    return QueryService(engine, mock_llm, llm_settings, window_size=0)


def _upstream(*deltas, error: Exception | None = None):
    """Build an LLMGateway.stream replacement that records aclose."""
    state = {"closed": False}

    async def stream(messages, model=None):
        try:
            for delta in deltas:
                yield delta
            if error is not None:
                raise error
        finally:
            state["closed"] = True

    return stream, state


class TestQueryRequest:

    def test_camel_case_aliases(self):
        request = QueryRequest.parse({
            "query": "Hi",
            "ragType": "advanced",
            "conversationHistory": [{"role": "user", "content": "Earlier"}],
            "windowSize": 2,
        })

        assert request.rag_type is RAGType.ADVANCED
        assert request.conversation_history[0].content == "Earlier"
        assert request.window_size == 2

    def test_snake_case_accepted(self):
        assert QueryRequest.parse({"query": "Hi", "rag_type": "basic"}).rag_type is RAGType.BASIC

    @pytest.mark.parametrize(
        "payload",
        [{}, {"query": ""}, {"query": "   "}, {"query": "Hi", "ragType": "bogus"}, {"query": "Hi", "windowSize": -1}],
    )
    def test_invalid_payloads(self, payload):
        with pytest.raises(InvalidRequestError):
            QueryRequest.parse(payload)


class TestPrepare:

    @pytest.mark.asyncio
    async def test_single_query_with_context(self, service):
        prepared = await service.prepare(QueryRequest(query="What is in the doc?"))

        assert [m.role for m in prepared.messages] == ["system", "user"]
        assert prepared.messages[0].content == "WITH CONTEXT"
        assert prepared.messages[1].content.startswith("User Query: What is in the doc?")
        assert prepared.context_count == 1
        assert prepared.rag_type is RAGType.BASIC

    @pytest.mark.asyncio
    async def test_no_context_uses_plain_prompt(self, service, mock_index):
        mock_index.query = AsyncMock(return_value=[])

        prepared = await service.prepare(QueryRequest(query="What is X?"))

        assert prepared.messages[0].content == "PLAIN"
        assert prepared.messages[1].content == "What is X?"
        assert prepared.context_count == 0

    @pytest.mark.asyncio
    async def test_conversation_appends_query(self, service, mock_gateway):
        request = QueryRequest(
            query="And the second?",
            conversation_history=[
                ChatMessage(role="user", content="What is the first?"),
                ChatMessage(role="model", content="The first is A."),
            ],
            window_size=2,
        )

        prepared = await service.prepare(request)

        mock_gateway.embed.assert_awaited_once_with("The first is A.\nAnd the second?")
        assert [m.role for m in prepared.messages] == ["system", "user", "model", "user"]
        assert prepared.messages[1].content == "What is the first?"
        assert prepared.messages[3].content.endswith("here is the latest user message: And the second?")

    @pytest.mark.asyncio
    async def test_service_window_default(self, mock_gateway, mock_index, mock_llm, llm_settings):
        engine = RAGEngine(mock_gateway, mock_index, MagicMock())
        service = QueryService(engine, mock_llm, llm_settings, window_size=1)
        request = QueryRequest(
            query="Latest", conversation_history=[ChatMessage(role="user", content="Old")]
        )

        await service.prepare(request)

        mock_gateway.embed.assert_awaited_once_with("Latest")


class TestPrepareConversation:
    """Conversations whose last turn is already the new message."""

    @pytest.mark.asyncio
    async def test_last_turn_gets_context(self, service, mock_gateway, mock_index):
        conversation = [
            ChatMessage(role="user", content="How do I install it?"),
            ChatMessage(role="model", content="Use pip."),
            ChatMessage(role="user", content="And configure\nthe key?"),
        ]

        prepared = await service.prepare_conversation(conversation, rag_type="basic", k=5)

        mock_gateway.embed.assert_awaited_once_with("How do I install it?\nUse pip.\nAnd configure\nthe key?")
        assert mock_index.query.call_args.args[1] == 5
        assert prepared.messages[0].content == "WITH CONTEXT"
        assert [m.content for m in prepared.messages[1:3]] == ["How do I install it?", "Use pip."]
        assert prepared.messages[3].content.startswith("Based on the relevant information below")
        assert prepared.messages[3].content.endswith("latest user message: And configure\nthe key?")

    @pytest.mark.asyncio
    async def test_window_limits_retrieval_query(self, service, mock_gateway):
        conversation = [ChatMessage(role="user", content=text) for text in ("one", "two", "three")]

        prepared = await service.prepare_conversation(conversation, window_size=1)

        mock_gateway.embed.assert_awaited_once_with("three")
        assert len(prepared.messages) == 4

    @pytest.mark.asyncio
    async def test_invalid_strategy(self, service, mock_gateway):
        with pytest.raises(InvalidRequestError):
            await service.prepare_conversation([ChatMessage(role="user", content="q")], rag_type="bogus")

        mock_gateway.embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_model_override_reaches_gateway(self, service, mock_llm):
        prepared = await service.prepare_conversation([ChatMessage(role="user", content="q")])

        await service.complete(prepared, model="gemini/gemini-1.5-flash")

        assert mock_llm.generate.call_args.kwargs["model"] == "gemini/gemini-1.5-flash"


class TestAnswer:

    @pytest.mark.asyncio
    async def test_answer(self, service, mock_llm):
        result = await service.answer(QueryRequest(query="What is in the doc?"))

        assert result.text == "Answer."
        assert result.usage.total_tokens == 12
        assert result.context_count == 1
        sent = mock_llm.generate.call_args.args[0]
        assert sent[0].role == "system"

    @pytest.mark.asyncio
    async def test_store_error_before_model_call(self, service, mock_index, mock_llm):
        mock_index.query = AsyncMock(side_effect=StoreError("index down"))

        with pytest.raises(StoreError):
            await service.answer(QueryRequest(query="q"))

        mock_llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_upstream_error_propagates(self, service, mock_llm):
        mock_llm.generate = AsyncMock(side_effect=UpstreamProviderError("quota"))

        with pytest.raises(UpstreamProviderError):
            await service.answer(QueryRequest(query="q"))


class TestStream:

    @pytest.mark.asyncio
    async def test_deltas_then_done(self, service, mock_llm):
        stream, state = _upstream("Hel", "lo")
        mock_llm.stream = stream

        events = [event async for event in await service.stream(QueryRequest(query="q", stream=True))]

        assert events == [StreamEvent.delta("Hel"), StreamEvent.delta("lo"), StreamEvent.done()]
        assert state["closed"]

    @pytest.mark.asyncio
    async def test_mid_stream_failure_ends_with_error_event(self, service, mock_llm):
        cause = ConnectionError("reset by peer")
        stream, state = _upstream(
            "partial", error=UpstreamProviderError("LLM stream failed: reset by peer", cause=cause)
        )
        mock_llm.stream = stream

        events = [event async for event in await service.stream(QueryRequest(query="q"))]

        assert events[0] == StreamEvent.delta("partial")
        assert events[-1].type == "error"
        assert events[-1].error == LLM_FAILURE_MESSAGE
        assert events[-1].details == "reset by peer"
        assert all(event.type != "done" for event in events)
        assert state["closed"]

    @pytest.mark.asyncio
    async def test_preparation_error_raises_before_events(self, service, mock_index, mock_llm):
        mock_index.query = AsyncMock(side_effect=StoreError("index down"))

        with pytest.raises(StoreError):
            await service.stream(QueryRequest(query="q", stream=True))

        mock_llm.stream.assert_not_called()

    @pytest.mark.asyncio
    async def test_consumer_close_closes_upstream(self, service, mock_llm):
        stream, state = _upstream("one", "two", "three")
        mock_llm.stream = stream

        events = await service.stream(QueryRequest(query="q"))
        assert (await events.__anext__()).text == "one"
        await events.aclose()

        assert state["closed"]

    @pytest.mark.asyncio
    async def test_relay_uses_requested_model(self, service, mock_llm):
        models = []

        async def stream(messages, model=None):
            models.append(model)
            yield "ok"

        mock_llm.stream = stream
        prepared = await service.prepare_conversation([ChatMessage(role="user", content="q")])

        events = [event async for event in service.relay(prepared, model="gemini/gemini-pro")]

        assert models == ["gemini/gemini-pro"]
        assert events == [StreamEvent.delta("ok"), StreamEvent.done()]
