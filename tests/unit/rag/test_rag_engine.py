"""
Unit tests for RAGEngine.

Tests are organized by behavior:
1. Request validation
2. Retrieval (embedding, k defaults, error classification)
3. Basic and advanced context extraction
4. Prompt formatting
5. Conversation augmentation

All tests use a mocked EmbeddingGateway, vector index and document store to
isolate the engine's own logic.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from ragproxy.rag.base import ChatMessage, RAGType, RetrievedChunk, RetrievedMetadata
from ragproxy.rag.engine import RAGEngine
from ragproxy.rag.errors import (
    EmbeddingError,
    InvalidRequestError,
    QueryEmbeddingError,
    StoreError,
    StoreNotReadyError,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _make_chunk(
    chunk_id: str = "c1",
    text: str | None = "Paragraph 1.",
    parent: str | None = "doc1",
    document: str | None = None,
) -> RetrievedChunk:
    """Helper to build a RetrievedChunk with sensible defaults."""
    return RetrievedChunk(
        id=chunk_id,
        metadata=RetrievedMetadata(text_chunk=text, parent_document_id=parent),
        document=document,
        distance=0.1,
    )


@pytest.fixture
def mock_gateway():
    gateway = MagicMock()
    gateway.embed = AsyncMock(return_value=[0.1, 0.2, 0.3])
    return gateway


@pytest.fixture
def mock_index():
    index = MagicMock()
    index.query = AsyncMock(return_value=[])
    return index


@pytest.fixture
def mock_documents():
    documents = MagicMock()
    documents.get = AsyncMock(return_value=None)
    return documents


@pytest.fixture
def engine(mock_gateway, mock_index, mock_documents):
    """RAGEngine wired up with mocked dependencies."""
    return RAGEngine(mock_gateway, mock_index, mock_documents, default_k=3)


# ---------------------------------------------------------------------------
# 1. Request validation
# ---------------------------------------------------------------------------


class TestValidation:
    """Bad input fails before any collaborator is touched."""

    @pytest.mark.asyncio
    async def test_invalid_rag_type_does_not_embed(self, engine, mock_gateway):
        with pytest.raises(InvalidRequestError):
            await engine.augment("question", rag_type="bogus")

        mock_gateway.embed.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   ", "\n"])
    async def test_empty_query_rejected(self, engine, mock_gateway, query):
        with pytest.raises(InvalidRequestError, match="Query cannot be empty"):
            await engine.augment(query)

        mock_gateway.embed.assert_not_called()

    def test_default_rag_type_is_basic(self, engine):
        assert engine.resolve_rag_type(None) is RAGType.BASIC

    def test_engine_default_rag_type(self, mock_gateway, mock_index, mock_documents):
        engine = RAGEngine(mock_gateway, mock_index, mock_documents, default_rag_type="advanced")
        assert engine.resolve_rag_type(None) is RAGType.ADVANCED

    @pytest.mark.parametrize("k, expected", [(None, 3), (0, 3), (-2, 3), (7, 7)])
    def test_resolve_k(self, engine, k, expected):
        assert engine.resolve_k(k) == expected


# ---------------------------------------------------------------------------
# 2. Retrieval
# ---------------------------------------------------------------------------


class TestRetrieve:
    """Embedding the query and searching the index."""

    @pytest.mark.asyncio
    async def test_query_embedded_raw_and_searched_with_k(self, engine, mock_gateway, mock_index):
        await engine.retrieve("  How do I Add a document?  ", k=5)

        mock_gateway.embed.assert_awaited_once_with("  How do I Add a document?  ")
        mock_index.query.assert_awaited_once_with([0.1, 0.2, 0.3], 5)

    @pytest.mark.asyncio
    async def test_missing_k_uses_default(self, engine, mock_index):
        await engine.retrieve("question")

        assert mock_index.query.call_args.args[1] == 3

    @pytest.mark.asyncio
    async def test_embedding_failure_becomes_query_embedding_error(self, engine, mock_gateway):
        mock_gateway.embed = AsyncMock(side_effect=EmbeddingError("no vector"))

        with pytest.raises(QueryEmbeddingError):
            await engine.augment("question")

    @pytest.mark.asyncio
    async def test_store_error_propagates(self, engine, mock_index):
        mock_index.query = AsyncMock(side_effect=StoreError("index down"))

        with pytest.raises(StoreError, match="index down"):
            await engine.augment("question")

    @pytest.mark.asyncio
    async def test_unexpected_index_failure_becomes_store_error(self, engine, mock_index):
        mock_index.query = AsyncMock(side_effect=KeyError("ids"))

        with pytest.raises(StoreError, match="Vector search failed"):
            await engine.augment("question")

    @pytest.mark.asyncio
    async def test_not_ready_propagates(self, engine, mock_gateway):
        mock_gateway.embed = AsyncMock(side_effect=StoreNotReadyError("Embedding provider", "failed"))

        with pytest.raises(StoreNotReadyError):
            await engine.augment("question")


# ---------------------------------------------------------------------------
# 3. Context extraction
# ---------------------------------------------------------------------------


class TestBasicContext:
    """One entry per chunk, rank order, no deduplication."""

    def test_rank_order_without_dedup(self, engine):
        chunks = [
            _make_chunk("c1", "Same text."),
            _make_chunk("c2", "Other text."),
            _make_chunk("c3", "Same text."),
        ]

        assert engine.basic_context(chunks) == ["Same text.", "Other text.", "Same text."]

    def test_document_fallback_and_skip(self, engine):
        chunks = [
            _make_chunk("c1", text=None, document="raw text"),
            _make_chunk("c2", text=None, document=None),
        ]

        assert engine.basic_context(chunks) == ["raw text"]

    def test_skipped_chunks_are_reported(self, engine, caplog):
        caplog.set_level(logging.WARNING)
        chunks = [
            _make_chunk("c1", text=None, document=None),
            _make_chunk("c2", "Kept."),
            _make_chunk("c3", text=None, document=None),
        ]

        assert engine.basic_context(chunks) == ["Kept."]
        assert "Skipped 2 chunks with no text: ['c1', 'c3']" in caplog.text


class TestAdvancedContext:
    """Distinct parent contents in first-seen order."""

    @pytest.mark.asyncio
    async def test_dedup_parents(self, engine, mock_documents):
        contents = {"doc1": "# Doc One", "doc2": "# Doc Two"}
        mock_documents.get = AsyncMock(side_effect=lambda doc_id: contents.get(doc_id))
        chunks = [
            _make_chunk("c1", parent="doc1"),
            _make_chunk("c2", parent="doc2"),
            _make_chunk("c3", parent="doc1"),
        ]

        context = await engine.advanced_context(chunks)

        assert context == ["# Doc One", "# Doc Two"]
        assert mock_documents.get.await_count == 2

    @pytest.mark.asyncio
    async def test_identical_content_counted_once(self, engine, mock_documents):
        mock_documents.get = AsyncMock(return_value="# Shared")
        chunks = [_make_chunk("c1", parent="a"), _make_chunk("c2", parent="b")]

        assert await engine.advanced_context(chunks) == ["# Shared"]

    @pytest.mark.asyncio
    async def test_missing_parents_and_ids_skipped(self, engine, mock_documents):
        mock_documents.get = AsyncMock(side_effect=lambda doc_id: {"doc2": "# Two"}.get(doc_id))
        chunks = [
            _make_chunk("c1", parent=None),
            _make_chunk("c2", parent="gone"),
            _make_chunk("c3", parent="doc2"),
        ]

        assert await engine.advanced_context(chunks) == ["# Two"]

    @pytest.mark.asyncio
    async def test_all_parents_missing_falls_back_to_query(self, engine, mock_index):
        mock_index.query = AsyncMock(return_value=[_make_chunk(parent="gone")])

        prompt = await engine.augment("What is X?", rag_type="advanced")

        assert prompt == "What is X?"


# ---------------------------------------------------------------------------
# 4. Prompt formatting
# ---------------------------------------------------------------------------


class TestAugment:
    """End-to-end prompt construction."""

    @pytest.mark.asyncio
    async def test_no_results_returns_query_unchanged(self, engine):
        assert await engine.augment("What is X?") == "What is X?"

    @pytest.mark.asyncio
    async def test_basic_prompt(self, engine, mock_index):
        mock_index.query = AsyncMock(return_value=[
            _make_chunk("c1", "Paragraph 1."),
            _make_chunk("c2", "Paragraph 2."),
        ])

        prompt = await engine.augment("What is in the doc?", rag_type="basic", k=2)

        assert prompt == (
            "User Query: What is in the doc?\n\n"
            "Relevant Text Chunks:\n---\n"
            "Paragraph 1.\n---\nParagraph 2.\n---\n"
            "Based on the relevant information above, answer the user query."
        )

    @pytest.mark.asyncio
    async def test_advanced_prompt(self, engine, mock_index, mock_documents):
        mock_index.query = AsyncMock(return_value=[
            _make_chunk("c1", parent="doc1"),
            _make_chunk("c2", parent="doc1"),
        ])
        mock_documents.get = AsyncMock(return_value="# Title\n\nParagraph 1.")

        prompt = await engine.augment("What is in the doc?", rag_type="advanced")

        assert prompt == (
            "User Query: What is in the doc?\n\n"
            "Relevant Information from Parent Documents:\n---\n"
            "# Title\n\nParagraph 1.\n---\n"
            "Based on the relevant information above, answer the user query."
        )

    def test_format_prompt_empty_context(self, engine):
        assert engine.format_prompt("q", [], "basic") == "q"


# ---------------------------------------------------------------------------
# 5. Conversations
# ---------------------------------------------------------------------------


def _conversation(*texts: str) -> list[ChatMessage]:
    roles = ["user", "model"]
    return [ChatMessage(role=roles[i % 2], content=text) for i, text in enumerate(texts)]


class TestConversation:
    """Windowed retrieval, context on the last message only."""

    @pytest.mark.asyncio
    async def test_windowed_retrieval_query(self, engine, mock_gateway):
        messages = _conversation("m1", "m2", "m3", "m4", "m5")

        await engine.conversation_context(messages, window_size=2)

        mock_gateway.embed.assert_awaited_once_with("m4\nm5")

    @pytest.mark.asyncio
    async def test_context_prefixed_to_last_message_only(self, engine, mock_index):
        mock_index.query = AsyncMock(return_value=[_make_chunk("c1", "Paragraph 1.")])
        messages = _conversation("Hi", "Hello!", "What is in the doc?")

        augmented = await engine.augment_conversation(messages)

        assert [m.content for m in augmented[:2]] == ["Hi", "Hello!"]
        assert augmented[2].role == "user"
        assert augmented[2].content.startswith(
            "Based on the relevant information below, answer the user query.\n"
            "Relevant Text Chunks:\n---\nParagraph 1.\n---\n"
        )
        assert augmented[2].content.endswith(
            "here is the latest user message: What is in the doc?"
        )
        # originals untouched
        assert messages[2].content == "What is in the doc?"

    @pytest.mark.asyncio
    async def test_no_context_returns_copy(self, engine):
        messages = _conversation("Hi", "Hello!")

        augmented = await engine.augment_conversation(messages)

        assert [m.content for m in augmented] == ["Hi", "Hello!"]

    @pytest.mark.asyncio
    async def test_empty_conversation_rejected(self, engine):
        with pytest.raises(InvalidRequestError, match="at least one message"):
            await engine.augment_conversation([])

    @pytest.mark.asyncio
    async def test_blank_conversation_rejected(self, engine, mock_gateway):
        with pytest.raises(InvalidRequestError, match="empty"):
            await engine.augment_conversation(_conversation("   "))

        mock_gateway.embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_negative_window_rejected(self, engine):
        with pytest.raises(InvalidRequestError, match="window_size"):
            await engine.augment_conversation(_conversation("Hi"), window_size=-1)
