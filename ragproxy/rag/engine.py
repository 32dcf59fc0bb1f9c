"""
Retrieval-augmentation engine.

Turns a user query (or a conversation) into the prompt sent to the chat model:

1. Validate the request (strategy, query text, k)
2. Embed the query (via EmbeddingGateway)
3. Nearest-neighbour search (via ChromaVectorIndex)
4. Extract context strings for the chosen RAGType
5. Wrap query and context in the prompt template

When nothing is retrieved, or nothing usable can be extracted, the prompt is
the original query, unchanged.
"""

from __future__ import annotations

from ragproxy.config.logging import get_logger
from ragproxy.rag.base import ChatMessage, RAGType, RetrievedChunk, resolve_chunk_text
from ragproxy.rag.document_store import MongoDocumentStore
from ragproxy.rag.embeddings import EmbeddingGateway
from ragproxy.rag.errors import (
    EmbeddingError,
    InvalidRequestError,
    QueryEmbeddingError,
    StoreError,
)
from ragproxy.rag.vector_store import ChromaVectorIndex
from ragproxy.rag.windowing import build_retrieval_query

logger = get_logger(__name__)

CONTEXT_SEPARATOR = "\n---\n"

PROMPT_TEMPLATE = (
    "User Query: {query}\n\n"
    "{label}:\n---\n"
    "{context}\n---\n"
    "Based on the relevant information above, answer the user query."
)

CONVERSATION_PREFIX_TEMPLATE = (
    "Based on the relevant information below, answer the user query.\n"
    "{label}:\n---\n"
    "{context}\n---\n"
    "Considering the above context and the conversation history, "
    "here is the latest user message: "
)


class RAGEngine:
    """
    Query engine for retrieval-augmented generation.

    Example:
        >>> engine = RAGEngine(gateway, index, document_store)
        >>> prompt = await engine.augment("How do I add a document?", rag_type="basic", k=2)
    """

    def __init__(
        self,
        embedding_gateway: EmbeddingGateway,
        vector_index: ChromaVectorIndex,
        document_store: MongoDocumentStore,
        default_k: int = 3,
        default_rag_type: RAGType | str = RAGType.BASIC,
    ):
        """
        Initialize the engine.

        Args:
            embedding_gateway: Gateway over the same provider used for ingestion
            vector_index: Index holding chunk records
            document_store: Parent document store (advanced context)
            default_k: Results per query when the caller gives none (or k <= 0)
            default_rag_type: Strategy when the caller gives none
        """
        self.embedding_gateway = embedding_gateway
        self.vector_index = vector_index
        self.document_store = document_store
        self.default_k = default_k
        self.default_rag_type = RAGType.parse(default_rag_type)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def augment(
        self,
        query: str,
        rag_type: RAGType | str | None = None,
        k: int | None = None,
    ) -> str:
        """
        Build the augmented prompt for a single query.

        Args:
            query: User query (non-empty)
            rag_type: "basic" or "advanced" (default: engine default)
            k: Number of chunks to retrieve (default: engine default)

        Returns:
            The prompt for the chat model. Equals ``query`` when no context
            could be found.

        Raises:
            InvalidRequestError: Bad rag_type or empty query (nothing retrieved)
            QueryEmbeddingError: The query could not be embedded
            StoreError: The vector index or document store failed
        """
        strategy = self.resolve_rag_type(rag_type)
        context = await self.retrieve_context(query, strategy, k)
        return self.format_prompt(query, context, strategy)

    async def augment_conversation(
        self,
        messages: list[ChatMessage],
        rag_type: RAGType | str | None = None,
        k: int | None = None,
        window_size: int = 0,
    ) -> list[ChatMessage]:
        """
        Augment the last message of a conversation.

        The retrieval query is the windowed tail of the conversation; the
        returned conversation is complete, with context prefixed onto the
        last message only.

        Raises:
            InvalidRequestError: Empty conversation, bad rag_type or window_size
        """
        strategy = self.resolve_rag_type(rag_type)
        context = await self.conversation_context(messages, strategy, k, window_size)
        return self.format_conversation(messages, context, strategy)

    async def conversation_context(
        self,
        messages: list[ChatMessage],
        rag_type: RAGType | str | None = None,
        k: int | None = None,
        window_size: int = 0,
    ) -> list[str]:
        """Retrieve context for a conversation using its windowed tail as the query."""
        strategy = self.resolve_rag_type(rag_type)
        if not messages:
            raise InvalidRequestError("Conversation must contain at least one message")

        retrieval_query = build_retrieval_query(messages, window_size)
        if not retrieval_query.strip():
            raise InvalidRequestError("Consolidated text from the conversation is empty")

        return await self.retrieve_context(retrieval_query, strategy, k)

    async def retrieve_context(
        self,
        query: str,
        rag_type: RAGType | str | None = None,
        k: int | None = None,
    ) -> list[str]:
        """
        Retrieve and extract context strings for a query.

        Returns:
            Context entries in rank order; empty when nothing usable was found
        """
        strategy = self.resolve_rag_type(rag_type)
        self._validate_query(query)

        chunks = await self.retrieve(query, k)
        if not chunks:
            logger.warning(
                f"No relevant chunks found for query {_preview(query)}. "
                f"Using the query without RAG context."
            )
            return []

        context = await self.extract_context(chunks, strategy)
        if not context:
            logger.warning(
                f"Found {len(chunks)} chunks for query {_preview(query)} "
                f"(rag_type={strategy.value}), but no content could be extracted. "
                f"Using the query without RAG context."
            )
        return context

    async def retrieve(self, query: str, k: int | None = None) -> list[RetrievedChunk]:
        """
        Embed the query and return the top-k nearest chunks.

        Raises:
            QueryEmbeddingError: The query could not be embedded
            StoreNotReadyError: The embedding provider or index is not ready
            StoreError: The similarity query failed
        """
        effective_k = self.resolve_k(k)

        try:
            query_embedding = await self.embedding_gateway.embed(query)
        except EmbeddingError as e:
            logger.error(f"Failed to embed query {_preview(query)}: {e}")
            raise QueryEmbeddingError(f"Failed to generate query embedding: {e}", cause=e) from e

        try:
            chunks = await self.vector_index.query(query_embedding, effective_k)
        except StoreError:
            raise
        except Exception as e:
            logger.error(f"Vector search failed: {e}")
            raise StoreError(f"Vector search failed: {e}", cause=e) from e

        logger.info(f"Query {_preview(query)} returned {len(chunks)} chunks (k={effective_k})")
        return chunks

    async def extract_context(
        self, chunks: list[RetrievedChunk], rag_type: RAGType | str
    ) -> list[str]:
        """Extract context strings from retrieved chunks for a strategy."""
        if RAGType.parse(rag_type) is RAGType.ADVANCED:
            return await self.advanced_context(chunks)
        return self.basic_context(chunks)

    def basic_context(self, chunks: list[RetrievedChunk]) -> list[str]:
        """
        One entry per chunk, in rank order, no deduplication.

        Chunks with neither ``text_chunk`` metadata nor raw document text
        contribute nothing.
        """
        context = []
        skipped = []
        for chunk in chunks:
            text = resolve_chunk_text(chunk)
            if text is None:
                skipped.append(chunk.id)
                continue
            context.append(text)
        if skipped:
            logger.warning(f"Skipped {len(skipped)} chunks with no text: {skipped}")
        return context

    async def advanced_context(self, chunks: list[RetrievedChunk]) -> list[str]:
        """
        One entry per distinct parent document content, in first-seen order.

        Parents are looked up once per id in the parent document store.
        Chunks without a parent id, or whose parent no longer exists, are
        skipped. Identical content reached through different ids counts once.
        """
        parent_ids: list[str] = []
        for chunk in chunks:
            parent_id = chunk.metadata.parent_document_id
            if not parent_id:
                logger.debug(f"Chunk {chunk.id} has no parent_document_id; skipping")
                continue
            if parent_id not in parent_ids:
                parent_ids.append(parent_id)

        # dict keeps insertion order: an ordered set of contents
        contents: dict[str, None] = {}
        for parent_id in parent_ids:
            content = await self.document_store.get(parent_id)
            if content is None or not content.strip():
                logger.warning(f"Parent document {parent_id!r} is missing or empty; skipping")
                continue
            contents.setdefault(content, None)

        return list(contents)

    def format_prompt(self, query: str, context: list[str], rag_type: RAGType | str) -> str:
        """
        Wrap a query and its context in the prompt template.

        Returns the query unchanged when context is empty.
        """
        if not context:
            return query
        return PROMPT_TEMPLATE.format(
            query=query,
            label=RAGType.parse(rag_type).context_label,
            context=CONTEXT_SEPARATOR.join(context),
        )

    def format_conversation(
        self,
        messages: list[ChatMessage],
        context: list[str],
        rag_type: RAGType | str,
    ) -> list[ChatMessage]:
        """
        Copy a conversation, prefixing context onto the last message.

        Earlier messages pass through unchanged; nothing changes when
        context is empty.
        """
        augmented = [message.model_copy() for message in messages]
        if not context or not augmented:
            return augmented

        prefix = CONVERSATION_PREFIX_TEMPLATE.format(
            label=RAGType.parse(rag_type).context_label,
            context=CONTEXT_SEPARATOR.join(context),
        )
        last = augmented[-1]
        augmented[-1] = last.model_copy(update={"content": prefix + last.content})
        return augmented

    def resolve_rag_type(self, rag_type: RAGType | str | None) -> RAGType:
        """Validate a strategy name, falling back to the engine default."""
        return RAGType.parse(rag_type, self.default_rag_type)

    def resolve_k(self, k: int | None) -> int:
        """Missing or non-positive k falls back to the engine default."""
        if k is None or k <= 0:
            return self.default_k
        return k

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate_query(self, query: str) -> None:
        if not isinstance(query, str) or not query.strip():
            raise InvalidRequestError("Query cannot be empty")


def _preview(text: str, limit: int = 100) -> str:
    if len(text) <= limit:
        return repr(text)
    return repr(text[:limit] + "...")
