"""
Document lifecycle management.

Keeps the parent document store and the vector index in step for
create / update / delete:

    create:  save parent -> chunk -> embed chunks -> upsert records
    update:  find old chunks -> delete old chunks -> create
    delete:  find chunks -> delete chunks -> delete parent

The two stores share no transaction. Each operation runs as an ordered list
of named steps; if one fails, the steps already done stay done and a
PartialWriteError names the failed step. Every step is an upsert or an
idempotent delete, so re-running the operation converges the stores.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ragproxy.config.logging import get_logger
from ragproxy.rag.base import Chunk, VectorRecord
from ragproxy.rag.chunking import MarkdownChunker
from ragproxy.rag.document_store import MongoDocumentStore
from ragproxy.rag.embeddings import EmbeddingGateway
from ragproxy.rag.errors import (
    DocumentNotFoundError,
    EmbeddingError,
    InvalidRequestError,
    PartialWriteError,
    RAGProxyError,
    StoreNotReadyError,
)
from ragproxy.rag.vector_store import ChromaVectorIndex

logger = get_logger(__name__)


@dataclass
class SagaStep:
    """One named step of a document operation."""

    name: str
    action: Callable[[], Awaitable[Any]]


@dataclass
class SagaResult:
    """What a finished document operation did."""

    operation: str
    document_id: str
    completed_steps: list[str] = field(default_factory=list)
    chunks_created: int = 0
    chunks_skipped: int = 0
    chunks_deleted: int = 0


class DocumentManager:
    """
    Orchestrates document writes across the chunker, embeddings, vector
    index and parent document store.

    Attributes:
        chunker: Splits markdown into chunks
        embedding_gateway: Embeds chunk texts
        vector_index: Holds chunk records
        document_store: Holds full document text

    Example:
        >>> manager = DocumentManager(MarkdownChunker(), gateway, index, store)
        >>> await manager.create("docs/intro.md", "# Intro\\n\\nHello.")
        >>> await manager.get_content("docs/intro.md")
        '# Intro\\n\\nHello.'
    """

    def __init__(
        self,
        chunker: MarkdownChunker,
        embedding_gateway: EmbeddingGateway,
        vector_index: ChromaVectorIndex,
        document_store: MongoDocumentStore,
    ):
        self.chunker = chunker
        self.embedding_gateway = embedding_gateway
        self.vector_index = vector_index
        self.document_store = document_store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(self, document_id: str, content: str) -> SagaResult:
        """
        Add (or overwrite) a document.

        Chunks whose embedding fails are skipped; the rest are indexed and
        the parent record is saved either way.

        Raises:
            InvalidRequestError: Empty document id or non-string content
            StoreNotReadyError: A store is not initialized
            PartialWriteError: A store write failed part-way
        """
        self._validate_id(document_id)
        self._validate_content(content)
        self._require_ready(self.document_store, self.embedding_gateway, self.vector_index)

        result = SagaResult(operation="create", document_id=document_id)
        await self._run(result, self._create_steps(result, document_id, content))

        logger.info(
            f"Added document {document_id!r}: {result.chunks_created} chunks indexed, "
            f"{result.chunks_skipped} skipped"
        )
        return result

    async def update(self, document_id: str, content: str) -> SagaResult:
        """
        Replace a document's content and all of its chunks.

        Updating an id that does not exist yet creates it.

        Raises:
            InvalidRequestError: Empty document id or non-string content
            StoreNotReadyError: A store is not initialized
            PartialWriteError: A store write failed part-way
        """
        self._validate_id(document_id)
        self._validate_content(content)
        self._require_ready(self.vector_index, self.document_store, self.embedding_gateway)

        result = SagaResult(operation="update", document_id=document_id)
        steps = self._remove_chunk_steps(result, document_id)
        steps += self._create_steps(result, document_id, content)
        await self._run(result, steps)

        logger.info(
            f"Updated document {document_id!r}: replaced {result.chunks_deleted} chunks "
            f"with {result.chunks_created} ({result.chunks_skipped} skipped)"
        )
        return result

    async def delete(self, document_id: str) -> SagaResult:
        """
        Delete a document and its chunks. Deleting an unknown id succeeds.

        Raises:
            InvalidRequestError: Empty document id
            StoreNotReadyError: A store is not initialized
            PartialWriteError: A store write failed part-way
        """
        self._validate_id(document_id)
        self._require_ready(self.vector_index, self.document_store)

        result = SagaResult(operation="delete", document_id=document_id)
        steps = self._remove_chunk_steps(result, document_id)
        steps.append(SagaStep("delete parent document", lambda: self.document_store.delete(document_id)))
        await self._run(result, steps)

        logger.info(f"Deleted document {document_id!r} ({result.chunks_deleted} chunks)")
        return result

    async def get_content(self, document_id: str) -> str | None:
        """
        Read a document's full markdown.

        Returns:
            The content, or None if the document does not exist
        """
        self._validate_id(document_id)
        return await self.document_store.get(document_id)

    async def require_content(self, document_id: str) -> str:
        """
        Read a document's full markdown.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        content = await self.get_content(document_id)
        if content is None:
            raise DocumentNotFoundError(document_id)
        return content

    async def list_ids(self) -> list[str]:
        """Return every known document id."""
        return await self.document_store.list_ids()

    # ------------------------------------------------------------------
    # Step builders
    # ------------------------------------------------------------------

    def _create_steps(self, result: SagaResult, document_id: str, content: str) -> list[SagaStep]:
        chunks: list[Chunk] = []
        records: list[VectorRecord] = []

        async def chunk_document() -> None:
            chunks.extend(self.chunker.chunk(content, document_id))
            if not chunks:
                logger.warning(f"No chunks generated for document {document_id!r}. Nothing to index.")

        async def embed_chunks() -> None:
            records.extend(await self._embed_chunks(chunks, result))

        async def index_chunks() -> None:
            if records:
                await self.vector_index.upsert(records)
            result.chunks_created = len(records)

        return [
            SagaStep("save parent document", lambda: self.document_store.save(document_id, content)),
            SagaStep("chunk document", chunk_document),
            SagaStep("embed chunks", embed_chunks),
            SagaStep("index chunks", index_chunks),
        ]

    def _remove_chunk_steps(self, result: SagaResult, document_id: str) -> list[SagaStep]:
        chunk_ids: list[str] = []

        async def find_chunks() -> None:
            chunk_ids.extend(await self.vector_index.get_ids_by_parent(document_id))
            if not chunk_ids:
                logger.info(f"No chunks found to delete for document {document_id!r}")

        async def delete_chunks() -> None:
            await self.vector_index.delete_by_ids(chunk_ids)
            result.chunks_deleted = len(chunk_ids)

        return [
            SagaStep("find existing chunks", find_chunks),
            SagaStep("delete existing chunks", delete_chunks),
        ]

    async def _embed_chunks(self, chunks: list[Chunk], result: SagaResult) -> list[VectorRecord]:
        """
        Embed chunks one at a time, skipping the ones that fail.

        A failed chunk never affects its neighbours.
        """
        records = []
        for chunk in chunks:
            try:
                embedding = await self.embedding_gateway.embed(chunk.text)
            except EmbeddingError as e:
                result.chunks_skipped += 1
                logger.error(
                    f"Failed to generate embedding for chunk {chunk.id} "
                    f"of document {chunk.parent_document_id!r}. Skipping. ({e})"
                )
                continue
            records.append(chunk.to_record(embedding))
        return records

    # ------------------------------------------------------------------
    # Saga runner
    # ------------------------------------------------------------------

    async def _run(self, result: SagaResult, steps: list[SagaStep]) -> None:
        """
        Run steps in order, stopping at the first failure.

        StoreNotReadyError and InvalidRequestError pass through unchanged;
        anything else becomes a PartialWriteError naming the failed step.
        """
        for step in steps:
            try:
                await step.action()
            except (StoreNotReadyError, InvalidRequestError):
                raise
            except Exception as e:
                logger.error(
                    f"{result.operation} of document {result.document_id!r} failed at "
                    f"'{step.name}' after {result.completed_steps}: {e}. "
                    f"Stores may be out of step until the operation is retried."
                )
                raise PartialWriteError(
                    operation=result.operation,
                    document_id=result.document_id,
                    failed_step=step.name,
                    completed_steps=list(result.completed_steps),
                    cause=e.cause if isinstance(e, RAGProxyError) and e.cause else e,
                ) from e
            result.completed_steps.append(step.name)
            logger.debug(f"{result.operation} {result.document_id!r}: '{step.name}' done")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _require_ready(self, *components) -> None:
        """Refuse to start a write unless every store it touches is ready."""
        for component in components:
            component.lifecycle.require_ready()

    def _validate_id(self, document_id: str) -> None:
        if not isinstance(document_id, str) or not document_id.strip():
            raise InvalidRequestError("documentId is required and must be a non-empty string")

    def _validate_content(self, content: str) -> None:
        if not isinstance(content, str):
            raise InvalidRequestError("content is required and must be a string")
