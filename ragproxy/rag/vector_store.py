"""
Vector index implementation using ChromaDB.

Each record holds a chunk id, the chunk's embedding and the fixed metadata
``{text_chunk, parent_document_id}``. The index answers four questions for
the core: add these records, which ids belong to this document, remove
these ids, and which records are nearest to this vector.

Example:
    >>> async with ChromaVectorIndex(persist_directory="./data/vector_db") as index:
    ...     await index.upsert([chunk.to_record(vector)])
    ...     hits = await index.query(query_vector, k=3)
"""

from __future__ import annotations

import asyncio
import base64
from pathlib import Path
from typing import Any, Literal

import chromadb
from chromadb.config import Settings as ChromaSettings

from ragproxy.config.logging import get_logger
from ragproxy.rag.base import RetrievedChunk, RetrievedMetadata, VectorRecord
from ragproxy.rag.errors import StoreError
from ragproxy.rag.lifecycle import Lifecycle

logger = get_logger(__name__)


class ChromaVectorIndex:
    """
    Wrapper for a ChromaDB collection of chunk records.

    Runs against an on-disk PersistentClient, or against a Chroma server
    through an HttpClient (bearer or basic auth, tenant and database
    headers). The client handle is created once and shared by all requests;
    Chroma's own client is safe for concurrent use.

    Attributes:
        collection_name: Name of the Chroma collection
        mode: 'persistent' or 'http'
        lifecycle: Initialization state of the index
    """

    def __init__(
        self,
        collection_name: str = "rag_documents",
        mode: Literal["persistent", "http"] = "persistent",
        persist_directory: Path | str = "data/vector_db",
        host: str = "localhost",
        port: int = 8000,
        auth_token: str | None = None,
        username: str | None = None,
        password: str | None = None,
        tenant: str = "default_tenant",
        database: str = "default_database",
    ):
        """
        Initialize the index (doesn't connect yet).

        Args:
            collection_name: Collection holding chunk records
            mode: 'persistent' (local directory) or 'http' (Chroma server)
            persist_directory: Storage directory for persistent mode
            host: Chroma server host for http mode
            port: Chroma server port for http mode
            auth_token: Bearer token sent to the server (takes precedence)
            username: Basic-auth user sent to the server
            password: Basic-auth password sent to the server
            tenant: Chroma tenant
            database: Chroma database
        """
        self.collection_name = collection_name
        self.mode = mode
        self.persist_directory = Path(persist_directory)
        self.host = host
        self.port = port
        self.auth_token = auth_token
        self.username = username
        self.password = password
        self.tenant = tenant
        self.database = database
        self._client: chromadb.ClientAPI | None = None
        self._collection: chromadb.Collection | None = None
        self.lifecycle = Lifecycle("Vector index")

    async def initialize(self) -> None:
        """
        Connect and get-or-create the collection.

        Raises:
            RuntimeError: If ChromaDB initialization fails
        """
        logger.info(f"Initializing ChromaDB ({self.mode}) collection '{self.collection_name}'")

        try:
            self._client = self._create_client()
            self._collection = self._client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as e:
            self.lifecycle.mark_failed(e)
            logger.error(f"Failed to initialize ChromaDB: {e}")
            raise RuntimeError(f"Could not initialize ChromaDB: {e}") from e

        self.lifecycle.mark_ready()
        logger.info(
            f"ChromaDB initialized successfully "
            f"(collection: {self.collection_name}, tenant: {self.tenant}, database: {self.database})"
        )

    def _create_client(self) -> chromadb.ClientAPI:
        chroma_settings = ChromaSettings(anonymized_telemetry=False)

        if self.mode == "http":
            return chromadb.HttpClient(
                host=self.host,
                port=self.port,
                headers=self._auth_headers(),
                tenant=self.tenant,
                database=self.database,
                settings=chroma_settings,
            )

        self.persist_directory.mkdir(parents=True, exist_ok=True)
        return chromadb.PersistentClient(
            path=str(self.persist_directory),
            settings=chroma_settings,
            tenant=self.tenant,
            database=self.database,
        )

    def _auth_headers(self) -> dict[str, str]:
        if self.auth_token:
            return {"Authorization": f"Bearer {self.auth_token}"}
        if self.username and self.password:
            credentials = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
            return {"Authorization": f"Basic {credentials}"}
        return {}

    async def upsert(self, records: list[VectorRecord]) -> None:
        """
        Add records to the index.

        Args:
            records: Records with fresh chunk ids

        Raises:
            StoreNotReadyError: If the index is not initialized
            StoreError: If Chroma rejects the write
        """
        self.lifecycle.require_ready()
        if not records:
            return

        logger.debug(f"Adding {len(records)} records to collection '{self.collection_name}'")
        await self._call(
            "add records",
            self._collection.upsert,
            ids=[r.id for r in records],
            embeddings=[r.embedding for r in records],
            metadatas=[r.metadata.to_chromadb_dict() for r in records],
            documents=[r.metadata.text_chunk for r in records],
        )

    async def get_ids_by_parent(self, parent_document_id: str) -> list[str]:
        """
        List the ids of every record belonging to one document.

        Raises:
            StoreNotReadyError: If the index is not initialized
            StoreError: If the lookup fails
        """
        self.lifecycle.require_ready()
        results = await self._call(
            "look up chunks",
            self._collection.get,
            where={"parent_document_id": parent_document_id},
            include=[],
        )
        ids = list(results.get("ids") or [])
        logger.debug(f"Found {len(ids)} chunks for document {parent_document_id!r}")
        return ids

    async def delete_by_ids(self, ids: list[str]) -> None:
        """
        Remove records. Ids that are already gone are ignored.

        Raises:
            StoreNotReadyError: If the index is not initialized
            StoreError: If the delete fails
        """
        self.lifecycle.require_ready()
        if not ids:
            return
        await self._call("delete chunks", self._collection.delete, ids=list(ids))
        logger.debug(f"Deleted {len(ids)} chunks")

    async def query(self, embedding: list[float], k: int) -> list[RetrievedChunk]:
        """
        Nearest-neighbour search.

        Args:
            embedding: Query vector
            k: Maximum number of records to return

        Returns:
            Records ordered by ascending distance, as Chroma ranks them

        Raises:
            StoreNotReadyError: If the index is not initialized
            ValueError: If k <= 0
            StoreError: If the query fails
        """
        self.lifecycle.require_ready()
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")

        results = await self._call(
            "query",
            self._collection.query,
            query_embeddings=[embedding],
            n_results=k,
            include=["metadatas", "documents", "distances"],
        )

        # Chroma nests one result list per query embedding
        ids = _first(results.get("ids"))
        metadatas = _first(results.get("metadatas"))
        documents = _first(results.get("documents"))
        distances = _first(results.get("distances"))

        retrieved = []
        for i, record_id in enumerate(ids):
            metadata = metadatas[i] if i < len(metadatas) and metadatas[i] else {}
            retrieved.append(
                RetrievedChunk(
                    id=record_id,
                    distance=distances[i] if i < len(distances) else None,
                    metadata=RetrievedMetadata(**metadata),
                    document=documents[i] if i < len(documents) else None,
                )
            )

        logger.debug(f"Query returned {len(retrieved)} records")
        return retrieved

    async def count(self) -> int:
        """Number of records in the collection."""
        self.lifecycle.require_ready()
        return await self._call("count", self._collection.count)

    async def delete_collection(self) -> None:
        """
        Delete and recreate the collection, dropping every record.

        WARNING: This is irreversible.
        """
        self.lifecycle.require_ready()
        logger.warning(f"Deleting collection '{self.collection_name}'")
        await self._call("delete collection", self._client.delete_collection, name=self.collection_name)
        self._collection = await self._call(
            "recreate collection",
            self._client.get_or_create_collection,
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    async def _call(self, action: str, fn, *args, **kwargs) -> Any:
        # Chroma's client is synchronous; keep it off the event loop
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except Exception as e:
            logger.error(f"ChromaDB failed to {action}: {e}")
            raise StoreError(f"Vector index failed to {action}: {e}", cause=e) from e

    async def shutdown(self) -> None:
        """Drop client references. Chroma persists automatically."""
        if self._client is not None:
            logger.debug("Shutting down ChromaDB")
            self._collection = None
            self._client = None
        self.lifecycle.mark_closed()

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False


def _first(nested: list | None) -> list:
    if not nested:
        return []
    return nested[0] or []
