"""
Parent document store backed by MongoDB (via motor).

Holds the full, unchunked markdown of each document, one record per id:

    {"_id": <documentId>, "content": <markdown>}

It is the source for "advanced" context and for document reads.
"""

from __future__ import annotations

import motor.motor_asyncio

from ragproxy.config.logging import get_logger
from ragproxy.rag.errors import StoreError
from ragproxy.rag.lifecycle import Lifecycle

logger = get_logger(__name__)


class MongoDocumentStore:
    """
    Async get/save/delete of document text keyed by document id.

    The motor client is created once in ``initialize()`` and shared by all
    requests; motor clients are safe for concurrent use.

    Attributes:
        uri: MongoDB connection string
        database_name: Database holding the collection
        collection_name: Collection holding parent documents
        lifecycle: Initialization state of the store
    """

    def __init__(
        self,
        uri: str,
        database_name: str,
        collection_name: str = "parent_documents",
    ):
        self.uri = uri
        self.database_name = database_name
        self.collection_name = collection_name
        self._client: motor.motor_asyncio.AsyncIOMotorClient | None = None
        self._collection = None
        self.lifecycle = Lifecycle("Document store")

    async def initialize(self) -> None:
        """
        Connect and verify the server answers.

        Raises:
            RuntimeError: If MongoDB cannot be reached
        """
        logger.info(f"Connecting to MongoDB (database: {self.database_name})")
        try:
            self._client = motor.motor_asyncio.AsyncIOMotorClient(self.uri)
            await self._client.admin.command("ping")
            self._collection = self._client[self.database_name][self.collection_name]
        except Exception as e:
            self.lifecycle.mark_failed(e)
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise RuntimeError(f"Could not connect to MongoDB: {e}") from e

        self.lifecycle.mark_ready()
        logger.info(f"MongoDB ready (collection: {self.collection_name})")

    async def save(self, document_id: str, content: str) -> None:
        """Create or overwrite a document."""
        self.lifecycle.require_ready()
        try:
            await self._collection.update_one(
                {"_id": document_id},
                {"$set": {"content": content}},
                upsert=True,
            )
        except Exception as e:
            raise self._error("save", document_id, e) from e
        logger.debug(f"Saved parent document {document_id!r}")

    async def get(self, document_id: str) -> str | None:
        """Return a document's content, or None if absent."""
        self.lifecycle.require_ready()
        try:
            record = await self._collection.find_one({"_id": document_id})
        except Exception as e:
            raise self._error("read", document_id, e) from e
        if record is None:
            return None
        return record.get("content")

    async def delete(self, document_id: str) -> None:
        """Delete a document. Absent ids are not an error."""
        self.lifecycle.require_ready()
        try:
            result = await self._collection.delete_one({"_id": document_id})
        except Exception as e:
            raise self._error("delete", document_id, e) from e
        if result.deleted_count:
            logger.debug(f"Deleted parent document {document_id!r}")

    async def list_ids(self) -> list[str]:
        """Return every stored document id."""
        self.lifecycle.require_ready()
        try:
            cursor = self._collection.find({}, projection={"_id": 1})
            return [record["_id"] async for record in cursor]
        except Exception as e:
            logger.error(f"MongoDB failed to list documents: {e}")
            raise StoreError(f"Document store failed to list documents: {e}", cause=e) from e

    def _error(self, action: str, document_id: str, cause: Exception) -> StoreError:
        logger.error(f"MongoDB failed to {action} document {document_id!r}: {cause}")
        return StoreError(
            f"Document store failed to {action} document {document_id!r}: {cause}", cause=cause
        )

    async def shutdown(self) -> None:
        if self._client is not None:
            logger.debug("Closing MongoDB client")
            self._client.close()
            self._client = None
            self._collection = None
        self.lifecycle.mark_closed()

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False
