"""
RAG component factory and runtime.

Centralises the construction of components from settings, so the CLI, the
HTTP app, the sync job and tests wire things the same way.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ragproxy.config.logging import get_logger
from ragproxy.config.settings import Settings
from ragproxy.rag.chunking import MarkdownChunker
from ragproxy.rag.document_store import MongoDocumentStore
from ragproxy.rag.documents import DocumentManager
from ragproxy.rag.embeddings import (
    EmbeddingGateway,
    EmbeddingProvider,
    LiteLLMEmbeddingProvider,
    SentenceTransformerProvider,
)
from ragproxy.rag.engine import RAGEngine
from ragproxy.rag.vector_store import ChromaVectorIndex

if TYPE_CHECKING:
    from ragproxy.llm.gateway import LLMGateway
    from ragproxy.query import QueryService

logger = get_logger(__name__)


class RAGComponents:
    """
    Factory for building components from settings.

    Example::

        factory = RAGComponents(settings)
        async with factory.create_embedding_provider() as provider, \\
                   factory.create_vector_index() as index, \\
                   factory.create_document_store() as store:
            engine = factory.create_engine(factory.create_embedding_gateway(provider), index, store)
            prompt = await engine.augment("How do I configure auth?")
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def create_embedding_provider(self) -> EmbeddingProvider:
        """Create the configured embedding provider (local or hosted)."""
        rag = self.settings.rag
        if rag.embedding_provider == "litellm":
            return LiteLLMEmbeddingProvider(model=rag.embedding_model, api_key=rag.embedding_api_key)
        return SentenceTransformerProvider(
            model_name=rag.embedding_model,
            device=rag.embedding_device,
            batch_size=rag.embedding_batch_size,
        )

    def create_embedding_gateway(self, provider: EmbeddingProvider) -> EmbeddingGateway:
        return EmbeddingGateway(provider)

    def create_vector_index(self) -> ChromaVectorIndex:
        """Create a ChromaVectorIndex from settings."""
        rag = self.settings.rag
        return ChromaVectorIndex(
            collection_name=rag.collection_name,
            mode=rag.chroma_mode,
            persist_directory=rag.vector_db_path,
            host=rag.chroma_host,
            port=rag.chroma_port,
            auth_token=rag.chroma_auth_token,
            username=rag.chroma_username,
            password=rag.chroma_password,
            tenant=rag.chroma_tenant,
            database=rag.chroma_database,
        )

    def create_document_store(self) -> MongoDocumentStore:
        """Create a MongoDocumentStore from settings."""
        docstore = self.settings.docstore
        return MongoDocumentStore(
            uri=docstore.mongodb_uri,
            database_name=docstore.database_name,
            collection_name=docstore.collection_name,
        )

    def create_chunker(self) -> MarkdownChunker:
        return MarkdownChunker()

    def create_engine(
        self,
        embedding_gateway: EmbeddingGateway,
        vector_index: ChromaVectorIndex,
        document_store: MongoDocumentStore,
    ) -> RAGEngine:
        """Create a RAGEngine from settings + dependencies."""
        return RAGEngine(
            embedding_gateway=embedding_gateway,
            vector_index=vector_index,
            document_store=document_store,
            default_k=self.settings.rag.default_k,
            default_rag_type=self.settings.rag.default_rag_type,
        )

    def create_document_manager(
        self,
        embedding_gateway: EmbeddingGateway,
        vector_index: ChromaVectorIndex,
        document_store: MongoDocumentStore,
    ) -> DocumentManager:
        """Create a DocumentManager from dependencies."""
        return DocumentManager(
            chunker=self.create_chunker(),
            embedding_gateway=embedding_gateway,
            vector_index=vector_index,
            document_store=document_store,
        )

    def create_llm_gateway(self) -> LLMGateway:
        from ragproxy.llm.gateway import LLMGateway

        return LLMGateway(self.settings.llm)

    def create_query_service(self, engine: RAGEngine, llm: LLMGateway) -> QueryService:
        """Create a QueryService from settings + dependencies."""
        from ragproxy.query import QueryService

        return QueryService(
            engine=engine,
            llm=llm,
            llm_settings=self.settings.llm,
            window_size=self.settings.rag.conversation_window_size,
        )


class RAGRuntime:
    """
    Owns one set of long-lived components for a process.

    Components are built eagerly and wired together; ``initialize()``
    connects them in order (embedding provider, vector index, document
    store). Until a component is ready, every call that needs it raises
    StoreNotReadyError.

    Example::

        async with RAGRuntime(settings) as runtime:
            await runtime.documents.create("intro.md", "# Intro\\n\\nHello.")
            result = await runtime.query_service.answer(QueryRequest(query="Hello?"))

    Args:
        settings: Application settings
        strict: Raise if a component fails to initialize. With strict=False
            the failure is logged and the runtime keeps serving; calls that
            need the failed component raise StoreNotReadyError.
    """

    def __init__(self, settings: Settings, strict: bool = True):
        self.settings = settings
        self.strict = strict
        self.factory = RAGComponents(settings)

        self.embedding_provider = self.factory.create_embedding_provider()
        self.embedding_gateway = self.factory.create_embedding_gateway(self.embedding_provider)
        self.vector_index = self.factory.create_vector_index()
        self.document_store = self.factory.create_document_store()

        self.engine = self.factory.create_engine(
            self.embedding_gateway, self.vector_index, self.document_store
        )
        self.documents = self.factory.create_document_manager(
            self.embedding_gateway, self.vector_index, self.document_store
        )
        self.llm = self.factory.create_llm_gateway()
        self.query_service = self.factory.create_query_service(self.engine, self.llm)

    @property
    def components(self) -> list:
        """Components with a lifecycle, in initialization order."""
        return [self.embedding_provider, self.vector_index, self.document_store]

    @property
    def is_ready(self) -> bool:
        return all(component.lifecycle.is_ready for component in self.components)

    def status(self) -> dict[str, str]:
        """State of each component, keyed by component name."""
        return {c.lifecycle.component: c.lifecycle.state.value for c in self.components}

    async def initialize(self) -> None:
        """
        Initialize every component in order.

        Raises:
            RuntimeError: If a component fails and ``strict`` is set. Components
                already initialized are shut down first.
        """
        for component in self.components:
            try:
                await component.initialize()
            except RuntimeError as e:
                if self.strict:
                    await self.shutdown()
                    raise
                logger.error(
                    f"{component.lifecycle.component} failed to initialize; "
                    f"requests that need it will be refused: {e}"
                )
        if self.is_ready:
            logger.info("RAG runtime ready")

    async def shutdown(self) -> None:
        """Shut down components in reverse order."""
        for component in reversed(self.components):
            try:
                await component.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down {component.lifecycle.component}: {e}")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False
