"""
RAG (Retrieval-Augmented Generation) Engine Layer.

Provides markdown chunking, embeddings, the vector index and parent document
store adapters, document lifecycle management and prompt augmentation.
"""

# Public API exports
from ragproxy.rag.base import ChatMessage, Chunk, RAGType, RetrievedChunk, VectorRecord
from ragproxy.rag.chunking import MarkdownChunker
from ragproxy.rag.components import RAGComponents, RAGRuntime
from ragproxy.rag.document_store import MongoDocumentStore
from ragproxy.rag.documents import DocumentManager
from ragproxy.rag.embeddings import (
    EmbeddingGateway,
    EmbeddingProvider,
    LiteLLMEmbeddingProvider,
    SentenceTransformerProvider,
)
from ragproxy.rag.engine import RAGEngine
from ragproxy.rag.lifecycle import ComponentState, Lifecycle
from ragproxy.rag.vector_store import ChromaVectorIndex

__all__ = [
    "ChatMessage",
    "Chunk",
    "ChromaVectorIndex",
    "ComponentState",
    "DocumentManager",
    "EmbeddingGateway",
    "EmbeddingProvider",
    "Lifecycle",
    "LiteLLMEmbeddingProvider",
    "MarkdownChunker",
    "MongoDocumentStore",
    "RAGComponents",
    "RAGEngine",
    "RAGRuntime",
    "RAGType",
    "RetrievedChunk",
    "SentenceTransformerProvider",
    "VectorRecord",
]
