"""
Base data structures for the retrieval-augmentation core.

- RAGType: context assembly strategy (basic / advanced)
- Chunk: a retrievable fragment of a markdown document
- ChunkMetadata: the fixed metadata written next to each chunk vector
- VectorRecord: the persisted unit in the vector index
- RetrievedChunk: a record returned by a similarity query
- ChatMessage: one role-tagged turn of a conversation
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ragproxy.rag.errors import InvalidRequestError


class RAGType(str, Enum):
    """
    How retrieved chunks are turned into prompt context.

    BASIC uses each chunk's own text in rank order. ADVANCED uses the full
    parent document of each chunk, each parent at most once.
    """

    BASIC = "basic"
    ADVANCED = "advanced"

    @property
    def context_label(self) -> str:
        if self is RAGType.ADVANCED:
            return "Relevant Information from Parent Documents"
        return "Relevant Text Chunks"

    @classmethod
    def parse(cls, value: "str | RAGType | None", default: "RAGType | str" = "basic") -> "RAGType":
        """
        Resolve a caller-supplied strategy name.

        None falls back to ``default``; anything other than "basic" or
        "advanced" raises InvalidRequestError.
        """
        if value is None:
            value = default
        if isinstance(value, RAGType):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidRequestError(
                f"rag_type must be 'basic' or 'advanced', got {value!r}"
            ) from None


class ChunkMetadata(BaseModel):
    """
    Metadata stored next to a chunk vector.

    The key set is fixed: the chunk's own text and a back-reference to its
    parent document. Chroma receives this as a plain dict.
    """

    text_chunk: str = Field(min_length=1, description="Cleaned chunk text")
    parent_document_id: str = Field(min_length=1, description="Owning document id")

    def to_chromadb_dict(self) -> dict[str, Any]:
        return self.model_dump()


class Chunk(BaseModel):
    """
    A retrievable fragment of a document.

    Example:
        >>> chunk = Chunk(id="4f0c...", text="Paragraph 1.", parent_document_id="guide.md")
        >>> chunk.metadata().text_chunk
        'Paragraph 1.'
    """

    id: str = Field(description="Generated unique chunk id (UUID4)")
    text: str = Field(min_length=1, description="Trimmed, markup-free chunk text")
    parent_document_id: str = Field(min_length=1, description="Owning document id")

    def metadata(self) -> ChunkMetadata:
        return ChunkMetadata(text_chunk=self.text, parent_document_id=self.parent_document_id)

    def to_record(self, embedding: list[float]) -> "VectorRecord":
        """Pair this chunk with its embedding for insertion into the index."""
        return VectorRecord(id=self.id, embedding=embedding, metadata=self.metadata())


class VectorRecord(BaseModel):
    """One persisted entry of the vector index."""

    id: str
    embedding: list[float] = Field(min_length=1)
    metadata: ChunkMetadata


class RetrievedMetadata(BaseModel):
    """
    Metadata as it comes back from the vector store.

    Records written by other tools (or older versions) may lack either
    field, so both are optional here.
    """

    text_chunk: str | None = None
    parent_document_id: str | None = None

    model_config = ConfigDict(extra="allow")


class RetrievedChunk(BaseModel):
    """A vector index record returned from a similarity query."""

    id: str
    distance: float | None = Field(None, description="Store distance (lower is closer)")
    metadata: RetrievedMetadata = Field(default_factory=RetrievedMetadata)
    document: str | None = Field(None, description="Raw document text, if the store kept one")


def resolve_chunk_text(chunk: RetrievedChunk) -> str | None:
    """
    Pick the text a retrieved chunk contributes to basic context.

    Order: the ``text_chunk`` metadata field, then the store's raw document
    text, then nothing (None). Blank strings count as absent.
    """
    if chunk.metadata.text_chunk and chunk.metadata.text_chunk.strip():
        return chunk.metadata.text_chunk
    if chunk.document and chunk.document.strip():
        return chunk.document
    return None


class ChatMessage(BaseModel):
    """One turn of a conversation."""

    role: str = Field(min_length=1, description="e.g. 'user', 'assistant', 'model'")
    content: str = Field(description="Message text")

    def to_litellm(self) -> dict[str, str]:
        # Gemini-style transcripts call the assistant "model"
        role = "assistant" if self.role == "model" else self.role
        return {"role": role, "content": self.content}
