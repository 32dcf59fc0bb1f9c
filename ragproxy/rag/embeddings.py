"""
Embedding providers and the embedding gateway.

Two providers turn text into vectors:

- SentenceTransformerProvider runs a Sentence Transformers model locally
  (no API key required).
- LiteLLMEmbeddingProvider calls a hosted embedding API through LiteLLM
  (e.g. "gemini/text-embedding-004").

Only one provider is active at a time. The EmbeddingGateway sits in front of
it and owns the failure policy: any text that comes back without a usable
vector raises EmbeddingError. Callers decide whether that is fatal (query
time) or a reason to skip one chunk (document add).

Example:
    >>> provider = SentenceTransformerProvider("all-MiniLM-L6-v2", device="cpu")
    >>> async with provider:
    ...     gateway = EmbeddingGateway(provider)
    ...     vector = await gateway.embed("Hello world")
    ...     len(vector)
    384
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Literal

import numpy as np
from litellm import aembedding
from sentence_transformers import SentenceTransformer

from ragproxy.config.logging import get_logger
from ragproxy.rag.errors import EmbeddingError, StoreNotReadyError
from ragproxy.rag.lifecycle import Lifecycle

logger = get_logger(__name__)


class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding backends.

    Subclasses load their resources in ``_load()`` and produce one vector (or
    None when the backend returned nothing for that text) per input text in
    ``_encode()``. Lifecycle bookkeeping and the async context manager live
    here.
    """

    name = "Embedding provider"

    def __init__(self) -> None:
        self.lifecycle = Lifecycle(self.name)

    @abstractmethod
    async def _load(self) -> None:
        """Load model weights / create clients."""

    @abstractmethod
    async def _encode(self, texts: list[str]) -> list[list[float] | None]:
        """Return one vector (or None) per text, in input order."""

    async def _unload(self) -> None:
        """Release resources. Default: nothing to release."""

    async def initialize(self) -> None:
        """
        Prepare the provider for use.

        Raises:
            RuntimeError: If the backend cannot be loaded
        """
        try:
            await self._load()
        except Exception as e:
            self.lifecycle.mark_failed(e)
            logger.error(f"Failed to initialize {self.name}: {e}")
            raise RuntimeError(f"Could not initialize {self.name}: {e}") from e
        self.lifecycle.mark_ready()

    async def encode(self, texts: list[str]) -> list[list[float] | None]:
        """
        Embed texts.

        Raises:
            StoreNotReadyError: If the provider is not initialized
        """
        self.lifecycle.require_ready()
        return await self._encode(texts)

    async def shutdown(self) -> None:
        await self._unload()
        self.lifecycle.mark_closed()
        logger.debug(f"{self.name} shutdown complete")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False


class SentenceTransformerProvider(EmbeddingProvider):
    """
    Local embeddings via Sentence Transformers.

    Vectors are L2-normalized, which suits cosine similarity search.

    Attributes:
        model_name: Sentence Transformers model identifier
        device: Device to run on ('cpu' or 'cuda')
        batch_size: Number of texts encoded per forward pass
    """

    name = "Sentence Transformers embedding model"

    def __init__(
        self,
        model_name: str,
        device: Literal["cpu", "cuda"] = "cpu",
        batch_size: int = 32,
    ):
        super().__init__()
        self.model_name = model_name
        self.device = device
        self.batch_size = batch_size
        self._model: SentenceTransformer | None = None

    async def _load(self) -> None:
        logger.info(f"Loading embedding model: {self.model_name} on {self.device}")
        # Downloads weights on first use
        self._model = await asyncio.to_thread(
            SentenceTransformer, self.model_name, device=self.device
        )
        logger.info(
            f"Embedding model loaded successfully "
            f"(dimension: {self._model.get_sentence_embedding_dimension()}, device: {self.device})"
        )

    async def _encode(self, texts: list[str]) -> list[list[float] | None]:
        logger.debug(f"Encoding {len(texts)} texts locally (batch_size={self.batch_size})")
        embeddings = await asyncio.to_thread(
            self._model.encode,
            texts,
            batch_size=self.batch_size,
            show_progress_bar=False,
            normalize_embeddings=True,
            convert_to_numpy=True,
        )
        return np.asarray(embeddings, dtype=float).tolist()

    async def _unload(self) -> None:
        if self._model is not None:
            # No explicit close; dropping the reference frees GPU memory
            self._model = None


class LiteLLMEmbeddingProvider(EmbeddingProvider):
    """
    Hosted embeddings via LiteLLM.

    Attributes:
        model: LiteLLM embedding model string, e.g. "gemini/text-embedding-004"
        api_key: Provider API key (empty string lets LiteLLM read its own env vars)
    """

    name = "LiteLLM embedding provider"

    def __init__(self, model: str, api_key: str = ""):
        super().__init__()
        self.model = model
        self.api_key = api_key

    async def _load(self) -> None:
        # Nothing to load; the client is created per request by LiteLLM
        if not self.model:
            raise ValueError("Embedding model name is empty")
        logger.info(f"Using hosted embedding model: {self.model}")

    async def _encode(self, texts: list[str]) -> list[list[float] | None]:
        kwargs: dict[str, Any] = {"model": self.model, "input": texts}
        if self.api_key:
            kwargs["api_key"] = self.api_key

        response = await aembedding(**kwargs)

        vectors: list[list[float] | None] = [None] * len(texts)
        for position, item in enumerate(response.data or []):
            index = _field(item, "index")
            index = position if index is None else index
            if 0 <= index < len(texts):
                vectors[index] = _field(item, "embedding")
        return vectors


def _field(item: Any, name: str) -> Any:
    # LiteLLM returns plain dicts for some providers and objects for others
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


class EmbeddingGateway:
    """
    Policy layer over an EmbeddingProvider.

    ``embed`` and ``embed_batch`` either return a usable vector for every
    requested text, or raise EmbeddingError. Provider exceptions are
    re-raised as EmbeddingError too, except StoreNotReadyError, which keeps
    its own class so callers can report a startup race.
    """

    def __init__(self, provider: EmbeddingProvider):
        self.provider = provider

    @property
    def lifecycle(self) -> Lifecycle:
        return self.provider.lifecycle

    async def embed(self, text: str) -> list[float]:
        """
        Embed a single text.

        Raises:
            EmbeddingError: If no usable vector was produced
            StoreNotReadyError: If the provider is not initialized
        """
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed several texts; output order and length match the input.

        Raises:
            EmbeddingError: If any text came back without a usable vector
            StoreNotReadyError: If the provider is not initialized
        """
        if not texts:
            return []

        try:
            vectors = await self.provider.encode(texts)
        except StoreNotReadyError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding generation failed: {e}", cause=e) from e

        if vectors is None or len(vectors) != len(texts):
            got = 0 if vectors is None else len(vectors)
            raise EmbeddingError(f"Expected {len(texts)} embeddings, provider returned {got}")

        for i, vector in enumerate(vectors):
            if not vector:
                raise EmbeddingError(f"Provider returned no embedding for text #{i}")

        return [list(map(float, vector)) for vector in vectors]
