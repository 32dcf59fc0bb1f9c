"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Chat model configuration."""

    model: str = Field(
        default="gemini/gemini-2.0-flash-lite",
        description="LiteLLM model string, e.g. 'gemini/gemini-2.0-flash-lite', "
                    "'openai/gpt-4o-mini'. The provider prefix tells LiteLLM "
                    "which API to route the request to.",
    )
    max_tokens: int = Field(default=1024, description="Maximum tokens in response")
    temperature: float = Field(default=0.3, description="Sampling temperature")
    api_key: str = Field(default="", description="API key for the model's provider")
    system_prompt: str = Field(
        default="You are a helpful assistant.",
        description="System prompt used when no retrieved context was injected",
    )
    context_system_prompt: str = Field(
        default="You are a helpful assistant that answers questions based on the provided context.",
        description="System prompt used when the prompt carries retrieved context",
    )

    model_config = SettingsConfigDict(env_prefix="LLM_")


class RAGSettings(BaseSettings):
    """Retrieval configuration: vector store, embeddings and prompt assembly."""

    # Vector store connection
    chroma_mode: Literal["persistent", "http"] = Field(
        default="persistent",
        description="'persistent' stores the index on disk, 'http' talks to a Chroma server",
    )
    vector_db_path: str = Field(
        default="data/vector_db", description="Path to on-disk vector database (persistent mode)"
    )
    chroma_host: str = Field(default="localhost", description="Chroma server host (http mode)")
    chroma_port: int = Field(default=8000, description="Chroma server port (http mode)")
    chroma_auth_token: str | None = Field(
        default=None, description="Bearer token for the Chroma server"
    )
    chroma_username: str | None = Field(default=None, description="Basic-auth user for Chroma")
    chroma_password: str | None = Field(default=None, description="Basic-auth password for Chroma")
    chroma_tenant: str = Field(default="default_tenant", description="Chroma tenant")
    chroma_database: str = Field(default="default_database", description="Chroma database")
    collection_name: str = Field(
        default="rag_documents", description="Chroma collection holding chunk records"
    )

    # Embeddings
    embedding_provider: Literal["local", "litellm"] = Field(
        default="local",
        description="'local' runs Sentence Transformers in-process, "
                    "'litellm' calls a hosted embedding API",
    )
    embedding_model: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Sentence Transformers model name, or LiteLLM embedding model string "
                    "(e.g. 'gemini/text-embedding-004') when embedding_provider='litellm'",
    )
    embedding_device: Literal["cpu", "cuda"] = Field(
        default="cpu", description="Device for local embedding generation"
    )
    embedding_batch_size: int = Field(default=32, description="Batch size for local embeddings")
    embedding_api_key: str = Field(
        default="", description="API key for the hosted embedding provider"
    )

    # Retrieval and augmentation
    default_k: int = Field(default=3, description="Number of chunks to retrieve")
    default_rag_type: Literal["basic", "advanced"] = Field(
        default="basic", description="Context strategy used when the caller names none"
    )
    conversation_window_size: int = Field(
        default=0,
        ge=0,
        description="Trailing messages used to build the retrieval query for chats. "
                    "0 means the whole conversation.",
    )

    # Gemini-compatible endpoints take no strategy or k in the body
    gemini_rag_type: Literal["basic", "advanced"] = Field(
        default="basic", description="Context strategy for the Gemini-compatible endpoints"
    )
    gemini_k: int = Field(
        default=3, gt=0, description="Chunks to retrieve for the Gemini-compatible endpoints"
    )

    model_config = SettingsConfigDict(env_prefix="RAG_")


class DocumentStoreSettings(BaseSettings):
    """Parent document store (MongoDB) configuration."""

    mongodb_uri: str = Field(
        default="mongodb://localhost:27017", description="MongoDB connection string"
    )
    database_name: str = Field(default="rag-proxy", description="MongoDB database name")
    collection_name: str = Field(
        default="parent_documents", description="Collection holding full document text"
    )

    model_config = SettingsConfigDict(env_prefix="DOCSTORE_")


class APISettings(BaseSettings):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, description="Bind port")
    version: str = Field(default="v1", description="API version path segment")
    management_api_key: str = Field(
        default="", description="X-API-Key value required by document management routes"
    )
    query_api_key: str = Field(
        default="", description="X-API-Key value required by the query route"
    )

    model_config = SettingsConfigDict(env_prefix="API_")


class SyncSettings(BaseSettings):
    """GitHub documentation sync configuration."""

    enabled: bool = Field(
        default=False, description="Run the periodic sync inside the API server"
    )
    repo_owner: str = Field(default="", description="GitHub repository owner")
    repo_name: str = Field(default="", description="GitHub repository name")
    docs_path: str = Field(default="docs", description="Directory inside the repo to sync")
    token: str | None = Field(default=None, description="GitHub token (raises rate limits)")
    api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    interval_seconds: int = Field(
        default=86400, gt=0, description="Delay between periodic sync runs"
    )

    model_config = SettingsConfigDict(env_prefix="SYNC_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    llm: LLMSettings = Field(default_factory=LLMSettings)
    rag: RAGSettings = Field(default_factory=RAGSettings)
    docstore: DocumentStoreSettings = Field(default_factory=DocumentStoreSettings)
    api: APISettings = Field(default_factory=APISettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
