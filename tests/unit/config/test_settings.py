"""Tests for settings loading from defaults, environment and .env files."""

import pytest
from pydantic import ValidationError

from ragproxy.config.settings import RAGSettings, Settings, SyncSettings, load_settings


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Run from an empty directory so a developer's .env is not picked up."""
    monkeypatch.chdir(tmp_path)


class TestDefaults:

    def test_retrieval_defaults(self):
        settings = Settings()

        assert settings.rag.default_k == 3
        assert settings.rag.default_rag_type == "basic"
        assert settings.rag.conversation_window_size == 0
        assert settings.rag.chroma_mode == "persistent"
        assert settings.docstore.collection_name == "parent_documents"
        assert settings.api.version == "v1"
        assert settings.sync.enabled is False

    def test_negative_window_rejected(self):
        with pytest.raises(ValidationError):
            RAGSettings(conversation_window_size=-1)

    def test_unknown_rag_type_rejected(self):
        with pytest.raises(ValidationError):
            RAGSettings(default_rag_type="hybrid")

    def test_sync_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            SyncSettings(interval_seconds=0)


class TestEnvironment:

    def test_nested_delimiter(self, monkeypatch):
        monkeypatch.setenv("RAG__DEFAULT_K", "7")
        monkeypatch.setenv("API__QUERY_API_KEY", "secret")

        settings = Settings()

        assert settings.rag.default_k == 7
        assert settings.api.query_api_key == "secret"

    def test_section_prefix(self, monkeypatch):
        monkeypatch.setenv("DOCSTORE_MONGODB_URI", "mongodb://db:27017")

        assert Settings().docstore.mongodb_uri == "mongodb://db:27017"

    def test_env_file(self, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("LLM__MODEL=openai/gpt-4o-mini\nLOG_LEVEL=DEBUG\n")

        settings = load_settings(env_file=env_file)

        assert settings.llm.model == "openai/gpt-4o-mini"
        assert settings.log_level == "DEBUG"
