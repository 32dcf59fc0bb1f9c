"""
Tests for the ragproxy CLI.

These tests verify that:
- The parser accepts each command and its flags
- Commands are wired through to the runtime (patched out here)
- Failures are reported as a non-zero exit code instead of a traceback
"""

import argparse
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ragproxy.__main__ import (
    cmd_delete,
    cmd_get,
    cmd_list,
    cmd_query,
    cmd_sync,
    cmd_write_document,
    create_parser,
    main,
)
from ragproxy.config.settings import Settings
from ragproxy.jobs.sync_docs import SyncReport
from ragproxy.llm.models import TokenUsage
from ragproxy.query import QueryResult, StreamEvent
from ragproxy.rag.base import RAGType
from ragproxy.rag.documents import SagaResult


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def runtime():
    runtime = MagicMock()
    runtime.documents.create = AsyncMock(
        return_value=SagaResult(operation="create", document_id="guide.md", chunks_created=3)
    )
    runtime.documents.update = AsyncMock(
        return_value=SagaResult(operation="update", document_id="guide.md", chunks_created=2, chunks_deleted=3)
    )
    runtime.documents.delete = AsyncMock(return_value=SagaResult(operation="delete", document_id="guide.md"))
    runtime.documents.get_content = AsyncMock(return_value="# Guide")
    runtime.documents.list_ids = AsyncMock(return_value=["b.md", "a.md"])
    runtime.vector_index.count = AsyncMock(return_value=7)
    runtime.engine.augment = AsyncMock(return_value="AUGMENTED PROMPT")
    runtime.query_service.answer = AsyncMock(
        return_value=QueryResult(
            text="The answer.",
            model="m",
            finish_reason="stop",
            usage=TokenUsage(prompt_tokens=5, completion_tokens=3),
            rag_type=RAGType.BASIC,
            context_count=2,
        )
    )
    return runtime


@pytest.fixture
def patched_runtime(runtime):
    """Patch RAGRuntime so `async with RAGRuntime(settings)` yields the mock."""
    with patch("ragproxy.__main__.RAGRuntime") as mock_runtime_class:
        mock_runtime_class.return_value.__aenter__.return_value = runtime
        yield mock_runtime_class


class TestParser:

    def test_add_defaults(self):
        args = create_parser().parse_args(["add", "docs/guide.md"])

        assert args.command == "add"
        assert args.file == Path("docs/guide.md")
        assert args.document_id is None

    def test_add_with_id(self):
        args = create_parser().parse_args(["add", "guide.md", "--id", "docs/guide.md"])
        assert args.document_id == "docs/guide.md"

    def test_query_flags(self):
        args = create_parser().parse_args(
            ["query", "How?", "--rag-type", "advanced", "--k", "5", "--window-size", "2", "--stream"]
        )

        assert args.question == "How?"
        assert args.rag_type == "advanced"
        assert args.k == 5
        assert args.window_size == 2
        assert args.stream is True
        assert args.prompt_only is False

    def test_query_invalid_rag_type_rejected(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["query", "How?", "--rag-type", "hybrid"])

    def test_serve_overrides(self):
        args = create_parser().parse_args(["serve", "--host", "127.0.0.1", "--port", "9000"])
        assert (args.host, args.port) == ("127.0.0.1", 9000)

    def test_sync_interval(self):
        assert create_parser().parse_args(["sync", "--interval", "60"]).interval == 60

    def test_sync_clear_existing(self):
        args = create_parser().parse_args(["sync", "--clear-existing"])

        assert args.clear_existing is True
        assert args.interval is None


class TestDocumentCommands:

    @pytest.mark.asyncio
    async def test_add_reads_file(self, tmp_path, settings, runtime, patched_runtime, capsys):
        source = tmp_path / "guide.md"
        source.write_text("# Guide\n\nBody.", encoding="utf-8")
        args = argparse.Namespace(command="add", file=source, document_id="guide.md")

        assert await cmd_write_document(args, settings) == 0

        runtime.documents.create.assert_awaited_once_with("guide.md", "# Guide\n\nBody.")
        assert "Chunks indexed: 3" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_update_defaults_id_to_path(self, tmp_path, settings, runtime, patched_runtime):
        source = tmp_path / "guide.md"
        source.write_text("# New", encoding="utf-8")
        args = argparse.Namespace(command="update", file=source, document_id=None)

        assert await cmd_write_document(args, settings) == 0

        runtime.documents.update.assert_awaited_once_with(source.as_posix(), "# New")

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path, settings, patched_runtime):
        args = argparse.Namespace(command="add", file=tmp_path / "nope.md", document_id=None)

        assert await cmd_write_document(args, settings) == 1
        patched_runtime.assert_not_called()

    @pytest.mark.asyncio
    async def test_runtime_failure_returns_1(self, tmp_path, settings, patched_runtime):
        source = tmp_path / "guide.md"
        source.write_text("x", encoding="utf-8")
        patched_runtime.return_value.__aenter__.side_effect = RuntimeError("Could not connect to MongoDB")
        args = argparse.Namespace(command="add", file=source, document_id=None)

        assert await cmd_write_document(args, settings) == 1

    @pytest.mark.asyncio
    async def test_get(self, settings, patched_runtime, capsys):
        assert await cmd_get(argparse.Namespace(document_id="guide.md"), settings) == 0
        assert "# Guide" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_get_missing(self, settings, runtime, patched_runtime):
        runtime.documents.get_content = AsyncMock(return_value=None)
        assert await cmd_get(argparse.Namespace(document_id="nope.md"), settings) == 1

    @pytest.mark.asyncio
    async def test_delete(self, settings, runtime, patched_runtime):
        assert await cmd_delete(argparse.Namespace(document_id="guide.md"), settings) == 0
        runtime.documents.delete.assert_awaited_once_with("guide.md")

    @pytest.mark.asyncio
    async def test_list_sorted(self, settings, patched_runtime, capsys):
        assert await cmd_list(settings) == 0

        out = capsys.readouterr().out
        assert out.index("a.md") < out.index("b.md")
        assert "2 documents, 7 chunks" in out


def _query_args(**overrides) -> argparse.Namespace:
    values = dict(
        question="What is in the doc?", rag_type=None, k=None, history=None,
        window_size=None, stream=False, prompt_only=False,
    )
    values.update(overrides)
    return argparse.Namespace(**values)


class TestQueryCommand:

    @pytest.mark.asyncio
    async def test_answer(self, settings, runtime, patched_runtime, capsys):
        assert await cmd_query(_query_args(rag_type="basic", k=2), settings) == 0

        request = runtime.query_service.answer.call_args.args[0]
        assert request.rag_type is RAGType.BASIC
        assert request.k == 2
        out = capsys.readouterr().out
        assert "The answer." in out
        assert "Context entries: 2" in out

    @pytest.mark.asyncio
    async def test_prompt_only_skips_llm(self, settings, runtime, patched_runtime, capsys):
        assert await cmd_query(_query_args(prompt_only=True), settings) == 0

        assert "AUGMENTED PROMPT" in capsys.readouterr().out
        runtime.query_service.answer.assert_not_called()

    @pytest.mark.asyncio
    async def test_history_file(self, tmp_path, settings, runtime, patched_runtime):
        history = tmp_path / "history.json"
        history.write_text(json.dumps([
            {"role": "user", "content": "Hi"},
            {"role": "model", "content": "Hello!"},
        ]))

        assert await cmd_query(_query_args(history=history), settings) == 0

        request = runtime.query_service.answer.call_args.args[0]
        assert [m.role for m in request.conversation_history] == ["user", "model"]

    @pytest.mark.asyncio
    async def test_stream(self, settings, runtime, patched_runtime, capsys):
        async def events():
            yield StreamEvent.delta("Hel")
            yield StreamEvent.delta("lo")
            yield StreamEvent.done()

        runtime.query_service.stream = AsyncMock(return_value=events())

        assert await cmd_query(_query_args(stream=True), settings) == 0
        assert "Hello" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_stream_error_returns_1(self, settings, runtime, patched_runtime):
        async def events():
            yield StreamEvent.failure("Failed to get response from LLM provider.", "quota")

        runtime.query_service.stream = AsyncMock(return_value=events())

        assert await cmd_query(_query_args(stream=True), settings) == 1

    @pytest.mark.asyncio
    async def test_blank_question_returns_1(self, settings, patched_runtime):
        assert await cmd_query(_query_args(question="   "), settings) == 1


class TestSyncCommand:

    @pytest.mark.asyncio
    async def test_clear_existing_drops_chunks_before_sync(self, settings, runtime, patched_runtime, capsys):
        order = []
        runtime.vector_index.delete_collection = AsyncMock(side_effect=lambda: order.append("clear"))

        with patch("ragproxy.jobs.sync_docs.GitHubDocsSync") as mock_sync_class:
            mock_sync_class.return_value.run = AsyncMock(
                side_effect=lambda: order.append("sync") or SyncReport(updated=["docs/intro.md"])
            )
            code = await cmd_sync(argparse.Namespace(interval=None, clear_existing=True), settings)

        assert code == 0
        assert order == ["clear", "sync"]
        assert "Updated: 1" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_without_clear_keeps_index(self, settings, runtime, patched_runtime):
        runtime.vector_index.delete_collection = AsyncMock()

        with patch("ragproxy.jobs.sync_docs.GitHubDocsSync") as mock_sync_class:
            mock_sync_class.return_value.run = AsyncMock(return_value=SyncReport(failed={"a.md": "down"}))
            code = await cmd_sync(argparse.Namespace(interval=None, clear_existing=False), settings)

        assert code == 1
        runtime.vector_index.delete_collection.assert_not_called()

class TestMain:

    def test_no_command_prints_help(self, capsys):
        with patch("sys.argv", ["ragproxy"]), patch("ragproxy.__main__.setup_logging"):
            assert main() == 0
        assert "usage" in capsys.readouterr().out

    def test_log_level_override(self):
        with patch("sys.argv", ["ragproxy", "--log-level", "DEBUG", "config"]), \
             patch("ragproxy.__main__.setup_logging") as mock_setup:
            assert main() == 0

        assert mock_setup.call_args.args[0].log_level == "DEBUG"
