"""
RAG Proxy CLI entry point.

Provides the command-line interface for running the API server, managing
documents, querying and syncing.
"""

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path

import aiofiles

from ragproxy import __version__
from ragproxy.config.logging import get_logger, setup_logging
from ragproxy.config.settings import Settings, load_settings
from ragproxy.query import QueryRequest
from ragproxy.rag.base import ChatMessage
from ragproxy.rag.components import RAGRuntime


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="ragproxy",
        description="Retrieval-augmented generation proxy for markdown documentation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"RAG Proxy {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Config command
    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    # Serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP API server",
    )
    serve_parser.add_argument("--host", default=None, help="Bind address (default: API__HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default: API__PORT)")

    # Document management commands
    add_parser = subparsers.add_parser(
        "add",
        help="Add a markdown file as a document",
    )
    add_parser.add_argument("file", type=Path, help="Markdown file to add")
    add_parser.add_argument(
        "--id",
        dest="document_id",
        default=None,
        help="Document id (default: the file path as given)",
    )

    update_parser = subparsers.add_parser(
        "update",
        help="Replace a document's content with a markdown file",
    )
    update_parser.add_argument("file", type=Path, help="Markdown file with the new content")
    update_parser.add_argument(
        "--id",
        dest="document_id",
        default=None,
        help="Document id (default: the file path as given)",
    )

    get_parser = subparsers.add_parser("get", help="Print a document's content")
    get_parser.add_argument("document_id", help="Document id")

    delete_parser = subparsers.add_parser("delete", help="Delete a document and its chunks")
    delete_parser.add_argument("document_id", help="Document id")

    subparsers.add_parser("list", help="List document ids")

    # Query command
    query_parser = subparsers.add_parser(
        "query",
        help="Ask a question (retrieval + LLM response)",
    )
    query_parser.add_argument(
        "question",
        help='Question to ask, e.g. "How do I enable streaming?"',
    )
    query_parser.add_argument(
        "--rag-type",
        choices=["basic", "advanced"],
        default=None,
        help="Context strategy (default: RAG__DEFAULT_RAG_TYPE from config)",
    )
    query_parser.add_argument(
        "--k",
        type=int,
        default=None,
        help="Number of chunks to retrieve (default: RAG__DEFAULT_K from config)",
    )
    query_parser.add_argument(
        "--history",
        type=Path,
        default=None,
        help='JSON file with earlier turns: [{"role": "user", "content": "..."}, ...]',
    )
    query_parser.add_argument(
        "--window-size",
        type=int,
        default=None,
        help="Trailing messages used for retrieval (default: RAG__CONVERSATION_WINDOW_SIZE)",
    )
    query_parser.add_argument(
        "--stream",
        action="store_true",
        help="Print the answer as it streams in",
    )
    query_parser.add_argument(
        "--prompt-only",
        action="store_true",
        help="Print the augmented prompt only; skip the LLM, no API key needed",
    )

    # Sync command
    sync_parser = subparsers.add_parser(
        "sync",
        help="Sync markdown documents from the configured GitHub repository",
    )
    sync_parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Keep running, syncing every N seconds (default: run once)",
    )
    sync_parser.add_argument(
        "--clear-existing",
        action="store_true",
        help="Drop every chunk from the vector index first, so all documents are re-embedded",
    )

    return parser


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    def is_set(value) -> str:
        return "Set" if value else "Not set"

    logger.info("\n=== RAG Proxy Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"\nLLM Model: {settings.llm.model}")
    logger.info(f"LLM API Key: {is_set(settings.llm.api_key)}")
    logger.info(f"\nChroma Mode: {settings.rag.chroma_mode}")
    if settings.rag.chroma_mode == "http":
        logger.info(f"Chroma Server: {settings.rag.chroma_host}:{settings.rag.chroma_port}")
    else:
        logger.info(f"Chroma Path: {settings.rag.vector_db_path}")
    logger.info(f"Chroma Collection: {settings.rag.collection_name}")
    logger.info(f"Embedding Provider: {settings.rag.embedding_provider}")
    logger.info(f"Embedding Model: {settings.rag.embedding_model}")
    logger.info(f"Default K: {settings.rag.default_k}")
    logger.info(f"Default RAG Type: {settings.rag.default_rag_type}")
    logger.info(f"Conversation Window: {settings.rag.conversation_window_size or 'all messages'}")
    logger.info(f"\nMongoDB Database: {settings.docstore.database_name}")
    logger.info(f"MongoDB Collection: {settings.docstore.collection_name}")
    logger.info(f"\nAPI: {settings.api.host}:{settings.api.port} (/api/{settings.api.version}/rag)")
    logger.info(f"Management API Key: {is_set(settings.api.management_api_key)}")
    logger.info(f"Query API Key: {is_set(settings.api.query_api_key)}")
    logger.info(f"\nSync Repo: {settings.sync.repo_owner}/{settings.sync.repo_name}/{settings.sync.docs_path}")
    logger.info(f"Sync In Server: {settings.sync.enabled} (every {settings.sync.interval_seconds}s)")

    return 0


def cmd_serve(args, settings: Settings) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from ragproxy.api import create_app

    logger = get_logger(__name__)

    if not settings.api.management_api_key or not settings.api.query_api_key:
        logger.warning(
            "API keys not fully configured (API__MANAGEMENT_API_KEY / API__QUERY_API_KEY). "
            "Routes without a key will answer 503."
        )

    host = args.host or settings.api.host
    port = args.port or settings.api.port
    logger.info(f"Starting RAG Proxy API on {host}:{port}")
    # log_config=None: keep our logging setup instead of uvicorn's
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)
    return 0


async def _read_text(path: Path) -> str:
    async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
        return await f.read()


async def cmd_write_document(args, settings: Settings) -> int:
    """Add or update a document from a markdown file."""
    logger = get_logger(__name__)

    source: Path = args.file
    if not source.is_file():
        logger.error(f"File does not exist: {source}")
        return 1
    document_id = args.document_id or source.as_posix()

    try:
        content = await _read_text(source)
        async with RAGRuntime(settings) as runtime:
            start_time = time.time()
            if args.command == "add":
                result = await runtime.documents.create(document_id, content)
            else:
                result = await runtime.documents.update(document_id, content)
            elapsed = time.time() - start_time

        print(f"\n=== Document {result.operation}d: {document_id} ===")
        if result.chunks_deleted:
            print(f"Chunks replaced: {result.chunks_deleted}")
        print(f"Chunks indexed: {result.chunks_created}")
        if result.chunks_skipped:
            print(f"Chunks skipped (embedding failed): {result.chunks_skipped}")
        print(f"Time elapsed: {elapsed:.2f}s")
        return 0

    except Exception as e:
        logger.error(f"{args.command.capitalize()} failed: {e}", exc_info=True)
        return 1


async def cmd_get(args, settings: Settings) -> int:
    """Print a document's content."""
    logger = get_logger(__name__)

    try:
        async with RAGRuntime(settings) as runtime:
            content = await runtime.documents.get_content(args.document_id)
    except Exception as e:
        logger.error(f"Get failed: {e}", exc_info=True)
        return 1

    if content is None:
        print(f"Document not found: {args.document_id}", file=sys.stderr)
        return 1
    print(content)
    return 0


async def cmd_delete(args, settings: Settings) -> int:
    """Delete a document and its chunks."""
    logger = get_logger(__name__)

    try:
        async with RAGRuntime(settings) as runtime:
            result = await runtime.documents.delete(args.document_id)
    except Exception as e:
        logger.error(f"Delete failed: {e}", exc_info=True)
        return 1

    print(f"Deleted {args.document_id} ({result.chunks_deleted} chunks), or it did not exist")
    return 0


async def cmd_list(settings: Settings) -> int:
    """List document ids and index size."""
    logger = get_logger(__name__)

    try:
        async with RAGRuntime(settings) as runtime:
            document_ids = await runtime.documents.list_ids()
            chunk_count = await runtime.vector_index.count()
    except Exception as e:
        logger.error(f"List failed: {e}", exc_info=True)
        return 1

    for document_id in sorted(document_ids):
        print(document_id)
    print(f"\n{len(document_ids)} documents, {chunk_count} chunks in '{settings.rag.collection_name}'")
    return 0


async def _load_history(path: Path | None) -> list[ChatMessage]:
    if path is None:
        return []
    raw = json.loads(await _read_text(path))
    return [ChatMessage.model_validate(item) for item in raw]


async def cmd_query(args, settings: Settings) -> int:
    """
    Ask a question.

    Flow:
      1. Embed the question (or the windowed conversation) and search Chroma
      2. Build the augmented prompt for the chosen RAG type
      3a. With --prompt-only: print the prompt and stop
      3b. Otherwise: send it to the LLM and print the answer
          (token by token with --stream)

    --prompt-only is useful for checking what retrieval finds before
    spending API tokens.
    """
    logger = get_logger(__name__)

    try:
        history = await _load_history(args.history)
        request = QueryRequest(
            query=args.question,
            rag_type=args.rag_type,
            k=args.k,
            conversation_history=history,
            window_size=args.window_size,
            stream=args.stream,
        )

        async with RAGRuntime(settings) as runtime:
            if args.prompt_only:
                if history:
                    window = settings.rag.conversation_window_size if args.window_size is None else args.window_size
                    messages = await runtime.engine.augment_conversation(
                        [*history, ChatMessage(role="user", content=args.question)],
                        rag_type=args.rag_type,
                        k=args.k,
                        window_size=window,
                    )
                    for message in messages:
                        print(f"[{message.role}]\n{message.content}\n")
                else:
                    print(await runtime.engine.augment(args.question, rag_type=args.rag_type, k=args.k))
                return 0

            logger.info(f"Sending to {settings.llm.model}...")

            if args.stream:
                events = await runtime.query_service.stream(request)
                async for event in events:
                    if event.type == "delta":
                        print(event.text, end="", flush=True)
                    elif event.type == "error":
                        print(f"\n\nLLM error: {event.error} {event.details or ''}", file=sys.stderr)
                        return 1
                print()
                return 0

            result = await runtime.query_service.answer(request)

        print(f"\n=== RAG Proxy [{result.rag_type.value}] ===")
        print(f"Q: {args.question}\n")
        print(result.text)
        print(f"\n--- Context entries: {result.context_count} ---")
        print(f"Tokens: {result.usage.total_tokens} "
              f"(prompt {result.usage.prompt_tokens} "
              f"+ completion {result.usage.completion_tokens})")
        return 0

    except Exception as e:
        logger.error(f"Query failed: {e}", exc_info=True)
        return 1


async def cmd_sync(args, settings: Settings) -> int:
    """Sync documents from GitHub once, or forever with --interval."""
    from ragproxy.jobs.sync_docs import GitHubDocsSync

    logger = get_logger(__name__)

    try:
        async with RAGRuntime(settings) as runtime:
            if args.clear_existing:
                logger.warning("Clearing existing vector index...")
                await runtime.vector_index.delete_collection()
                logger.info("Vector index cleared")

            sync = GitHubDocsSync(settings.sync, runtime.documents)
            if args.interval:
                await sync.run_periodically(args.interval)
                return 0
            report = await sync.run()
    except Exception as e:
        logger.error(f"Sync failed: {e}", exc_info=True)
        return 1

    print("\n=== Sync Summary ===")
    print(f"Created: {len(report.created)}")
    print(f"Updated: {len(report.updated)}")
    print(f"Deleted: {len(report.deleted)}")
    if report.failed:
        print(f"Failed: {len(report.failed)}")
        for document_id, error in report.failed.items():
            print(f"  {document_id}: {error}")
        return 1
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    # Setup logging
    setup_logging(settings)

    # Execute command
    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "serve":
        return cmd_serve(args, settings)
    elif args.command in ("add", "update"):
        return asyncio.run(cmd_write_document(args, settings))
    elif args.command == "get":
        return asyncio.run(cmd_get(args, settings))
    elif args.command == "delete":
        return asyncio.run(cmd_delete(args, settings))
    elif args.command == "list":
        return asyncio.run(cmd_list(settings))
    elif args.command == "query":
        return asyncio.run(cmd_query(args, settings))
    elif args.command == "sync":
        return asyncio.run(cmd_sync(args, settings))
    else:
        # Default: show help
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
