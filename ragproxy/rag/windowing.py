"""
Conversation windowing for retrieval.

For multi-turn chats the retrieval query is built from the trailing part of
the conversation only, while the model still receives the full history.
"""

from ragproxy.config.logging import get_logger
from ragproxy.rag.base import ChatMessage
from ragproxy.rag.errors import InvalidRequestError

logger = get_logger(__name__)


def select_window(messages: list[ChatMessage], window_size: int) -> list[ChatMessage]:
    """
    Return the messages used for the retrieval query.

    Args:
        messages: Full conversation, oldest first
        window_size: Trailing message count; 0 means the whole conversation

    Raises:
        InvalidRequestError: If window_size is negative
    """
    if window_size < 0:
        raise InvalidRequestError(f"window_size must be non-negative, got {window_size}")

    if window_size == 0:
        logger.info(f"RAG windowing: window size is 0, using all {len(messages)} messages")
        return list(messages)
    if window_size >= len(messages):
        logger.info(
            f"RAG windowing: window size {window_size} >= {len(messages)} messages, using all"
        )
        return list(messages)

    logger.info(f"RAG windowing: using last {window_size} of {len(messages)} messages")
    return list(messages[-window_size:])


def build_retrieval_query(messages: list[ChatMessage], window_size: int) -> str:
    """Join the windowed messages' text with newlines, oldest first."""
    return "\n".join(message.content for message in select_window(messages, window_size))
