"""
Markdown chunking for the RAG system.

Documents are rendered to HTML and split on top-level blocks: every
heading, paragraph, list, quote or code block becomes one candidate chunk.
Each candidate is stripped of remaining markup and trimmed; empty
candidates are dropped.

Example:
    >>> chunker = MarkdownChunker()
    >>> chunks = chunker.chunk("# Title\\n\\nParagraph 1.\\n\\nParagraph 2.", "guide.md")
    >>> [c.text for c in chunks]
    ['Title', 'Paragraph 1.', 'Paragraph 2.']

The texts are deterministic for a given input. Chunk ids are fresh UUIDs
on every call.
"""

import uuid

import markdown
from bs4 import BeautifulSoup, Comment, NavigableString

from ragproxy.config.logging import get_logger
from ragproxy.rag.base import Chunk

logger = get_logger(__name__)


class MarkdownChunker:
    """
    Splits markdown into block-level chunks.

    Attributes:
        extensions: Python-Markdown extensions used when rendering
    """

    def __init__(self, extensions: list[str] | None = None):
        """
        Initialize the chunker.

        Args:
            extensions: Python-Markdown extensions (default: fenced code and tables,
                so GitHub-style docs render block structure correctly)
        """
        self.extensions = extensions if extensions is not None else ["fenced_code", "tables"]

    def chunk(self, markdown_text: str, parent_document_id: str) -> list[Chunk]:
        """
        Split a markdown document into ordered chunks.

        Args:
            markdown_text: Full markdown source
            parent_document_id: Id of the owning document

        Returns:
            Chunks in document order. Empty or whitespace-only input gives [].
        """
        if not markdown_text or not markdown_text.strip():
            logger.debug(f"No content to chunk for document {parent_document_id!r}")
            return []

        texts = self.split_blocks(markdown_text)
        chunks = [
            Chunk(id=str(uuid.uuid4()), text=text, parent_document_id=parent_document_id)
            for text in texts
        ]

        logger.debug(f"Created {len(chunks)} chunks for document {parent_document_id!r}")
        return chunks

    def split_blocks(self, markdown_text: str) -> list[str]:
        """
        Render markdown and return the cleaned text of each top-level block.

        Args:
            markdown_text: Markdown source

        Returns:
            Non-empty, trimmed block texts in document order
        """
        html = markdown.markdown(markdown_text, extensions=self.extensions)
        soup = BeautifulSoup(html, "html.parser")

        texts = []
        for node in soup.contents:
            if isinstance(node, Comment):
                continue
            if isinstance(node, NavigableString):
                # Loose text between blocks (mostly newlines)
                text = str(node)
            else:
                text = node.get_text()
            text = text.strip()
            if text:
                texts.append(text)
        return texts
