"""
RAG Proxy - retrieval-augmented generation in front of a hosted LLM.

Chunks markdown documents into a Chroma vector index (with full documents in
MongoDB), augments user queries with retrieved context and relays them to
the chat model, in batch or streaming mode.
"""

__version__ = "0.1.0"
