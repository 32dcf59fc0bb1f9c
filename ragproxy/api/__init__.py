"""
HTTP boundary.

FastAPI app exposing document management and retrieval-augmented queries
under ``/api/{version}/rag``.
"""

from ragproxy.api.app import create_app

__all__ = ["create_app"]
