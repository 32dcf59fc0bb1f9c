"""
API-key authentication.

Document management and querying use separate keys, both sent in the
``X-API-Key`` header. A route whose key is not configured refuses every
request with 503 rather than running open.
"""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from ragproxy.config.logging import get_logger

logger = get_logger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def check_api_key(expected: str, provided: str | None, scope: str) -> None:
    """
    Compare a provided key with the configured one.

    Raises:
        HTTPException 503: If no key is configured for the scope
        HTTPException 401: If the key is missing or wrong
    """
    if not expected or not expected.strip():
        logger.error(f"API key for {scope} is not configured. Denying access.")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"API key for {scope} is not configured.",
        )
    if not provided:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized. API key is missing.",
        )
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized. API key is invalid.",
        )


async def require_management_key(
    request: Request, api_key: str | None = Security(api_key_header)
) -> None:
    """Dependency guarding the document management routes."""
    check_api_key(request.app.state.settings.api.management_api_key, api_key, "document management")


async def require_query_key(
    request: Request, api_key: str | None = Security(api_key_header)
) -> None:
    """Dependency guarding the query route."""
    check_api_key(request.app.state.settings.api.query_api_key, api_key, "queries")
