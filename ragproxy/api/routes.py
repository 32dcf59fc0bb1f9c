"""
HTTP routes: document management and queries.

Handlers only translate between HTTP and the core. Validation, not-found
and store errors are raised as-is and turned into responses by the
exception handlers in ``ragproxy.api.app``.
"""

from __future__ import annotations

import json
from typing import AsyncIterator, Callable

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import StreamingResponse

from ragproxy.api.auth import require_management_key, require_query_key
from ragproxy.api.schemas import (
    CreateDocumentRequest,
    DocumentIdsResponse,
    DocumentMessage,
    DocumentResponse,
    ErrorResponse,
    GenerateContentRequest,
    GenerateContentResponse,
    UpdateDocumentRequest,
)
from ragproxy.config.logging import get_logger
from ragproxy.query import PreparedQuery, QueryRequest, QueryResult, StreamEvent
from ragproxy.rag.components import RAGRuntime

logger = get_logger(__name__)

ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}

management_router = APIRouter(
    prefix="/manage/documents",
    tags=["documents"],
    dependencies=[Depends(require_management_key)],
    responses={**ERROR_RESPONSES, status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
)
query_router = APIRouter(
    tags=["query"],
    dependencies=[Depends(require_query_key)],
    responses=ERROR_RESPONSES,
)
gemini_router = APIRouter(
    prefix="/gemini/models",
    tags=["gemini"],
    dependencies=[Depends(require_query_key)],
    responses=ERROR_RESPONSES,
)

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def get_runtime(request: Request) -> RAGRuntime:
    return request.app.state.runtime


# ---------------------------------------------------------------------------
# Document management
# ---------------------------------------------------------------------------

@management_router.post("", status_code=status.HTTP_201_CREATED, response_model=DocumentMessage)
async def create_document(body: CreateDocumentRequest, runtime: RAGRuntime = Depends(get_runtime)):
    await runtime.documents.create(body.document_id, body.markdown_content)
    return DocumentMessage(message="Document added successfully", document_id=body.document_id)


@management_router.get("", response_model=DocumentIdsResponse)
async def list_documents(runtime: RAGRuntime = Depends(get_runtime)):
    return DocumentIdsResponse(document_ids=await runtime.documents.list_ids())


@management_router.get("/{document_id:path}", response_model=DocumentResponse)
async def get_document(document_id: str, runtime: RAGRuntime = Depends(get_runtime)):
    content = await runtime.documents.require_content(document_id)
    return DocumentResponse(document_id=document_id, content=content)


@management_router.put("/{document_id:path}", response_model=DocumentMessage)
async def update_document(
    document_id: str,
    body: UpdateDocumentRequest,
    runtime: RAGRuntime = Depends(get_runtime),
):
    await runtime.documents.update(document_id, body.markdown_content)
    return DocumentMessage(message="Document updated successfully", document_id=document_id)


@management_router.delete("/{document_id:path}", response_model=DocumentMessage)
async def delete_document(document_id: str, runtime: RAGRuntime = Depends(get_runtime)):
    await runtime.documents.delete(document_id)
    return DocumentMessage(
        message="Document deleted successfully (or did not exist)", document_id=document_id
    )


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------

@query_router.post("/query", response_model=QueryResult)
async def query(payload: QueryRequest, request: Request, runtime: RAGRuntime = Depends(get_runtime)):
    """
    Answer a query, as JSON or as a server-sent event stream.

    Streamed answers send ``data: {"text": ...}`` per chunk, then
    ``data: [DONE]``; a model failure mid-stream is sent as
    ``data: {"error": ..., "details": ...}`` and ends the stream.
    """
    if not payload.stream:
        return await runtime.query_service.answer(payload)

    events = await runtime.query_service.stream(payload)
    return StreamingResponse(
        relay_events(events, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def relay_events(
    events: AsyncIterator[StreamEvent],
    request: Request,
    encode: Callable[[StreamEvent], str | None] | None = None,
) -> AsyncIterator[str]:
    """Encode events as SSE, stopping when the client goes away."""
    encode = encode or encode_event
    try:
        async for event in events:
            if await request.is_disconnected():
                logger.info("Client disconnected; stopping stream")
                break
            frame = encode(event)
            if frame:
                yield frame
    finally:
        await events.aclose()


def encode_event(event: StreamEvent) -> str:
    """Frame one event as an SSE ``data:`` line."""
    if event.type == "done":
        return "data: [DONE]\n\n"
    if event.type == "error":
        payload = {"error": event.error, "details": event.details}
    else:
        payload = {"text": event.text}
    return f"data: {json.dumps(payload)}\n\n"


# ---------------------------------------------------------------------------
# Gemini-compatible generateContent
# ---------------------------------------------------------------------------

def litellm_model(model: str) -> str:
    """Map a Gemini model name from the URL to a LiteLLM model string."""
    return model if "/" in model else f"gemini/{model}"


async def _prepare_contents(body: GenerateContentRequest, request: Request, runtime: RAGRuntime) -> PreparedQuery:
    rag_settings = request.app.state.settings.rag
    return await runtime.query_service.prepare_conversation(
        body.to_messages(), rag_type=rag_settings.gemini_rag_type, k=rag_settings.gemini_k
    )


@gemini_router.post(
    "/{model}:generateContent",
    response_model=GenerateContentResponse,
    response_model_exclude_none=True,
)
async def generate_content(
    model: str,
    body: GenerateContentRequest,
    request: Request,
    runtime: RAGRuntime = Depends(get_runtime),
):
    """
    Drop-in for Gemini's ``generateContent``.

    The retrieval query is built from the windowed ``contents``; context is
    prefixed onto the last content item. Strategy and k come from
    ``RAG_GEMINI_RAG_TYPE`` / ``RAG_GEMINI_K``.
    """
    prepared = await _prepare_contents(body, request, runtime)
    logger.info(f"Gemini batch request for {model} ({len(body.contents)} contents)")
    result = await runtime.query_service.complete(prepared, model=litellm_model(model))
    return GenerateContentResponse.from_result(result)


@gemini_router.post("/{model}:streamGenerateContent")
async def stream_generate_content(
    model: str,
    body: GenerateContentRequest,
    request: Request,
    runtime: RAGRuntime = Depends(get_runtime),
):
    """
    Drop-in for Gemini's ``streamGenerateContent`` (SSE).

    Each delta is sent as a Gemini response chunk. The stream ends when the
    answer does, with no terminator line; a model failure is sent as
    ``data: {"error": ..., "details": ...}``.
    """
    prepared = await _prepare_contents(body, request, runtime)
    logger.info(f"Gemini stream request for {model} ({len(body.contents)} contents)")
    events = runtime.query_service.relay(prepared, model=litellm_model(model))
    return StreamingResponse(
        relay_events(events, request, encode_gemini_event),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


def encode_gemini_event(event: StreamEvent) -> str | None:
    """Frame one event as a Gemini SSE chunk; ``done`` has no frame."""
    if event.type == "done":
        return None
    if event.type == "error":
        payload = {"error": event.error, "details": event.details}
    else:
        payload = GenerateContentResponse.from_delta(event.text).to_wire()
    return f"data: {json.dumps(payload)}\n\n"
