"""Request and response bodies of the HTTP API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ragproxy.query import QueryResult
from ragproxy.rag.base import ChatMessage


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateDocumentRequest(_CamelModel):
    document_id: str = Field(description="Unique, externally supplied document id")
    markdown_content: str = Field(description="Full markdown text")


class UpdateDocumentRequest(_CamelModel):
    markdown_content: str = Field(description="New full markdown text")


class DocumentResponse(_CamelModel):
    document_id: str
    content: str


class DocumentMessage(_CamelModel):
    message: str
    document_id: str


class DocumentIdsResponse(_CamelModel):
    document_ids: list[str]


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None


# ---------------------------------------------------------------------------
# Gemini generateContent wire format
# ---------------------------------------------------------------------------

# LiteLLM finish reasons -> Gemini finishReason
FINISH_REASONS = {
    "stop": "STOP",
    "length": "MAX_TOKENS",
    "content_filter": "SAFETY",
}


class GeminiPart(BaseModel):
    text: str = Field(min_length=1)


class GeminiContent(BaseModel):
    role: Literal["user", "model"] = "user"
    parts: list[GeminiPart] = Field(min_length=1)

    def to_message(self) -> ChatMessage:
        """Collapse the parts into one chat message, one part per line."""
        return ChatMessage(role=self.role, content="\n".join(part.text for part in self.parts))


class GenerateContentRequest(BaseModel):
    """
    Body of ``generateContent`` / ``streamGenerateContent``.

    Only ``contents`` is used; generation and safety settings a Gemini
    client sends along are accepted and ignored.
    """

    contents: list[GeminiContent] = Field(min_length=1)

    model_config = ConfigDict(extra="ignore")

    def to_messages(self) -> list[ChatMessage]:
        return [content.to_message() for content in self.contents]


class GeminiOutputPart(BaseModel):
    text: str


class GeminiOutputContent(BaseModel):
    role: Literal["model"] = "model"
    parts: list[GeminiOutputPart]


class GeminiCandidate(_CamelModel):
    content: GeminiOutputContent
    finish_reason: str | None = None
    index: int = 0


class GeminiUsageMetadata(_CamelModel):
    prompt_token_count: int = 0
    candidates_token_count: int = 0
    total_token_count: int = 0


class GenerateContentResponse(_CamelModel):
    candidates: list[GeminiCandidate]
    usage_metadata: GeminiUsageMetadata | None = None
    model_version: str | None = None

    @classmethod
    def from_result(cls, result: QueryResult) -> "GenerateContentResponse":
        return cls(
            candidates=[
                GeminiCandidate(
                    content=GeminiOutputContent(parts=[GeminiOutputPart(text=result.text)]),
                    finish_reason=FINISH_REASONS.get(result.finish_reason, "OTHER"),
                )
            ],
            usage_metadata=GeminiUsageMetadata(
                prompt_token_count=result.usage.prompt_tokens,
                candidates_token_count=result.usage.completion_tokens,
                total_token_count=result.usage.total_tokens,
            ),
            model_version=result.model,
        )

    @classmethod
    def from_delta(cls, text: str) -> "GenerateContentResponse":
        return cls(
            candidates=[
                GeminiCandidate(content=GeminiOutputContent(parts=[GeminiOutputPart(text=text)]))
            ]
        )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
