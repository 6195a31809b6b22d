"""Pydantic models describing the Sanity HTTP API payloads."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SanityBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class QueryResponse(SanityBaseModel):
    result: Any = None
    ms: int | None = None
    query: str | None = None


class MutationResult(SanityBaseModel):
    id: str
    operation: str | None = None
    document: dict[str, Any] | None = None


class MutationResponse(SanityBaseModel):
    transaction_id: str = Field(alias="transactionId")
    results: list[MutationResult] = Field(default_factory=list[MutationResult])

    def first_document(self) -> dict[str, Any] | None:
        for result in self.results:
            if result.document is not None:
                return result.document
        return None


class ErrorDetail(SanityBaseModel):
    description: str | None = None
    type: str | None = None


class ErrorResponse(SanityBaseModel):
    """Both error shapes the API uses: a nested ``error`` object or a flat message."""

    error: ErrorDetail | str | None = None
    message: str | None = None
    status_code: int | None = Field(default=None, alias="statusCode")

    @property
    def description(self) -> str:
        if isinstance(self.error, ErrorDetail) and self.error.description:
            return self.error.description
        if self.message:
            return self.message
        if isinstance(self.error, str):
            return self.error
        return "Unknown Sanity API error"
