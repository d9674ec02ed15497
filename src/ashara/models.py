"""Typed models for the response bodies the pipeline inspects."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AsharaModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RateLimitResponse(AsharaModel):
    """Body of an HTTP 429 response."""

    message: str = ""
    retry_after: float = Field(default=0.0, ge=0.0, allow_inf_nan=False)
    is_global: bool = Field(default=False, alias="global")


class ErrorResponse(AsharaModel):
    """Body of a rejected request, e.g. ``{"code": 10003, "message": "Unknown Channel"}``."""

    code: int | None = None
    message: str | None = None
    errors: dict[str, Any] | None = None
