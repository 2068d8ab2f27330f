"""Shared Pydantic base model for Stride API schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class StrideBase(BaseModel):
    """Base model with shared config for all Stride schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ErrorDetail(BaseModel):
    detail: str
    kind: str | None = None
