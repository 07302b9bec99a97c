"""Shared Pydantic base models and utilities."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    from datetime import timezone

    return datetime.now(timezone.utc)


def generate_id() -> str:
    return uuid.uuid4().hex


class FertilityBase(BaseModel):
    """Base model with shared config for all persisted fertility records.

    Attributes are snake_case in Python and camelCase in storage
    (``is_start`` ↔ ``isStart``).  Both spellings are accepted on input.
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
    )

    def to_storage(self) -> dict[str, Any]:
        """Serialise to the JSON-compatible dict written to the record store."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TimestampMixin(BaseModel):
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
