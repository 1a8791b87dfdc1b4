from typing import Any

from pydantic import BaseModel, Field


class ChangeEventRequest(BaseModel):
    collection: str = Field(min_length=1, max_length=64)
    document_id: str = Field(min_length=1, max_length=128)
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


class ChangeEventResponse(BaseModel):
    collection: str
    document_id: str
    kind: str
    handled: bool
    action: str
    detail: dict[str, Any]
