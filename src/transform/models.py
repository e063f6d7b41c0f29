"""Payload models for the specialist publisher."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AttachmentPayload(BaseModel):
    """A hosted attachment as the publisher expects it."""

    url: str = Field(..., description="File URL assigned by the asset store")
    title: str = Field(..., description="Attachment filename")
    content_type: str | None = Field(None, description="MIME type guessed from the filename")
    updated_at: str
    created_at: str
    content_id: str


class ChangeNote(BaseModel):
    public_timestamp: str
    note: str


class BodyPart(BaseModel):
    type: str = "markdown"
    content: str


class Header(BaseModel):
    """One entry of the navigation outline derived from the body."""

    text: str
    level: int
    id: str
    headers: list[Header] | None = None


class DocumentDetails(BaseModel):
    metadata: dict[str, Any]
    change_history: list[ChangeNote]
    attachments: list[AttachmentPayload] = Field(default_factory=list)
    body: list[BodyPart]


class AllowedValue(BaseModel):
    """A facet option in a specialist publisher schema."""

    value: str
    label: str
