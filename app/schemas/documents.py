from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DocumentCreate(BaseModel):
    document_type: str = Field(min_length=1, max_length=64)
    file_name: str = Field(min_length=1, max_length=255)
    storage_url: str | None = Field(default=None, max_length=1024)
    expiry_date: date | None = None
    application_id: str | None = Field(default=None, max_length=160)
    replaces_document_id: UUID | None = None


class DocumentReview(BaseModel):
    expected_version: int | None = Field(default=None, ge=1)


class DocumentReject(DocumentReview):
    reason: str = Field(min_length=1, max_length=500)


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    subject_type: str
    application_id: str | None = None
    document_type: str
    file_name: str
    storage_url: str | None = None
    status: str
    expiry_date: date | None = None
    verified_by: str | None = None
    verified_at: datetime | None = None
    rejection_reason: str | None = None
    superseded_by_id: UUID | None = None
    version: int
    created_at: datetime


class DocumentReviewOut(BaseModel):
    document: DocumentOut
    parent_status: str | None = None
