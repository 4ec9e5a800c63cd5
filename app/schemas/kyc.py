from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.documents import DocumentOut


class KycProfileUpdate(BaseModel):
    display_name: str = Field(min_length=1, max_length=255)
    expected_version: int | None = Field(default=None, ge=1)


class KycProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    subject_type: str
    display_name: str
    kyc_status: str
    kyc_documents_uploaded: bool
    kyc_reviewed_at: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime


class KycOverview(BaseModel):
    profile: KycProfileOut
    documents: list[DocumentOut]
    summary: dict[str, int]
