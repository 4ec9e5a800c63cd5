from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from app.core.permissions import AdminRole


class AdminProfileCreate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(min_length=1, max_length=128)
    display_name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    role: AdminRole = AdminRole.VIEWER
    department: str | None = Field(default=None, max_length=120)
    approval_limit: Decimal | None = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    unlimited_approval: bool = False
    permissions: dict[str, bool] = Field(default_factory=dict)
    specializations: list[str] = Field(default_factory=list)
    max_workload: int = Field(default=10, ge=0, le=500)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, value: dict[str, bool]) -> dict[str, bool]:
        cleaned: dict[str, bool] = {}
        for key, enabled in value.items():
            name = key.strip()
            if not name:
                raise ValueError("Permission keys must be non-empty")
            cleaned[name] = bool(enabled)
        return cleaned


class AdminProfileUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    expected_version: int | None = Field(default=None, ge=1)
    display_name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    role: AdminRole | None = None
    department: str | None = Field(default=None, max_length=120)
    approval_limit: Decimal | None = Field(default=None, ge=0, max_digits=18, decimal_places=2)
    unlimited_approval: bool | None = None
    permissions: dict[str, bool] | None = None
    specializations: list[str] | None = None
    max_workload: int | None = Field(default=None, ge=0, le=500)


class AdminProfileDeactivate(BaseModel):
    expected_version: int | None = Field(default=None, ge=1)


class AdminProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, json_encoders={Decimal: lambda value: str(value)})

    id: str
    display_name: str
    email: str
    role: str
    department: str | None = None
    approval_limit: Decimal | None = None
    unlimited_approval: bool
    permissions: dict[str, bool]
    specializations: list[str]
    current_workload: int
    max_workload: int
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime


class CapabilitiesOut(BaseModel):
    admin_id: str
    role: str
    capabilities: dict[str, bool]
    custom_permissions: dict[str, bool]
    approval_limit: str
    unlimited: bool
