from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from sentra.core.pagination import PageMeta
from sentra.crm.transitions import LeadStatus

LeadActivityType = Literal["CREATED", "STATUS_CHANGE", "ASSIGNMENT_CHANGE", "NOTE", "CONVERSION"]


class LeadCreate(BaseModel):
    title: str = Field(min_length=2, max_length=200)
    source: str | None = Field(default=None, max_length=128)
    data: dict[str, Any] | None = None
    brand_id: UUID
    assigned_to_id: UUID | None = None


class LeadUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=2, max_length=200)
    source: str | None = Field(default=None, max_length=128)
    data: dict[str, Any] | None = None


class LeadStatusChangeRequest(BaseModel):
    status: LeadStatus


class LeadAssignRequest(BaseModel):
    assigned_to_id: UUID


class LeadNoteCreate(BaseModel):
    content: str = Field(min_length=1)


class LeadConvertRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    company_name: str = Field(min_length=2)
    contact_name: str | None = None
    phone: str | None = None


class LeadActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: LeadActivityType
    data: dict[str, Any] | None
    lead_id: UUID
    user_id: UUID
    created_at: datetime


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    status: LeadStatus
    source: str | None
    data: dict[str, Any] | None
    brand_id: UUID
    organization_id: UUID
    assigned_to_id: UUID | None
    converted_client_id: UUID | None
    created_at: datetime
    updated_at: datetime


class LeadDetailRead(LeadRead):
    activities: list[LeadActivityRead] = Field(default_factory=list)


class LeadPage(BaseModel):
    data: list[LeadRead]
    meta: PageMeta
