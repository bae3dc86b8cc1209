from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from sentra.api.deps import get_auth_context, http_error_response
from sentra.core.database import get_db
from sentra.core.pagination import MessageResponse
from sentra.core.rbac import require_permission
from sentra.crm.schemas import (
    LeadActivityRead,
    LeadAssignRequest,
    LeadConvertRequest,
    LeadCreate,
    LeadDetailRead,
    LeadNoteCreate,
    LeadPage,
    LeadRead,
    LeadStatusChangeRequest,
    LeadUpdate,
)
from sentra.crm.service import lead_service
from sentra.crm.transitions import LeadStatus
from sentra.platform.security.context import AuthContext

leads_router = APIRouter(prefix="/api/crm", tags=["crm.leads"])


@leads_router.get("/leads", response_model=LeadPage)
def list_leads(
    request: Request,
    status_filter: LeadStatus | None = Query(default=None, alias="status"),
    source: str | None = Query(default=None),
    assigned_to_id: uuid.UUID | None = Query(default=None),
    brand_id: uuid.UUID | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadPage | JSONResponse:
    try:
        require_permission(ctx, "leads.read")
        return lead_service.list_leads(
            db,
            ctx,
            filters={
                "status": status_filter,
                "source": source,
                "assigned_to_id": assigned_to_id,
                "brand_id": brand_id,
                "date_from": date_from,
                "date_to": date_to,
                "search": search,
            },
            page=page,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_list_failed")


@leads_router.post("/leads", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead | JSONResponse:
    try:
        require_permission(ctx, "leads.create")
        return lead_service.create_lead(db, ctx, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_create_failed")


@leads_router.get("/leads/{lead_id}", response_model=LeadDetailRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadDetailRead | JSONResponse:
    try:
        require_permission(ctx, "leads.read")
        return lead_service.get_lead(db, ctx, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_get_failed")


@leads_router.patch("/leads/{lead_id}", response_model=LeadRead)
def patch_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead | JSONResponse:
    try:
        require_permission(ctx, "leads.update")
        return lead_service.update_lead(db, ctx, lead_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_update_failed")


@leads_router.delete("/leads/{lead_id}", response_model=MessageResponse)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> MessageResponse | JSONResponse:
    try:
        require_permission(ctx, "leads.delete")
        return lead_service.remove_lead(db, ctx, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_delete_failed")


@leads_router.patch("/leads/{lead_id}/status", response_model=LeadRead)
def change_lead_status(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadStatusChangeRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead | JSONResponse:
    try:
        require_permission(ctx, "leads.change_status")
        return lead_service.change_status(db, ctx, lead_id, dto.status)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_status_change_failed")


@leads_router.patch("/leads/{lead_id}/assign", response_model=LeadRead)
def assign_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadAssignRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead | JSONResponse:
    try:
        require_permission(ctx, "leads.assign")
        return lead_service.assign(db, ctx, lead_id, dto.assigned_to_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_assign_failed")


@leads_router.post("/leads/{lead_id}/notes", response_model=LeadActivityRead, status_code=status.HTTP_201_CREATED)
def add_lead_note(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadNoteCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadActivityRead | JSONResponse:
    try:
        require_permission(ctx, "leads.note")
        return lead_service.add_note(db, ctx, lead_id, dto.content)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_note_failed")


@leads_router.post("/leads/{lead_id}/convert", response_model=LeadRead)
def convert_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadConvertRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> LeadRead | JSONResponse:
    try:
        require_permission(ctx, "leads.convert")
        return lead_service.convert(db, ctx, lead_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_convert_failed")


@leads_router.get("/leads/{lead_id}/activities", response_model=list[LeadActivityRead])
def list_lead_activities(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[LeadActivityRead] | JSONResponse:
    try:
        require_permission(ctx, "leads.read")
        return lead_service.list_activities(db, ctx, lead_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "crm_lead_activities_failed")
