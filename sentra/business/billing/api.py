from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from sentra.api.deps import get_auth_context, http_error_response
from sentra.business.billing.schemas import (
    InvoiceCreate,
    InvoiceDetailRead,
    InvoicePage,
    InvoicePaymentResult,
    InvoiceRead,
    InvoiceStatus,
    InvoiceUpdate,
    RefreshOverdueResponse,
)
from sentra.business.billing.service import invoice_service
from sentra.business.payments.gateway import PaymentGatewayClient, get_payment_gateway
from sentra.core.database import get_db
from sentra.core.pagination import MessageResponse
from sentra.core.rbac import require_permission
from sentra.platform.security.context import AuthContext

invoices_router = APIRouter(prefix="/api", tags=["billing.invoices"])


@invoices_router.get("/invoices", response_model=InvoicePage)
def list_invoices(
    request: Request,
    status_filter: InvoiceStatus | None = Query(default=None, alias="status"),
    sale_id: uuid.UUID | None = Query(default=None),
    due_before: date | None = Query(default=None),
    due_after: date | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> InvoicePage | JSONResponse:
    try:
        require_permission(ctx, "invoices.read")
        return invoice_service.list_invoices(
            db,
            ctx,
            filters={
                "status": status_filter,
                "sale_id": sale_id,
                "due_before": due_before,
                "due_after": due_after,
            },
            page=page,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "billing_invoice_list_failed")


@invoices_router.post("/invoices", response_model=InvoiceRead, status_code=status.HTTP_201_CREATED)
def create_invoice(
    request: Request,
    dto: InvoiceCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> InvoiceRead | JSONResponse:
    try:
        require_permission(ctx, "invoices.create")
        return invoice_service.create_invoice(db, ctx, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "billing_invoice_create_failed")


@invoices_router.post("/invoices/refresh-overdue", response_model=RefreshOverdueResponse)
def refresh_overdue_invoices(
    request: Request,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> RefreshOverdueResponse | JSONResponse:
    try:
        require_permission(ctx, "invoices.refresh_overdue")
        return invoice_service.refresh_overdue(db, ctx)
    except HTTPException as exc:
        return http_error_response(request, exc, "billing_invoice_refresh_overdue_failed")


@invoices_router.get("/invoices/{invoice_id}", response_model=InvoiceDetailRead)
def get_invoice(
    request: Request,
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> InvoiceDetailRead | JSONResponse:
    try:
        require_permission(ctx, "invoices.read")
        return invoice_service.get_invoice(db, ctx, invoice_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "billing_invoice_get_failed")


@invoices_router.patch("/invoices/{invoice_id}", response_model=InvoiceRead)
def patch_invoice(
    request: Request,
    invoice_id: uuid.UUID,
    dto: InvoiceUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> InvoiceRead | JSONResponse:
    try:
        require_permission(ctx, "invoices.update")
        return invoice_service.update_invoice(db, ctx, invoice_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "billing_invoice_update_failed")


@invoices_router.delete("/invoices/{invoice_id}", response_model=MessageResponse)
def delete_invoice(
    request: Request,
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> MessageResponse | JSONResponse:
    try:
        require_permission(ctx, "invoices.delete")
        return invoice_service.remove_invoice(db, ctx, invoice_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "billing_invoice_delete_failed")


@invoices_router.post("/invoices/{invoice_id}/pay", response_model=InvoicePaymentResult)
def pay_invoice(
    request: Request,
    invoice_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
) -> InvoicePaymentResult | JSONResponse:
    try:
        require_permission(ctx, "invoices.pay")
        return invoice_service.pay_invoice(db, ctx, invoice_id, gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, "billing_invoice_pay_failed")
