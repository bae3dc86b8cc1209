from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from sentra.api.deps import get_auth_context, http_error_response
from sentra.business.payments.gateway import PaymentGatewayClient, get_payment_gateway
from sentra.business.payments.schemas import PaymentTransactionRead
from sentra.business.payments.service import payments_service
from sentra.business.sales.schemas import (
    ChargeRequest,
    ChargeResult,
    PaymentProfileRequest,
    SaleCreate,
    SaleDetailRead,
    SalePage,
    SaleRead,
    SaleStatus,
    SaleUpdate,
    SubscriptionCreate,
    SubscriptionStatusRead,
)
from sentra.business.sales.service import sales_service
from sentra.core.database import get_db
from sentra.core.pagination import MessageResponse
from sentra.core.rbac import require_permission
from sentra.platform.security.context import AuthContext

sales_router = APIRouter(prefix="/api", tags=["sales"])


@sales_router.get("/sales", response_model=SalePage)
def list_sales(
    request: Request,
    status_filter: SaleStatus | None = Query(default=None, alias="status"),
    client_id: uuid.UUID | None = Query(default=None),
    brand_id: uuid.UUID | None = Query(default=None),
    date_from: datetime | None = Query(default=None),
    date_to: datetime | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SalePage | JSONResponse:
    try:
        require_permission(ctx, "sales.read")
        return sales_service.list_sales(
            db,
            ctx,
            filters={
                "status": status_filter,
                "client_id": client_id,
                "brand_id": brand_id,
                "date_from": date_from,
                "date_to": date_to,
            },
            page=page,
            limit=limit,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_list_failed")


@sales_router.post("/sales", response_model=SaleRead, status_code=status.HTTP_201_CREATED)
def create_sale(
    request: Request,
    dto: SaleCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SaleRead | JSONResponse:
    try:
        require_permission(ctx, "sales.create")
        return sales_service.create_sale(db, ctx, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_create_failed")


@sales_router.get("/sales/{sale_id}", response_model=SaleDetailRead)
def get_sale(
    request: Request,
    sale_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SaleDetailRead | JSONResponse:
    try:
        require_permission(ctx, "sales.read")
        return sales_service.get_sale(db, ctx, sale_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_get_failed")


@sales_router.patch("/sales/{sale_id}", response_model=SaleRead)
def patch_sale(
    request: Request,
    sale_id: uuid.UUID,
    dto: SaleUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SaleRead | JSONResponse:
    try:
        require_permission(ctx, "sales.update")
        return sales_service.update_sale(db, ctx, sale_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_update_failed")


@sales_router.delete("/sales/{sale_id}", response_model=MessageResponse)
def delete_sale(
    request: Request,
    sale_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> MessageResponse | JSONResponse:
    try:
        require_permission(ctx, "sales.delete")
        return sales_service.remove_sale(db, ctx, sale_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_delete_failed")


@sales_router.post("/sales/{sale_id}/payment-profile", response_model=SaleRead)
def configure_payment_profile(
    request: Request,
    sale_id: uuid.UUID,
    dto: PaymentProfileRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
) -> SaleRead | JSONResponse:
    try:
        require_permission(ctx, "sales.payment_profile")
        return sales_service.configure_payment_profile(db, ctx, sale_id, dto, gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_payment_profile_failed")


@sales_router.post("/sales/{sale_id}/charge", response_model=ChargeResult)
def charge_sale(
    request: Request,
    sale_id: uuid.UUID,
    dto: ChargeRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
) -> ChargeResult | JSONResponse:
    try:
        require_permission(ctx, "sales.charge")
        return sales_service.charge(db, ctx, sale_id, dto, gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_charge_failed")


@sales_router.post("/sales/{sale_id}/subscription", response_model=SaleRead)
def subscribe_sale(
    request: Request,
    sale_id: uuid.UUID,
    dto: SubscriptionCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
) -> SaleRead | JSONResponse:
    try:
        require_permission(ctx, "sales.subscribe")
        return sales_service.subscribe(db, ctx, sale_id, dto, gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_subscribe_failed")


@sales_router.delete("/sales/{sale_id}/subscription", response_model=MessageResponse)
def cancel_sale_subscription(
    request: Request,
    sale_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
) -> MessageResponse | JSONResponse:
    try:
        require_permission(ctx, "sales.cancel_subscription")
        return sales_service.cancel_subscription(db, ctx, sale_id, gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_cancel_subscription_failed")


@sales_router.get("/sales/{sale_id}/subscription", response_model=SubscriptionStatusRead)
def get_sale_subscription_status(
    request: Request,
    sale_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
) -> SubscriptionStatusRead | JSONResponse:
    try:
        require_permission(ctx, "sales.read")
        return sales_service.get_subscription_status(db, ctx, sale_id, gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_subscription_status_failed")


@sales_router.get("/sales/{sale_id}/transactions", response_model=list[PaymentTransactionRead])
def list_sale_transactions(
    request: Request,
    sale_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[PaymentTransactionRead] | JSONResponse:
    try:
        require_permission(ctx, "sales.read")
        return payments_service.list_transactions(db, ctx, sale_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "sales_transactions_failed")
