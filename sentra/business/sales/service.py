from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from sentra import events
from sentra.business.billing.models import Invoice
from sentra.business.payments.gateway import OpaqueCardData, PaymentGatewayClient
from sentra.business.payments.schemas import PaymentTransactionRead
from sentra.business.payments.service import ONE_TIME, PENDING, RECURRING, PaymentsService
from sentra.business.sales.models import Sale
from sentra.business.sales.repository import SaleRepository
from sentra.business.sales.schemas import (
    ChargeRequest,
    ChargeResult,
    PaymentProfileRequest,
    SaleCreate,
    SaleDetailRead,
    SalePage,
    SaleRead,
    SaleUpdate,
    SubscriptionCreate,
    SubscriptionStatusRead,
)
from sentra.core.cache import get_read_cache
from sentra.core.pagination import MessageResponse, page_meta, page_offset
from sentra.platform.security.context import AuthContext
from sentra.tenancy.repository import BrandRepository, ClientRepository

logger = logging.getLogger("sentra.sales")

CACHE_ENTITY = "sales"
MISSING_PROFILES = "Sale does not have payment profiles configured"


@dataclass(slots=True)
class SalesService:
    sale_repository: SaleRepository = SaleRepository()
    client_repository: ClientRepository = ClientRepository()
    brand_repository: BrandRepository = BrandRepository()
    payments: PaymentsService = field(default_factory=PaymentsService)

    def create_sale(self, session: Session, ctx: AuthContext, dto: SaleCreate) -> SaleRead:
        self.client_repository.get_reference(session, ctx, dto.client_id)
        self.brand_repository.get_reference(session, ctx, dto.brand_id)

        sale = Sale(
            total_amount=dto.total_amount,
            currency=dto.currency.upper(),
            description=dto.description,
            client_id=dto.client_id,
            brand_id=dto.brand_id,
            organization_id=ctx.organization_id,
        )
        session.add(sale)
        session.commit()
        session.refresh(sale)

        self._invalidate(ctx)
        self._publish("sale.created", ctx, {"sale_id": str(sale.id), "total_amount": str(sale.total_amount)})
        return SaleRead.model_validate(sale)

    def list_sales(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        page: int = 1,
        limit: int = 20,
    ) -> SalePage:
        query = {"op": "list", "filters": filters, "page": page, "limit": limit}
        return get_read_cache().get_or_load(
            ctx.organization_id,
            CACHE_ENTITY,
            query,
            lambda: self._load_page(session, ctx, filters, page, limit),
        )

    def get_sale(self, session: Session, ctx: AuthContext, sale_id: uuid.UUID) -> SaleDetailRead:
        return get_read_cache().get_or_load(
            ctx.organization_id,
            CACHE_ENTITY,
            {"op": "get", "id": str(sale_id)},
            lambda: SaleDetailRead.model_validate(self.sale_repository.get_scoped(session, ctx, sale_id)),
        )

    def update_sale(self, session: Session, ctx: AuthContext, sale_id: uuid.UUID, dto: SaleUpdate) -> SaleRead:
        sale = self.sale_repository.get_scoped(session, ctx, sale_id, for_update=True)
        payload = dto.model_dump(exclude_unset=True)
        if "currency" in payload and payload["currency"] is not None:
            payload["currency"] = payload["currency"].upper()
        for field_name, value in payload.items():
            setattr(sale, field_name, value)
        session.add(sale)
        session.commit()
        session.refresh(sale)

        self._invalidate(ctx)
        return SaleRead.model_validate(sale)

    def remove_sale(self, session: Session, ctx: AuthContext, sale_id: uuid.UUID) -> MessageResponse:
        sale = self.sale_repository.get_scoped(session, ctx, sale_id, for_update=True)
        invoice_count = session.scalar(select(func.count()).select_from(Invoice).where(Invoice.sale_id == sale.id)) or 0
        if invoice_count:
            session.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Cannot delete sale with {invoice_count} invoice(s)",
            )

        self.payments.delete_for_sale(session, sale.id)
        session.flush()
        session.delete(sale)
        session.commit()

        self._invalidate(ctx)
        self._publish("sale.deleted", ctx, {"sale_id": str(sale_id)})
        return MessageResponse(message="Sale deleted successfully")

    def configure_payment_profile(
        self,
        session: Session,
        ctx: AuthContext,
        sale_id: uuid.UUID,
        dto: PaymentProfileRequest,
        gateway: PaymentGatewayClient,
    ) -> SaleRead:
        sale = self.sale_repository.get_scoped(session, ctx, sale_id, for_update=True)
        customer_profile_id = sale.customer_profile_id
        if not customer_profile_id:
            client = self.client_repository.get_scoped(session, ctx, sale.client_id)
            profile = gateway.create_customer_profile(client.email, dto.description or f"Sale {sale.id}")
            if not profile.success or not profile.customer_profile_id:
                session.rollback()
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Customer profile creation failed: {profile.failure_message}",
                )
            customer_profile_id = profile.customer_profile_id
            # Keep the gateway profile even if the payment profile step fails below.
            sale.customer_profile_id = customer_profile_id
            session.add(sale)
            session.commit()
            sale = self.sale_repository.get_scoped(session, ctx, sale_id, for_update=True)

        payment_profile = gateway.create_payment_profile(
            customer_profile_id,
            OpaqueCardData(data_descriptor=dto.data_descriptor, data_value=dto.data_value),
        )
        if not payment_profile.success or not payment_profile.payment_profile_id:
            session.rollback()
            self._invalidate(ctx)
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Payment profile creation failed: {payment_profile.failure_message}",
            )

        sale.payment_profile_id = payment_profile.payment_profile_id
        session.add(sale)
        session.commit()
        session.refresh(sale)

        self._invalidate(ctx)
        logger.info("sales.payment_profile_configured", extra={"sale_id": str(sale.id)})
        return SaleRead.model_validate(sale)

    def charge(
        self,
        session: Session,
        ctx: AuthContext,
        sale_id: uuid.UUID,
        dto: ChargeRequest,
        gateway: PaymentGatewayClient,
    ) -> ChargeResult:
        sale = self.sale_repository.get_scoped(session, ctx, sale_id)
        if not sale.has_payment_profiles:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_PROFILES)

        result = gateway.charge_customer_profile(
            sale.customer_profile_id,
            sale.payment_profile_id,
            dto.amount,
            dto.invoice_number,
        )
        transaction = self.payments.record_gateway_outcome(
            session,
            sale,
            result,
            transaction_type=ONE_TIME,
            amount=dto.amount,
        )
        session.commit()
        session.refresh(transaction)
        self._invalidate(ctx)

        if not result.success:
            logger.warning(
                "sales.charge_failed",
                extra={"sale_id": str(sale.id), "transaction_id": transaction.transaction_id, "error": result.message},
            )
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Payment failed: {result.failure_message}")

        logger.info("sales.charged", extra={"sale_id": str(sale.id), "transaction_id": transaction.transaction_id})
        self._publish(
            "sale.charged",
            ctx,
            {"sale_id": str(sale.id), "transaction_id": transaction.transaction_id, "amount": str(dto.amount)},
        )
        return ChargeResult(transaction=PaymentTransactionRead.model_validate(transaction), message=result.message)

    def subscribe(
        self,
        session: Session,
        ctx: AuthContext,
        sale_id: uuid.UUID,
        dto: SubscriptionCreate,
        gateway: PaymentGatewayClient,
    ) -> SaleRead:
        sale = self.sale_repository.get_scoped(session, ctx, sale_id, for_update=True)
        if not sale.has_payment_profiles:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_PROFILES)
        if sale.subscription_id:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sale already has an active subscription")

        result = gateway.create_subscription(
            name=dto.name,
            interval_length=dto.interval_length,
            interval_unit=dto.interval_unit,
            start_date=dto.start_date,
            total_occurrences=dto.total_occurrences,
            amount=dto.amount,
            customer_profile_id=sale.customer_profile_id,
            payment_profile_id=sale.payment_profile_id,
        )
        self.payments.record_gateway_outcome(
            session,
            sale,
            result,
            transaction_type=RECURRING,
            amount=dto.amount,
            success_status=PENDING,
        )
        if result.success:
            sale.subscription_id = result.subscription_id
            session.add(sale)
        session.commit()
        session.refresh(sale)
        self._invalidate(ctx)

        if not result.success:
            logger.warning("sales.subscription_failed", extra={"sale_id": str(sale.id), "error": result.message})
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Subscription creation failed: {result.failure_message}",
            )

        logger.info("sales.subscribed", extra={"sale_id": str(sale.id), "subscription_id": sale.subscription_id})
        self._publish("sale.subscribed", ctx, {"sale_id": str(sale.id), "subscription_id": sale.subscription_id})
        return SaleRead.model_validate(sale)

    def cancel_subscription(
        self,
        session: Session,
        ctx: AuthContext,
        sale_id: uuid.UUID,
        gateway: PaymentGatewayClient,
    ) -> MessageResponse:
        sale = self.sale_repository.get_scoped(session, ctx, sale_id, for_update=True)
        if not sale.subscription_id:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sale does not have an active subscription")

        subscription_id = sale.subscription_id
        result = gateway.cancel_subscription(subscription_id)
        if not result.success:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Cancellation failed: {result.failure_message}")

        sale.subscription_id = None
        session.add(sale)
        session.commit()

        self._invalidate(ctx)
        logger.info("sales.subscription_cancelled", extra={"sale_id": str(sale.id), "subscription_id": subscription_id})
        self._publish("sale.subscription_cancelled", ctx, {"sale_id": str(sale.id), "subscription_id": subscription_id})
        return MessageResponse(message="Subscription cancelled successfully")

    def get_subscription_status(
        self,
        session: Session,
        ctx: AuthContext,
        sale_id: uuid.UUID,
        gateway: PaymentGatewayClient,
    ) -> SubscriptionStatusRead:
        sale = self.sale_repository.get_scoped(session, ctx, sale_id)
        if not sale.subscription_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Sale does not have an active subscription")

        result = gateway.get_subscription_status(sale.subscription_id)
        if not result.success:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Subscription status lookup failed: {result.failure_message}",
            )
        return SubscriptionStatusRead(subscription_id=sale.subscription_id, status=result.message)

    def _load_page(self, session: Session, ctx: AuthContext, filters: dict[str, Any], page: int, limit: int) -> SalePage:
        stmt = self._filtered_query(ctx, filters)
        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = session.scalars(
            stmt.order_by(Sale.created_at.desc(), Sale.id).offset(page_offset(page, limit)).limit(limit)
        ).all()
        return SalePage(data=[SaleRead.model_validate(row) for row in rows], meta=page_meta(total, page, limit))

    def _filtered_query(self, ctx: AuthContext, filters: dict[str, Any]) -> Select[tuple[Sale]]:
        stmt: Select[tuple[Sale]] = self.sale_repository.apply_scope_query(select(Sale), ctx)
        if filters.get("status"):
            stmt = stmt.where(Sale.status == filters["status"])
        if filters.get("client_id"):
            stmt = stmt.where(Sale.client_id == filters["client_id"])
        if filters.get("brand_id"):
            stmt = stmt.where(Sale.brand_id == filters["brand_id"])
        if filters.get("date_from"):
            stmt = stmt.where(Sale.created_at >= filters["date_from"])
        if filters.get("date_to"):
            stmt = stmt.where(Sale.created_at <= filters["date_to"])
        return stmt

    @staticmethod
    def _invalidate(ctx: AuthContext) -> None:
        get_read_cache().invalidate(ctx.organization_id, CACHE_ENTITY, "invoices")

    @staticmethod
    def _publish(event_type: str, ctx: AuthContext, payload: dict[str, Any]) -> None:
        events.publish(
            events.build_envelope(
                event_type,
                organization_id=str(ctx.organization_id),
                actor_user_id=str(ctx.user_id),
                payload=payload,
            )
        )


sales_service = SalesService()
