from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from sentra import events
from sentra.business.billing.models import Invoice, InvoiceSequence
from sentra.business.billing.repository import InvoiceRepository
from sentra.business.billing.schemas import (
    InvoiceCreate,
    InvoiceDetailRead,
    InvoicePage,
    InvoicePaymentResult,
    InvoiceRead,
    InvoiceUpdate,
    RefreshOverdueResponse,
)
from sentra.business.payments.gateway import PaymentGatewayClient
from sentra.business.payments.schemas import PaymentTransactionRead
from sentra.business.payments.service import ONE_TIME, PaymentsService
from sentra.business.sales.repository import SaleRepository
from sentra.business.sales.service import MISSING_PROFILES
from sentra.core.cache import get_read_cache
from sentra.core.config import get_settings
from sentra.core.pagination import MessageResponse, page_meta, page_offset
from sentra.metrics import observe_invoice_number_conflict
from sentra.platform.security.context import AuthContext

logger = logging.getLogger("sentra.billing")

CACHE_ENTITY = "invoices"

UNPAID = "UNPAID"
PAID = "PAID"
OVERDUE = "OVERDUE"


def invoice_prefix(year: int) -> str:
    return f"INV-{year}-"


def parse_invoice_sequence(invoice_number: str) -> int:
    parts = invoice_number.split("-")
    if len(parts) != 3 or not parts[2].isdigit():
        return 0
    return int(parts[2])


@dataclass(slots=True)
class InvoiceService:
    invoice_repository: InvoiceRepository = InvoiceRepository()
    sale_repository: SaleRepository = SaleRepository()
    payments: PaymentsService = field(default_factory=PaymentsService)

    def generate_invoice_number(self, session: Session, today: date) -> str:
        """Allocate the next ``INV-{year}-{NNNN}`` number inside the caller's transaction.

        The per-year sequence row is read ``FOR UPDATE`` so concurrent creators
        queue behind each other; the highest existing number for the year is
        also consulted so rows written before the sequence existed are honoured.
        """
        prefix = invoice_prefix(today.year)
        sequence = session.scalar(
            select(InvoiceSequence).where(InvoiceSequence.year == today.year).with_for_update()
        )
        highest_number = session.scalar(
            select(Invoice.invoice_number)
            .where(Invoice.invoice_number.like(f"{prefix}%"))
            .order_by(func.length(Invoice.invoice_number).desc(), Invoice.invoice_number.desc())
            .limit(1)
        )
        highest_existing = parse_invoice_sequence(highest_number) if highest_number else 0
        next_value = max(sequence.last_value if sequence is not None else 0, highest_existing) + 1

        if sequence is None:
            session.add(InvoiceSequence(year=today.year, last_value=next_value))
        else:
            sequence.last_value = next_value
            session.add(sequence)
        return f"{prefix}{next_value:04d}"

    def create_invoice(
        self,
        session: Session,
        ctx: AuthContext,
        dto: InvoiceCreate,
        *,
        today: date | None = None,
    ) -> InvoiceRead:
        sale = self.sale_repository.get_scoped(session, ctx, dto.sale_id)
        issue_date = today or date.today()
        max_attempts = get_settings().invoice_number_max_attempts

        invoice: Invoice | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                with session.begin_nested():
                    candidate = Invoice(
                        invoice_number=self.generate_invoice_number(session, issue_date),
                        amount=dto.amount,
                        due_date=dto.due_date,
                        status=UNPAID,
                        notes=dto.notes,
                        sale_id=sale.id,
                    )
                    session.add(candidate)
                    session.flush()
                invoice = candidate
                break
            except IntegrityError as exc:
                observe_invoice_number_conflict()
                logger.warning(
                    "billing.invoice_number_conflict",
                    extra={"sale_id": str(sale.id), "status": f"attempt {attempt}", "error": str(exc.orig)},
                )

        if invoice is None:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Could not allocate an invoice number")

        session.commit()
        session.refresh(invoice)

        self._invalidate(ctx)
        logger.info(
            "billing.invoice_created",
            extra={"invoice_id": str(invoice.id), "invoice_number": invoice.invoice_number, "sale_id": str(sale.id)},
        )
        self._publish(
            "invoice.created",
            ctx,
            {"invoice_id": str(invoice.id), "invoice_number": invoice.invoice_number, "sale_id": str(sale.id)},
        )
        return InvoiceRead.model_validate(invoice)

    def list_invoices(
        self,
        session: Session,
        ctx: AuthContext,
        filters: dict[str, Any],
        page: int = 1,
        limit: int = 20,
    ) -> InvoicePage:
        query = {"op": "list", "filters": filters, "page": page, "limit": limit}
        return get_read_cache().get_or_load(
            ctx.organization_id,
            CACHE_ENTITY,
            query,
            lambda: self._load_page(session, ctx, filters, page, limit),
        )

    def get_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> InvoiceDetailRead:
        return get_read_cache().get_or_load(
            ctx.organization_id,
            CACHE_ENTITY,
            {"op": "get", "id": str(invoice_id)},
            lambda: InvoiceDetailRead.model_validate(
                self.invoice_repository.get_scoped(
                    session,
                    ctx,
                    invoice_id,
                    options=[selectinload(Invoice.transactions)],
                )
            ),
        )

    def update_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID, dto: InvoiceUpdate) -> InvoiceRead:
        invoice = self.invoice_repository.get_scoped(session, ctx, invoice_id, for_update=True)
        payload = dto.model_dump(exclude_unset=True)
        if invoice.status == PAID and ({"amount", "status"} & payload.keys()):
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Paid invoice cannot be modified")

        for field_name, value in payload.items():
            setattr(invoice, field_name, value)
        session.add(invoice)
        session.commit()
        session.refresh(invoice)

        self._invalidate(ctx)
        return InvoiceRead.model_validate(invoice)

    def remove_invoice(self, session: Session, ctx: AuthContext, invoice_id: uuid.UUID) -> MessageResponse:
        invoice = self.invoice_repository.get_scoped(session, ctx, invoice_id, for_update=True)
        self.payments.delete_for_invoice(session, invoice.id)
        session.flush()
        session.delete(invoice)
        session.commit()

        self._invalidate(ctx)
        self._publish("invoice.deleted", ctx, {"invoice_id": str(invoice_id)})
        return MessageResponse(message="Invoice deleted successfully")

    def pay_invoice(
        self,
        session: Session,
        ctx: AuthContext,
        invoice_id: uuid.UUID,
        gateway: PaymentGatewayClient,
    ) -> InvoicePaymentResult:
        invoice = self.invoice_repository.get_scoped(session, ctx, invoice_id, for_update=True)
        if invoice.status == PAID:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invoice is already paid")
        sale = invoice.sale
        if not sale.has_payment_profiles:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_PROFILES)

        result = gateway.charge_customer_profile(
            sale.customer_profile_id,
            sale.payment_profile_id,
            invoice.amount,
            invoice.invoice_number,
        )
        transaction = self.payments.record_gateway_outcome(
            session,
            sale,
            result,
            transaction_type=ONE_TIME,
            amount=invoice.amount,
            invoice=invoice,
        )
        if result.success:
            invoice.status = PAID
            session.add(invoice)
        session.commit()
        session.refresh(invoice)
        session.refresh(transaction)
        self._invalidate(ctx)

        if not result.success:
            logger.warning(
                "billing.invoice_payment_failed",
                extra={
                    "invoice_id": str(invoice.id),
                    "invoice_number": invoice.invoice_number,
                    "transaction_id": transaction.transaction_id,
                    "error": result.message,
                },
            )
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Payment failed: {result.failure_message}")

        logger.info(
            "billing.invoice_paid",
            extra={"invoice_id": str(invoice.id), "invoice_number": invoice.invoice_number, "transaction_id": transaction.transaction_id},
        )
        self._publish(
            "invoice.paid",
            ctx,
            {"invoice_id": str(invoice.id), "transaction_id": transaction.transaction_id, "amount": str(invoice.amount)},
        )
        return InvoicePaymentResult(
            invoice=InvoiceRead.model_validate(invoice),
            transaction=PaymentTransactionRead.model_validate(transaction),
        )

    def refresh_overdue(self, session: Session, ctx: AuthContext, *, today: date | None = None) -> RefreshOverdueResponse:
        as_of = today or date.today()
        stmt = self.invoice_repository.apply_scope_query(
            self.invoice_repository.base_query().where(Invoice.status == UNPAID, Invoice.due_date < as_of),
            ctx,
        )
        rows = session.scalars(stmt.with_for_update(of=Invoice)).all()
        for row in rows:
            row.status = OVERDUE
            session.add(row)
        session.commit()

        if rows:
            self._invalidate(ctx)
        logger.info("billing.overdue_refreshed", extra={"organization_id": str(ctx.organization_id), "status": str(len(rows))})
        return RefreshOverdueResponse(updated_count=len(rows))

    def _load_page(self, session: Session, ctx: AuthContext, filters: dict[str, Any], page: int, limit: int) -> InvoicePage:
        stmt = self._filtered_query(ctx, filters)
        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = session.scalars(
            stmt.order_by(Invoice.created_at.desc(), Invoice.id).offset(page_offset(page, limit)).limit(limit)
        ).all()
        return InvoicePage(data=[InvoiceRead.model_validate(row) for row in rows], meta=page_meta(total, page, limit))

    def _filtered_query(self, ctx: AuthContext, filters: dict[str, Any]) -> Select[tuple[Invoice]]:
        stmt: Select[tuple[Invoice]] = self.invoice_repository.apply_scope_query(self.invoice_repository.base_query(), ctx)
        if filters.get("status"):
            stmt = stmt.where(Invoice.status == filters["status"])
        if filters.get("sale_id"):
            stmt = stmt.where(Invoice.sale_id == filters["sale_id"])
        if filters.get("due_before"):
            stmt = stmt.where(Invoice.due_date <= filters["due_before"])
        if filters.get("due_after"):
            stmt = stmt.where(Invoice.due_date >= filters["due_after"])
        return stmt

    @staticmethod
    def _invalidate(ctx: AuthContext) -> None:
        get_read_cache().invalidate(ctx.organization_id, CACHE_ENTITY, "sales")

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


invoice_service = InvoiceService()
