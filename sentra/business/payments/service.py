from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import delete
from sqlalchemy.orm import Session

from sentra.business.billing.models import Invoice
from sentra.business.payments.gateway import GatewayResult
from sentra.business.payments.models import PaymentTransaction
from sentra.business.payments.repository import PaymentTransactionRepository
from sentra.business.payments.schemas import PaymentTransactionRead
from sentra.business.sales.models import Sale
from sentra.platform.security.context import AuthContext

logger = logging.getLogger("sentra.payments")

ONE_TIME = "ONE_TIME"
RECURRING = "RECURRING"
REFUND = "REFUND"

PENDING = "PENDING"
SUCCESS = "SUCCESS"
FAILED = "FAILED"
REFUNDED = "REFUNDED"


@dataclass(slots=True)
class PaymentsService:
    transaction_repository: PaymentTransactionRepository = PaymentTransactionRepository()

    def record_gateway_outcome(
        self,
        session: Session,
        sale: Sale,
        result: GatewayResult,
        *,
        transaction_type: str,
        amount: Decimal,
        invoice: Invoice | None = None,
        success_status: str = SUCCESS,
    ) -> PaymentTransaction:
        """Stage the transaction row for a gateway reply; the caller owns the commit."""
        transaction = PaymentTransaction(
            transaction_id=result.transaction_id,
            type=transaction_type,
            amount=amount,
            status=success_status if result.success else FAILED,
            response_code=result.response_code,
            response_message=result.message,
            sale_id=sale.id,
            invoice_id=invoice.id if invoice is not None else None,
        )
        session.add(transaction)
        session.flush()
        logger.info(
            "payments.transaction_recorded",
            extra={
                "sale_id": str(sale.id),
                "invoice_id": str(invoice.id) if invoice is not None else None,
                "transaction_id": transaction.transaction_id,
                "status": transaction.status,
            },
        )
        return transaction

    def list_transactions(self, session: Session, ctx: AuthContext, sale_id: uuid.UUID) -> list[PaymentTransactionRead]:
        stmt = self.transaction_repository.apply_scope_query(
            self.transaction_repository.base_query().where(PaymentTransaction.sale_id == sale_id),
            ctx,
        )
        rows = session.scalars(stmt.order_by(PaymentTransaction.created_at.desc())).all()
        return [PaymentTransactionRead.model_validate(row) for row in rows]

    def delete_for_sale(self, session: Session, sale_id: uuid.UUID) -> int:
        result = session.execute(delete(PaymentTransaction).where(PaymentTransaction.sale_id == sale_id))
        return result.rowcount

    def delete_for_invoice(self, session: Session, invoice_id: uuid.UUID) -> int:
        result = session.execute(delete(PaymentTransaction).where(PaymentTransaction.invoice_id == invoice_id))
        return result.rowcount


payments_service = PaymentsService()
