from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sentra.core.database import Base

if TYPE_CHECKING:
    from sentra.business.billing.models import Invoice
    from sentra.business.sales.models import Sale


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentTransaction(Base):
    __tablename__ = "payment_transaction"
    __table_args__ = (
        Index("ix_payment_transaction_sale", "sale_id", "created_at"),
        Index("ix_payment_transaction_invoice", "invoice_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Gateway-issued; refunds use "refund_<original id>". Unique so a replayed refund cannot insert twice.
    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    response_code: Mapped[str | None] = mapped_column(String(16), nullable=True)
    response_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sale_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("sale.id"), nullable=False)
    invoice_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("invoice.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    sale: Mapped[Sale] = relationship("Sale", back_populates="transactions")
    invoice: Mapped[Invoice | None] = relationship("Invoice", back_populates="transactions")
