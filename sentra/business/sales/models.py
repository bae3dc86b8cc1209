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
    from sentra.business.payments.models import PaymentTransaction


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Sale(Base):
    __tablename__ = "sale"
    __table_args__ = (
        Index("ix_sale_scope_filter", "organization_id", "status", "created_at"),
        Index("ix_sale_client", "client_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD", server_default="USD")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING", server_default="PENDING")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("client.id"), nullable=False)
    brand_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("brand.id"), nullable=False)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("organization.id", ondelete="CASCADE"),
        nullable=False,
    )
    customer_profile_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_profile_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    invoices: Mapped[list[Invoice]] = relationship(
        "Invoice",
        back_populates="sale",
        order_by="Invoice.created_at.desc()",
    )
    transactions: Mapped[list[PaymentTransaction]] = relationship(
        "PaymentTransaction",
        back_populates="sale",
        order_by="PaymentTransaction.created_at.desc()",
    )

    @property
    def has_payment_profiles(self) -> bool:
        return bool(self.customer_profile_id) and bool(self.payment_profile_id)
