from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from sentra.business.payments.schemas import PaymentTransactionRead
from sentra.core.pagination import PageMeta


InvoiceStatus = Literal["UNPAID", "PAID", "OVERDUE"]


class InvoiceCreate(BaseModel):
    sale_id: UUID
    amount: Decimal = Field(gt=Decimal("0"), decimal_places=2)
    due_date: date
    notes: str | None = None


class InvoiceUpdate(BaseModel):
    amount: Decimal | None = Field(default=None, gt=Decimal("0"), decimal_places=2)
    due_date: date | None = None
    status: Literal["UNPAID", "OVERDUE"] | None = None
    notes: str | None = None


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    amount: Decimal
    due_date: date
    status: InvoiceStatus
    notes: str | None
    sale_id: UUID
    created_at: datetime
    updated_at: datetime


class InvoiceDetailRead(InvoiceRead):
    transactions: list[PaymentTransactionRead] = Field(default_factory=list)


class InvoicePage(BaseModel):
    data: list[InvoiceRead]
    meta: PageMeta


class InvoicePaymentResult(BaseModel):
    invoice: InvoiceRead
    transaction: PaymentTransactionRead


class RefreshOverdueResponse(BaseModel):
    updated_count: int
