from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from sentra.business.billing.schemas import InvoiceRead
from sentra.business.payments.schemas import PaymentTransactionRead
from sentra.core.pagination import PageMeta


SaleStatus = Literal["PENDING", "ACTIVE", "COMPLETED", "CANCELLED"]
IntervalUnit = Literal["days", "months"]


class SaleCreate(BaseModel):
    total_amount: Decimal = Field(gt=Decimal("0"), decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    description: str | None = None
    client_id: UUID
    brand_id: UUID


class SaleUpdate(BaseModel):
    total_amount: Decimal | None = Field(default=None, gt=Decimal("0"), decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    status: SaleStatus | None = None
    description: str | None = None


class ChargeRequest(BaseModel):
    amount: Decimal = Field(gt=Decimal("0"), decimal_places=2)
    invoice_number: str | None = None


class PaymentProfileRequest(BaseModel):
    data_descriptor: str = Field(min_length=1)
    data_value: str = Field(min_length=1)
    description: str | None = None


class SubscriptionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    interval_length: int = Field(ge=1)
    interval_unit: IntervalUnit
    start_date: date
    total_occurrences: int = Field(ge=1)
    amount: Decimal = Field(ge=Decimal("0.01"), decimal_places=2)


class SaleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    total_amount: Decimal
    currency: str
    status: SaleStatus
    description: str | None
    client_id: UUID
    brand_id: UUID
    organization_id: UUID
    customer_profile_id: str | None
    payment_profile_id: str | None
    subscription_id: str | None
    created_at: datetime
    updated_at: datetime


class SaleDetailRead(SaleRead):
    invoices: list[InvoiceRead] = Field(default_factory=list)
    transactions: list[PaymentTransactionRead] = Field(default_factory=list)


class SalePage(BaseModel):
    data: list[SaleRead]
    meta: PageMeta


class ChargeResult(BaseModel):
    transaction: PaymentTransactionRead
    message: str | None = None


class SubscriptionStatusRead(BaseModel):
    subscription_id: str
    status: str | None
