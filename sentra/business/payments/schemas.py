from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


TransactionType = Literal["ONE_TIME", "RECURRING", "REFUND"]
TransactionStatus = Literal["PENDING", "SUCCESS", "FAILED", "REFUNDED"]


class PaymentTransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_id: str | None
    type: TransactionType
    amount: Decimal
    status: TransactionStatus
    response_code: str | None
    response_message: str | None
    sale_id: UUID
    invoice_id: UUID | None
    created_at: datetime


class WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    entity_name: str | None = Field(default=None, alias="entityName")
    response_code: Any = Field(default=None, alias="responseCode")
    auth_amount: Decimal | None = Field(default=None, alias="authAmount")


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    notification_id: str | None = Field(default=None, alias="notificationId")
    event_type: str = Field(default="", alias="eventType")
    event_date: str | None = Field(default=None, alias="eventDate")
    webhook_id: str | None = Field(default=None, alias="webhookId")
    payload: WebhookPayload = Field(default_factory=WebhookPayload)


class WebhookAck(BaseModel):
    received: bool = True
