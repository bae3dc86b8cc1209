"""Authorize.net webhook reconciliation.

Notifications are authenticated with an HMAC-SHA512 of the raw request body
and then matched to stored transactions by gateway transaction id. Unknown
event types and unmatched transactions are acknowledged without writes.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sentra import events
from sentra.business.payments.models import PaymentTransaction
from sentra.business.payments.repository import PaymentTransactionRepository
from sentra.business.payments.schemas import WebhookAck, WebhookEvent, WebhookPayload
from sentra.business.payments.service import FAILED, REFUND, REFUNDED, SUCCESS
from sentra.core.cache import get_read_cache
from sentra.core.config import get_settings
from sentra.metrics import observe_webhook_event

logger = logging.getLogger("sentra.payments.webhooks")

EVENT_PREFIX = "net.authorize."
AUTH_CAPTURE = "payment.authcapture.created"
FRAUD_DECLINED = "payment.fraud.declined"
REFUND_CREATED = "payment.refund.created"

FRAUD_DECLINED_MESSAGE = "Declined due to fraud detection"


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def verify_signature(secret: str, body: bytes, header_value: str | None) -> bool:
    if not secret or not header_value:
        return False
    received = header_value.strip()
    if received.lower().startswith("sha512="):
        received = received[len("sha512="):]
    expected = compute_signature(secret, body)
    return hmac.compare_digest(received.lower(), expected.lower())


def normalize_event_type(event_type: str) -> str:
    if event_type.startswith(EVENT_PREFIX):
        return event_type[len(EVENT_PREFIX):]
    return event_type


def _response_code(payload: WebhookPayload) -> str | None:
    if payload.response_code is None:
        return None
    return str(payload.response_code)


@dataclass(slots=True)
class WebhookService:
    transaction_repository: PaymentTransactionRepository = PaymentTransactionRepository()

    def handle(self, session: Session, body: bytes, signature: str | None) -> WebhookAck:
        if not signature:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing webhook signature")
        if not verify_signature(get_settings().authorize_net_webhook_signature, body, signature):
            logger.warning("payments.webhook_signature_invalid")
            observe_webhook_event("unknown", "rejected")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")

        try:
            event = WebhookEvent.model_validate(json.loads(body))
        except (ValueError, ValidationError) as exc:
            # Authenticated deliveries are always acknowledged so the gateway stops retrying.
            logger.warning("payments.webhook_payload_invalid", extra={"error": str(exc)})
            observe_webhook_event("unknown", "invalid")
            return WebhookAck()

        event_type = normalize_event_type(event.event_type)
        logger.info(
            "payments.webhook_received",
            extra={"event_type": event_type, "notification_id": event.notification_id},
        )

        handlers: dict[str, Callable[[Session, WebhookPayload], str]] = {
            AUTH_CAPTURE: self._handle_auth_capture,
            FRAUD_DECLINED: self._handle_fraud_declined,
            REFUND_CREATED: self._handle_refund_created,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("payments.webhook_ignored", extra={"event_type": event_type, "status": "unhandled"})
            result = "ignored"
        else:
            result = handler(session, event.payload)
        observe_webhook_event(event_type if handler is not None else "other", result)
        return WebhookAck()

    def _handle_auth_capture(self, session: Session, payload: WebhookPayload) -> str:
        transaction = self._find(session, payload, AUTH_CAPTURE)
        if transaction is None:
            return "unmatched"
        if self._is_settled(session, transaction, AUTH_CAPTURE):
            return "stale"
        transaction.status = SUCCESS
        transaction.response_code = _response_code(payload)
        session.add(transaction)
        session.commit()
        self._after_write(transaction, "payment.captured")
        return "applied"

    def _handle_fraud_declined(self, session: Session, payload: WebhookPayload) -> str:
        transaction = self._find(session, payload, FRAUD_DECLINED)
        if transaction is None:
            return "unmatched"
        if self._is_settled(session, transaction, FRAUD_DECLINED):
            return "stale"
        transaction.status = FAILED
        transaction.response_code = _response_code(payload)
        transaction.response_message = FRAUD_DECLINED_MESSAGE
        session.add(transaction)
        session.commit()
        self._after_write(transaction, "payment.declined")
        return "applied"

    def _handle_refund_created(self, session: Session, payload: WebhookPayload) -> str:
        original = self._find(session, payload, REFUND_CREATED)
        if original is None:
            return "unmatched"

        refund_id = f"refund_{original.transaction_id}"
        if original.status == REFUNDED or self.transaction_repository.find_by_gateway_id(session, refund_id) is not None:
            session.rollback()
            logger.info(
                "payments.webhook_refund_replayed",
                extra={"transaction_id": original.transaction_id, "status": original.status},
            )
            return "duplicate"

        refund = PaymentTransaction(
            transaction_id=refund_id,
            type=REFUND,
            amount=payload.auth_amount if payload.auth_amount is not None else original.amount,
            status=SUCCESS,
            response_code=_response_code(payload),
            sale_id=original.sale_id,
            invoice_id=original.invoice_id,
        )
        original.status = REFUNDED
        session.add_all([refund, original])
        try:
            session.commit()
        except IntegrityError:
            # A concurrent delivery of the same refund got there first.
            session.rollback()
            logger.info("payments.webhook_refund_replayed", extra={"transaction_id": refund_id, "status": "conflict"})
            return "duplicate"

        self._after_write(original, "payment.refunded")
        return "applied"

    def _find(self, session: Session, payload: WebhookPayload, event_type: str) -> PaymentTransaction | None:
        if not payload.id:
            logger.warning("payments.webhook_missing_transaction_id", extra={"event_type": event_type})
            return None
        transaction = self.transaction_repository.find_by_gateway_id(session, str(payload.id), for_update=True)
        if transaction is None:
            logger.warning(
                "payments.webhook_unmatched",
                extra={"event_type": event_type, "transaction_id": str(payload.id)},
            )
        return transaction

    @staticmethod
    def _is_settled(session: Session, transaction: PaymentTransaction, event_type: str) -> bool:
        # Refunded originals and refund rows never move again; late captures or declines are dropped.
        if transaction.status != REFUNDED and transaction.type != REFUND:
            return False
        fields = {"event_type": event_type, "transaction_id": transaction.transaction_id, "status": transaction.status}
        session.rollback()
        logger.info("payments.webhook_stale_event", extra=fields)
        return True

    @staticmethod
    def _after_write(transaction: PaymentTransaction, event_type: str) -> None:
        organization_id = transaction.sale.organization_id
        get_read_cache().invalidate(organization_id, "sales", "invoices")
        logger.info(
            "payments.webhook_applied",
            extra={
                "event_type": event_type,
                "transaction_id": transaction.transaction_id,
                "sale_id": str(transaction.sale_id),
                "status": transaction.status,
            },
        )
        events.publish(
            events.build_envelope(
                event_type,
                organization_id=str(organization_id),
                actor_user_id=None,
                payload={
                    "transaction_id": transaction.transaction_id,
                    "sale_id": str(transaction.sale_id),
                    "status": transaction.status,
                },
            )
        )


webhook_service = WebhookService()
