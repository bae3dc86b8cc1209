from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from sentra.api.deps import http_error_response
from sentra.business.payments.schemas import WebhookAck
from sentra.business.payments.webhooks import webhook_service
from sentra.core.database import get_db

webhooks_router = APIRouter(prefix="/api/webhooks", tags=["payments.webhooks"])


@webhooks_router.post("/authorize-net", response_model=WebhookAck)
async def authorize_net_webhook(
    request: Request,
    x_anet_signature: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> WebhookAck | JSONResponse:
    # The signature covers the exact bytes, so the body is read before any parsing.
    body = await request.body()
    try:
        return await run_in_threadpool(webhook_service.handle, db, body, x_anet_signature)
    except HTTPException as exc:
        return http_error_response(request, exc, "payments_webhook_rejected")
