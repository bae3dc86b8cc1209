from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from sentra import events
from sentra.core.config import get_settings
from sentra.core.pagination import MessageResponse
from sentra.core.security import hash_password
from sentra.tenancy.models import User

logger = logging.getLogger("sentra.auth")

RESET_REQUESTED_MESSAGE = "If an account exists, a reset link has been sent."


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(slots=True)
class PasswordResetService:
    def forgot_password(self, session: Session, email: str, *, now: datetime | None = None) -> MessageResponse:
        user = session.scalar(select(User).where(User.email == email))
        if user is None:
            logger.info("auth.password_reset_unknown_email")
            return MessageResponse(message=RESET_REQUESTED_MESSAGE)

        settings = get_settings()
        issued_at = now or datetime.now(timezone.utc)
        token = secrets.token_urlsafe(32)
        user.reset_password_token = token
        user.reset_password_expires = issued_at + timedelta(minutes=settings.password_reset_expire_minutes)
        session.add(user)
        session.commit()

        reset_link = f"{settings.frontend_url.rstrip('/')}/auth/reset-password?token={token}"
        logger.info("auth.password_reset_requested", extra={"organization_id": str(user.organization_id)})
        events.publish(
            events.build_envelope(
                "auth.password_reset_requested",
                organization_id=str(user.organization_id),
                actor_user_id=str(user.id),
                payload={"email": user.email, "name": user.name, "reset_link": reset_link},
            )
        )
        return MessageResponse(message=RESET_REQUESTED_MESSAGE)

    def reset_password(self, session: Session, token: str, password: str, *, now: datetime | None = None) -> MessageResponse:
        user = session.scalar(select(User).where(User.reset_password_token == token))
        if user is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset token")

        current = now or datetime.now(timezone.utc)
        if user.reset_password_expires is not None and current > _as_utc(user.reset_password_expires):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Reset token has expired")

        user.password_hash = hash_password(password)
        user.reset_password_token = None
        user.reset_password_expires = None
        session.add(user)
        session.commit()

        logger.info("auth.password_reset_completed", extra={"organization_id": str(user.organization_id)})
        return MessageResponse(message="Password has been reset successfully")


password_reset_service = PasswordResetService()
