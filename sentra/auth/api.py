from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from sentra.api.deps import http_error_response
from sentra.auth.schemas import ForgotPasswordRequest, ResetPasswordRequest
from sentra.auth.service import password_reset_service
from sentra.core.database import get_db
from sentra.core.pagination import MessageResponse

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


@auth_router.post("/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: Request,
    dto: ForgotPasswordRequest,
    db: Session = Depends(get_db),
) -> MessageResponse | JSONResponse:
    try:
        return password_reset_service.forgot_password(db, dto.email)
    except HTTPException as exc:
        return http_error_response(request, exc, "auth_forgot_password_failed")


@auth_router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    dto: ResetPasswordRequest,
    db: Session = Depends(get_db),
) -> MessageResponse | JSONResponse:
    try:
        return password_reset_service.reset_password(db, dto.token, dto.password)
    except HTTPException as exc:
        return http_error_response(request, exc, "auth_reset_password_failed")
