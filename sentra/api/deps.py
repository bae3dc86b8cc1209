from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from sentra.context import get_correlation_id
from sentra.core.auth import AuthUser, get_current_user
from sentra.platform.security.context import AuthContext


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def http_error_response(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


def get_auth_context(request: Request, auth_user: AuthUser = Depends(get_current_user)) -> AuthContext:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    try:
        user_id = uuid.UUID(auth_user.sub)
        organization_id = uuid.UUID(auth_user.organization_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token claims")
    return AuthContext(
        user_id=user_id,
        organization_id=organization_id,
        role=auth_user.role,
        correlation_id=correlation_id,
    )
