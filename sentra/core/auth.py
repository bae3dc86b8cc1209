from dataclasses import dataclass

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from sentra.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    organization_id: str
    role: str


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    subject = payload.get("sub")
    organization_id = payload.get("org_id")
    role = payload.get("role")
    if not subject or not organization_id or not role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="incomplete token claims")
    return AuthUser(sub=str(subject), organization_id=str(organization_id), role=str(role))
