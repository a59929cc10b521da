"""settlement.security
=================
Mini-README: Houses authentication utilities for the settlement routers. Tokens are
issued by the platform's auth service; this module only validates them (HS256 JWTs
whose ``sub`` is the user id and ``role`` the platform role) and exposes FastAPI
dependencies for the current principal, role checks and the shared webhook token.
Relies on python-jose for cryptographic operations.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings
from .logger import get_logger

LOGGER = get_logger(__name__)
JWT_ALGORITHM = "HS256"
ROLE_ADMIN = "admin"
ROLE_CREATOR = "creator"

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as described by the access token."""

    user_id: str
    role: str


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Generate a signed JWT access token."""

    settings = settings or get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=JWT_ALGORITHM)


async def get_current_principal(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> Principal:
    """Decode the bearer token into a ``Principal``."""

    if credentials is None:
        LOGGER.warning("Attempted access without bearer token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    settings = request.app.state.settings
    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        LOGGER.error("JWT decode failure: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")

    return Principal(user_id=str(user_id), role=str(payload.get("role", ROLE_CREATOR)))


def require_role(required_roles: list[str]):
    """Dependency factory enforcing role membership for protected routes."""

    async def role_checker(principal: Annotated[Principal, Depends(get_current_principal)]) -> Principal:
        if principal.role not in required_roles:
            LOGGER.warning("User %s lacks required role %s", principal.user_id, required_roles)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient privileges")
        return principal

    return role_checker


async def require_webhook_token(
    request: Request,
    webhook_token: Annotated[Optional[str], Header(alias="X-Webhook-Token")] = None,
) -> None:
    """Reject webhook calls that do not carry the shared gateway token."""

    expected = request.app.state.settings.webhook_token
    if webhook_token is None or not secrets.compare_digest(webhook_token, expected):
        LOGGER.warning("Rejected webhook call with missing or invalid token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook token")
