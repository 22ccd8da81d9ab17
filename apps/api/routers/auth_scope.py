"""Authentication dependencies for API user scoping."""

import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings
from services.errors import Unauthorized
from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    telegram_id: Optional[int] = None


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated user from Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Missing Bearer session token.")

    payload = decode_session_token(credentials.credentials)
    telegram_id = payload.get("tg")
    return AuthContext(
        user_id=str(payload.get("sub", "")),
        telegram_id=int(telegram_id) if telegram_id is not None else None,
    )


async def require_payment_webhook(
    x_payment_webhook_secret: Optional[str] = Header(default=None),
) -> None:
    """Authenticate payment-provider callbacks with the shared webhook secret."""
    expected = (settings.PAYMENT_WEBHOOK_SECRET or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Payment callbacks are disabled. Set PAYMENT_WEBHOOK_SECRET.")
    if not x_payment_webhook_secret or not hmac.compare_digest(x_payment_webhook_secret, expected):
        raise Unauthorized("Invalid payment webhook secret.")
