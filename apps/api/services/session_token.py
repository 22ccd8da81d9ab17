"""Session token helpers for backend-authenticated user scope."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings
from services.errors import Unauthorized


SESSION_TOKEN_TYPE = "coffeepass_session"


def create_session_token(
    user_id: str,
    telegram_id: Optional[int] = None,
    expires_hours: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Create a signed session token payload for API authentication."""
    issued_at = now or datetime.now(timezone.utc)
    ttl_hours = int(expires_hours or settings.JWT_EXPIRATION_HOURS or 168)
    expires_at = issued_at + timedelta(hours=max(ttl_hours, 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if telegram_id is not None:
        claims["tg"] = int(telegram_id)

    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return {
        "token": token,
        "expires_at": int(expires_at.timestamp()),
    }


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode and validate a signed session token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise Unauthorized("Invalid or expired session token.") from exc

    token_type = str(payload.get("type", "")).strip()
    if token_type != SESSION_TOKEN_TYPE:
        raise Unauthorized("Invalid session token type.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise Unauthorized("Session token missing subject.")

    return payload
