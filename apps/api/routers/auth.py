"""
Authentication router: Telegram mini-app login and current user lookup.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.errors import Unauthorized, ValidationError
from services.identity import get_user, resolve_or_create_user, serialize_user
from services.telegram_auth import parse_unsigned_init_data, verify_init_data

router = APIRouter()
logger = logging.getLogger(__name__)


class TelegramAuthRequest(BaseModel):
    init_data: Optional[str] = Field(default=None, validation_alias=AliasChoices("init_data", "initData"))
    user: Optional[Dict[str, Any]] = None


class UserResponse(BaseModel):
    id: str
    telegram_id: int
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None
    name: Optional[str] = None


class TelegramAuthResponse(BaseModel):
    success: bool = True
    token: str
    expires_at: int
    created: bool
    user: UserResponse


def _identity_payload(request: TelegramAuthRequest) -> Dict[str, Any]:
    bot_token = (settings.TELEGRAM_BOT_TOKEN or "").strip()
    init_data = (request.init_data or "").strip()

    if bot_token:
        if not init_data:
            raise Unauthorized("Signed Telegram initData is required.")
        return verify_init_data(init_data, bot_token)

    if not settings.TELEGRAM_ALLOW_UNSIGNED:
        raise Unauthorized("Telegram authentication is not configured.")
    if init_data:
        return parse_unsigned_init_data(init_data)
    if request.user:
        return request.user
    raise ValidationError("Either init_data or user is required.")


@router.post("/telegram", response_model=TelegramAuthResponse)
async def telegram_login(
    request: TelegramAuthRequest,
    db: AsyncSession = Depends(get_db),
):
    """Verify the mini-app identity, upsert the user and return a session token."""
    result = await resolve_or_create_user(db, _identity_payload(request))
    return TelegramAuthResponse(
        token=result["token"],
        expires_at=result["expires_at"],
        created=result["created"],
        user=UserResponse(**result["user"]),
    )


@router.get("/me", response_model=UserResponse)
async def get_current_user(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Get the authenticated user's profile."""
    user = await get_user(db, auth.user_id, auth.telegram_id)
    return UserResponse(**serialize_user(user))


@router.post("/logout")
async def logout(_auth: AuthContext = Depends(get_auth_context)):
    """Frontend-managed logout acknowledgment endpoint."""
    return {"success": True, "message": "Logged out successfully"}
