"""Telegram identity normalization and user upsert-on-login."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User
from services.allowance import current_period_key, get_or_create_period
from services.errors import NotFound, Unauthorized, ValidationError
from services.session_token import create_session_token

logger = logging.getLogger(__name__)


@dataclass
class TelegramIdentity:
    telegram_id: int
    first_name: str
    last_name: Optional[str] = None
    username: Optional[str] = None
    language_code: Optional[str] = None


def _clean(value: Any) -> Optional[str]:
    text = str(value or "").strip()
    return text or None


def normalize_handle(value: Any) -> Optional[str]:
    """Strip a leading @ and characters Telegram does not allow in usernames."""
    text = _clean(value)
    if not text:
        return None
    text = re.sub(r"[^A-Za-z0-9_]+", "", text.lstrip("@"))
    return text or None


def normalize_language(value: Any) -> Optional[str]:
    """Collapse IETF tags to their primary language (``en-US`` -> ``en``)."""
    text = _clean(value)
    if not text:
        return None
    return re.split(r"[-_]", text.lower(), maxsplit=1)[0][:8] or None


def display_name(first_name: Optional[str], last_name: Optional[str], username: Optional[str], telegram_id: int) -> str:
    name = " ".join(part for part in (first_name, last_name) if part).strip()
    if name:
        return name
    if username:
        return username
    return str(telegram_id)


def parse_identity(payload: Mapping[str, Any]) -> TelegramIdentity:
    """Validate an external identity payload (Telegram ``user`` object)."""
    raw_id = payload.get("id")
    if raw_id is None or isinstance(raw_id, bool) or str(raw_id).strip() == "":
        raise ValidationError("User id is required.")
    if isinstance(raw_id, float) and not raw_id.is_integer():
        raise ValidationError("User id must be a whole number.")
    try:
        telegram_id = int(raw_id)
    except (TypeError, ValueError) as exc:
        raise ValidationError("User id must be numeric.") from exc
    if telegram_id <= 0:
        raise ValidationError("User id must be positive.")

    first_name = _clean(payload.get("first_name"))
    if not first_name:
        raise ValidationError("User first_name is required.")

    return TelegramIdentity(
        telegram_id=telegram_id,
        first_name=first_name,
        last_name=_clean(payload.get("last_name")),
        username=normalize_handle(payload.get("username")),
        language_code=normalize_language(payload.get("language_code")),
    )


def _merge_fields(user: User, identity: TelegramIdentity) -> bool:
    changed = False
    for field in ("first_name", "last_name", "username", "language_code"):
        incoming = getattr(identity, field)
        # Telegram omits optional fields; keep what we already know.
        if incoming and getattr(user, field) != incoming:
            setattr(user, field, incoming)
            changed = True
    name = display_name(user.first_name, user.last_name, user.username, user.telegram_id)
    if user.name != name:
        user.name = name
        changed = True
    return changed


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "telegram_id": user.telegram_id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "username": user.username,
        "language_code": user.language_code,
        "name": user.name,
    }


async def resolve_or_create_user(db: AsyncSession, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Find or create the user behind an identity payload and issue a session token.

    New users also get an empty allowance row for the current month.
    """
    identity = parse_identity(payload)
    now = datetime.now(timezone.utc)

    result = await db.execute(select(User).where(User.telegram_id == identity.telegram_id))
    user = result.scalar_one_or_none()
    created = user is None

    if created:
        user = User(
            telegram_id=identity.telegram_id,
            first_name=identity.first_name,
            last_name=identity.last_name,
            username=identity.username,
            language_code=identity.language_code,
            name=display_name(identity.first_name, identity.last_name, identity.username, identity.telegram_id),
            last_login_at=now,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError:
            # A concurrent first login for the same telegram id won the insert.
            await db.rollback()
            result = await db.execute(select(User).where(User.telegram_id == identity.telegram_id))
            user = result.scalar_one()
            created = False

    if created:
        await get_or_create_period(db, user.id, current_period_key(now))
    else:
        if _merge_fields(user, identity):
            logger.debug("Refreshed profile fields for user %s", user.id)
        user.last_login_at = now

    await db.commit()
    if created:
        logger.info("Created user %s for telegram id %s", user.id, user.telegram_id)

    session = create_session_token(user.id, user.telegram_id)
    return {
        "created": created,
        "user": serialize_user(user),
        "token": session["token"],
        "expires_at": session["expires_at"],
    }


async def get_user(db: AsyncSession, user_id: str, telegram_id: Optional[int] = None) -> User:
    """Load a user; when the session carried a Telegram id it must match the stored one."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFound("User not found.")
    if telegram_id is not None and user.telegram_id != telegram_id:
        logger.warning("Session for user %s carries a foreign telegram id", user_id)
        raise Unauthorized("Session does not belong to this Telegram account.")
    return user
