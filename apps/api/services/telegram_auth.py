"""Telegram WebApp initData verification."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl

from config import settings
from services.errors import Unauthorized, ValidationError


def _secret_key(bot_token: str) -> bytes:
    return hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()


def compute_init_data_hash(fields: Dict[str, str], bot_token: str) -> str:
    """Return the hex signature Telegram attaches to initData ``fields`` (without ``hash``)."""
    data_check_string = "\n".join(f"{key}={value}" for key, value in sorted(fields.items()))
    return hmac.new(_secret_key(bot_token), data_check_string.encode(), hashlib.sha256).hexdigest()


def _parse(init_data: str) -> Dict[str, str]:
    try:
        return dict(parse_qsl(init_data, keep_blank_values=True, strict_parsing=True))
    except ValueError as exc:
        raise Unauthorized("Malformed initData.") from exc


def _extract_user(fields: Dict[str, str]) -> Dict[str, Any]:
    raw_user = fields.get("user")
    if not raw_user:
        raise ValidationError("initData does not contain a user.")
    try:
        user = json.loads(raw_user)
    except ValueError as exc:
        raise ValidationError("initData user is not valid JSON.") from exc
    if not isinstance(user, dict):
        raise ValidationError("initData user must be an object.")
    return user


def verify_init_data(
    init_data: str,
    bot_token: str,
    *,
    max_age_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Check the initData signature and freshness, returning the embedded user object.
    """
    if not init_data:
        raise Unauthorized("initData is required.")
    fields = _parse(init_data)
    received_hash = fields.pop("hash", None)
    if not received_hash:
        raise Unauthorized("initData is not signed.")

    expected_hash = compute_init_data_hash(fields, bot_token)
    if not hmac.compare_digest(expected_hash, received_hash):
        raise Unauthorized("Invalid initData signature.")

    max_age = settings.TELEGRAM_INIT_DATA_MAX_AGE_SECONDS if max_age_seconds is None else max_age_seconds
    if max_age and max_age > 0:
        try:
            auth_date = int(fields.get("auth_date", "0"))
        except ValueError as exc:
            raise Unauthorized("initData auth_date is invalid.") from exc
        current = time.time() if now is None else now
        if auth_date <= 0 or current - auth_date > max_age:
            raise Unauthorized("initData has expired.")

    return _extract_user(fields)


def parse_unsigned_init_data(init_data: str) -> Dict[str, Any]:
    """Read the user object from initData without checking the signature."""
    return _extract_user(_parse(init_data))
