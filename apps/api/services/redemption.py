"""Redemption code issuance."""

from __future__ import annotations

import logging
import secrets
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.redemption_code import RedemptionCode
from services.allowance import current_period_key, debit, read_remaining
from services.errors import CodeGenerationExhausted, Conflict, InsufficientAllowance
from services.partners import get_active_partner

logger = logging.getLogger(__name__)

# No 0/O or 1/I/L.
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def generate_code(length: Optional[int] = None) -> str:
    size = int(length or settings.CODE_LENGTH)
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(size))


def serialize_code(row: RedemptionCode) -> Dict[str, Any]:
    return {
        "code": row.code,
        "partner_name": row.partner_name,
        "is_used": bool(row.is_used),
        "used_at": row.used_at.isoformat() if row.used_at else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


async def _code_exists(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(RedemptionCode.id).where(RedemptionCode.code == code))
    return result.scalar_one_or_none() is not None


async def _insert_unique_code(
    db: AsyncSession,
    *,
    user_id: str,
    partner_name: str,
    period_key: str,
    generator: Callable[[], str],
) -> str:
    attempts = max(int(settings.CODE_MAX_ATTEMPTS), 1)
    for _ in range(attempts):
        candidate = generator()
        if await _code_exists(db, candidate):
            continue
        try:
            async with db.begin_nested():
                db.add(
                    RedemptionCode(
                        user_id=user_id,
                        code=candidate,
                        partner_name=partner_name,
                        period_key=period_key,
                        is_used=False,
                    )
                )
        except IntegrityError:
            # Same code inserted by a concurrent request; try another one.
            continue
        return candidate
    raise CodeGenerationExhausted()


async def issue_code(
    db: AsyncSession,
    user_id: str,
    partner_name: Optional[str],
    *,
    generator: Callable[[], str] = generate_code,
) -> Dict[str, Any]:
    """
    Spend one cup of the current month on a new single-use code for ``partner_name``.

    The debit and the code row are committed together or not at all. A caller whose
    read saw a free cup but whose conditional debit matched nothing lost a race with
    another redemption and gets Conflict.
    """
    partner = await get_active_partner(db, partner_name)
    period_key = current_period_key()

    if await read_remaining(db, user_id, period_key) <= 0:
        raise InsufficientAllowance()

    try:
        try:
            remaining = await debit(db, user_id, period_key)
        except InsufficientAllowance as exc:
            raise Conflict("Your last cup was just used by another request.") from exc
        code = await _insert_unique_code(
            db,
            user_id=user_id,
            partner_name=partner.name,
            period_key=period_key,
            generator=generator,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("Issued code user=%s partner=%s remaining=%d", user_id, partner.name, remaining)
    return {"code": code, "partner_name": partner.name, "remaining": remaining}


async def list_codes(db: AsyncSession, user_id: str, *, limit: int) -> List[RedemptionCode]:
    result = await db.execute(
        select(RedemptionCode)
        .where(RedemptionCode.user_id == user_id)
        .order_by(RedemptionCode.created_at.desc())
        .limit(max(int(limit), 1))
    )
    return list(result.scalars().all())
