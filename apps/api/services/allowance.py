"""Monthly cup allowance ledger."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import func

from config import settings
from models.allowance_period import AllowancePeriod
from services.errors import AllowanceCapExceeded, InsufficientAllowance, ValidationError

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def current_period_key(now: Optional[datetime] = None) -> str:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(ZoneInfo(settings.ALLOWANCE_TIMEZONE)).strftime("%Y-%m")


def monthly_cap() -> int:
    return max(int(settings.MONTHLY_CUP_CAP), 1)


async def get_or_create_period(db: AsyncSession, user_id: str, period_key: str) -> AllowancePeriod:
    """Return the (user, month) row, inserting it with remaining=0 if missing. Does not commit."""
    query = (
        select(AllowancePeriod)
        .where(AllowancePeriod.user_id == user_id, AllowancePeriod.period_key == period_key)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(query)
    period = result.scalar_one_or_none()
    if period:
        return period

    values = {"id": str(uuid.uuid4()), "user_id": user_id, "period_key": period_key, "remaining": 0}
    dialect = db.get_bind().dialect.name
    if dialect in _UPSERT_DIALECTS:
        # Concurrent first access in the same month collapses onto one row.
        await db.execute(
            _UPSERT_DIALECTS[dialect](AllowancePeriod)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["user_id", "period_key"])
        )
    else:
        try:
            async with db.begin_nested():
                db.add(AllowancePeriod(**values))
        except IntegrityError:
            logger.debug("Allowance period %s/%s created concurrently", user_id, period_key)

    result = await db.execute(query)
    return result.scalar_one()


async def read_remaining(db: AsyncSession, user_id: str, period_key: str) -> int:
    result = await db.execute(
        select(AllowancePeriod.remaining).where(
            AllowancePeriod.user_id == user_id,
            AllowancePeriod.period_key == period_key,
        )
    )
    return int(result.scalar_one_or_none() or 0)


async def credit(db: AsyncSession, user_id: str, period_key: str, units: int) -> int:
    """
    Add ``units`` to the month's allowance in the caller's transaction.

    The increment is a single conditional UPDATE so concurrent credits cannot push
    the row past the monthly cap. Raises AllowanceCapExceeded without changing
    anything when the cap would be exceeded. Returns the new remaining count.
    """
    units = int(units)
    if units <= 0:
        raise ValidationError("units must be a positive integer.")
    cap = monthly_cap()
    if units > cap:
        raise AllowanceCapExceeded(f"At most {cap} cups can be held per month.")

    await get_or_create_period(db, user_id, period_key)
    result = await db.execute(
        update(AllowancePeriod)
        .where(
            AllowancePeriod.user_id == user_id,
            AllowancePeriod.period_key == period_key,
            AllowancePeriod.remaining + units <= cap,
        )
        .values(remaining=AllowancePeriod.remaining + units, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        remaining = await read_remaining(db, user_id, period_key)
        raise AllowanceCapExceeded(
            f"Purchase would exceed the monthly limit of {cap} cups ({remaining} left, {cap - remaining} can be added)."
        )
    return await read_remaining(db, user_id, period_key)


async def debit(db: AsyncSession, user_id: str, period_key: str) -> int:
    """
    Take exactly one unit from the month's allowance in the caller's transaction.

    Raises InsufficientAllowance and leaves the row untouched when nothing is left.
    Returns the new remaining count.
    """
    result = await db.execute(
        update(AllowancePeriod)
        .where(
            AllowancePeriod.user_id == user_id,
            AllowancePeriod.period_key == period_key,
            AllowancePeriod.remaining > 0,
        )
        .values(remaining=AllowancePeriod.remaining - 1, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientAllowance()
    return await read_remaining(db, user_id, period_key)
