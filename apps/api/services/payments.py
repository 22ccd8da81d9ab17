"""Payment bookkeeping and allowance top-ups."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.sql import func

from config import price_for_units, settings
from models.payment import PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_PENDING, Payment
from services.allowance import credit, current_period_key, monthly_cap, read_remaining
from services.errors import AllowanceCapExceeded, Conflict, NotFound, ValidationError

logger = logging.getLogger(__name__)


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "amount": payment.amount,
        "currency": payment.currency,
        "cups_added": payment.units,
        "status": payment.status,
        "method": payment.method,
        "period": payment.period_key,
        "created_at": payment.created_at.isoformat() if payment.created_at else None,
        "completed_at": payment.completed_at.isoformat() if payment.completed_at else None,
    }


def _require_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be a positive integer.")
    return value


async def record_payment(
    db: AsyncSession,
    user_id: str,
    *,
    amount: int,
    units: int,
    status: str,
    method: str,
    period_key: Optional[str] = None,
) -> Payment:
    """Append a payment row in the caller's transaction."""
    amount = _require_positive_int(amount, "amount")
    units = _require_positive_int(units, "units")
    if status not in {PAYMENT_PENDING, PAYMENT_COMPLETED}:
        raise ValidationError("A new payment must start as pending or completed.")

    payment = Payment(
        user_id=user_id,
        period_key=period_key or current_period_key(),
        amount=amount,
        units=units,
        currency=settings.CURRENCY,
        status=status,
        method=method,
        completed_at=datetime.now(timezone.utc) if status == PAYMENT_COMPLETED else None,
    )
    db.add(payment)
    await db.flush()
    return payment


async def purchase_cups(
    db: AsyncSession,
    user_id: str,
    *,
    units: int,
    method: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Buy ``units`` cups for the current month.

    In instant mode the completed payment and the allowance credit are committed
    together; in deferred mode only a pending payment is stored and the ledger is
    credited later by confirm_payment.
    """
    units = _require_positive_int(units, "units")
    cap = monthly_cap()
    if units > cap:
        raise AllowanceCapExceeded(f"At most {cap} cups can be bought per month.")

    period_key = current_period_key()
    amount = price_for_units(units)
    instant = settings.PAYMENT_MODE == "instant"

    try:
        payment = await record_payment(
            db,
            user_id,
            amount=amount,
            units=units,
            status=PAYMENT_COMPLETED if instant else PAYMENT_PENDING,
            method=method or ("instant" if instant else "provider"),
            period_key=period_key,
        )
        if instant:
            remaining = await credit(db, user_id, period_key, units)
        else:
            remaining = await read_remaining(db, user_id, period_key)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Purchase user=%s units=%d amount=%d status=%s payment=%s",
        user_id,
        units,
        amount,
        payment.status,
        payment.id,
    )
    return {
        "payment_id": payment.id,
        "status": payment.status,
        "amount": amount,
        "units": units,
        "remaining": remaining,
        "month": period_key,
    }


async def get_payment(db: AsyncSession, payment_id: str) -> Payment:
    result = await db.execute(
        select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise NotFound("Payment not found.")
    return payment


async def _mark_failed(db: AsyncSession, payment_id: str, reason: str) -> bool:
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, Payment.status == PAYMENT_PENDING)
        .values(status=PAYMENT_FAILED, failure_reason=reason, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def confirm_payment(
    db: AsyncSession,
    payment_id: str,
    *,
    external_txn_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Move a pending payment to completed and credit its cups exactly once.

    The cups go to the month recorded when the payment was created. Only the
    request whose conditional status update wins performs the credit; confirming
    an already completed payment returns its current state unchanged.
    """
    try:
        result = await db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PAYMENT_PENDING)
            .values(
                status=PAYMENT_COMPLETED,
                external_txn_id=external_txn_id or None,
                completed_at=datetime.now(timezone.utc),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
    except IntegrityError as exc:
        await db.rollback()
        raise Conflict("External transaction id is already attached to another payment.") from exc

    if result.rowcount != 1:
        await db.rollback()
        payment = await get_payment(db, payment_id)
        if payment.status == PAYMENT_COMPLETED:
            return {
                "payment": serialize_payment(payment),
                "remaining": await read_remaining(db, payment.user_id, payment.period_key),
                "already_confirmed": True,
            }
        raise Conflict("Payment has already failed and cannot be confirmed.")

    payment = await get_payment(db, payment_id)
    try:
        remaining = await credit(db, payment.user_id, payment.period_key, payment.units)
    except AllowanceCapExceeded as exc:
        await db.rollback()
        await _mark_failed(db, payment_id, "allowance_cap_exceeded")
        await db.commit()
        logger.warning("Payment %s failed on confirmation: %s", payment_id, exc.message)
        raise Conflict("Confirming this payment would exceed the monthly cup limit.") from exc
    await db.commit()

    payment = await get_payment(db, payment_id)
    logger.info("Payment %s confirmed, user=%s remaining=%d", payment_id, payment.user_id, remaining)
    return {"payment": serialize_payment(payment), "remaining": remaining, "already_confirmed": False}


async def fail_payment(db: AsyncSession, payment_id: str, *, reason: Optional[str] = None) -> Dict[str, Any]:
    """Move a pending payment to failed. Failing twice is a no-op."""
    if await _mark_failed(db, payment_id, (reason or "provider_declined")[:200]):
        await db.commit()
        payment = await get_payment(db, payment_id)
        logger.info("Payment %s marked failed (%s)", payment_id, payment.failure_reason)
        return {"payment": serialize_payment(payment)}

    await db.rollback()
    payment = await get_payment(db, payment_id)
    if payment.status == PAYMENT_COMPLETED:
        raise Conflict("Payment is already completed.")
    return {"payment": serialize_payment(payment)}


async def list_payments(db: AsyncSession, user_id: str, *, limit: int) -> List[Payment]:
    result = await db.execute(
        select(Payment)
        .where(Payment.user_id == user_id)
        .order_by(Payment.created_at.desc())
        .limit(max(int(limit), 1))
    )
    return list(result.scalars().all())


async def has_completed_payment(db: AsyncSession, user_id: str, period_key: str) -> bool:
    result = await db.execute(
        select(Payment.id)
        .where(
            Payment.user_id == user_id,
            Payment.period_key == period_key,
            Payment.status == PAYMENT_COMPLETED,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None
