"""User state and history endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.allowance import current_period_key, get_or_create_period, monthly_cap
from services.identity import get_user
from services.partners import list_active_partners, serialize_partner
from services.payments import has_completed_payment, list_payments, serialize_payment
from services.redemption import list_codes, serialize_code

router = APIRouter()


@router.get("/user/state")
async def user_state(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Current month's allowance plus the partner directory and recent activity."""
    user = await get_user(db, auth.user_id, auth.telegram_id)
    period_key = current_period_key()
    period = await get_or_create_period(db, user.id, period_key)
    remaining = int(period.remaining)
    await db.commit()

    recent = max(int(settings.STATE_RECENT_LIMIT), 1)
    partners = await list_active_partners(db)
    codes = await list_codes(db, user.id, limit=recent)
    payments = await list_payments(db, user.id, limit=recent)
    return {
        "success": True,
        "month": period_key,
        "remaining": remaining,
        "cap": monthly_cap(),
        "purchased": await has_completed_payment(db, user.id, period_key),
        "partners": [serialize_partner(partner) for partner in partners],
        "recent_codes": [serialize_code(code) for code in codes],
        "recent_payments": [serialize_payment(payment) for payment in payments],
    }


@router.get("/history")
async def history(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """All issued codes and payments, newest first."""
    user = await get_user(db, auth.user_id, auth.telegram_id)
    limit = max(int(settings.HISTORY_LIMIT), 1)
    codes = await list_codes(db, user.id, limit=limit)
    payments = await list_payments(db, user.id, limit=limit)
    return {
        "success": True,
        "codes": [serialize_code(code) for code in codes],
        "payments": [serialize_payment(payment) for payment in payments],
    }
