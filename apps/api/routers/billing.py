"""Purchase and payment-provider callback router."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context, require_payment_webhook
from routers.rate_limit import rate_limit
from services.identity import get_user
from services.payments import confirm_payment, fail_payment, purchase_cups

router = APIRouter()
logger = logging.getLogger(__name__)


class PurchaseRequest(BaseModel):
    units: int = Field(ge=1, le=1000, validation_alias=AliasChoices("units", "cups"))
    method: Optional[str] = Field(default=None, max_length=40)


class ConfirmPaymentRequest(BaseModel):
    external_txn_id: Optional[str] = Field(default=None, max_length=200)


class FailPaymentRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=200)


@router.post("/purchase")
async def purchase(
    request: PurchaseRequest,
    _rate_limit: None = Depends(rate_limit("purchase", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    user = await get_user(db, auth.user_id, auth.telegram_id)
    result = await purchase_cups(db, user.id, units=request.units, method=request.method)
    return {"success": True, **result}


@router.post("/payments/{payment_id}/confirm", dependencies=[Depends(require_payment_webhook)])
async def confirm(
    payment_id: str,
    request: Optional[ConfirmPaymentRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """Provider callback: payment captured. Safe to deliver more than once."""
    external_txn_id = request.external_txn_id if request else None
    result = await confirm_payment(db, payment_id, external_txn_id=external_txn_id)
    return {"success": True, **result}


@router.post("/payments/{payment_id}/fail", dependencies=[Depends(require_payment_webhook)])
async def fail(
    payment_id: str,
    request: Optional[FailPaymentRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """Provider callback: payment declined or cancelled."""
    result = await fail_payment(db, payment_id, reason=request.reason if request else None)
    return {"success": True, **result}
