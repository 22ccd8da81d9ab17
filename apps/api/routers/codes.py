"""Redemption code issuance endpoint."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.identity import get_user
from services.redemption import issue_code

router = APIRouter()
logger = logging.getLogger(__name__)


class GenerateCodeRequest(BaseModel):
    partner_name: Optional[str] = Field(
        default=None,
        max_length=200,
        validation_alias=AliasChoices("partner_name", "partnerName"),
    )


@router.post("/codes/generate")
async def generate_code(
    request: GenerateCodeRequest,
    _rate_limit: None = Depends(rate_limit("codes_generate", limit=30, window_seconds=600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    """Spend one cup on a single-use code for the chosen partner."""
    user = await get_user(db, auth.user_id, auth.telegram_id)
    result = await issue_code(db, user.id, request.partner_name)
    return {"success": True, **result}
