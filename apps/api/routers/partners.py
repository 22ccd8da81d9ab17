"""Partner directory endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.partners import list_active_partners, serialize_partner

router = APIRouter()


@router.get("/partners")
async def partners(db: AsyncSession = Depends(get_db)):
    return [serialize_partner(partner) for partner in await list_active_partners(db)]
