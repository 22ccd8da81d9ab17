"""Partner directory helpers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.partner import Partner
from services.errors import ValidationError

logger = logging.getLogger(__name__)


DEFAULT_PARTNERS: List[Dict[str, str]] = [
    {"name": "Кофейня на Набережной", "address": "ул. Набережная, 12"},
    {"name": "Teatral Coffee", "address": "ул. Театральная, 5"},
    {"name": "Горка Кофе", "address": "пл. Ворота, 1"},
    {"name": "Кофе и Пермь", "address": "ул. Ленина, 44"},
]


def serialize_partner(partner: Partner) -> Dict[str, Any]:
    return {
        "id": partner.id,
        "name": partner.name,
        "description": partner.description,
        "address": partner.address,
    }


async def list_active_partners(db: AsyncSession) -> List[Partner]:
    result = await db.execute(
        select(Partner).where(Partner.is_active.is_(True)).order_by(Partner.name.asc())
    )
    return list(result.scalars().all())


async def get_active_partner(db: AsyncSession, name: Optional[str]) -> Partner:
    partner_name = str(name or "").strip()
    if not partner_name:
        raise ValidationError("partner_name is required.")
    result = await db.execute(
        select(Partner).where(Partner.name == partner_name, Partner.is_active.is_(True))
    )
    partner = result.scalar_one_or_none()
    if not partner:
        raise ValidationError(f"Unknown partner: {partner_name}")
    return partner


async def ensure_default_partners(db: AsyncSession) -> int:
    """Seed the default directory when the partners table is empty. Returns rows inserted."""
    existing = await db.execute(select(func.count(Partner.id)))
    if int(existing.scalar() or 0) > 0:
        return 0
    db.add_all([Partner(is_active=True, **entry) for entry in DEFAULT_PARTNERS])
    await db.commit()
    logger.info("Seeded %d default partners", len(DEFAULT_PARTNERS))
    return len(DEFAULT_PARTNERS)
