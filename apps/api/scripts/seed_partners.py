"""Seed the default partner directory into an empty database."""

import asyncio
import os
import sys

# Add parent dir to path to find app modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import Store
from services.partners import ensure_default_partners


async def seed_partners_async() -> int:
    print("☕ Seeding default partners...")
    store = await Store(settings.DATABASE_URL).open()
    try:
        await store.create_schema()
        async with store.session() as session:
            inserted = await ensure_default_partners(session)
    finally:
        await store.close()

    if inserted:
        print(f"✅ Inserted {inserted} partners.")
    else:
        print("ℹ️ Partners table already populated, nothing to do.")
    return inserted


if __name__ == "__main__":
    asyncio.run(seed_partners_async())
