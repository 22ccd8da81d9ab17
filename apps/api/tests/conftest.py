import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base
from main import app
from models.partner import Partner
from routers import rate_limit
from services.identity import resolve_or_create_user
from services.partners import ensure_default_partners


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture(autouse=True)
def pass_settings(monkeypatch):
    """Pin the settings tests rely on, regardless of the developer's .env."""
    monkeypatch.setattr(settings, "MONTHLY_CUP_CAP", 12)
    monkeypatch.setattr(settings, "PASS_PRICE", 2000)
    monkeypatch.setattr(settings, "PAYMENT_MODE", "instant")
    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", "")
    monkeypatch.setattr(settings, "TELEGRAM_BOT_TOKEN", "")
    monkeypatch.setattr(settings, "TELEGRAM_ALLOW_UNSIGNED", True)
    monkeypatch.setattr(settings, "ALLOWANCE_TIMEZONE", "UTC")
    monkeypatch.setattr(settings, "CODE_LENGTH", 6)
    monkeypatch.setattr(settings, "CODE_MAX_ATTEMPTS", 20)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "coffeepass.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with maker() as session:
        await ensure_default_partners(session)
        session.add(Partner(name="Partner A", address="Test street, 1", is_active=True))
        session.add(Partner(name="Closed Cafe", address="Nowhere", is_active=False))
        await session.commit()

    yield maker
    await engine.dispose()


@pytest.fixture
def make_user(session_maker):
    """Create (or log in) a user through the identity resolver and return its internal id."""

    async def _make_user(telegram_id: int = 1001, first_name: str = "Anna") -> str:
        async with session_maker() as session:
            result = await resolve_or_create_user(session, {"id": telegram_id, "first_name": first_name})
        return result["user"]["id"]

    return _make_user
