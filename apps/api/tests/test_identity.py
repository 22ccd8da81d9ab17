import pytest
from sqlalchemy import func, select

from models.allowance_period import AllowancePeriod
from models.user import User
from services.allowance import current_period_key
from services.errors import ValidationError
from services.identity import normalize_handle, normalize_language, parse_identity, resolve_or_create_user
from services.session_token import decode_session_token


def test_parse_identity_requires_id_and_first_name():
    with pytest.raises(ValidationError):
        parse_identity({"first_name": "Anna"})
    with pytest.raises(ValidationError):
        parse_identity({"id": 10})
    with pytest.raises(ValidationError):
        parse_identity({"id": "abc", "first_name": "Anna"})
    with pytest.raises(ValidationError):
        parse_identity({"id": 10.7, "first_name": "Anna"})
    with pytest.raises(ValidationError):
        parse_identity({"id": "10.7", "first_name": "Anna"})
    assert parse_identity({"id": 10.0, "first_name": "Anna"}).telegram_id == 10


def test_identity_fields_are_normalized():
    identity = parse_identity({"id": "10", "first_name": " Anna ", "username": "@anna_k", "language_code": "ru-RU"})
    assert identity.telegram_id == 10
    assert identity.first_name == "Anna"
    assert identity.username == "anna_k"
    assert identity.language_code == "ru"
    assert normalize_handle("") is None
    assert normalize_language(None) is None


@pytest.mark.asyncio
async def test_first_login_creates_user_and_empty_period(session_maker):
    async with session_maker() as session:
        result = await resolve_or_create_user(session, {"id": 555, "first_name": "Oleg", "username": "oleg"})

    assert result["created"] is True
    assert result["user"]["name"] == "Oleg"
    payload = decode_session_token(result["token"])
    assert payload["sub"] == result["user"]["id"]
    assert payload["tg"] == 555

    async with session_maker() as session:
        period = (
            await session.execute(
                select(AllowancePeriod).where(AllowancePeriod.user_id == result["user"]["id"])
            )
        ).scalar_one()
    assert period.period_key == current_period_key()
    assert period.remaining == 0


@pytest.mark.asyncio
async def test_repeat_login_merges_fields_without_erasing(session_maker):
    async with session_maker() as session:
        first = await resolve_or_create_user(
            session,
            {"id": 556, "first_name": "Maria", "last_name": "Petrova", "username": "masha", "language_code": "ru"},
        )
    async with session_maker() as session:
        second = await resolve_or_create_user(session, {"id": 556, "first_name": "Masha", "username": ""})

    assert second["created"] is False
    assert second["user"]["id"] == first["user"]["id"]
    assert second["user"]["first_name"] == "Masha"
    assert second["user"]["last_name"] == "Petrova"
    assert second["user"]["username"] == "masha"
    assert second["user"]["language_code"] == "ru"
    assert second["user"]["name"] == "Masha Petrova"

    async with session_maker() as session:
        count = (await session.execute(select(func.count(User.id)))).scalar()
        periods = (await session.execute(select(func.count(AllowancePeriod.id)))).scalar()
    assert count == 1
    assert periods == 1
