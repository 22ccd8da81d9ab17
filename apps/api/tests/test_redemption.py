import itertools

import pytest
from sqlalchemy import func, select

from config import settings
from models.redemption_code import RedemptionCode
from services import redemption
from services.allowance import credit, current_period_key, read_remaining
from services.errors import CodeGenerationExhausted, Conflict, InsufficientAllowance, ValidationError
from services.redemption import CODE_ALPHABET, generate_code, issue_code


async def _fund(session_maker, user_id: str, units: int) -> None:
    async with session_maker() as session:
        await credit(session, user_id, current_period_key(), units)
        await session.commit()


def test_alphabet_excludes_confusable_characters():
    for char in "0O1IL":
        assert char not in CODE_ALPHABET
    code = generate_code()
    assert len(code) == 6
    assert set(code) <= set(CODE_ALPHABET)


@pytest.mark.asyncio
async def test_issue_code_consumes_one_cup(session_maker, make_user):
    user_id = await make_user()
    await _fund(session_maker, user_id, 2)

    async with session_maker() as session:
        result = await issue_code(session, user_id, "Partner A")

    assert result["remaining"] == 1
    assert result["partner_name"] == "Partner A"
    assert len(result["code"]) == 6
    assert set(result["code"]) <= set(CODE_ALPHABET)

    async with session_maker() as session:
        row = (await session.execute(select(RedemptionCode).where(RedemptionCode.code == result["code"]))).scalar_one()
    assert row.user_id == user_id
    assert row.is_used is False


@pytest.mark.asyncio
async def test_issue_without_cups_fails(session_maker, make_user):
    user_id = await make_user()
    async with session_maker() as session:
        with pytest.raises(InsufficientAllowance):
            await issue_code(session, user_id, "Partner A")


@pytest.mark.asyncio
async def test_unknown_or_inactive_partner_is_rejected(session_maker, make_user):
    user_id = await make_user()
    await _fund(session_maker, user_id, 1)
    async with session_maker() as session:
        with pytest.raises(ValidationError):
            await issue_code(session, user_id, "Nonexistent Cafe")
        with pytest.raises(ValidationError):
            await issue_code(session, user_id, "Closed Cafe")
        assert await read_remaining(session, user_id, current_period_key()) == 1


@pytest.mark.asyncio
async def test_codes_are_unique_across_users(session_maker, make_user):
    first_user = await make_user(2001, "First")
    second_user = await make_user(2002, "Second")
    await _fund(session_maker, first_user, 12)
    await _fund(session_maker, second_user, 12)

    codes = []
    for user_id in itertools.islice(itertools.cycle([first_user, second_user]), 24):
        async with session_maker() as session:
            codes.append((await issue_code(session, user_id, "Teatral Coffee"))["code"])

    assert len(set(codes)) == len(codes)


@pytest.mark.asyncio
async def test_collision_is_retried_with_new_candidate(session_maker, make_user):
    user_id = await make_user()
    await _fund(session_maker, user_id, 2)

    async with session_maker() as session:
        first = await issue_code(session, user_id, "Partner A", generator=lambda: "AAAAAA")

    candidates = iter(["AAAAAA", "AAAAAA", "BBBBBB"])
    async with session_maker() as session:
        second = await issue_code(session, user_id, "Partner A", generator=lambda: next(candidates))

    assert first["code"] == "AAAAAA"
    assert second["code"] == "BBBBBB"
    assert second["remaining"] == 0


@pytest.mark.asyncio
async def test_exhausted_generation_rolls_back_the_debit(session_maker, make_user, monkeypatch):
    monkeypatch.setattr(settings, "CODE_MAX_ATTEMPTS", 3)
    user_id = await make_user()
    await _fund(session_maker, user_id, 2)

    async with session_maker() as session:
        await issue_code(session, user_id, "Partner A", generator=lambda: "CCCCCC")

    async with session_maker() as session:
        with pytest.raises(CodeGenerationExhausted):
            await issue_code(session, user_id, "Partner A", generator=lambda: "CCCCCC")

    async with session_maker() as session:
        assert await read_remaining(session, user_id, current_period_key()) == 1
        count = (await session.execute(select(func.count(RedemptionCode.id)))).scalar()
    assert count == 1


@pytest.mark.asyncio
async def test_losing_a_redemption_race_is_a_conflict(session_maker, make_user, monkeypatch):
    user_id = await make_user()
    await _fund(session_maker, user_id, 1)

    async with session_maker() as session:
        await issue_code(session, user_id, "Partner A")

    async def stale_read(db, user_id, period_key):
        # What a concurrent request saw before the winner committed.
        return 1

    monkeypatch.setattr(redemption, "read_remaining", stale_read)
    async with session_maker() as session:
        with pytest.raises(Conflict):
            await issue_code(session, user_id, "Partner A")

    async with session_maker() as session:
        assert await read_remaining(session, user_id, current_period_key()) == 0
        count = (await session.execute(select(func.count(RedemptionCode.id)))).scalar()
    assert count == 1
