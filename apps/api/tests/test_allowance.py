import pytest
from sqlalchemy import func, select

from models.allowance_period import AllowancePeriod
from models.payment import Payment
from services.allowance import credit, current_period_key, debit, get_or_create_period, read_remaining
from services.errors import AllowanceCapExceeded, InsufficientAllowance
from services.payments import purchase_cups


@pytest.mark.asyncio
async def test_get_or_create_period_is_idempotent(session_maker, make_user):
    user_id = await make_user()
    async with session_maker() as session:
        first = await get_or_create_period(session, user_id, "2030-01")
        second = await get_or_create_period(session, user_id, "2030-01")
        await session.commit()
        assert first.id == second.id
        assert first.remaining == 0

    async with session_maker() as session:
        rows = (
            await session.execute(
                select(func.count(AllowancePeriod.id)).where(AllowancePeriod.period_key == "2030-01")
            )
        ).scalar()
    assert rows == 1


@pytest.mark.asyncio
async def test_purchase_credits_and_appends_one_payment(session_maker, make_user):
    user_id = await make_user()
    period_key = current_period_key()

    async with session_maker() as session:
        before = await read_remaining(session, user_id, period_key)
        result = await purchase_cups(session, user_id, units=5)

    async with session_maker() as session:
        after = await read_remaining(session, user_id, period_key)
        payments = (await session.execute(select(Payment).where(Payment.user_id == user_id))).scalars().all()

    assert after == before + 5
    assert result["remaining"] == after
    assert len(payments) == 1
    assert payments[0].units == 5
    assert payments[0].amount == 833
    assert payments[0].status == "completed"


@pytest.mark.asyncio
async def test_credit_beyond_cap_is_rejected_and_nothing_is_recorded(session_maker, make_user):
    user_id = await make_user()
    period_key = current_period_key()

    async with session_maker() as session:
        await purchase_cups(session, user_id, units=10)

    async with session_maker() as session:
        with pytest.raises(AllowanceCapExceeded):
            await purchase_cups(session, user_id, units=3)

    async with session_maker() as session:
        assert await read_remaining(session, user_id, period_key) == 10
        payments = (await session.execute(select(func.count(Payment.id)))).scalar()
    assert payments == 1


@pytest.mark.asyncio
async def test_debit_at_zero_fails_and_never_goes_negative(session_maker, make_user):
    user_id = await make_user()
    period_key = current_period_key()

    async with session_maker() as session:
        with pytest.raises(InsufficientAllowance):
            await debit(session, user_id, period_key)
        await session.rollback()
        assert await read_remaining(session, user_id, period_key) == 0


@pytest.mark.asyncio
async def test_mixed_credit_debit_sequence_stays_within_bounds(session_maker, make_user):
    user_id = await make_user()
    period_key = current_period_key()
    operations = ["credit:3", "debit", "debit", "debit", "debit", "credit:12", "credit:1", "debit", "credit:2"]

    async with session_maker() as session:
        for operation in operations:
            try:
                if operation.startswith("credit"):
                    await credit(session, user_id, period_key, int(operation.split(":")[1]))
                else:
                    await debit(session, user_id, period_key)
                await session.commit()
            except (InsufficientAllowance, AllowanceCapExceeded):
                await session.rollback()
            remaining = await read_remaining(session, user_id, period_key)
            assert 0 <= remaining <= 12

    async with session_maker() as session:
        assert await read_remaining(session, user_id, period_key) == 11


@pytest.mark.asyncio
async def test_second_debit_from_stale_read_fails(session_maker, make_user):
    user_id = await make_user()
    period_key = current_period_key()
    async with session_maker() as session:
        await credit(session, user_id, period_key, 1)
        await session.commit()

    async with session_maker() as first, session_maker() as second:
        # Both requests observe one cup before either writes.
        assert await read_remaining(first, user_id, period_key) == 1
        assert await read_remaining(second, user_id, period_key) == 1

        assert await debit(first, user_id, period_key) == 0
        await first.commit()

        with pytest.raises(InsufficientAllowance):
            await debit(second, user_id, period_key)
        await second.rollback()

    async with session_maker() as session:
        assert await read_remaining(session, user_id, period_key) == 0
