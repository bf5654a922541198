import pytest
from sqlalchemy import select, update

from mealshare_api.db.unit_of_work import UnitOfWork
from mealshare_api.models.points import PointsBalance


class _Mismatch(Exception):
    pass


@pytest.mark.asyncio
async def test_commit_applies_all_operations(session_factory, seed) -> None:
    async with session_factory() as session:
        user = await seed.user(session, "uow@example.com")
        user_id = user.id

        uow = UnitOfWork(session)
        uow.add("points.create", PointsBalance(user_id=user_id, balance=0))
        uow.stage(
            "points.credit",
            update(PointsBalance)
            .where(PointsBalance.user_id == user_id)
            .values(balance=PointsBalance.balance + 7)
            .execution_options(synchronize_session=False),
            expect_rowcount=1,
        )
        assert [operation.label for operation in uow.staged] == ["points.create", "points.credit"]
        await uow.commit()
        assert uow.staged == ()

    async with session_factory() as session:
        balance = await session.scalar(select(PointsBalance.balance).where(PointsBalance.user_id == user_id))
        assert balance == 7


@pytest.mark.asyncio
async def test_rowcount_mismatch_rolls_back_earlier_operations(session_factory, seed) -> None:
    async with session_factory() as session:
        user = await seed.user(session, "uow@example.com", balance=3)
        user_id = user.id

        uow = UnitOfWork(session)
        uow.stage(
            "points.credit",
            update(PointsBalance)
            .where(PointsBalance.user_id == user_id)
            .values(balance=PointsBalance.balance + 10)
            .execution_options(synchronize_session=False),
            expect_rowcount=1,
        )
        uow.stage(
            "points.debit",
            update(PointsBalance)
            .where(PointsBalance.user_id == user_id, PointsBalance.balance >= 100)
            .values(balance=PointsBalance.balance - 100)
            .execution_options(synchronize_session=False),
            expect_rowcount=1,
            on_mismatch=_Mismatch,
        )

        with pytest.raises(_Mismatch):
            await uow.commit()

    async with session_factory() as session:
        balance = await session.scalar(select(PointsBalance.balance).where(PointsBalance.user_id == user_id))
        assert balance == 3
