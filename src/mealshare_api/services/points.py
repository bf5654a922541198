"""Dining points balances."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.db.upsert import insert_if_absent
from mealshare_api.models.points import PointsBalance


async def get_or_create_balance(session: AsyncSession, user_id: UUID) -> PointsBalance:
    """Return the user's balance row, creating an empty one on first use.

    Safe against a concurrent first use: the losing insert is a no-op.
    """

    stmt = select(PointsBalance).where(PointsBalance.user_id == user_id)
    balance = (await session.execute(stmt)).scalar_one_or_none()
    if balance is not None:
        return balance

    await session.execute(
        insert_if_absent(
            session,
            PointsBalance,
            {"user_id": user_id, "balance": 0},
            index_elements=[PointsBalance.user_id],
        )
    )
    await session.commit()
    return (await session.execute(stmt)).scalar_one()


__all__ = ["get_or_create_balance"]
