from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.api.dependencies.session import require_caller
from mealshare_api.db.session import get_session
from mealshare_api.models.user import User
from mealshare_api.services.points import get_or_create_balance

router = APIRouter(prefix="/points", tags=["points"])


class PointsBalanceResponse(BaseModel):
    balance: int


@router.get("", response_model=PointsBalanceResponse)
async def get_points_balance(
    current_user: User = Depends(require_caller),
    session: AsyncSession = Depends(get_session),
) -> PointsBalanceResponse:
    """Current dining points balance, creating an empty balance on first read."""

    balance = await get_or_create_balance(session, current_user.id)
    return PointsBalanceResponse(balance=balance.balance)
