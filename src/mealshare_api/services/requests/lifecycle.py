"""Creating and reading help requests."""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.models.help_request import HelpRequest, HelpRequestStatusEnum
from mealshare_api.models.user import User
from mealshare_api.services.errors import ForbiddenError, InvalidInputError, NotFoundError


class HelpRequestService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_request(self, requester: User, points_requested: int, location: str) -> HelpRequest:
        if isinstance(points_requested, bool) or not isinstance(points_requested, int) or points_requested <= 0:
            raise InvalidInputError("pointsRequested must be a positive integer")
        location = (location or "").strip()
        if not location:
            raise InvalidInputError("location is required")

        request = HelpRequest(
            requester_id=requester.id,
            points_requested=points_requested,
            location=location,
            status=HelpRequestStatusEnum.PENDING,
        )
        self._session.add(request)
        await self._session.commit()
        await self._session.refresh(request)
        logger.info(
            "Help request created",
            request_id=str(request.id),
            requester_id=str(requester.id),
            points_requested=points_requested,
        )
        return request

    async def get_request(self, request_id: UUID, viewer_id: UUID) -> HelpRequest:
        """Return a request visible to its requester or assigned donor."""

        request = await self._session.get(HelpRequest, request_id)
        if request is None:
            raise NotFoundError("Request not found")
        if viewer_id not in (request.requester_id, request.donor_id):
            raise ForbiddenError("Forbidden")
        return request

    async def list_requests_for_user(
        self,
        user_id: UUID,
        *,
        status: HelpRequestStatusEnum | None = None,
        limit: int = 50,
    ) -> Sequence[HelpRequest]:
        stmt = select(HelpRequest).where(
            or_(HelpRequest.requester_id == user_id, HelpRequest.donor_id == user_id)
        )
        if status is not None:
            stmt = stmt.where(HelpRequest.status == status)
        stmt = stmt.order_by(HelpRequest.created_at.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_open_requests(self, viewer_id: UUID, *, limit: int = 50) -> Sequence[HelpRequest]:
        """Pending requests a donor could pick up (excluding the viewer's own)."""

        stmt = (
            select(HelpRequest)
            .where(
                HelpRequest.status == HelpRequestStatusEnum.PENDING,
                HelpRequest.requester_id != viewer_id,
            )
            .order_by(HelpRequest.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()


__all__ = ["HelpRequestService"]
