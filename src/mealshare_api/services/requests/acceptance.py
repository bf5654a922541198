"""Accepting and declining help requests as single atomic units."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.core.clock import Clock, utcnow
from mealshare_api.core.settings import settings
from mealshare_api.db.unit_of_work import UnitOfWork
from mealshare_api.db.upsert import insert_if_absent
from mealshare_api.models.credential import CommerceCredential
from mealshare_api.models.help_request import HelpRequest, HelpRequestStatusEnum
from mealshare_api.models.notification import Notification, NotificationTypeEnum
from mealshare_api.models.points import PointsBalance
from mealshare_api.models.user import User
from mealshare_api.services.errors import (
    InsufficientBalanceError,
    InvalidOperationError,
    NotFoundError,
    PreconditionFailedError,
    RequestConflictError,
)

from .fulfillment import FulfillmentMode, requires_code, requires_transfer, resolve_mode, validate_override


NOT_PENDING_MESSAGE = "Request is no longer pending"
LINK_REQUIRED_MESSAGE = "Connect your GET account before using code fulfillment"
INSUFFICIENT_BALANCE_MESSAGE = "Insufficient points balance"


@dataclass(slots=True)
class AcceptanceResult:
    fulfillment_mode: FulfillmentMode
    transferred_points: int
    donor_balance_before_transfer: int | None


def _conflict() -> RequestConflictError:
    return RequestConflictError(NOT_PENDING_MESSAGE)


def _insufficient() -> InsufficientBalanceError:
    return InsufficientBalanceError(INSUFFICIENT_BALANCE_MESSAGE)


class RequestAcceptanceService:
    """Validates a donor's response to a request and commits it all-or-nothing.

    Two donors racing for the same request are arbitrated by the conditional
    ``UPDATE ... WHERE status = 'pending'``; the loser's unit of work rolls
    back and surfaces :class:`RequestConflictError`.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock = utcnow,
        code_ttl: timedelta | None = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._code_ttl = code_ttl or timedelta(seconds=settings.redemption_code_ttl_seconds)

    async def accept(
        self,
        request_id: UUID,
        donor_id: UUID,
        mode_override: Any = None,
    ) -> AcceptanceResult:
        donor = await self._get_user(donor_id)
        override = validate_override(mode_override)
        mode = override.mode or resolve_mode(donor.default_fulfillment_mode)
        should_transfer = requires_transfer(mode)
        should_issue_code = requires_code(mode)

        if should_issue_code and not await self._has_credential(donor.id):
            raise PreconditionFailedError(LINK_REQUIRED_MESSAGE)

        request = await self._get_pending_request(request_id, donor.id, verb="accept")
        amount = int(request.points_requested)

        now = self._clock()
        uow = UnitOfWork(self._session)
        uow.stage(
            "help_request.accept",
            update(HelpRequest)
            .where(
                HelpRequest.id == request.id,
                HelpRequest.status == HelpRequestStatusEnum.PENDING,
            )
            .values(
                status=HelpRequestStatusEnum.ACCEPTED,
                donor_id=donor.id,
                fulfillment_mode=mode.value,
                code_issued_at=now if should_issue_code else None,
                code_expires_at=now + self._code_ttl if should_issue_code else None,
                completed_at=None,
                completion_trigger=None,
            )
            .execution_options(synchronize_session=False),
            expect_rowcount=1,
            on_mismatch=_conflict,
        )

        donor_balance: int | None = None
        if should_transfer:
            donor_points = await self._get_points(donor.id)
            donor_balance = int(donor_points.balance) if donor_points else 0
            if donor_balance < amount:
                raise _insufficient()

            uow.stage(
                "points.ensure_requester",
                insert_if_absent(
                    self._session,
                    PointsBalance,
                    {"user_id": request.requester_id, "balance": 0},
                    index_elements=[PointsBalance.user_id],
                ),
            )
            uow.stage(
                "points.debit_donor",
                update(PointsBalance)
                .where(PointsBalance.user_id == donor.id, PointsBalance.balance >= amount)
                .values(balance=PointsBalance.balance - amount)
                .execution_options(synchronize_session=False),
                expect_rowcount=1,
                on_mismatch=_insufficient,
            )
            uow.stage(
                "points.credit_requester",
                update(PointsBalance)
                .where(PointsBalance.user_id == request.requester_id)
                .values(balance=PointsBalance.balance + amount)
                .execution_options(synchronize_session=False),
                expect_rowcount=1,
            )

        uow.add(
            "notification.request_accepted",
            Notification(
                user_id=request.requester_id,
                type=NotificationTypeEnum.REQUEST_ACCEPTED,
                message=f"{donor.label} accepted your request for {amount} points at {request.location}",
            ),
        )

        await uow.commit()
        logger.info(
            "Help request accepted",
            request_id=str(request_id),
            donor_id=str(donor.id),
            fulfillment_mode=mode.value,
            transferred_points=amount if should_transfer else 0,
        )
        return AcceptanceResult(
            fulfillment_mode=mode,
            transferred_points=amount if should_transfer else 0,
            donor_balance_before_transfer=donor_balance,
        )

    async def decline(self, request_id: UUID, donor_id: UUID) -> None:
        donor = await self._get_user(donor_id)
        request = await self._get_pending_request(request_id, donor.id, verb="decline")

        uow = UnitOfWork(self._session)
        uow.stage(
            "help_request.decline",
            update(HelpRequest)
            .where(
                HelpRequest.id == request.id,
                HelpRequest.status == HelpRequestStatusEnum.PENDING,
            )
            .values(status=HelpRequestStatusEnum.DECLINED, donor_id=donor.id)
            .execution_options(synchronize_session=False),
            expect_rowcount=1,
            on_mismatch=_conflict,
        )
        uow.add(
            "notification.request_declined",
            Notification(
                user_id=request.requester_id,
                type=NotificationTypeEnum.REQUEST_DECLINED,
                message=(
                    f"{donor.label} declined your request for {request.points_requested} points "
                    f"at {request.location}"
                ),
            ),
        )
        await uow.commit()
        logger.info("Help request declined", request_id=str(request_id), donor_id=str(donor.id))

    async def _get_user(self, user_id: UUID) -> User:
        user = await self._session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def _has_credential(self, user_id: UUID) -> bool:
        stmt = select(exists().where(CommerceCredential.user_id == user_id))
        result = await self._session.execute(stmt)
        return bool(result.scalar())

    async def _get_points(self, user_id: UUID) -> PointsBalance | None:
        result = await self._session.execute(select(PointsBalance).where(PointsBalance.user_id == user_id))
        return result.scalar_one_or_none()

    async def _get_pending_request(self, request_id: UUID, donor_id: UUID, *, verb: str) -> HelpRequest:
        request = await self._session.get(HelpRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFoundError("Request not found")
        if request.requester_id == donor_id:
            raise InvalidOperationError(f"You cannot {verb} your own request")
        if request.status != HelpRequestStatusEnum.PENDING:
            raise _conflict()
        return request


__all__ = ["AcceptanceResult", "RequestAcceptanceService"]
