"""Scan-state machine for code-mode redemptions.

A code counts as spent when the donor's GET ledger shows a transaction after
the code was issued, not when the requester says it was shown. Each poll by
the requester walks the transition table below and returns exactly one of
``ActiveScan``, ``CompletedScan`` or ``UnavailableScan``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Literal, Union
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.core.clock import Clock, as_utc, utcnow
from mealshare_api.core.settings import settings
from mealshare_api.db.unit_of_work import UnitOfWork
from mealshare_api.models.credential import CommerceCredential
from mealshare_api.models.help_request import CompletionTriggerEnum, HelpRequest, HelpRequestStatusEnum
from mealshare_api.models.notification import Notification, NotificationTypeEnum
from mealshare_api.observability.tracing import get_tracer
from mealshare_api.services.commerce.client import CommerceClient
from mealshare_api.services.commerce.errors import CommerceAPIError
from mealshare_api.services.commerce.sessions import CommerceSessionResolver
from mealshare_api.services.errors import ForbiddenError, NotFoundError, RequestConflictError
from mealshare_api.services.secrets.cipher import SecretCipher, SecretCipherError, get_secret_cipher

from .fulfillment import requires_code


class UnavailableReason(str, Enum):
    NOT_ACCEPTED = "not_accepted"
    NOT_CODE_MODE = "not_code_mode"
    DONOR_UNLINKED = "donor_unlinked"


@dataclass(frozen=True, slots=True)
class ActiveScan:
    payload: str
    expires_at: datetime
    refresh_interval_ms: int
    state: Literal["active"] = field(default="active", init=False)


@dataclass(frozen=True, slots=True)
class CompletedScan:
    completed_at: datetime
    state: Literal["completed"] = field(default="completed", init=False)


@dataclass(frozen=True, slots=True)
class UnavailableScan:
    reason: UnavailableReason
    state: Literal["unavailable"] = field(default="unavailable", init=False)


ScanState = Union[ActiveScan, CompletedScan, UnavailableScan]


@dataclass(slots=True)
class _LiveRead:
    payload: str
    transaction_count: int


class RedemptionStateMachine:
    """Serves, re-arms and auto-completes a request's redemption code."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        client: CommerceClient,
        resolver: CommerceSessionResolver,
        cipher: SecretCipher | None = None,
        clock: Clock = utcnow,
        code_ttl: timedelta | None = None,
        refresh_interval_ms: int | None = None,
    ) -> None:
        self._session = session
        self._client = client
        self._resolver = resolver
        self._cipher = cipher or get_secret_cipher()
        self._clock = clock
        self._code_ttl = code_ttl or timedelta(seconds=settings.redemption_code_ttl_seconds)
        self._refresh_interval_ms = refresh_interval_ms or settings.redemption_refresh_interval_ms

    async def poll(self, request_id: UUID, requester_id: UUID) -> ScanState:
        with get_tracer().start_as_current_span("redemption.poll", attributes={"request.id": str(request_id)}):
            return await self._poll(request_id, requester_id)

    async def _poll(self, request_id: UUID, requester_id: UUID) -> ScanState:
        request = await self._session.get(HelpRequest, request_id, populate_existing=True)
        if request is None:
            raise NotFoundError("Request not found")
        if request.requester_id != requester_id:
            raise ForbiddenError("Forbidden")

        if request.status == HelpRequestStatusEnum.COMPLETED and request.completed_at is not None:
            return CompletedScan(completed_at=as_utc(request.completed_at))
        if request.status != HelpRequestStatusEnum.ACCEPTED:
            return UnavailableScan(UnavailableReason.NOT_ACCEPTED)
        if not requires_code(request.fulfillment_mode):
            return UnavailableScan(UnavailableReason.NOT_CODE_MODE)

        credential = await self._get_credential(request.donor_id)
        if credential is None:
            return UnavailableScan(UnavailableReason.DONOR_UNLINKED)

        issued_at, expires_at = await self._arm_code_window(request)

        live = await self._read_live(request.donor_id, credential, issued_at)
        if live is None:
            return UnavailableScan(UnavailableReason.DONOR_UNLINKED)

        if live.transaction_count > 0:
            return await self._complete(request)

        if not live.payload:
            return UnavailableScan(UnavailableReason.DONOR_UNLINKED)

        await self._mark_validated(credential.user_id)
        return ActiveScan(
            payload=live.payload,
            expires_at=expires_at,
            refresh_interval_ms=self._refresh_interval_ms,
        )

    async def _get_credential(self, donor_id: UUID | None) -> CommerceCredential | None:
        if donor_id is None:
            return None
        result = await self._session.execute(
            select(CommerceCredential).where(CommerceCredential.user_id == donor_id)
        )
        return result.scalar_one_or_none()

    async def _arm_code_window(self, request: HelpRequest) -> tuple[datetime, datetime]:
        """Initialise a missing issue time and re-issue a lapsed expiry."""

        now = self._clock()
        issued_at = as_utc(request.code_issued_at)
        expires_at = as_utc(request.code_expires_at)
        patch: dict[str, datetime] = {}

        if issued_at is None:
            issued_at = now
            patch["code_issued_at"] = now
        if expires_at is None or expires_at <= now:
            expires_at = now + self._code_ttl
            patch["code_expires_at"] = expires_at

        if patch:
            await self._session.execute(
                update(HelpRequest)
                .where(
                    HelpRequest.id == request.id,
                    HelpRequest.status == HelpRequestStatusEnum.ACCEPTED,
                )
                .values(**patch)
                .execution_options(synchronize_session=False)
            )
            await self._session.commit()
            logger.info(
                "Redemption code window armed",
                request_id=str(request.id),
                reissued="code_expires_at" in patch,
            )
        return issued_at, expires_at

    async def _read_live(
        self,
        donor_id: UUID,
        credential: CommerceCredential,
        issued_at: datetime,
    ) -> _LiveRead | None:
        try:
            device_id = self._cipher.decrypt(credential.encrypted_device_id)
            pin = self._cipher.decrypt(credential.encrypted_pin)
            payload = await self._resolver.run(donor_id, device_id, pin, self._client.fetch_barcode_payload)
            transactions = await self._resolver.run(
                donor_id,
                device_id,
                pin,
                lambda session_id: self._client.fetch_transactions_since(session_id, issued_at),
            )
        except (SecretCipherError, CommerceAPIError) as exc:
            logger.warning(
                "Failed to fetch GET scan payload",
                donor_id=str(donor_id),
                error_type=type(exc).__name__,
            )
            self._resolver.invalidate(donor_id)
            return None
        return _LiveRead(payload=payload, transaction_count=len(transactions))

    async def _mark_validated(self, user_id: UUID) -> None:
        await self._session.execute(
            update(CommerceCredential)
            .where(CommerceCredential.user_id == user_id)
            .values(last_validated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        await self._session.commit()

    async def _complete(self, request: HelpRequest) -> ScanState:
        completed_at = self._clock()
        uow = UnitOfWork(self._session)
        uow.stage(
            "credential.validated",
            update(CommerceCredential)
            .where(CommerceCredential.user_id == request.donor_id)
            .values(last_validated_at=completed_at)
            .execution_options(synchronize_session=False),
        )
        uow.stage(
            "help_request.complete",
            update(HelpRequest)
            .where(
                HelpRequest.id == request.id,
                HelpRequest.status == HelpRequestStatusEnum.ACCEPTED,
            )
            .values(
                status=HelpRequestStatusEnum.COMPLETED,
                completed_at=completed_at,
                completion_trigger=CompletionTriggerEnum.FIRST_GET_TRANSACTION,
                code_expires_at=completed_at,
            )
            .execution_options(synchronize_session=False),
            expect_rowcount=1,
            on_mismatch=lambda: RequestConflictError("Request is no longer accepted"),
        )
        uow.add(
            "notification.request_completed",
            Notification(
                user_id=request.donor_id,
                type=NotificationTypeEnum.REQUEST_COMPLETED,
                message=f"Your code for {request.points_requested} points at {request.location} was redeemed",
            ),
        )

        try:
            await uow.commit()
        except RequestConflictError:
            # A concurrent poll completed (or the request moved on) first.
            await self._session.refresh(request)
            if request.status == HelpRequestStatusEnum.COMPLETED and request.completed_at is not None:
                return CompletedScan(completed_at=as_utc(request.completed_at))
            return UnavailableScan(UnavailableReason.NOT_ACCEPTED)

        logger.info(
            "Help request auto-completed from GET transaction",
            request_id=str(request.id),
            trigger=CompletionTriggerEnum.FIRST_GET_TRANSACTION.value,
        )
        return CompletedScan(completed_at=completed_at)


__all__ = [
    "ActiveScan",
    "CompletedScan",
    "RedemptionStateMachine",
    "ScanState",
    "UnavailableReason",
    "UnavailableScan",
]
