"""Help request endpoints: creation, donor responses and the redemption scan."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional, Union
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.api.dependencies.commerce import get_cipher, get_commerce_client, get_session_resolver
from mealshare_api.api.dependencies.session import require_caller
from mealshare_api.core.clock import as_utc
from mealshare_api.db.session import get_session
from mealshare_api.models.help_request import HelpRequest
from mealshare_api.models.user import User
from mealshare_api.services.commerce.client import CommerceClient
from mealshare_api.services.commerce.sessions import CommerceSessionResolver
from mealshare_api.services.requests import (
    ActiveScan,
    CompletedScan,
    HelpRequestService,
    RedemptionStateMachine,
    RequestAcceptanceService,
)
from mealshare_api.services.secrets.cipher import SecretCipher


router = APIRouter(prefix="/requests", tags=["requests"])


class HelpRequestCreate(BaseModel):
    pointsRequested: int = Field(..., gt=0)
    location: str = Field(..., min_length=1)


class HelpRequestResponse(BaseModel):
    id: UUID
    requesterId: UUID
    donorId: Optional[UUID]
    pointsRequested: int
    location: str
    status: str
    fulfillmentMode: Optional[str]
    codeIssuedAt: Optional[datetime]
    codeExpiresAt: Optional[datetime]
    completedAt: Optional[datetime]
    completionTrigger: Optional[str]
    createdAt: Optional[datetime]


class AcceptRequestBody(BaseModel):
    fulfillmentModeOverride: Any = None


class AcceptRequestResponse(BaseModel):
    success: bool = True
    fulfillmentMode: str
    transferredPoints: int
    donorBalanceBeforeTransfer: Optional[int]


class DeclineRequestResponse(BaseModel):
    success: bool = True


class ScanActiveResponse(BaseModel):
    state: Literal["active"] = "active"
    payload: str
    expiresAt: datetime
    refreshMs: int


class ScanCompletedResponse(BaseModel):
    state: Literal["completed"] = "completed"
    completedAt: datetime


class ScanUnavailableResponse(BaseModel):
    state: Literal["unavailable"] = "unavailable"
    reason: Literal["not_accepted", "not_code_mode", "donor_unlinked"]


ScanResponse = Union[ScanActiveResponse, ScanCompletedResponse, ScanUnavailableResponse]


def _serialize_request(request: HelpRequest) -> HelpRequestResponse:
    return HelpRequestResponse(
        id=request.id,
        requesterId=request.requester_id,
        donorId=request.donor_id,
        pointsRequested=request.points_requested,
        location=request.location,
        status=request.status.value,
        fulfillmentMode=request.fulfillment_mode,
        codeIssuedAt=as_utc(request.code_issued_at),
        codeExpiresAt=as_utc(request.code_expires_at),
        completedAt=as_utc(request.completed_at),
        completionTrigger=request.completion_trigger.value if request.completion_trigger else None,
        createdAt=as_utc(request.created_at),
    )


@router.post("", response_model=HelpRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_help_request(
    payload: HelpRequestCreate,
    current_user: User = Depends(require_caller),
    db: AsyncSession = Depends(get_session),
) -> HelpRequestResponse:
    service = HelpRequestService(db)
    request = await service.create_request(current_user, payload.pointsRequested, payload.location)
    return _serialize_request(request)


@router.get("", response_model=List[HelpRequestResponse])
async def list_help_requests(
    scope: Literal["mine", "open"] = Query("mine", description="Own requests or pending requests from others"),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_caller),
    db: AsyncSession = Depends(get_session),
) -> List[HelpRequestResponse]:
    service = HelpRequestService(db)
    if scope == "open":
        requests = await service.list_open_requests(current_user.id, limit=limit)
    else:
        requests = await service.list_requests_for_user(current_user.id, limit=limit)
    return [_serialize_request(request) for request in requests]


@router.get("/{request_id}", response_model=HelpRequestResponse)
async def get_help_request(
    request_id: UUID,
    current_user: User = Depends(require_caller),
    db: AsyncSession = Depends(get_session),
) -> HelpRequestResponse:
    service = HelpRequestService(db)
    request = await service.get_request(request_id, current_user.id)
    return _serialize_request(request)


@router.post("/{request_id}/accept", response_model=AcceptRequestResponse)
async def accept_help_request(
    request_id: UUID,
    payload: Optional[AcceptRequestBody] = Body(default=None),
    current_user: User = Depends(require_caller),
    db: AsyncSession = Depends(get_session),
) -> AcceptRequestResponse:
    """Accept a pending request as the current user (the donor)."""

    service = RequestAcceptanceService(db)
    result = await service.accept(
        request_id,
        current_user.id,
        payload.fulfillmentModeOverride if payload else None,
    )
    return AcceptRequestResponse(
        fulfillmentMode=result.fulfillment_mode.value,
        transferredPoints=result.transferred_points,
        donorBalanceBeforeTransfer=result.donor_balance_before_transfer,
    )


@router.post("/{request_id}/decline", response_model=DeclineRequestResponse)
async def decline_help_request(
    request_id: UUID,
    current_user: User = Depends(require_caller),
    db: AsyncSession = Depends(get_session),
) -> DeclineRequestResponse:
    service = RequestAcceptanceService(db)
    await service.decline(request_id, current_user.id)
    return DeclineRequestResponse()


@router.get("/{request_id}/scan", response_model=ScanResponse)
async def poll_redemption_scan(
    request_id: UUID,
    current_user: User = Depends(require_caller),
    db: AsyncSession = Depends(get_session),
    client: CommerceClient = Depends(get_commerce_client),
    resolver: CommerceSessionResolver = Depends(get_session_resolver),
    cipher: SecretCipher = Depends(get_cipher),
) -> ScanResponse:
    """Poll the donor's live code; the requester's client calls this every ``refreshMs``."""

    machine = RedemptionStateMachine(db, client=client, resolver=resolver, cipher=cipher)
    state = await machine.poll(request_id, current_user.id)
    if isinstance(state, ActiveScan):
        return ScanActiveResponse(
            payload=state.payload,
            expiresAt=state.expires_at,
            refreshMs=state.refresh_interval_ms,
        )
    if isinstance(state, CompletedScan):
        return ScanCompletedResponse(completedAt=state.completed_at)
    return ScanUnavailableResponse(reason=state.reason.value)
