"""Linking a donor's GET account (``/get-credential``)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.api.dependencies.commerce import get_cipher, get_commerce_client, get_session_resolver
from mealshare_api.api.dependencies.session import require_caller
from mealshare_api.db.session import get_session
from mealshare_api.models.user import User
from mealshare_api.services.commerce.client import CommerceClient
from mealshare_api.services.commerce.credentials import CommerceCredentialService, CommerceDiagnostics
from mealshare_api.services.commerce.sessions import CommerceSessionResolver
from mealshare_api.services.secrets.cipher import SecretCipher


router = APIRouter(prefix="/get-credential", tags=["get-credential"])


class CredentialStatusResponse(BaseModel):
    connected: bool
    defaultFulfillmentMode: str
    lastValidatedAt: Optional[datetime]


class ConnectCredentialRequest(BaseModel):
    validatedUrl: Any = None


class ConnectionResponse(BaseModel):
    connected: bool


class UpdateModeRequest(BaseModel):
    defaultFulfillmentMode: Any = None


class UpdateModeResponse(BaseModel):
    defaultFulfillmentMode: str


class LivePayloadResponse(BaseModel):
    payload: str
    fetchedAt: datetime
    length: int


class DiagnosticsAccount(BaseModel):
    id: str
    displayName: Optional[str]
    isActive: bool
    isTenderActive: bool
    balance: Optional[float]


class DiagnosticsResponse(BaseModel):
    connected: bool
    appBalance: int
    totalGetBalance: Optional[float] = None
    barcodePayload: Optional[str] = None
    accounts: List[DiagnosticsAccount] = []
    transactions: List[Dict[str, Any]] = []
    transactionsWindowHours: int
    returnedTransactions: int = 0
    fetchedAt: Optional[datetime] = None
    warning: Optional[str] = None
    error: Optional[str] = None


def _serialize_diagnostics(report: CommerceDiagnostics) -> DiagnosticsResponse:
    return DiagnosticsResponse(
        connected=report.connected,
        appBalance=report.app_balance,
        totalGetBalance=report.total_get_balance,
        barcodePayload=report.barcode_payload,
        accounts=[
            DiagnosticsAccount(
                id=account.id,
                displayName=account.display_name,
                isActive=account.is_active,
                isTenderActive=account.is_tender_active,
                balance=account.balance,
            )
            for account in report.accounts
        ],
        transactions=[dict(transaction.raw) for transaction in report.transactions],
        transactionsWindowHours=report.window_hours,
        returnedTransactions=len(report.transactions),
        fetchedAt=report.fetched_at,
        warning=report.warning,
        error=report.error,
    )


def _credential_service(
    db: AsyncSession = Depends(get_session),
    client: CommerceClient = Depends(get_commerce_client),
    resolver: CommerceSessionResolver = Depends(get_session_resolver),
    cipher: SecretCipher = Depends(get_cipher),
) -> CommerceCredentialService:
    return CommerceCredentialService(db, client=client, resolver=resolver, cipher=cipher)


@router.get("", response_model=CredentialStatusResponse)
async def get_credential_status(
    current_user: User = Depends(require_caller),
    service: CommerceCredentialService = Depends(_credential_service),
) -> CredentialStatusResponse:
    snapshot = await service.status(current_user)
    return CredentialStatusResponse(
        connected=snapshot.connected,
        defaultFulfillmentMode=snapshot.default_fulfillment_mode.value,
        lastValidatedAt=snapshot.last_validated_at,
    )


@router.post("", response_model=ConnectionResponse)
async def connect_credential(
    payload: ConnectCredentialRequest,
    current_user: User = Depends(require_caller),
    service: CommerceCredentialService = Depends(_credential_service),
) -> ConnectionResponse:
    """Exchange a validated GET login URL for stored device credentials."""

    await service.connect(current_user, payload.validatedUrl)
    return ConnectionResponse(connected=True)


@router.patch("", response_model=UpdateModeResponse)
async def update_default_fulfillment_mode(
    payload: UpdateModeRequest,
    current_user: User = Depends(require_caller),
    service: CommerceCredentialService = Depends(_credential_service),
) -> UpdateModeResponse:
    mode = await service.update_default_mode(current_user, payload.defaultFulfillmentMode)
    return UpdateModeResponse(defaultFulfillmentMode=mode.value)


@router.delete("", response_model=ConnectionResponse)
async def disconnect_credential(
    current_user: User = Depends(require_caller),
    service: CommerceCredentialService = Depends(_credential_service),
) -> ConnectionResponse:
    await service.disconnect(current_user)
    return ConnectionResponse(connected=False)


@router.get("/payload", response_model=LivePayloadResponse)
async def get_live_payload(
    current_user: User = Depends(require_caller),
    service: CommerceCredentialService = Depends(_credential_service),
) -> LivePayloadResponse:
    live = await service.fetch_live_payload(current_user)
    return LivePayloadResponse(payload=live.payload, fetchedAt=live.fetched_at, length=len(live.payload))


@router.get("/diagnostics", response_model=DiagnosticsResponse, response_model_exclude_none=True)
async def get_credential_diagnostics(
    hours: Optional[int] = Query(None, description="Transaction window in hours (default 24, max 336)"),
    limit: Optional[int] = Query(None, description="Most recent transactions to return (default 25, max 200)"),
    current_user: User = Depends(require_caller),
    service: CommerceCredentialService = Depends(_credential_service),
) -> DiagnosticsResponse:
    """Raw view of the linked GET account for checking that the link works."""

    report = await service.diagnostics(current_user, hours=hours, limit=limit)
    return _serialize_diagnostics(report)
