"""Linking, inspecting and revoking a user's GET device credentials."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mealshare_api.core.clock import Clock, as_utc, utcnow
from mealshare_api.models.credential import CommerceCredential
from mealshare_api.models.user import User
from mealshare_api.services.errors import (
    CredentialLinkError,
    InvalidFulfillmentModeError,
    InvalidInputError,
    PreconditionFailedError,
    ServiceError,
)
from mealshare_api.services.points import get_or_create_balance
from mealshare_api.services.requests.fulfillment import (
    FulfillmentMode,
    is_fulfillment_mode,
    resolve_mode,
)
from mealshare_api.services.secrets.cipher import SecretCipher, SecretCipherError, get_secret_cipher

from .client import CommerceAccount, CommerceClient, CommerceTransaction
from .errors import CommerceAPIError
from .onboarding import extract_validated_session_id, generate_device_id, generate_pin
from .sessions import CommerceSessionResolver


@dataclass(slots=True)
class CredentialStatus:
    connected: bool
    default_fulfillment_mode: FulfillmentMode
    last_validated_at: datetime | None


@dataclass(slots=True)
class LivePayload:
    payload: str
    fetched_at: datetime


DIAGNOSTICS_DEFAULT_HOURS = 24
DIAGNOSTICS_MAX_HOURS = 24 * 14
DIAGNOSTICS_DEFAULT_LIMIT = 25
DIAGNOSTICS_MAX_LIMIT = 200
REFRESH_WARNING = "Recovered after transient GET error; session was refreshed."


@dataclass(slots=True)
class CommerceDiagnostics:
    """What the donor's GET account looks like right now, for troubleshooting a link."""

    connected: bool
    app_balance: int
    window_hours: int
    total_get_balance: float | None = None
    barcode_payload: str | None = None
    accounts: list[CommerceAccount] = field(default_factory=list)
    transactions: list[CommerceTransaction] = field(default_factory=list)
    fetched_at: datetime | None = None
    warning: str | None = None
    error: str | None = None


def bounded_positive(value: int | None, fallback: int, maximum: int) -> int:
    """Missing or non-positive values fall back; large ones are capped."""

    if value is None or value <= 0:
        return fallback
    return min(value, maximum)


def _transaction_time(transaction: CommerceTransaction) -> datetime:
    if transaction.actual_date:
        try:
            parsed = datetime.fromisoformat(transaction.actual_date.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.min.replace(tzinfo=timezone.utc)


def active_tender_total(accounts: list[CommerceAccount]) -> float:
    return sum(
        (account.balance or 0.0 for account in accounts if account.is_active and account.is_tender_active),
        0.0,
    )


class CommerceCredentialService:
    """Owns the credential vault rows; plaintext secrets never leave this call stack."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        client: CommerceClient,
        resolver: CommerceSessionResolver,
        cipher: SecretCipher | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._session = session
        self._client = client
        self._resolver = resolver
        self._cipher = cipher or get_secret_cipher()
        self._clock = clock

    async def _get_credential(self, user_id) -> CommerceCredential | None:
        stmt = select(CommerceCredential).where(CommerceCredential.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def status(self, user: User) -> CredentialStatus:
        credential = await self._get_credential(user.id)
        return CredentialStatus(
            connected=credential is not None,
            default_fulfillment_mode=resolve_mode(user.default_fulfillment_mode),
            last_validated_at=as_utc(credential.last_validated_at) if credential else None,
        )

    async def connect(self, user: User, validated_url: object) -> None:
        if not isinstance(validated_url, str) or not validated_url.strip():
            raise InvalidInputError("validatedUrl is required")

        session_id = extract_validated_session_id(validated_url)
        if not session_id:
            raise InvalidInputError("Could not parse validated GET session token from URL")

        device_id = generate_device_id()
        pin = generate_pin()

        try:
            created = await self._client.create_device_credential(session_id, device_id, pin)
        except CommerceAPIError as exc:
            logger.warning(
                "GET device credential creation failed",
                user_id=str(user.id),
                method=exc.method,
                transient=exc.is_transient,
            )
            raise CredentialLinkError("Failed to connect GET account") from exc
        if not created:
            raise InvalidInputError("Failed to create GET device credentials")

        try:
            await self._resolver.resolve(user.id, device_id, pin, force_refresh=True)
        except CommerceAPIError as exc:
            logger.warning("GET credential verification failed", user_id=str(user.id), method=exc.method)
            raise CredentialLinkError("Failed to connect GET account") from exc

        encrypted_device_id = self._cipher.encrypt(device_id)
        encrypted_pin = self._cipher.encrypt(pin)
        now = self._clock()

        credential = await self._get_credential(user.id)
        if credential is None:
            credential = CommerceCredential(user_id=user.id)
            self._session.add(credential)
        credential.encrypted_device_id = encrypted_device_id
        credential.encrypted_pin = encrypted_pin
        credential.last_validated_at = now
        await self._session.commit()
        logger.info("GET account linked", user_id=str(user.id))

    async def disconnect(self, user: User) -> None:
        credential = await self._get_credential(user.id)
        if credential is None:
            self._resolver.invalidate(user.id)
            return

        try:
            device_id = self._cipher.decrypt(credential.encrypted_device_id)
            pin = self._cipher.decrypt(credential.encrypted_pin)
            session_id = await self._resolver.resolve(user.id, device_id, pin)
            await self._client.revoke_device_credential(session_id, device_id)
        except (SecretCipherError, CommerceAPIError) as exc:
            logger.warning(
                "GET credential revoke failed during disconnect",
                user_id=str(user.id),
                error_type=type(exc).__name__,
            )

        await self._session.delete(credential)
        await self._session.commit()
        self._resolver.invalidate(user.id)
        logger.info("GET account disconnected", user_id=str(user.id))

    async def update_default_mode(self, user: User, raw_mode: object) -> FulfillmentMode:
        if not is_fulfillment_mode(raw_mode):
            raise InvalidFulfillmentModeError("Invalid fulfillment mode")
        mode = FulfillmentMode(raw_mode)
        user.default_fulfillment_mode = mode.value
        await self._session.commit()
        return mode

    async def fetch_live_payload(self, user: User) -> LivePayload:
        """Fetch the donor's own current barcode payload (connection self-test)."""

        credential = await self._get_credential(user.id)
        if credential is None:
            raise PreconditionFailedError("Connect your GET account first")

        device_id = self._cipher.decrypt(credential.encrypted_device_id)
        pin = self._cipher.decrypt(credential.encrypted_pin)
        try:
            payload = await self._resolver.run(user.id, device_id, pin, self._client.fetch_barcode_payload)
        except CommerceAPIError as exc:
            logger.warning("GET barcode payload fetch failed", user_id=str(user.id), method=exc.method)
            raise ServiceError("Failed to fetch GET barcode payload") from exc

        fetched_at = self._clock()
        credential.last_validated_at = fetched_at
        await self._session.commit()
        return LivePayload(payload=payload, fetched_at=fetched_at)

    async def diagnostics(
        self,
        user: User,
        *,
        hours: int | None = None,
        limit: int | None = None,
    ) -> CommerceDiagnostics:
        """Accounts, live payload and recent transactions as GET reports them.

        Transactions are limited to the last ``hours`` (default 24, at most two
        weeks) and the newest ``limit`` of them (default 25, at most 200).
        """

        window_hours = bounded_positive(hours, DIAGNOSTICS_DEFAULT_HOURS, DIAGNOSTICS_MAX_HOURS)
        max_transactions = bounded_positive(limit, DIAGNOSTICS_DEFAULT_LIMIT, DIAGNOSTICS_MAX_LIMIT)

        points = await get_or_create_balance(self._session, user.id)
        app_balance = int(points.balance)

        credential = await self._get_credential(user.id)
        if credential is None:
            return CommerceDiagnostics(
                connected=False,
                app_balance=app_balance,
                window_hours=window_hours,
                error="Connect your GET account first",
            )

        device_id = self._cipher.decrypt(credential.encrypted_device_id)
        pin = self._cipher.decrypt(credential.encrypted_pin)
        since = self._clock() - timedelta(hours=window_hours)
        refreshed: list[bool] = []

        async def snapshot(session_id: str):
            accounts = await self._client.fetch_accounts(session_id)
            payload = await self._client.fetch_barcode_payload(session_id)
            transactions = await self._client.fetch_transactions_since(session_id, since)
            return accounts, payload, transactions

        try:
            accounts, payload, transactions = await self._resolver.run(
                user.id,
                device_id,
                pin,
                snapshot,
                on_refresh=lambda: refreshed.append(True),
            )
        except CommerceAPIError as exc:
            logger.warning("GET diagnostics fetch failed", user_id=str(user.id), method=exc.method)
            raise ServiceError("Failed to load GET diagnostics") from exc

        newest_first = sorted(transactions, key=_transaction_time, reverse=True)[:max_transactions]

        fetched_at = self._clock()
        credential.last_validated_at = fetched_at
        await self._session.commit()
        logger.info(
            "GET diagnostics loaded",
            user_id=str(user.id),
            accounts=len(accounts),
            transactions=len(newest_first),
            session_refreshed=bool(refreshed),
        )
        return CommerceDiagnostics(
            connected=True,
            app_balance=app_balance,
            window_hours=window_hours,
            total_get_balance=active_tender_total(accounts),
            barcode_payload=payload,
            accounts=accounts,
            transactions=newest_first,
            fetched_at=fetched_at,
            warning=REFRESH_WARNING if refreshed else None,
        )


__all__ = [
    "CommerceCredentialService",
    "CommerceDiagnostics",
    "CredentialStatus",
    "LivePayload",
    "active_tender_total",
    "bounded_positive",
]
