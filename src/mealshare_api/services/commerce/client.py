"""Typed JSON-RPC client for the GET campus commerce service."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal, Mapping

import httpx
from loguru import logger

from mealshare_api.core.settings import settings
from mealshare_api.observability.tracing import get_tracer

from .errors import (
    CommerceAPIError,
    ExternalFatalError,
    MissingResponseError,
    build_error,
)


CommerceService = Literal["authentication", "user", "commerce"]

_EXCEPTION_MESSAGE_KEYS = ("message", "detailMessage", "error", "errorMessage", "description")
_UNKNOWN_EXCEPTION = "Unknown GET API error"


@dataclass(slots=True)
class CommerceTransaction:
    transaction_id: str
    actual_date: str | None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CommerceTransaction":
        return cls(
            transaction_id=str(payload.get("transactionId") or ""),
            actual_date=payload.get("actualDate"),
            raw=dict(payload),
        )


@dataclass(slots=True)
class CommerceAccount:
    id: str
    display_name: str | None
    is_active: bool
    is_tender_active: bool
    balance: float | None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CommerceAccount":
        balance = payload.get("balance")
        return cls(
            id=str(payload.get("id") or ""),
            display_name=payload.get("accountDisplayName"),
            is_active=bool(payload.get("isActive", False)),
            is_tender_active=bool(payload.get("isAccountTenderActive", False)),
            balance=float(balance) if isinstance(balance, (int, float)) else None,
            raw=dict(payload),
        )


def parse_exception_message(exception: Any) -> str:
    """Pull a human readable message out of a GET ``exception`` payload."""

    if not exception:
        return _UNKNOWN_EXCEPTION
    if isinstance(exception, str):
        return exception
    if isinstance(exception, Mapping):
        for key in _EXCEPTION_MESSAGE_KEYS:
            candidate = exception.get(key)
            if isinstance(candidate, str) and candidate:
                return candidate
        try:
            return json.dumps(exception)
        except (TypeError, ValueError):
            return _UNKNOWN_EXCEPTION
    return _UNKNOWN_EXCEPTION


class CommerceClient:
    """Stateless client; one instance may be shared by concurrent callers.

    ``call`` performs exactly one RPC. ``call_with_retry`` repeats transient
    failures up to ``retries`` more times with linear backoff
    (``backoff_ms * attempt``); fatal failures surface immediately.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        retries: int | None = None,
        backoff_ms: int | None = None,
        timeout_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._base_url = (base_url or settings.commerce_api_base_url).rstrip("/")
        self._retries = settings.commerce_retry_attempts if retries is None else retries
        self._backoff_ms = settings.commerce_retry_backoff_ms if backoff_ms is None else backoff_ms
        self._sleep = sleep
        timeout = timeout_seconds or settings.commerce_api_timeout_seconds
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def call(
        self,
        service: CommerceService,
        method: str,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        url = f"{self._base_url}/{service}"
        body = {"method": method, "params": dict(params or {})}
        label = f"{service}.{method}"

        with get_tracer().start_as_current_span(
            "commerce.rpc",
            attributes={"commerce.service": service, "commerce.method": method},
        ):
            try:
                response = await self._http.post(
                    url,
                    json=body,
                    headers={"Accept": "application/json"},
                )
            except httpx.TimeoutException as exc:
                raise build_error(
                    f"GET API {label} request timed out", service=service, method=method
                ) from exc
            except httpx.HTTPError as exc:
                raise build_error(
                    f"GET API {label} request failed: {exc}", service=service, method=method
                ) from exc

            if response.is_error:
                raise ExternalFatalError(
                    f"GET API {label} failed ({response.status_code})",
                    service=service,
                    method=method,
                )

            try:
                envelope = response.json()
            except ValueError as exc:
                raise ExternalFatalError(
                    f"GET API {label} returned a non-JSON body",
                    service=service,
                    method=method,
                ) from exc

            if not isinstance(envelope, Mapping):
                raise ExternalFatalError(
                    f"GET API {label} returned an unexpected envelope",
                    service=service,
                    method=method,
                )

            exception = envelope.get("exception")
            if exception:
                raise build_error(
                    f"GET API {label} exception: {parse_exception_message(exception)}",
                    service=service,
                    method=method,
                    raw_exception=exception,
                )

            if "response" not in envelope:
                raise MissingResponseError(
                    f"GET API {label} response did not include response payload",
                    service=service,
                    method=method,
                )
            return envelope["response"]

    async def call_with_retry(
        self,
        service: CommerceService,
        method: str,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        attempt = 0
        while True:
            try:
                return await self.call(service, method, params)
            except CommerceAPIError as exc:
                if not exc.is_transient or attempt >= self._retries:
                    raise
                attempt += 1
                delay_ms = self._backoff_ms * attempt
                logger.warning(
                    "GET API transient failure, retrying",
                    service=service,
                    method=method,
                    attempt=attempt,
                    delay_ms=delay_ms,
                )
                await self._sleep(delay_ms / 1000)

    async def authenticate(self, device_id: str, pin: str) -> str:
        session_id = await self.call_with_retry(
            "authentication",
            "authenticatePIN",
            {
                "pin": pin,
                "deviceId": device_id,
                "systemCredentials": {
                    "password": "NOTUSED",
                    "userName": settings.commerce_system_user_name,
                    "domain": "",
                },
            },
        )
        if not isinstance(session_id, str) or not session_id:
            raise ExternalFatalError(
                "GET API authentication.authenticatePIN returned no session",
                service="authentication",
                method="authenticatePIN",
            )
        return session_id

    async def create_device_credential(self, session_id: str, device_id: str, pin: str) -> bool:
        result = await self.call_with_retry(
            "user",
            "createPIN",
            {"sessionId": session_id, "deviceId": device_id, "PIN": pin},
        )
        return result is True

    async def revoke_device_credential(self, session_id: str, device_id: str) -> bool:
        result = await self.call_with_retry(
            "user",
            "deletePIN",
            {"sessionId": session_id, "deviceId": device_id},
        )
        return result is True

    async def fetch_barcode_payload(self, session_id: str) -> str:
        payload = await self.call_with_retry(
            "authentication",
            "retrievePatronBarcodePayload",
            {"sessionId": session_id},
        )
        return payload if isinstance(payload, str) else ""

    async def fetch_transactions_since(self, session_id: str, since: datetime) -> list[CommerceTransaction]:
        oldest = since if since.tzinfo else since.replace(tzinfo=timezone.utc)
        response = await self.call_with_retry(
            "commerce",
            "retrieveTransactionHistoryWithinDateRange",
            {
                "sessionId": session_id,
                "paymentSystemType": 0,
                "queryCriteria": {
                    "maxReturnMostRecent": settings.commerce_transaction_history_limit,
                    "newestDate": None,
                    "oldestDate": oldest.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
                    "accountId": None,
                },
            },
        )
        transactions = response.get("transactions") if isinstance(response, Mapping) else None
        return [
            CommerceTransaction.from_payload(item)
            for item in transactions or []
            if isinstance(item, Mapping)
        ]

    async def fetch_accounts(self, session_id: str) -> list[CommerceAccount]:
        response = await self.call_with_retry("commerce", "retrieveAccounts", {"sessionId": session_id})
        accounts = response.get("accounts") if isinstance(response, Mapping) else None
        return [CommerceAccount.from_payload(item) for item in accounts or [] if isinstance(item, Mapping)]


__all__ = [
    "CommerceAccount",
    "CommerceClient",
    "CommerceService",
    "CommerceTransaction",
    "parse_exception_message",
]
