from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from mealshare_api.core.clock import as_utc
from mealshare_api.models.credential import CommerceCredential
from mealshare_api.models.help_request import CompletionTriggerEnum, HelpRequest, HelpRequestStatusEnum
from mealshare_api.models.notification import Notification, NotificationTypeEnum
from mealshare_api.services.errors import ForbiddenError, NotFoundError
from mealshare_api.services.requests.redemption import (
    ActiveScan,
    CompletedScan,
    RedemptionStateMachine,
    UnavailableReason,
    UnavailableScan,
)
from mealshare_api.services.secrets.cipher import SecretCipher

TRANSACTIONS = "retrieveTransactionHistoryWithinDateRange"
PAYLOAD = "retrievePatronBarcodePayload"


def _script_live_account(backend, *, payload="BARCODE-1", transactions=()):
    backend.respond("authenticatePIN", {"response": "session-1"})
    backend.respond(PAYLOAD, {"response": payload})
    backend.respond(TRANSACTIONS, {"response": {"transactions": list(transactions)}})


async def _accepted_code_request(session, seed, cipher, clock, *, mode="CODE_ONLY", link=True, **fields):
    donor = await seed.user(session, f"donor-{uuid4().hex[:6]}@example.com")
    if link:
        await seed.credential(session, donor, cipher)
    requester = await seed.user(session, f"requester-{uuid4().hex[:6]}@example.com")
    fields.setdefault("code_issued_at", clock.now - timedelta(minutes=1))
    fields.setdefault("code_expires_at", clock.now + timedelta(minutes=14))
    request = await seed.request(
        session,
        requester,
        status=HelpRequestStatusEnum.ACCEPTED,
        donor_id=donor.id,
        fulfillment_mode=mode,
        **fields,
    )
    return donor, requester, request


@pytest.fixture
def machine_factory(commerce_client, session_resolver, cipher, clock):
    def build(session):
        return RedemptionStateMachine(
            session,
            client=commerce_client,
            resolver=session_resolver,
            cipher=cipher,
            clock=clock,
        )

    return build


@pytest.mark.asyncio
async def test_active_scan_serves_live_payload(session_factory, seed, cipher, clock, commerce_backend, machine_factory):
    _script_live_account(commerce_backend, payload="BARCODE-1")
    async with session_factory() as session:
        donor, requester, request = await _accepted_code_request(session, seed, cipher, clock)

    async with session_factory() as session:
        state = await machine_factory(session).poll(request.id, requester.id)

    assert isinstance(state, ActiveScan)
    assert state.state == "active"
    assert state.payload == "BARCODE-1"
    assert state.expires_at == clock.now + timedelta(minutes=14)
    assert state.refresh_interval_ms == 5000

    oldest = commerce_backend.params(TRANSACTIONS)[0]["queryCriteria"]["oldestDate"]
    assert oldest == (clock.now - timedelta(minutes=1)).isoformat().replace("+00:00", "Z")

    async with session_factory() as session:
        credential = (
            await session.execute(select(CommerceCredential).where(CommerceCredential.user_id == donor.id))
        ).scalar_one()
        assert as_utc(credential.last_validated_at) == clock.now


@pytest.mark.asyncio
async def test_session_is_reused_between_polls(session_factory, seed, cipher, clock, commerce_backend, machine_factory):
    _script_live_account(commerce_backend)
    async with session_factory() as session:
        _, requester, request = await _accepted_code_request(session, seed, cipher, clock)

    for _ in range(3):
        async with session_factory() as session:
            state = await machine_factory(session).poll(request.id, requester.id)
            assert isinstance(state, ActiveScan)

    assert commerce_backend.count("authenticatePIN") == 1
    assert commerce_backend.count(PAYLOAD) == 3


@pytest.mark.asyncio
async def test_first_transaction_completes_request(session_factory, seed, cipher, clock, commerce_backend, machine_factory):
    _script_live_account(commerce_backend, transactions=[{"transactionId": "txn-1"}])
    async with session_factory() as session:
        donor, requester, request = await _accepted_code_request(session, seed, cipher, clock)

    async with session_factory() as session:
        state = await machine_factory(session).poll(request.id, requester.id)

    assert state == CompletedScan(completed_at=clock.now)

    async with session_factory() as session:
        stored = await session.get(HelpRequest, request.id)
        assert stored.status == HelpRequestStatusEnum.COMPLETED
        assert stored.completion_trigger == CompletionTriggerEnum.FIRST_GET_TRANSACTION
        assert as_utc(stored.completed_at) == clock.now
        assert as_utc(stored.code_expires_at) == clock.now
        notifications = (
            await session.execute(select(Notification).where(Notification.user_id == donor.id))
        ).scalars().all()
        assert [item.type for item in notifications] == [NotificationTypeEnum.REQUEST_COMPLETED]

    calls_before = len(commerce_backend.calls)
    completed_at = clock.now
    clock.advance(minutes=5)

    async with session_factory() as session:
        again = await machine_factory(session).poll(request.id, requester.id)

    assert again == CompletedScan(completed_at=completed_at)
    assert len(commerce_backend.calls) == calls_before


@pytest.mark.asyncio
async def test_lapsed_code_window_is_rearmed(session_factory, seed, cipher, clock, commerce_backend, machine_factory):
    _script_live_account(commerce_backend)
    async with session_factory() as session:
        _, requester, request = await _accepted_code_request(
            session,
            seed,
            cipher,
            clock,
            code_issued_at=clock.now - timedelta(minutes=40),
            code_expires_at=clock.now - timedelta(minutes=25),
        )

    async with session_factory() as session:
        state = await machine_factory(session).poll(request.id, requester.id)

    assert isinstance(state, ActiveScan)
    assert state.expires_at == clock.now + timedelta(minutes=15)

    async with session_factory() as session:
        stored = await session.get(HelpRequest, request.id)
        assert as_utc(stored.code_expires_at) == clock.now + timedelta(minutes=15)
        assert as_utc(stored.code_issued_at) == clock.now - timedelta(minutes=40)
        assert stored.status == HelpRequestStatusEnum.ACCEPTED


@pytest.mark.asyncio
async def test_missing_issue_time_is_initialised(session_factory, seed, cipher, clock, commerce_backend, machine_factory):
    _script_live_account(commerce_backend)
    async with session_factory() as session:
        _, requester, request = await _accepted_code_request(
            session, seed, cipher, clock, code_issued_at=None, code_expires_at=None
        )

    async with session_factory() as session:
        state = await machine_factory(session).poll(request.id, requester.id)

    assert isinstance(state, ActiveScan)
    assert state.expires_at == clock.now + timedelta(minutes=15)
    oldest = commerce_backend.params(TRANSACTIONS)[0]["queryCriteria"]["oldestDate"]
    assert oldest == clock.now.isoformat().replace("+00:00", "Z")

    async with session_factory() as session:
        stored = await session.get(HelpRequest, request.id)
        assert as_utc(stored.code_issued_at) == clock.now


@pytest.mark.asyncio
async def test_only_requester_may_poll(session_factory, seed, cipher, clock, machine_factory):
    async with session_factory() as session:
        donor, _, request = await _accepted_code_request(session, seed, cipher, clock)

    async with session_factory() as session:
        machine = machine_factory(session)
        with pytest.raises(ForbiddenError):
            await machine.poll(request.id, donor.id)
        with pytest.raises(NotFoundError):
            await machine.poll(uuid4(), donor.id)


@pytest.mark.asyncio
async def test_unavailable_reasons(session_factory, seed, cipher, clock, commerce_backend, machine_factory):
    async with session_factory() as session:
        requester = await seed.user(session, "pending@example.com")
        pending = await seed.request(session, requester)
        _, transfer_requester, transfer_request = await _accepted_code_request(
            session, seed, cipher, clock, mode="TRANSFER_ONLY"
        )
        _, unlinked_requester, unlinked_request = await _accepted_code_request(
            session, seed, cipher, clock, link=False
        )
        declined = await seed.request(session, requester, status=HelpRequestStatusEnum.DECLINED)

    async with session_factory() as session:
        machine = machine_factory(session)
        assert await machine.poll(pending.id, requester.id) == UnavailableScan(UnavailableReason.NOT_ACCEPTED)
        assert await machine.poll(declined.id, requester.id) == UnavailableScan(UnavailableReason.NOT_ACCEPTED)
        assert await machine.poll(transfer_request.id, transfer_requester.id) == UnavailableScan(
            UnavailableReason.NOT_CODE_MODE
        )
        assert await machine.poll(unlinked_request.id, unlinked_requester.id) == UnavailableScan(
            UnavailableReason.DONOR_UNLINKED
        )

    assert commerce_backend.calls == []


@pytest.mark.asyncio
async def test_external_failure_degrades_to_donor_unlinked(
    session_factory, seed, cipher, clock, commerce_backend, session_cache, machine_factory
):
    commerce_backend.respond("authenticatePIN", {"response": "session-1"})
    commerce_backend.respond(PAYLOAD, {"exception": "invalid session"})
    async with session_factory() as session:
        donor, requester, request = await _accepted_code_request(session, seed, cipher, clock)

    async with session_factory() as session:
        state = await machine_factory(session).poll(request.id, requester.id)

    assert state == UnavailableScan(UnavailableReason.DONOR_UNLINKED)
    assert session_cache.get(donor.id) is None

    async with session_factory() as session:
        stored = await session.get(HelpRequest, request.id)
        assert stored.status == HelpRequestStatusEnum.ACCEPTED


@pytest.mark.asyncio
async def test_undecryptable_credentials_degrade_without_external_calls(
    session_factory, seed, cipher, clock, commerce_backend, machine_factory
):
    other = SecretCipher(key_b64="QUJDREVGR0hJSktMTU5PUFFSU1RVVldYWVphYmNkZWY=")
    async with session_factory() as session:
        donor, requester, request = await _accepted_code_request(session, seed, cipher, clock, link=False)
        await seed.credential(session, donor, other)

    async with session_factory() as session:
        state = await machine_factory(session).poll(request.id, requester.id)

    assert state == UnavailableScan(UnavailableReason.DONOR_UNLINKED)
    assert commerce_backend.calls == []


@pytest.mark.asyncio
async def test_empty_payload_is_donor_unlinked(session_factory, seed, cipher, clock, commerce_backend, machine_factory):
    _script_live_account(commerce_backend, payload="")
    async with session_factory() as session:
        _, requester, request = await _accepted_code_request(session, seed, cipher, clock)

    async with session_factory() as session:
        state = await machine_factory(session).poll(request.id, requester.id)

    assert state == UnavailableScan(UnavailableReason.DONOR_UNLINKED)


@pytest.mark.asyncio
async def test_scan_endpoint_shapes(app_with_db, seed, cipher, commerce_backend):
    app, session_factory = app_with_db
    now = datetime.now(timezone.utc)
    _script_live_account(commerce_backend, payload="BARCODE-9")

    async with session_factory() as session:
        donor = await seed.user(session, "donor@example.com")
        await seed.credential(session, donor, cipher)
        requester = await seed.user(session, "requester@example.com")
        request = await seed.request(
            session,
            requester,
            status=HelpRequestStatusEnum.ACCEPTED,
            donor_id=donor.id,
            fulfillment_mode="CODE_ONLY",
            code_issued_at=now - timedelta(minutes=1),
            code_expires_at=now + timedelta(minutes=10),
        )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        url = f"/api/v1/requests/{request.id}/scan"
        active = await client.get(url, headers={"X-Session-User": str(requester.id)})
        forbidden = await client.get(url, headers={"X-Session-User": str(donor.id)})

        commerce_backend.respond(TRANSACTIONS, {"response": {"transactions": [{"transactionId": "txn-1"}]}})
        completed = await client.get(url, headers={"X-Session-User": str(requester.id)})

    assert active.status_code == 200
    body = active.json()
    assert body["state"] == "active"
    assert body["payload"] == "BARCODE-9"
    assert body["refreshMs"] == 5000
    assert "expiresAt" in body

    assert forbidden.status_code == 403
    assert forbidden.json() == {"error": "Forbidden"}

    assert completed.status_code == 200
    assert completed.json()["state"] == "completed"
    assert "completedAt" in completed.json()
