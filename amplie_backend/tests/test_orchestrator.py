import asyncio
import time
import logging

import pytest

from amplie_backend.whatsapp.config import SessionSettings
from amplie_backend.whatsapp.errors import (
    DuplicateInstanceError,
    InstanceNotFoundError,
    InvalidInstanceNameError,
    InvalidWebhookEventsError,
    PairingTimedOutError,
    ProviderRejectedError,
    TransportError,
)
from amplie_backend.whatsapp.models import InstanceStatus, WebhookRequest
from amplie_backend.whatsapp.observability import Observability
from amplie_backend.whatsapp.orchestrator import ConnectionOrchestrator
from amplie_backend.whatsapp.polling import KeyedLock, PairingPollers
from amplie_backend.whatsapp.registry import InMemorySessionRegistry

TENANT = "tenant-acme"
OWNER_JID = "5511912345678@s.whatsapp.net"


class _FakeEvolution:
    def __init__(self, *, states=None, create_body=None, create_error=None, delete_error=None, connect_body=None):
        self.calls = []
        self.states = list(states or [])
        self.create_body = create_body
        self.create_error = create_error
        self.delete_error = delete_error
        self.connect_body = connect_body
        self.qr_count = 0

    async def create_instance(self, name, *, webhook_url=None, events=None, number=None):
        self.calls.append(("create", name, webhook_url))
        if self.create_error:
            raise self.create_error
        if self.create_body is not None:
            return self.create_body
        return {"instance": {"instanceName": name}, "qrcode": {"base64": "data:image/png;base64,QR0"}}

    async def connect_instance(self, name, *, number=None):
        self.calls.append(("connect", name))
        if self.connect_body is not None:
            return self.connect_body
        self.qr_count += 1
        return {"base64": f"data:image/png;base64,QR{self.qr_count}"}

    async def get_connection_state(self, name):
        self.calls.append(("state", name))
        state = self.states.pop(0) if self.states else "connecting"
        return {"instance": {"instanceName": name, "state": state}}

    async def fetch_instances(self):
        return [{"name": "acme-support", "ownerJid": OWNER_JID}]

    async def logout_instance(self, name):
        self.calls.append(("logout", name))
        return {"status": "SUCCESS"}

    async def restart_instance(self, name):
        self.calls.append(("restart", name))
        return {"instance": {"state": "connecting"}}

    async def delete_instance(self, name):
        self.calls.append(("delete", name))
        if self.delete_error:
            raise self.delete_error
        return {"status": "SUCCESS"}

    def count(self, op):
        return len([c for c in self.calls if c[0] == op])


class _FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds
        await asyncio.sleep(0)


def _orchestrator(fake, *, registry=None, listener=None, interval=5.0, max_attempts=24, timeout=None, clock=None):
    clock = clock or _FakeClock()
    settings = SessionSettings(
        poll_interval_s=interval,
        max_poll_attempts=max_attempts,
        pairing_timeout_s=timeout,
        public_base_url="https://api.test",
    )
    return ConnectionOrchestrator(
        tenant_id=TENANT,
        client_factory=lambda: fake,
        registry=registry or InMemorySessionRegistry(),
        settings=settings,
        obs=Observability(logging.getLogger("whatsapp.test")),
        locks=KeyedLock(),
        pollers=PairingPollers(),
        listener=listener,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.mark.anyio
async def test_acme_support_create_pair_delete():
    seen = []
    fake = _FakeEvolution(states=["connecting", "connecting", "open"])
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry, listener=lambda inst: seen.append(inst.status))

    created = await orch.create_instance("acme-support")
    assert created.status == InstanceStatus.AWAITING_PAIRING
    assert created.pairing_code == "data:image/png;base64,QR0"

    paired = await orch.wait_for_pairing("acme-support")
    assert paired.status == InstanceStatus.PAIRED
    assert paired.pairing_code is None
    assert paired.phone_number == "5511912345678"
    assert seen == [InstanceStatus.CREATING, InstanceStatus.AWAITING_PAIRING, InstanceStatus.PAIRED]

    assert await orch.delete_instance("acme-support") is True
    assert registry.get_instance(TENANT, "acme-support") is None
    assert fake.count("delete") == 1
    assert seen[-1] == InstanceStatus.DELETED


@pytest.mark.anyio
async def test_status_sequence_is_monotonic():
    order = [
        InstanceStatus.CREATING,
        InstanceStatus.AWAITING_PAIRING,
        InstanceStatus.PAIRED,
        InstanceStatus.DISCONNECTED,
    ]
    seen = []
    fake = _FakeEvolution(states=["close", "connecting", "open"])
    orch = _orchestrator(fake, listener=lambda inst: seen.append(inst.status))

    await orch.create_instance("acme-support")
    await orch.wait_for_pairing("acme-support")
    await orch.disconnect("acme-support")

    ranks = [order.index(s) for s in seen]
    assert ranks == sorted(ranks)
    assert seen[0] == InstanceStatus.CREATING
    assert seen[-1] == InstanceStatus.DISCONNECTED


@pytest.mark.anyio
async def test_single_stored_artifact_after_refreshes():
    fake = _FakeEvolution()
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry)

    await orch.create_instance("acme-support", start_polling=False)
    for _ in range(3):
        await orch.request_pairing("acme-support")

    stored = registry.get_instance(TENANT, "acme-support")
    assert stored.pairing_code == "data:image/png;base64,QR3"
    assert stored.status == InstanceStatus.AWAITING_PAIRING
    assert orch.is_polling("acme-support")

    await orch._pollers.cancel_all()


@pytest.mark.anyio
async def test_close_state_refreshes_artifact_during_poll():
    codes = []
    fake = _FakeEvolution(states=["close", "close", "open"])
    orch = _orchestrator(fake, listener=lambda inst: codes.append(inst.pairing_code))

    await orch.create_instance("acme-support")
    await orch.wait_for_pairing("acme-support")

    assert fake.count("connect") == 2
    assert "data:image/png;base64,QR2" in codes
    assert codes[-1] is None


@pytest.mark.anyio
async def test_pairing_times_out_after_max_attempts():
    clock = _FakeClock()
    fake = _FakeEvolution()
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry, interval=5.0, max_attempts=4, clock=clock)

    await orch.create_instance("acme-support")
    with pytest.raises(PairingTimedOutError) as exc:
        await orch.wait_for_pairing("acme-support")

    assert exc.value.details["attempts"] == 4
    assert clock.now <= 4 * 5.0 + 5.0
    stored = registry.get_instance(TENANT, "acme-support")
    assert stored.status == InstanceStatus.DISCONNECTED
    assert stored.pairing_code is None
    assert orch.pairing_error("acme-support") == "pairing_timed_out"

    await orch.request_pairing("acme-support")
    assert orch.pairing_error("acme-support") is None
    await orch._pollers.cancel_all()


@pytest.mark.anyio
async def test_pairing_respects_wall_clock_timeout():
    clock = _FakeClock()
    fake = _FakeEvolution()
    orch = _orchestrator(fake, interval=5.0, max_attempts=24, timeout=12.0, clock=clock)

    await orch.create_instance("acme-support")
    with pytest.raises(PairingTimedOutError):
        await orch.wait_for_pairing("acme-support")

    assert 12.0 <= clock.now <= 12.0 + 5.0


class _RealClock:
    def __call__(self):
        return time.monotonic()

    async def sleep(self, seconds):
        await asyncio.sleep(seconds)


@pytest.mark.anyio
async def test_hanging_status_calls_stay_within_the_pairing_budget():
    class _Hanging(_FakeEvolution):
        async def get_connection_state(self, name):
            self.calls.append(("state", name))
            await asyncio.sleep(30)

    fake = _Hanging()
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry, interval=0.05, max_attempts=3, clock=_RealClock())

    await orch.create_instance("acme-support")
    started = time.monotonic()
    with pytest.raises(PairingTimedOutError) as exc:
        await orch.wait_for_pairing("acme-support")

    assert time.monotonic() - started < 0.15 + 0.05 + 0.5
    assert exc.value.details["elapsed_s"] <= 0.15 + 0.05 + 0.5
    assert registry.get_instance(TENANT, "acme-support").status == InstanceStatus.DISCONNECTED


@pytest.mark.anyio
async def test_transport_errors_on_poll_count_as_attempts():
    class _Flaky(_FakeEvolution):
        async def get_connection_state(self, name):
            self.calls.append(("state", name))
            raise TransportError("boom")

    fake = _Flaky()
    orch = _orchestrator(fake, max_attempts=3)

    await orch.create_instance("acme-support")
    with pytest.raises(PairingTimedOutError):
        await orch.wait_for_pairing("acme-support")
    assert fake.count("state") == 3


@pytest.mark.anyio
async def test_delete_cancels_running_poll():
    fake = _FakeEvolution()
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry, max_attempts=10_000)

    await orch.create_instance("acme-support")
    assert orch.is_polling("acme-support")
    for _ in range(5):
        await asyncio.sleep(0)

    assert await orch.delete_instance("acme-support") is True
    assert not orch.is_polling("acme-support")

    polled = fake.count("state")
    for _ in range(5):
        await asyncio.sleep(0)
    assert fake.count("state") == polled
    assert registry.get_instance(TENANT, "acme-support") is None


@pytest.mark.anyio
async def test_delete_is_idempotent():
    fake = _FakeEvolution()
    orch = _orchestrator(fake)

    await orch.create_instance("acme-support", start_polling=False)
    assert await orch.delete_instance("acme-support") is True
    assert await orch.delete_instance("acme-support") is False
    assert await orch.delete_instance("never-existed") is False
    assert fake.count("delete") == 1


@pytest.mark.anyio
async def test_remote_delete_failure_still_removes_local_record(caplog):
    fake = _FakeEvolution(delete_error=TransportError("provider down"))
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry)

    await orch.create_instance("acme-support", start_polling=False)
    with caplog.at_level(logging.WARNING, logger="whatsapp.test"):
        assert await orch.delete_instance("acme-support") is True

    assert registry.get_instance(TENANT, "acme-support") is None
    assert "whatsapp.instance.remote_delete_failed" in caplog.text


@pytest.mark.anyio
async def test_provider_create_failure_removes_local_record():
    fake = _FakeEvolution(create_error=ProviderRejectedError("name in use", status_code=403))
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry)

    with pytest.raises(ProviderRejectedError):
        await orch.create_instance("acme-support")
    assert registry.get_instance(TENANT, "acme-support") is None


@pytest.mark.anyio
async def test_create_without_artifact_stays_creating():
    fake = _FakeEvolution(create_body={"instance": {"instanceName": "acme-support"}}, connect_body={})
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry)

    with pytest.raises(ProviderRejectedError):
        await orch.create_instance("acme-support")
    assert registry.get_instance(TENANT, "acme-support").status == InstanceStatus.CREATING
    assert not orch.is_polling("acme-support")


@pytest.mark.anyio
async def test_create_rejects_duplicates_and_invalid_names():
    orch = _orchestrator(_FakeEvolution())

    await orch.create_instance("acme-support", start_polling=False)
    with pytest.raises(DuplicateInstanceError):
        await orch.create_instance("acme-support")
    with pytest.raises(InvalidInstanceNameError):
        await orch.create_instance("bad name!")
    with pytest.raises(InvalidInstanceNameError):
        await orch.create_instance("x" * 81)


@pytest.mark.anyio
async def test_create_with_webhook_persists_configuration():
    fake = _FakeEvolution()
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry)

    inst = await orch.create_instance(
        "acme-support",
        webhook=WebhookRequest(events=("CONNECTION_UPDATE", "messages_upsert")),
        start_polling=False,
    )

    cfg = registry.get_webhook(inst.id)
    assert cfg.url == "https://api.test/api/webhooks/evolution/acme-support"
    assert cfg.events == ("CONNECTION_UPDATE", "MESSAGES_UPSERT")
    assert fake.calls[0] == ("create", "acme-support", "https://api.test/api/webhooks/evolution/acme-support")


@pytest.mark.anyio
async def test_connection_updates_from_provider():
    registry = InMemorySessionRegistry()
    orch = _orchestrator(_FakeEvolution(), registry=registry)
    await orch.create_instance("acme-support")

    paired = await orch.apply_connection_update("acme-support", "open", phone=OWNER_JID)
    assert paired.status == InstanceStatus.PAIRED
    assert paired.phone_number == "5511912345678"
    assert not orch.is_polling("acme-support")

    dropped = await orch.apply_connection_update("acme-support", "close")
    assert dropped.status == InstanceStatus.DISCONNECTED
    assert await orch.apply_connection_update("unknown-inst", "open") is None


@pytest.mark.anyio
async def test_check_status_and_restart():
    fake = _FakeEvolution(states=["open", "close"])
    orch = _orchestrator(fake)
    await orch.create_instance("acme-support", start_polling=False)

    inst = await orch.check_status("acme-support")
    assert inst.status == InstanceStatus.PAIRED

    inst = await orch.restart("acme-support")
    assert fake.count("restart") == 1
    assert inst.status == InstanceStatus.DISCONNECTED


@pytest.mark.anyio
async def test_operations_on_unknown_instance_raise_not_found():
    orch = _orchestrator(_FakeEvolution())
    with pytest.raises(InstanceNotFoundError):
        await orch.check_status("ghost")
    with pytest.raises(InstanceNotFoundError):
        await orch.disconnect("ghost")
    with pytest.raises(InstanceNotFoundError):
        await orch.request_pairing("ghost")


@pytest.mark.anyio
async def test_create_rejects_an_explicit_empty_event_set():
    fake = _FakeEvolution()
    registry = InMemorySessionRegistry()
    orch = _orchestrator(fake, registry=registry)

    with pytest.raises(InvalidWebhookEventsError):
        await orch.create_instance("acme-support", webhook=WebhookRequest(events=()), start_polling=False)
    assert fake.calls == []
    assert registry.get_instance(TENANT, "acme-support") is None


@pytest.mark.anyio
async def test_instance_lock_survives_until_the_last_waiter():
    locks = KeyedLock()
    key = (TENANT, "acme-support")
    order = []
    release = asyncio.Event()

    async def first():
        async with locks.hold(key):
            order.append("first")
            await release.wait()

    async def second():
        async with locks.hold(key):
            order.append("second-in")
            await asyncio.sleep(0)
            order.append("second-out")

    async def late():
        async with locks.hold(key):
            order.append("late")

    t1 = asyncio.create_task(first())
    await asyncio.sleep(0)
    t2 = asyncio.create_task(second())
    await asyncio.sleep(0)
    release.set()
    await asyncio.sleep(0)
    t3 = asyncio.create_task(late())
    await asyncio.gather(t1, t2, t3)

    assert order == ["first", "second-in", "second-out", "late"]
    assert key not in locks


@pytest.mark.anyio
async def test_delete_releases_the_instance_lock():
    orch = _orchestrator(_FakeEvolution())
    await orch.create_instance("acme-support", start_polling=False)

    assert await orch.delete_instance("acme-support") is True
    assert (TENANT, "acme-support") not in orch._locks
