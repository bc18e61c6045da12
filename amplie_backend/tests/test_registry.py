import pytest

from amplie_backend.whatsapp.errors import (
    DuplicateInstanceError,
    DuplicateWebhookError,
    InstanceNotFoundError,
    WebhookNotFoundError,
)
from amplie_backend.whatsapp.models import InstanceStatus, MessagingInstance, WebhookConfiguration
from amplie_backend.whatsapp.registry import InMemorySessionRegistry, SupabaseSessionRegistry


class _Result:
    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count


class _Query:
    def __init__(self, handler):
        self._handler = handler
        self._ops = []

    def select(self, *args, **kwargs):
        self._ops.append(("select", args, kwargs))
        return self

    def eq(self, field, value):
        self._ops.append(("eq", field, value))
        return self

    def limit(self, n):
        self._ops.append(("limit", n))
        return self

    def order(self, *args, **kwargs):
        self._ops.append(("order", args, kwargs))
        return self

    def insert(self, data):
        self._ops.append(("insert", data))
        return self

    def update(self, data):
        self._ops.append(("update", data))
        return self

    def delete(self):
        self._ops.append(("delete",))
        return self

    def execute(self):
        return self._handler(self._ops)


class _SupabaseStub:
    def __init__(self, table_handler):
        self._table_handler = table_handler
        self.calls = []

    def table(self, name):
        def handle(ops):
            self.calls.append((name, list(ops)))
            return self._table_handler(name, ops)
        return _Query(handle)


def _eqs(ops):
    return {op[1]: op[2] for op in ops if op[0] == "eq"}


def _kind(ops):
    for op in ops:
        if op[0] in ("insert", "update", "delete"):
            return op[0]
    return "select"


_ROW = {
    "id": "inst-1",
    "tenant_id": "t1",
    "instance_name": "acme-support",
    "status": "awaiting_pairing",
    "pairing_code": "data:image/png;base64,AAA",
    "is_active": True,
}


# ==================== IN-MEMORY ====================

def test_in_memory_instances_are_scoped_by_tenant():
    reg = InMemorySessionRegistry()
    a = reg.create_instance(MessagingInstance(tenant_id="t1", instance_name="shared"))
    reg.create_instance(MessagingInstance(tenant_id="t2", instance_name="other"))

    assert a.id
    assert a.created_at
    assert [i.instance_name for i in reg.list_instances("t1")] == ["shared"]
    assert reg.get_instance("t2", "shared") is None
    assert reg.find_instance("other").tenant_id == "t2"

    with pytest.raises(DuplicateInstanceError):
        reg.create_instance(MessagingInstance(tenant_id="t1", instance_name="shared"))


def test_in_memory_update_and_cascading_delete():
    reg = InMemorySessionRegistry()
    inst = reg.create_instance(MessagingInstance(tenant_id="t1", instance_name="acme"))
    reg.create_webhook(WebhookConfiguration(instance_id=inst.id, tenant_id="t1", url="https://x/hook"))

    updated = reg.update_instance("t1", "acme", status=InstanceStatus.PAIRED, phone_number="5511")
    assert updated.status is InstanceStatus.PAIRED
    assert reg.get_instance("t1", "acme").phone_number == "5511"

    with pytest.raises(DuplicateWebhookError):
        reg.create_webhook(WebhookConfiguration(instance_id=inst.id, tenant_id="t1", url="https://y/hook"))

    assert reg.delete_instance("t1", "acme") is True
    assert reg.get_webhook(inst.id) is None
    assert reg.delete_instance("t1", "acme") is False

    with pytest.raises(InstanceNotFoundError):
        reg.update_instance("t1", "acme", status=InstanceStatus.DISCONNECTED)
    with pytest.raises(WebhookNotFoundError):
        reg.update_webhook(inst.id, enabled=False)


# ==================== SUPABASE ====================

def test_supabase_get_instance_filters_by_tenant_and_name():
    def handler(name, ops):
        assert name == "whatsapp_instances"
        return _Result(data=[dict(_ROW)])

    db = _SupabaseStub(handler)
    inst = SupabaseSessionRegistry(db).get_instance("t1", "acme-support")

    assert inst.status is InstanceStatus.AWAITING_PAIRING
    assert inst.pairing_code == "data:image/png;base64,AAA"
    assert _eqs(db.calls[0][1]) == {"tenant_id": "t1", "instance_name": "acme-support"}


def test_supabase_create_instance_serializes_status():
    inserted = []

    def handler(name, ops):
        if _kind(ops) == "insert":
            row = ops[-1][1]
            inserted.append(row)
            return _Result(data=[row])
        return _Result(data=[])

    reg = SupabaseSessionRegistry(_SupabaseStub(handler))
    inst = reg.create_instance(MessagingInstance(tenant_id="t1", instance_name="novo", status=InstanceStatus.CREATING))

    assert inserted[0]["status"] == "creating"
    assert inserted[0]["id"]
    assert inst.status is InstanceStatus.CREATING


def test_supabase_unique_violation_maps_to_duplicate():
    def handler(name, ops):
        if _kind(ops) == "insert":
            raise Exception('duplicate key value violates unique constraint "whatsapp_instances_tenant_name" (23505)')
        return _Result(data=[])

    reg = SupabaseSessionRegistry(_SupabaseStub(handler))
    with pytest.raises(DuplicateInstanceError):
        reg.create_instance(MessagingInstance(tenant_id="t1", instance_name="novo"))


def test_supabase_update_without_rows_is_not_found():
    updates = []

    def handler(name, ops):
        updates.append(ops[0][1])
        return _Result(data=[])

    reg = SupabaseSessionRegistry(_SupabaseStub(handler))
    with pytest.raises(InstanceNotFoundError):
        reg.update_instance("t1", "ghost", status=InstanceStatus.PAIRED, pairing_code=None)

    assert updates[0]["status"] == "paired"
    assert updates[0]["pairing_code"] is None
    assert "updated_at" in updates[0]


def test_supabase_update_webhook_lists_events():
    def handler(name, ops):
        assert name == "whatsapp_webhooks"
        data = ops[0][1]
        assert data["events"] == ["CONNECTION_UPDATE"]
        return _Result(data=[{"id": "w1", "instance_id": "inst-1", "tenant_id": "t1", "url": "https://x", "events": data["events"]}])

    cfg = SupabaseSessionRegistry(_SupabaseStub(handler)).update_webhook("inst-1", events=("CONNECTION_UPDATE",))
    assert cfg.events == ("CONNECTION_UPDATE",)


def test_supabase_delete_instance_removes_webhook_first():
    def handler(name, ops):
        if _kind(ops) == "select":
            return _Result(data=[dict(_ROW)])
        return _Result(data=[{"id": "x"}])

    db = _SupabaseStub(handler)
    assert SupabaseSessionRegistry(db).delete_instance("t1", "acme-support") is True

    deletes = [(name, _eqs(ops)) for name, ops in db.calls if _kind(ops) == "delete"]
    assert deletes == [
        ("whatsapp_webhooks", {"instance_id": "inst-1"}),
        ("whatsapp_instances", {"tenant_id": "t1", "instance_name": "acme-support"}),
    ]


def test_supabase_delete_missing_instance_is_noop():
    db = _SupabaseStub(lambda name, ops: _Result(data=[]))
    assert SupabaseSessionRegistry(db).delete_instance("t1", "ghost") is False
    assert all(_kind(ops) == "select" for _, ops in db.calls)
