import gc
from types import SimpleNamespace

import pytest

from db import MemoryStore, SupabaseStore, create_store
from errors import ConflictError, NotFoundError, StoreError


def test_add_get_update_delete(store):
    doc = store.add("things", {"name": "a", "n": 1})
    assert doc.version == 1
    updated = store.update("things", doc.id, {"n": 2})
    assert dict(updated.data) == {"name": "a", "n": 2}
    assert updated.version == 2
    store.delete("things", doc.id)
    assert store.get("things", doc.id) is None


def test_documents_are_read_only_copies(store):
    doc = store.set("things", "x", {"tags": ["a"]})
    with pytest.raises(TypeError):
        doc.data["tags"] = []
    doc.data["tags"].append("b")
    assert store.get("things", "x").data["tags"] == ["a"]


def test_update_missing_document(store):
    with pytest.raises(NotFoundError):
        store.update("things", "nope", {"n": 1})


def test_compare_and_swap(store):
    doc = store.set("things", "x", {"n": 1})
    store.update("things", "x", {"n": 2}, expected_version=doc.version)
    with pytest.raises(ConflictError):
        store.update("things", "x", {"n": 3}, expected_version=doc.version)
    assert store.get("things", "x").data["n"] == 2


def test_query_with_equality_filters(store):
    store.set("things", "a", {"kind": "x", "owner": "u1"})
    store.set("things", "b", {"kind": "x", "owner": "u2"})
    store.set("things", "c", {"kind": "y", "owner": "u1"})
    assert sorted(d.id for d in store.query("things", kind="x")) == ["a", "b"]
    assert [d.id for d in store.query("things", kind="x", owner="u1")] == ["a"]


def test_paths_are_scoped_by_app_id():
    one, two = MemoryStore("one"), MemoryStore("two")
    one.set("things", "x", {"n": 1})
    assert two.get("things", "x") is None


def test_subscription_delivers_full_snapshots_until_cancelled(store):
    seen = []
    sub = store.subscribe("things", lambda snap: seen.append(sorted(d.id for d in snap)))
    store.set("things", "a", {})
    store.set("things", "b", {})
    sub.cancel()
    store.set("things", "c", {})

    assert seen == [[], ["a"], ["a", "b"]]
    assert not sub.active


def test_filtered_subscription(store):
    seen = []
    store.subscribe("things", lambda snap: seen.append([d.id for d in snap]), filters={"kind": "x"})
    store.set("things", "a", {"kind": "y"})
    store.set("things", "b", {"kind": "x"})
    assert seen[-1] == ["b"]


def test_require_raises_not_found(store):
    with pytest.raises(NotFoundError) as exc:
        store.require("rides", "missing", "Ride")
    assert str(exc.value) == "Ride not found."


def test_create_store_needs_supabase_settings():
    assert isinstance(create_store("memory", "app"), MemoryStore)
    with pytest.raises(StoreError):
        create_store("supabase", "app")


class FakeQuery:
    """Records the postgrest builder chain and returns canned rows."""

    def __init__(self, rows=None, error=None):
        self.calls = []
        self.rows = rows or []
        self.error = error

    def __getattr__(self, name):
        def _call(*args, **kwargs):
            self.calls.append((name, args))
            return self
        return _call

    def execute(self):
        if self.error:
            raise self.error
        return SimpleNamespace(data=self.rows)


def _store(query):
    client = SimpleNamespace(table=lambda name: query)
    return SupabaseStore(client, "app-1")


def test_supabase_query_pushes_filters_into_jsonb():
    query = FakeQuery(rows=[{"id": "r1", "data": {"status": "accepted"}, "version": 3}])
    docs = _store(query).query("ride_requests", status="accepted", flag=True)

    assert docs[0].id == "r1" and docs[0].version == 3
    assert ("eq", ("app_id", "app-1")) in query.calls
    assert ("eq", ("collection", "ride_requests")) in query.calls
    assert ("eq", ("data->>status", "accepted")) in query.calls
    assert ("eq", ("data->>flag", "true")) in query.calls


def test_supabase_rls_errors_get_a_hint():
    query = FakeQuery(error=Exception("new row violates row-level security policy"))
    with pytest.raises(StoreError) as exc:
        _store(query).get("rides", "r1")
    assert "Row-Level Security" in str(exc.value)


def test_supabase_create_inserts_and_maps_duplicates_to_conflict():
    query = FakeQuery(rows=[{"id": "t1", "data": {"n": 1}, "version": 1}])
    doc = _store(query).create("messages", "t1", {"n": 1})
    assert doc.version == 1
    assert query.calls[0][0] == "insert"

    query = FakeQuery(error=Exception('duplicate key value violates unique constraint "documents_pkey" (23505)'))
    with pytest.raises(ConflictError):
        _store(query).create("messages", "t1", {"n": 1})


def test_supabase_authenticate_sets_the_session_token():
    tokens = []
    client = SimpleNamespace(table=lambda name: FakeQuery(),
                             postgrest=SimpleNamespace(auth=tokens.append))
    store = SupabaseStore(client, "app-1")
    store.authenticate(None)
    store.authenticate("jwt-1")
    assert tokens == ["jwt-1"]


def test_supabase_refresh_delivers_only_changed_snapshots():
    query = FakeQuery(rows=[{"id": "r1", "data": {}, "version": 1}])
    store = _store(query)
    seen = []
    store.subscribe("rides", lambda snap: seen.append([(d.id, d.version) for d in snap]))

    store.refresh()
    query.rows = [{"id": "r1", "data": {}, "version": 2}]
    store.refresh()
    store.refresh()

    assert seen == [[("r1", 1)], [("r1", 2)]]


class Session:
    def __init__(self):
        self.seen = []

    def on_snapshot(self, snapshot):
        self.seen.append(len(snapshot))


def test_subscriptions_do_not_keep_sessions_alive(store):
    session = Session()
    store.subscribe("things", session.on_snapshot)
    store.set("things", "a", {})
    assert session.seen == [0, 1]
    assert store.live_listeners("things") == 1

    del session
    gc.collect()
    store.set("things", "b", {})
    assert store.live_listeners("things") == 0


def test_create_refuses_existing_documents(store):
    store.create("things", "x", {"n": 1})
    with pytest.raises(ConflictError):
        store.create("things", "x", {"n": 2})
    assert store.get("things", "x").data["n"] == 1
