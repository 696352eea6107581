"""Document store backends.

Documents are addressed by (app id, collection, document id). Each write
bumps a store-managed ``version``; callers that pass ``expected_version``
get compare-and-swap semantics and a ConflictError when someone else wrote
first. ``create`` only succeeds for a document that does not exist yet.

Subscriptions deliver full-collection snapshots and return a handle whose
``cancel()`` stops delivery. The in-memory backend pushes a snapshot after
every write; the Supabase backend delivers changed snapshots when the
session calls ``refresh()``. Callbacks that are bound methods are held
weakly, so a session that is dropped without logging out stops receiving
snapshots once its state is garbage collected.
"""
import copy
import inspect
import logging
import threading
import uuid
import weakref
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from supabase import create_client

from errors import ConflictError, NotFoundError, StoreError

logger = logging.getLogger(__name__)

PROFILES = "profiles"
RIDES = "rides"
RIDE_REQUESTS = "ride_requests"
WALLETS = "wallets"
SETTLEMENTS = "settlements"
MESSAGES = "messages"

CHANGED = "This item was changed by someone else. Please try again."
EXISTS = "This item already exists."


@dataclass(frozen=True)
class Document:
    id: str
    data: Mapping
    version: int


Snapshot = Tuple[Document, ...]
SnapshotCallback = Callable[[Snapshot], None]


def _freeze(doc_id: str, data: dict, version: int) -> Document:
    return Document(doc_id, MappingProxyType(copy.deepcopy(data)), version)


def _matches(data: Mapping, filters: Mapping) -> bool:
    return all(data.get(k) == v for k, v in filters.items())


class Subscription:
    def __init__(self, on_cancel: Callable[[], None]):
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self):
        if self._active:
            self._active = False
            self._on_cancel()


class _Listener:
    def __init__(self, callback: SnapshotCallback, filters: dict):
        self.filters = filters
        self.marker = None
        if inspect.ismethod(callback):
            self._ref = weakref.WeakMethod(callback)
        else:
            self._ref = lambda: callback

    @property
    def callback(self) -> Optional[SnapshotCallback]:
        return self._ref()


class DocumentStore:
    """Interface shared by the hosted and in-memory backends."""

    def __init__(self, app_id: str):
        self.app_id = app_id
        self._listeners: Dict[str, List[_Listener]] = {}
        self._listeners_lock = threading.Lock()

    def authenticate(self, access_token: Optional[str]):
        """Run later reads and writes as the signed-in user."""

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, data: dict) -> Document:
        raise NotImplementedError

    def create(self, collection: str, doc_id: str, data: dict) -> Document:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, changes: dict,
               expected_version: Optional[int] = None) -> Document:
        raise NotImplementedError

    def add(self, collection: str, data: dict) -> Document:
        return self.create(collection, uuid.uuid4().hex, data)

    def delete(self, collection: str, doc_id: str):
        raise NotImplementedError

    def query(self, collection: str, **filters) -> Snapshot:
        raise NotImplementedError

    def require(self, collection: str, doc_id: str, label: str = "Document") -> Document:
        doc = self.get(collection, doc_id) if doc_id else None
        if doc is None:
            raise NotFoundError(f"{label} not found.")
        return doc

    # Subscriptions

    def subscribe(self, collection: str, callback: SnapshotCallback,
                  filters: Optional[dict] = None) -> Subscription:
        listener = _Listener(callback, dict(filters or {}))
        with self._listeners_lock:
            self._listeners.setdefault(collection, []).append(listener)

        def _remove():
            with self._listeners_lock:
                live = self._listeners.get(collection, [])
                if listener in live:
                    live.remove(listener)

        self._deliver(collection, [listener])
        return Subscription(_remove)

    def live_listeners(self, collection: str) -> int:
        return len(self._live(collection))

    def refresh(self):
        """Deliver snapshots that changed since the last delivery."""
        with self._listeners_lock:
            collections = list(self._listeners)
        for collection in collections:
            self._deliver(collection, self._live(collection), only_changed=True)

    def _live(self, collection: str) -> List[_Listener]:
        with self._listeners_lock:
            live = [l for l in self._listeners.get(collection, []) if l.callback is not None]
            self._listeners[collection] = live
            return list(live)

    def _deliver(self, collection: str, listeners: List[_Listener], only_changed: bool = False):
        for listener in listeners:
            callback = listener.callback
            if callback is None:
                continue
            snapshot = self.query(collection, **listener.filters)
            marker = sorted((d.id, d.version) for d in snapshot)
            if only_changed and marker == listener.marker:
                continue
            listener.marker = marker
            callback(snapshot)


# ===========================
# IN-MEMORY BACKEND
# ===========================
class MemoryStore(DocumentStore):
    """Process-local store with synchronous snapshot delivery."""

    def __init__(self, app_id: str = "local"):
        super().__init__(app_id)
        self._lock = threading.RLock()
        self._docs: Dict[Tuple[str, str], Dict[str, Tuple[dict, int]]] = {}

    def _table(self, collection: str) -> Dict[str, Tuple[dict, int]]:
        return self._docs.setdefault((self.app_id, collection), {})

    def get(self, collection, doc_id):
        with self._lock:
            row = self._table(collection).get(doc_id)
            return _freeze(doc_id, *row) if row else None

    def set(self, collection, doc_id, data):
        with self._lock:
            table = self._table(collection)
            version = table[doc_id][1] + 1 if doc_id in table else 1
            table[doc_id] = (copy.deepcopy(data), version)
            doc = _freeze(doc_id, data, version)
        self._notify(collection)
        return doc

    def create(self, collection, doc_id, data):
        with self._lock:
            table = self._table(collection)
            if doc_id in table:
                raise ConflictError(EXISTS)
            table[doc_id] = (copy.deepcopy(data), 1)
            doc = _freeze(doc_id, data, 1)
        self._notify(collection)
        return doc

    def update(self, collection, doc_id, changes, expected_version=None):
        with self._lock:
            table = self._table(collection)
            if doc_id not in table:
                raise NotFoundError(f"{collection}/{doc_id} not found.")
            data, version = table[doc_id]
            if expected_version is not None and version != expected_version:
                raise ConflictError(CHANGED)
            merged = {**data, **copy.deepcopy(changes)}
            table[doc_id] = (merged, version + 1)
            doc = _freeze(doc_id, merged, version + 1)
        self._notify(collection)
        return doc

    def delete(self, collection, doc_id):
        with self._lock:
            self._table(collection).pop(doc_id, None)
        self._notify(collection)

    def query(self, collection, **filters):
        with self._lock:
            return tuple(
                _freeze(doc_id, data, version)
                for doc_id, (data, version) in self._table(collection).items()
                if _matches(data, filters)
            )

    def _notify(self, collection: str):
        self._deliver(collection, self._live(collection))


# ===========================
# SUPABASE BACKEND
# ===========================
RLS_HINT = (
    "The write was blocked by Supabase Row-Level Security (RLS). "
    "Add a policy on the documents table that allows authenticated users to "
    "insert and update rows, e.g. "
    "CREATE POLICY \"Allow writes for authenticated users\" ON public.documents "
    "FOR ALL USING (auth.uid() IS NOT NULL);"
)


def _as_text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SupabaseStore(DocumentStore):
    """Documents live in one table: (app_id, collection, id, data jsonb, version).

    The client should be the one the session signs in with, so PostgREST
    requests carry the user's JWT and pass the table's RLS policy.
    """

    def __init__(self, client, app_id: str, table: str = "documents"):
        super().__init__(app_id)
        self.client = client
        self.table = table

    def authenticate(self, access_token):
        if access_token:
            self.client.postgrest.auth(access_token)

    def _rows(self, collection: str):
        return (
            self.client.table(self.table)
            .select("*")
            .eq("app_id", self.app_id)
            .eq("collection", collection)
        )

    def _execute(self, query, action: str):
        try:
            res = query.execute()
        except Exception as e:
            msg = str(e)
            if "row-level security" in msg or "42501" in msg or "permission denied" in msg:
                raise StoreError(RLS_HINT) from e
            if "23505" in msg or "duplicate key" in msg:
                raise ConflictError(EXISTS) from e
            raise StoreError(f"{action} failed: {e}") from e
        return res.data if getattr(res, "data", None) else []

    @staticmethod
    def _to_document(row: dict) -> Document:
        return _freeze(row["id"], row.get("data") or {}, int(row.get("version") or 1))

    def _row(self, collection, doc_id, data, version) -> dict:
        return {
            "app_id": self.app_id,
            "collection": collection,
            "id": doc_id,
            "data": data,
            "version": version,
        }

    def get(self, collection, doc_id):
        rows = self._execute(self._rows(collection).eq("id", doc_id), "Read")
        return self._to_document(rows[0]) if rows else None

    def set(self, collection, doc_id, data):
        current = self.get(collection, doc_id)
        row = self._row(collection, doc_id, data, current.version + 1 if current else 1)
        rows = self._execute(self.client.table(self.table).upsert(row), "Write")
        return self._to_document(rows[0]) if rows else _freeze(doc_id, data, row["version"])

    def create(self, collection, doc_id, data):
        row = self._row(collection, doc_id, data, 1)
        rows = self._execute(self.client.table(self.table).insert(row), "Write")
        return self._to_document(rows[0]) if rows else _freeze(doc_id, data, 1)

    def update(self, collection, doc_id, changes, expected_version=None):
        current = self.get(collection, doc_id)
        if current is None:
            raise NotFoundError(f"{collection}/{doc_id} not found.")
        if expected_version is not None and current.version != expected_version:
            raise ConflictError(CHANGED)
        merged = {**current.data, **changes}
        query = (
            self.client.table(self.table)
            .update({"data": merged, "version": current.version + 1})
            .eq("app_id", self.app_id)
            .eq("collection", collection)
            .eq("id", doc_id)
        )
        if expected_version is not None:
            query = query.eq("version", expected_version)
        rows = self._execute(query, "Update")
        if not rows and expected_version is not None:
            raise ConflictError(CHANGED)
        return self._to_document(rows[0]) if rows else _freeze(doc_id, merged, current.version + 1)

    def delete(self, collection, doc_id):
        self._execute(
            self.client.table(self.table)
            .delete()
            .eq("app_id", self.app_id)
            .eq("collection", collection)
            .eq("id", doc_id),
            "Delete",
        )

    def query(self, collection, **filters):
        q = self._rows(collection)
        for k, v in filters.items():
            q = q.is_(f"data->>{k}", "null") if v is None else q.eq(f"data->>{k}", _as_text(v))
        return tuple(self._to_document(row) for row in self._execute(q, "Query"))


def create_store(backend: str, app_id: str, url: str = None, key: str = None,
                 table: str = "documents", client=None) -> DocumentStore:
    if backend == "memory":
        return MemoryStore(app_id)
    if client is None:
        if not url or not key:
            raise StoreError("Missing Supabase settings. Set SUPABASE_URL and SUPABASE_KEY.")
        client = create_client(url, key)
    return SupabaseStore(client, app_id, table=table)
