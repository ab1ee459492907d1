"""
Session Store adapter.

Per-document primitives only: get, set, update (partial, dotted field paths),
transact (read-decide-write on one document, atomically) and subscribe.
No game rules live here.

Document paths:
  sessions/{code}                 — Session record
  players/{code}_{player_id}      — Player Record
"""
import asyncio
import copy
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import Settings, settings

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
ChangeCallback = Callable[[Optional[Document]], None]
Unsubscribe = Callable[[], None]
# doc (or None) → (partial update or None, value returned to the caller)
Decision = Callable[[Optional[Document]], Tuple[Optional[Document], Any]]


def session_path(code: str) -> str:
    return f"sessions/{code}"


def player_path(code: str, player_id: str) -> str:
    return f"players/{code}_{player_id}"


class ArrayAppend:
    """
    Partial-update value that appends to an array field instead of replacing it.
    Maps to Firestore's ArrayUnion, so identical elements are not duplicated;
    callers that need duplicates must make each element unique (e.g. an id).
    """

    def __init__(self, *items: Any):
        self.items = list(items)

    def __repr__(self) -> str:
        return f"ArrayAppend({self.items!r})"


class SessionStore:
    """Interface every store backend implements."""

    async def get_document(self, path: str) -> Optional[Document]:
        raise NotImplementedError

    async def set_document(self, path: str, value: Document) -> None:
        raise NotImplementedError

    async def update_document(self, path: str, partial: Document) -> None:
        """Merge `partial` into an existing document. Keys may be dotted paths."""
        raise NotImplementedError

    async def transact(self, path: str, decide: Decision) -> Any:
        """
        Read the document, let `decide` return (partial, result), and apply the
        partial update only if the document did not change in between. A None
        partial writes nothing. Exceptions raised by `decide` abort the write
        and propagate. `decide` may run more than once, so it must not have
        side effects.
        """
        raise NotImplementedError

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        """
        Call `callback` with the current document and again after every committed
        change (None when the document does not exist). Delivery is at-least-once;
        callbacks may run on a background thread.
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


# ── In-memory backend ─────────────────────────────────────────────────────────

class MemorySessionStore(SessionStore):
    """Process-local store with the same semantics as the Firestore backend."""

    def __init__(self):
        self._docs: Dict[str, Document] = {}
        self._subscribers: Dict[str, List[ChangeCallback]] = {}

    async def get_document(self, path: str) -> Optional[Document]:
        doc = self._docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def set_document(self, path: str, value: Document) -> None:
        self._docs[path] = copy.deepcopy(value)
        self._notify(path)

    async def update_document(self, path: str, partial: Document) -> None:
        doc = self._docs.get(path)
        if doc is None:
            raise KeyError(f"No document at {path}")
        for field_path, value in partial.items():
            _apply_field(doc, field_path, value)
        self._notify(path)

    async def transact(self, path: str, decide: Decision) -> Any:
        # No await between read and write, so nothing can interleave
        doc = self._docs.get(path)
        partial, result = decide(copy.deepcopy(doc))
        if partial:
            if doc is None:
                raise KeyError(f"No document at {path}")
            for field_path, value in partial.items():
                _apply_field(doc, field_path, value)
            self._notify(path)
        return result

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        self._subscribers.setdefault(path, []).append(callback)
        callback(copy.deepcopy(self._docs.get(path)))

        def unsubscribe() -> None:
            subs = self._subscribers.get(path, [])
            if callback in subs:
                subs.remove(callback)

        return unsubscribe

    def _notify(self, path: str) -> None:
        for callback in list(self._subscribers.get(path, [])):
            try:
                callback(copy.deepcopy(self._docs.get(path)))
            except Exception:
                logger.warning("Subscriber for %s raised", path, exc_info=True)


def _apply_field(doc: Document, field_path: str, value: Any) -> None:
    """Write one dotted-path field, creating intermediate maps as Firestore does."""
    keys = field_path.split(".")
    target = doc
    for key in keys[:-1]:
        child = target.get(key)
        if not isinstance(child, dict):
            child = {}
            target[key] = child
        target = child
    last = keys[-1]
    if isinstance(value, ArrayAppend):
        existing = target.get(last)
        if not isinstance(existing, list):
            existing = []
            target[last] = existing
        for item in value.items:
            if item not in existing:
                existing.append(copy.deepcopy(item))
    else:
        target[last] = copy.deepcopy(value)


# ── Firestore backend ─────────────────────────────────────────────────────────

class FirestoreSessionStore(SessionStore):
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop. Switch to AsyncClient once stable.
    """

    def __init__(self, config: Settings = settings):
        if config.firestore_emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = config.firestore_emulator_host
        # Lazy import so the service can be instantiated before GCP creds exist
        from google.cloud import firestore
        self._firestore = firestore
        self.db = firestore.Client(project=config.google_cloud_project or None)

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    def _ref(self, path: str):
        collection, doc_id = path.split("/", 1)
        return self.db.collection(collection).document(doc_id)

    async def get_document(self, path: str) -> Optional[Document]:
        snap = await self._run(lambda: self._ref(path).get())
        if snap.exists:
            return snap.to_dict()
        return None

    async def set_document(self, path: str, value: Document) -> None:
        await self._run(lambda: self._ref(path).set(value))

    def _translate(self, partial: Document) -> Document:
        return {
            key: self._firestore.ArrayUnion(value.items) if isinstance(value, ArrayAppend) else value
            for key, value in partial.items()
        }

    async def update_document(self, path: str, partial: Document) -> None:
        updates = self._translate(partial)
        await self._run(lambda: self._ref(path).update(updates))

    async def transact(self, path: str, decide: Decision) -> Any:
        ref = self._ref(path)

        @self._firestore.transactional
        def _in_transaction(transaction):
            snap = ref.get(transaction=transaction)
            partial, result = decide(snap.to_dict() if snap.exists else None)
            if partial:
                transaction.update(ref, self._translate(partial))
            return result

        return await self._run(lambda: _in_transaction(self.db.transaction()))

    def subscribe(self, path: str, callback: ChangeCallback) -> Unsubscribe:
        def _on_snapshot(docs, changes, read_time):
            for snap in docs:
                callback(snap.to_dict() if snap.exists else None)

        watch = self._ref(path).on_snapshot(_on_snapshot)
        return watch.unsubscribe

    def close(self) -> None:
        self.db.close()


def build_session_store(config: Settings = settings) -> SessionStore:
    """Construct the configured backend. Called once at startup by the app lifespan."""
    if config.store_backend == "memory":
        logger.info("Using in-memory session store")
        return MemorySessionStore()
    if config.store_backend != "firestore":
        raise ValueError(f"Unknown store backend: {config.store_backend!r}")
    logger.info("Using Firestore session store (project=%s)", config.google_cloud_project or "<default>")
    return FirestoreSessionStore(config)
