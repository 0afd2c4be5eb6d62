"""Document store abstraction and the in-memory backend used by the server.

The core only needs a small slice of a document database: per-document
last-write-wins updates, simple predicate queries, append-only
subcollections, and push notification of changes. ``DocumentStore`` names
that slice; ``InMemoryDocumentStore`` implements it for a single process.
"""

from __future__ import annotations

import copy
import logging
import operator
import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Predicate = Callable[[Document], bool]
ChangeCallback = Callable[[Optional[Document]], None]
AppendCallback = Callable[[Document], None]
Cancel = Callable[[], None]
Mutation = Callable[[Optional[Document]], Optional[Document]]


class StoreError(Exception):
    """Transport or backend failure talking to the store."""


class DocumentNotFound(LookupError):
    """``update``/``transact`` on a document that does not exist."""


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Field value placeholder replaced with the store's clock at write time.
SERVER_TIMESTAMP: Any = _ServerTimestamp()


# ---------- Predicates ----------


_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": lambda actual, options: actual in options,
}


@dataclass(frozen=True)
class FieldFilter:
    """Declarative ``field op value`` predicate, e.g. ``status in [...]``."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported operator {self.op!r}")

    def __call__(self, document: Document) -> bool:
        if self.field not in document:
            return False
        try:
            return bool(_OPERATORS[self.op](document[self.field], self.value))
        except TypeError:
            # None timestamps and the like never match an ordering filter.
            return False


@contextmanager
def translate_store_errors(action: str) -> Iterator[None]:
    """Surface backend failures as ``StoreUnavailable``."""

    try:
        yield
    except StoreError as exc:
        logger.warning("Store call failed during %s: %s", action, exc)
        raise StoreUnavailable() from exc


def where(field_name: str, op: str, value: Any) -> FieldFilter:
    return FieldFilter(field_name, op, value)


def all_of(*predicates: Predicate) -> Predicate:
    def combined(document: Document) -> bool:
        return all(p(document) for p in predicates)

    return combined


def _sort_key(order_by: str) -> Callable[[Document], Tuple[bool, Any]]:
    return lambda doc: (doc.get(order_by) is None, doc.get(order_by))


# ---------- Interface ----------


class DocumentStore(ABC):
    """Operations the core issues against the shared store.

    Implementations raise ``StoreError`` for backend failures and
    ``DocumentNotFound`` when updating a missing document.
    """

    @abstractmethod
    def create(self, collection: str, doc_id: str, document: Document) -> None:
        """Write a whole document, replacing any existing one."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: Document) -> Document:
        """Merge ``fields`` into an existing document atomically."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None:
        ...

    @abstractmethod
    def query(
        self,
        collection: str,
        predicate: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        ...

    @abstractmethod
    def subscribe(
        self, collection: str, doc_id: str, on_change: ChangeCallback
    ) -> Cancel:
        """Push every change of one document; ``None`` means it was deleted."""

    @abstractmethod
    def append_subscribe(
        self, collection: str, order_by: str, on_append: AppendCallback
    ) -> Cancel:
        """Replay an append-only collection in order, then push new entries."""

    @abstractmethod
    def add(self, collection: str, document: Document) -> str:
        """Append a document under a generated id and return the id."""

    @abstractmethod
    def transact(self, collection: str, doc_id: str, mutate: Mutation) -> Document:
        """Atomic read-modify-write of one document.

        ``mutate`` receives the current document (``None`` if absent) and
        returns the fields to merge, or ``None`` to leave it untouched. It may
        raise to abort without writing.
        """


# ---------- In-memory backend ----------


@dataclass
class _Entry:
    data: Document
    version: int
    seq: int


@dataclass(eq=False)
class _Subscription:
    callback: Callable[..., None]
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    last_seen: int = 0
    cancelled: bool = False

    def deliver(self, stamp: int, *args: Any) -> None:
        with self.lock:
            if self.cancelled or stamp <= self.last_seen:
                return
            self.last_seen = stamp
            self.replay(*args)

    def replay(self, *args: Any) -> None:
        try:
            self.callback(*args)
        except Exception:
            logger.exception("Store subscriber raised")


@dataclass(eq=False)
class _AppendSubscription(_Subscription):
    """Every entry of an append stream is delivered exactly once.

    Entries are new documents rather than newer versions of one document,
    so a late entry is still delivered when a higher seq got there first.
    """

    delivered: Set[int] = field(default_factory=set, repr=False)

    def deliver(self, stamp: int, *args: Any) -> None:
        with self.lock:
            if self.cancelled or stamp in self.delivered:
                return
            self.delivered.add(stamp)
            self.replay(*args)


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe, single-process document store.

    Every write bumps a store-wide version; each document subscription drops
    notifications older than the last one it delivered, so a subscriber never
    sees a document go backwards. Append subscriptions deliver each entry once,
    whatever order concurrent writers dispatch in. Callbacks run on the
    writing thread after the store lock is released.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, _Entry]] = {}
        self._doc_subs: Dict[Tuple[str, str], List[_Subscription]] = {}
        self._append_subs: Dict[str, List[_Subscription]] = {}
        self._version = 0
        self._failures = 0

    # ---- test hooks ----

    def fail_next(self, count: int = 1) -> None:
        """Make the next ``count`` operations raise ``StoreError``."""

        with self._lock:
            self._failures += count

    def _check_available(self) -> None:
        if self._failures:
            self._failures -= 1
            raise StoreError("store unavailable")

    # ---- helpers ----

    def _next_version(self) -> int:
        self._version += 1
        return self._version

    def _resolve(self, fields: Document) -> Document:
        now = self._clock()
        return {
            k: (now if v is SERVER_TIMESTAMP else copy.deepcopy(v))
            for k, v in fields.items()
        }

    def _docs(self, collection: str) -> Dict[str, _Entry]:
        return self._collections.setdefault(collection, {})

    def _pending_doc(
        self, collection: str, doc_id: str, entry: Optional[_Entry], version: int
    ) -> List[Tuple[_Subscription, int, Optional[Document]]]:
        subs = self._doc_subs.get((collection, doc_id), [])
        data = entry.data if entry is not None else None
        return [(sub, version, copy.deepcopy(data)) for sub in subs]

    @staticmethod
    def _dispatch(pending: List[Tuple[_Subscription, int, Any]]) -> None:
        for sub, stamp, payload in pending:
            sub.deliver(stamp, payload)

    # ---- DocumentStore ----

    def create(self, collection: str, doc_id: str, document: Document) -> None:
        with self._lock:
            self._check_available()
            version = self._next_version()
            entry = _Entry(self._resolve(document), version, version)
            self._docs(collection)[doc_id] = entry
            pending = self._pending_doc(collection, doc_id, entry, version)
        self._dispatch(pending)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with self._lock:
            self._check_available()
            entry = self._docs(collection).get(doc_id)
            return copy.deepcopy(entry.data) if entry else None

    def update(self, collection: str, doc_id: str, fields: Document) -> Document:
        with self._lock:
            self._check_available()
            entry = self._docs(collection).get(doc_id)
            if entry is None:
                raise DocumentNotFound(f"{collection}/{doc_id}")
            entry.data.update(self._resolve(fields))
            entry.version = self._next_version()
            pending = self._pending_doc(collection, doc_id, entry, entry.version)
            result = copy.deepcopy(entry.data)
        self._dispatch(pending)
        return result

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._check_available()
            if self._docs(collection).pop(doc_id, None) is None:
                return
            pending = self._pending_doc(
                collection, doc_id, None, self._next_version()
            )
        self._dispatch(pending)

    def query(
        self,
        collection: str,
        predicate: Optional[Predicate] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Document]:
        with self._lock:
            self._check_available()
            entries = sorted(self._docs(collection).values(), key=lambda e: e.seq)
            docs = [copy.deepcopy(e.data) for e in entries]
        if predicate is not None:
            docs = [d for d in docs if predicate(d)]
        if order_by is not None:
            docs.sort(key=_sort_key(order_by))
        if limit is not None:
            docs = docs[:limit]
        return docs

    def subscribe(
        self, collection: str, doc_id: str, on_change: ChangeCallback
    ) -> Cancel:
        sub = _Subscription(on_change)
        key = (collection, doc_id)
        with self._lock:
            self._check_available()
            self._doc_subs.setdefault(key, []).append(sub)
            entry = self._docs(collection).get(doc_id)
            initial = (entry.version, copy.deepcopy(entry.data)) if entry else None
            # Fresh lock, never contended; held so live writes queue behind
            # the initial snapshot.
            sub.lock.acquire()
        try:
            if initial is not None:
                sub.deliver(*initial)
        finally:
            sub.lock.release()

        def cancel() -> None:
            sub.cancelled = True
            with self._lock:
                subs = self._doc_subs.get(key, [])
                if sub in subs:
                    subs.remove(sub)

        return cancel

    def append_subscribe(
        self, collection: str, order_by: str, on_append: AppendCallback
    ) -> Cancel:
        sub = _AppendSubscription(on_append)
        with self._lock:
            self._check_available()
            self._append_subs.setdefault(collection, []).append(sub)
            entries = sorted(self._docs(collection).values(), key=lambda e: e.seq)
            backlog = sorted(
                ((e.seq, copy.deepcopy(e.data)) for e in entries),
                key=lambda item: _sort_key(order_by)(item[1]),
            )
            sub.lock.acquire()
        try:
            for seq, data in backlog:
                sub.deliver(seq, data)
        finally:
            sub.lock.release()

        def cancel() -> None:
            sub.cancelled = True
            with self._lock:
                subs = self._append_subs.get(collection, [])
                if sub in subs:
                    subs.remove(sub)

        return cancel

    def add(self, collection: str, document: Document) -> str:
        doc_id = uuid.uuid4().hex[:20]
        with self._lock:
            self._check_available()
            version = self._next_version()
            entry = _Entry(self._resolve(document), version, version)
            self._docs(collection)[doc_id] = entry
            pending = [
                (sub, version, copy.deepcopy(entry.data))
                for sub in self._append_subs.get(collection, [])
            ]
            pending += self._pending_doc(collection, doc_id, entry, version)
        self._dispatch(pending)
        return doc_id

    def transact(self, collection: str, doc_id: str, mutate: Mutation) -> Document:
        with self._lock:
            self._check_available()
            entry = self._docs(collection).get(doc_id)
            current = copy.deepcopy(entry.data) if entry else None
            fields = mutate(current)
            if fields is None:
                if entry is None:
                    raise DocumentNotFound(f"{collection}/{doc_id}")
                return current  # type: ignore[return-value]
            if entry is None:
                version = self._next_version()
                entry = _Entry(self._resolve(fields), version, version)
                self._docs(collection)[doc_id] = entry
            else:
                entry.data.update(self._resolve(fields))
                entry.version = self._next_version()
            pending = self._pending_doc(collection, doc_id, entry, entry.version)
            result = copy.deepcopy(entry.data)
        self._dispatch(pending)
        return result
