"""Document store contract used by the engine, plus an in-memory implementation.

The engine only ever talks to a :class:`DocumentStore`: point reads, simple
equality queries and :meth:`DocumentStore.run_transaction`.  Transactions are
optimistic.  Every read records the version of what it saw, writes are
buffered, and the commit only succeeds when none of those versions moved.  A
losing transaction is re-run against fresh state (the same contract Firestore
offers) and gives up with :class:`~kiddoquest.exceptions.StaleStateError` once
the attempt budget is spent.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from .exceptions import StateConflictError, StaleStateError, ValidationError

Document = Dict[str, Any]
DocumentKey = Tuple[str, str]
T = TypeVar("T")

DEFAULT_TRANSACTION_ATTEMPTS = 5


def matches_filters(data: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    """Equality match; list-valued fields match when they contain the value."""

    for key, expected in (filters or {}).items():
        actual = data.get(key)
        if isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


class Transaction(ABC):
    """Buffered unit of work handed to the function given to ``run_transaction``."""

    def __init__(self) -> None:
        self._reads: Dict[DocumentKey, int] = {}
        self._scans: Dict[str, int] = {}
        self._writes: Dict[DocumentKey, Optional[Document]] = {}

    @abstractmethod
    def _load(self, collection: str, doc_id: str) -> Tuple[int, Optional[Document]]:
        """Return ``(version, data)``; version 0 means never written, data ``None`` means missing."""

    @abstractmethod
    def _scan(self, collection: str) -> Tuple[int, List[Tuple[str, int, Document]]]:
        """Return the collection version and ``(id, version, data)`` rows."""

    def _observe(self, collection: str, doc_id: str) -> Optional[Document]:
        key = (collection, doc_id)
        version, data = self._load(collection, doc_id)
        self._reads.setdefault(key, version)
        return data

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        key = (collection, doc_id)
        if key in self._writes:
            return copy.deepcopy(self._writes[key])
        data = self._observe(collection, doc_id)
        return copy.deepcopy(data)

    def query(self, collection: str, filters: Mapping[str, Any] | None = None) -> List[Tuple[str, Document]]:
        collection_version, rows = self._scan(collection)
        self._scans.setdefault(collection, collection_version)
        merged: Dict[str, Optional[Document]] = {}
        for doc_id, version, data in rows:
            self._reads.setdefault((collection, doc_id), version)
            merged[doc_id] = data
        for (written_collection, doc_id), data in self._writes.items():
            if written_collection == collection:
                merged[doc_id] = data
        return [
            (doc_id, copy.deepcopy(data))
            for doc_id, data in sorted(merged.items())
            if data is not None and matches_filters(data, filters)
        ]

    def create(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        if self.get(collection, doc_id) is not None:
            raise StateConflictError(f"Document '{collection}/{doc_id}' already exists.")
        self._writes[(collection, doc_id)] = copy.deepcopy(dict(data))

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        if (collection, doc_id) not in self._writes:
            self._observe(collection, doc_id)
        self._writes[(collection, doc_id)] = copy.deepcopy(dict(data))

    def update(self, collection: str, doc_id: str, changes: Mapping[str, Any]) -> None:
        current = self.get(collection, doc_id)
        if current is None:
            raise ValidationError(f"Cannot update missing document '{collection}/{doc_id}'.")
        current.update(copy.deepcopy(dict(changes)))
        self._writes[(collection, doc_id)] = current

    def delete(self, collection: str, doc_id: str) -> None:
        if (collection, doc_id) not in self._writes:
            self._observe(collection, doc_id)
        self._writes[(collection, doc_id)] = None

    @property
    def has_writes(self) -> bool:
        return bool(self._writes)


class DocumentStore(ABC):
    """Durable collections with point reads, queries and atomic transactions."""

    def __init__(self, *, max_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive.")
        self.max_attempts = max_attempts

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Return a copy of the document or ``None``."""

    @abstractmethod
    def query(self, collection: str, filters: Mapping[str, Any] | None = None) -> List[Tuple[str, Document]]:
        """Return ``(id, document)`` pairs matching ``filters``, ordered by id."""

    @abstractmethod
    def _begin(self) -> Transaction:
        """Start a new transaction."""

    @abstractmethod
    def _commit(self, transaction: Transaction) -> bool:
        """Apply the buffered writes atomically; ``False`` signals a conflict."""

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run ``fn`` inside a transaction, re-running it when a commit conflicts.

        Exceptions raised by ``fn`` abort the attempt without writing anything.
        """

        for _attempt in range(self.max_attempts):
            transaction = self._begin()
            result = fn(transaction)
            if not transaction.has_writes or self._commit(transaction):
                return result
        raise StaleStateError(
            f"Transaction lost {self.max_attempts} consecutive write races; refresh and retry."
        )


class _MemoryTransaction(Transaction):
    def __init__(self, store: "InMemoryDocumentStore") -> None:
        super().__init__()
        self._store = store

    def _load(self, collection: str, doc_id: str) -> Tuple[int, Optional[Document]]:
        return self._store._snapshot(collection, doc_id)

    def _scan(self, collection: str) -> Tuple[int, List[Tuple[str, int, Document]]]:
        return self._store._scan(collection)


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe in-memory store, used by tests and embedded callers.

    Deleted documents keep a tombstone entry so their version never restarts.
    """

    def __init__(self, *, max_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS) -> None:
        super().__init__(max_attempts=max_attempts)
        self._documents: Dict[DocumentKey, Tuple[int, Optional[Document]]] = {}
        self._collection_versions: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _snapshot(self, collection: str, doc_id: str) -> Tuple[int, Optional[Document]]:
        with self._lock:
            entry = self._documents.get((collection, doc_id))
            if entry is None:
                return 0, None
            version, data = entry
            return version, copy.deepcopy(data)

    def _scan(self, collection: str) -> Tuple[int, List[Tuple[str, int, Document]]]:
        with self._lock:
            rows = [
                (doc_id, version, copy.deepcopy(data))
                for (name, doc_id), (version, data) in self._documents.items()
                if name == collection and data is not None
            ]
            return self._collection_versions.get(collection, 0), rows

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        return self._snapshot(collection, doc_id)[1]

    def query(self, collection: str, filters: Mapping[str, Any] | None = None) -> List[Tuple[str, Document]]:
        _version, rows = self._scan(collection)
        return sorted(
            (doc_id, data) for doc_id, _doc_version, data in rows if matches_filters(data, filters)
        )

    def _begin(self) -> Transaction:
        return _MemoryTransaction(self)

    def _validate(self, transaction: Transaction) -> bool:
        for key, seen in transaction._reads.items():
            entry = self._documents.get(key)
            if (entry[0] if entry else 0) != seen:
                return False
        for collection, seen in transaction._scans.items():
            if self._collection_versions.get(collection, 0) != seen:
                return False
        return True

    def _commit(self, transaction: Transaction) -> bool:
        with self._lock:
            if not self._validate(transaction):
                return False
            for key, data in transaction._writes.items():
                entry = self._documents.get(key)
                version = entry[0] if entry else 0
                self._documents[key] = (version + 1, copy.deepcopy(data))
                collection = key[0]
                self._collection_versions[collection] = self._collection_versions.get(collection, 0) + 1
        return True

    def __len__(self) -> int:
        return sum(1 for _version, data in self._documents.values() if data is not None)


__all__ = [
    "DEFAULT_TRANSACTION_ATTEMPTS",
    "Document",
    "DocumentStore",
    "InMemoryDocumentStore",
    "Transaction",
    "matches_filters",
]
