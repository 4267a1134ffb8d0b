"""SQLModel persistence for the KiddoQuest document store.

Documents live in a single ``storeddocument`` table keyed by
``(collection, doc_id)`` with a JSON body and a version counter.  Commits use
conditional ``UPDATE ... WHERE version = :seen`` statements so concurrent
writers (threads or processes sharing the database) cannot both succeed.

A commit validates every version it depends on only after it holds the write
lock: ``BEGIN IMMEDIATE`` on SQLite, ``SELECT ... FOR UPDATE`` elsewhere.
Deleted documents stay behind as tombstones (a ``null`` body) so their
version keeps counting up if the id is ever reused.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Tuple

from sqlalchemy import event, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from .store import (
    DEFAULT_TRANSACTION_ATTEMPTS,
    Document,
    DocumentStore,
    Transaction,
    matches_filters,
)

TOMBSTONE = "null"
SQLITE_BEGIN_OPTION = "sqlite_begin"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredDocument(SQLModel, table=True):
    collection: str = Field(primary_key=True)
    doc_id: str = Field(primary_key=True)
    version: int = 1
    body: str
    updated_at: datetime = Field(default_factory=_utcnow)


class CollectionClock(SQLModel, table=True):
    collection: str = Field(primary_key=True)
    version: int = 0


def _sqlite_connect(dbapi_connection: Any, _record: Any) -> None:
    # SQLAlchemy emits BEGIN itself from ``_sqlite_begin``.
    dbapi_connection.isolation_level = None


def _sqlite_begin(connection: Any) -> None:
    mode = connection.get_execution_options().get(SQLITE_BEGIN_OPTION, "DEFERRED")
    connection.exec_driver_sql(f"BEGIN {mode}")


def enable_sqlite_write_locks(engine: Engine) -> None:
    """Let commits open SQLite transactions with ``BEGIN IMMEDIATE``."""

    if engine.dialect.name != "sqlite" or event.contains(engine, "begin", _sqlite_begin):
        return
    event.listen(engine, "connect", _sqlite_connect)
    event.listen(engine, "begin", _sqlite_begin)


def create_store_engine(url: str, *, echo: bool = False) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo)
    connect_args = {"check_same_thread": False}
    if url in {"sqlite://", "sqlite:///:memory:"}:
        # One shared connection, otherwise every session opens a fresh empty database.
        engine = create_engine(url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
    else:
        engine = create_engine(url, echo=echo, connect_args=connect_args)
    enable_sqlite_write_locks(engine)
    return engine


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine, tables=[StoredDocument.__table__, CollectionClock.__table__])


def _decode(row: StoredDocument) -> Optional[Document]:
    return json.loads(row.body)


def _encode(data: Optional[Mapping[str, Any]]) -> str:
    if data is None:
        return TOMBSTONE
    return json.dumps(data, sort_keys=True)


class _SQLTransaction(Transaction):
    def __init__(self, store: "SQLDocumentStore") -> None:
        super().__init__()
        self._store = store

    def _load(self, collection: str, doc_id: str) -> Tuple[int, Optional[Document]]:
        with Session(self._store.engine) as session:
            row = session.get(StoredDocument, (collection, doc_id))
            if row is None:
                return 0, None
            return row.version, _decode(row)

    def _scan(self, collection: str) -> Tuple[int, List[Tuple[str, int, Document]]]:
        with Session(self._store.engine) as session:
            clock = session.get(CollectionClock, collection)
            rows = session.exec(
                select(StoredDocument).where(StoredDocument.collection == collection)
            ).all()
            live = [(row.doc_id, row.version, _decode(row)) for row in rows]
            return (
                clock.version if clock else 0,
                [(doc_id, version, data) for doc_id, version, data in live if data is not None],
            )


class SQLDocumentStore(DocumentStore):
    """Document store backed by any SQLAlchemy engine (SQLite by default)."""

    def __init__(self, engine: Engine, *, max_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS) -> None:
        super().__init__(max_attempts=max_attempts)
        enable_sqlite_write_locks(engine)
        self.engine = engine
        create_db_and_tables(engine)

    @classmethod
    def from_url(cls, url: str, *, max_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS) -> "SQLDocumentStore":
        return cls(create_store_engine(url), max_attempts=max_attempts)

    @classmethod
    def from_sqlite_file(cls, path: str, *, max_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS) -> "SQLDocumentStore":
        return cls.from_url(f"sqlite:///{path}", max_attempts=max_attempts)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        with Session(self.engine) as session:
            row = session.get(StoredDocument, (collection, doc_id))
            return _decode(row) if row is not None else None

    def query(self, collection: str, filters: Mapping[str, Any] | None = None) -> List[Tuple[str, Document]]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(StoredDocument)
                .where(StoredDocument.collection == collection)
                .order_by(StoredDocument.doc_id)
            ).all()
            documents = [(row.doc_id, _decode(row)) for row in rows]
        return [
            (doc_id, data)
            for doc_id, data in documents
            if data is not None and matches_filters(data, filters)
        ]

    def _begin(self) -> Transaction:
        return _SQLTransaction(self)

    def _commit(self, transaction: Transaction) -> bool:
        now = _utcnow()
        with Session(self.engine) as session:
            connection = session.connection(execution_options={SQLITE_BEGIN_OPTION: "IMMEDIATE"})
            try:
                if not self._validate(session, transaction):
                    session.rollback()
                    return False
                for (collection, doc_id), data in transaction._writes.items():
                    seen = transaction._reads.get((collection, doc_id), 0)
                    if not self._write(session, connection, collection, doc_id, seen, data, now):
                        session.rollback()
                        return False
                for collection in {collection for collection, _doc_id in transaction._writes}:
                    self._tick(session, connection, collection)
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
        return True

    def _validate(self, session: Session, transaction: Transaction) -> bool:
        """Compare every version the transaction saw; the write lock is already held."""

        for collection, seen in transaction._scans.items():
            clock = session.get(CollectionClock, collection, with_for_update=True)
            if (clock.version if clock else 0) != seen:
                return False
        for key, seen in transaction._reads.items():
            row = session.get(StoredDocument, key, with_for_update=True)
            if (row.version if row else 0) != seen:
                return False
        return True

    def _write(
        self,
        session: Session,
        connection: Any,
        collection: str,
        doc_id: str,
        seen: int,
        data: Optional[Document],
        now: datetime,
    ) -> bool:
        if seen == 0:
            if data is None:
                return session.get(StoredDocument, (collection, doc_id)) is None
            session.add(StoredDocument(collection=collection, doc_id=doc_id, body=_encode(data), updated_at=now))
            session.flush()
            return True
        result = connection.execute(
            update(StoredDocument)
            .where(
                StoredDocument.collection == collection,
                StoredDocument.doc_id == doc_id,
                StoredDocument.version == seen,
            )
            .values(version=seen + 1, body=_encode(data), updated_at=now)
        )
        return result.rowcount == 1

    def _tick(self, session: Session, connection: Any, collection: str) -> None:
        result = connection.execute(
            update(CollectionClock)
            .where(CollectionClock.collection == collection)
            .values(version=CollectionClock.version + 1)
        )
        if result.rowcount == 0:
            session.add(CollectionClock(collection=collection, version=1))
            session.flush()


__all__ = [
    "CollectionClock",
    "SQLDocumentStore",
    "StoredDocument",
    "create_db_and_tables",
    "create_store_engine",
    "enable_sqlite_write_locks",
]
