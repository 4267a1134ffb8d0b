import threading

import pytest

pytest.importorskip("sqlmodel")

from kiddoquest.exceptions import StaleStateError, StateConflictError, ValidationError
from kiddoquest.persistence import SQLDocumentStore
from kiddoquest.store import InMemoryDocumentStore


def memory_store(**kwargs):
    return InMemoryDocumentStore(**kwargs)


def sql_store(**kwargs):
    return SQLDocumentStore.from_url("sqlite://", **kwargs)


STORES = [memory_store, sql_store]


def _seed(store, collection: str, doc_id: str, data: dict) -> None:
    store.run_transaction(lambda tx: tx.create(collection, doc_id, data))


def _bump(store, amount: int = 1) -> None:
    def _add(tx):
        current = tx.get("counters", "c")
        tx.set("counters", "c", {"value": current["value"] + amount})

    store.run_transaction(_add)


@pytest.mark.parametrize("factory", STORES)
def test_create_get_and_query(factory) -> None:
    store = factory()
    _seed(store, "quests", "q1", {"title": "Dishes", "assignedTo": ["kid-a", "kid-b"]})
    _seed(store, "quests", "q2", {"title": "Laundry", "assignedTo": ["kid-b"]})

    assert store.get("quests", "q1")["title"] == "Dishes"
    assert store.get("quests", "missing") is None
    assert [doc_id for doc_id, _ in store.query("quests", {"assignedTo": "kid-a"})] == ["q1"]
    assert [doc_id for doc_id, _ in store.query("quests", {"assignedTo": "kid-b"})] == ["q1", "q2"]
    assert [doc_id for doc_id, _ in store.query("quests", {"title": "Laundry"})] == ["q2"]


@pytest.mark.parametrize("factory", STORES)
def test_create_existing_and_update_missing_fail(factory) -> None:
    store = factory()
    _seed(store, "children", "kid", {"name": "Ava"})

    with pytest.raises(StateConflictError):
        _seed(store, "children", "kid", {"name": "Ava again"})
    with pytest.raises(ValidationError):
        store.run_transaction(lambda tx: tx.update("children", "ghost", {"name": "Boo"}))
    assert store.get("children", "kid") == {"name": "Ava"}


@pytest.mark.parametrize("factory", STORES)
def test_failed_function_writes_nothing(factory) -> None:
    store = factory()
    _seed(store, "counters", "c", {"value": 1})

    def _explode(tx):
        tx.set("counters", "c", {"value": 99})
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        store.run_transaction(_explode)
    assert store.get("counters", "c") == {"value": 1}


@pytest.mark.parametrize("factory", STORES)
def test_transaction_reads_its_own_writes_and_deletes(factory) -> None:
    store = factory()
    _seed(store, "counters", "c", {"value": 1})

    def _work(tx):
        tx.update("counters", "c", {"value": 2})
        seen = tx.get("counters", "c")["value"]
        tx.delete("counters", "c")
        return seen, tx.get("counters", "c")

    assert store.run_transaction(_work) == (2, None)
    assert store.get("counters", "c") is None


@pytest.mark.parametrize("factory", STORES)
def test_conflicting_commit_reruns_against_fresh_state(factory) -> None:
    store = factory()
    _seed(store, "counters", "c", {"value": 0})
    calls = []

    def _increment(tx):
        current = tx.get("counters", "c")["value"]
        calls.append(current)
        if len(calls) == 1:
            _bump(store, 10)
        tx.set("counters", "c", {"value": current + 1})

    store.run_transaction(_increment)

    assert calls == [0, 10]
    assert store.get("counters", "c") == {"value": 11}


@pytest.mark.parametrize("factory", STORES)
def test_query_conflicts_when_collection_changes(factory) -> None:
    store = factory()
    _seed(store, "counters", "c", {"value": 0})
    attempts = []

    def _count(tx):
        rows = tx.query("redemptions")
        attempts.append(len(rows))
        if len(attempts) == 1:
            _seed(store, "redemptions", "r1", {"cost": 5})
        tx.set("counters", "c", {"value": len(rows)})

    store.run_transaction(_count)

    assert attempts == [0, 1]
    assert store.get("counters", "c") == {"value": 1}


@pytest.mark.parametrize("factory", STORES)
def test_gives_up_after_max_attempts(factory) -> None:
    store = factory(max_attempts=3)
    _seed(store, "counters", "c", {"value": 0})
    attempts = []

    def _always_loses(tx):
        current = tx.get("counters", "c")["value"]
        attempts.append(current)
        _bump(store)
        tx.set("counters", "c", {"value": current + 100})

    with pytest.raises(StaleStateError):
        store.run_transaction(_always_loses)
    assert len(attempts) == 3
    assert store.get("counters", "c") == {"value": 3}


def test_sql_store_persists_between_instances(tmp_path) -> None:
    path = tmp_path / "quest.db"
    first = SQLDocumentStore.from_sqlite_file(str(path))
    _seed(first, "children", "kid", {"name": "Ava", "currentXP": 10})

    second = SQLDocumentStore.from_sqlite_file(str(path))
    assert second.get("children", "kid") == {"name": "Ava", "currentXP": 10}


def test_read_only_transactions_never_commit() -> None:
    store = memory_store()
    _seed(store, "children", "kid", {"name": "Ava"})

    assert store.run_transaction(lambda tx: tx.get("children", "kid")["name"]) == "Ava"
    assert len(store) == 1


def test_max_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        InMemoryDocumentStore(max_attempts=0)


@pytest.mark.parametrize("factory", STORES)
def test_recreated_document_does_not_reuse_versions(factory) -> None:
    store = factory()
    _seed(store, "counters", "c", {"value": 1})
    seen = []

    def _copy(tx):
        current = tx.get("counters", "c")
        seen.append(current["value"])
        if len(seen) == 1:
            store.run_transaction(lambda inner: inner.delete("counters", "c"))
            _seed(store, "counters", "c", {"value": 7})
        tx.set("totals", "t", {"value": current["value"]})

    store.run_transaction(_copy)

    assert seen == [1, 7]
    assert store.get("totals", "t") == {"value": 7}
    assert store.query("counters") == [("c", {"value": 7})]


@pytest.mark.parametrize("factory", STORES)
def test_deleting_a_missing_document_conflicts_with_its_creation(factory) -> None:
    store = factory()
    attempts = []

    def _clear(tx):
        attempts.append(tx.get("counters", "c"))
        if len(attempts) == 1:
            _seed(store, "counters", "c", {"value": 3})
        tx.delete("counters", "c")

    store.run_transaction(_clear)

    assert attempts == [None, {"value": 3}]
    assert store.get("counters", "c") is None
    assert store.query("counters") == []


def _validation_hooked(base):
    class HookedStore(base):
        """Runs ``during_validation`` once, after the commit lock is taken."""

        during_validation = None

        def _validate(self, *args):
            hook, self.during_validation = self.during_validation, None
            if hook is not None:
                hook()
            return super()._validate(*args)

    return HookedStore


def _locking_store(kind, tmp_path):
    if kind == "memory":
        return _validation_hooked(InMemoryDocumentStore)()
    return _validation_hooked(SQLDocumentStore).from_sqlite_file(str(tmp_path / "locks.db"))


@pytest.mark.parametrize("kind", ["memory", "sqlite"])
def test_documents_only_read_stay_locked_until_commit(kind, tmp_path) -> None:
    store = _locking_store(kind, tmp_path)
    _seed(store, "rewards", "r1", {"active": True})
    _seed(store, "children", "kid", {"xp": 50})
    errors = []

    def _deactivate():
        try:
            store.run_transaction(lambda tx: tx.update("rewards", "r1", {"active": False}))
        except Exception as exc:  # surfaced by the assertions below
            errors.append(exc)

    competitor = threading.Thread(target=_deactivate)
    waited = []

    def _race():
        competitor.start()
        competitor.join(0.5)
        waited.append(competitor.is_alive())

    store.during_validation = _race

    def _redeem(tx):
        if not tx.get("rewards", "r1")["active"]:
            raise StateConflictError("Reward is no longer active.")
        child = tx.get("children", "kid")
        tx.set("children", "kid", {"xp": child["xp"] - 30})

    store.run_transaction(_redeem)
    competitor.join(10)

    assert waited == [True]
    assert errors == []
    assert store.get("children", "kid") == {"xp": 20}
    assert store.get("rewards", "r1") == {"active": False}
