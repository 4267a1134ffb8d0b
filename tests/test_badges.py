from datetime import datetime

import pytest

from kiddoquest.badges import DEFAULT_BADGES, BadgeEvaluator
from kiddoquest.exceptions import NotFoundError, ValidationError
from kiddoquest.family import FamilyDirectory, load_child, save_child
from kiddoquest.progression import ProgressionLedger
from kiddoquest.store import InMemoryDocumentStore

NOW = datetime(2024, 5, 1, 9, 0)


class RacingStore(InMemoryDocumentStore):
    """Runs ``before_commit`` once, just before the next commit lands."""

    def __init__(self) -> None:
        super().__init__()
        self.before_commit = None

    def _commit(self, transaction):
        hook, self.before_commit = self.before_commit, None
        if hook is not None:
            hook()
        return super()._commit(transaction)


def _setup(**evaluator_kwargs):
    store = RacingStore()
    family = FamilyDirectory(store, clock=lambda: NOW)
    family.add_child("parent-1", "Milo", child_id="milo")
    ledger = ProgressionLedger(store, clock=lambda: NOW)
    return store, family, BadgeEvaluator(store, ledger, **evaluator_kwargs)


def _edit(store, **changes) -> None:
    def _apply(tx):
        child = load_child(tx, "milo")
        for name, value in changes.items():
            setattr(child, name, value)
        save_child(tx, child)

    store.run_transaction(_apply)


def test_catalog_has_unique_ids() -> None:
    ids = [badge.id for badge in DEFAULT_BADGES]
    assert len(ids) == 17
    assert len(set(ids)) == len(ids)
    assert {"first_quest", "week_warrior", "xp_collector", "max_level"} <= set(ids)

    with pytest.raises(ValidationError):
        BadgeEvaluator(InMemoryDocumentStore(), ProgressionLedger(InMemoryDocumentStore()), catalog=DEFAULT_BADGES * 2)


def test_badge_is_awarded_once_with_bonus() -> None:
    store, family, evaluator = _setup()
    _edit(store, quests_completed=1)

    awards = evaluator.evaluate("milo")

    assert [award.badge_id for award in awards] == ["first_quest"]
    assert awards[0].xp_bonus == 50
    child = family.get("milo")
    assert child.badges == {"first_quest"}
    assert (child.current_xp, child.lifetime_xp) == (50, 50)

    assert evaluator.evaluate("milo") == ()
    assert family.get("milo").current_xp == 50


def test_bonus_xp_does_not_chain_within_a_pass() -> None:
    store, family, evaluator = _setup()
    _edit(store, quests_completed=1, current_xp=950, lifetime_xp=950, level=5)

    first_pass = {award.badge_id for award in evaluator.evaluate("milo")}
    assert first_pass == {"first_quest", "level_5"}
    assert family.get("milo").lifetime_xp == 950 + 50 + 200

    second_pass = {award.badge_id for award in evaluator.evaluate("milo")}
    assert second_pass == {"xp_collector"}


def test_disabled_evaluator_awards_nothing() -> None:
    store, family, evaluator = _setup(enabled=False)
    _edit(store, quests_completed=10)

    assert evaluator.evaluate("milo") == ()
    assert family.get("milo").badges == set()


def test_progress_lists_closest_locked_badges() -> None:
    _store, _family, evaluator = _setup()

    upcoming = evaluator.progress("milo")

    assert [template.id for template, _ in upcoming] == ["level_5", "level_10", "level_15"]
    assert [percent for _, percent in upcoming] == [20.0, 10.0, 6.7]

    with pytest.raises(NotFoundError):
        evaluator.progress("ghost")
    with pytest.raises(NotFoundError):
        evaluator.get("not-a-badge")


def test_concurrent_evaluations_award_once() -> None:
    store, family, evaluator = _setup()
    _edit(store, quests_completed=1)
    inner = []
    store.before_commit = lambda: inner.extend(evaluator.evaluate("milo"))

    outer = evaluator.evaluate("milo")

    assert [award.badge_id for award in inner] == ["first_quest"]
    assert outer == ()
    child = family.get("milo")
    assert child.badges == {"first_quest"}
    assert (child.current_xp, child.lifetime_xp) == (50, 50)
