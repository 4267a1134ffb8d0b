from datetime import date, datetime

import pytest

from kiddoquest.config import Settings
from kiddoquest.exceptions import (
    AuthorizationError,
    FreezeLimitError,
    InsufficientBalanceError,
    InvalidAmountError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from kiddoquest.family import FamilyDirectory
from kiddoquest.models import Frequency, StreakState
from kiddoquest.progression import LevelTable, ProgressionLedger, advance_streak, is_streak_active
from kiddoquest.quests import Weekday
from kiddoquest.store import InMemoryDocumentStore

NOW = datetime(2024, 3, 4, 18, 0)


def _ledger():
    store = InMemoryDocumentStore()
    family = FamilyDirectory(store, clock=lambda: NOW)
    family.add_child("parent-1", "Ava", child_id="ava")
    return family, ProgressionLedger(store, clock=lambda: NOW)


def test_geometric_level_table_matches_growth_curve() -> None:
    table = LevelTable.geometric()

    assert table.floors[:5] == (0, 100, 250, 475, 812)
    assert table.max_level == 20
    assert table.level_for(0) == 1
    assert table.level_for(99) == 1
    assert table.level_for(100) == 2
    assert table.level_for(249) == 2
    assert table.level_for(812) == 5
    assert table.title_for(1) == "Beginner"
    assert table.title_for(20) == "Ultimate"


def test_level_details_report_progress_towards_next_level() -> None:
    table = LevelTable.geometric()

    details = table.details(175)
    assert (details.level, details.floor, details.next_floor) == (2, 100, 250)
    assert details.progress == 50.0
    assert details.title == "Helper"
    assert not details.is_max

    top = table.details(10_000_000)
    assert top.level == 20
    assert top.is_max
    assert top.next_floor is None


def test_explicit_thresholds_from_settings() -> None:
    table = LevelTable.from_settings(Settings(level_thresholds=(0, 10, 30)))

    assert table.level_for(9) == 1
    assert table.level_for(30) == 3
    assert table.max_level == 3

    with pytest.raises(ValidationError):
        LevelTable([0, 50, 50])
    with pytest.raises(ValidationError):
        LevelTable([5, 10])


def test_daily_streak_advances_holds_and_resets() -> None:
    start = StreakState()

    day_one = advance_streak(start, date(2024, 3, 1))
    assert (day_one.current, day_one.longest) == (1, 1)

    day_two = advance_streak(day_one, date(2024, 3, 2))
    assert (day_two.current, day_two.longest) == (2, 2)

    assert advance_streak(day_two, date(2024, 3, 2)) is day_two
    assert advance_streak(day_two, date(2024, 2, 28)) is day_two

    after_gap = advance_streak(day_two, date(2024, 3, 4))
    assert (after_gap.current, after_gap.longest) == (1, 2)
    assert after_gap.last_completion_date == date(2024, 3, 4)


def test_weekly_streak_uses_configured_week_start() -> None:
    monday = StreakState(current=1, longest=1, last_completion_date=date(2024, 1, 8), period=Frequency.WEEKLY)

    following_sunday = date(2024, 1, 14)
    assert advance_streak(monday, following_sunday).current == 2
    assert advance_streak(monday, date(2024, 1, 13)) is monday
    assert advance_streak(monday, following_sunday, week_start=Weekday.MONDAY) is monday
    assert advance_streak(monday, date(2024, 1, 29)).current == 1


def test_streak_activity_window() -> None:
    state = StreakState(current=4, longest=4, last_completion_date=date(2024, 1, 1))

    assert is_streak_active(state, date(2024, 1, 1))
    assert is_streak_active(state, datetime(2024, 1, 2, 23, 59))
    assert not is_streak_active(state, date(2024, 1, 3))
    assert not is_streak_active(StreakState(), date(2024, 1, 1))


def test_award_xp_updates_balance_lifetime_and_level() -> None:
    family, ledger = _ledger()

    change = ledger.award_xp("ava", 120)
    assert change.leveled_up
    assert (change.previous_level, change.new_level, change.levels_gained) == (1, 2, 1)

    child = family.get("ava")
    assert (child.current_xp, child.lifetime_xp, child.level) == (120, 120, 2)

    assert not ledger.award_xp("ava", 0).leveled_up

    with pytest.raises(InvalidAmountError):
        ledger.award_xp("ava", -5)
    with pytest.raises(NotFoundError):
        ledger.award_xp("nobody", 10)


def test_streak_milestones_are_reported_once() -> None:
    family, ledger = _ledger()

    updates = [ledger.record_completion_for_streak("ava", date(2024, 3, day)) for day in (1, 2, 3)]
    assert [update.state.current for update in updates] == [1, 2, 3]
    assert updates[2].milestones == (3,)
    assert updates[1].continued

    ledger.record_completion_for_streak("ava", date(2024, 3, 10))
    again = [ledger.record_completion_for_streak("ava", date(2024, 3, day)) for day in (11, 12)]
    assert again[-1].state.current == 3
    assert again[-1].milestones == ()
    assert family.get("ava").milestones_reached == {3}


def test_penalty_floors_balance_and_keeps_level() -> None:
    family, ledger = _ledger()
    ledger.award_xp("ava", 130)

    penalty = ledger.apply_penalty("ava", "parent-1", 200, "Left the bike in the rain")

    assert penalty.amount == 200
    assert penalty.amount_applied == 130
    child = family.get("ava")
    assert child.current_xp == 0
    assert child.lifetime_xp == 130
    assert child.level == 2
    assert ledger.penalties_for_child("ava") == (penalty,)

    with pytest.raises(AuthorizationError):
        ledger.apply_penalty("ava", "someone-else", 5, "Not my kid")
    with pytest.raises(ValidationError):
        ledger.apply_penalty("ava", "parent-1", 5, "   ")
    with pytest.raises(InvalidAmountError):
        ledger.apply_penalty("ava", "parent-1", 0, "Zero")


def test_progress_view_reflects_ledger() -> None:
    family, ledger = _ledger()
    ledger.award_xp("ava", 175)
    ledger.record_completion_for_streak("ava", date(2024, 3, 3))

    progress = ledger.progress_for(family.get("ava"))

    assert progress.xp == 175
    assert progress.level == 2
    assert progress.level_title == "Helper"
    assert progress.next_level_xp == 250
    assert progress.level_progress == 50.0
    assert progress.streak.current == 1
    assert progress.streak_active


def test_streak_freeze_bridges_a_missed_day() -> None:
    family, ledger = _ledger()
    ledger.award_xp("ava", 200)
    for day in (3, 4):
        ledger.record_completion_for_streak("ava", date(2024, 3, day))

    freeze = ledger.freeze_streak("ava", date(2024, 3, 5))

    assert (freeze.xp_cost, freeze.freezes_remaining) == (50, 1)
    child = family.get("ava")
    assert child.current_xp == 150
    assert child.lifetime_xp == 200
    assert child.streak.current == 2
    assert child.streak.last_completion_date == date(2024, 3, 5)

    update = ledger.record_completion_for_streak("ava", date(2024, 3, 6))
    assert update.continued
    assert update.state.current == 3


def test_streak_freeze_weekly_limit_resets_next_week() -> None:
    family, ledger = _ledger()
    ledger.award_xp("ava", 200)
    ledger.record_completion_for_streak("ava", date(2024, 3, 3))
    ledger.freeze_streak("ava", date(2024, 3, 4))
    ledger.freeze_streak("ava", datetime(2024, 3, 5, 20, 0))

    with pytest.raises(FreezeLimitError):
        ledger.freeze_streak("ava", date(2024, 3, 6))
    assert family.get("ava").current_xp == 100

    for day in (6, 7, 8, 9):
        ledger.record_completion_for_streak("ava", date(2024, 3, day))
    freeze = ledger.freeze_streak("ava", date(2024, 3, 10))

    assert freeze.freezes_remaining == 1
    child = family.get("ava")
    assert child.current_xp == 50
    assert child.streak.current == 5
    assert child.streak.freezes_used == 1
    assert [item.frozen_on.day for item in ledger.freezes_for_child("ava")] == [4, 5, 10]


def test_streak_freeze_rejections_change_nothing() -> None:
    family, ledger = _ledger()

    with pytest.raises(StateConflictError):
        ledger.freeze_streak("ava", date(2024, 3, 4))

    ledger.record_completion_for_streak("ava", date(2024, 3, 3))
    with pytest.raises(InsufficientBalanceError):
        ledger.freeze_streak("ava", date(2024, 3, 4))

    ledger.award_xp("ava", 80)
    with pytest.raises(StateConflictError):
        ledger.freeze_streak("ava", date(2024, 3, 3))
    with pytest.raises(StateConflictError):
        ledger.freeze_streak("ava", date(2024, 3, 5))

    child = family.get("ava")
    assert child.current_xp == 80
    assert child.streak.last_completion_date == date(2024, 3, 3)
    assert child.streak.freezes_used == 0
    assert ledger.freezes_for_child("ava") == ()
