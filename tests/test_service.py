import json
from datetime import date, datetime, timedelta

import pytest

from kiddoquest.config import Settings
from kiddoquest.exceptions import (
    AuthorizationError,
    FreezeLimitError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from kiddoquest.models import CompletionState, Frequency
from kiddoquest.quests import Weekday
from kiddoquest.security import Identity
from kiddoquest.service import KiddoQuest
from kiddoquest.store import InMemoryDocumentStore

NOW = datetime(2024, 4, 1, 17, 0)
PARENT = Identity.parent("parent-1")
OTHER_PARENT = Identity.parent("parent-2")
CHILD = Identity.child("kid-c")


def _engine(**settings) -> KiddoQuest:
    engine = KiddoQuest(InMemoryDocumentStore(), settings=Settings(**settings), clock=lambda: NOW)
    engine.add_child(PARENT, "Casey", child_id="kid-c")
    return engine


def test_clean_your_room_then_ice_cream() -> None:
    engine = _engine(badges_enabled=False)
    warm_up = engine.create_quest(PARENT, "Warm-up", 20, assigned_to=["kid-c"])
    engine.verify_completion(PARENT, engine.claim_quest(CHILD, warm_up.id).id)
    assert engine.get_child_progress(CHILD).xp == 20

    room = engine.create_quest(PARENT, "Clean Your Room", 10, assigned_to=["kid-c"])
    ice_cream = engine.create_reward(PARENT, "Ice Cream", 30, assigned_to=["kid-c"])

    completion = engine.claim_quest(CHILD, room.id)
    assert completion.state is CompletionState.PENDING_VERIFICATION

    with pytest.raises(InsufficientBalanceError):
        engine.redeem_reward(CHILD, ice_cream.id)

    result = engine.verify_completion(PARENT, completion.id)
    assert result.completion.state is CompletionState.COMPLETED
    assert engine.get_child_progress(CHILD).xp == 30

    engine.redeem_reward(CHILD, ice_cream.id)
    assert engine.get_child_progress(CHILD).xp == 0
    assert len(engine.redemptions(CHILD)) == 1


def test_daily_streak_resets_after_missed_day() -> None:
    engine = _engine()
    quest = engine.create_quest(
        PARENT, "Brush teeth", 5, quest_type="recurring", frequency=Frequency.DAILY, assigned_to=["kid-c"]
    )
    day_one = datetime(2024, 4, 1, 8, 0)

    for offset in (0, 1):
        claim = engine.claim_quest(CHILD, quest.id, at=day_one + timedelta(days=offset))
        engine.verify_completion(PARENT, claim.id)
    streak = engine.get_child_progress(CHILD).streak
    assert (streak.current, streak.longest) == (2, 2)

    claim = engine.claim_quest(CHILD, quest.id, at=day_one + timedelta(days=3))
    engine.verify_completion(PARENT, claim.id)
    streak = engine.get_child_progress(CHILD).streak
    assert (streak.current, streak.longest) == (1, 2)


def test_role_checks() -> None:
    engine = _engine()
    engine.add_child(OTHER_PARENT, "Drew", child_id="kid-d")
    quest = engine.create_quest(PARENT, "Dust shelves", 10, assigned_to=["kid-c"])

    with pytest.raises(AuthorizationError):
        engine.create_quest(CHILD, "Skip school", 1000)
    with pytest.raises(AuthorizationError):
        engine.claim_quest(Identity.child("kid-d"), quest.id, "kid-c")
    with pytest.raises(AuthorizationError):
        engine.get_child_progress(OTHER_PARENT, "kid-c")
    with pytest.raises(ValidationError):
        engine.claim_quest(PARENT, quest.id)
    with pytest.raises(NotFoundError):
        engine.get_child_progress(PARENT, "ghost")

    completion = engine.claim_quest(PARENT, quest.id, "kid-c")
    with pytest.raises(AuthorizationError):
        engine.verify_completion(CHILD, completion.id)
    with pytest.raises(AuthorizationError):
        engine.verify_completion(OTHER_PARENT, completion.id)
    with pytest.raises(AuthorizationError):
        engine.apply_penalty(CHILD, "kid-c", 5, "self-inflicted")

    assert [item.id for item in engine.pending_verifications(PARENT)] == [completion.id]
    assert engine.pending_verifications(OTHER_PARENT) == ()


def test_events_logs_and_audit_trail() -> None:
    engine = _engine()
    received = []
    engine.dispatcher.register(received.append)
    quest = engine.create_quest(PARENT, "Mow the lawn", 50, assigned_to=["kid-c"])
    reward = engine.create_reward(PARENT, "Comic book", 40, assigned_to=["kid-c"])

    completion = engine.claim_quest(CHILD, quest.id)
    result = engine.verify_completion(PARENT, completion.id)
    engine.redeem_reward(CHILD, reward.id)

    assert result.level_change.leveled_up
    assert [event["event"] for event in received] == ["level_up", "badge_awarded", "reward_redeemed"]
    assert received[0]["level"] == 2
    assert received[0]["title"] == "Helper"
    assert received[1]["badge"] == "first_quest"
    assert received[2]["cost"] == 40

    verified = engine.logger.events("completion_verified", child="kid-c")
    assert len(verified) == 1
    assert verified[0]["xp"] == 50
    assert engine.logger.events("quest_claimed")[0]["completion"] == completion.id
    assert [entry.action for entry in engine.audit_log.entries(actor="parent-1")] == [
        "add_child",
        "create_quest",
        "create_reward",
        "verify_completion",
    ]


def test_rejection_and_penalty_through_facade() -> None:
    engine = _engine()
    quest = engine.create_quest(PARENT, "Fold laundry", 25, assigned_to=["kid-c"])
    completion = engine.claim_quest(CHILD, quest.id)

    rejected = engine.reject_completion(PARENT, completion.id, "Socks still on the floor")
    assert rejected.state is CompletionState.REJECTED
    assert engine.quest_board(CHILD)[0].state is CompletionState.REJECTED

    engine.verify_completion(PARENT, engine.claim_quest(CHILD, quest.id).id)
    penalty = engine.apply_penalty(PARENT, "kid-c", 30, "Talking back")

    progress = engine.get_child_progress(CHILD)
    assert penalty.amount_applied == 30
    assert progress.xp == 25 + 50 - 30
    assert progress.lifetime_xp == 75
    assert engine.penalties(PARENT, "kid-c") == (penalty,)
    assert engine.audit_log.latest().action == "apply_penalty"


def test_progress_and_badge_progress() -> None:
    engine = _engine()

    progress = engine.get_child_progress(CHILD)
    assert progress.level == 1
    assert progress.level_title == "Beginner"
    assert progress.next_level_xp == 100
    assert progress.badges == ()
    assert not progress.streak_active

    upcoming = engine.badge_progress(PARENT, "kid-c", limit=2)
    assert [template.id for template, _ in upcoming] == ["level_5", "level_10"]
    assert len(engine.badge_catalog) == 17


def test_sqlite_backed_engine_persists(tmp_path) -> None:
    settings = Settings(sqlite_file=str(tmp_path / "quests.db"), log_path=tmp_path / "logs" / "events.jsonl")
    engine = KiddoQuest.from_settings(settings, clock=lambda: NOW)
    engine.add_child(PARENT, "Casey", child_id="kid-c")
    quest = engine.create_quest(PARENT, "Sweep", 15, assigned_to=["kid-c"])
    engine.claim_quest(CHILD, quest.id)

    reopened = KiddoQuest.from_settings(settings, clock=lambda: NOW)
    pending = reopened.pending_verifications(PARENT)
    assert [item.quest_id for item in pending] == [quest.id]

    lines = (tmp_path / "logs" / "events.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["event"] for line in lines] == ["child_added", "quest_created", "quest_claimed"]


def test_settings_from_env() -> None:
    settings = Settings.from_env(
        {
            "KIDDOQUEST_SQLITE": "family.db",
            "KIDDOQUEST_LEVEL_BASE_XP": "50",
            "KIDDOQUEST_MAX_LEVEL": "10",
            "KIDDOQUEST_STREAK_PERIOD": "weekly",
            "KIDDOQUEST_WEEK_START": "monday",
            "KIDDOQUEST_BADGES": "off",
        }
    )

    assert settings.sqlite_file == "family.db"
    assert settings.base_xp == 50
    assert settings.max_level == 10
    assert settings.streak_period is Frequency.WEEKLY
    assert settings.week_start is Weekday.MONDAY
    assert not settings.badges_enabled

    with pytest.raises(ValueError):
        Settings.from_env({"KIDDOQUEST_MAX_LEVEL": "lots"})


def test_streak_freeze_through_facade() -> None:
    engine = _engine(badges_enabled=False, freeze_cost=20, max_freezes_per_week=1)
    frozen = []
    engine.dispatcher.register(frozen.append, events={"streak_frozen"})
    quest = engine.create_quest(
        PARENT, "Feed the cat", 30, quest_type="recurring", frequency=Frequency.DAILY, assigned_to=["kid-c"]
    )
    engine.verify_completion(PARENT, engine.claim_quest(CHILD, quest.id, at=datetime(2024, 4, 1, 8, 0)).id)

    freeze = engine.freeze_streak(CHILD, on=date(2024, 4, 2))

    assert freeze.freezes_remaining == 0
    assert engine.get_child_progress(CHILD).xp == 10
    assert frozen == [
        {
            "event": "streak_frozen",
            "child": "kid-c",
            "frozenOn": "2024-04-02",
            "xpCost": 20,
            "freezesRemaining": 0,
        }
    ]
    assert engine.dispatcher.sent("streak_frozen") == 1
    assert engine.dispatcher.sent("level_up") == 0

    with pytest.raises(FreezeLimitError):
        engine.freeze_streak(PARENT, "kid-c", on=date(2024, 4, 3))
    with pytest.raises(AuthorizationError):
        engine.freeze_streak(OTHER_PARENT, "kid-c", on=date(2024, 4, 3))
    assert len(engine.logger.events("streak_freeze_declined", child="kid-c")) == 1
    assert engine.streak_freezes(PARENT, "kid-c") == (freeze,)
