"""Progression ledger: XP balances, levels, streaks and penalties.

Level is derived from lifetime XP through a :class:`LevelTable`, so spending
XP on rewards (or losing it to a penalty) never lowers a child's level.  The
streak helpers are pure functions over :class:`~kiddoquest.models.StreakState`
and take the calendar date explicitly; nothing in here reads the wall clock.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Callable, Iterable, Optional, Sequence, Tuple
from uuid import uuid4

from .config import LEVEL_TITLES, MAX_FREEZES_PER_WEEK, STREAK_FREEZE_COST, STREAK_MILESTONES, Settings
from .exceptions import FreezeLimitError, InsufficientBalanceError, StateConflictError, ValidationError
from .family import load_child, require_owner, save_child
from .models import (
    PENALTIES,
    STREAK_FREEZES,
    ChildProfile,
    ChildProgress,
    Frequency,
    LevelChange,
    Penalty,
    StreakFreeze,
    StreakState,
    StreakUpdate,
)
from .points import PointsLike, require_positive
from .quests import Weekday, period_start
from .store import DocumentStore, Transaction


@dataclass(frozen=True, slots=True)
class LevelDetails:
    level: int
    title: str
    floor: int
    next_floor: Optional[int]
    progress: float
    is_max: bool


class LevelTable:
    """Monotonic XP floors, one per level, with a display title for each."""

    def __init__(self, floors: Sequence[int], titles: Sequence[str] = LEVEL_TITLES) -> None:
        floors = tuple(int(value) for value in floors)
        if not floors or floors[0] != 0:
            raise ValidationError("Level floors must start at 0 XP for level 1.")
        if any(later <= earlier for earlier, later in zip(floors, floors[1:])):
            raise ValidationError("Level floors must be strictly increasing.")
        self._floors = floors
        self._titles = tuple(titles)

    @classmethod
    def geometric(
        cls,
        base_xp: int = 100,
        growth_factor: float = 1.5,
        max_level: int = 20,
        titles: Sequence[str] = LEVEL_TITLES,
    ) -> "LevelTable":
        """Each level costs ``growth_factor`` times the previous step, starting at ``base_xp``."""

        if base_xp <= 0 or growth_factor < 1 or max_level < 1:
            raise ValidationError("Level curve needs positive base XP, growth >= 1 and max level >= 1.")
        floors = [0]
        for level in range(2, max_level + 1):
            floors.append(floors[-1] + math.floor(base_xp * growth_factor ** (level - 2)))
        return cls(floors, titles)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LevelTable":
        if settings.level_thresholds:
            return cls(settings.level_thresholds, settings.level_titles)
        return cls.geometric(
            settings.base_xp, settings.growth_factor, settings.max_level, settings.level_titles
        )

    @property
    def max_level(self) -> int:
        return len(self._floors)

    @property
    def floors(self) -> Tuple[int, ...]:
        return self._floors

    def floor(self, level: int) -> int:
        if level < 1:
            return 0
        return self._floors[min(level, self.max_level) - 1]

    def level_for(self, xp: int) -> int:
        level = 1
        for index, floor in enumerate(self._floors, start=1):
            if xp >= floor:
                level = index
            else:
                break
        return level

    def title_for(self, level: int) -> str:
        if not self._titles:
            return f"Level {level}"
        return self._titles[min(max(level, 1), len(self._titles)) - 1]

    def details(self, xp: int) -> LevelDetails:
        level = self.level_for(xp)
        floor = self.floor(level)
        if level >= self.max_level:
            return LevelDetails(level, self.title_for(level), floor, None, 100.0, True)
        next_floor = self.floor(level + 1)
        progress = round((xp - floor) / (next_floor - floor) * 100, 1)
        return LevelDetails(level, self.title_for(level), floor, next_floor, progress, False)


# ---------------------------------------------------------------------------
# Streak math
# ---------------------------------------------------------------------------
def _period_index(on: date, period: Frequency, week_start: Weekday) -> int:
    if period is Frequency.DAILY:
        return on.toordinal()
    return period_start(on, Frequency.WEEKLY, week_start=week_start).toordinal() // 7


def periods_between(
    earlier: date, later: date, period: Frequency, *, week_start: Weekday = Weekday.SUNDAY
) -> int:
    """Whole streak periods from ``earlier`` to ``later`` (negative if reversed)."""

    return _period_index(later, period, week_start) - _period_index(earlier, period, week_start)


def advance_streak(state: StreakState, on: date, *, week_start: Weekday = Weekday.SUNDAY) -> StreakState:
    """Return the streak after a completion dated ``on``.

    The streak grows by one when ``on`` falls exactly one period after the
    last completion, is unchanged for the same period (or an older date) and
    restarts at one after a gap.
    """

    if isinstance(on, datetime):
        on = on.date()
    last = state.last_completion_date
    if last is None:
        current = 1
    else:
        gap = periods_between(last, on, state.period, week_start=week_start)
        if gap <= 0:
            return state
        current = state.current + 1 if gap == 1 else 1
    return replace(state, current=current, longest=max(state.longest, current), last_completion_date=on)


def is_streak_active(
    state: StreakState, now: date | datetime, *, week_start: Weekday = Weekday.SUNDAY
) -> bool:
    """True while the last completion is in the current or the previous period."""

    if state.last_completion_date is None or state.current == 0:
        return False
    today = now.date() if isinstance(now, datetime) else now
    return periods_between(state.last_completion_date, today, state.period, week_start=week_start) <= 1


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
class ProgressionLedger:
    """Mutate a child's XP, level and streak inside store transactions.

    The ``apply_*`` methods work on an already-loaded profile so callers such
    as the lifecycle engine can fold them into a larger transaction; the
    public operations wrap them in their own.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        levels: Optional[LevelTable] = None,
        milestones: Iterable[int] = STREAK_MILESTONES,
        week_start: Weekday = Weekday.SUNDAY,
        freeze_cost: int = STREAK_FREEZE_COST,
        max_freezes_per_week: int = MAX_FREEZES_PER_WEEK,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self.freeze_cost = require_positive(freeze_cost, allow_zero=True)
        self.max_freezes_per_week = max_freezes_per_week
        self.levels = levels or LevelTable.geometric()
        self.milestones = tuple(sorted(set(int(value) for value in milestones)))
        self.week_start = week_start
        self._clock = clock

    # -- in-transaction helpers ------------------------------------------
    def apply_xp(self, child: ChildProfile, amount: PointsLike) -> LevelChange:
        points = require_positive(amount, allow_zero=True)
        previous = child.level
        child.current_xp += points
        child.lifetime_xp += points
        child.level = max(previous, self.levels.level_for(child.lifetime_xp))
        return LevelChange(previous_level=previous, new_level=child.level, xp_awarded=points)

    def apply_streak(self, child: ChildProfile, on: date) -> StreakUpdate:
        before = child.streak
        after = advance_streak(before, on, week_start=self.week_start)
        continued = (
            before.last_completion_date is not None
            and after is not before
            and after.current == before.current + 1
        )
        reached = tuple(
            days for days in self.milestones if after.current >= days and days not in child.milestones_reached
        )
        child.streak = after
        child.milestones_reached.update(reached)
        return StreakUpdate(state=after, continued=continued, milestones=reached)

    def apply_deduction(self, child: ChildProfile, amount: int) -> int:
        applied = min(amount, child.current_xp)
        child.current_xp -= applied
        return applied

    # -- transactional operations ----------------------------------------
    def award_xp(self, child_id: str, amount: PointsLike) -> LevelChange:
        points = require_positive(amount, allow_zero=True)

        def _award(transaction: Transaction) -> LevelChange:
            child = load_child(transaction, child_id)
            change = self.apply_xp(child, points)
            save_child(transaction, child)
            return change

        return self._store.run_transaction(_award)

    def record_completion_for_streak(self, child_id: str, on: date) -> StreakUpdate:
        def _record(transaction: Transaction) -> StreakUpdate:
            child = load_child(transaction, child_id)
            update = self.apply_streak(child, on)
            save_child(transaction, child)
            return update

        return self._store.run_transaction(_record)

    def apply_penalty(
        self,
        child_id: str,
        parent_id: str,
        amount: PointsLike,
        reason: str,
        *,
        at: Optional[datetime] = None,
    ) -> Penalty:
        """Deduct spendable XP, never below zero; lifetime XP and level are untouched."""

        points = require_positive(amount)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A penalty needs a reason.")
        when = at or self._clock()
        penalty_id = str(uuid4())

        def _penalise(transaction: Transaction) -> Penalty:
            child = load_child(transaction, child_id)
            require_owner(child, parent_id)
            applied = self.apply_deduction(child, points)
            penalty = Penalty(
                id=penalty_id,
                child_id=child_id,
                parent_id=parent_id,
                amount=points,
                amount_applied=applied,
                reason=reason,
                applied_at=when,
            )
            save_child(transaction, child)
            transaction.create(PENALTIES, penalty.id, penalty.to_document())
            return penalty

        return self._store.run_transaction(_penalise)

    def penalties_for_child(self, child_id: str) -> Sequence[Penalty]:
        penalties = [
            Penalty.from_document(doc_id, data)
            for doc_id, data in self._store.query(PENALTIES, {"childId": child_id})
        ]
        return tuple(sorted(penalties, key=lambda penalty: penalty.applied_at))

    def freeze_streak(self, child_id: str, on: date | datetime | None = None) -> StreakFreeze:
        """Spend ``freeze_cost`` XP so the period ``on`` keeps the streak alive.

        Only the period right after the last completion can be frozen: earlier
        ones are already covered and later ones mean the streak is gone.  The
        streak length itself does not grow.
        """

        now = self._clock()
        day = on or now
        if isinstance(day, datetime):
            day = day.date()
        freeze_id = str(uuid4())

        def _freeze(transaction: Transaction) -> StreakFreeze:
            child = load_child(transaction, child_id)
            streak = child.streak
            if streak.current == 0 or streak.last_completion_date is None:
                raise StateConflictError(f"Child '{child_id}' has no streak to freeze.")
            gap = periods_between(streak.last_completion_date, day, streak.period, week_start=self.week_start)
            if gap <= 0:
                raise StateConflictError("The streak already covers this period.")
            if gap > 1:
                raise StateConflictError("The streak is already broken.")
            used = streak.freezes_used
            if streak.last_freeze_date is None or periods_between(
                streak.last_freeze_date, day, Frequency.WEEKLY, week_start=self.week_start
            ):
                used = 0
            if used >= self.max_freezes_per_week:
                raise FreezeLimitError(
                    f"Only {self.max_freezes_per_week} streak freezes are allowed per week."
                )
            if child.current_xp < self.freeze_cost:
                raise InsufficientBalanceError(
                    f"A streak freeze costs {self.freeze_cost} XP; '{child_id}' has {child.current_xp}."
                )
            child.current_xp -= self.freeze_cost
            child.streak = replace(
                streak, last_completion_date=day, freezes_used=used + 1, last_freeze_date=day
            )
            freeze = StreakFreeze(
                id=freeze_id,
                child_id=child_id,
                frozen_on=day,
                xp_cost=self.freeze_cost,
                freezes_remaining=self.max_freezes_per_week - used - 1,
                created_at=now,
            )
            save_child(transaction, child)
            transaction.create(STREAK_FREEZES, freeze.id, freeze.to_document())
            return freeze

        return self._store.run_transaction(_freeze)

    def freezes_for_child(self, child_id: str) -> Sequence[StreakFreeze]:
        freezes = [
            StreakFreeze.from_document(doc_id, data)
            for doc_id, data in self._store.query(STREAK_FREEZES, {"childId": child_id})
        ]
        return tuple(sorted(freezes, key=lambda freeze: (freeze.frozen_on, freeze.created_at)))

    # -- views -------------------------------------------------------------
    def progress_for(self, child: ChildProfile, now: Optional[datetime] = None) -> ChildProgress:
        details = self.levels.details(child.lifetime_xp)
        level = max(child.level, details.level)
        return ChildProgress(
            child_id=child.id,
            name=child.name,
            xp=child.current_xp,
            lifetime_xp=child.lifetime_xp,
            level=level,
            level_title=self.levels.title_for(level),
            next_level_xp=details.next_floor,
            level_progress=details.progress,
            streak=child.streak,
            streak_active=is_streak_active(child.streak, now or self._clock(), week_start=self.week_start),
            badges=tuple(sorted(child.badges)),
            quests_completed=child.quests_completed,
        )


__all__ = [
    "LevelDetails",
    "LevelTable",
    "ProgressionLedger",
    "advance_streak",
    "is_streak_active",
    "periods_between",
]
