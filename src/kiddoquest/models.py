"""Domain models used by the KiddoQuest engine.

Every persisted record converts to and from a plain document (a mapping of
JSON friendly values).  Optional fields that are unset are left out of the
document entirely instead of being written as nulls, and documents coming
back from a store are validated before the engine touches them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .exceptions import AlreadyClaimedError, StaleStateError, ValidationError
from .points import require_positive

QUESTS = "quests"
COMPLETIONS = "completions"
CHILDREN = "children"
REWARDS = "rewards"
REDEMPTIONS = "redemptions"
PENALTIES = "penalties"
STREAK_FREEZES = "streakFreezes"


class QuestType(str, Enum):
    """Whether a quest happens once or repeats every period."""

    ONE_TIME = "one-time"
    RECURRING = "recurring"


class Frequency(str, Enum):
    """Recurrence period for recurring quests and streaks."""

    DAILY = "daily"
    WEEKLY = "weekly"


class CompletionState(str, Enum):
    """Lifecycle of one child's attempt at one quest occurrence."""

    AVAILABLE = "available"
    PENDING_VERIFICATION = "pending_verification"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @property
    def blocks_claim(self) -> bool:
        return self in (CompletionState.PENDING_VERIFICATION, CompletionState.COMPLETED)


class Role(str, Enum):
    PARENT = "parent"
    CHILD = "child"


class BadgeCategory(str, Enum):
    ACHIEVEMENT = "achievement"
    STREAK = "streak"
    MILESTONE = "milestone"


class BadgeMetric(str, Enum):
    """Ledger values a badge criterion can be expressed over."""

    QUESTS_COMPLETED = "quests_completed"
    CURRENT_STREAK = "current_streak"
    LIFETIME_XP = "lifetime_xp"
    LEVEL = "level"


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------
def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def _iso(value: datetime | date | None) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid timestamp {value!r}.") from exc


def _parse_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid date {value!r}.") from exc


def _enum(enum_type: type[Enum], value: Any, label: str) -> Any:
    try:
        return enum_type(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {label} {value!r}.") from exc


def _ids(values: Iterable[str] | None) -> frozenset[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str):
        raise ValidationError("Expected a collection of ids, got a single string.")
    return frozenset(str(value) for value in values)


def _required(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError as exc:
        raise ValidationError(f"Document is missing required field '{key}'.") from exc


def completion_id(quest_id: str, child_id: str, occurrence_key: Optional[str]) -> str:
    """Return the deterministic id of the completion for one quest occurrence."""

    return f"{quest_id}:{child_id}:{occurrence_key or 'once'}"


# ---------------------------------------------------------------------------
# Quests and completions
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class Quest:
    """A chore defined by a parent and assigned to one or more children."""

    id: str
    parent_id: str
    title: str
    xp_reward: int
    type: QuestType = QuestType.ONE_TIME
    frequency: Optional[Frequency] = None
    assigned_to: frozenset[str] = field(default_factory=frozenset)
    description: str = ""
    active: bool = True
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.title = (self.title or "").strip()
        if not self.title:
            raise ValidationError("Quest title is required.")
        self.xp_reward = require_positive(self.xp_reward, allow_zero=True)
        self.type = _enum(QuestType, self.type, "quest type")
        if self.frequency is not None:
            self.frequency = _enum(Frequency, self.frequency, "frequency")
        if self.type is QuestType.RECURRING and self.frequency is None:
            raise ValidationError("Recurring quests need a daily or weekly frequency.")
        if self.type is QuestType.ONE_TIME and self.frequency is not None:
            raise ValidationError("One-time quests cannot have a frequency.")
        self.assigned_to = _ids(self.assigned_to)

    @property
    def is_recurring(self) -> bool:
        return self.type is QuestType.RECURRING

    def is_assigned(self, child_id: str) -> bool:
        return child_id in self.assigned_to

    def to_document(self) -> Dict[str, Any]:
        return _compact(
            {
                "parentId": self.parent_id,
                "title": self.title,
                "description": self.description,
                "xpReward": self.xp_reward,
                "type": self.type.value,
                "frequency": self.frequency.value if self.frequency else None,
                "assignedTo": sorted(self.assigned_to),
                "active": self.active,
                "createdAt": _iso(self.created_at),
            }
        )

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "Quest":
        return cls(
            id=doc_id,
            parent_id=_required(data, "parentId"),
            title=_required(data, "title"),
            xp_reward=_required(data, "xpReward"),
            type=data.get("type", QuestType.ONE_TIME.value),
            frequency=data.get("frequency"),
            assigned_to=data.get("assignedTo", ()),
            description=data.get("description", ""),
            active=bool(data.get("active", True)),
            created_at=_parse_datetime(data.get("createdAt")),
        )


@dataclass(slots=True)
class Completion:
    """One child's attempt at one occurrence of a quest."""

    quest_id: str
    child_id: str
    occurrence_key: Optional[str] = None
    state: CompletionState = CompletionState.AVAILABLE
    claimed_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    xp_awarded: int = 0
    attempts: int = 0

    def __post_init__(self) -> None:
        self.state = _enum(CompletionState, self.state, "completion state")

    @property
    def id(self) -> str:
        return completion_id(self.quest_id, self.child_id, self.occurrence_key)

    def claim(self, *, when: datetime) -> None:
        if self.state.blocks_claim:
            raise AlreadyClaimedError(
                f"Quest occurrence '{self.id}' is already {self.state.value}."
            )
        self.state = CompletionState.PENDING_VERIFICATION
        self.claimed_at = when
        self.rejected_at = None
        self.rejection_reason = None
        self.attempts += 1

    def verify(self, parent_id: str, *, xp_awarded: int, when: datetime) -> None:
        if self.state is not CompletionState.PENDING_VERIFICATION:
            raise StaleStateError(
                f"Completion '{self.id}' is {self.state.value}, not pending verification."
            )
        self.state = CompletionState.COMPLETED
        self.verified_at = when
        self.verified_by = parent_id
        self.xp_awarded = xp_awarded

    def reject(self, parent_id: str, *, reason: str, when: datetime) -> None:
        if self.state is not CompletionState.PENDING_VERIFICATION:
            raise StaleStateError(
                f"Completion '{self.id}' is {self.state.value}, not pending verification."
            )
        self.state = CompletionState.REJECTED
        self.rejected_at = when
        self.verified_by = parent_id
        self.rejection_reason = reason.strip() or None

    def to_document(self) -> Dict[str, Any]:
        return _compact(
            {
                "questId": self.quest_id,
                "childId": self.child_id,
                "occurrenceKey": self.occurrence_key,
                "state": self.state.value,
                "claimedAt": _iso(self.claimed_at),
                "verifiedAt": _iso(self.verified_at),
                "verifiedBy": self.verified_by,
                "rejectedAt": _iso(self.rejected_at),
                "rejectionReason": self.rejection_reason,
                "xpAwarded": self.xp_awarded,
                "attempts": self.attempts,
            }
        )

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "Completion":
        return cls(
            quest_id=_required(data, "questId"),
            child_id=_required(data, "childId"),
            occurrence_key=data.get("occurrenceKey"),
            state=_required(data, "state"),
            claimed_at=_parse_datetime(data.get("claimedAt")),
            verified_at=_parse_datetime(data.get("verifiedAt")),
            verified_by=data.get("verifiedBy"),
            rejected_at=_parse_datetime(data.get("rejectedAt")),
            rejection_reason=data.get("rejectionReason"),
            xp_awarded=int(data.get("xpAwarded", 0)),
            attempts=int(data.get("attempts", 0)),
        )


# ---------------------------------------------------------------------------
# Child progression
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StreakState:
    """Consecutive completion periods for a child."""

    current: int = 0
    longest: int = 0
    last_completion_date: Optional[date] = None
    period: Frequency = Frequency.DAILY
    freezes_used: int = 0
    last_freeze_date: Optional[date] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "period", _enum(Frequency, self.period, "streak period"))
        if self.current < 0 or self.longest < 0 or self.freezes_used < 0:
            raise ValidationError("Streak counters cannot be negative.")
        if self.longest < self.current:
            object.__setattr__(self, "longest", self.current)

    def to_document(self) -> Dict[str, Any]:
        return _compact(
            {
                "current": self.current,
                "longest": self.longest,
                "lastCompletionDate": _iso(self.last_completion_date),
                "period": self.period.value,
                "freezesUsed": self.freezes_used or None,
                "lastFreezeDate": _iso(self.last_freeze_date),
            }
        )

    @classmethod
    def from_document(cls, data: Mapping[str, Any] | None) -> "StreakState":
        data = data or {}
        return cls(
            current=int(data.get("current", 0)),
            longest=int(data.get("longest", 0)),
            last_completion_date=_parse_date(data.get("lastCompletionDate")),
            period=data.get("period", Frequency.DAILY.value),
            freezes_used=int(data.get("freezesUsed", 0)),
            last_freeze_date=_parse_date(data.get("lastFreezeDate")),
        )


@dataclass(slots=True)
class ChildProfile:
    """A child owned by a parent account, with its ledger state."""

    id: str
    parent_id: str
    name: str
    avatar: str = ""
    current_xp: int = 0
    lifetime_xp: int = 0
    level: int = 1
    badges: set[str] = field(default_factory=set)
    streak: StreakState = field(default_factory=StreakState)
    quests_completed: int = 0
    milestones_reached: set[int] = field(default_factory=set)
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.name = (self.name or "").strip()
        if not self.name:
            raise ValidationError("Child name is required.")
        self.current_xp = require_positive(self.current_xp, allow_zero=True)
        self.lifetime_xp = require_positive(self.lifetime_xp, allow_zero=True)
        if self.level < 1:
            raise ValidationError("Level must be at least 1.")
        self.badges = set(self.badges)
        self.milestones_reached = {int(days) for days in self.milestones_reached}

    def to_document(self) -> Dict[str, Any]:
        return _compact(
            {
                "parentId": self.parent_id,
                "name": self.name,
                "avatar": self.avatar or None,
                "currentXP": self.current_xp,
                "lifetimeXP": self.lifetime_xp,
                "level": self.level,
                "badges": sorted(self.badges),
                "streak": self.streak.to_document(),
                "questsCompleted": self.quests_completed,
                "milestonesReached": sorted(self.milestones_reached),
                "createdAt": _iso(self.created_at),
            }
        )

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "ChildProfile":
        return cls(
            id=doc_id,
            parent_id=_required(data, "parentId"),
            name=_required(data, "name"),
            avatar=data.get("avatar", ""),
            current_xp=data.get("currentXP", 0),
            lifetime_xp=data.get("lifetimeXP", 0),
            level=int(data.get("level", 1)),
            badges=set(data.get("badges", ())),
            streak=StreakState.from_document(data.get("streak")),
            quests_completed=int(data.get("questsCompleted", 0)),
            milestones_reached=set(data.get("milestonesReached", ())),
            created_at=_parse_datetime(data.get("createdAt")),
        )


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class Reward:
    """Something a parent offers in exchange for XP."""

    id: str
    parent_id: str
    title: str
    cost: int
    description: str = ""
    assigned_to: frozenset[str] = field(default_factory=frozenset)
    active: bool = True
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.title = (self.title or "").strip()
        if not self.title:
            raise ValidationError("Reward title is required.")
        self.cost = require_positive(self.cost)
        self.assigned_to = _ids(self.assigned_to)

    def is_assigned(self, child_id: str) -> bool:
        return child_id in self.assigned_to

    def to_document(self) -> Dict[str, Any]:
        return _compact(
            {
                "parentId": self.parent_id,
                "title": self.title,
                "description": self.description,
                "cost": self.cost,
                "assignedTo": sorted(self.assigned_to),
                "active": self.active,
                "createdAt": _iso(self.created_at),
            }
        )

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "Reward":
        return cls(
            id=doc_id,
            parent_id=_required(data, "parentId"),
            title=_required(data, "title"),
            cost=_required(data, "cost"),
            description=data.get("description", ""),
            assigned_to=data.get("assignedTo", ()),
            active=bool(data.get("active", True)),
            created_at=_parse_datetime(data.get("createdAt")),
        )


@dataclass(frozen=True, slots=True)
class Redemption:
    """Immutable record of a child spending XP on a reward."""

    id: str
    reward_id: str
    child_id: str
    cost_paid: int
    redeemed_at: datetime
    reward_title: str = ""

    def to_document(self) -> Dict[str, Any]:
        return _compact(
            {
                "rewardId": self.reward_id,
                "childId": self.child_id,
                "costPaid": self.cost_paid,
                "redeemedAt": _iso(self.redeemed_at),
                "rewardTitle": self.reward_title or None,
            }
        )

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "Redemption":
        return cls(
            id=doc_id,
            reward_id=_required(data, "rewardId"),
            child_id=_required(data, "childId"),
            cost_paid=int(_required(data, "costPaid")),
            redeemed_at=_parse_datetime(_required(data, "redeemedAt")),
            reward_title=data.get("rewardTitle", ""),
        )


@dataclass(frozen=True, slots=True)
class Penalty:
    """XP deducted by a parent; ``amount_applied`` is capped by the balance."""

    id: str
    child_id: str
    parent_id: str
    amount: int
    amount_applied: int
    reason: str
    applied_at: datetime

    def to_document(self) -> Dict[str, Any]:
        return {
            "childId": self.child_id,
            "parentId": self.parent_id,
            "amount": self.amount,
            "amountApplied": self.amount_applied,
            "reason": self.reason,
            "appliedAt": self.applied_at.isoformat(),
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "Penalty":
        return cls(
            id=doc_id,
            child_id=_required(data, "childId"),
            parent_id=_required(data, "parentId"),
            amount=int(_required(data, "amount")),
            amount_applied=int(_required(data, "amountApplied")),
            reason=data.get("reason", ""),
            applied_at=_parse_datetime(_required(data, "appliedAt")),
        )


@dataclass(frozen=True, slots=True)
class StreakFreeze:
    """XP spent to carry a streak over a period with no completion."""

    id: str
    child_id: str
    frozen_on: date
    xp_cost: int
    freezes_remaining: int
    created_at: datetime

    def to_document(self) -> Dict[str, Any]:
        return {
            "childId": self.child_id,
            "frozenOn": self.frozen_on.isoformat(),
            "xpCost": self.xp_cost,
            "freezesRemaining": self.freezes_remaining,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]) -> "StreakFreeze":
        return cls(
            id=doc_id,
            child_id=_required(data, "childId"),
            frozen_on=_parse_date(_required(data, "frozenOn")),
            xp_cost=int(_required(data, "xpCost")),
            freezes_remaining=int(data.get("freezesRemaining", 0)),
            created_at=_parse_datetime(_required(data, "createdAt")),
        )


# ---------------------------------------------------------------------------
# Badges and derived views
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class BadgeCriteria:
    """Declarative predicate: ``metric >= threshold``."""

    metric: BadgeMetric
    threshold: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "metric", _enum(BadgeMetric, self.metric, "badge metric"))
        if self.threshold <= 0:
            raise ValidationError("Badge thresholds must be positive.")

    def matches(self, metrics: Mapping[BadgeMetric, int]) -> bool:
        return metrics.get(self.metric, 0) >= self.threshold

    def progress(self, metrics: Mapping[BadgeMetric, int]) -> float:
        ratio = metrics.get(self.metric, 0) / self.threshold
        return round(min(1.0, ratio) * 100, 1)


@dataclass(frozen=True, slots=True)
class BadgeTemplate:
    id: str
    name: str
    category: BadgeCategory
    criteria: BadgeCriteria
    description: str = ""
    xp_bonus: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", _enum(BadgeCategory, self.category, "badge category"))
        if self.xp_bonus < 0:
            raise ValidationError("Badge XP bonus cannot be negative.")


@dataclass(frozen=True, slots=True)
class BadgeAward:
    badge_id: str
    name: str
    xp_bonus: int


@dataclass(frozen=True, slots=True)
class LevelChange:
    """Outcome of an XP award: the level before and after."""

    previous_level: int
    new_level: int
    xp_awarded: int = 0

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.previous_level

    @property
    def levels_gained(self) -> int:
        return max(0, self.new_level - self.previous_level)


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    """Outcome of recording a completion against a streak."""

    state: StreakState
    continued: bool
    milestones: Tuple[int, ...] = ()


@dataclass(frozen=True, slots=True)
class ChildProgress:
    """Snapshot returned by ``get_child_progress``."""

    child_id: str
    name: str
    xp: int
    lifetime_xp: int
    level: int
    level_title: str
    next_level_xp: Optional[int]
    level_progress: float
    streak: StreakState
    streak_active: bool
    badges: Tuple[str, ...]
    quests_completed: int


__all__ = [
    "BadgeAward",
    "BadgeCategory",
    "BadgeCriteria",
    "BadgeMetric",
    "BadgeTemplate",
    "ChildProfile",
    "ChildProgress",
    "Completion",
    "CompletionState",
    "Frequency",
    "LevelChange",
    "Penalty",
    "Quest",
    "QuestType",
    "Redemption",
    "Reward",
    "Role",
    "StreakFreeze",
    "StreakState",
    "StreakUpdate",
    "completion_id",
    "CHILDREN",
    "COMPLETIONS",
    "PENALTIES",
    "QUESTS",
    "REDEMPTIONS",
    "REWARDS",
    "STREAK_FREEZES",
]
