"""High level service tying the KiddoQuest engines together behind role checks."""

from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Iterable, Optional, Sequence, Tuple

from .api import ApiExporter, EventDispatcher
from .badges import BadgeEvaluator
from .config import Settings
from .exceptions import FreezeLimitError, InsufficientBalanceError, StaleStateError, ValidationError
from .family import FamilyDirectory
from .lifecycle import BoardEntry, QuestLifecycleEngine, VerificationResult
from .models import (
    BadgeTemplate,
    ChildProfile,
    ChildProgress,
    Completion,
    Frequency,
    Penalty,
    Quest,
    QuestType,
    Redemption,
    Reward,
    StreakFreeze,
)
from .ops import AuditLog, StructuredLogger
from .persistence import SQLDocumentStore
from .points import PointsLike
from .progression import LevelTable, ProgressionLedger
from .quests import QuestCatalog
from .rewards import RedemptionEngine, RewardCatalog
from .security import Identity, require_child_or_owner, require_parent
from .store import DocumentStore


class KiddoQuest:
    """Parent and child facing operations over a single document store."""

    __slots__ = (
        "_store",
        "_settings",
        "_clock",
        "_logger",
        "_audit_log",
        "_dispatcher",
        "_api",
        "_family",
        "_quests",
        "_ledger",
        "_badges",
        "_lifecycle",
        "_rewards",
        "_redemptions",
    )

    def __init__(
        self,
        store: DocumentStore,
        *,
        settings: Optional[Settings] = None,
        logger: Optional[StructuredLogger] = None,
        audit_log: Optional[AuditLog] = None,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        settings = settings or Settings()
        self._store = store
        self._settings = settings
        self._clock = clock
        self._logger = logger or StructuredLogger(path=settings.log_path, clock=clock)
        self._audit_log = audit_log or AuditLog(clock=clock)
        self._dispatcher = dispatcher or EventDispatcher()
        self._api = ApiExporter()
        self._family = FamilyDirectory(store, clock=clock, streak_period=settings.streak_period)
        self._quests = QuestCatalog(store, clock=clock, week_start=settings.week_start)
        self._ledger = ProgressionLedger(
            store,
            levels=LevelTable.from_settings(settings),
            milestones=settings.streak_milestones,
            week_start=settings.week_start,
            freeze_cost=settings.freeze_cost,
            max_freezes_per_week=settings.max_freezes_per_week,
            clock=clock,
        )
        self._badges = BadgeEvaluator(store, self._ledger, enabled=settings.badges_enabled)
        self._lifecycle = QuestLifecycleEngine(
            store, self._ledger, self._badges, week_start=settings.week_start, clock=clock
        )
        self._rewards = RewardCatalog(store, clock=clock)
        self._redemptions = RedemptionEngine(store, clock=clock)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: object) -> "KiddoQuest":
        """Build an engine backed by the SQLite file named in ``settings``."""

        settings = settings or Settings.from_env()
        store = SQLDocumentStore.from_sqlite_file(
            settings.sqlite_file, max_attempts=settings.transaction_attempts
        )
        return cls(store, settings=settings, **kwargs)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def api(self) -> ApiExporter:
        return self._api

    @property
    def levels(self) -> LevelTable:
        return self._ledger.levels

    @property
    def badge_catalog(self) -> Tuple[BadgeTemplate, ...]:
        return self._badges.catalog

    def _child_for(self, identity: Identity, child_id: Optional[str]) -> ChildProfile:
        if child_id is None:
            if not identity.is_child:
                raise ValidationError("A parent must name the child they are acting for.")
            child_id = identity.user_id
        child = self._family.get(child_id)
        require_child_or_owner(identity, child.id, child.parent_id)
        return child

    # ------------------------------------------------------------------
    # Family
    # ------------------------------------------------------------------
    def add_child(
        self,
        identity: Identity,
        name: str,
        *,
        avatar: str = "",
        child_id: Optional[str] = None,
    ) -> ChildProfile:
        parent_id = require_parent(identity)
        child = self._family.add_child(parent_id, name, avatar=avatar, child_id=child_id)
        self._audit_log.record(parent_id, "add_child", child.id)
        self._logger.log("child_added", parent=parent_id, child=child.id)
        return child

    def update_child(
        self,
        identity: Identity,
        child_id: str,
        *,
        name: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> ChildProfile:
        parent_id = require_parent(identity)
        child = self._family.update_profile(child_id, parent_id, name=name, avatar=avatar)
        self._audit_log.record(parent_id, "update_child", child_id)
        return child

    def children(self, identity: Identity) -> Sequence[ChildProfile]:
        return self._family.children_for_parent(require_parent(identity))

    # ------------------------------------------------------------------
    # Quest catalog
    # ------------------------------------------------------------------
    def create_quest(
        self,
        identity: Identity,
        title: str,
        xp_reward: PointsLike,
        *,
        quest_type: QuestType | str = QuestType.ONE_TIME,
        frequency: Frequency | str | None = None,
        assigned_to: Iterable[str] = (),
        description: str = "",
    ) -> Quest:
        parent_id = require_parent(identity)
        quest = self._quests.create_quest(
            parent_id,
            title,
            xp_reward,
            quest_type=quest_type,
            frequency=frequency,
            assigned_to=assigned_to,
            description=description,
        )
        self._audit_log.record(parent_id, "create_quest", quest.id, details={"title": quest.title})
        self._logger.log("quest_created", parent=parent_id, quest=quest.id, xp=quest.xp_reward)
        return quest

    def update_quest(
        self,
        identity: Identity,
        quest_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        xp_reward: Optional[PointsLike] = None,
    ) -> Quest:
        parent_id = require_parent(identity)
        quest = self._quests.update_quest(
            quest_id, parent_id, title=title, description=description, xp_reward=xp_reward
        )
        self._audit_log.record(parent_id, "update_quest", quest_id)
        return quest

    def assign_quest(self, identity: Identity, quest_id: str, child_id: str) -> Quest:
        parent_id = require_parent(identity)
        quest = self._quests.assign(quest_id, parent_id, child_id)
        self._audit_log.record(parent_id, "assign_quest", f"{quest_id}:{child_id}")
        return quest

    def unassign_quest(self, identity: Identity, quest_id: str, child_id: str) -> Quest:
        parent_id = require_parent(identity)
        quest = self._quests.unassign(quest_id, parent_id, child_id)
        self._audit_log.record(parent_id, "unassign_quest", f"{quest_id}:{child_id}")
        return quest

    def deactivate_quest(self, identity: Identity, quest_id: str) -> Quest:
        parent_id = require_parent(identity)
        quest = self._quests.deactivate(quest_id, parent_id)
        self._audit_log.record(parent_id, "deactivate_quest", quest_id)
        self._logger.log("quest_deactivated", parent=parent_id, quest=quest_id)
        return quest

    def quests_for_parent(self, identity: Identity) -> Sequence[Quest]:
        return self._quests.quests_for_parent(require_parent(identity))

    # ------------------------------------------------------------------
    # Quest lifecycle
    # ------------------------------------------------------------------
    def claim_quest(
        self,
        identity: Identity,
        quest_id: str,
        child_id: Optional[str] = None,
        *,
        at: Optional[datetime] = None,
    ) -> Completion:
        child = self._child_for(identity, child_id)
        completion = self._lifecycle.claim(quest_id, child.id, at=at)
        self._logger.log(
            "quest_claimed",
            child=child.id,
            quest=quest_id,
            completion=completion.id,
            attempt=completion.attempts,
        )
        return completion

    def verify_completion(
        self, identity: Identity, completion_id: str, *, at: Optional[datetime] = None
    ) -> VerificationResult:
        parent_id = require_parent(identity)
        try:
            result = self._lifecycle.verify(completion_id, parent_id, at=at)
        except StaleStateError:
            self._logger.warning("verification_conflict", parent=parent_id, completion=completion_id)
            raise
        completion = result.completion
        child_id = completion.child_id
        self._audit_log.record(parent_id, "verify_completion", completion.id, details={"xp": completion.xp_awarded})
        self._logger.log(
            "completion_verified",
            parent=parent_id,
            child=child_id,
            completion=completion.id,
            xp=completion.xp_awarded,
            streak=result.streak_update.state.current,
        )
        if result.level_change.leveled_up:
            self._logger.log("level_up", child=child_id, new_level=result.level_change.new_level)
            self._dispatcher.emit(
                "level_up",
                child=child_id,
                previousLevel=result.level_change.previous_level,
                level=result.level_change.new_level,
                title=self.levels.title_for(result.level_change.new_level),
            )
        for days in result.streak_update.milestones:
            self._logger.log("streak_milestone", child=child_id, days=days)
            self._dispatcher.emit("streak_milestone", child=child_id, days=days)
        for award in result.badges:
            self._logger.log("badge_awarded", child=child_id, badge=award.badge_id, bonus=award.xp_bonus)
            self._dispatcher.emit(
                "badge_awarded", child=child_id, badge=award.badge_id, name=award.name, xpBonus=award.xp_bonus
            )
        return result

    def reject_completion(
        self,
        identity: Identity,
        completion_id: str,
        reason: str = "",
        *,
        at: Optional[datetime] = None,
    ) -> Completion:
        parent_id = require_parent(identity)
        try:
            completion = self._lifecycle.reject(completion_id, parent_id, reason, at=at)
        except StaleStateError:
            self._logger.warning("verification_conflict", parent=parent_id, completion=completion_id)
            raise
        self._audit_log.record(parent_id, "reject_completion", completion.id, details={"reason": reason})
        self._logger.log("completion_rejected", parent=parent_id, child=completion.child_id, completion=completion.id)
        return completion

    def quest_board(
        self, identity: Identity, child_id: Optional[str] = None, *, on: Optional[date] = None
    ) -> Sequence[BoardEntry]:
        child = self._child_for(identity, child_id)
        return self._lifecycle.board(child.id, on)

    def pending_verifications(self, identity: Identity) -> Sequence[Completion]:
        return self._lifecycle.pending_for_parent(require_parent(identity))

    def completion_history(self, identity: Identity, child_id: Optional[str] = None) -> Sequence[Completion]:
        child = self._child_for(identity, child_id)
        return self._lifecycle.completions_for_child(child.id)

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------
    def get_child_progress(self, identity: Identity, child_id: Optional[str] = None) -> ChildProgress:
        child = self._child_for(identity, child_id)
        return self._ledger.progress_for(child, self._clock())

    def apply_penalty(
        self,
        identity: Identity,
        child_id: str,
        amount: PointsLike,
        reason: str,
        *,
        at: Optional[datetime] = None,
    ) -> Penalty:
        parent_id = require_parent(identity)
        penalty = self._ledger.apply_penalty(child_id, parent_id, amount, reason, at=at)
        self._audit_log.record(
            parent_id,
            "apply_penalty",
            child_id,
            details={"amount": penalty.amount, "applied": penalty.amount_applied, "reason": penalty.reason},
        )
        self._logger.log("penalty_applied", parent=parent_id, child=child_id, amount=penalty.amount_applied)
        return penalty

    def penalties(self, identity: Identity, child_id: Optional[str] = None) -> Sequence[Penalty]:
        child = self._child_for(identity, child_id)
        return self._ledger.penalties_for_child(child.id)

    def freeze_streak(
        self, identity: Identity, child_id: Optional[str] = None, *, on: Optional[date] = None
    ) -> StreakFreeze:
        child = self._child_for(identity, child_id)
        try:
            freeze = self._ledger.freeze_streak(child.id, on)
        except (InsufficientBalanceError, FreezeLimitError):
            self._logger.warning("streak_freeze_declined", child=child.id, actor=identity.user_id)
            raise
        self._logger.log(
            "streak_frozen", child=child.id, on=freeze.frozen_on.isoformat(), cost=freeze.xp_cost
        )
        self._dispatcher.emit(
            "streak_frozen",
            child=child.id,
            frozenOn=freeze.frozen_on.isoformat(),
            xpCost=freeze.xp_cost,
            freezesRemaining=freeze.freezes_remaining,
        )
        return freeze

    def streak_freezes(self, identity: Identity, child_id: Optional[str] = None) -> Sequence[StreakFreeze]:
        child = self._child_for(identity, child_id)
        return self._ledger.freezes_for_child(child.id)

    def badge_progress(
        self, identity: Identity, child_id: Optional[str] = None, *, limit: int = 3
    ) -> Sequence[Tuple[BadgeTemplate, float]]:
        child = self._child_for(identity, child_id)
        return self._badges.progress(child.id, limit=limit)

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------
    def create_reward(
        self,
        identity: Identity,
        title: str,
        cost: PointsLike,
        *,
        assigned_to: Iterable[str] = (),
        description: str = "",
    ) -> Reward:
        parent_id = require_parent(identity)
        reward = self._rewards.create_reward(
            parent_id, title, cost, assigned_to=assigned_to, description=description
        )
        self._audit_log.record(parent_id, "create_reward", reward.id, details={"cost": reward.cost})
        self._logger.log("reward_created", parent=parent_id, reward=reward.id, cost=reward.cost)
        return reward

    def assign_reward(self, identity: Identity, reward_id: str, child_id: str) -> Reward:
        parent_id = require_parent(identity)
        reward = self._rewards.assign(reward_id, parent_id, child_id)
        self._audit_log.record(parent_id, "assign_reward", f"{reward_id}:{child_id}")
        return reward

    def deactivate_reward(self, identity: Identity, reward_id: str) -> Reward:
        parent_id = require_parent(identity)
        reward = self._rewards.deactivate(reward_id, parent_id)
        self._audit_log.record(parent_id, "deactivate_reward", reward_id)
        return reward

    def rewards_for_child(self, identity: Identity, child_id: Optional[str] = None) -> Sequence[Reward]:
        child = self._child_for(identity, child_id)
        return self._rewards.rewards_for_child(child.id)

    def redeem_reward(
        self,
        identity: Identity,
        reward_id: str,
        child_id: Optional[str] = None,
        *,
        at: Optional[datetime] = None,
    ) -> Redemption:
        child = self._child_for(identity, child_id)
        try:
            redemption = self._redemptions.redeem(reward_id, child.id, at=at)
        except InsufficientBalanceError:
            self._logger.warning("redemption_declined", child=child.id, reward=reward_id)
            raise
        self._logger.log(
            "reward_redeemed", child=child.id, reward=reward_id, cost=redemption.cost_paid
        )
        self._dispatcher.emit(
            "reward_redeemed",
            child=child.id,
            reward=reward_id,
            title=redemption.reward_title,
            cost=redemption.cost_paid,
        )
        return redemption

    def redemptions(self, identity: Identity, child_id: Optional[str] = None) -> Sequence[Redemption]:
        child = self._child_for(identity, child_id)
        return self._redemptions.redemptions_for_child(child.id)


__all__ = ["KiddoQuest"]
