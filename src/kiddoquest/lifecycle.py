"""Quest lifecycle engine: claim, verify, reject and the child's quest board.

A completion record exists per ``(quest, child, occurrence)``; its id is
derived from those three values, so two claims of the same occurrence race
on the same document and only one can win.  Recurring quests re-arm lazily:
the next period simply has a different occurrence key with no record yet.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Sequence, Tuple

from .badges import BadgeEvaluator
from .exceptions import AuthorizationError, NotFoundError, StateConflictError
from .family import load_child, require_owner, save_child
from .models import (
    CHILDREN,
    COMPLETIONS,
    QUESTS,
    BadgeAward,
    Completion,
    CompletionState,
    LevelChange,
    Quest,
    StreakUpdate,
    completion_id,
)
from .progression import ProgressionLedger
from .quests import Weekday, load_quest, next_occurrence_key, occurrence_key
from .store import DocumentStore, Transaction


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Everything a single verification changed."""

    completion: Completion
    level_change: LevelChange
    streak_update: StreakUpdate
    badges: Tuple[BadgeAward, ...] = ()
    next_occurrence_key: Optional[str] = None


@dataclass(frozen=True, slots=True)
class BoardEntry:
    quest: Quest
    state: CompletionState
    occurrence_key: Optional[str]
    completion_id: str


def _load_completion(transaction: Transaction, record_id: str) -> Completion:
    data = transaction.get(COMPLETIONS, record_id)
    if data is None:
        raise NotFoundError(f"Completion '{record_id}' does not exist.")
    return Completion.from_document(data)


class QuestLifecycleEngine:
    """Drive completions through available -> pending -> completed/rejected."""

    def __init__(
        self,
        store: DocumentStore,
        ledger: ProgressionLedger,
        badges: BadgeEvaluator,
        *,
        week_start: Weekday = Weekday.SUNDAY,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._badges = badges
        self.week_start = week_start
        self._clock = clock

    def claim(self, quest_id: str, child_id: str, *, at: Optional[datetime] = None) -> Completion:
        """Mark the current occurrence of a quest as done, pending a parent's check."""

        when = at or self._clock()

        def _claim(transaction: Transaction) -> Completion:
            quest = load_quest(transaction, quest_id)
            if not quest.active:
                raise StateConflictError(f"Quest '{quest_id}' is no longer active.")
            if not quest.is_assigned(child_id):
                raise AuthorizationError(f"Quest '{quest_id}' is not assigned to child '{child_id}'.")
            load_child(transaction, child_id)
            key = occurrence_key(quest, when.date(), week_start=self.week_start)
            data = transaction.get(COMPLETIONS, completion_id(quest_id, child_id, key))
            if data is None:
                completion = Completion(quest_id=quest_id, child_id=child_id, occurrence_key=key)
            else:
                completion = Completion.from_document(data)
            completion.claim(when=when)
            transaction.set(COMPLETIONS, completion.id, completion.to_document())
            return completion

        return self._store.run_transaction(_claim)

    def verify(self, record_id: str, parent_id: str, *, at: Optional[datetime] = None) -> VerificationResult:
        """Approve a pending completion and settle its XP, streak and badges atomically."""

        when = at or self._clock()

        def _verify(transaction: Transaction) -> VerificationResult:
            completion = _load_completion(transaction, record_id)
            child = load_child(transaction, completion.child_id)
            require_owner(child, parent_id)
            quest = load_quest(transaction, completion.quest_id)
            completion.verify(parent_id, xp_awarded=quest.xp_reward, when=when)

            previous_level = child.level
            self._ledger.apply_xp(child, quest.xp_reward)
            streak_day = (completion.claimed_at or when).date()
            streak_update = self._ledger.apply_streak(child, streak_day)
            child.quests_completed += 1
            awards = self._badges.award_in(child)

            save_child(transaction, child)
            transaction.set(COMPLETIONS, completion.id, completion.to_document())
            return VerificationResult(
                completion=completion,
                level_change=LevelChange(previous_level, child.level, quest.xp_reward),
                streak_update=streak_update,
                badges=awards,
                next_occurrence_key=next_occurrence_key(quest, streak_day, week_start=self.week_start),
            )

        return self._store.run_transaction(_verify)

    def reject(
        self,
        record_id: str,
        parent_id: str,
        reason: str = "",
        *,
        at: Optional[datetime] = None,
    ) -> Completion:
        when = at or self._clock()

        def _reject(transaction: Transaction) -> Completion:
            completion = _load_completion(transaction, record_id)
            child = load_child(transaction, completion.child_id)
            require_owner(child, parent_id)
            completion.reject(parent_id, reason=reason, when=when)
            transaction.set(COMPLETIONS, completion.id, completion.to_document())
            return completion

        return self._store.run_transaction(_reject)

    def get(self, record_id: str) -> Completion:
        data = self._store.get(COMPLETIONS, record_id)
        if data is None:
            raise NotFoundError(f"Completion '{record_id}' does not exist.")
        return Completion.from_document(data)

    def board(self, child_id: str, on: Optional[date] = None) -> Sequence[BoardEntry]:
        """State of every active quest assigned to ``child_id`` for the period containing ``on``."""

        day = on or self._clock().date()
        entries = []
        for doc_id, data in self._store.query(QUESTS, {"assignedTo": child_id}):
            quest = Quest.from_document(doc_id, data)
            if not quest.active:
                continue
            key = occurrence_key(quest, day, week_start=self.week_start)
            record_id = completion_id(quest.id, child_id, key)
            existing = self._store.get(COMPLETIONS, record_id)
            state = (
                CompletionState.AVAILABLE
                if existing is None
                else Completion.from_document(existing).state
            )
            entries.append(BoardEntry(quest=quest, state=state, occurrence_key=key, completion_id=record_id))
        return tuple(entries)

    def completions_for_child(
        self, child_id: str, *, state: Optional[CompletionState] = None
    ) -> Sequence[Completion]:
        filters = {"childId": child_id}
        if state is not None:
            filters["state"] = CompletionState(state).value
        completions = [Completion.from_document(data) for _id, data in self._store.query(COMPLETIONS, filters)]
        return tuple(sorted(completions, key=lambda item: (item.claimed_at or datetime.min, item.id)))

    def pending_for_parent(self, parent_id: str) -> Sequence[Completion]:
        """Claims awaiting verification across every child the parent owns."""

        pending = []
        for child_id, _data in self._store.query(CHILDREN, {"parentId": parent_id}):
            pending.extend(self.completions_for_child(child_id, state=CompletionState.PENDING_VERIFICATION))
        return tuple(sorted(pending, key=lambda item: (item.claimed_at or datetime.min, item.id)))


__all__ = ["BoardEntry", "QuestLifecycleEngine", "VerificationResult"]
