"""Quest catalog and recurring-occurrence scheduling for KiddoQuest."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import IntEnum
from typing import Callable, Iterable, Optional, Sequence
from uuid import uuid4

from .exceptions import AuthorizationError, NotFoundError
from .family import load_child, require_owner
from .models import QUESTS, Frequency, Quest, QuestType
from .points import PointsLike
from .store import DocumentStore, Transaction


class Weekday(IntEnum):
    """Enum representing days of the week for scheduling."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def from_date(cls, moment: date) -> "Weekday":
        return cls(moment.weekday())


def period_start(on: date, frequency: Frequency, *, week_start: Weekday = Weekday.SUNDAY) -> date:
    """First day of the daily or weekly period containing ``on``."""

    if frequency is Frequency.DAILY:
        return on
    return on - timedelta(days=(on.weekday() - int(week_start)) % 7)


def period_length(frequency: Frequency) -> timedelta:
    return timedelta(days=1) if frequency is Frequency.DAILY else timedelta(weeks=1)


def occurrence_key(quest: Quest, on: date, *, week_start: Weekday = Weekday.SUNDAY) -> Optional[str]:
    """Date bucket identifying the occurrence of ``quest`` that contains ``on``.

    One-time quests have a single occurrence and no key.  Daily quests use the
    ISO date; weekly quests use the ISO date of the week start plus ``-WEEK``.
    """

    if not quest.is_recurring or quest.frequency is None:
        return None
    start = period_start(on, quest.frequency, week_start=week_start)
    if quest.frequency is Frequency.DAILY:
        return start.isoformat()
    return f"{start.isoformat()}-WEEK"


def next_occurrence_key(quest: Quest, on: date, *, week_start: Weekday = Weekday.SUNDAY) -> Optional[str]:
    """Key of the occurrence after the one containing ``on`` (recurring quests only)."""

    if not quest.is_recurring or quest.frequency is None:
        return None
    return occurrence_key(quest, on + period_length(quest.frequency), week_start=week_start)


def load_quest(transaction: Transaction, quest_id: str) -> Quest:
    data = transaction.get(QUESTS, quest_id)
    if data is None:
        raise NotFoundError(f"Quest '{quest_id}' does not exist.")
    return Quest.from_document(quest_id, data)


def _require_quest_owner(quest: Quest, parent_id: str) -> None:
    if quest.parent_id != parent_id:
        raise AuthorizationError(f"Parent '{parent_id}' does not own quest '{quest.id}'.")


class QuestCatalog:
    """Own quest definitions and their assignment to children."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Callable[[], datetime] = datetime.now,
        week_start: Weekday = Weekday.SUNDAY,
    ) -> None:
        self._store = store
        self._clock = clock
        self.week_start = week_start

    def create_quest(
        self,
        parent_id: str,
        title: str,
        xp_reward: PointsLike,
        *,
        quest_type: QuestType | str = QuestType.ONE_TIME,
        frequency: Frequency | str | None = None,
        assigned_to: Iterable[str] = (),
        description: str = "",
    ) -> Quest:
        quest = Quest(
            id=str(uuid4()),
            parent_id=parent_id,
            title=title,
            xp_reward=xp_reward,
            type=quest_type,
            frequency=frequency,
            assigned_to=frozenset(assigned_to),
            description=description,
            created_at=self._clock(),
        )

        def _create(transaction: Transaction) -> Quest:
            for child_id in sorted(quest.assigned_to):
                require_owner(load_child(transaction, child_id), parent_id)
            transaction.create(QUESTS, quest.id, quest.to_document())
            return quest

        return self._store.run_transaction(_create)

    def get(self, quest_id: str) -> Quest:
        data = self._store.get(QUESTS, quest_id)
        if data is None:
            raise NotFoundError(f"Quest '{quest_id}' does not exist.")
        return Quest.from_document(quest_id, data)

    def update_quest(
        self,
        quest_id: str,
        parent_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        xp_reward: Optional[PointsLike] = None,
    ) -> Quest:
        """Edit a quest; completions already verified keep the XP they were paid."""

        def _update(transaction: Transaction) -> Quest:
            quest = load_quest(transaction, quest_id)
            _require_quest_owner(quest, parent_id)
            document = quest.to_document()
            if title is not None:
                document["title"] = title
            if description is not None:
                document["description"] = description
            if xp_reward is not None:
                document["xpReward"] = xp_reward
            updated = Quest.from_document(quest_id, document)
            transaction.set(QUESTS, quest_id, updated.to_document())
            return updated

        return self._store.run_transaction(_update)

    def assign(self, quest_id: str, parent_id: str, child_id: str) -> Quest:
        return self._change_assignment(quest_id, parent_id, child_id, add=True)

    def unassign(self, quest_id: str, parent_id: str, child_id: str) -> Quest:
        return self._change_assignment(quest_id, parent_id, child_id, add=False)

    def _change_assignment(self, quest_id: str, parent_id: str, child_id: str, *, add: bool) -> Quest:
        def _change(transaction: Transaction) -> Quest:
            quest = load_quest(transaction, quest_id)
            _require_quest_owner(quest, parent_id)
            if add:
                require_owner(load_child(transaction, child_id), parent_id)
                quest.assigned_to = quest.assigned_to | {child_id}
            else:
                quest.assigned_to = quest.assigned_to - {child_id}
            transaction.set(QUESTS, quest_id, quest.to_document())
            return quest

        return self._store.run_transaction(_change)

    def deactivate(self, quest_id: str, parent_id: str) -> Quest:
        """Soft-delete: completions keep referencing the quest."""

        return self._set_active(quest_id, parent_id, False)

    def reactivate(self, quest_id: str, parent_id: str) -> Quest:
        return self._set_active(quest_id, parent_id, True)

    def _set_active(self, quest_id: str, parent_id: str, active: bool) -> Quest:
        def _toggle(transaction: Transaction) -> Quest:
            quest = load_quest(transaction, quest_id)
            _require_quest_owner(quest, parent_id)
            quest.active = active
            transaction.set(QUESTS, quest_id, quest.to_document())
            return quest

        return self._store.run_transaction(_toggle)

    def quests_for_child(self, child_id: str, *, include_inactive: bool = False) -> Sequence[Quest]:
        quests = (
            Quest.from_document(doc_id, data)
            for doc_id, data in self._store.query(QUESTS, {"assignedTo": child_id})
        )
        return tuple(quest for quest in quests if include_inactive or quest.active)

    def quests_for_parent(self, parent_id: str, *, include_inactive: bool = True) -> Sequence[Quest]:
        quests = (
            Quest.from_document(doc_id, data)
            for doc_id, data in self._store.query(QUESTS, {"parentId": parent_id})
        )
        return tuple(quest for quest in quests if include_inactive or quest.active)

    def occurrence_key(self, quest: Quest, on: date) -> Optional[str]:
        return occurrence_key(quest, on, week_start=self.week_start)


__all__ = [
    "QuestCatalog",
    "Weekday",
    "load_quest",
    "next_occurrence_key",
    "occurrence_key",
    "period_length",
    "period_start",
]
