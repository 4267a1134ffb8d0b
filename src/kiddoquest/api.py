"""JSON exporters and the engine event dispatcher."""

from __future__ import annotations

import json
from collections import Counter
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .lifecycle import BoardEntry, VerificationResult
from .models import (
    BadgeTemplate,
    ChildProgress,
    Completion,
    Penalty,
    Quest,
    Redemption,
    Reward,
    StreakFreeze,
)

EventListener = Callable[[Dict[str, object]], None]


class ApiExporter:
    """Convert engine records to JSON friendly dictionaries."""

    def progress(self, progress: ChildProgress) -> Dict[str, object]:
        streak = progress.streak
        return {
            "childId": progress.child_id,
            "name": progress.name,
            "xp": progress.xp,
            "lifetimeXP": progress.lifetime_xp,
            "level": progress.level,
            "levelTitle": progress.level_title,
            "nextLevelXP": progress.next_level_xp,
            "levelProgress": progress.level_progress,
            "streak": {
                "current": streak.current,
                "longest": streak.longest,
                "period": streak.period.value,
                "lastCompletionDate": (
                    streak.last_completion_date.isoformat() if streak.last_completion_date else None
                ),
                "isActive": progress.streak_active,
                "freezesUsed": streak.freezes_used,
            },
            "badges": list(progress.badges),
            "questsCompleted": progress.quests_completed,
        }

    def quest(self, quest: Quest) -> Dict[str, object]:
        return {"id": quest.id, **quest.to_document()}

    def completion(self, completion: Completion) -> Dict[str, object]:
        return {"id": completion.id, **completion.to_document()}

    def reward(self, reward: Reward) -> Dict[str, object]:
        return {"id": reward.id, **reward.to_document()}

    def redemption(self, redemption: Redemption) -> Dict[str, object]:
        return {"id": redemption.id, **redemption.to_document()}

    def badge(self, template: BadgeTemplate, *, progress: float | None = None) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "id": template.id,
            "name": template.name,
            "description": template.description,
            "category": template.category.value,
            "metric": template.criteria.metric.value,
            "threshold": template.criteria.threshold,
            "xpBonus": template.xp_bonus,
        }
        if progress is not None:
            payload["progress"] = progress
        return payload

    def penalty(self, penalty: Penalty) -> Dict[str, object]:
        return {"id": penalty.id, **penalty.to_document()}

    def streak_freeze(self, freeze: StreakFreeze) -> Dict[str, object]:
        return {"id": freeze.id, **freeze.to_document()}

    def board(self, entries: Iterable[BoardEntry]) -> list[Dict[str, object]]:
        return [
            {
                **self.quest(entry.quest),
                "state": entry.state.value,
                "occurrenceKey": entry.occurrence_key,
                "completionId": entry.completion_id,
            }
            for entry in entries
        ]

    def verification(self, result: VerificationResult) -> Dict[str, object]:
        streak = result.streak_update
        return {
            "completion": self.completion(result.completion),
            "xpAwarded": result.level_change.xp_awarded,
            "leveledUp": result.level_change.leveled_up,
            "level": result.level_change.new_level,
            "streak": streak.state.current,
            "streakMilestones": list(streak.milestones),
            "badges": [
                {"id": award.badge_id, "name": award.name, "xpBonus": award.xp_bonus}
                for award in result.badges
            ],
            "nextOccurrenceKey": result.next_occurrence_key,
        }

    def to_json(self, payload: Dict[str, object]) -> str:
        return json.dumps(payload, sort_keys=True, default=str)


class EventDispatcher:
    """Fan engine events out to listeners, optionally filtered by event name.

    Events are plain dicts carrying an ``"event"`` key.  Listeners run on the
    caller's thread in registration order, after the transaction behind the
    event has committed.
    """

    def __init__(self) -> None:
        self._listeners: List[Tuple[EventListener, Optional[FrozenSet[str]]]] = []
        self._sent: Counter[str] = Counter()

    def register(self, listener: EventListener, *, events: Optional[Iterable[str]] = None) -> None:
        names = frozenset(events) if events is not None else None
        self._listeners.append((listener, names))

    def unregister(self, listener: EventListener) -> None:
        self._listeners = [(fn, names) for fn, names in self._listeners if fn is not listener]

    def emit(self, name: str, /, **payload: object) -> Dict[str, object]:
        event: Dict[str, object] = {"event": name, **payload}
        self.dispatch(event)
        return event

    def dispatch(self, event: Dict[str, object]) -> None:
        name = str(event.get("event", ""))
        self._sent[name] += 1
        for listener, names in list(self._listeners):
            if names is None or name in names:
                listener(event)

    def sent(self, name: str) -> int:
        return self._sent[name]


__all__ = ["ApiExporter", "EventDispatcher", "EventListener"]
