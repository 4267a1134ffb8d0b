"""Badge catalog and evaluator."""

from __future__ import annotations

from typing import Dict, Iterable, Mapping, Sequence, Tuple

from .exceptions import NotFoundError, ValidationError
from .family import load_child, save_child
from .models import (
    CHILDREN,
    BadgeAward,
    BadgeCategory,
    BadgeCriteria,
    BadgeMetric,
    BadgeTemplate,
    ChildProfile,
)
from .progression import ProgressionLedger
from .store import DocumentStore, Transaction


def _badge(
    badge_id: str,
    name: str,
    description: str,
    category: BadgeCategory,
    metric: BadgeMetric,
    threshold: int,
    xp_bonus: int,
) -> BadgeTemplate:
    return BadgeTemplate(
        id=badge_id,
        name=name,
        category=category,
        criteria=BadgeCriteria(metric=metric, threshold=threshold),
        description=description,
        xp_bonus=xp_bonus,
    )


_QUESTS = BadgeMetric.QUESTS_COMPLETED
_STREAK = BadgeMetric.CURRENT_STREAK
_XP = BadgeMetric.LIFETIME_XP
_LEVEL = BadgeMetric.LEVEL

DEFAULT_BADGES: Tuple[BadgeTemplate, ...] = (
    _badge("first_quest", "First Steps", "Complete your first quest", BadgeCategory.ACHIEVEMENT, _QUESTS, 1, 50),
    _badge("quest_novice", "Quest Novice", "Complete 10 quests", BadgeCategory.ACHIEVEMENT, _QUESTS, 10, 100),
    _badge("quest_expert", "Quest Expert", "Complete 50 quests", BadgeCategory.ACHIEVEMENT, _QUESTS, 50, 250),
    _badge("quest_master", "Quest Master", "Complete 100 quests", BadgeCategory.ACHIEVEMENT, _QUESTS, 100, 500),
    _badge("quest_legend", "Quest Legend", "Complete 500 quests", BadgeCategory.ACHIEVEMENT, _QUESTS, 500, 1000),
    _badge(
        "three_day_streak", "Getting Started", "Complete quests for 3 days in a row",
        BadgeCategory.STREAK, _STREAK, 3, 75,
    ),
    _badge("week_warrior", "Week Warrior", "Complete quests for 7 days in a row", BadgeCategory.STREAK, _STREAK, 7, 150),
    _badge(
        "month_champion", "Month Champion", "Complete quests for 30 days in a row",
        BadgeCategory.STREAK, _STREAK, 30, 500,
    ),
    _badge(
        "unstoppable", "Unstoppable", "Complete quests for 100 days in a row",
        BadgeCategory.STREAK, _STREAK, 100, 1500,
    ),
    _badge("xp_collector", "XP Collector", "Earn 1,000 total XP", BadgeCategory.MILESTONE, _XP, 1_000, 100),
    _badge("xp_hoarder", "XP Hoarder", "Earn 10,000 total XP", BadgeCategory.MILESTONE, _XP, 10_000, 250),
    _badge("xp_master", "XP Master", "Earn 50,000 total XP", BadgeCategory.MILESTONE, _XP, 50_000, 500),
    _badge("xp_legend", "XP Legend", "Earn 100,000 total XP", BadgeCategory.MILESTONE, _XP, 100_000, 1000),
    _badge("level_5", "Rising Star", "Reach level 5", BadgeCategory.MILESTONE, _LEVEL, 5, 200),
    _badge("level_10", "Elite Member", "Reach level 10", BadgeCategory.MILESTONE, _LEVEL, 10, 500),
    _badge("level_15", "Legendary Achiever", "Reach level 15", BadgeCategory.MILESTONE, _LEVEL, 15, 750),
    _badge("max_level", "Ultimate Champion", "Reach level 20", BadgeCategory.MILESTONE, _LEVEL, 20, 1000),
)


def metrics_for(child: ChildProfile) -> Dict[BadgeMetric, int]:
    return {
        BadgeMetric.QUESTS_COMPLETED: child.quests_completed,
        BadgeMetric.CURRENT_STREAK: child.streak.current,
        BadgeMetric.LIFETIME_XP: child.lifetime_xp,
        BadgeMetric.LEVEL: child.level,
    }


class BadgeEvaluator:
    """Award catalog badges whose criteria a child's ledger satisfies.

    Metrics are read once per pass, before any bonus is paid, so a badge's
    XP bonus can only unlock further badges on a later pass.
    """

    def __init__(
        self,
        store: DocumentStore,
        ledger: ProgressionLedger,
        *,
        catalog: Iterable[BadgeTemplate] = DEFAULT_BADGES,
        enabled: bool = True,
    ) -> None:
        templates = tuple(catalog)
        ids = [template.id for template in templates]
        if len(ids) != len(set(ids)):
            raise ValidationError("Badge ids must be unique.")
        self._store = store
        self._ledger = ledger
        self._catalog: Mapping[str, BadgeTemplate] = {template.id: template for template in templates}
        self.enabled = enabled

    @property
    def catalog(self) -> Tuple[BadgeTemplate, ...]:
        return tuple(self._catalog.values())

    def get(self, badge_id: str) -> BadgeTemplate:
        try:
            return self._catalog[badge_id]
        except KeyError as exc:
            raise NotFoundError(f"Unknown badge '{badge_id}'.") from exc

    def award_in(self, child: ChildProfile) -> Tuple[BadgeAward, ...]:
        """Add every newly earned badge to ``child`` and pay its bonus."""

        if not self.enabled:
            return ()
        metrics = metrics_for(child)
        earned = [
            template
            for template in self._catalog.values()
            if template.id not in child.badges and template.criteria.matches(metrics)
        ]
        awards = []
        for template in earned:
            child.badges.add(template.id)
            if template.xp_bonus:
                self._ledger.apply_xp(child, template.xp_bonus)
            awards.append(BadgeAward(badge_id=template.id, name=template.name, xp_bonus=template.xp_bonus))
        return tuple(awards)

    def evaluate(self, child_id: str) -> Tuple[BadgeAward, ...]:
        def _evaluate(transaction: Transaction) -> Tuple[BadgeAward, ...]:
            child = load_child(transaction, child_id)
            awards = self.award_in(child)
            if awards:
                save_child(transaction, child)
            return awards

        return self._store.run_transaction(_evaluate)

    def progress(self, child_id: str, *, limit: int = 3) -> Sequence[Tuple[BadgeTemplate, float]]:
        """Closest locked badges, most advanced first."""

        data = self._store.get(CHILDREN, child_id)
        if data is None:
            raise NotFoundError(f"Child '{child_id}' does not exist.")
        child = ChildProfile.from_document(child_id, data)
        metrics = metrics_for(child)
        locked = [
            (template, template.criteria.progress(metrics))
            for template in self._catalog.values()
            if template.id not in child.badges
        ]
        locked.sort(key=lambda item: (-item[1], item[0].criteria.threshold))
        return tuple(locked[:limit])


__all__ = ["BadgeEvaluator", "DEFAULT_BADGES", "metrics_for"]
