"""Configuration for the KiddoQuest engine.

Values come from the environment, with a ``.env`` file in the working
directory loaded first.  Nothing here is a process-wide singleton: callers
build a :class:`Settings` and hand it to :class:`~kiddoquest.service.KiddoQuest`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from .models import Frequency
from .quests import Weekday
from .store import DEFAULT_TRANSACTION_ATTEMPTS

load_dotenv()

SQLITE_FILE_NAME = "kiddoquest.db"
DEFAULT_BASE_XP = 100
DEFAULT_GROWTH_FACTOR = 1.5
DEFAULT_MAX_LEVEL = 20
LEVEL_TITLES: Tuple[str, ...] = (
    "Beginner",
    "Helper",
    "Adventurer",
    "Explorer",
    "Achiever",
    "Champion",
    "Star",
    "Hero",
    "Master",
    "Expert",
    "Pro",
    "Elite",
    "Superstar",
    "Legendary",
    "Mythic",
    "Epic",
    "Immortal",
    "Divine",
    "Supreme",
    "Ultimate",
)
STREAK_MILESTONES: Tuple[int, ...] = (3, 7, 14, 21, 30, 50, 75, 100, 200, 365)
STREAK_FREEZE_COST = 50
MAX_FREEZES_PER_WEEK = 2


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}.") from exc


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be a number, got {raw!r}.") from exc


def _env_thresholds(env: Mapping[str, str], key: str) -> Optional[Tuple[int, ...]]:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return None
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError as exc:
        raise ValueError(f"{key} must be a comma separated list of integers.") from exc


@dataclass(frozen=True, slots=True)
class Settings:
    """Tunable engine behaviour."""

    sqlite_file: str = SQLITE_FILE_NAME
    log_path: Optional[Path] = None
    base_xp: int = DEFAULT_BASE_XP
    growth_factor: float = DEFAULT_GROWTH_FACTOR
    max_level: int = DEFAULT_MAX_LEVEL
    level_thresholds: Optional[Tuple[int, ...]] = None
    level_titles: Tuple[str, ...] = LEVEL_TITLES
    streak_period: Frequency = Frequency.DAILY
    streak_milestones: Tuple[int, ...] = STREAK_MILESTONES
    week_start: Weekday = Weekday.SUNDAY
    freeze_cost: int = STREAK_FREEZE_COST
    max_freezes_per_week: int = MAX_FREEZES_PER_WEEK
    transaction_attempts: int = DEFAULT_TRANSACTION_ATTEMPTS
    badges_enabled: bool = True

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        source = os.environ if env is None else env
        log_path = source.get("KIDDOQUEST_LOG_PATH")
        week_start = source.get("KIDDOQUEST_WEEK_START", Weekday.SUNDAY.name).strip().upper()
        try:
            weekday = Weekday[week_start]
        except KeyError as exc:
            raise ValueError(f"KIDDOQUEST_WEEK_START must be a weekday name, got {week_start!r}.") from exc
        return cls(
            sqlite_file=source.get("KIDDOQUEST_SQLITE", SQLITE_FILE_NAME),
            log_path=Path(log_path) if log_path else None,
            base_xp=_env_int(source, "KIDDOQUEST_LEVEL_BASE_XP", DEFAULT_BASE_XP),
            growth_factor=_env_float(source, "KIDDOQUEST_LEVEL_GROWTH", DEFAULT_GROWTH_FACTOR),
            max_level=_env_int(source, "KIDDOQUEST_MAX_LEVEL", DEFAULT_MAX_LEVEL),
            level_thresholds=_env_thresholds(source, "KIDDOQUEST_LEVEL_THRESHOLDS"),
            streak_period=Frequency(source.get("KIDDOQUEST_STREAK_PERIOD", Frequency.DAILY.value)),
            week_start=weekday,
            freeze_cost=_env_int(source, "KIDDOQUEST_FREEZE_COST", STREAK_FREEZE_COST),
            max_freezes_per_week=_env_int(source, "KIDDOQUEST_MAX_FREEZES", MAX_FREEZES_PER_WEEK),
            transaction_attempts=_env_int(
                source, "KIDDOQUEST_TRANSACTION_ATTEMPTS", DEFAULT_TRANSACTION_ATTEMPTS
            ),
            badges_enabled=source.get("KIDDOQUEST_BADGES", "on").strip().lower() not in {"0", "off", "false", "no"},
        )


__all__ = [
    "DEFAULT_BASE_XP",
    "DEFAULT_GROWTH_FACTOR",
    "DEFAULT_MAX_LEVEL",
    "LEVEL_TITLES",
    "MAX_FREEZES_PER_WEEK",
    "SQLITE_FILE_NAME",
    "STREAK_FREEZE_COST",
    "STREAK_MILESTONES",
    "Settings",
]
