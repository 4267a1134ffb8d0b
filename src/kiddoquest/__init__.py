"""KiddoQuest package: a chore-gamification engine for families."""

from .api import ApiExporter, EventDispatcher
from .badges import DEFAULT_BADGES, BadgeEvaluator
from .config import Settings
from .exceptions import (
    AlreadyClaimedError,
    AuthorizationError,
    FreezeLimitError,
    InsufficientBalanceError,
    InvalidAmountError,
    KiddoQuestError,
    NotFoundError,
    StaleStateError,
    StateConflictError,
    ValidationError,
)
from .family import FamilyDirectory
from .lifecycle import BoardEntry, QuestLifecycleEngine, VerificationResult
from .models import (
    BadgeAward,
    BadgeCategory,
    BadgeCriteria,
    BadgeMetric,
    BadgeTemplate,
    ChildProfile,
    ChildProgress,
    Completion,
    CompletionState,
    Frequency,
    LevelChange,
    Penalty,
    Quest,
    QuestType,
    Redemption,
    Reward,
    Role,
    StreakFreeze,
    StreakState,
    StreakUpdate,
)
from .ops import AuditLog, StructuredLogger
from .persistence import SQLDocumentStore
from .progression import LevelTable, ProgressionLedger, advance_streak, is_streak_active
from .quests import QuestCatalog, Weekday, occurrence_key
from .rewards import RedemptionEngine, RewardCatalog
from .security import HeaderIdentityProvider, Identity, StaticIdentityProvider
from .service import KiddoQuest
from .store import DocumentStore, InMemoryDocumentStore

__all__ = [
    "AlreadyClaimedError",
    "ApiExporter",
    "AuditLog",
    "AuthorizationError",
    "BadgeAward",
    "BadgeCategory",
    "BadgeCriteria",
    "BadgeEvaluator",
    "BadgeMetric",
    "BadgeTemplate",
    "BoardEntry",
    "ChildProfile",
    "ChildProgress",
    "Completion",
    "CompletionState",
    "DEFAULT_BADGES",
    "DocumentStore",
    "EventDispatcher",
    "FamilyDirectory",
    "FreezeLimitError",
    "Frequency",
    "HeaderIdentityProvider",
    "Identity",
    "InMemoryDocumentStore",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "KiddoQuest",
    "KiddoQuestError",
    "LevelChange",
    "LevelTable",
    "NotFoundError",
    "Penalty",
    "ProgressionLedger",
    "Quest",
    "QuestCatalog",
    "QuestLifecycleEngine",
    "QuestType",
    "Redemption",
    "RedemptionEngine",
    "Reward",
    "RewardCatalog",
    "Role",
    "SQLDocumentStore",
    "Settings",
    "StaleStateError",
    "StateConflictError",
    "StaticIdentityProvider",
    "StreakFreeze",
    "StreakState",
    "StreakUpdate",
    "StructuredLogger",
    "ValidationError",
    "VerificationResult",
    "Weekday",
    "advance_streak",
    "is_streak_active",
    "occurrence_key",
]
