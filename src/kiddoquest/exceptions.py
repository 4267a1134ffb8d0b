"""Custom exception hierarchy for the KiddoQuest engine."""

from __future__ import annotations


class KiddoQuestError(Exception):
    """Base class for all KiddoQuest specific errors."""


class ValidationError(KiddoQuestError):
    """Raised when input is malformed or violates a record invariant."""


class InvalidAmountError(ValidationError):
    """Raised when an XP amount or cost is negative or not an integer."""


class NotFoundError(ValidationError):
    """Raised when a quest, reward, child or completion lookup fails."""


class AuthorizationError(KiddoQuestError):
    """Raised when the caller may not act on the requested child or record."""


class StateConflictError(KiddoQuestError):
    """Raised when a record is not in the state the operation requires."""


class AlreadyClaimedError(StateConflictError):
    """Raised when a quest occurrence is already pending or completed."""


class StaleStateError(StateConflictError):
    """Raised when a concurrent writer won the race; refresh and retry."""


class InsufficientBalanceError(KiddoQuestError):
    """Raised when a redemption costs more XP than the child holds."""


class FreezeLimitError(StateConflictError):
    """Raised when a child has used every streak freeze allowed this week."""
