"""Error taxonomy for the progression engine.

Every error carries a stable ``error_code`` and an ``is_retryable`` hint so
callers can decide between surfacing the failure and retrying the whole
award.  Only :class:`PersistenceConflict` is retryable: a retry re-reads the
current total instead of reapplying a cached delta.
"""

from __future__ import annotations

from typing import Any


class ProgressionError(Exception):
    """Base class for all progression engine failures."""

    error_code = "PROGRESSION_ERROR"
    is_retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
            "retryable": self.is_retryable,
        }


class UnknownActionType(ProgressionError):
    """Award called with an action type absent from the XP table and no amount."""

    error_code = "UNKNOWN_ACTION_TYPE"

    def __init__(self, action_type: str) -> None:
        super().__init__(
            f"No XP amount configured for action type {action_type!r}",
            {"action_type": action_type},
        )
        self.action_type = action_type


class InvalidAmount(ProgressionError):
    """Negative or non-integer amount supplied explicitly."""

    error_code = "INVALID_AMOUNT"

    def __init__(self, amount: Any) -> None:
        super().__init__(
            f"XP amount must be a non-negative integer, got {amount!r}",
            {"amount": repr(amount)},
        )
        self.amount = amount


class PersistenceConflict(ProgressionError):
    """The store detected a concurrent write; retry the whole award."""

    error_code = "PERSISTENCE_CONFLICT"
    is_retryable = True


class StoreUnavailable(ProgressionError):
    """The durable store could not be reached."""

    error_code = "STORE_UNAVAILABLE"


class RewardNotOwned(ProgressionError):
    """Activation requested for a reward the user has not unlocked."""

    error_code = "REWARD_NOT_OWNED"

    def __init__(self, user_id: str, reward_id: str) -> None:
        super().__init__(
            f"User {user_id!r} has not unlocked reward {reward_id!r}",
            {"user_id": user_id, "reward_id": reward_id},
        )
