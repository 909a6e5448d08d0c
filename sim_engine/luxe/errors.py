"""
LUXE — Engine Error Kinds

Every error is raised synchronously, before any balance, bonus-state or
round-log mutation is committed.
"""

from __future__ import annotations

from typing import Optional


class SlotEngineError(Exception):
    """Base class for all slot engine errors."""

    code: str = "slot_engine_error"
    retryable: bool = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            **self.details,
        }


class InsufficientBalance(SlotEngineError):
    code = "insufficient_balance"

    def __init__(self, balance: float, required: float):
        super().__init__(
            f"Insufficient balance: {balance:.2f} < {required:.2f}",
            balance=balance, required=required,
        )


class InvalidBetAmount(SlotEngineError):
    code = "invalid_bet_amount"


class BonusStateMismatch(SlotEngineError):
    """The caller's view of the bonus run diverges from the persisted one.

    The authoritative state is attached so the caller can re-fetch and retry.
    """

    code = "bonus_state_mismatch"

    def __init__(self, message: str, authoritative: Optional[dict] = None):
        super().__init__(message, authoritative=authoritative)
        self.authoritative = authoritative


class ConcurrentSpinConflict(SlotEngineError):
    code = "concurrent_spin_conflict"
    retryable = True


class InternalRNGFailure(SlotEngineError):
    code = "internal_rng_failure"
    retryable = True


class SessionNotFound(SlotEngineError):
    code = "session_not_found"


class SessionClosed(SlotEngineError):
    code = "session_closed"


class InvalidConfiguration(SlotEngineError):
    code = "invalid_configuration"


class InvalidBonusType(SlotEngineError):
    code = "invalid_bonus_type"
