from __future__ import annotations


class MintError(Exception):
    """Base for every rejected request. ``reason`` is a short snake_case code."""

    reason = "mint_error"

    def __init__(self, message: str = "", reason: str | None = None) -> None:
        super().__init__(message or self.reason)
        if reason is not None:
            self.reason = reason


class InvalidInput(MintError):
    reason = "invalid_input"


class NotAuthorized(MintError):
    reason = "not_authorized"


class NotEligible(NotAuthorized):
    reason = "not_eligible"


class LifecycleViolation(MintError):
    reason = "lifecycle_violation"


class Paused(LifecycleViolation):
    reason = "paused"


class NotPublic(LifecycleViolation):
    reason = "not_public"


class AlreadyPaused(LifecycleViolation):
    reason = "already_paused"


class AlreadyUnpaused(LifecycleViolation):
    reason = "already_unpaused"


class AlreadyPublic(LifecycleViolation):
    reason = "already_public"


class CapacityExceeded(MintError):
    reason = "capacity_exceeded"


class NoAvailability(CapacityExceeded):
    reason = "no_availability"


class QuotaExceeded(MintError):
    reason = "quota_exceeded"


class InsufficientPayment(MintError):
    reason = "insufficient_payment"


class RefundFailed(MintError):
    reason = "refund_failed"


class WithdrawalFailed(MintError):
    reason = "withdrawal_failed"


class ReentrantCall(MintError):
    reason = "reentrant_call"
