"""Typed failures raised by the order lifecycle and loyalty ledger services."""

from __future__ import annotations

from typing import Any


class LedgerError(RuntimeError):
    """Base exception for order lifecycle and points ledger failures."""


class InvalidTransition(LedgerError):
    """Raised when a requested status is not a legal successor of the current one."""

    def __init__(self, current_status: Any, requested_status: Any, *, reason: str | None = None) -> None:
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        message = f"Cannot transition order from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status


class TransitionFailed(LedgerError):
    """Raised when an atomic unit could not commit (concurrent conflict or store failure)."""


class InsufficientBalance(LedgerError):
    """Raised when a redemption exceeds the available points balance."""

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(f"Cannot redeem {requested} points; balance is {available}")
        self.requested = requested
        self.available = available


class NotEWalletOrder(LedgerError):
    """Raised when payment verification targets a non e-wallet order."""


class PaymentAlreadyProcessed(LedgerError):
    """Raised when payment verification targets an order whose payment is no longer pending."""


class OrderNotFound(LedgerError):
    """Raised when an order identifier does not resolve."""


class UserNotFound(LedgerError):
    """Raised when a user identifier does not resolve."""


class NotAuthorized(LedgerError):
    """Raised when the actor may not act on the target order."""


class AlreadyProcessed(LedgerError):
    """Idempotency guard tripped; callers treat this as a successful no-op."""

    def __init__(self, message: str, *, result: Any = None) -> None:
        super().__init__(message)
        self.result = result


__all__ = [
    "AlreadyProcessed",
    "InsufficientBalance",
    "InvalidTransition",
    "LedgerError",
    "NotAuthorized",
    "NotEWalletOrder",
    "OrderNotFound",
    "PaymentAlreadyProcessed",
    "TransitionFailed",
    "UserNotFound",
]
