"""Translate ledger service failures into HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException, status

from cafe_api.services.errors import (
    InsufficientBalance,
    InvalidTransition,
    LedgerError,
    NotAuthorized,
    NotEWalletOrder,
    OrderNotFound,
    PaymentAlreadyProcessed,
    TransitionFailed,
    UserNotFound,
)

_STATUS_BY_ERROR: tuple[tuple[type[LedgerError], int], ...] = (
    (InvalidTransition, status.HTTP_400_BAD_REQUEST),
    (InsufficientBalance, status.HTTP_400_BAD_REQUEST),
    (NotEWalletOrder, status.HTTP_400_BAD_REQUEST),
    (PaymentAlreadyProcessed, status.HTTP_400_BAD_REQUEST),
    (NotAuthorized, status.HTTP_403_FORBIDDEN),
    (OrderNotFound, status.HTTP_404_NOT_FOUND),
    (UserNotFound, status.HTTP_404_NOT_FOUND),
    (TransitionFailed, status.HTTP_409_CONFLICT),
)


def ledger_http_exception(exc: LedgerError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


__all__ = ["ledger_http_exception"]
