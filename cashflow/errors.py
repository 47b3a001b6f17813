from __future__ import annotations


class CashFlowError(Exception):
    code = "cash_flow_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(CashFlowError):
    code = "not_found"


class ValidationError(CashFlowError, ValueError):
    code = "validation_error"


class TransientStoreError(CashFlowError):
    """Storage was unavailable or timed out. Safe to retry on the next run."""

    code = "store_unavailable"
