"""
errors.py — AppError hierarchy and error code registry.

Every error returned by the NexSplit API uses a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
  - Subclasses fix the HTTP status; callers only pick the code and message.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


class InvalidInputError(AppError):
    """Malformed or out-of-range input (400)."""

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 400, field=field)


class SplitMismatchError(AppError):
    """Split amounts or percentages do not close to the expense total (422)."""

    def __init__(self, code: str, message: str, field: str | None = "splits") -> None:
        super().__init__(code, message, 422, field=field)


class ConflictError(AppError):
    """The request conflicts with persisted state (409)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code, message, 409)


class InsufficientBalanceError(AppError):
    """
    The ledger failed an internal consistency check (500).

    Raised when creditor and debtor totals do not match during netting, or
    when a settlement would consume more debt than exists. It indicates a
    bug or corrupted data, never a user mistake, so it must fail loudly.
    """

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.BALANCE_INTEGRITY_VIOLATION, message, 500)


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD                = "MISSING_FIELD"
    INVALID_FIELD                = "INVALID_FIELD"
    INVALID_AMOUNT               = "INVALID_AMOUNT"
    MISSING_PAYER                = "MISSING_PAYER"
    EMPTY_PARTICIPANTS           = "EMPTY_PARTICIPANTS"
    DUPLICATE_SPLIT_USER         = "DUPLICATE_SPLIT_USER"
    INVALID_SETTLEMENT_SELECTION = "INVALID_SETTLEMENT_SELECTION"
    CURRENCY_MISMATCH            = "CURRENCY_MISMATCH"

    # ── Split Reconciliation (422) ─────────────────────────────────────────
    SPLIT_SUM_MISMATCH           = "SPLIT_SUM_MISMATCH"
    PERCENTAGE_SUM_MISMATCH      = "PERCENTAGE_SUM_MISMATCH"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    EXPENSE_HAS_SETTLED_DEBTS    = "EXPENSE_HAS_SETTLED_DEBTS"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    NEX_NOT_FOUND                = "NEX_NOT_FOUND"
    EXPENSE_NOT_FOUND            = "EXPENSE_NOT_FOUND"
    SETTLEMENT_NOT_FOUND         = "SETTLEMENT_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PAYER_NOT_MEMBER             = "PAYER_NOT_MEMBER"
    SPLIT_USER_NOT_MEMBER        = "SPLIT_USER_NOT_MEMBER"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    TOKEN_MISSING                = "TOKEN_MISSING"          # 401
    TOKEN_INVALID                = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED                = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                    = "FORBIDDEN"              # 403
    SETTLEMENT_DENIED            = "SETTLEMENT_DENIED"      # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    BALANCE_INTEGRITY_VIOLATION  = "BALANCE_INTEGRITY_VIOLATION"
    INTERNAL_ERROR               = "INTERNAL_ERROR"
