"""
errors.py — AppError hierarchy and error code registry.

Every error returned by the SplitShare API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Taxonomy:
  AuthError        — no resolvable principal (401) or missing privilege (403)
  NotFoundError    — a referenced group/user does not exist (404)
  ValidationError  — malformed or inconsistent input (422, 409 for conflicts)

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose, shown to end users verbatim.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
  - ValidationError here is the domain error. marshmallow's schema error of
    the same name is handled separately in app/__init__.py.
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


class AuthError(AppError):
    """Unauthenticated caller (401) or caller lacking a privilege (403)."""

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int = 401,
            field: str | None = None,
    ) -> None:
        super().__init__(code, message, http_status, field)


class NotFoundError(AppError):
    """Referenced entity does not exist, including deletion races."""

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int = 404,
            field: str | None = None,
    ) -> None:
        super().__init__(code, message, http_status, field)


class ValidationError(AppError):
    """Input is malformed or inconsistent with current ledger state."""

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int = 422,
            field: str | None = None,
    ) -> None:
        super().__init__(code, message, http_status, field)


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_TYPE         = "INVALID_SPLIT_TYPE"
    DUPLICATE_SPLIT_USER       = "DUPLICATE_SPLIT_USER"

    # ── Ledger Validation Errors (422) ─────────────────────────────────────
    INVALID_AMOUNT             = "INVALID_AMOUNT"
    MISSING_SPLIT_DATA         = "MISSING_SPLIT_DATA"
    INVALID_SPLIT_VALUE        = "INVALID_SPLIT_VALUE"
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"
    PERCENT_SUM_MISMATCH       = "PERCENT_SUM_MISMATCH"
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    SPLIT_USER_NOT_MEMBER      = "SPLIT_USER_NOT_MEMBER"
    UNSETTLED_BALANCES         = "UNSETTLED_BALANCES"
    SELF_SETTLEMENT            = "SELF_SETTLEMENT"
    MISSING_EMAIL              = "MISSING_EMAIL"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    ALREADY_MEMBER             = "ALREADY_MEMBER"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    NO_COMMON_GROUP            = "NO_COMMON_GROUP"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed (unauthorized)
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    USER_NOT_REGISTERED        = "USER_NOT_REGISTERED"    # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"
