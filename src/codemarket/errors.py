"""Domain error taxonomy.

Every error carries a stable machine-readable ``code`` and a human-readable
``message``; ``status_code`` is the HTTP status the API layer renders it with.
"""

from __future__ import annotations


class CodemarketError(Exception):
    code = "ERROR"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(CodemarketError):
    code = "VALIDATION_ERROR"
    status_code = 422
    default_message = "Invalid request"


class InsufficientBalance(CodemarketError):
    code = "INSUFFICIENT_BALANCE"
    status_code = 402
    default_message = "Insufficient credits"


class NotFound(CodemarketError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"


class Conflict(CodemarketError):
    code = "CONFLICT"
    status_code = 409
    default_message = "Request conflicts with the current state"


class PermissionDenied(CodemarketError):
    code = "PERMISSION_DENIED"
    status_code = 403
    default_message = "You are not allowed to perform this action"


class AuthenticationError(CodemarketError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Not authenticated"


class InternalError(CodemarketError):
    code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "Internal error, please retry"


class DailyEarnLimitExceeded(Conflict):
    code = "DAILY_EARN_LIMIT_EXCEEDED"
    default_message = "Daily credit earning limit reached"


class CreditConfigMissing(InternalError):
    code = "CREDIT_CONFIG_MISSING"
    default_message = "Credit configuration is missing"
