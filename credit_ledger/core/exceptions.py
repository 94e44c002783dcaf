from decimal import Decimal
from enum import Enum
from typing import Any


class AppError(Exception):
    code = "error"

    def __init__(self, message: str, status_code: int = 400, code: str | None = None):
        self.message = message
        self.status_code = status_code
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationError(AppError):
    code = "validation_error"

    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class InsufficientCreditsError(AppError):
    code = "insufficient_credits"

    def __init__(self, balance: Decimal, required: Decimal):
        super().__init__(
            f"Insufficient credits: balance={balance}, required={required}",
            status_code=402,
        )
        self.balance = balance
        self.required = required


class DuplicateEventError(AppError):
    """Raised by the ledger store when (source, external_event_id) already exists."""

    code = "duplicate_event"

    def __init__(self, transaction: Any):
        super().__init__(
            f"Event already recorded: {transaction.source.value}/{transaction.external_event_id}",
            status_code=409,
        )
        self.transaction = transaction


class NotFoundError(AppError):
    code = "not_found"

    def __init__(self, entity: str, id: str, code: str | None = None):
        super().__init__(f"{entity} not found: {id}", status_code=404, code=code)


class VoucherRejection(str, Enum):
    INACTIVE = "inactive"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    ALREADY_REDEEMED = "already_redeemed"


_VOUCHER_MESSAGES = {
    VoucherRejection.INACTIVE: "This voucher has been deactivated",
    VoucherRejection.EXPIRED: "This voucher has expired",
    VoucherRejection.EXHAUSTED: "This voucher has reached its usage limit",
    VoucherRejection.ALREADY_REDEEMED: "You have already used this voucher",
}


class VoucherInvalidError(AppError):
    def __init__(self, reason: VoucherRejection):
        super().__init__(_VOUCHER_MESSAGES[reason], status_code=400, code=reason.value)
        self.reason = reason


class LedgerWriteConflict(AppError):
    code = "write_conflict"

    def __init__(self, message: str = "Concurrent ledger write, retry the request"):
        super().__init__(message, status_code=409)


class ForbiddenError(AppError):
    code = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, status_code=403)


class RateLimitExceededError(AppError):
    code = "rate_limited"

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message, status_code=429)


class WebhookSignatureError(AppError):
    code = "invalid_signature"

    def __init__(self, message: str = "Webhook signature verification failed"):
        super().__init__(message, status_code=400)
