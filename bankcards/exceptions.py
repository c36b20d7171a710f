"""
Custom exception classes and FastAPI exception handlers.

The services raise domain-specific errors without importing HTTP concepts.
The web layer mounts `register_exception_handlers` and gets consistent
JSON error responses for free.

Exception hierarchy:
    BankCardsError (base)
    ├── ValidationError            — malformed input, rejected before any store access
    │   ├── InvalidAmountError
    │   ├── InvalidCardNumberError
    │   ├── CardFormatError
    │   ├── InvalidExpiryDateError
    │   ├── CardExpiredAtCreationError
    │   ├── InvalidCvvFormatError
    │   ├── DescriptionTooLongError
    │   └── SameCardTransferError
    ├── NotFoundError              — no record for the PAN hash / id
    │   ├── CardNotFoundError
    │   ├── UserNotFoundError
    │   └── TransactionNotFoundError
    ├── UnauthorizedAccessError    — card belongs to someone else
    ├── CardStateError             — request is well formed but the ledger refuses it
    │   ├── DuplicateCardError
    │   ├── CardBlockedError / CardExpiredError / CardNotActiveError
    │   ├── CvvMismatchError
    │   ├── InsufficientFundsError
    │   ├── DailyLimitExceededError / TransactionLimitExceededError
    │   └── NonZeroBalanceError
    └── FatalLedgerError           — never downgraded, never retried silently
        ├── CryptographyError
        └── TransferFailedError

Validation and state errors can be corrected and resubmitted by the caller;
not-found and authorization errors are terminal for the request.
"""

import logging
import uuid
from decimal import Decimal

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class BankCardsError(Exception):
    """Base exception for all card ledger domain errors."""

    error_type = "bank_cards_error"

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------

class ValidationError(BankCardsError):
    """Malformed or out-of-range input."""

    error_type = "validation_error"


class InvalidAmountError(ValidationError):
    error_type = "invalid_amount"

    def __init__(self, amount, detail: str = "Invalid amount"):
        self.amount = amount
        super().__init__(detail)


class InvalidCardNumberError(ValidationError):
    error_type = "invalid_card_number"

    def __init__(self, detail: str = "Invalid card number"):
        super().__init__(detail)


class CardFormatError(ValidationError):
    """Raised when a card number cannot be masked (wrong length or non-digits)."""

    error_type = "invalid_card_format"


class InvalidExpiryDateError(ValidationError):
    error_type = "invalid_expiry_date"

    def __init__(self, detail: str = "Invalid expiry date"):
        super().__init__(detail)


class CardExpiredAtCreationError(ValidationError):
    error_type = "card_already_expired"

    def __init__(self):
        super().__init__("Card is already expired")


class InvalidCvvFormatError(ValidationError):
    error_type = "invalid_cvv_format"

    def __init__(self):
        super().__init__("CVV must be 3 digits")


class DescriptionTooLongError(ValidationError):
    error_type = "description_too_long"

    def __init__(self, max_length: int):
        self.max_length = max_length
        super().__init__(f"Description must be at most {max_length} characters")


class SameCardTransferError(ValidationError):
    error_type = "same_card_transfer"

    def __init__(self):
        super().__init__("Cannot transfer to the same card")


# ---------------------------------------------------------------------------
# Not-found errors
# ---------------------------------------------------------------------------

class NotFoundError(BankCardsError):
    error_type = "not_found"


class CardNotFoundError(NotFoundError):
    """Raised when no card matches the id or PAN hash.

    The PAN itself is never put in the message.
    """

    error_type = "card_not_found"

    def __init__(self, card_id: uuid.UUID | None = None):
        self.card_id = card_id
        if card_id is None:
            super().__init__("Card not found")
        else:
            super().__init__(f"Card {card_id} not found")


class UserNotFoundError(NotFoundError):
    error_type = "user_not_found"

    def __init__(self, user_id: uuid.UUID):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class TransactionNotFoundError(NotFoundError):
    error_type = "transaction_not_found"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


# ---------------------------------------------------------------------------
# Authorization errors
# ---------------------------------------------------------------------------

class UnauthorizedAccessError(BankCardsError):
    """Raised when a user attempts to act on a card they don't own."""

    error_type = "unauthorized_access"

    def __init__(self, detail: str = "Card does not belong to user"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# State errors
# ---------------------------------------------------------------------------

class CardStateError(BankCardsError):
    error_type = "card_state_error"


class DuplicateCardError(CardStateError):
    error_type = "duplicate_card"

    def __init__(self):
        super().__init__("Card with this number already exists")


class CardBlockedError(CardStateError):
    error_type = "card_blocked"

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"{role.capitalize()} card is blocked")


class CardExpiredError(CardStateError):
    error_type = "card_expired"

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"{role.capitalize()} card is expired")


class CardNotActiveError(CardStateError):
    error_type = "card_not_active"

    def __init__(self, detail: str):
        super().__init__(detail)


class CvvMismatchError(CardStateError):
    error_type = "cvv_mismatch"

    def __init__(self):
        super().__init__("CVV verification failed")


class InsufficientFundsError(CardStateError):
    """
    Raised when a transfer would take a card's balance below zero.

    Attributes:
        card_id: The card that lacks sufficient funds.
        requested: The amount the user tried to move.
        available: The card's balance at the time of the check.
    """

    error_type = "insufficient_funds"

    def __init__(self, card_id: uuid.UUID, requested: Decimal, available: Decimal):
        self.card_id = card_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds: requested {requested}, available {available}"
        )


class DailyLimitExceededError(CardStateError):
    error_type = "daily_limit_exceeded"

    def __init__(self, limit: Decimal, already_transferred: Decimal, requested: Decimal):
        self.limit = limit
        self.already_transferred = already_transferred
        self.requested = requested
        super().__init__("Daily transfer limit exceeded")


class TransactionLimitExceededError(CardStateError):
    error_type = "transaction_limit_exceeded"

    def __init__(self, limit: Decimal, requested: Decimal):
        self.limit = limit
        self.requested = requested
        super().__init__("Amount exceeds maximum per transaction")


class NonZeroBalanceError(CardStateError):
    error_type = "non_zero_balance"

    def __init__(self, card_id: uuid.UUID):
        self.card_id = card_id
        super().__init__("Cannot delete card with positive balance")


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------

class FatalLedgerError(BankCardsError):
    """Storage or cryptographic failure. Surfaced as-is, never retried."""

    error_type = "internal_error"


class CryptographyError(FatalLedgerError):
    error_type = "cryptography_error"


class TransferFailedError(FatalLedgerError):
    error_type = "transfer_failed"

    def __init__(self, detail: str = "Transfer failed"):
        super().__init__(detail)


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

_STATUS_CODES: list[tuple[type[BankCardsError], int]] = [
    (DuplicateCardError, 409),
    (ValidationError, 400),
    (NotFoundError, 404),
    (UnauthorizedAccessError, 403),
    # Unprocessable Entity: the request was valid but business rules reject it
    (CardStateError, 422),
    (FatalLedgerError, 500),
]


def status_code_for(exc: BankCardsError) -> int:
    """HTTP status for a domain error; the most specific class listed wins."""
    for exc_type, status_code in _STATUS_CODES:
        if isinstance(exc, exc_type):
            return status_code
    return 400


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register the domain exception handler with the FastAPI application.

    Every domain error becomes {"detail": ..., "error_type": ...}. Fatal
    errors are logged with their traceback and answered with a generic
    message so no card data or internal state leaks into the response.
    """

    @app.exception_handler(BankCardsError)
    async def bank_cards_error_handler(
        request: Request, exc: BankCardsError
    ) -> JSONResponse:
        status_code = status_code_for(exc)
        if isinstance(exc, FatalLedgerError):
            logger.error("Fatal ledger error on %s", request.url.path, exc_info=exc)
            return JSONResponse(
                status_code=status_code,
                content={"detail": "Internal ledger error", "error_type": exc.error_type},
            )

        content = {"detail": exc.detail, "error_type": exc.error_type}
        if isinstance(exc, InsufficientFundsError):
            content["requested"] = str(exc.requested)
            content["available"] = str(exc.available)
        return JSONResponse(status_code=status_code, content=content)
