"""
Transfer service — moves money between two of the caller's cards.

THIS IS THE MOST CRITICAL FILE IN THE PROJECT. A transfer either debits
the source, credits the destination and records exactly one COMPLETED
Transaction, or it changes nothing at all.

Preconditions, checked in this order (first failure wins, nothing is
written until all of them pass):
  1. amount is a positive two-place Decimal ≤ MAX_TRANSFER_AMOUNT; the PANs,
     CVV and description are well formed; source and destination differ
  2. the source PAN resolves (via its lookup hash) to a card the caller owns
  3. the destination PAN resolves to a card the caller owns
  4. the supplied CVV matches the source card's stored CVV
  5. source, then destination, is ACTIVE and not past its expiry date
  6. source balance ≥ amount
  7. completed outgoing transfers from the source in the trailing 24 hours
     plus this amount stay within DAILY_TRANSFER_LIMIT
  8. amount ≤ MAX_PER_TRANSACTION

Atomicity:
  The two balance updates and the Transaction insert share one database
  transaction (the caller's unit of work, see database.session_scope).
  If anything fails after the debit has been issued, the session is rolled
  back here and TransferFailedError is raised; a partial transfer is never
  returned as a success.

Concurrency:
  Both card rows are locked in sorted id order before steps 4–8 read them
  (card_store.lock_cards), so the balance and daily-total checks run
  against the same rows the write will touch. The debit itself is a
  guarded UPDATE (... WHERE balance_cents >= amount): even where row locks
  are unavailable, two racing transfers cannot both spend the same money.
  The CHECK constraint on balance_cents is the last line of defense.

Only same-owner transfers are supported: both cards must belong to the
caller.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards import card_numbers
from bankcards.config import settings
from bankcards.exceptions import (
    CardBlockedError,
    CardExpiredError,
    CardNotActiveError,
    CardNotFoundError,
    CryptographyError,
    CvvMismatchError,
    DailyLimitExceededError,
    DescriptionTooLongError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidCardNumberError,
    InvalidCvvFormatError,
    SameCardTransferError,
    TransactionLimitExceededError,
    TransferFailedError,
    UnauthorizedAccessError,
)
from bankcards.logging_config import get_logger
from bankcards.models.card import Card, CardStatus
from bankcards.models.transaction import Transaction, TransactionStatus, TransactionType
from bankcards.money import from_cents, to_cents
from bankcards.security import constant_time_equals, decrypt_value
from bankcards.services import card_store, transaction_store

logger = get_logger("transfers")

MAX_DESCRIPTION_LENGTH = 255
DAILY_LIMIT_WINDOW = timedelta(hours=24)


def _validate_amount(amount: Decimal) -> int:
    """Step 1 for the amount. Returns it in cents."""
    try:
        amount_cents = to_cents(amount)
    except ValueError as exc:
        raise InvalidAmountError(amount) from exc

    if amount_cents <= 0:
        raise InvalidAmountError(amount, "Amount must be greater than 0")
    if amount_cents > to_cents(settings.MAX_TRANSFER_AMOUNT):
        raise InvalidAmountError(
            amount, f"Amount must not exceed {settings.MAX_TRANSFER_AMOUNT}"
        )
    return amount_cents


def _validate_request(
    from_card_number: str,
    to_card_number: str,
    cvv: str,
    description: str | None,
) -> None:
    """Step 1 for everything but the amount. No store access."""
    if not card_numbers.is_valid_card_number(from_card_number):
        raise InvalidCardNumberError(f"From card number must be {settings.CARD_NUMBER_LENGTH} digits")
    if not card_numbers.is_valid_card_number(to_card_number):
        raise InvalidCardNumberError(f"To card number must be {settings.CARD_NUMBER_LENGTH} digits")
    if from_card_number == to_card_number:
        raise SameCardTransferError()
    if not card_numbers.is_valid_cvv(cvv):
        raise InvalidCvvFormatError()
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        raise DescriptionTooLongError(MAX_DESCRIPTION_LENGTH)


async def _resolve_owned_card(
    db: AsyncSession,
    card_number: str,
    user_id: uuid.UUID,
) -> Card:
    """Steps 2 and 3: find the card by PAN hash and check the caller owns it."""
    card = await card_store.find_card_by_number(db, card_number)
    if card is None:
        raise CardNotFoundError()
    if card.user_id != user_id:
        raise UnauthorizedAccessError()
    return card


def _ensure_usable(card: Card, role: str) -> None:
    """Step 5 for one card. Date-based expiry counts even before the sweep ran."""
    if card.status == CardStatus.BLOCKED:
        raise CardBlockedError(role)
    if card.status == CardStatus.EXPIRED or card.is_expired():
        raise CardExpiredError(role)
    if card.status != CardStatus.ACTIVE:
        raise CardNotActiveError(f"{role.capitalize()} card is not active")


async def _check_daily_limit(db: AsyncSession, card: Card, amount: Decimal) -> None:
    """Step 7."""
    window_start = datetime.now(timezone.utc) - DAILY_LIMIT_WINDOW
    already = await transaction_store.sum_completed_transfers_from(db, card.id, window_start)

    if already + amount > settings.DAILY_TRANSFER_LIMIT:
        raise DailyLimitExceededError(
            limit=settings.DAILY_TRANSFER_LIMIT,
            already_transferred=already,
            requested=amount,
        )


async def _apply_transfer(
    db: AsyncSession,
    source: Card,
    dest: Card,
    amount_cents: int,
    description: str | None,
) -> Transaction:
    """Debit, credit and record. Caller handles rollback on failure."""
    now = datetime.now(timezone.utc)

    # Guarded debit: re-validates funds at write time
    debit = await db.execute(
        update(Card)
        .where(Card.id == source.id)
        .where(Card.balance_cents >= amount_cents)
        .values(balance_cents=Card.balance_cents - amount_cents, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if debit.rowcount != 1:
        raise InsufficientFundsError(
            card_id=source.id,
            requested=from_cents(amount_cents),
            available=source.balance,
        )

    credit = await db.execute(
        update(Card)
        .where(Card.id == dest.id)
        .values(balance_cents=Card.balance_cents + amount_cents, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if credit.rowcount != 1:
        raise TransferFailedError("Destination card disappeared during transfer")

    txn = Transaction(
        amount_cents=amount_cents,
        currency=settings.DEFAULT_CURRENCY,
        type=TransactionType.TRANSFER,
        status=TransactionStatus.COMPLETED,
        description=description,
        from_card_id=source.id,
        to_card_id=dest.id,
        transaction_date=now,
        created_at=now,
    )
    db.add(txn)
    await db.flush()

    # The UPDATEs bypassed the identity map; reload the new balances
    await db.refresh(source)
    await db.refresh(dest)
    return txn


async def transfer(
    db: AsyncSession,
    from_card_number: str,
    to_card_number: str,
    amount: Decimal,
    cvv: str,
    user_id: uuid.UUID,
    description: str | None = None,
) -> Transaction:
    """
    Transfer money between two cards owned by the caller.

    Args:
        db: Database session.
        from_card_number: Source PAN (16 digits).
        to_card_number: Destination PAN (16 digits).
        amount: Positive Decimal with at most two fractional digits.
        cvv: The source card's CVV.
        user_id: The authenticated caller; must own both cards.
        description: Optional memo, at most 255 characters.

    Returns:
        The COMPLETED Transaction record.

    Raises:
        ValidationError subclasses: Malformed amount/PAN/CVV/description.
        CardNotFoundError: A PAN matches no card.
        UnauthorizedAccessError: A card belongs to someone else.
        CvvMismatchError, CardBlockedError, CardExpiredError,
        CardNotActiveError, InsufficientFundsError, DailyLimitExceededError,
        TransactionLimitExceededError: The ledger refuses the transfer.
        CryptographyError: The stored CVV can't be decrypted.
        TransferFailedError: Storage failed mid-transfer; the session has
            been rolled back.
    """
    # 1. Validation
    amount_cents = _validate_amount(amount)
    amount = from_cents(amount_cents)
    _validate_request(from_card_number, to_card_number, cvv, description)

    # 2-3. Resolve and authorize
    source = await _resolve_owned_card(db, from_card_number, user_id)
    dest = await _resolve_owned_card(db, to_card_number, user_id)

    # Lock both rows (sorted id order) and re-read them under the lock
    locked = await card_store.lock_cards(db, [source.id, dest.id])
    if source.id not in locked:
        raise CardNotFoundError(source.id)
    if dest.id not in locked:
        raise CardNotFoundError(dest.id)
    source, dest = locked[source.id], locked[dest.id]

    # 4. CVV
    if not constant_time_equals(decrypt_value(source.cvv_encrypted), cvv):
        logger.warning("CVV verification failed for card %s", source.id)
        raise CvvMismatchError()

    # 5. Card states
    _ensure_usable(source, "source")
    _ensure_usable(dest, "destination")

    # 6. Funds
    if source.balance_cents < amount_cents:
        raise InsufficientFundsError(
            card_id=source.id,
            requested=amount,
            available=source.balance,
        )

    # 7. Daily limit
    await _check_daily_limit(db, source, amount)

    # 8. Per-transaction limit
    if amount > settings.MAX_PER_TRANSACTION:
        raise TransactionLimitExceededError(settings.MAX_PER_TRANSACTION, amount)

    # Rollback expires every instance; keep the ids for the failure log
    source_id, dest_id = source.id, dest.id
    try:
        txn = await _apply_transfer(db, source, dest, amount_cents, description)
    except (SQLAlchemyError, CryptographyError, TransferFailedError) as exc:
        await db.rollback()
        logger.error(
            "Transfer failed from card %s to card %s",
            source_id, dest_id,
            exc_info=exc,
        )
        if isinstance(exc, TransferFailedError):
            raise
        raise TransferFailedError() from exc

    logger.info(
        "Transfer completed: %s from card %s to card %s",
        amount, source.id, dest.id,
        extra={"transaction_id": txn.transaction_id},
    )
    return txn
