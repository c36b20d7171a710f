"""
Card service — card issuance and the card status state machine.

State machine:

    ACTIVE  ──block──▶  BLOCKED
    BLOCKED ──activate──▶ ACTIVE      (refused once the card is expired)
    any     ──sweep──▶  EXPIRED       (expiry_date < today, idempotent)
    any     ──delete──▶ (removed)     (only when balance is exactly 0.00)

Issuance:
  create_card() takes an admin-supplied PAN; generate_card() synthesizes a
  PAN, CVV and expiry. Both run every check before the first write:
    1. PAN passes the Luhn check and has the configured length
    2. expiry is plausible (not past, under 10 years out)
    3. expiry is not already past
    4. the owning user exists
    5. no card with the same PAN hash exists
  The first failing check decides the error.

Balances are never touched here except for the initial balance at
creation; money only moves through transfer_service.

Ownership enforcement:
  Member functions take the caller's `user_id` and refuse cards owned by
  anyone else. Functions prefixed with `admin_` skip the ownership check;
  the web layer restricts them to ADMIN users.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from bankcards import card_numbers
from bankcards.config import settings
from bankcards.exceptions import (
    CardExpiredAtCreationError,
    CardNotActiveError,
    DuplicateCardError,
    InvalidAmountError,
    InvalidCardNumberError,
    InvalidCvvFormatError,
    InvalidExpiryDateError,
    NonZeroBalanceError,
    UnauthorizedAccessError,
    UserNotFoundError,
)
from bankcards.models.card import Card, CardStatus
from bankcards.models.user import User
from bankcards.money import to_cents
from bankcards.security import encrypt_value, hash_value
from bankcards.services import card_store

logger = logging.getLogger(__name__)

# Attempts at drawing an unused PAN before giving up
_MAX_GENERATION_ATTEMPTS = 10


@dataclass(frozen=True)
class IssuedCard:
    """A freshly generated card plus the plaintext PAN and CVV.

    This is the only time the plaintext leaves the service; show it to the
    card holder once and drop it.
    """
    card: Card
    card_number: str
    cvv: str


async def create_card(
    db: AsyncSession,
    card_number: str,
    owner_name: str,
    expiry_date: date,
    cvv: str,
    user_id: uuid.UUID,
    initial_balance: Decimal | None = None,
) -> Card:
    """
    Register a card with an admin-supplied PAN.

    Args:
        db: Database session.
        card_number: 16-digit PAN.
        owner_name: Name printed on the card.
        expiry_date: Any day in the expiry month; stored as the 1st.
        cvv: 3-digit CVV.
        user_id: The owning user.
        initial_balance: Optional non-negative opening balance (default 0.00).

    Returns:
        The created Card instance (status ACTIVE).

    Raises:
        InvalidCardNumberError: Bad Luhn or wrong digit count.
        InvalidExpiryDateError: Expiry missing, past, or 10+ years out.
        CardExpiredAtCreationError: Expiry already past.
        InvalidCvvFormatError / InvalidAmountError: Malformed CVV or balance.
        UserNotFoundError: The owning user doesn't exist.
        DuplicateCardError: A card with this PAN already exists.
    """
    # --- Validation: no store access until all of these pass ---
    if not card_numbers.validate_luhn(card_number):
        raise InvalidCardNumberError()
    # Luhn accepts 13-19 digits; the ledger only issues the configured length
    if not card_numbers.is_valid_card_number(card_number):
        raise InvalidCardNumberError()

    if expiry_date is None:
        raise InvalidExpiryDateError()
    expiry_date = card_numbers.normalize_expiry(expiry_date)
    if not card_numbers.is_valid_expiry_date(expiry_date):
        raise InvalidExpiryDateError("Invalid expire date")
    if not card_numbers.is_not_expired(expiry_date):
        raise CardExpiredAtCreationError()

    if not card_numbers.is_valid_cvv(cvv):
        raise InvalidCvvFormatError()

    if initial_balance is None:
        initial_balance = Decimal("0")
    try:
        balance_cents = to_cents(initial_balance)
    except ValueError as exc:
        raise InvalidAmountError(initial_balance, "Invalid initial balance") from exc
    if balance_cents < 0:
        raise InvalidAmountError(initial_balance, "Initial balance cannot be negative")
    if balance_cents > to_cents(settings.MAX_CARD_BALANCE):
        raise InvalidAmountError(
            initial_balance, f"Initial balance must not exceed {settings.MAX_CARD_BALANCE}"
        )

    # --- Store checks ---
    owner = await db.get(User, user_id)
    if owner is None:
        raise UserNotFoundError(user_id)

    card_number_hash = hash_value(card_number)
    if await card_store.card_hash_exists(db, card_number_hash):
        raise DuplicateCardError()

    card = Card(
        card_number_encrypted=encrypt_value(card_number),
        card_number_hash=card_number_hash,
        masked_number=card_numbers.mask_card_number(card_number),
        card_number_last_four=card_numbers.last_four(card_number),
        owner_name=owner_name,
        expiry_date=expiry_date,
        cvv_encrypted=encrypt_value(cvv),
        balance_cents=balance_cents,
        status=CardStatus.ACTIVE,
        user_id=user_id,
    )

    db.add(card)
    await db.flush()

    logger.info(
        "Card created",
        extra={"card_id": str(card.id), "masked_number": card.masked_number, "user_id": str(user_id)},
    )
    return card


async def generate_card(
    db: AsyncSession,
    user_id: uuid.UUID,
    owner_name: str,
    bin_prefix: str | None = None,
) -> IssuedCard:
    """
    Issue a card with a system-generated PAN, CVV and expiry.

    The PAN is redrawn if it collides with an existing card (vanishingly
    rare with 9 random digits, but the UNIQUE index would reject it anyway).

    Returns:
        IssuedCard with the stored card and the one-time plaintext PAN/CVV.

    Raises:
        UserNotFoundError: The owning user doesn't exist.
    """
    if await db.get(User, user_id) is None:
        raise UserNotFoundError(user_id)

    for _ in range(_MAX_GENERATION_ATTEMPTS):
        card_number = card_numbers.generate_card_number(bin_prefix)
        if not await card_store.card_hash_exists(db, hash_value(card_number)):
            break
    else:
        raise RuntimeError("Failed to generate a unique card number")

    cvv = card_numbers.generate_cvv()
    card = await create_card(
        db,
        card_number=card_number,
        owner_name=owner_name,
        expiry_date=card_numbers.generate_expiry_date(),
        cvv=cvv,
        user_id=user_id,
    )
    return IssuedCard(card=card, card_number=card_number, cvv=cvv)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------

async def get_card(
    db: AsyncSession,
    card_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Card:
    """
    Get one of the caller's cards.

    Raises:
        CardNotFoundError: If the card doesn't exist.
        UnauthorizedAccessError: If the card belongs to someone else.
    """
    card = await card_store.get_card_by_id(db, card_id)
    if card.user_id != user_id:
        raise UnauthorizedAccessError()
    return card


async def get_user_cards(
    db: AsyncSession,
    user_id: uuid.UUID,
    status: CardStatus | None = None,
    last_four: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Card]:
    """List the caller's cards, optionally filtered by status or last four digits."""
    return await card_store.get_cards_by_owner(
        db, user_id, status=status, last_four=last_four, limit=limit, offset=offset,
    )


async def get_card_balance(
    db: AsyncSession,
    card_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Decimal:
    card = await get_card(db, card_id, user_id)
    return card.balance


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------

async def _set_status(
    db: AsyncSession,
    card: Card,
    status: CardStatus,
    reason: str | None = None,
) -> Card:
    """The single place a card's status is written (apart from the sweep)."""
    if status == CardStatus.ACTIVE and card.is_expired():
        raise CardNotActiveError("Cannot activate expired card")

    previous = card.status
    card.status = status
    await db.flush()

    logger.info(
        "Card %s status updated from %s to %s",
        card.id, previous.value, status.value,
        extra={"reason": reason} if reason else None,
    )
    return card


async def block_card(
    db: AsyncSession,
    card_id: uuid.UUID,
    user_id: uuid.UUID,
    reason: str = "Requested by user",
) -> Card:
    """Block one of the caller's cards. Always permitted, from any state."""
    card = await get_card(db, card_id, user_id)
    return await _set_status(db, card, CardStatus.BLOCKED, reason)


async def activate_card(
    db: AsyncSession,
    card_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Card:
    """
    Re-activate one of the caller's cards.

    Raises:
        CardNotActiveError: If the card's expiry date has passed. The
            stored status is left untouched.
    """
    card = await get_card(db, card_id, user_id)
    return await _set_status(db, card, CardStatus.ACTIVE)


async def expire_cards(db: AsyncSession, today: date | None = None) -> int:
    """
    Mark every card whose expiry date is before `today` as EXPIRED.

    Idempotent: cards already EXPIRED are skipped, not rewritten, so a
    second run changes nothing. Overrides ACTIVE and BLOCKED alike.

    Returns:
        The number of cards that changed status.
    """
    today = today or card_numbers.utc_today()
    expired = 0

    for card in await card_store.get_cards_expiring_before(db, today):
        if card.status == CardStatus.EXPIRED:
            continue
        card.status = CardStatus.EXPIRED
        expired += 1
        logger.info("Card %s marked as expired", card.id)

    await db.flush()
    return expired


# ---------------------------------------------------------------------------
# Admin functions
# ---------------------------------------------------------------------------

async def admin_get_card(db: AsyncSession, card_id: uuid.UUID) -> Card:
    """[ADMIN ONLY] Get any card by id without ownership check."""
    return await card_store.get_card_by_id(db, card_id)


async def admin_get_all_cards(
    db: AsyncSession,
    limit: int = 50,
    offset: int = 0,
) -> list[Card]:
    """[ADMIN ONLY] List all cards across all users, newest first."""
    return await card_store.get_all_cards(db, limit=limit, offset=offset)


async def admin_get_user_cards(db: AsyncSession, user_id: uuid.UUID) -> list[Card]:
    """[ADMIN ONLY] List every card a user owns."""
    if await db.get(User, user_id) is None:
        raise UserNotFoundError(user_id)
    return await card_store.get_cards_by_owner(db, user_id, limit=None)


async def admin_update_card_status(
    db: AsyncSession,
    card_id: uuid.UUID,
    status: CardStatus,
    reason: str | None = None,
) -> Card:
    """
    [ADMIN ONLY] Move any card to any status.

    Activation of an expired card is still refused.
    """
    card = await card_store.get_card_by_id(db, card_id)
    return await _set_status(db, card, status, reason)


async def admin_block_card(
    db: AsyncSession,
    card_id: uuid.UUID,
    reason: str,
) -> Card:
    """[ADMIN ONLY] Force-block any card."""
    return await admin_update_card_status(db, card_id, CardStatus.BLOCKED, reason)


async def admin_activate_card(db: AsyncSession, card_id: uuid.UUID) -> Card:
    """[ADMIN ONLY] Re-activate any card that hasn't expired."""
    return await admin_update_card_status(db, card_id, CardStatus.ACTIVE)


async def admin_delete_card(db: AsyncSession, card_id: uuid.UUID) -> None:
    """
    [ADMIN ONLY] Delete a card. Terminal.

    Raises:
        CardNotFoundError: If the card doesn't exist.
        NonZeroBalanceError: Unless the balance is exactly 0.00.
    """
    card = await card_store.get_card_by_id(db, card_id)

    if card.balance_cents != 0:
        raise NonZeroBalanceError(card_id)

    await db.delete(card)
    await db.flush()
    logger.info("Card deleted: %s", card_id)
