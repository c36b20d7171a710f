"""
Card record store — the query surface over the `cards` table.

Lookups only; status and balance writes belong to the lifecycle service
and the transfer engine. Functions return None (or an empty list) when
nothing matches and leave it to the caller to decide whether that is an
error. `get_card_by_id` is the one exception: a missing id is always a
CardNotFoundError.

Cards are located from a PAN through its lookup hash
(`security.hash_value`), never by decrypting rows.
"""

import uuid
from datetime import date

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.exceptions import CardNotFoundError
from bankcards.models.card import Card, CardStatus
from bankcards.security import hash_value


async def get_card_by_id(db: AsyncSession, card_id: uuid.UUID) -> Card:
    """
    Raises:
        CardNotFoundError: If no card has this id.
    """
    result = await db.execute(select(Card).where(Card.id == card_id))
    card = result.scalar_one_or_none()
    if card is None:
        raise CardNotFoundError(card_id)
    return card


async def get_card_by_hash(db: AsyncSession, card_number_hash: str) -> Card | None:
    result = await db.execute(
        select(Card).where(Card.card_number_hash == card_number_hash)
    )
    return result.scalar_one_or_none()


async def find_card_by_number(db: AsyncSession, card_number: str) -> Card | None:
    """Resolve a plaintext PAN to its card through the lookup hash."""
    return await get_card_by_hash(db, hash_value(card_number))


async def card_hash_exists(db: AsyncSession, card_number_hash: str) -> bool:
    result = await db.execute(
        select(exists().where(Card.card_number_hash == card_number_hash))
    )
    return bool(result.scalar())


async def get_cards_by_owner(
    db: AsyncSession,
    user_id: uuid.UUID,
    status: CardStatus | None = None,
    last_four: str | None = None,
    limit: int | None = 50,
    offset: int = 0,
) -> list[Card]:
    """
    List a user's cards, newest first, with optional filters.

    Args:
        status: Only cards in this status.
        last_four: Only cards whose PAN ends with these digits.
    """
    query = (
        select(Card)
        .where(Card.user_id == user_id)
        .order_by(Card.created_at.desc())
        .limit(limit)
        .offset(offset)
    )

    if status is not None:
        query = query.where(Card.status == status)
    if last_four:
        query = query.where(Card.card_number_last_four == last_four)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_all_cards(
    db: AsyncSession,
    limit: int = 50,
    offset: int = 0,
) -> list[Card]:
    result = await db.execute(
        select(Card)
        .order_by(Card.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def get_cards_expiring_before(db: AsyncSession, cutoff: date) -> list[Card]:
    """All cards whose expiry date is strictly before `cutoff`, any status."""
    result = await db.execute(
        select(Card).where(Card.expiry_date < cutoff).order_by(Card.id)
    )
    return list(result.scalars().all())


async def lock_cards(db: AsyncSession, card_ids: list[uuid.UUID]) -> dict[uuid.UUID, Card]:
    """
    Lock the given card rows and return them freshly loaded, keyed by id.

    DEADLOCK PREVENTION: rows are locked in sorted id order, so two
    transfers between the same pair of cards in opposite directions always
    take the locks in the same sequence. Only the listed rows are locked;
    transfers between unrelated cards never wait on each other.

    SQLite note: FOR UPDATE is a no-op there (SQLite serializes writers);
    on PostgreSQL it takes real row locks. populate_existing refreshes any
    instance already in the identity map with the locked row's values.
    """
    ordered_ids = sorted(set(card_ids))
    result = await db.execute(
        select(Card)
        .where(Card.id.in_(ordered_ids))
        .order_by(Card.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {card.id: card for card in result.scalars().all()}
