"""
Transaction record store — history and aggregation over `transactions`.

Transactions are append-only: the transfer engine inserts them and nothing
updates or deletes them. This module is read-only.

Queries:
  - exact lookup by public transaction id
  - history for one card (as source OR destination), newest first
  - history for a user across every card they own, newest first
  - sum of COMPLETED outgoing transfers for a card since a point in time,
    which feeds the transfer engine's daily limit
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.exceptions import TransactionNotFoundError, UnauthorizedAccessError
from bankcards.models.card import Card
from bankcards.models.transaction import Transaction, TransactionStatus, TransactionType
from bankcards.money import from_cents


async def get_transaction(db: AsyncSession, transaction_id: str) -> Transaction:
    """
    Get a transaction by its public id.

    Raises:
        TransactionNotFoundError: If no transaction has this id.
    """
    result = await db.execute(
        select(Transaction).where(Transaction.transaction_id == transaction_id)
    )
    txn = result.scalar_one_or_none()
    if txn is None:
        raise TransactionNotFoundError(transaction_id)
    return txn


def _owned_card_ids(user_id: uuid.UUID):
    return select(Card.id).where(Card.user_id == user_id)


async def get_user_transaction(
    db: AsyncSession,
    transaction_id: str,
    user_id: uuid.UUID,
) -> Transaction:
    """
    Get a transaction by public id, provided one of its cards is the caller's.

    Raises:
        TransactionNotFoundError: If the transaction doesn't exist.
        UnauthorizedAccessError: If neither card belongs to the caller.
    """
    txn = await get_transaction(db, transaction_id)
    card_ids = [card_id for card_id in (txn.from_card_id, txn.to_card_id) if card_id is not None]

    owned = await db.execute(
        select(func.count())
        .select_from(Card)
        .where(Card.user_id == user_id)
        .where(Card.id.in_(card_ids))
    )
    if not owned.scalar():
        raise UnauthorizedAccessError("Transaction does not belong to user")
    return txn


async def get_card_transactions(
    db: AsyncSession,
    card_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    """Transactions where the card is the source or the destination, newest first."""
    result = await db.execute(
        select(Transaction)
        .where(
            (Transaction.from_card_id == card_id)
            | (Transaction.to_card_id == card_id)
        )
        .order_by(Transaction.transaction_date.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def get_user_transactions(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int = 50,
    offset: int = 0,
) -> list[Transaction]:
    """Transactions touching any card the user owns, newest first."""
    owned = _owned_card_ids(user_id)
    result = await db.execute(
        select(Transaction)
        .where(
            or_(
                Transaction.from_card_id.in_(owned),
                Transaction.to_card_id.in_(owned),
            )
        )
        .order_by(Transaction.transaction_date.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def sum_completed_transfers_from(
    db: AsyncSession,
    card_id: uuid.UUID,
    window_start: datetime,
) -> Decimal:
    """
    Total of COMPLETED transfers made FROM the card since `window_start`.

    Incoming transfers never count. Returns Decimal("0.00") (not None)
    when nothing matches.
    """
    result = await db.execute(
        select(func.coalesce(func.sum(Transaction.amount_cents), 0))
        .where(Transaction.from_card_id == card_id)
        .where(Transaction.type == TransactionType.TRANSFER)
        .where(Transaction.status == TransactionStatus.COMPLETED)
        .where(Transaction.transaction_date >= window_start)
    )
    return from_cents(result.scalar())


async def get_total_transferred(
    db: AsyncSession,
    card_id: uuid.UUID,
    days: int = 1,
) -> Decimal:
    """Outgoing completed transfers over the trailing `days` days."""
    window_start = datetime.now(timezone.utc) - timedelta(days=days)
    return await sum_completed_transfers_from(db, card_id, window_start)
