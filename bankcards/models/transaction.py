"""
Transaction model — the immutable audit record of a completed transfer.

One row per successful transfer. Rows are inserted by the transfer engine
in the same database transaction as the two balance updates and are
never updated or deleted afterwards.

Key fields:
  - transaction_id: Public identifier (UUID string), UNIQUE, generated at
    creation and never reused
  - amount_cents: Always positive; direction is given by from/to
  - from_card_id: Source card (NULL only for non-transfer types)
  - to_card_id: Destination card (required)
  - transaction_date: When the money moved; the daily-limit window and
    history ordering use this column

Why no foreign keys on the card references?
  A card may be deleted once its balance is zero, but its history must
  stay intact. The references are indexed plain UUIDs so deleting a card
  never cascades into (or is blocked by) the audit trail.

The balance column on Card remains the source of truth; these rows are
the audit trail, not a replayable event log.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, BigInteger, DateTime, Enum, Index, CheckConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from bankcards.config import settings
from bankcards.database import Base
from bankcards.money import from_cents


class TransactionType(str, enum.Enum):
    TRANSFER = "TRANSFER"


class TransactionStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    # Reserved for asynchronous settlement; never written today
    PENDING = "PENDING"
    FAILED = "FAILED"


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_transactions_positive_amount"),
        # History and daily-limit queries filter by card and order/limit by time
        Index("ix_transactions_from_card_date", "from_card_id", "transaction_date"),
        Index("ix_transactions_to_card_date", "to_card_id", "transaction_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    transaction_id: Mapped[str] = mapped_column(
        String(36),
        unique=True,
        nullable=False,
        default=lambda: str(uuid.uuid4()),
    )

    amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
    )

    # ISO 4217 currency code
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default=lambda: settings.DEFAULT_CURRENCY,
    )

    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType),
        nullable=False,
        default=TransactionType.TRANSFER,
    )

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus),
        nullable=False,
        default=TransactionStatus.COMPLETED,
    )

    description: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    from_card_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
    )

    to_card_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
    )

    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)
