"""
Card model — one issued card and its balance.

Identity fields:
  - card_number_encrypted: Full PAN, encrypted (see bankcards.security)
  - card_number_hash: Keyed HMAC of the PAN. UNIQUE and indexed, this is
    how a card is found from a PAN without decrypting every row
  - masked_number: Display form ("**** **** **** 4242")
  - card_number_last_four: Plaintext last four, for owner-side filtering
  - cvv_encrypted: 3-digit CVV, encrypted

Why both encrypt AND hash the PAN?
  Encryption is randomized (fresh nonce per call), so two encryptions of
  the same PAN never match and can't be indexed. The hash is deterministic
  and indexable but one-way. Lookups use the hash; only the CVV check and
  issuance ever need the plaintext.

Balance:
  Stored as integer cents in `balance_cents` (exact arithmetic, no float
  drift) and exposed as a two-place Decimal through `balance`. A CHECK
  constraint keeps it non-negative at the database level. The column is
  written only by card creation (initial balance) and the transfer engine.

Status:
  ACTIVE, BLOCKED or EXPIRED. Date-based expiry wins over the stored
  status: a card whose expiry date has passed is treated as expired even
  before the sweep has rewritten its status.
"""

import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, BigInteger, Date, DateTime, Enum, ForeignKey, LargeBinary, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankcards.card_numbers import utc_today
from bankcards.database import Base
from bankcards.money import from_cents


class CardStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    EXPIRED = "EXPIRED"


class Card(Base):
    __tablename__ = "cards"

    # Database-level constraint: balance can never be negative
    __table_args__ = (
        CheckConstraint(
            "balance_cents >= 0",
            name="ck_cards_non_negative_balance",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    card_number_encrypted: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
    )

    card_number_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )

    masked_number: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    card_number_last_four: Mapped[str] = mapped_column(
        String(4),
        nullable=False,
    )

    # Free text; not necessarily the legal name of the owning user
    owner_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Always the first day of the expiry month
    expiry_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
    )

    cvv_encrypted: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
    )

    balance_cents: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    status: Mapped[CardStatus] = mapped_column(
        Enum(CardStatus),
        nullable=False,
        default=CardStatus.ACTIVE,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # --- Relationships ---
    owner: Mapped["User"] = relationship(
        back_populates="cards",
    )

    @property
    def balance(self) -> Decimal:
        return from_cents(self.balance_cents)

    def is_expired(self, today: date | None = None) -> bool:
        """True once today is strictly after the expiry date."""
        return (today or utc_today()) > self.expiry_date

    def __repr__(self) -> str:
        # PAN and CVV columns are deliberately left out
        return f"<Card id={self.id} masked={self.masked_number!r} status={self.status.value if self.status else None}>"
