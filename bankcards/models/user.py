"""
User model — the owner of cards.

Users are created, enabled/disabled and authenticated by the account
management component, which lives outside this package. The card ledger
only READS users:

  - card creation requires the owning user to exist
  - every card carries a `user_id`, and member operations compare it with
    the caller's user id (passed in explicitly by the web layer)

User types:
  - ADMIN: Operates the card lifecycle for any user (the `admin_*` service
    functions). The web layer decides who may call those.
  - USER: Card holder. Can only act on their own cards.

`hashed_password` is an opaque credential written by the auth component;
nothing in this package reads it.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankcards.database import Base


class UserType(str, enum.Enum):
    """
    Defines the role a user holds.

    Inherits from str so the enum value serializes naturally to JSON
    and can be stored as a simple string in the database.
    """
    ADMIN = "admin"
    USER = "user"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    username: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )

    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    user_type: Mapped[UserType] = mapped_column(
        Enum(UserType),
        default=UserType.USER,
        nullable=False,
    )

    # Enabled flag; disabled users keep their cards but can't log in
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # --- Relationships ---
    cards: Mapped[list["Card"]] = relationship(
        back_populates="owner",
    )
