"""
Test fixtures for the card ledger test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - session_factory: A sessionmaker on the test engine, for code that opens
    its own unit of work (the expiry sweep)
  - client: Async HTTP test client against the app shell
  - user / other_user / admin_user: Users inserted directly into the DB
  - make_card: Factory that issues a card through card_service.create_card
    and hands back the plaintext PAN and CVV alongside the row
  - expire: Helper that pushes a card's expiry date into the past

Key design decisions:
  - The encryption secret and database URL are set in the environment
    BEFORE anything from bankcards is imported, because `settings` and the
    module-level cipher are built at import time.
  - Services only flush, so most tests work inside one uncommitted session.
    Tests that exercise rollback commit their setup first.
"""

import os

os.environ.setdefault("CARD_ENCRYPTION_SECRET", "test-card-encryption-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from bankcards import card_numbers
from bankcards.database import Base, get_db
from bankcards.main import app
from bankcards.models.card import Card
from bankcards.models.user import User, UserType
from bankcards.services import card_service
from bankcards.services.card_service import IssuedCard


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory):
    """
    Async HTTP test client with the test database injected.

    Overrides the get_db dependency so requests hit the in-memory test
    database instead of the configured one.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


async def _add_user(db: AsyncSession, username: str, user_type: UserType = UserType.USER) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        hashed_password="not-a-real-hash",
        user_type=user_type,
    )
    db.add(user)
    await db.flush()
    return user


@pytest_asyncio.fixture
async def user(db_session):
    return await _add_user(db_session, "alice")


@pytest_asyncio.fixture
async def other_user(db_session):
    """A second card holder for cross-user authorization tests."""
    return await _add_user(db_session, "bob")


@pytest_asyncio.fixture
async def admin_user(db_session):
    return await _add_user(db_session, "admin", UserType.ADMIN)


@pytest.fixture
def make_card(db_session, user):
    """
    Issue a card and return it as an IssuedCard (row + plaintext PAN/CVV).

    Usage:
        issued = await make_card(balance="1000.00")
        issued = await make_card(owner=other_user, cvv="007")
    """

    async def _make_card(
        owner: User | None = None,
        balance: str = "0.00",
        cvv: str = "123",
        owner_name: str = "Test Holder",
    ) -> IssuedCard:
        owner = owner or user
        card_number = card_numbers.generate_card_number()
        card = await card_service.create_card(
            db_session,
            card_number=card_number,
            owner_name=owner_name,
            expiry_date=card_numbers.generate_expiry_date(),
            cvv=cvv,
            user_id=owner.id,
            initial_balance=Decimal(balance),
        )
        return IssuedCard(card=card, card_number=card_number, cvv=cvv)

    return _make_card


@pytest.fixture
def expire(db_session):
    """Move a card's expiry date into the past (yesterday by default).

    create_card refuses past expiry dates, so expired cards are made by
    editing the row after issuance.
    """

    async def _expire(card: Card, days_ago: int = 1) -> Card:
        card.expiry_date = card_numbers.utc_today() - timedelta(days=days_ago)
        await db_session.flush()
        return card

    return _expire


@pytest.fixture
def unknown_id() -> uuid.UUID:
    return uuid.uuid4()
