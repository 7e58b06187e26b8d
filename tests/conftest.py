"""Pytest configuration and fixtures."""

import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "true"

from custodex.chain.simulated import SimulatedLedgerClient
from custodex.config import Settings
from custodex.container import ServiceContainer
from custodex.ledger.database import Database
from custodex.ledger.models import Base
from custodex.ledger.repository import LedgerRepository

PLATFORM_ADDRESS = "0x" + "ab" * 20
USER_ADDRESS = "0x" + "11" * 20
DESTINATION = "0x" + "22" * 20

DEUR_ADDRESS = "0x" + "d1" * 20
DUSD_ADDRESS = "0x" + "d2" * 20
DCNY_ADDRESS = "0x" + "d3" * 20


@pytest.fixture
def settings() -> Settings:
    """Settings for a dry-run deployment with all three tokens."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        dry_run=True,
        platform_wallet_address=PLATFORM_ADDRESS,
        deur_token_address=DEUR_ADDRESS,
        dusd_token_address=DUSD_ADDRESS,
        dcny_token_address=DCNY_ADDRESS,
        min_confirmations=12,
        deposit_start_block=900,
        withdrawal_fee_percent=Decimal("1.0"),
        max_daily_withdrawal=Decimal("10000"),
        withdrawal_delay_seconds=0,
        broadcast_retry_backoff=0,
    )


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def database(db_engine) -> Database:
    """Database wrapper over the test engine."""
    return Database(engine=db_engine)


@pytest_asyncio.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with database.session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture
def chain() -> SimulatedLedgerClient:
    """Simulated chain at height 1000."""
    return SimulatedLedgerClient(platform_address=PLATFORM_ADDRESS, height=1000)


@pytest.fixture
def container(settings: Settings, database: Database, chain: SimulatedLedgerClient) -> ServiceContainer:
    """Service container wired to the test database and simulated chain."""
    return ServiceContainer(settings=settings, database=database, ledger_client=chain)
