"""Tests for deposit ingestion."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from custodex.accounts import AccountResolver, StaticAccountResolver
from custodex.chain.simulated import SimulatedLedgerClient
from custodex.container import ServiceContainer
from custodex.errors import ChainReadError, PersistenceError
from custodex.ledger.models import Deposit, DepositStatus
from custodex.ledger.repository import LedgerRepository
from custodex.services.deposit_monitor import DepositMonitor

DEUR_ADDRESS = "0x" + "d1" * 20
DUSD_ADDRESS = "0x" + "d2" * 20
DCNY_ADDRESS = "0x" + "d3" * 20
USER_ADDRESS = "0x" + "11" * 20


async def get_deposit(container: ServiceContainer, tx_hash: str) -> Deposit:
    async with container.database.session() as session:
        return await LedgerRepository(session).get_deposit_by_tx_hash(tx_hash)


async def get_cursor(container: ServiceContainer, token: str):
    async with container.database.session() as session:
        return await LedgerRepository(session).get_sync_cursor(token)


async def count_deposits(container: ServiceContainer) -> int:
    async with container.database.session() as session:
        result = await session.execute(select(func.count()).select_from(Deposit))
        return result.scalar_one()


@pytest.fixture
def monitor(container: ServiceContainer) -> DepositMonitor:
    return DepositMonitor(container)


@pytest.fixture
def deur(container: ServiceContainer):
    return container.settings.get_token("DEUR")


class TestScanToken:
    """Tests for scanning a single token."""

    @pytest.mark.asyncio
    async def test_scenario_confirmed_at_threshold(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, container, deur
    ):
        """Test a transfer seen exactly MIN_CONFIRMATIONS deep is confirmed."""
        event = chain.add_transfer(DEUR_ADDRESS, Decimal("100"), block_number=988)

        result = await monitor.scan_token(deur)

        assert result.success
        assert result.new_deposits == 1
        assert result.confirmed == 1

        deposit = await get_deposit(container, event.tx_hash)
        assert deposit.status == DepositStatus.CONFIRMED
        assert deposit.confirmations == 12
        assert deposit.amount == Decimal("100")
        assert deposit.currency == "DEUR"
        assert deposit.confirmed_at is not None
        assert await count_deposits(container) == 1

    @pytest.mark.asyncio
    async def test_one_below_threshold_stays_pending(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, container, deur
    ):
        """Test MIN_CONFIRMATIONS - 1 leaves the deposit pending."""
        event = chain.add_transfer(DEUR_ADDRESS, Decimal("5"), block_number=989)

        await monitor.scan_token(deur)

        deposit = await get_deposit(container, event.tx_hash)
        assert deposit.status == DepositStatus.PENDING
        assert deposit.confirmations == 11
        assert deposit.confirmed_at is None

    @pytest.mark.asyncio
    async def test_cursor_advances_without_events(
        self, monitor: DepositMonitor, container, deur
    ):
        """Test the cursor moves to the current height even with no transfers."""
        result = await monitor.scan_token(deur)

        assert result.events == 0
        assert result.from_block == 901
        assert result.to_block == 1000
        assert await get_cursor(container, "DEUR") == 1000

    @pytest.mark.asyncio
    async def test_no_new_blocks_is_noop(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, deur
    ):
        """Test a scan at the cursor height queries nothing."""
        await monitor.scan_token(deur)
        queries = len(chain.event_queries)

        result = await monitor.scan_token(deur)

        assert result.from_block is None
        assert len(chain.event_queries) == queries

    @pytest.mark.asyncio
    async def test_scans_only_new_range(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, deur
    ):
        """Test the next scan starts right after the cursor."""
        await monitor.scan_token(deur)
        chain.mine(5)

        await monitor.scan_token(deur)

        assert chain.event_queries[-1] == (DEUR_ADDRESS, 1001, 1005)

    @pytest.mark.asyncio
    async def test_rescan_window(
        self, settings, database, chain: SimulatedLedgerClient, deur
    ):
        """Test RESCAN_BLOCKS re-queries recent blocks without duplicating rows."""
        container = ServiceContainer(
            settings=settings.model_copy(update={"rescan_blocks": 10}),
            database=database,
            ledger_client=chain,
        )
        monitor = DepositMonitor(container)
        chain.add_transfer(DEUR_ADDRESS, Decimal("1"), block_number=995)
        await monitor.scan_token(deur)
        chain.mine(3)

        await monitor.scan_token(deur)

        assert chain.event_queries[-1] == (DEUR_ADDRESS, 991, 1003)
        assert await count_deposits(container) == 1

    @pytest.mark.asyncio
    async def test_first_scan_starts_at_current_height(
        self, settings, database, chain: SimulatedLedgerClient, deur
    ):
        """Test a token never scanned before does not replay history."""
        container = ServiceContainer(
            settings=settings.model_copy(update={"deposit_start_block": None}),
            database=database,
            ledger_client=chain,
        )
        monitor = DepositMonitor(container)
        chain.add_transfer(DEUR_ADDRESS, Decimal("1"), block_number=500)

        result = await monitor.scan_token(deur)

        assert result.events == 0
        assert chain.event_queries == []
        assert await get_cursor(container, "DEUR") == 1000
        assert await count_deposits(container) == 0

    @pytest.mark.asyncio
    async def test_only_platform_recipient(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, container, deur
    ):
        """Test transfers to other addresses are ignored."""
        chain.add_transfer(DEUR_ADDRESS, Decimal("1"), block_number=950, to_address="0x" + "99" * 20)

        result = await monitor.scan_token(deur)

        assert result.events == 0
        assert await count_deposits(container) == 0

    @pytest.mark.asyncio
    async def test_identity_from_resolver(
        self, settings, database, chain: SimulatedLedgerClient, deur
    ):
        """Test the deposit owner comes from the account resolver."""
        container = ServiceContainer(
            settings=settings,
            database=database,
            ledger_client=chain,
            resolver=StaticAccountResolver({USER_ADDRESS: "Carol@Example.com"}),
        )
        known = chain.add_transfer(DEUR_ADDRESS, Decimal("1"), block_number=950)
        unknown = chain.add_transfer(
            DEUR_ADDRESS, Decimal("2"), block_number=951, from_address="0x" + "33" * 20
        )

        await DepositMonitor(container).scan_token(deur)

        assert (await get_deposit(container, known.tx_hash)).user_identity == "carol@example.com"
        assert (await get_deposit(container, unknown.tx_hash)).user_identity is None

    @pytest.mark.asyncio
    async def test_default_identity_is_sender(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, container, deur
    ):
        """Test the default resolver uses the lowercased sender address."""
        event = chain.add_transfer(
            DEUR_ADDRESS, Decimal("1"), block_number=950, from_address="0x" + "AB" * 20
        )

        await monitor.scan_token(deur)

        deposit = await get_deposit(container, event.tx_hash)
        assert deposit.user_identity == "0x" + "ab" * 20


class TestRefreshPending:
    """Tests for re-checking pending deposits."""

    @pytest.mark.asyncio
    async def test_pending_deposit_confirms_later(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, container, deur
    ):
        """Test a pending deposit is promoted once deep enough, with no new events."""
        event = chain.add_transfer(DEUR_ADDRESS, Decimal("10"), block_number=995)
        await monitor.scan_token(deur)
        assert (await get_deposit(container, event.tx_hash)).status == DepositStatus.PENDING

        chain.mine(6)
        assert await monitor.refresh_pending() == 0
        assert (await get_deposit(container, event.tx_hash)).confirmations == 11

        chain.mine(1)
        assert await monitor.refresh_pending() == 1

        deposit = await get_deposit(container, event.tx_hash)
        assert deposit.status == DepositStatus.CONFIRMED
        assert deposit.confirmations == 12
        assert deposit.confirmed_at is not None


class TestRunCycle:
    """Tests for a full ingestion tick."""

    @pytest.mark.asyncio
    async def test_failing_token_does_not_block_siblings(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, container
    ):
        """Test a read failure is isolated to its token and leaves its cursor alone."""
        await monitor.run_cycle()
        assert await get_cursor(container, "DUSD") == 1000

        chain.mine(20)
        chain.fail_reads_for(DUSD_ADDRESS)
        event = chain.add_transfer(DCNY_ADDRESS, Decimal("3"), block_number=1005)

        cycle = await monitor.run_cycle()

        results = {scan.token: scan for scan in cycle.scans}
        assert results["DEUR"].success
        assert not results["DUSD"].success
        assert results["DCNY"].success
        assert await get_cursor(container, "DUSD") == 1000
        assert await get_cursor(container, "DEUR") == 1020
        assert await get_cursor(container, "DCNY") == 1020
        assert (await get_deposit(container, event.tx_hash)).status == DepositStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_height_failure_recorded(self, container, chain: SimulatedLedgerClient):
        """Test a height lookup failure is reported per token, not raised."""

        class BrokenChain(SimulatedLedgerClient):
            async def get_current_height(self) -> int:
                raise ChainReadError("node down")

        broken = ServiceContainer(
            settings=container.settings,
            database=container.database,
            ledger_client=BrokenChain(platform_address=chain.platform_address),
        )

        cycle = await DepositMonitor(broken).run_cycle()

        assert len(cycle.scans) == 3
        assert all(not scan.success for scan in cycle.scans)
        assert await get_cursor(container, "DEUR") is None

    @pytest.mark.asyncio
    async def test_cursor_monotonic_across_ticks(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, container
    ):
        """Test cursors never decrease, even if the node reports a lower height."""
        await monitor.run_cycle()
        chain.mine(10)
        await monitor.run_cycle()
        before = await get_cursor(container, "DEUR")

        chain.height -= 5
        await monitor.run_cycle()

        assert await get_cursor(container, "DEUR") == before

    @pytest.mark.asyncio
    async def test_repeated_cycles_are_idempotent(
        self, settings, database, chain: SimulatedLedgerClient
    ):
        """Test re-observing the same transfers never adds rows."""
        container = ServiceContainer(
            settings=settings.model_copy(update={"rescan_blocks": 50}),
            database=database,
            ledger_client=chain,
        )
        monitor = DepositMonitor(container)
        event = chain.add_transfer(DEUR_ADDRESS, Decimal("7"), block_number=995)

        for _ in range(4):
            await monitor.run_cycle()
            chain.mine(3)

        assert await count_deposits(container) == 1
        deposit = await get_deposit(container, event.tx_hash)
        assert deposit.status == DepositStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_store_failure_isolated_to_token(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, container, monkeypatch
    ):
        """Test a failed write rolls back its token's batch and spares the others."""
        await monitor.run_cycle()
        chain.mine(20)
        dusd_event = chain.add_transfer(DUSD_ADDRESS, Decimal("4"), block_number=1005)
        deur_event = chain.add_transfer(DEUR_ADDRESS, Decimal("6"), block_number=1006)

        original_upsert = LedgerRepository.upsert_deposit

        async def upsert_failing_for_dusd(self, **kwargs):
            if kwargs["currency"] == "DUSD":
                raise SQLAlchemyError("disk I/O error")
            return await original_upsert(self, **kwargs)

        monkeypatch.setattr(LedgerRepository, "upsert_deposit", upsert_failing_for_dusd)

        cycle = await monitor.run_cycle()

        results = {scan.token: scan for scan in cycle.scans}
        assert not results["DUSD"].success
        assert "disk I/O error" in results["DUSD"].error
        assert results["DEUR"].success
        assert results["DCNY"].success

        assert await get_cursor(container, "DUSD") == 1000
        assert await get_cursor(container, "DEUR") == 1020
        assert await get_cursor(container, "DCNY") == 1020
        assert await get_deposit(container, dusd_event.tx_hash) is None
        assert (await get_deposit(container, deur_event.tx_hash)).status == DepositStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_store_failure_raised_from_scan(
        self, monitor: DepositMonitor, chain: SimulatedLedgerClient, container, deur, monkeypatch
    ):
        """Test a failed cursor write surfaces as PersistenceError and keeps the batch out."""
        await monitor.scan_token(deur)
        chain.mine(20)
        event = chain.add_transfer(DEUR_ADDRESS, Decimal("9"), block_number=1002)

        async def failing_advance(self, token, block_number):
            raise SQLAlchemyError("database is locked")

        monkeypatch.setattr(LedgerRepository, "advance_sync_cursor", failing_advance)

        with pytest.raises(PersistenceError):
            await monitor.scan_token(deur)

        assert await get_cursor(container, "DEUR") == 1000
        assert await get_deposit(container, event.tx_hash) is None


class TestAccountResolvers:
    """Tests for the account resolver implementations."""

    def test_static_resolver_unknown(self):
        """Test an unknown address resolves to None."""
        resolver: AccountResolver = StaticAccountResolver({})

        assert resolver.resolve(USER_ADDRESS) is None
