"""Deposit ingestion.

Scans each configured token for Transfer events to the platform address,
records them as deposits and tracks their confirmations until they reach
the finality threshold.

Every token has a durable sync cursor (the last fully scanned block). A scan
covers (cursor, current height], upserts every event by transaction hash and
then moves the cursor to the current height in the same transaction. A failed
scan rolls back, so the cursor only moves once the range has been recorded.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from custodex.chain.base import TransferEvent
from custodex.config import TokenConfig
from custodex.container import ServiceContainer
from custodex.errors import CustodexError
from custodex.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Outcome of scanning one token."""

    token: str
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    events: int = 0
    new_deposits: int = 0
    confirmed: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class CycleResult:
    """Outcome of one ingestion tick."""

    scans: list[ScanResult] = field(default_factory=list)
    promoted: int = 0


class DepositMonitor:
    """Deposit ingestion engine."""

    def __init__(self, container: ServiceContainer):
        self.settings = container.settings
        self.database = container.database
        self.client = container.ledger_client
        self.resolver = container.resolver

    @property
    def platform_address(self) -> str:
        return self.settings.platform_wallet_address or getattr(
            self.client, "platform_address", ""
        )

    @property
    def min_confirmations(self) -> int:
        return self.settings.min_confirmations

    async def scan_token(self, token: TokenConfig) -> ScanResult:
        """Scan one token from its cursor up to the current height.

        Raises:
            ChainReadError: If the chain could not be queried
            PersistenceError: If the store rejected the batch
        """
        result = ScanResult(token=token.symbol)
        current_height = await self.client.get_current_height()

        async with self.database.session() as session:
            cursor = await LedgerRepository(session).get_sync_cursor(token.symbol)

        if cursor is None:
            cursor = await self._initialize_cursor(token, current_height)
            if cursor >= current_height:
                return result

        if cursor + 1 > current_height:
            logger.debug(f"{token.symbol}: no new blocks (cursor {cursor})")
            return result

        from_block = max(0, cursor + 1 - self.settings.rescan_blocks)
        result.from_block = from_block
        result.to_block = current_height

        events = await self.client.get_transfer_events(
            token.address,
            self.platform_address,
            from_block,
            current_height,
            decimals=token.decimals,
        )
        result.events = len(events)

        async with self.database.session() as session:
            repo = LedgerRepository(session)
            for event in events:
                created, confirmed = await self._record_event(repo, token, event, current_height)
                if created:
                    result.new_deposits += 1
                if confirmed:
                    result.confirmed += 1
            await repo.advance_sync_cursor(token.symbol, current_height)

        if events:
            logger.info(
                f"{token.symbol}: scanned blocks {from_block}-{current_height}, "
                f"{len(events)} transfers, {result.new_deposits} new, {result.confirmed} confirmed"
            )
        else:
            logger.debug(f"{token.symbol}: cursor advanced to {current_height}")

        return result

    async def _initialize_cursor(self, token: TokenConfig, current_height: int) -> int:
        """Create the cursor for a token scanned for the first time."""
        start_block = self.settings.deposit_start_block
        initial = current_height if start_block is None else min(start_block, current_height)

        async with self.database.session() as session:
            cursor = await LedgerRepository(session).advance_sync_cursor(token.symbol, initial)

        logger.info(f"{token.symbol}: sync cursor initialized at block {cursor}")
        return cursor

    async def _record_event(
        self,
        repo: LedgerRepository,
        token: TokenConfig,
        event: TransferEvent,
        current_height: int,
    ) -> tuple[bool, bool]:
        """Upsert one Transfer event.

        Returns:
            (created, transitioned_to_confirmed)
        """
        confirmations = max(0, current_height - event.block_number)
        is_final = confirmations >= self.min_confirmations

        existing = await repo.get_deposit_by_tx_hash(event.tx_hash)
        was_confirmed = existing is not None and existing.is_confirmed

        deposit, created = await repo.upsert_deposit(
            tx_hash=event.tx_hash,
            user_identity=self.resolver.resolve(event.from_address),
            amount=event.value,
            currency=token.symbol,
            to_address=event.to_address.lower(),
            block_number=event.block_number,
            confirmations=confirmations,
            confirmed=is_final,
            from_address=event.from_address.lower(),
        )

        if created:
            logger.info(
                f"Deposit detected: {event.value} {token.symbol} from {event.from_address} "
                f"(tx: {event.tx_hash}, {confirmations}/{self.min_confirmations} confirmations)"
            )
            if deposit.user_identity is None:
                logger.warning(f"Deposit {event.tx_hash} has no resolvable owner")

        transitioned = deposit.is_confirmed and not was_confirmed
        if transitioned:
            logger.info(f"Deposit confirmed: {event.value} {token.symbol} (tx: {event.tx_hash})")

        return created, transitioned

    async def refresh_pending(self) -> int:
        """Recompute confirmations of pending deposits and promote final ones.

        Returns:
            Number of deposits promoted to confirmed
        """
        current_height = await self.client.get_current_height()
        promoted = 0

        async with self.database.session() as session:
            repo = LedgerRepository(session)
            pending = await repo.get_pending_deposits(limit=self.settings.pending_refresh_batch)

            for deposit in pending:
                confirmations = max(0, current_height - deposit.block_number)
                if repo.apply_confirmations(
                    deposit, confirmations, confirmations >= self.min_confirmations
                ):
                    promoted += 1
                    logger.info(
                        f"Deposit confirmed: {deposit.amount} {deposit.currency} "
                        f"(tx: {deposit.tx_hash})"
                    )

        return promoted

    async def run_cycle(self) -> CycleResult:
        """Scan every configured token, then refresh pending deposits.

        A failure in one token is logged and does not stop the others.
        """
        cycle = CycleResult()

        for token in self.settings.tokens:
            try:
                cycle.scans.append(await self.scan_token(token))
            except CustodexError as e:
                logger.error(f"{token.symbol}: scan failed, cursor unchanged: {e}")
                cycle.scans.append(ScanResult(token=token.symbol, error=str(e)))
            except Exception as e:
                logger.exception(f"{token.symbol}: unexpected scan error")
                cycle.scans.append(ScanResult(token=token.symbol, error=str(e) or type(e).__name__))

        try:
            cycle.promoted = await self.refresh_pending()
        except CustodexError as e:
            logger.error(f"Pending deposit refresh failed: {e}")

        return cycle
