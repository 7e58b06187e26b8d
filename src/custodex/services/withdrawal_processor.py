"""Withdrawal settlement.

Takes pending withdrawals oldest first and pays each one out of the platform
wallet. A withdrawal is claimed (pending -> processing) with a conditional
update before anything is sent, so two workers can never pay the same row.
The outcome is terminal: completed with a transaction hash, or failed with
the error text. Failed withdrawals are left for manual review and never
picked up again.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from custodex.config import TokenConfig
from custodex.container import ServiceContainer
from custodex.errors import BroadcastError, CustodexError
from custodex.ledger.models import Withdrawal, WithdrawalStatus
from custodex.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome of one settlement tick."""

    picked: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0


class WithdrawalProcessor:
    """Withdrawal settlement engine."""

    def __init__(self, container: ServiceContainer):
        self.settings = container.settings
        self.database = container.database
        self.client = container.ledger_client

    async def process_queue(self) -> ProcessResult:
        """Settle one batch of pending withdrawals, one at a time."""
        result = ProcessResult()

        async with self.database.session() as session:
            pending = await LedgerRepository(session).get_pending_withdrawals(
                limit=self.settings.withdrawal_batch_size
            )

        if not pending:
            return result

        logger.info(f"Processing {len(pending)} pending withdrawals")
        result.picked = len(pending)

        for index, withdrawal in enumerate(pending):
            if index > 0 and self.settings.withdrawal_delay_seconds > 0:
                await asyncio.sleep(self.settings.withdrawal_delay_seconds)

            try:
                status = await self.process_withdrawal(withdrawal)
            except CustodexError as e:
                logger.error(f"Withdrawal #{withdrawal.id} could not be settled: {e}")
                result.skipped += 1
                continue

            if status == WithdrawalStatus.COMPLETED:
                result.completed += 1
            elif status == WithdrawalStatus.FAILED:
                result.failed += 1
            else:
                result.skipped += 1

        return result

    async def process_withdrawal(self, withdrawal: Withdrawal) -> Optional[WithdrawalStatus]:
        """Claim, pay and finalize a single withdrawal.

        Returns:
            The terminal status, or None if another worker owns the withdrawal
            or it left processing before completion was recorded

        Raises:
            PersistenceError: If the claim or the final status could not be stored
        """
        async with self.database.session() as session:
            claimed = await LedgerRepository(session).claim_withdrawal(withdrawal.id)

        if not claimed:
            logger.info(f"Withdrawal #{withdrawal.id} already claimed, skipping")
            return None

        logger.info(
            f"Withdrawal #{withdrawal.id}: sending {withdrawal.net_amount} {withdrawal.currency} "
            f"to {withdrawal.to_address}"
        )

        try:
            token = self.settings.get_token(withdrawal.currency)
            if token is None:
                raise BroadcastError(f"Unsupported currency: {withdrawal.currency}")
            tx_hash = await self._send_with_retry(token, withdrawal)
        except CustodexError as e:
            error_message = str(e)
        except Exception as e:
            logger.exception(f"Withdrawal #{withdrawal.id}: unexpected broadcast error")
            error_message = str(e) or type(e).__name__
        else:
            return await self._complete(withdrawal, tx_hash)

        async with self.database.session() as session:
            await LedgerRepository(session).fail_withdrawal(withdrawal.id, error_message)

        logger.error(f"Withdrawal #{withdrawal.id} failed: {error_message}")
        return WithdrawalStatus.FAILED

    async def _complete(self, withdrawal: Withdrawal, tx_hash: str) -> Optional[WithdrawalStatus]:
        try:
            async with self.database.session() as session:
                updated = await LedgerRepository(session).complete_withdrawal(withdrawal.id, tx_hash)
        except CustodexError:
            # Paid on chain but not recorded; the row stays in processing
            logger.critical(
                f"Withdrawal #{withdrawal.id} was sent (tx: {tx_hash}) "
                f"but could not be marked completed"
            )
            raise

        if not updated:
            logger.warning(
                f"Withdrawal #{withdrawal.id} was sent (tx: {tx_hash}) "
                f"but was no longer processing, status left unchanged"
            )
            return None

        logger.info(f"Withdrawal #{withdrawal.id} completed (tx: {tx_hash})")
        return WithdrawalStatus.COMPLETED

    async def _send_with_retry(self, token: TokenConfig, withdrawal: Withdrawal) -> str:
        """Send the transfer, retrying only failures that never reached the network."""
        attempts = max(1, self.settings.broadcast_max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return await self.client.send_transfer(
                    token.address,
                    withdrawal.to_address,
                    withdrawal.net_amount,
                    decimals=token.decimals,
                )
            except BroadcastError as e:
                if not e.retryable or attempt >= attempts:
                    raise
                backoff = self.settings.broadcast_retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"Withdrawal #{withdrawal.id}: attempt {attempt}/{attempts} failed ({e}), "
                    f"retrying in {backoff}s"
                )
                if backoff > 0:
                    await asyncio.sleep(backoff)

        raise BroadcastError(f"Withdrawal #{withdrawal.id}: no broadcast attempt made")
