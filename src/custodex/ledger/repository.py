"""Repository for ledger operations."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from custodex.ledger.models import (
    LIMITED_WITHDRAWAL_STATUSES,
    Deposit,
    DepositStatus,
    SyncState,
    Withdrawal,
    WithdrawalStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Deposit operations
    async def get_deposit_by_tx_hash(self, tx_hash: str) -> Optional[Deposit]:
        """Get deposit by transaction hash."""
        stmt = select(Deposit).where(Deposit.tx_hash == tx_hash)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_deposit_by_id(self, deposit_id: int) -> Optional[Deposit]:
        """Get deposit by ID."""
        stmt = select(Deposit).where(Deposit.id == deposit_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_deposit(
        self,
        tx_hash: str,
        user_identity: Optional[str],
        amount: Decimal,
        currency: str,
        to_address: str,
        block_number: int,
        confirmations: int,
        confirmed: bool,
        from_address: Optional[str] = None,
    ) -> tuple[Deposit, bool]:
        """Insert a deposit or update the existing row for the same hash.

        Returns:
            (deposit, created) where created is False for a re-observation
        """
        existing = await self.get_deposit_by_tx_hash(tx_hash)
        if existing is not None:
            self.apply_confirmations(existing, confirmations, confirmed)
            await self.session.flush()
            return existing, False

        deposit = Deposit(
            tx_hash=tx_hash,
            user_identity=user_identity,
            amount=amount,
            currency=currency,
            from_address=from_address,
            to_address=to_address,
            block_number=block_number,
            confirmations=max(0, confirmations),
            status=DepositStatus.CONFIRMED if confirmed else DepositStatus.PENDING,
            confirmed_at=utcnow() if confirmed else None,
        )

        try:
            async with self.session.begin_nested():
                self.session.add(deposit)
                await self.session.flush()
        except IntegrityError:
            # Another writer inserted the same hash first
            logger.debug(f"Deposit {tx_hash} inserted concurrently, updating instead")
            existing = await self.get_deposit_by_tx_hash(tx_hash)
            if existing is None:
                raise
            self.apply_confirmations(existing, confirmations, confirmed)
            await self.session.flush()
            return existing, False

        return deposit, True

    @staticmethod
    def apply_confirmations(deposit: Deposit, confirmations: int, confirmed: bool) -> bool:
        """Move a deposit forward; never lowers confirmations or un-confirms.

        Returns:
            True if the deposit transitioned to confirmed
        """
        if confirmations > deposit.confirmations:
            deposit.confirmations = confirmations

        if confirmed and deposit.status != DepositStatus.CONFIRMED:
            deposit.status = DepositStatus.CONFIRMED
            deposit.confirmed_at = utcnow()
            return True
        return False

    async def get_pending_deposits(self, limit: int = 100) -> list[Deposit]:
        """Get deposits still below the finality threshold, oldest first."""
        stmt = (
            select(Deposit)
            .where(Deposit.status == DepositStatus.PENDING)
            .order_by(Deposit.created_at, Deposit.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_unprocessed_deposits(self, user_identity: str) -> list[Deposit]:
        """Get confirmed deposits not yet credited by accounting."""
        stmt = (
            select(Deposit)
            .where(
                Deposit.user_identity == user_identity.lower(),
                Deposit.status == DepositStatus.CONFIRMED,
                Deposit.processed_at.is_(None),
            )
            .order_by(Deposit.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_deposits_processed(self, deposit_ids: list[int]) -> int:
        """Stamp processed_at on confirmed deposits that do not have one yet.

        Returns:
            Number of deposits marked
        """
        if not deposit_ids:
            return 0
        stmt = (
            update(Deposit)
            .where(
                Deposit.id.in_(deposit_ids),
                Deposit.status == DepositStatus.CONFIRMED,
                Deposit.processed_at.is_(None),
            )
            .values(processed_at=utcnow())
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    # Sync cursor operations
    async def get_sync_cursor(self, token: str) -> Optional[int]:
        """Get the last fully scanned block for a token."""
        stmt = select(SyncState.last_block_number).where(SyncState.token == token.upper())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def advance_sync_cursor(self, token: str, block_number: int) -> int:
        """Move a token's cursor forward. A lower block never rewinds it.

        Returns:
            The cursor value after the call
        """
        stmt = select(SyncState).where(SyncState.token == token.upper())
        result = await self.session.execute(stmt)
        state = result.scalar_one_or_none()

        if state is None:
            state = SyncState(token=token.upper(), last_block_number=block_number)
            self.session.add(state)
        elif block_number > state.last_block_number:
            state.last_block_number = block_number
        state.last_sync_at = utcnow()

        await self.session.flush()
        return state.last_block_number

    # Withdrawal operations
    async def create_withdrawal(
        self,
        user_identity: str,
        amount: Decimal,
        fee: Decimal,
        net_amount: Decimal,
        currency: str,
        to_address: str,
    ) -> Withdrawal:
        """Create a pending withdrawal request."""
        withdrawal = Withdrawal(
            user_identity=user_identity.lower(),
            amount=amount,
            fee=fee,
            net_amount=net_amount,
            currency=currency,
            to_address=to_address,
            status=WithdrawalStatus.PENDING,
        )
        self.session.add(withdrawal)
        await self.session.flush()
        return withdrawal

    async def get_withdrawal_by_id(self, withdrawal_id: int) -> Optional[Withdrawal]:
        """Get withdrawal by ID."""
        stmt = select(Withdrawal).where(Withdrawal.id == withdrawal_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_pending_withdrawals(self, limit: int = 10) -> list[Withdrawal]:
        """Get the oldest pending withdrawals, FIFO by creation time."""
        stmt = (
            select(Withdrawal)
            .where(Withdrawal.status == WithdrawalStatus.PENDING)
            .order_by(Withdrawal.created_at, Withdrawal.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_withdrawals_by_status(
        self,
        status: WithdrawalStatus,
        processed_before: Optional[datetime] = None,
    ) -> list[Withdrawal]:
        """Get withdrawals in a status, optionally only those picked up before a time."""
        stmt = select(Withdrawal).where(Withdrawal.status == status)
        if processed_before is not None:
            stmt = stmt.where(Withdrawal.processed_at < processed_before)
        stmt = stmt.order_by(Withdrawal.created_at, Withdrawal.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def _transition_withdrawal(
        self,
        withdrawal_id: int,
        from_status: WithdrawalStatus,
        **values,
    ) -> bool:
        """Conditional status update; succeeds only from the expected status."""
        stmt = (
            update(Withdrawal)
            .where(Withdrawal.id == withdrawal_id, Withdrawal.status == from_status)
            .values(**values)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def claim_withdrawal(self, withdrawal_id: int) -> bool:
        """Claim a pending withdrawal (pending -> processing).

        Returns:
            True if this caller now owns the withdrawal
        """
        return await self._transition_withdrawal(
            withdrawal_id,
            WithdrawalStatus.PENDING,
            status=WithdrawalStatus.PROCESSING,
            processed_at=utcnow(),
        )

    async def complete_withdrawal(self, withdrawal_id: int, tx_hash: str) -> bool:
        """Mark a claimed withdrawal as completed with its transaction hash."""
        if not tx_hash:
            raise ValueError("A completed withdrawal requires a transaction hash")
        return await self._transition_withdrawal(
            withdrawal_id,
            WithdrawalStatus.PROCESSING,
            status=WithdrawalStatus.COMPLETED,
            tx_hash=tx_hash,
            completed_at=utcnow(),
        )

    async def fail_withdrawal(self, withdrawal_id: int, error_message: str) -> bool:
        """Mark a claimed withdrawal as failed with the error text."""
        return await self._transition_withdrawal(
            withdrawal_id,
            WithdrawalStatus.PROCESSING,
            status=WithdrawalStatus.FAILED,
            error_message=error_message or "Unknown error",
            processed_at=utcnow(),
        )

    async def sum_withdrawn(
        self, user_identity: str, start: datetime, end: datetime
    ) -> Decimal:
        """Sum net amounts counted against the daily cap in [start, end)."""
        stmt = select(func.sum(Withdrawal.net_amount)).where(
            Withdrawal.user_identity == user_identity.lower(),
            Withdrawal.status.in_(LIMITED_WITHDRAWAL_STATUSES),
            Withdrawal.created_at >= start,
            Withdrawal.created_at < end,
        )
        result = await self.session.execute(stmt)
        total = result.scalar()
        return Decimal(str(total)) if total is not None else Decimal("0")

    # Reconciliation
    async def get_currency_totals(self, currency: str) -> dict[str, Decimal]:
        """Totals the platform balance should reflect for a currency."""
        deposits_stmt = select(func.sum(Deposit.amount)).where(
            Deposit.currency == currency,
            Deposit.status == DepositStatus.CONFIRMED,
        )
        withdrawals_stmt = select(func.sum(Withdrawal.net_amount)).where(
            Withdrawal.currency == currency,
            Withdrawal.status == WithdrawalStatus.COMPLETED,
        )
        deposited = (await self.session.execute(deposits_stmt)).scalar()
        withdrawn = (await self.session.execute(withdrawals_stmt)).scalar()
        deposited = Decimal(str(deposited)) if deposited is not None else Decimal("0")
        withdrawn = Decimal(str(withdrawn)) if withdrawn is not None else Decimal("0")
        return {
            "deposited": deposited,
            "withdrawn": withdrawn,
            "expected": deposited - withdrawn,
        }
