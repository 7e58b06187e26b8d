"""Platform wallet reconciliation.

Compares the on-chain token balance of the platform address with what the
ledger says it should hold (confirmed deposits minus completed withdrawals),
and lists withdrawals stuck in processing that need manual review.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from custodex.config import TokenConfig
from custodex.container import ServiceContainer
from custodex.ledger.models import WithdrawalStatus, utcnow
from custodex.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Reconciliation of one token."""

    currency: str
    chain_balance: Decimal
    deposited: Decimal
    withdrawn: Decimal
    expected: Decimal
    stranded_withdrawals: list[int] = field(default_factory=list)

    @property
    def discrepancy(self) -> Decimal:
        """Positive when the chain holds more than the ledger accounts for."""
        return self.chain_balance - self.expected

    @property
    def ok(self) -> bool:
        return self.discrepancy == 0 and not self.stranded_withdrawals


async def reconcile_token(
    container: ServiceContainer,
    token: TokenConfig,
    stranded_after: timedelta = timedelta(minutes=30),
) -> ReconciliationResult:
    """Reconcile one token's platform balance against the ledger.

    Fees stay in the platform wallet, so only net amounts are subtracted.
    """
    platform_address = container.settings.platform_wallet_address
    chain_balance = await container.ledger_client.get_balance(
        token.address, platform_address, decimals=token.decimals
    )

    async with container.database.session() as session:
        repo = LedgerRepository(session)
        totals = await repo.get_currency_totals(token.symbol)
        stranded = await repo.get_withdrawals_by_status(
            WithdrawalStatus.PROCESSING, processed_before=utcnow() - stranded_after
        )

    result = ReconciliationResult(
        currency=token.symbol,
        chain_balance=chain_balance,
        deposited=totals["deposited"],
        withdrawn=totals["withdrawn"],
        expected=totals["expected"],
        stranded_withdrawals=[w.id for w in stranded if w.currency == token.symbol],
    )

    if result.discrepancy != 0:
        logger.warning(
            f"{token.symbol}: chain balance {chain_balance} differs from ledger "
            f"{result.expected} by {result.discrepancy}"
        )
    for withdrawal_id in result.stranded_withdrawals:
        logger.warning(f"{token.symbol}: withdrawal #{withdrawal_id} stuck in processing")

    return result
