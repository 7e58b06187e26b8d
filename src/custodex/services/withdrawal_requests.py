"""Withdrawal intake: fee calculation, daily limit and request validation."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Callable, Optional, Union

from custodex.container import ServiceContainer
from custodex.errors import LimitExceededError, ValidationError
from custodex.ledger.models import Withdrawal, utcnow
from custodex.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)

# Fees are kept to 8 decimal places
FEE_QUANTUM = Decimal("0.00000001")

# Amount columns are Numeric(36, 18)
MAX_AMOUNT = Decimal(10) ** 18
AMOUNT_SCALE = 18

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


def calculate_fee(amount: Decimal, fee_percent: Decimal) -> tuple[Decimal, Decimal]:
    """Split a withdrawal amount into fee and net amount.

    Args:
        amount: Requested amount
        fee_percent: Fee rate in percent (1.0 means 1%)

    Returns:
        (fee, net_amount) with fee + net_amount == amount
    """
    with localcontext() as ctx:
        ctx.prec = 80
        fee = (amount * fee_percent / Decimal(100)).quantize(FEE_QUANTUM, rounding=ROUND_HALF_UP)
        return fee, amount - fee


def utc_day_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Start and end of the UTC calendar day containing ``now``."""
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def parse_amount(value: Union[str, int, float, Decimal]) -> Decimal:
    """Parse a user-supplied amount into a positive Decimal.

    Raises:
        ValidationError: If the amount is not a positive finite number that
            fits the ledger amount columns
    """
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value!r}", field="amount")

    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be a positive number", field="amount")
    if amount >= MAX_AMOUNT:
        raise ValidationError(f"Amount must be below {MAX_AMOUNT:f}", field="amount")
    if amount.as_tuple().exponent < -AMOUNT_SCALE:
        raise ValidationError(
            f"Amount has more than {AMOUNT_SCALE} decimal places", field="amount"
        )
    return amount


def is_valid_address(address: str) -> bool:
    """Check for a 0x-prefixed, 20-byte hex address."""
    return bool(address) and ADDRESS_PATTERN.match(address) is not None


@dataclass
class DailyLimitCheck:
    """Result of a daily limit check."""

    allowed: bool
    remaining: Decimal
    used: Decimal
    limit: Decimal
    message: Optional[str] = None


class WithdrawalRequestService:
    """Accepts withdrawal requests into the settlement queue."""

    def __init__(
        self,
        container: ServiceContainer,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = container.settings
        self.database = container.database
        self.clock = clock

    async def _check_daily_limit(
        self, repo: LedgerRepository, user_identity: str, amount: Decimal
    ) -> DailyLimitCheck:
        limit = self.settings.max_daily_withdrawal
        start, end = utc_day_bounds(self.clock())
        used = await repo.sum_withdrawn(user_identity, start, end)
        remaining = max(limit - used, Decimal("0"))

        if used + amount > limit:
            return DailyLimitCheck(
                allowed=False,
                remaining=remaining,
                used=used,
                limit=limit,
                message=f"Daily limit exceeded. Remaining: {remaining}",
            )
        return DailyLimitCheck(allowed=True, remaining=remaining, used=used, limit=limit)

    async def check_daily_limit(self, user_identity: str, amount: Decimal) -> DailyLimitCheck:
        """Check whether ``amount`` fits in the user's cap for the current UTC day.

        Completed and processing withdrawals count towards the cap (by net
        amount); pending and failed ones do not.
        """
        async with self.database.session() as session:
            return await self._check_daily_limit(LedgerRepository(session), user_identity, amount)

    async def submit_withdrawal(
        self,
        user_identity: str,
        amount: Union[str, int, float, Decimal],
        currency: str,
        to_address: str,
    ) -> Withdrawal:
        """Validate a request and queue it as a pending withdrawal.

        Raises:
            ValidationError: If any field is invalid
            LimitExceededError: If the amount breaches the daily cap
        """
        if not user_identity or not user_identity.strip():
            raise ValidationError("User identity is required", field="user_identity")

        parsed_amount = parse_amount(amount)

        token = self.settings.get_token(currency or "")
        if token is None:
            raise ValidationError(f"Unsupported currency: {currency}", field="currency")

        if not is_valid_address(to_address):
            raise ValidationError(f"Invalid destination address: {to_address}", field="to_address")

        identity = user_identity.strip().lower()
        fee, net_amount = calculate_fee(parsed_amount, self.settings.withdrawal_fee_percent)

        async with self.database.session() as session:
            repo = LedgerRepository(session)

            check = await self._check_daily_limit(repo, identity, parsed_amount)
            if not check.allowed:
                logger.warning(
                    f"Withdrawal rejected for {identity}: {parsed_amount} {token.symbol} "
                    f"exceeds daily limit (remaining {check.remaining})"
                )
                raise LimitExceededError(check.message, remaining=check.remaining)

            withdrawal = await repo.create_withdrawal(
                user_identity=identity,
                amount=parsed_amount,
                fee=fee,
                net_amount=net_amount,
                currency=token.symbol,
                to_address=to_address,
            )

        logger.info(
            f"Withdrawal #{withdrawal.id} queued: {parsed_amount} {token.symbol} "
            f"(fee {fee}, net {net_amount}) to {to_address}"
        )
        return withdrawal
