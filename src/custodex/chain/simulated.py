"""In-memory chain for dry-run mode and tests."""

import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from custodex.chain.base import LedgerClient, TransferEvent
from custodex.errors import BroadcastError, ChainReadError

logger = logging.getLogger(__name__)


@dataclass
class SentTransfer:
    """A transfer sent through the simulated client."""

    token_address: str
    to_address: str
    amount: Decimal
    tx_hash: str


class SimulatedLedgerClient(LedgerClient):
    """Simulated chain (no network access).

    Height, transfer events and balances are set directly by the caller.
    Failures can be injected per operation to exercise error paths.
    """

    def __init__(self, platform_address: str = "0x" + "00" * 20, height: int = 1000):
        self.platform_address = platform_address
        self.height = height
        self.sent: list[SentTransfer] = []
        self._events: dict[str, list[TransferEvent]] = {}
        self._balances: dict[tuple[str, str], Decimal] = {}
        self._read_failures: set[str] = set()
        self._send_failures: list[BroadcastError] = []
        self.event_queries: list[tuple[str, int, int]] = []

    # Test controls
    def mine(self, blocks: int = 1) -> int:
        """Advance the chain height."""
        self.height += blocks
        return self.height

    def add_transfer(
        self,
        token_address: str,
        value: Decimal,
        block_number: Optional[int] = None,
        from_address: str = "0x" + "11" * 20,
        to_address: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> TransferEvent:
        """Record a Transfer event on a token contract."""
        events = self._events.setdefault(token_address.lower(), [])
        event = TransferEvent(
            from_address=from_address,
            to_address=to_address or self.platform_address,
            value=Decimal(value),
            tx_hash=tx_hash or "0x" + secrets.token_hex(32),
            block_number=self.height if block_number is None else block_number,
            log_index=len(events),
        )
        events.append(event)
        return event

    def set_balance(self, token_address: str, owner: str, amount: Decimal) -> None:
        """Set an address's token balance."""
        self._balances[(token_address.lower(), owner.lower())] = Decimal(amount)

    def fail_reads_for(self, token_address: str) -> None:
        """Make event queries for a token raise ChainReadError."""
        self._read_failures.add(token_address.lower())

    def fail_next_send(self, error: BroadcastError) -> None:
        """Queue an error for the next send_transfer call."""
        self._send_failures.append(error)

    # LedgerClient
    async def get_current_height(self) -> int:
        return self.height

    async def get_transfer_events(
        self,
        token_address: str,
        recipient: str,
        from_block: int,
        to_block: int,
        decimals: int = 18,
    ) -> list[TransferEvent]:
        token = token_address.lower()
        if token in self._read_failures:
            raise ChainReadError(f"Simulated read failure for {token_address}")

        self.event_queries.append((token, from_block, to_block))
        events = [
            e for e in self._events.get(token, [])
            if e.to_address.lower() == recipient.lower()
            and from_block <= e.block_number <= to_block
        ]
        return sorted(events, key=lambda e: (e.block_number, e.log_index))

    async def get_balance(self, token_address: str, owner: str, decimals: int = 18) -> Decimal:
        return self._balances.get((token_address.lower(), owner.lower()), Decimal("0"))

    async def send_transfer(
        self,
        token_address: str,
        to_address: str,
        amount: Decimal,
        decimals: int = 18,
    ) -> str:
        if self._send_failures:
            raise self._send_failures.pop(0)

        tx_hash = "0x" + secrets.token_hex(32)
        self.sent.append(SentTransfer(token_address, to_address, Decimal(amount), tx_hash))

        key = (token_address.lower(), self.platform_address.lower())
        if key in self._balances:
            self._balances[key] -= Decimal(amount)

        logger.info(f"[SIMULATED] Sent {amount} to {to_address} (tx: {tx_hash})")
        return tx_hash
