"""Base interface for the ledger client.

The ledger client is the only component that talks to the chain. The
engines treat it as an untrusted, possibly slow, eventually consistent
oracle: every read may raise ChainReadError and every send may raise
BroadcastError.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class TransferEvent:
    """An ERC-20 Transfer event, value already scaled by token decimals."""

    from_address: str
    to_address: str
    value: Decimal
    tx_hash: str
    block_number: int
    log_index: int = 0


class LedgerClient(ABC):
    """Abstract chain access used by both engines."""

    @abstractmethod
    async def get_current_height(self) -> int:
        """Get the current block height."""
        pass

    @abstractmethod
    async def get_transfer_events(
        self,
        token_address: str,
        recipient: str,
        from_block: int,
        to_block: int,
        decimals: int = 18,
    ) -> list[TransferEvent]:
        """Get Transfer events to ``recipient`` in [from_block, to_block].

        Returns:
            Events in ascending (block, log index) order
        """
        pass

    @abstractmethod
    async def get_balance(self, token_address: str, owner: str, decimals: int = 18) -> Decimal:
        """Get the token balance of an address."""
        pass

    @abstractmethod
    async def send_transfer(
        self,
        token_address: str,
        to_address: str,
        amount: Decimal,
        decimals: int = 18,
    ) -> str:
        """Sign and send a token transfer from the platform wallet.

        Returns:
            Transaction hash
        """
        pass

    async def close(self) -> None:
        """Release network resources."""
        pass
