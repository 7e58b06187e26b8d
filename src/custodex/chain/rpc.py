"""JSON-RPC ledger client for EVM chains.

Reads go straight to the node with httpx; outbound transfers are signed
locally with eth_account and sent as raw transactions.
"""

import asyncio
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Any, Optional

import httpx
from eth_account import Account
from web3 import Web3

from custodex.chain.base import LedgerClient, TransferEvent
from custodex.errors import BroadcastError, ChainReadError

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# ERC20 method selectors
BALANCE_OF_SELECTOR = "0x70a08231"
TRANSFER_SELECTOR = "0xa9059cbb"

# ERC20 transfers need more gas than native transfers
TRANSFER_GAS_LIMIT = 100000


def _address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte log topic."""
    return "0x" + address.lower().replace("0x", "").zfill(64)


def _hex(value: Any) -> str:
    """HexBytes/bytes to a 0x-prefixed hex string."""
    text = value.hex() if hasattr(value, "hex") else str(value)
    return text if text.startswith("0x") else f"0x{text}"


def to_token_units(amount: Decimal, decimals: int) -> int:
    """Convert a decimal token amount to integer base units (rounding down)."""
    return int((amount * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def from_token_units(value: int, decimals: int) -> Decimal:
    """Convert integer base units to a decimal token amount."""
    return Decimal(value) / (Decimal(10) ** decimals)


class JsonRpcLedgerClient(LedgerClient):
    """Ledger client backed by a single JSON-RPC endpoint."""

    def __init__(
        self,
        rpc_url: str,
        platform_address: str,
        private_key: Optional[str] = None,
        chain_id: int = 137,
        timeout: float = 30.0,
        max_block_range: int = 2000,
        receipt_timeout: float = 120.0,
        receipt_poll_interval: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            rpc_url: JSON-RPC endpoint
            platform_address: Address that receives deposits and pays withdrawals
            private_key: Signing key of the platform address
            chain_id: Chain ID used when signing
            timeout: Per-request timeout in seconds
            max_block_range: Largest block span per eth_getLogs call
            receipt_timeout: Seconds to wait for a sent transaction to be mined
            receipt_poll_interval: Seconds between receipt polls
            transport: Optional httpx transport (tests)
        """
        self.rpc_url = rpc_url
        self.platform_address = platform_address
        self.chain_id = chain_id
        self.max_block_range = max(1, max_block_range)
        self.receipt_timeout = receipt_timeout
        self.receipt_poll_interval = receipt_poll_interval
        self._private_key = private_key
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._request_id = 0

    async def _rpc(self, method: str, params: list) -> Any:
        """Call a JSON-RPC method and return its result."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise ChainReadError(f"{method} request failed: {e}") from e

        if response.status_code != 200:
            raise ChainReadError(f"{method} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ChainReadError(f"{method} returned malformed JSON") from e

        if "error" in data:
            error = data["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ChainReadError(f"{method} error: {message}")

        if "result" not in data:
            raise ChainReadError(f"{method} returned no result")

        return data["result"]

    async def get_current_height(self) -> int:
        """Get current block height."""
        result = await self._rpc("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise ChainReadError(f"Malformed block number: {result!r}") from e

    async def get_transfer_events(
        self,
        token_address: str,
        recipient: str,
        from_block: int,
        to_block: int,
        decimals: int = 18,
    ) -> list[TransferEvent]:
        """Get Transfer events to recipient, split into bounded eth_getLogs calls."""
        events: list[TransferEvent] = []
        start = from_block

        while start <= to_block:
            end = min(start + self.max_block_range - 1, to_block)
            logs = await self._rpc(
                "eth_getLogs",
                [{
                    "address": token_address,
                    "fromBlock": hex(start),
                    "toBlock": hex(end),
                    "topics": [TRANSFER_TOPIC, None, _address_topic(recipient)],
                }],
            )
            for log in logs or []:
                if log.get("removed"):
                    continue
                events.append(self._parse_transfer_log(log, decimals))
            start = end + 1

        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    @staticmethod
    def _parse_transfer_log(log: dict, decimals: int) -> TransferEvent:
        """Parse an eth_getLogs entry for a Transfer event."""
        try:
            topics = log["topics"]
            return TransferEvent(
                from_address="0x" + topics[1][-40:],
                to_address="0x" + topics[2][-40:],
                value=from_token_units(int(log["data"], 16), decimals),
                tx_hash=log["transactionHash"],
                block_number=int(log["blockNumber"], 16),
                log_index=int(log.get("logIndex", "0x0"), 16),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ChainReadError(f"Malformed Transfer log: {log!r}") from e

    async def get_balance(self, token_address: str, owner: str, decimals: int = 18) -> Decimal:
        """Get token balance via balanceOf(address)."""
        data = BALANCE_OF_SELECTOR + owner.lower().replace("0x", "").zfill(64)
        result = await self._rpc("eth_call", [{"to": token_address, "data": data}, "latest"])
        if not result or result == "0x":
            raise ChainReadError(f"balanceOf returned no data for {token_address}")
        try:
            return from_token_units(int(result, 16), decimals)
        except (TypeError, ValueError) as e:
            raise ChainReadError(f"Malformed balance: {result!r}") from e

    async def send_transfer(
        self,
        token_address: str,
        to_address: str,
        amount: Decimal,
        decimals: int = 18,
    ) -> str:
        """Sign, send and wait for an ERC20 transfer from the platform wallet."""
        if not self._private_key:
            raise BroadcastError("Signing credentials not configured")

        units = to_token_units(amount, decimals)
        if units <= 0:
            raise BroadcastError(f"Amount {amount} is below the token's smallest unit")

        try:
            account = Account.from_key(self._private_key)
            checksum_token = Web3.to_checksum_address(token_address)
            checksum_to = Web3.to_checksum_address(to_address)
        except ValueError as e:
            raise BroadcastError(f"Cannot build transfer: {e}") from e

        try:
            nonce = int(await self._rpc("eth_getTransactionCount", [account.address, "pending"]), 16)
            gas_price = int(await self._rpc("eth_gasPrice", []), 16)
        except (ChainReadError, TypeError, ValueError) as e:
            # Nothing has been sent yet
            raise BroadcastError(f"Cannot prepare transfer: {e}", retryable=True) from e

        # transfer(address to, uint256 amount)
        data = (
            TRANSFER_SELECTOR
            + checksum_to.lower().replace("0x", "").zfill(64)
            + hex(units)[2:].zfill(64)
        )
        tx = {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": TRANSFER_GAS_LIMIT,
            "to": checksum_token,
            "value": 0,
            "data": data,
            "chainId": self.chain_id,
        }

        signed_tx = account.sign_transaction(tx)
        tx_hash = _hex(signed_tx.hash)
        raw_tx = _hex(signed_tx.raw_transaction)

        try:
            await self._rpc("eth_sendRawTransaction", [raw_tx])
        except ChainReadError as e:
            raise BroadcastError(f"Broadcast of {tx_hash} rejected: {e}", tx_hash=tx_hash) from e

        logger.info(f"Transfer broadcast: {amount} to {checksum_to} (tx: {tx_hash})")

        await self._wait_for_receipt(tx_hash)
        return tx_hash

    async def _wait_for_receipt(self, tx_hash: str) -> None:
        """Block until the transaction is mined; raise if it reverted or never lands."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.receipt_timeout

        while True:
            try:
                receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash])
            except ChainReadError as e:
                logger.warning(f"Receipt lookup for {tx_hash} failed: {e}")
                receipt = None

            if receipt is not None:
                if int(receipt.get("status", "0x0"), 16) == 1:
                    return
                raise BroadcastError(f"Transaction {tx_hash} reverted", tx_hash=tx_hash)

            if loop.time() >= deadline:
                raise BroadcastError(
                    f"Transaction {tx_hash} not mined within {self.receipt_timeout}s",
                    tx_hash=tx_hash,
                )
            await asyncio.sleep(self.receipt_poll_interval)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
