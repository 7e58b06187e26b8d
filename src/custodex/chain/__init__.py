"""Chain access for deposit scanning and withdrawal settlement."""

import logging

from custodex.chain.base import LedgerClient, TransferEvent
from custodex.chain.rpc import JsonRpcLedgerClient
from custodex.chain.simulated import SimulatedLedgerClient
from custodex.config import Settings

logger = logging.getLogger(__name__)


def create_ledger_client(settings: Settings) -> LedgerClient:
    """Create the ledger client for the configured mode.

    Dry-run mode gets an in-memory chain; otherwise a JSON-RPC client.
    """
    if settings.dry_run:
        logger.info("DRY_RUN enabled, using simulated chain")
        return SimulatedLedgerClient(
            platform_address=settings.platform_wallet_address or "0x" + "00" * 20
        )

    return JsonRpcLedgerClient(
        rpc_url=settings.rpc_url,
        platform_address=settings.platform_wallet_address,
        private_key=settings.platform_wallet_private_key,
        chain_id=settings.chain_id,
        timeout=settings.rpc_timeout,
        max_block_range=settings.log_block_range,
        receipt_timeout=settings.receipt_timeout,
    )


__all__ = [
    "JsonRpcLedgerClient",
    "LedgerClient",
    "SimulatedLedgerClient",
    "TransferEvent",
    "create_ledger_client",
]
