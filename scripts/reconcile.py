#!/usr/bin/env python3
"""Platform Wallet Reconciliation Script.

Compares the platform wallet's on-chain token balances with the ledger and
reports withdrawals stuck in processing.

Usage:
    python scripts/reconcile.py [--currency DEUR] [--stranded-minutes 30]

Options:
    --currency          Only reconcile one token (default: all configured)
    --stranded-minutes  Minutes since pickup after which a processing withdrawal is reported
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta

from custodex.config import get_settings
from custodex.container import ServiceContainer
from custodex.errors import ChainReadError, ConfigurationError
from custodex.reconcile import reconcile_token

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def main() -> int:
    parser = argparse.ArgumentParser(description="Platform Wallet Reconciliation")
    parser.add_argument("--currency", type=str, help="Only reconcile one token")
    parser.add_argument(
        "--stranded-minutes", type=int, default=30, help="Report withdrawals processing for longer than this"
    )
    args = parser.parse_args()

    settings = get_settings()
    try:
        settings.validate_for_service()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    tokens = settings.tokens
    if args.currency:
        token = settings.get_token(args.currency)
        if token is None:
            logger.error(f"Unsupported currency: {args.currency}")
            return 1
        tokens = [token]

    container = ServiceContainer.from_settings(settings)
    await container.database.create_all()

    logger.info("=" * 60)
    logger.info("PLATFORM WALLET RECONCILIATION")
    logger.info("=" * 60)

    results = []
    try:
        for token in tokens:
            try:
                results.append(
                    await reconcile_token(
                        container, token, stranded_after=timedelta(minutes=args.stranded_minutes)
                    )
                )
            except ChainReadError as e:
                logger.error(f"{token.symbol}: balance lookup failed: {e}")
    finally:
        await container.close()

    # Summary
    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info("=" * 60)

    for r in results:
        logger.info(f"{r.currency}: {'OK' if r.ok else 'DISCREPANCY'}")
        logger.info(f"  Chain:      {r.chain_balance}")
        logger.info(f"  Deposited:  {r.deposited}")
        logger.info(f"  Withdrawn:  {r.withdrawn}")
        logger.info(f"  Expected:   {r.expected}")
        if r.stranded_withdrawals:
            logger.info(f"  Stranded:   {', '.join(f'#{i}' for i in r.stranded_withdrawals)}")

    return 0 if results and all(r.ok for r in results) else 2


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
