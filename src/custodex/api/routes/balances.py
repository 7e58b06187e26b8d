"""On-chain balance lookups."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from custodex.api.app import get_container
from custodex.container import ServiceContainer
from custodex.errors import ChainReadError
from custodex.services.withdrawal_requests import is_valid_address

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/balance/{wallet_address}/{currency}")
async def get_balance(
    wallet_address: str,
    currency: str,
    container: ServiceContainer = Depends(get_container),
):
    """Token balance of any address, read from chain."""
    token = container.settings.get_token(currency)
    if token is None:
        raise HTTPException(status_code=400, detail=f"Unsupported currency: {currency}")
    if not is_valid_address(wallet_address):
        raise HTTPException(status_code=400, detail=f"Invalid address: {wallet_address}")

    try:
        balance = await container.ledger_client.get_balance(
            token.address, wallet_address, decimals=token.decimals
        )
    except ChainReadError as e:
        logger.error(f"Balance lookup failed for {wallet_address}: {e}")
        raise HTTPException(status_code=502, detail="Chain node unavailable")

    return {
        "wallet_address": wallet_address,
        "currency": token.symbol,
        "name": token.name,
        "balance": str(balance),
        "token_address": token.address,
    }
