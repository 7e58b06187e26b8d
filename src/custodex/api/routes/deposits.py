"""Deposit endpoints used by the accounting system."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from custodex.api.app import get_container
from custodex.container import ServiceContainer
from custodex.ledger.models import Deposit
from custodex.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)

router = APIRouter()


class MarkProcessedRequest(BaseModel):
    """Deposits credited by accounting."""

    deposit_ids: list[int] = Field(..., description="IDs of deposits to mark as processed")


def serialize_deposit(deposit: Deposit) -> dict:
    return {
        "id": deposit.id,
        "user_identity": deposit.user_identity,
        "amount": str(deposit.amount),
        "currency": deposit.currency,
        "tx_hash": deposit.tx_hash,
        "from_address": deposit.from_address,
        "to_address": deposit.to_address,
        "block_number": deposit.block_number,
        "status": deposit.status,
        "confirmations": deposit.confirmations,
        "created_at": deposit.created_at.isoformat() if deposit.created_at else None,
        "confirmed_at": deposit.confirmed_at.isoformat() if deposit.confirmed_at else None,
    }


@router.get("/deposits/{user_identity}/pending")
async def get_pending_deposits(
    user_identity: str,
    container: ServiceContainer = Depends(get_container),
):
    """Confirmed deposits of a user not yet credited."""
    async with container.database.session() as session:
        repo = LedgerRepository(session)
        deposits = await repo.get_unprocessed_deposits(user_identity)
        return [serialize_deposit(d) for d in deposits]


@router.post("/deposits/mark-processed")
async def mark_deposits_processed(
    payload: MarkProcessedRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Record that accounting has credited the given deposits."""
    async with container.database.session() as session:
        repo = LedgerRepository(session)
        marked = await repo.mark_deposits_processed(payload.deposit_ids)

    logger.info(f"Marked {marked}/{len(payload.deposit_ids)} deposits as processed")
    return {"success": True, "marked": marked}
