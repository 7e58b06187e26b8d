"""Withdrawal request and status endpoints."""

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from custodex.api.app import get_container
from custodex.container import ServiceContainer
from custodex.ledger.models import Withdrawal
from custodex.ledger.repository import LedgerRepository
from custodex.services.withdrawal_requests import WithdrawalRequestService

router = APIRouter()


class WithdrawalRequestBody(BaseModel):
    """Request to withdraw tokens to an external address."""

    user_identity: str = Field(..., min_length=1, max_length=255)
    amount: Decimal
    currency: str = Field(..., min_length=1, max_length=50, description="Symbol or display name")
    to_address: str = Field(..., description="Destination address (0x...)")


def serialize_withdrawal(withdrawal: Withdrawal) -> dict:
    return {
        "id": withdrawal.id,
        "user_identity": withdrawal.user_identity,
        "amount": str(withdrawal.amount),
        "fee": str(withdrawal.fee),
        "net_amount": str(withdrawal.net_amount),
        "currency": withdrawal.currency,
        "to_address": withdrawal.to_address,
        "status": withdrawal.status,
        "tx_hash": withdrawal.tx_hash,
        "error_message": withdrawal.error_message,
        "created_at": withdrawal.created_at.isoformat() if withdrawal.created_at else None,
        "processed_at": withdrawal.processed_at.isoformat() if withdrawal.processed_at else None,
        "completed_at": withdrawal.completed_at.isoformat() if withdrawal.completed_at else None,
    }


@router.post("/withdrawal/request")
async def request_withdrawal(
    body: WithdrawalRequestBody,
    container: ServiceContainer = Depends(get_container),
):
    """Queue a withdrawal. It is settled by the next processing cycles."""
    service = WithdrawalRequestService(container)
    withdrawal = await service.submit_withdrawal(
        user_identity=body.user_identity,
        amount=body.amount,
        currency=body.currency,
        to_address=body.to_address,
    )
    return {
        "success": True,
        "withdrawal_id": withdrawal.id,
        "withdrawal": serialize_withdrawal(withdrawal),
    }


@router.get("/withdrawal/limit/{user_identity}")
async def get_daily_limit(
    user_identity: str,
    container: ServiceContainer = Depends(get_container),
):
    """Today's withdrawal usage against the daily cap."""
    service = WithdrawalRequestService(container)
    check = await service.check_daily_limit(user_identity, Decimal("0"))
    return {
        "user_identity": user_identity.lower(),
        "limit": str(check.limit),
        "used": str(check.used),
        "remaining": str(check.remaining),
    }


@router.get("/withdrawal/{withdrawal_id}")
async def get_withdrawal(
    withdrawal_id: int,
    container: ServiceContainer = Depends(get_container),
):
    """Status of a withdrawal."""
    async with container.database.session() as session:
        withdrawal = await LedgerRepository(session).get_withdrawal_by_id(withdrawal_id)
        if withdrawal is None:
            raise HTTPException(status_code=404, detail="Withdrawal not found")
        return serialize_withdrawal(withdrawal)
