"""SQLAlchemy models for the ledger."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Numeric, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class DepositStatus(str, Enum):
    """Status of a deposit."""

    PENDING = "pending"          # Seen on chain, below the finality threshold
    CONFIRMED = "confirmed"      # Reached the finality threshold


class WithdrawalStatus(str, Enum):
    """Status of a withdrawal."""

    PENDING = "pending"          # Accepted, waiting in the queue
    PROCESSING = "processing"    # Claimed by the settlement engine
    COMPLETED = "completed"      # Broadcast succeeded
    FAILED = "failed"            # Broadcast failed, needs manual review


# Statuses that count against the daily withdrawal cap
LIMITED_WITHDRAWAL_STATUSES = (WithdrawalStatus.COMPLETED, WithdrawalStatus.PROCESSING)


class Deposit(Base):
    """One row per inbound transfer observed on chain.

    The transaction hash is the natural key; re-observing a hash updates the
    confirmation count instead of inserting a new row.
    """

    __tablename__ = "deposits"
    __table_args__ = (
        Index("ix_deposits_user_identity", "user_identity"),
        Index("ix_deposits_status", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_identity: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    currency: Mapped[str] = mapped_column(String(20), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    from_address: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_address: Mapped[str] = mapped_column(String(50), nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[DepositStatus] = mapped_column(
        String(20), default=DepositStatus.PENDING, nullable=False
    )
    confirmations: Mapped[int] = mapped_column(default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_confirmed(self) -> bool:
        return self.status == DepositStatus.CONFIRMED


class Withdrawal(Base):
    """One row per outbound payment request."""

    __tablename__ = "withdrawals"
    __table_args__ = (
        Index("ix_withdrawals_user_identity", "user_identity"),
        Index("ix_withdrawals_status", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_identity: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    fee: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    net_amount: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)  # amount - fee
    currency: Mapped[str] = mapped_column(String(20), nullable=False)
    to_address: Mapped[str] = mapped_column(String(50), nullable=False)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[WithdrawalStatus] = mapped_column(
        String(20), default=WithdrawalStatus.PENDING, nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        """Completed and failed withdrawals never change again."""
        return self.status in (WithdrawalStatus.COMPLETED, WithdrawalStatus.FAILED)


class SyncState(Base):
    """Last block fully scanned for a monitored token."""

    __tablename__ = "sync_state"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    last_block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_sync_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
