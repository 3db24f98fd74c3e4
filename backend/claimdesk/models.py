from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class NotificationStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    ABANDONED = "abandoned"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClaimNotification(Base):
    """Confirmed claim awaiting (or past) delivery to the bookkeeping service."""

    __tablename__ = "claim_notifications"
    __table_args__ = (
        UniqueConstraint("campaign_address", "ticket_id", name="uq_claim_notifications_ticket"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    campaign_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    ticket_id: Mapped[int] = mapped_column(Integer, nullable=False)
    payout: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=NotificationStatus.PENDING.value, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
