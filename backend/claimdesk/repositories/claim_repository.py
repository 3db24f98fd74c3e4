"""Claim notification outbox persistence."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from claimdesk.models import ClaimNotification, NotificationStatus


class ClaimNotificationRepository:
    """Encapsulate the outbox of confirmed claims owed to the bookkeeping service."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def enqueue(
        self,
        *,
        campaign_address: str,
        ticket_id: int,
        payout: int,
        tx_hash: str | None,
    ) -> ClaimNotification:
        campaign_address = campaign_address.lower()
        existing = self.get_for_ticket(campaign_address, ticket_id)
        if existing is not None:
            if tx_hash and not existing.tx_hash:
                existing.tx_hash = tx_hash
            return existing

        record = ClaimNotification(
            campaign_address=campaign_address,
            ticket_id=ticket_id,
            payout=payout,
            tx_hash=tx_hash,
            status=NotificationStatus.PENDING.value,
            attempts=0,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def mark_delivered(self, record: ClaimNotification, *, delivered_at: datetime | None = None) -> None:
        record.attempts += 1
        record.status = NotificationStatus.DELIVERED.value
        record.delivered_at = delivered_at or datetime.now(timezone.utc)
        record.last_error = None

    def mark_failed(self, record: ClaimNotification, *, error: str, max_attempts: int | None = None) -> None:
        record.attempts += 1
        record.last_error = error
        if max_attempts is not None and record.attempts >= max_attempts:
            record.status = NotificationStatus.ABANDONED.value

    # ------------------------------------------------------------------
    # Queries

    def get(self, notification_id: int) -> ClaimNotification | None:
        return self._session.get(ClaimNotification, notification_id)

    def get_for_ticket(self, campaign_address: str, ticket_id: int) -> ClaimNotification | None:
        query = select(ClaimNotification).where(
            ClaimNotification.campaign_address == campaign_address.lower(),
            ClaimNotification.ticket_id == ticket_id,
        )
        return self._session.execute(query).scalars().first()

    def list_pending(self, *, limit: int | None = None) -> list[ClaimNotification]:
        query = (
            select(ClaimNotification)
            .where(ClaimNotification.status == NotificationStatus.PENDING.value)
            .order_by(ClaimNotification.confirmed_at, ClaimNotification.id)
        )
        if limit:
            query = query.limit(limit)
        return list(self._session.execute(query).scalars().all())
