"""Journal confirmed claims and deliver them to the bookkeeping service."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from claimdesk.db import session_scope
from claimdesk.domain import SourceUnavailable
from claimdesk.models import ClaimNotification, NotificationStatus
from claimdesk.repositories import ClaimNotificationRepository


class ClaimNotifier(Protocol):
    async def notify_claim(
        self, *, campaign_address: str, ticket_id: int, payout: int, tx_hash: str | None
    ) -> None:
        raise NotImplementedError


@dataclass(slots=True)
class JournalEntry:
    """Detached snapshot of a ``ClaimNotification`` row."""

    id: int
    campaign_address: str
    ticket_id: int
    payout: int
    tx_hash: str | None
    status: str
    attempts: int
    last_error: str | None = None

    @classmethod
    def from_row(cls, row: ClaimNotification) -> "JournalEntry":
        return cls(
            id=row.id,
            campaign_address=row.campaign_address,
            ticket_id=row.ticket_id,
            payout=int(row.payout),
            tx_hash=row.tx_hash,
            status=row.status,
            attempts=row.attempts,
            last_error=row.last_error,
        )


@dataclass(slots=True)
class RedeliverySummary:
    checked: int = 0
    delivered: int = 0
    failed: int = 0
    abandoned: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "delivered": self.delivered,
            "failed": self.failed,
            "abandoned": self.abandoned,
            "failures": self.failures,
        }


class ClaimJournal:
    """Outbox for confirmed claims.

    Each confirmed claim is written to the ``claim_notifications`` table before
    the bookkeeping service is notified, so a notification that cannot be
    delivered now is picked up by the ``claim_sync_run`` pipeline later.
    Database work runs in a worker thread; only the notification itself is
    awaited on the event loop.
    """

    def __init__(
        self,
        notifier: ClaimNotifier,
        session_factory: sessionmaker[Session] | None = None,
        *,
        max_attempts: int = 5,
        backoff_schedule: Sequence[float] = (1.0,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._notifier = notifier
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._backoff_schedule = tuple(backoff_schedule) or (1.0,)
        self._sleep = sleep

    async def record_confirmed(
        self, *, campaign_address: str, ticket_id: int, payout: int, tx_hash: str | None
    ) -> bool:
        entry = await asyncio.to_thread(self._enqueue, campaign_address, ticket_id, payout, tx_hash)
        logger.info("Journaled confirmed claim for ticket #{} on {}", ticket_id, entry.campaign_address)
        if entry.status == NotificationStatus.DELIVERED.value:
            return True
        return await self._deliver(entry)

    async def redeliver_pending(self, *, limit: int | None = None) -> RedeliverySummary:
        summary = RedeliverySummary()
        pending = await asyncio.to_thread(self._list_pending, limit)
        if not pending:
            logger.info("No pending claim notifications found")
            return summary

        logger.info("Redelivering {} claim notifications", len(pending))
        for entry in pending:
            summary.checked += 1
            if await self._deliver(entry):
                summary.delivered += 1
                continue
            summary.failed += 1
            summary.failures.append(
                {
                    "campaign_address": entry.campaign_address,
                    "ticket_id": entry.ticket_id,
                    "attempts": entry.attempts,
                    "reason": entry.last_error,
                }
            )
            if entry.status == NotificationStatus.ABANDONED.value:
                summary.abandoned += 1
                continue
            delay = self._backoff_schedule[min(entry.attempts, len(self._backoff_schedule)) - 1]
            await self._sleep(delay)
        return summary

    async def _deliver(self, entry: JournalEntry) -> bool:
        """Notify bookkeeping and persist the result; ``entry`` is updated in place."""

        try:
            await self._notifier.notify_claim(
                campaign_address=entry.campaign_address,
                ticket_id=entry.ticket_id,
                payout=entry.payout,
                tx_hash=entry.tx_hash,
            )
        except SourceUnavailable as exc:
            updated = await asyncio.to_thread(self._mark_failed, entry.id, exc.reason)
            entry.status, entry.attempts, entry.last_error = (
                updated.status,
                updated.attempts,
                updated.last_error,
            )
            logger.warning(
                "Claim notification for ticket #{} not delivered (attempt {}): {}",
                entry.ticket_id,
                entry.attempts,
                exc.reason,
            )
            return False
        updated = await asyncio.to_thread(self._mark_delivered, entry.id)
        entry.status, entry.attempts = updated.status, updated.attempts
        logger.info("Claim notification for ticket #{} delivered", entry.ticket_id)
        return True

    # ------------------------------------------------------------------
    # Blocking persistence, run off the event loop

    def _enqueue(
        self, campaign_address: str, ticket_id: int, payout: int, tx_hash: str | None
    ) -> JournalEntry:
        with session_scope(self._session_factory) as session:
            record = ClaimNotificationRepository(session).enqueue(
                campaign_address=campaign_address,
                ticket_id=ticket_id,
                payout=payout,
                tx_hash=tx_hash,
            )
            return JournalEntry.from_row(record)

    def _list_pending(self, limit: int | None) -> list[JournalEntry]:
        with session_scope(self._session_factory) as session:
            records = ClaimNotificationRepository(session).list_pending(limit=limit)
            return [JournalEntry.from_row(record) for record in records]

    def _mark_failed(self, notification_id: int, error: str) -> JournalEntry:
        with session_scope(self._session_factory) as session:
            repo = ClaimNotificationRepository(session)
            record = repo.get(notification_id)
            repo.mark_failed(record, error=error, max_attempts=self._max_attempts)
            return JournalEntry.from_row(record)

    def _mark_delivered(self, notification_id: int) -> JournalEntry:
        with session_scope(self._session_factory) as session:
            repo = ClaimNotificationRepository(session)
            record = repo.get(notification_id)
            repo.mark_delivered(record)
            return JournalEntry.from_row(record)
