"""Assemble a user's claim view of one market from both truth sources."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Protocol

from loguru import logger

from claimdesk.domain import (
    BookkeepingMarket,
    BookkeepingRecord,
    ClaimEntitlement,
    InvalidState,
    Market,
    MarketStatus,
    PayoutQuote,
    Side,
    SourceUnavailable,
    SourceVerdict,
    StakeTicket,
)

from .claim_reconciler import (
    ClaimReconciler,
    ClaimRecorder,
    ClaimSender,
    claimable,
    claimed_total,
    get_entitlements,
    total_claimable,
)
from .pool_accountant import quote_payout
from .resolution_resolver import resolve_status
from .ticket_store import TicketStore


class LedgerSource(Protocol):
    async def fetch_market(self, campaign_address: str) -> Market:
        raise NotImplementedError

    async def fetch_ticket(self, campaign_address: str, ticket_id: int) -> StakeTicket:
        raise NotImplementedError

    async def fetch_tickets(self, campaign_address: str, ticket_ids: Iterable[int]) -> list[StakeTicket]:
        raise NotImplementedError


class BookkeepingSource(Protocol):
    async def fetch_market(self, market_id: str) -> BookkeepingMarket:
        raise NotImplementedError

    async def fetch_user_bets(self, campaign_address: str) -> list[BookkeepingRecord]:
        raise NotImplementedError


@dataclass(slots=True)
class MarketView:
    market_id: str
    status: MarketStatus
    campaign_address: str | None = None
    outcome_true: bool | None = None
    provisional: bool = False
    verdict: SourceVerdict | None = None
    has_joined: bool = False
    market: Market | None = None
    tickets: list[StakeTicket] = field(default_factory=list)
    entitlements: list[ClaimEntitlement] = field(default_factory=list)
    unavailable_sources: list[str] = field(default_factory=list)

    @property
    def claimable(self) -> list[ClaimEntitlement]:
        return claimable(self.entitlements)

    @property
    def total_claimable(self) -> int:
        return total_claimable(self.entitlements)

    @property
    def claimed_total(self) -> int:
        return claimed_total(self.entitlements)


class MarketViewService:
    """Read both sources concurrently and reconcile them into a ``MarketView``.

    A source that cannot be read turns the whole view into ``UNKNOWN`` with no
    entitlements; a partial entitlement list is never returned.
    """

    def __init__(
        self,
        ledger: LedgerSource,
        bookkeeping: BookkeepingSource,
        *,
        ledger_canonical: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._ledger = ledger
        self._bookkeeping = bookkeeping
        self._ledger_canonical = ledger_canonical
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def load(self, market_id: str) -> MarketView:
        try:
            listing = await self._bookkeeping.fetch_market(market_id)
        except SourceUnavailable as exc:
            return self._unknown(market_id, None, [exc.source])

        campaign = listing.campaign_address
        results = await asyncio.gather(
            self._ledger.fetch_market(campaign),
            self._bookkeeping.fetch_user_bets(campaign),
            return_exceptions=True,
        )
        unavailable = [result.source for result in results if isinstance(result, SourceUnavailable)]
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, SourceUnavailable):
                raise result
        if unavailable:
            return self._unknown(market_id, campaign, unavailable)
        ledger_market, records = results

        report = resolve_status(
            ledger_market.resolved,
            ledger_market.outcome_true if ledger_market.resolved else None,
            listing.resolved,
            listing.outcome_true,
            listing.end_time,
            self._clock(),
            ledger_canonical=self._ledger_canonical,
        )
        view = MarketView(
            market_id=market_id,
            status=report.status,
            campaign_address=campaign,
            outcome_true=report.outcome_true,
            provisional=report.provisional,
            verdict=report.verdict,
            has_joined=bool(records),
            market=ledger_market,
        )
        if not report.is_resolved or not records:
            return view

        try:
            tickets = await self._ledger.fetch_tickets(campaign, [record.ticket_id for record in records])
        except SourceUnavailable as exc:
            return self._unknown(market_id, campaign, [exc.source])

        market = replace(ledger_market, resolved=True, outcome_true=bool(report.outcome_true))
        view.market = market
        view.tickets = tickets
        view.entitlements = get_entitlements(market, tickets, records, provisional=report.provisional)
        logger.info(
            "Market {} resolved outcome_true={} ({}): {} tickets, {} claimable",
            market_id,
            report.outcome_true,
            report.verdict.value if report.verdict else "n/a",
            len(tickets),
            len(view.claimable),
        )
        return view

    async def quote(self, market_id: str, side: Side, stake: int) -> PayoutQuote:
        """Preview the payout of a new stake against the live ledger totals."""

        listing = await self._bookkeeping.fetch_market(market_id)
        ledger_market = await self._ledger.fetch_market(listing.campaign_address)
        return quote_payout(ledger_market, side, stake)

    def claim_reconciler(
        self,
        view: MarketView,
        sender: ClaimSender,
        *,
        recorder: ClaimRecorder | None = None,
        confirmation_timeout: float | None = None,
    ) -> ClaimReconciler:
        if view.status is not MarketStatus.RESOLVED or view.market is None:
            raise InvalidState(f"Market {view.market_id} is {view.status.value}; nothing can be claimed")
        return ClaimReconciler(
            view.market,
            TicketStore(view.market.market_id, view.tickets),
            sender,
            self._ledger,
            recorder=recorder,
            provisional=view.provisional,
            confirmation_timeout=confirmation_timeout,
        )

    @staticmethod
    def _unknown(market_id: str, campaign: str | None, sources: list[str]) -> MarketView:
        logger.warning("Market {} view deferred; unavailable sources: {}", market_id, ", ".join(sources))
        return MarketView(
            market_id=market_id,
            status=MarketStatus.UNKNOWN,
            campaign_address=campaign,
            unavailable_sources=sorted(set(sources)),
        )


class EntitlementLoader:
    """Keep at most one in-flight load for a market view.

    ``reload`` abandons any load still running; ``aclose`` abandons it when the
    view goes away.
    """

    def __init__(self, service: MarketViewService, market_id: str) -> None:
        self._service = service
        self._market_id = market_id
        self._task: asyncio.Task[MarketView] | None = None

    def reload(self) -> asyncio.Task[MarketView]:
        self.cancel()
        self._task = asyncio.create_task(self._service.load(self._market_id))
        return self._task

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            logger.debug("Abandoning in-flight load for market {}", self._market_id)
            self._task.cancel()

    async def latest(self) -> MarketView:
        task = self._task or self.reload()
        return await task

    async def aclose(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
