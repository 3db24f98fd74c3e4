"""Reconcile ledger and bookkeeping claim status and drive claim submission."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from claimdesk.domain import (
    BookkeepingRecord,
    ClaimEntitlement,
    ClaimRejected,
    ClaimState,
    DivisionByZero,
    InvalidState,
    Market,
    SourceUnavailable,
    StakeTicket,
)

from .pool_accountant import compute_entitlement, is_winner, ticket_pnl
from .ticket_store import TicketStore

_TRANSITIONS: dict[ClaimState, frozenset[ClaimState]] = {
    ClaimState.UNCLAIMED: frozenset({ClaimState.CLAIMING, ClaimState.CONFIRMED}),
    ClaimState.CLAIMING: frozenset({ClaimState.UNCLAIMED, ClaimState.CONFIRMED}),
    ClaimState.CONFIRMED: frozenset(),
}


class ClaimSender(Protocol):
    """Wallet-side transport that signs and broadcasts claim transactions."""

    async def send_claim(self, campaign_address: str, ticket_id: int) -> str:
        """Broadcast ``claim(ticket_id)`` and return the transaction hash."""
        raise NotImplementedError

    async def wait_for_receipt(self, tx_hash: str) -> bool:
        """Wait for the transaction to be mined; return ``True`` when it succeeded."""
        raise NotImplementedError


class TicketReader(Protocol):
    async def fetch_ticket(self, campaign_address: str, ticket_id: int) -> StakeTicket:
        raise NotImplementedError


class ClaimRecorder(Protocol):
    async def record_confirmed(
        self, *, campaign_address: str, ticket_id: int, payout: int, tx_hash: str | None
    ) -> bool:
        raise NotImplementedError


@dataclass(slots=True)
class ClaimOutcome:
    ticket_id: int
    success: bool
    state: ClaimState
    submitted: bool
    tx_hash: str | None = None
    payout_amount: int = 0
    error: str | None = None


class ClaimTracker:
    """Per-ticket claim state machine: unclaimed -> claiming -> confirmed.

    ``claiming`` may fall back to ``unclaimed``; ``confirmed`` is terminal.
    A ticket in ``claiming`` cannot be claimed again, which keeps claim
    attempts for one ticket strictly sequential.
    """

    def __init__(self) -> None:
        self._states: dict[int, ClaimState] = {}

    def state(self, ticket_id: int) -> ClaimState:
        return self._states.get(ticket_id, ClaimState.UNCLAIMED)

    def transition(self, ticket_id: int, target: ClaimState) -> ClaimState:
        current = self.state(ticket_id)
        if target not in _TRANSITIONS[current]:
            raise InvalidState(
                f"Ticket #{ticket_id} cannot move from {current.value} to {target.value}"
            )
        self._states[ticket_id] = target
        logger.info("Ticket #{} claim state {} -> {}", ticket_id, current.value, target.value)
        return target

    def observe(self, ticket: StakeTicket) -> ClaimState:
        """Adopt a ledger observation of a settled ticket."""

        current = self.state(ticket.ticket_id)
        if ticket.claimed and current is not ClaimState.CONFIRMED:
            return self.transition(ticket.ticket_id, ClaimState.CONFIRMED)
        return current


def reconcile(
    market: Market,
    ticket: StakeTicket,
    record: BookkeepingRecord | None,
    *,
    provisional: bool = False,
) -> ClaimEntitlement:
    """Produce the canonical entitlement of one ticket.

    The ledger ticket decides ``claimed``; the bookkeeping record is advisory.
    A ticket the ledger reports claimed is never offered again. When the
    bookkeeping service has no payout for it, the entitlement is flagged
    ``already_claimed_elsewhere``. A ticket the bookkeeping service reports
    claimed but the ledger does not is still computed and flagged as stale.
    """

    if record is not None and record.ticket_id != ticket.ticket_id:
        raise ValueError(
            f"Bookkeeping record #{record.ticket_id} does not describe ticket #{ticket.ticket_id}"
        )

    winner = is_winner(market, ticket)
    pnl = ticket_pnl(market, ticket)

    if ticket.claimed:
        claimed_payout = record.payout if record is not None and record.has_payout else None
        return ClaimEntitlement(
            ticket_id=ticket.ticket_id,
            is_winner=winner,
            payout_amount=0,
            already_claimed_elsewhere=claimed_payout is None,
            claimed=True,
            stake_amount=ticket.stake_amount,
            claimed_payout=claimed_payout,
            pnl=pnl,
            provisional=provisional,
        )

    stale = record is not None and record.claimed
    if stale:
        logger.info(
            "Bookkeeping reports ticket #{} claimed but the ledger does not; ledger wins",
            ticket.ticket_id,
        )
    return ClaimEntitlement(
        ticket_id=ticket.ticket_id,
        is_winner=winner,
        payout_amount=compute_entitlement(market, ticket),
        already_claimed_elsewhere=stale,
        claimed=False,
        stake_amount=ticket.stake_amount,
        pnl=pnl,
        provisional=provisional,
    )


def get_entitlements(
    market: Market,
    tickets: Iterable[StakeTicket],
    records: Iterable[BookkeepingRecord],
    *,
    provisional: bool = False,
) -> list[ClaimEntitlement]:
    records_by_ticket = {record.ticket_id: record for record in records}
    return [
        reconcile(market, ticket, records_by_ticket.get(ticket.ticket_id), provisional=provisional)
        for ticket in tickets
    ]


def claimable(entitlements: Iterable[ClaimEntitlement]) -> list[ClaimEntitlement]:
    return [entitlement for entitlement in entitlements if entitlement.claimable]


def total_claimable(entitlements: Iterable[ClaimEntitlement]) -> int:
    return sum(entitlement.payout_amount for entitlement in claimable(entitlements))


def claimed_total(entitlements: Iterable[ClaimEntitlement]) -> int:
    return sum(
        entitlement.claimed_payout or 0 for entitlement in entitlements if entitlement.claimed
    )


class ClaimReconciler:
    """Submit claims for one user's tickets in one resolved market."""

    def __init__(
        self,
        market: Market,
        store: TicketStore,
        sender: ClaimSender,
        ledger: TicketReader,
        *,
        recorder: ClaimRecorder | None = None,
        provisional: bool = False,
        confirmation_timeout: float | None = None,
        tracker: ClaimTracker | None = None,
    ) -> None:
        self.market = market
        self.store = store
        self.provisional = provisional
        self.tracker = tracker or ClaimTracker()
        self._sender = sender
        self._ledger = ledger
        self._recorder = recorder
        self._confirmation_timeout = confirmation_timeout
        for ticket in store:
            self.tracker.observe(ticket)

    def entitlements(self, records: Sequence[BookkeepingRecord] = ()) -> list[ClaimEntitlement]:
        return get_entitlements(self.market, self.store, records, provisional=self.provisional)

    async def submit_claim(self, ticket_id: int) -> ClaimOutcome:
        ticket = self.store.get(ticket_id)
        if ticket.claimed or self.tracker.state(ticket_id) is ClaimState.CONFIRMED:
            self.tracker.observe(ticket)
            logger.info("Ticket #{} already claimed; no transaction sent", ticket_id)
            return ClaimOutcome(
                ticket_id=ticket_id, success=True, state=ClaimState.CONFIRMED, submitted=False
            )

        if self.provisional:
            raise InvalidState(
                f"Market {self.market.market_id} is only provisionally resolved; the ledger must resolve before claiming"
            )
        payout = compute_entitlement(self.market, ticket)
        if payout <= 0:
            raise InvalidState(f"Ticket #{ticket_id} has nothing to claim")

        self.tracker.transition(ticket_id, ClaimState.CLAIMING)
        tx_hash: str | None = None
        confirmed = False
        failure: ClaimRejected | None = None
        try:
            tx_hash = await self._sender.send_claim(self.market.market_id, ticket_id)
            logger.info("Claim for ticket #{} submitted in {}", ticket_id, tx_hash)
            succeeded = await asyncio.wait_for(
                self._sender.wait_for_receipt(tx_hash), timeout=self._confirmation_timeout
            )
            if not succeeded:
                raise ClaimRejected(ticket_id, "transaction reverted", tx_hash)
            refreshed = await self._ledger.fetch_ticket(self.market.market_id, ticket_id)
            if not refreshed.claimed:
                raise ClaimRejected(ticket_id, "ledger does not report the ticket claimed", tx_hash)
            confirmed = True
        except asyncio.TimeoutError:
            failure = ClaimRejected(ticket_id, "confirmation timed out", tx_hash)
        except ClaimRejected as exc:
            failure = exc
        except SourceUnavailable as exc:
            failure = ClaimRejected(ticket_id, str(exc), tx_hash)
        finally:
            if not confirmed:
                self.tracker.transition(ticket_id, ClaimState.UNCLAIMED)

        if failure is not None:
            logger.warning("{}", failure)
            return ClaimOutcome(
                ticket_id=ticket_id,
                success=False,
                state=ClaimState.UNCLAIMED,
                submitted=tx_hash is not None,
                tx_hash=failure.tx_hash or tx_hash,
                error=failure.reason,
            )

        self.store.mark_claimed(ticket_id)
        self.tracker.transition(ticket_id, ClaimState.CONFIRMED)
        if self._recorder is not None:
            try:
                await self._recorder.record_confirmed(
                    campaign_address=self.market.market_id,
                    ticket_id=ticket_id,
                    payout=payout,
                    tx_hash=tx_hash,
                )
            except Exception:
                # The claim is settled on the ledger; only the journal entry is lost.
                logger.exception(
                    "Claim for ticket #{} confirmed in {} but could not be journaled", ticket_id, tx_hash
                )
        return ClaimOutcome(
            ticket_id=ticket_id,
            success=True,
            state=ClaimState.CONFIRMED,
            submitted=True,
            tx_hash=tx_hash,
            payout_amount=payout,
        )

    async def claim_all(self) -> list[ClaimOutcome]:
        """Claim every winning ticket one transaction at a time.

        A failed ticket does not stop the sweep or undo earlier confirmations.
        Accounting anomalies and illegal state transitions still propagate.
        """

        if self.provisional:
            raise InvalidState(
                f"Market {self.market.market_id} is only provisionally resolved; the ledger must resolve before claiming"
            )
        pending = [
            ticket.ticket_id
            for ticket in self.store.unclaimed()
            if compute_entitlement(self.market, ticket) > 0
        ]
        outcomes: list[ClaimOutcome] = []
        for ticket_id in pending:
            try:
                outcome = await self.submit_claim(ticket_id)
            except (DivisionByZero, InvalidState):
                raise
            except Exception as exc:
                logger.exception("Claim for ticket #{} failed unexpectedly", ticket_id)
                outcome = ClaimOutcome(
                    ticket_id=ticket_id,
                    success=False,
                    state=self.tracker.state(ticket_id),
                    submitted=False,
                    error=f"{type(exc).__name__}: {exc}",
                )
            outcomes.append(outcome)
        confirmed = sum(1 for outcome in outcomes if outcome.success)
        logger.info(
            "Claim sweep for {} finished: confirmed={}, failed={}",
            self.market.market_id,
            confirmed,
            len(outcomes) - confirmed,
        )
        return outcomes


__all__ = [
    "ClaimOutcome",
    "ClaimReconciler",
    "ClaimRecorder",
    "ClaimSender",
    "ClaimTracker",
    "TicketReader",
    "claimable",
    "claimed_total",
    "get_entitlements",
    "reconcile",
    "total_claimable",
]
