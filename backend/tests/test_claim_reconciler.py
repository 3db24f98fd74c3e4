from __future__ import annotations

import asyncio

import pytest

from claimdesk.domain import BookkeepingRecord, ClaimState, InvalidState, Side, StakeTicket
from claimdesk.services.claim_journal import ClaimJournal
from claimdesk.services.claim_reconciler import (
    ClaimReconciler,
    ClaimTracker,
    claimable,
    claimed_total,
    get_entitlements,
    reconcile,
    total_claimable,
)
from claimdesk.services.ticket_store import TicketStore

CAMPAIGN = "0xAbC0000000000000000000000000000000000001"


def _reconciler(market, ledger, sender, **kwargs) -> ClaimReconciler:
    store = TicketStore(market.market_id, ledger.tickets.values())
    return ClaimReconciler(market, store, sender, ledger, **kwargs)


# ----------------------------------------------------------------------
# Reconciliation


def test_onchain_claim_without_bookkeeping_payout_is_flagged(resolved_market):
    ticket = StakeTicket(ticket_id=7, side=Side.YES, stake_amount=10_000_000, claimed=True)

    entitlement = reconcile(resolved_market, ticket, None)

    assert entitlement.claimed is True
    assert entitlement.payout_amount == 0
    assert entitlement.already_claimed_elsewhere is True
    assert not entitlement.claimable


def test_onchain_claim_with_bookkeeping_payout(resolved_market, user_tickets, user_records):
    entitlement = reconcile(resolved_market, user_tickets[2], user_records[2])

    assert entitlement.claimed is True
    assert entitlement.already_claimed_elsewhere is False
    assert entitlement.claimed_payout == 40_833_333
    assert entitlement.payout_amount == 0


def test_stale_bookkeeping_claim_does_not_block_ledger(resolved_market, user_tickets):
    record = BookkeepingRecord(ticket_id=1, campaign_address=CAMPAIGN, claimed=True, payout=1)

    entitlement = reconcile(resolved_market, user_tickets[0], record)

    assert entitlement.already_claimed_elsewhere is True
    assert entitlement.payout_amount == 163_333_333
    assert entitlement.claimable


@pytest.mark.parametrize(
    "record",
    [
        None,
        BookkeepingRecord(ticket_id=3, campaign_address=CAMPAIGN, claimed=False),
        BookkeepingRecord(ticket_id=3, campaign_address=CAMPAIGN, claimed=True, payout=40_833_333),
    ],
)
def test_onchain_claimed_ticket_never_claimable(resolved_market, user_tickets, record):
    entitlements = get_entitlements(resolved_market, [user_tickets[2]], [record] if record else [])
    assert claimable(entitlements) == []


def test_entitlement_totals(resolved_market, user_tickets, user_records):
    entitlements = get_entitlements(resolved_market, user_tickets, user_records)

    assert [item.ticket_id for item in claimable(entitlements)] == [1, 4]
    assert total_claimable(entitlements) == 163_333_333 + 122_500_000
    assert claimed_total(entitlements) == 40_833_333
    loser = entitlements[1]
    assert loser.is_winner is False
    assert loser.payout_amount == 0
    assert loser.pnl == -50_000_000


def test_mismatched_record_is_rejected(resolved_market, user_tickets, user_records):
    with pytest.raises(ValueError):
        reconcile(resolved_market, user_tickets[0], user_records[1])


# ----------------------------------------------------------------------
# State machine


def test_tracker_rejects_illegal_transitions():
    tracker = ClaimTracker()
    tracker.transition(1, ClaimState.CLAIMING)

    with pytest.raises(InvalidState):
        tracker.transition(1, ClaimState.CLAIMING)

    tracker.transition(1, ClaimState.CONFIRMED)
    with pytest.raises(InvalidState):
        tracker.transition(1, ClaimState.UNCLAIMED)


def test_tracker_adopts_settled_tickets(user_tickets):
    tracker = ClaimTracker()
    assert tracker.observe(user_tickets[2]) is ClaimState.CONFIRMED
    assert tracker.observe(user_tickets[0]) is ClaimState.UNCLAIMED


# ----------------------------------------------------------------------
# Claim submission


def test_submit_claim_confirms_and_excludes_ticket(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender)

    outcome = asyncio.run(reconciler.submit_claim(1))

    assert outcome.success is True
    assert outcome.submitted is True
    assert outcome.state is ClaimState.CONFIRMED
    assert outcome.payout_amount == 163_333_333
    assert reconciler.tracker.state(1) is ClaimState.CONFIRMED
    assert reconciler.store.get(1).claimed is True
    assert 1 not in [item.ticket_id for item in claimable(reconciler.entitlements())]


def test_submit_claim_on_confirmed_ticket_is_noop(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender)

    outcome = asyncio.run(reconciler.submit_claim(3))

    assert outcome.success is True
    assert outcome.submitted is False
    assert outcome.state is ClaimState.CONFIRMED
    assert sender.sent == []


def test_reclaiming_after_confirmation_sends_nothing(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender)

    async def scenario():
        await reconciler.submit_claim(1)
        return await reconciler.submit_claim(1)

    second = asyncio.run(scenario())

    assert second.submitted is False
    assert sender.sent == [1]


def test_reverted_claim_returns_to_unclaimed_and_can_retry(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender)
    sender.behaviour[1] = "revert"

    failed = asyncio.run(reconciler.submit_claim(1))

    assert failed.success is False
    assert failed.state is ClaimState.UNCLAIMED
    assert failed.error == "transaction reverted"
    assert reconciler.tracker.state(1) is ClaimState.UNCLAIMED
    assert reconciler.store.get(1).claimed is False

    sender.behaviour[1] = "ok"
    retried = asyncio.run(reconciler.submit_claim(1))
    assert retried.success is True


def test_declined_claim_is_not_submitted(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender)
    sender.behaviour[1] = "decline"

    outcome = asyncio.run(reconciler.submit_claim(1))

    assert outcome.success is False
    assert outcome.submitted is False
    assert outcome.error == "user declined"


def test_unconfirmed_claim_times_out(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender, confirmation_timeout=0.01)
    sender.behaviour[1] = "timeout"

    outcome = asyncio.run(reconciler.submit_claim(1))

    assert outcome.success is False
    assert outcome.error == "confirmation timed out"
    assert reconciler.tracker.state(1) is ClaimState.UNCLAIMED


def test_claim_not_reflected_on_ledger_is_rejected(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender)
    sender.behaviour[1] = "unsettled"

    outcome = asyncio.run(reconciler.submit_claim(1))

    assert outcome.success is False
    assert outcome.tx_hash is not None
    assert reconciler.store.get(1).claimed is False


def test_concurrent_claim_for_same_ticket_is_refused(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender, confirmation_timeout=5)
    sender.behaviour[1] = "timeout"

    async def scenario():
        first = asyncio.create_task(reconciler.submit_claim(1))
        await asyncio.sleep(0)
        with pytest.raises(InvalidState):
            await reconciler.submit_claim(1)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

    asyncio.run(scenario())

    assert reconciler.tracker.state(1) is ClaimState.UNCLAIMED


def test_losing_ticket_cannot_be_claimed(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender)

    with pytest.raises(InvalidState):
        asyncio.run(reconciler.submit_claim(2))
    assert sender.sent == []


def test_provisional_resolution_blocks_claims(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender, provisional=True)

    with pytest.raises(InvalidState):
        asyncio.run(reconciler.submit_claim(1))
    with pytest.raises(InvalidState):
        asyncio.run(reconciler.claim_all())
    assert sender.sent == []


def test_claim_all_is_sequential_and_independent(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender)
    sender.behaviour[1] = "revert"

    outcomes = asyncio.run(reconciler.claim_all())

    assert [(outcome.ticket_id, outcome.success) for outcome in outcomes] == [(1, False), (4, True)]
    assert sender.sent == [1, 4]
    assert reconciler.store.get(4).claimed is True
    assert reconciler.store.get(1).claimed is False
    assert reconciler.tracker.state(4) is ClaimState.CONFIRMED


def test_confirmed_claim_is_journaled_and_notified(
    resolved_market, ledger, sender, bookkeeping, session_factory
):
    journal = ClaimJournal(bookkeeping, session_factory)
    reconciler = _reconciler(resolved_market, ledger, sender, recorder=journal)

    asyncio.run(reconciler.submit_claim(4))

    assert bookkeeping.notifications == [
        {
            "campaign_address": CAMPAIGN.lower(),
            "ticket_id": 4,
            "payout": 122_500_000,
            "tx_hash": f"0x{4:064x}",
        }
    ]


def test_unexpected_sender_error_does_not_stop_the_sweep(resolved_market, ledger, sender):
    reconciler = _reconciler(resolved_market, ledger, sender)
    sender.behaviour[1] = "crash"

    outcomes = asyncio.run(reconciler.claim_all())

    assert [(outcome.ticket_id, outcome.success) for outcome in outcomes] == [(1, False), (4, True)]
    assert outcomes[0].state is ClaimState.UNCLAIMED
    assert outcomes[0].error.startswith("ValueError")
    assert reconciler.tracker.state(1) is ClaimState.UNCLAIMED
    assert reconciler.store.get(4).claimed is True
    assert sender.sent == [4]


class _BrokenRecorder:
    def __init__(self) -> None:
        self.calls: list[int] = []

    async def record_confirmed(self, *, campaign_address, ticket_id, payout, tx_hash) -> bool:
        self.calls.append(ticket_id)
        raise RuntimeError("database is locked")


def test_journal_failure_keeps_confirmed_claim(resolved_market, ledger, sender):
    recorder = _BrokenRecorder()
    reconciler = _reconciler(resolved_market, ledger, sender, recorder=recorder)

    outcomes = asyncio.run(reconciler.claim_all())

    assert [(outcome.ticket_id, outcome.success) for outcome in outcomes] == [(1, True), (4, True)]
    assert recorder.calls == [1, 4]
    assert sender.sent == [1, 4]
    assert reconciler.tracker.state(1) is ClaimState.CONFIRMED
    assert reconciler.tracker.state(4) is ClaimState.CONFIRMED
