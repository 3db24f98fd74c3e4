from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from claimdesk.core.config import Settings
from claimdesk.db import create_session_factory, init_db
from claimdesk.domain import (
    BookkeepingMarket,
    BookkeepingRecord,
    ClaimRejected,
    Market,
    Side,
    SourceUnavailable,
    StakeTicket,
)

CAMPAIGN = "0xAbC0000000000000000000000000000000000001"
TOKEN = 1_000_000


class FakeLedger:
    """In-memory campaign contract."""

    source = "ledger"

    def __init__(self, market: Market, tickets: list[StakeTicket]) -> None:
        self.market = market
        self.tickets = {ticket.ticket_id: ticket for ticket in tickets}
        self.unavailable = False
        self.ticket_reads = 0
        self.block: asyncio.Event | None = None

    async def fetch_market(self, campaign_address: str) -> Market:
        if self.block is not None:
            await self.block.wait()
        if self.unavailable:
            raise SourceUnavailable(self.source, "rpc down")
        return self.market

    async def fetch_ticket(self, campaign_address: str, ticket_id: int) -> StakeTicket:
        self.ticket_reads += 1
        if self.unavailable:
            raise SourceUnavailable(self.source, "rpc down")
        return self.tickets[ticket_id]

    async def fetch_tickets(self, campaign_address: str, ticket_ids) -> list[StakeTicket]:
        return [await self.fetch_ticket(campaign_address, ticket_id) for ticket_id in ticket_ids]

    def settle(self, ticket_id: int) -> None:
        ticket = self.tickets[ticket_id]
        self.tickets[ticket_id] = StakeTicket(
            ticket_id=ticket.ticket_id, side=ticket.side, stake_amount=ticket.stake_amount, claimed=True
        )


class FakeBookkeeping:
    source = "bookkeeping"

    def __init__(self, listing: BookkeepingMarket, records: list[BookkeepingRecord]) -> None:
        self.listing = listing
        self.records = records
        self.unavailable = False
        self.notifications: list[dict[str, object]] = []
        self.notify_failures = 0

    async def fetch_market(self, market_id: str) -> BookkeepingMarket:
        if self.unavailable:
            raise SourceUnavailable(self.source, "HTTP 502")
        return self.listing

    async def fetch_user_bets(self, campaign_address: str) -> list[BookkeepingRecord]:
        if self.unavailable:
            raise SourceUnavailable(self.source, "HTTP 502")
        return list(self.records)

    async def notify_claim(self, *, campaign_address, ticket_id, payout, tx_hash) -> None:
        if self.notify_failures:
            self.notify_failures -= 1
            raise SourceUnavailable(self.source, "HTTP 503")
        self.notifications.append(
            {"campaign_address": campaign_address, "ticket_id": ticket_id, "payout": payout, "tx_hash": tx_hash}
        )


class FakeSender:
    """Wallet stand-in; ``behaviour`` maps ticket ids to ok|revert|decline|crash|timeout|unsettled."""

    def __init__(self, ledger: FakeLedger) -> None:
        self.ledger = ledger
        self.behaviour: dict[int, str] = {}
        self.sent: list[int] = []
        self._pending: dict[str, int] = {}

    async def send_claim(self, campaign_address: str, ticket_id: int) -> str:
        mode = self.behaviour.get(ticket_id, "ok")
        if mode == "decline":
            raise ClaimRejected(ticket_id, "user declined")
        if mode == "crash":
            raise ValueError({"code": -32000, "message": "nonce too low"})
        self.sent.append(ticket_id)
        tx_hash = f"0x{ticket_id:064x}"
        self._pending[tx_hash] = ticket_id
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str) -> bool:
        ticket_id = self._pending[tx_hash]
        mode = self.behaviour.get(ticket_id, "ok")
        if mode == "timeout":
            await asyncio.sleep(3600)
        if mode == "revert":
            return False
        if mode == "ok":
            self.ledger.settle(ticket_id)
        return True


@pytest.fixture
def resolved_market() -> Market:
    return Market(
        market_id=CAMPAIGN,
        resolved=True,
        outcome_true=True,
        total_true_stake=600 * TOKEN,
        total_false_stake=400 * TOKEN,
        total_initial_pot=0,
        fee_bps=200,
    )


@pytest.fixture
def user_tickets() -> list[StakeTicket]:
    return [
        StakeTicket(ticket_id=1, side=Side.YES, stake_amount=100 * TOKEN),
        StakeTicket(ticket_id=2, side=Side.NO, stake_amount=50 * TOKEN),
        StakeTicket(ticket_id=3, side=Side.YES, stake_amount=25 * TOKEN, claimed=True),
        StakeTicket(ticket_id=4, side=Side.YES, stake_amount=75 * TOKEN),
    ]


@pytest.fixture
def user_records() -> list[BookkeepingRecord]:
    return [
        BookkeepingRecord(ticket_id=1, campaign_address=CAMPAIGN, side=Side.YES, stake=100 * TOKEN),
        BookkeepingRecord(ticket_id=2, campaign_address=CAMPAIGN, side=Side.NO, stake=50 * TOKEN),
        BookkeepingRecord(
            ticket_id=3,
            campaign_address=CAMPAIGN,
            side=Side.YES,
            stake=25 * TOKEN,
            claimed=True,
            payout=40_833_333,
        ),
        BookkeepingRecord(ticket_id=4, campaign_address=CAMPAIGN, side=Side.YES, stake=75 * TOKEN),
    ]


@pytest.fixture
def ledger(resolved_market, user_tickets) -> FakeLedger:
    return FakeLedger(resolved_market, user_tickets)


@pytest.fixture
def bookkeeping(user_records) -> FakeBookkeeping:
    listing = BookkeepingMarket(
        market_id="42",
        campaign_address=CAMPAIGN,
        end_time=None,
        resolved=True,
        outcome_true=True,
    )
    return FakeBookkeeping(listing, user_records)


@pytest.fixture
def sender(ledger) -> FakeSender:
    return FakeSender(ledger)


@pytest.fixture
def sample_market_payload() -> dict[str, object]:
    path = Path(__file__).parent / "data" / "sample_market.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def sample_bets_payload() -> dict[str, object]:
    path = Path(__file__).parent / "data" / "sample_user_bets.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(bind=engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'claimdesk.db'}",
        bookkeeping_base_url="http://bookkeeping.test",
        claim_sync_backoff_seconds="0.01",
        claim_sync_max_attempts=2,
    )
    monkeypatch.setattr("claimdesk.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("claimdesk.core.config.settings", settings)
    return settings
