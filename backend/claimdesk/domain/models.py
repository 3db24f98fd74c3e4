"""Typed domain representations shared by ingestion, services and APIs.

Monetary fields are fixed-point integers in settlement token base units.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum

MAX_FEE_BPS = 10_000


class Side(IntEnum):
    """Ticket side as encoded by the campaign contract."""

    NO = 0
    YES = 1


class LedgerState(IntEnum):
    RUNNING = 0
    RESOLVED = 1


class MarketStatus(str, Enum):
    RUNNING = "running"
    PENDING = "pending"
    RESOLVED = "resolved"
    UNKNOWN = "unknown"


class ClaimState(str, Enum):
    UNCLAIMED = "unclaimed"
    CLAIMING = "claiming"
    CONFIRMED = "confirmed"


@dataclass(frozen=True, slots=True)
class Market:
    """Aggregate ledger view of one binary campaign."""

    market_id: str
    resolved: bool
    outcome_true: bool
    total_true_stake: int
    total_false_stake: int
    total_initial_pot: int
    fee_bps: int

    def __post_init__(self) -> None:
        for name in ("total_true_stake", "total_false_stake", "total_initial_pot"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if not 0 <= self.fee_bps <= MAX_FEE_BPS:
            raise ValueError(f"fee_bps must be between 0 and {MAX_FEE_BPS}")

    @property
    def pool(self) -> int:
        return self.total_true_stake + self.total_false_stake + self.total_initial_pot


@dataclass(frozen=True, slots=True)
class StakeTicket:
    """One stake placed by one user, as reported by the ledger."""

    ticket_id: int
    side: Side
    stake_amount: int
    claimed: bool = False

    def __post_init__(self) -> None:
        if self.stake_amount <= 0:
            raise ValueError("stake_amount must be positive")


@dataclass(frozen=True, slots=True)
class BookkeepingRecord:
    """Advisory bet record cached by the bookkeeping service."""

    ticket_id: int
    campaign_address: str
    side: Side | None = None
    stake: int | None = None
    claimed: bool = False
    payout: int | None = None

    @property
    def has_payout(self) -> bool:
        return self.claimed and bool(self.payout)


@dataclass(frozen=True, slots=True)
class BookkeepingMarket:
    """Bookkeeping service listing for a market, including its cached resolution."""

    market_id: str
    campaign_address: str
    end_time: datetime | None
    resolved: bool = False
    outcome_true: bool | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class ClaimEntitlement:
    """Derived per-ticket payout status; recomputed on every reconciliation pass."""

    ticket_id: int
    is_winner: bool
    payout_amount: int
    already_claimed_elsewhere: bool = False
    claimed: bool = False
    stake_amount: int = 0
    claimed_payout: int | None = None
    pnl: int = 0
    provisional: bool = False

    @property
    def claimable(self) -> bool:
        return self.is_winner and not self.claimed and self.payout_amount > 0


class SourceVerdict(str, Enum):
    """Tagged result of comparing the ledger with the bookkeeping cache."""

    AGREE = "agree"
    LEDGER_WINS = "ledger_wins"
    BOOKKEEPING_AHEAD = "bookkeeping_ahead"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class ResolutionReport:
    status: MarketStatus
    outcome_true: bool | None = None
    provisional: bool = False
    verdict: SourceVerdict | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status is MarketStatus.RESOLVED


@dataclass(frozen=True, slots=True)
class PayoutQuote:
    side: Side
    stake: int
    potential_payout: int

    @property
    def potential_profit(self) -> int:
        return self.potential_payout - self.stake
