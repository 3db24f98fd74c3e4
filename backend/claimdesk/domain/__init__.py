"""Domain models and error kinds for the payout and claim engine."""

from .errors import (
    ClaimEngineError,
    ClaimRejected,
    DivisionByZero,
    InvalidState,
    OutcomeConflict,
    SourceUnavailable,
)
from .models import (
    BookkeepingMarket,
    BookkeepingRecord,
    ClaimEntitlement,
    ClaimState,
    LedgerState,
    Market,
    MarketStatus,
    PayoutQuote,
    ResolutionReport,
    Side,
    SourceVerdict,
    StakeTicket,
)

__all__ = [
    "BookkeepingMarket",
    "BookkeepingRecord",
    "ClaimEngineError",
    "ClaimEntitlement",
    "ClaimRejected",
    "ClaimState",
    "DivisionByZero",
    "InvalidState",
    "LedgerState",
    "Market",
    "MarketStatus",
    "OutcomeConflict",
    "PayoutQuote",
    "ResolutionReport",
    "Side",
    "SourceUnavailable",
    "SourceVerdict",
    "StakeTicket",
]
