"""Error kinds raised by the payout and claim engine."""

from __future__ import annotations


class ClaimEngineError(Exception):
    """Base class for every error raised by the engine."""


class InvalidState(ClaimEngineError):
    """Raised when an operation is attempted in the wrong market or claim phase."""


class DivisionByZero(ClaimEngineError):
    """Raised when the winning side of a resolved market holds no stake.

    This is an accounting anomaly; callers must treat it as fatal and never retry.
    """

    def __init__(self, market_id: str, message: str | None = None) -> None:
        self.market_id = market_id
        super().__init__(message or f"Market {market_id} resolved with zero winning stake")


class OutcomeConflict(ClaimEngineError):
    """Raised when ledger and bookkeeping disagree on a resolved outcome."""

    def __init__(self, ledger_outcome: bool, bookkeeping_outcome: bool) -> None:
        self.ledger_outcome = ledger_outcome
        self.bookkeeping_outcome = bookkeeping_outcome
        super().__init__(
            "Ledger reports outcome_true={} but bookkeeping reports outcome_true={}".format(
                ledger_outcome, bookkeeping_outcome
            )
        )


class ClaimRejected(ClaimEngineError):
    """Raised when a claim transaction is reverted, declined or never confirmed."""

    def __init__(self, ticket_id: int | None, reason: str, tx_hash: str | None = None) -> None:
        self.ticket_id = ticket_id
        self.reason = reason
        self.tx_hash = tx_hash
        subject = f"ticket #{ticket_id}" if ticket_id is not None else f"transaction {tx_hash}"
        super().__init__(f"Claim for {subject} rejected: {reason}")


class SourceUnavailable(ClaimEngineError):
    """Raised when the ledger or the bookkeeping service cannot be read."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source} unavailable: {reason}")


__all__ = [
    "ClaimEngineError",
    "ClaimRejected",
    "DivisionByZero",
    "InvalidState",
    "OutcomeConflict",
    "SourceUnavailable",
]
