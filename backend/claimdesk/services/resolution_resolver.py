"""Derive one market status from the ledger flag and the bookkeeping cache.

Trust ordering: the bookkeeping service is allowed to resolve first because
it follows a faster off-chain oracle feed, so a bookkeeping-only resolution
is reported as ``RESOLVED`` but flagged ``provisional`` until the ledger
agrees. When both sources report resolved with different outcomes the
default policy raises ``OutcomeConflict``; the ``ledger_canonical`` policy
settles the disagreement in the ledger's favour instead.

A bookkeeping ``resolved`` flag that arrives without an outcome does not
resolve the market: there is no winning side to pay, so the status falls
back to ``PENDING`` or ``RUNNING`` until an outcome is known from either
source.
"""

from __future__ import annotations

from datetime import datetime

from loguru import logger

from claimdesk.domain import MarketStatus, OutcomeConflict, ResolutionReport, SourceVerdict

from .sources import compare_sources


def resolve_status(
    ledger_resolved: bool,
    ledger_outcome: bool | None,
    bookkeeping_resolved: bool,
    bookkeeping_outcome: bool | None,
    end_time: datetime | None,
    now: datetime,
    *,
    ledger_canonical: bool = False,
) -> ResolutionReport:
    ledger_observation = bool(ledger_outcome) if ledger_resolved else None
    bookkeeping_observation = None
    if bookkeeping_resolved:
        if bookkeeping_outcome is None:
            logger.warning("Bookkeeping reports the market resolved without an outcome; ignoring it")
        else:
            bookkeeping_observation = bool(bookkeeping_outcome)

    verdict = compare_sources(
        ledger_observation,
        bookkeeping_observation,
        ledger_authoritative=ledger_canonical,
    )

    if verdict is SourceVerdict.CONFLICT:
        logger.error(
            "Resolution conflict: ledger outcome_true={} bookkeeping outcome_true={}",
            ledger_observation,
            bookkeeping_observation,
        )
        raise OutcomeConflict(bool(ledger_observation), bool(bookkeeping_observation))

    if ledger_observation is not None or bookkeeping_observation is not None:
        if verdict is SourceVerdict.BOOKKEEPING_AHEAD:
            return ResolutionReport(
                status=MarketStatus.RESOLVED,
                outcome_true=bookkeeping_observation,
                provisional=True,
                verdict=verdict,
            )
        if verdict is SourceVerdict.LEDGER_WINS and bookkeeping_observation is not None:
            logger.warning(
                "Bookkeeping outcome_true={} overridden by ledger outcome_true={}",
                bookkeeping_observation,
                ledger_observation,
            )
        return ResolutionReport(
            status=MarketStatus.RESOLVED,
            outcome_true=ledger_observation,
            provisional=False,
            verdict=verdict,
        )

    if end_time is not None and end_time <= now:
        return ResolutionReport(status=MarketStatus.PENDING, verdict=verdict)
    return ResolutionReport(status=MarketStatus.RUNNING, verdict=verdict)
