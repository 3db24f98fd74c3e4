"""Precedence rules between the ledger and the bookkeeping cache."""

from __future__ import annotations

from typing import TypeVar

from claimdesk.domain import SourceVerdict

T = TypeVar("T")


def compare_sources(
    ledger_value: T | None,
    bookkeeping_value: T | None,
    *,
    ledger_authoritative: bool = True,
) -> SourceVerdict:
    """Classify how two observations of the same fact relate.

    ``None`` means the source has no observation yet. When the ledger has
    spoken and ``ledger_authoritative`` is set, a disagreement is settled in
    the ledger's favour (``LEDGER_WINS``); otherwise it is a ``CONFLICT`` that
    the caller must surface.
    """

    if ledger_value is None and bookkeeping_value is None:
        return SourceVerdict.AGREE
    if ledger_value is None:
        return SourceVerdict.BOOKKEEPING_AHEAD
    if bookkeeping_value is None:
        return SourceVerdict.LEDGER_WINS
    if ledger_value == bookkeeping_value:
        return SourceVerdict.AGREE
    if ledger_authoritative:
        return SourceVerdict.LEDGER_WINS
    return SourceVerdict.CONFLICT
