from __future__ import annotations

from collections.abc import AsyncIterator
from decimal import Decimal
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from loguru import logger

from ingestion.bookkeeping import BookkeepingClient
from ingestion.ledger import CampaignLedger

from . import schemas
from .core.config import settings
from .domain import DivisionByZero, InvalidState, OutcomeConflict, Side, SourceUnavailable
from .domain.units import to_base_units
from .services.market_view import MarketViewService

app = FastAPI(title="Claimdesk API", version="0.1.0", debug=settings.debug)


@app.exception_handler(SourceUnavailable)
async def _source_unavailable(request: Request, exc: SourceUnavailable) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc), "source": exc.source})


@app.exception_handler(OutcomeConflict)
async def _outcome_conflict(request: Request, exc: OutcomeConflict) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(InvalidState)
async def _invalid_state(request: Request, exc: InvalidState) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(DivisionByZero)
async def _division_by_zero(request: Request, exc: DivisionByZero) -> JSONResponse:
    logger.critical("Data-integrity alarm surfaced to API caller: {}", exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok"}


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


async def _market_view_service(
    authorization: Annotated[str | None, Header()] = None,
) -> AsyncIterator[MarketViewService]:
    """Wire the view service with a bookkeeping client scoped to the caller's token."""

    async with BookkeepingClient(token=_bearer_token(authorization)) as bookkeeping:
        yield MarketViewService(
            CampaignLedger(),
            bookkeeping,
            ledger_canonical=settings.ledger_is_canonical,
        )


@app.get("/markets/{market_id}/claims", response_model=schemas.ClaimView, tags=["claims"])
async def get_claims(
    market_id: str,
    service: MarketViewService = Depends(_market_view_service),
):
    """Return the caller's reconciled tickets and entitlements for one market."""

    view = await service.load(market_id)
    return schemas.ClaimView.from_view(view, settings.token_decimals)


@app.get("/markets/{market_id}/quote", response_model=schemas.Quote, tags=["claims"])
async def get_quote(
    market_id: str,
    side: Annotated[str, Query(pattern="^([Yy][Ee][Ss]|[Nn][Oo])$", description="Side to stake on")],
    stake: Annotated[Decimal, Query(gt=0, description="Stake in token units")],
    service: MarketViewService = Depends(_market_view_service),
):
    """Preview the payout of a new stake if its side wins."""

    base_units = to_base_units(stake, settings.token_decimals)
    if base_units <= 0:
        raise HTTPException(status_code=422, detail="Stake is below the token precision")
    quote = await service.quote(market_id, Side[side.upper()], base_units)
    return schemas.Quote.from_domain(quote, settings.token_decimals)
