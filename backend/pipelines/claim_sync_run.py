"""Standalone job that redelivers confirmed-claim notifications to the bookkeeping service."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from loguru import logger

from claimdesk.core.config import Settings, get_settings
from claimdesk.db import init_db
from claimdesk.services.claim_journal import ClaimJournal, RedeliverySummary
from ingestion.bookkeeping import BookkeepingClient


class ClaimSyncPipeline:
    """Drain the claim notification outbox as an independent pipeline."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: BookkeepingClient | None = None,
        session_factory=None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client or BookkeepingClient(
            base_url=str(self.settings.bookkeeping_base_url),
            token=self.settings.bookkeeping_api_token,
            timeout=self.settings.source_timeout_seconds,
            decimals=self.settings.token_decimals,
        )
        self._journal = ClaimJournal(
            self._client,
            session_factory,
            max_attempts=self.settings.claim_sync_max_attempts,
            backoff_schedule=self.settings.claim_sync_backoff_schedule,
        )

    async def run(self, *, limit: int | None = None) -> RedeliverySummary:
        limit = limit or self.settings.claim_sync_batch_size
        logger.info("Starting claim notification sweep: limit={}", limit)
        summary = await self._journal.redeliver_pending(limit=limit)
        logger.info(
            "Claim notification sweep finished: checked={}, delivered={}, failed={}, abandoned={}",
            summary.checked,
            summary.delivered,
            summary.failed,
            summary.abandoned,
        )
        return summary

    async def aclose(self) -> None:
        await self._client.aclose()


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Redeliver confirmed claim notifications that the bookkeeping service has not acknowledged",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of pending notifications to process",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args()


def _write_summary(summary: RedeliverySummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Claim sync summary written to {}", path)


async def _run(limit: int | None) -> RedeliverySummary:
    pipeline = ClaimSyncPipeline(get_settings())
    try:
        return await pipeline.run(limit=limit)
    finally:
        await pipeline.aclose()


def main() -> RedeliverySummary:
    args = _parse_args()
    init_db()
    summary = asyncio.run(_run(args.limit))
    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
