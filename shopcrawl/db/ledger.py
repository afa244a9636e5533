"""Run ledger: durable lifecycle record for scraping runs."""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopcrawl.db.models import (
    RUN_COMPLETED,
    RUN_FAILED,
    RUN_PARTIAL,
    RUN_STARTED,
    TERMINAL_STATUSES,
    ScrapeRun,
)

logger = logging.getLogger(__name__)

# ScrapeRun columns that update_stats/complete/fail accept from a stats mapping
STAT_FIELDS = (
    "products_found",
    "products_added",
    "products_updated",
    "products_deactivated",
    "pages_processed",
    "errors_count",
)


class LedgerStateError(RuntimeError):
    """Raised when a run that already finished is finalized again."""

    def __init__(self, run_id: int, status: str):
        super().__init__(f"Run {run_id} is already {status}")
        self.run_id = run_id
        self.status = status


class RunLedger:
    """Creates and updates ScrapeRun rows.

    Each call opens its own short session, so a long run never holds a
    transaction open while it is crawling.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def start(self, source: str) -> ScrapeRun:
        """Open a new run in the 'started' state."""
        async with self._session_factory() as db:
            run = ScrapeRun(
                source=source,
                status=RUN_STARTED,
                started_at=datetime.utcnow(),
                error_trail=[],
            )
            db.add(run)
            await db.commit()
            await db.refresh(run)
            logger.info(f"Started run {run.id} for source {source}")
            return run

    async def get(self, run_id: int) -> Optional[ScrapeRun]:
        async with self._session_factory() as db:
            return await db.get(ScrapeRun, run_id)

    async def record_error(
        self,
        run_id: int,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """Append an entry to the run's error trail and bump errors_count."""
        async with self._session_factory() as db:
            run = await self._load(db, run_id)
            entry = {
                "message": message,
                "details": details or {},
                "timestamp": datetime.utcnow().isoformat(),
            }
            # Reassign so the JSON column is flagged dirty
            run.error_trail = [*(run.error_trail or []), entry]
            run.errors_count += 1
            run.error_message = message
            await db.commit()

    async def update_stats(self, run_id: int, stats: dict[str, int]) -> None:
        """Overwrite counters on a run that is still in progress."""
        async with self._session_factory() as db:
            run = await self._load(db, run_id)
            self._apply_stats(run, stats)
            await db.commit()

    async def complete(
        self,
        run_id: int,
        stats: Optional[dict[str, int]] = None,
        partial: bool = False,
    ) -> ScrapeRun:
        """Finalize a run as completed (or partial when it stopped early)."""
        async with self._session_factory() as db:
            run = await self._load(db, run_id)
            self._ensure_open(run)
            self._apply_stats(run, stats or {})
            self._finish(run, RUN_PARTIAL if partial else RUN_COMPLETED)
            await db.commit()
            logger.info(
                f"Run {run.id} for {run.source} {run.status} in {run.formatted_duration}: "
                f"found={run.products_found} added={run.products_added} "
                f"updated={run.products_updated} deactivated={run.products_deactivated} "
                f"errors={run.errors_count}"
            )
            return run

    async def fail(
        self,
        run_id: int,
        message: str,
        details: Optional[dict[str, Any]] = None,
        stats: Optional[dict[str, int]] = None,
    ) -> ScrapeRun:
        """Finalize a run as failed, keeping whatever stats were collected."""
        async with self._session_factory() as db:
            run = await self._load(db, run_id)
            self._ensure_open(run)
            self._apply_stats(run, stats or {})
            run.error_message = message
            run.error_details = details or {}
            run.errors_count += 1
            self._finish(run, RUN_FAILED)
            await db.commit()
            logger.error(f"Run {run.id} for {run.source} failed: {message}")
            return run

    async def recent_runs(self, source: Optional[str] = None, days: int = 7) -> list[ScrapeRun]:
        """Runs created in the last `days` days, newest first."""
        cutoff = datetime.utcnow() - timedelta(days=days)
        query = select(ScrapeRun).where(ScrapeRun.created_at >= cutoff)
        if source:
            query = query.where(ScrapeRun.source == source)
        query = query.order_by(ScrapeRun.created_at.desc(), ScrapeRun.id.desc())
        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())

    async def was_recently_run(self, source: str, hours: int = 12) -> bool:
        cutoff = datetime.utcnow() - timedelta(hours=hours)
        query = (
            select(func.count(ScrapeRun.id))
            .where(ScrapeRun.source == source)
            .where(ScrapeRun.created_at >= cutoff)
        )
        async with self._session_factory() as db:
            return (await db.execute(query)).scalar_one() > 0

    async def success_rate(self, source: str, days: int = 30) -> float:
        """Percentage of finished runs in the window that completed (fully or partially)."""
        cutoff = datetime.utcnow() - timedelta(days=days)
        query = (
            select(ScrapeRun.status, func.count(ScrapeRun.id))
            .where(ScrapeRun.source == source)
            .where(ScrapeRun.created_at >= cutoff)
            .where(ScrapeRun.status.in_(TERMINAL_STATUSES))
            .group_by(ScrapeRun.status)
        )
        async with self._session_factory() as db:
            counts = dict((await db.execute(query)).all())
        total = sum(counts.values())
        if total == 0:
            return 0.0
        succeeded = counts.get(RUN_COMPLETED, 0) + counts.get(RUN_PARTIAL, 0)
        return round(succeeded / total * 100, 2)

    async def purge_older_than(self, days: int) -> int:
        """Delete ledger entries older than `days` days."""
        cutoff = datetime.utcnow() - timedelta(days=days)
        async with self._session_factory() as db:
            result = await db.execute(delete(ScrapeRun).where(ScrapeRun.created_at < cutoff))
            await db.commit()
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} scrape runs older than {days} days")
        return result.rowcount

    @staticmethod
    async def _load(db: AsyncSession, run_id: int) -> ScrapeRun:
        run = await db.get(ScrapeRun, run_id)
        if run is None:
            raise LookupError(f"Scrape run {run_id} not found")
        return run

    @staticmethod
    def _ensure_open(run: ScrapeRun) -> None:
        if run.is_terminal:
            raise LedgerStateError(run.id, run.status)

    @staticmethod
    def _apply_stats(run: ScrapeRun, stats: dict[str, int]) -> None:
        for field in STAT_FIELDS:
            if field in stats:
                setattr(run, field, stats[field])

    @staticmethod
    def _finish(run: ScrapeRun, status: str) -> None:
        now = datetime.utcnow()
        run.status = status
        run.completed_at = now
        run.duration_seconds = int((now - run.started_at).total_seconds())
