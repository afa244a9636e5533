"""Command-line entry point: run configured sources and housekeeping."""

import argparse
import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopcrawl.config import ConfigurationError, settings
from shopcrawl.db.ledger import RunLedger
from shopcrawl.db.models import ScrapeRun
from shopcrawl.db.repository import ProductRepository
from shopcrawl.ingest.extractors.selector import CssSelectorExtractor, SelectorSet
from shopcrawl.ingest.registry import ExtractorRegistry
from shopcrawl.ingest.run_coordinator import RunCoordinator
from shopcrawl.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_registry() -> ExtractorRegistry:
    """Selector-driven extractors for every configured source that defines selectors."""
    registry = ExtractorRegistry()
    for name, source in settings.sources.items():
        if source.selectors:
            registry.register(name, CssSelectorExtractor(SelectorSet(**source.selectors)))
    return registry


async def run_sources(
    names: Optional[list[str]] = None,
    force: bool = False,
    registry: Optional[ExtractorRegistry] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> dict[str, Optional[ScrapeRun]]:
    """
    Run sources one after another.

    A source run within the last recent_run_guard_hours is skipped unless
    `force` is set. A failing source is logged and the next one still runs.

    Args:
        names: Sources to run; all configured sources when omitted
        force: Ignore the recent-run guard
        registry: Extractors by source; built from configured selectors when omitted
        session_factory: Database session factory; the application default when omitted

    Returns:
        Final ledger entry per source (None for skipped or failed sources)
    """
    if session_factory is None:
        from shopcrawl.db.session import AsyncSessionLocal, init_db

        await init_db()
        session_factory = AsyncSessionLocal

    registry = registry or build_registry()
    ledger = RunLedger(session_factory)
    results: dict[str, Optional[ScrapeRun]] = {}

    for name in names or list(settings.sources):
        if not force and await ledger.was_recently_run(name, hours=settings.recent_run_guard_hours):
            logger.info(f"Skipping {name}: already run within {settings.recent_run_guard_hours} hours")
            results[name] = None
            continue

        try:
            coordinator = RunCoordinator(
                settings.get_source(name),
                registry.get(name),
                session_factory,
            )
            results[name] = await coordinator.run()
        except ConfigurationError as e:
            logger.error(f"Cannot run source {name}: {e}")
            results[name] = None
        except Exception as e:
            logger.error(f"Source {name} failed: {e.__class__.__name__}: {e}")
            results[name] = None

    return results


async def cleanup(
    run_retention_days: Optional[int] = None,
    inactive_retention_days: Optional[int] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> dict[str, int]:
    """Delete old ledger entries and products that have been inactive for too long."""
    if session_factory is None:
        from shopcrawl.db.session import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    runs = await RunLedger(session_factory).purge_older_than(
        settings.log_retention_days if run_retention_days is None else run_retention_days
    )
    products = await ProductRepository(session_factory).purge_inactive(
        settings.inactive_retention_days if inactive_retention_days is None else inactive_retention_days
    )
    logger.info(f"Cleanup removed {runs} runs and {products} inactive products")
    return {"runs_deleted": runs, "products_deleted": products}


def main():
    parser = argparse.ArgumentParser(description="Crawl configured e-commerce sources")
    parser.add_argument("sources", nargs="*", help="Sources to run (default: all configured)")
    parser.add_argument("--force", action="store_true", help="Run even if the source ran recently")
    parser.add_argument("--cleanup", action="store_true", help="Purge old runs and inactive products instead")
    args = parser.parse_args()

    setup_logging()

    if args.cleanup:
        asyncio.run(cleanup())
    else:
        asyncio.run(run_sources(args.sources or None, force=args.force))


if __name__ == "__main__":
    main()
