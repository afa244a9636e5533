"""Mutable state carried through one source run."""

import traceback
from dataclasses import dataclass
from typing import Any, Optional

from shopcrawl.db.ledger import RunLedger
from shopcrawl.db.repository import ACTION_CREATED, ACTION_UPDATED
from shopcrawl.ingest.pacing import RunBudget


def error_details(exc: BaseException, include_traceback: bool = False) -> dict[str, Any]:
    """Structured description of an exception: class, message and raising location."""
    frames = traceback.extract_tb(exc.__traceback__) if exc.__traceback__ else []
    last = frames[-1] if frames else None
    details: dict[str, Any] = {
        "exception": exc.__class__.__name__,
        "message": str(exc),
        "file": last.filename if last else None,
        "line": last.lineno if last else None,
    }
    if include_traceback:
        details["traceback"] = "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        )
    return details


@dataclass
class RunStats:
    """Counters aggregated across all listing URLs of a run."""

    found: int = 0
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    deactivated: int = 0
    errors_count: int = 0
    pages_processed: int = 0

    def record_upsert(self, action: str) -> None:
        if action == ACTION_CREATED:
            self.added += 1
        elif action == ACTION_UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1

    def as_ledger_stats(self) -> dict[str, int]:
        return {
            "products_found": self.found,
            "products_added": self.added,
            "products_updated": self.updated,
            "products_deactivated": self.deactivated,
            "pages_processed": self.pages_processed,
            "errors_count": self.errors_count,
        }


class RunContext:
    """Ties a run's ledger entry, counters and time budget together."""

    def __init__(self, source: str, run_id: int, ledger: RunLedger, budget: RunBudget):
        self.source = source
        self.run_id = run_id
        self.ledger = ledger
        self.budget = budget
        self.stats = RunStats()
        self.stopped_early = False

    async def record_error(
        self,
        message: str,
        exc: Optional[BaseException] = None,
        **extra: Any,
    ) -> None:
        """Count a non-fatal error and append it to the run's error trail."""
        self.stats.errors_count += 1
        details = error_details(exc) if exc is not None else {}
        details.update({k: v for k, v in extra.items() if v is not None})
        await self.ledger.record_error(self.run_id, message, details)
