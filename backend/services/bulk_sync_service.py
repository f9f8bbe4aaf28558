"""Bulk sync coordinator - runs the orchestrator over many owners.

Owners are processed in fixed-size batches; the members of a batch run
concurrently on worker threads, each with its own database session, and
batches are separated by a short delay. Progress is published as typed
events to any number of subscribers.
"""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator

from sqlalchemy.orm import Session

from config import settings
from services.owner_service import OwnerService
from services.sync_orchestrator import SyncOrchestrator
from services.sync_result import OwnerSyncResult

logger = logging.getLogger(__name__)


@dataclass
class OwnerOutcome:
    """Success or failure of one owner within a bulk run."""

    owner_name: str
    success: bool
    result: OwnerSyncResult | None = None
    error: str | None = None
    duration_seconds: float = 0.0


@dataclass
class ProgressEvent:
    """Published after each owner completes."""

    outcome: OwnerOutcome
    completed: int
    total: int

    @property
    def owner_name(self) -> str:
        return self.outcome.owner_name


@dataclass
class BulkSyncReport:
    results: list[OwnerOutcome] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def summary(self) -> dict:
        succeeded = [o for o in self.results if o.success]
        synced = [o.result for o in succeeded if o.result is not None]
        duration = (
            (self.finished_at - self.started_at).total_seconds() if self.finished_at else 0.0
        )
        return {
            "total": len(self.results),
            "succeeded": len(succeeded),
            "failed": len(self.results) - len(succeeded),
            "accounts_synced": sum(r.accounts.synced for r in synced),
            "holdings_synced": sum(r.holdings.synced for r in synced),
            "transactions_synced": sum(r.transactions.synced for r in synced),
            "duration_seconds": duration,
        }


@dataclass
class BulkSyncFinished:
    """Terminal event; no further events follow for this run."""

    report: BulkSyncReport


class ProgressStream:
    """Fan-out of progress events to subscriber queues."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[queue.Queue] = []

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue()
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def publish(self, event: ProgressEvent | BulkSyncFinished) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            q.put(event)

    @staticmethod
    def iter_events(
        q: queue.Queue, timeout: float | None = None
    ) -> Iterator[ProgressEvent | BulkSyncFinished]:
        """Yield events from a subscription until the run finishes.

        Raises:
            queue.Empty: No event arrived within ``timeout`` seconds.
        """
        while True:
            event = q.get(timeout=timeout)
            yield event
            if isinstance(event, BulkSyncFinished):
                return


class BulkSyncCoordinator:
    """Runs SyncOrchestrator.synchronize for many owners with bounded concurrency."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        session_factory: Callable[[], Session],
        *,
        stream: ProgressStream | None = None,
        max_concurrent: int | None = None,
        batch_delay_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.orchestrator = orchestrator
        self._session_factory = session_factory
        self.stream = stream or ProgressStream()
        self.max_concurrent = max_concurrent or settings.BULK_SYNC_MAX_CONCURRENT
        self.batch_delay_seconds = (
            settings.BULK_SYNC_BATCH_DELAY_SECONDS
            if batch_delay_seconds is None
            else batch_delay_seconds
        )
        self._sleep = sleep

    def run(
        self,
        owner_names: list[str] | None = None,
        full_sync: bool = True,
        max_concurrent: int | None = None,
    ) -> BulkSyncReport:
        """Sync the given owners (default: every active owner).

        One owner's failure never stops the others; it is recorded in the
        report and in its progress event.
        """
        if owner_names is None:
            owner_names = self._active_owner_names()
        batch_size = max(1, max_concurrent or self.max_concurrent)
        report = BulkSyncReport()
        total = len(owner_names)
        logger.info(
            "Bulk sync started: %d owners, batch size %d, full_sync=%s",
            total, batch_size, full_sync,
        )

        with ThreadPoolExecutor(max_workers=batch_size) as pool:
            for start in range(0, total, batch_size):
                batch = owner_names[start:start + batch_size]
                futures = [pool.submit(self._sync_one, name, full_sync) for name in batch]
                for future in as_completed(futures):
                    outcome = future.result()
                    report.results.append(outcome)
                    self.stream.publish(
                        ProgressEvent(outcome=outcome, completed=len(report.results), total=total)
                    )
                if start + batch_size < total and self.batch_delay_seconds > 0:
                    logger.debug("Waiting %.1fs before next batch", self.batch_delay_seconds)
                    self._sleep(self.batch_delay_seconds)

        report.finished_at = datetime.now(timezone.utc)
        summary = report.summary
        logger.info(
            "Bulk sync completed: %d/%d succeeded, %d failed in %.1fs",
            summary["succeeded"], summary["total"], summary["failed"],
            summary["duration_seconds"],
        )
        self.stream.publish(BulkSyncFinished(report=report))
        return report

    def _sync_one(self, owner_name: str, full_sync: bool) -> OwnerOutcome:
        started = time.monotonic()
        db = self._session_factory()
        try:
            result = self.orchestrator.synchronize(db, owner_name, full_sync=full_sync)
            return OwnerOutcome(
                owner_name=owner_name,
                success=True,
                result=result,
                duration_seconds=time.monotonic() - started,
            )
        except Exception as exc:
            logger.error("Bulk sync failed for %s: %s", owner_name, exc)
            return OwnerOutcome(
                owner_name=owner_name,
                success=False,
                error=str(exc),
                duration_seconds=time.monotonic() - started,
            )
        finally:
            db.close()

    def _active_owner_names(self) -> list[str]:
        db = self._session_factory()
        try:
            return [owner.name for owner in OwnerService.list_owners(db)]
        finally:
            db.close()
