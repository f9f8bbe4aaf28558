"""Sync orchestrator - sequences the sync stages for one owner.

accounts -> holdings -> transactions -> snapshot, with at most one sync
in flight per owner. The in-flight map lives in memory only: it starts
empty with the process and is always released in a ``finally`` block.
"""

import logging
import threading
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from integrations.brokerage_protocol import BrokerageClient
from models import Account, Holding, Owner, PortfolioSnapshot, Transaction
from services.account_service import AccountService
from services.exceptions import ConcurrencyError, ValidationError
from services.holding_service import HoldingService
from services.owner_service import OwnerService
from services.snapshot_service import SnapshotService
from services.sync_result import OwnerSyncResult
from services.transaction_service import TransactionService

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_STOPPED = "stopped"


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class KeyedSyncLock:
    """Per-owner single-flight guard with a cooperative stop flag."""

    def __init__(self):
        self._guard = threading.Lock()
        self._running: dict[str, threading.Event] = {}

    def acquire(self, key: str) -> bool:
        """Atomically mark ``key`` as running; False if it already is."""
        with self._guard:
            if key in self._running:
                return False
            self._running[key] = threading.Event()
            return True

    def release(self, key: str) -> None:
        with self._guard:
            self._running.pop(key, None)

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._running

    def held_keys(self) -> list[str]:
        with self._guard:
            return sorted(self._running)

    def request_stop(self, key: str) -> bool:
        """Ask a running sync to stop at its next checkpoint."""
        with self._guard:
            event = self._running.get(key)
        if event is None:
            return False
        event.set()
        return True

    def stop_requested(self, key: str) -> bool:
        with self._guard:
            event = self._running.get(key)
        return event is not None and event.is_set()


# Process-wide in-flight map shared by every orchestrator instance.
sync_lock = KeyedSyncLock()


class SyncOrchestrator:
    """Runs a complete sync for one owner and records the outcome."""

    def __init__(
        self,
        client: BrokerageClient,
        *,
        lock: KeyedSyncLock | None = None,
        account_service: AccountService | None = None,
        holding_service: HoldingService | None = None,
        transaction_service: TransactionService | None = None,
    ):
        self._client = client
        self.lock = lock or sync_lock
        self.accounts = account_service or AccountService(client)
        self.holdings = holding_service or HoldingService(client)
        self.transactions = transaction_service or TransactionService(client)

    def synchronize(
        self,
        db: Session,
        owner_name: str,
        full_sync: bool = False,
        force_refresh: bool = False,
    ) -> OwnerSyncResult:
        """Sync one owner end to end.

        Stage errors are collected into the result and never abort later
        stages. A snapshot is taken after a full sync or when forced.

        Args:
            db: Database session; committed after each stage.
            owner_name: Owner to sync.
            full_sync: Six-month window and holdings rebuild when True,
                one-month incremental window otherwise.
            force_refresh: Take a snapshot even on an incremental sync.

        Returns:
            OwnerSyncResult, also on partial failure.

        Raises:
            ConcurrencyError: A sync for this owner is already running. No
                state is touched.
            ValidationError: Owner missing/inactive or no active credential.
        """
        if not self.lock.acquire(owner_name):
            logger.warning("Sync blocked: already in progress for %s", owner_name)
            raise ConcurrencyError(owner_name)

        logger.info("Sync lock acquired for %s (full_sync=%s)", owner_name, full_sync)
        result = OwnerSyncResult(owner_name=owner_name, full_sync=full_sync)
        try:
            owner = OwnerService.validate_for_sync(db, owner_name)
            try:
                self._run_stages(db, owner, result, full_sync, force_refresh)
            except Exception as exc:
                logger.error("Sync failed for %s: %s", owner_name, exc, exc_info=True)
                db.rollback()
                self._record_outcome(db, owner_name, result, STATUS_FAILED, str(exc))
                raise
            status = self._status_for(result)
            self._record_outcome(db, owner_name, result, status, self._error_summary(result))
            logger.info(
                "Sync %s for %s in %.1fs: %d accounts, %d holdings, %d transactions, %d errors",
                status, owner_name, result.duration_seconds, result.accounts.synced,
                result.holdings.synced, result.transactions.synced, len(result.errors),
            )
            return result
        finally:
            self.lock.release(owner_name)
            logger.info("Sync lock released for %s", owner_name)

    def _run_stages(
        self,
        db: Session,
        owner: Owner,
        result: OwnerSyncResult,
        full_sync: bool,
        force_refresh: bool,
    ) -> None:
        name = owner.name

        def should_stop() -> bool:
            return self.lock.stop_requested(name)

        result.accounts = self.accounts.sync_accounts(db, owner)
        db.commit()

        if result.accounts.synced > 0 or not result.accounts.errors:
            if not should_stop():
                result.holdings = self.holdings.sync_holdings(db, owner, full_sync, should_stop)
                db.commit()
            if not should_stop():
                result.transactions = self.transactions.sync_transactions(
                    db, owner, full_sync, should_stop
                )
                db.commit()
        else:
            logger.warning("No accounts synced for %s; skipping holdings and transactions", name)

        if should_stop():
            result.stopped = True
            logger.warning("Sync for %s stopped on request", name)
            return

        if full_sync or force_refresh:
            try:
                snapshot = SnapshotService.create_snapshot(db, name)
                db.commit()
                result.snapshot.created = True
                result.snapshot.snapshot_id = snapshot.id
            except Exception as exc:
                db.rollback()
                logger.error("Snapshot creation failed for %s: %s", name, exc, exc_info=True)
                result.snapshot.error = str(exc)

    @staticmethod
    def _status_for(result: OwnerSyncResult) -> str:
        if result.stopped:
            return STATUS_STOPPED
        if result.errors or result.snapshot.error:
            return STATUS_PARTIAL
        return STATUS_SUCCESS

    @staticmethod
    def _error_summary(result: OwnerSyncResult) -> str | None:
        if result.stopped:
            return "Manually stopped"
        messages = [str(e) for e in result.errors]
        if result.snapshot.error:
            messages.append(f"snapshot: {result.snapshot.error}")
        if not messages:
            return None
        summary = "; ".join(messages[:5])
        if len(messages) > 5:
            summary += f" (+{len(messages) - 5} more)"
        return summary

    @staticmethod
    def _record_outcome(
        db: Session,
        owner_name: str,
        result: OwnerSyncResult,
        status: str,
        error: str | None,
    ) -> None:
        result.finished_at = datetime.now(timezone.utc)
        owner = db.query(Owner).filter_by(name=owner_name).first()
        if owner is None:
            return
        now = _utcnow_naive()
        owner.last_sync_time = now
        owner.last_sync_status = status
        owner.last_sync_error = error
        owner.last_sync_results = result.to_dict()
        if status in (STATUS_SUCCESS, STATUS_PARTIAL):
            owner.last_successful_sync = now
        db.commit()

    def sync_all_owners(
        self, db: Session, full_sync: bool = False, continue_on_error: bool = True
    ) -> dict:
        """Sync every active owner one after another.

        Returns:
            ``{"results": {name: OwnerSyncResult}, "failed": {name: error}}``
        """
        results: dict[str, OwnerSyncResult] = {}
        failed: dict[str, str] = {}
        for owner in OwnerService.list_owners(db):
            try:
                results[owner.name] = self.synchronize(db, owner.name, full_sync)
            except (ValidationError, ConcurrencyError) as exc:
                logger.warning("Skipping %s: %s", owner.name, exc)
                failed[owner.name] = str(exc)
            except Exception as exc:
                failed[owner.name] = str(exc)
                if not continue_on_error:
                    raise
        logger.info(
            "Synced %d owners, %d failed", len(results), len(failed)
        )
        return {"results": results, "failed": failed}

    def get_sync_status(self, db: Session, owner_name: str) -> dict | None:
        """Last-sync metadata and record counts for an owner."""
        owner = db.query(Owner).filter_by(name=owner_name).first()
        if owner is None:
            return None

        def count(model, *criteria) -> int:
            return db.query(func.count(model.id)).filter(*criteria).scalar()

        account_ids = db.query(Account.id).filter(Account.owner_id == owner.id).scalar_subquery()
        return {
            "owner_name": owner.name,
            "in_progress": self.lock.is_held(owner.name),
            "last_sync_time": owner.last_sync_time,
            "last_successful_sync": owner.last_successful_sync,
            "last_sync_status": owner.last_sync_status,
            "last_sync_error": owner.last_sync_error,
            "last_sync_results": owner.last_sync_results,
            "counts": {
                "accounts": count(Account, Account.owner_id == owner.id),
                "holdings": count(Holding, Holding.account_id.in_(account_ids)),
                "transactions": count(Transaction, Transaction.account_id.in_(account_ids)),
                "snapshots": count(PortfolioSnapshot, PortfolioSnapshot.owner_id == owner.id),
            },
        }

    def get_all_sync_statuses(self, db: Session) -> list[dict]:
        return [
            self.get_sync_status(db, owner.name)
            for owner in OwnerService.list_owners(db, active_only=False)
        ]

    def stop_sync(self, db: Session, owner_name: str) -> bool:
        """Request a running sync to stop at its next checkpoint.

        Returns:
            False when no sync is running for the owner.
        """
        if not self.lock.request_stop(owner_name):
            return False
        owner = db.query(Owner).filter_by(name=owner_name).first()
        if owner is not None:
            owner.last_sync_status = STATUS_STOPPED
            owner.last_sync_error = "Manually stopped"
            db.commit()
        logger.info("Stop requested for %s", owner_name)
        return True
