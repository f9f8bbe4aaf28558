"""Unit tests for SyncOrchestrator and the per-owner sync lock."""

import threading
from datetime import date, datetime, timezone

import pytest

from models import Holding, Owner, PortfolioSnapshot, Transaction
from services.exceptions import ConcurrencyError, ValidationError
from services.holding_service import HoldingService
from services.snapshot_service import SnapshotService
from services.sync_orchestrator import KeyedSyncLock, SyncOrchestrator
from services.transaction_fetcher import TransactionFetcher
from services.transaction_service import TransactionService
from tests.fixtures.mocks import (
    MockBrokerageClient,
    SAMPLE_ACCOUNTS,
    SAMPLE_BALANCES,
    SAMPLE_HOLDINGS,
    SAMPLE_INSTRUMENTS,
    make_transaction,
)

NOW = datetime(2024, 8, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    return MockBrokerageClient(
        accounts=SAMPLE_ACCOUNTS,
        balances=SAMPLE_BALANCES,
        holdings=SAMPLE_HOLDINGS,
        instruments=SAMPLE_INSTRUMENTS,
        transactions={
            "11111111": [
                make_transaction(date(2024, 7, 15)),
                make_transaction(date(2024, 7, 20), tx_type="Deposits", net_amount="500.00",
                                 symbol=None, quantity=None),
            ],
        },
    )


def _orchestrator(client, lock, **overrides):
    transactions = TransactionService(
        client, TransactionFetcher(client, sleep=lambda s: None), clock=lambda: NOW
    )
    overrides.setdefault("transaction_service", transactions)
    return SyncOrchestrator(client, lock=lock, **overrides)


class TestKeyedSyncLock:
    def test_single_flight(self):
        lock = KeyedSyncLock()
        assert lock.acquire("alice") is True
        assert lock.acquire("alice") is False
        assert lock.acquire("bob") is True
        assert lock.held_keys() == ["alice", "bob"]

        lock.release("alice")
        assert lock.is_held("alice") is False
        assert lock.acquire("alice") is True

    def test_stop_flag_cleared_on_release(self):
        lock = KeyedSyncLock()
        assert lock.request_stop("alice") is False

        lock.acquire("alice")
        assert lock.request_stop("alice") is True
        assert lock.stop_requested("alice") is True

        lock.release("alice")
        lock.acquire("alice")
        assert lock.stop_requested("alice") is False


class TestSynchronize:
    def test_full_sync_runs_every_stage(self, db, owner, credential, client, sync_lock):
        result = _orchestrator(client, sync_lock).synchronize(db, owner.name, full_sync=True)

        assert result.accounts.synced == 2
        assert result.holdings.synced == 3
        assert result.transactions.synced == 2
        assert result.errors == []
        assert result.snapshot.created is True
        assert result.finished_at is not None

        db.refresh(owner)
        assert owner.last_sync_status == "success"
        assert owner.last_sync_error is None
        assert owner.last_successful_sync is not None
        assert owner.last_sync_results["holdings"]["synced"] == 3
        assert db.query(PortfolioSnapshot).count() == 1
        assert sync_lock.held_keys() == []

    def test_incremental_sync_skips_snapshot(self, db, owner, credential, client, sync_lock):
        result = _orchestrator(client, sync_lock).synchronize(db, owner.name)

        assert result.snapshot.created is False
        assert db.query(PortfolioSnapshot).count() == 0

    def test_force_refresh_takes_snapshot(self, db, owner, credential, client, sync_lock):
        result = _orchestrator(client, sync_lock).synchronize(
            db, owner.name, force_refresh=True
        )
        assert result.snapshot.created is True

    def test_repeat_sync_is_idempotent(self, db, owner, credential, client, sync_lock):
        orchestrator = _orchestrator(client, sync_lock)
        orchestrator.synchronize(db, owner.name, full_sync=True)
        second = orchestrator.synchronize(db, owner.name, full_sync=True)

        assert second.transactions.synced == 0
        assert db.query(Transaction).count() == 2
        assert db.query(Holding).count() == 3

    def test_concurrent_sync_rejected_without_side_effects(
        self, db, owner, credential, client, sync_lock
    ):
        sync_lock.acquire(owner.name)

        with pytest.raises(ConcurrencyError):
            _orchestrator(client, sync_lock).synchronize(db, owner.name)

        db.refresh(owner)
        assert owner.last_sync_status is None
        assert owner.last_sync_time is None
        assert sync_lock.is_held(owner.name)
        assert client.transaction_calls == []

    def test_concurrent_sync_from_another_thread(
        self, session_factory, db, owner, credential, client, sync_lock
    ):
        entered = threading.Event()
        release = threading.Event()

        class BlockingHoldingService(HoldingService):
            def sync_holdings(self, *args, **kwargs):
                entered.set()
                release.wait(timeout=5)
                return super().sync_holdings(*args, **kwargs)

        orchestrator = _orchestrator(
            client, sync_lock, holding_service=BlockingHoldingService(client)
        )
        outcome = {}

        def run():
            session = session_factory()
            try:
                outcome["result"] = orchestrator.synchronize(session, owner.name)
            finally:
                session.close()

        worker = threading.Thread(target=run)
        worker.start()
        assert entered.wait(timeout=5)
        try:
            with pytest.raises(ConcurrencyError):
                orchestrator.synchronize(db, owner.name)
        finally:
            release.set()
            worker.join(timeout=10)

        assert outcome["result"].holdings.synced == 3
        assert sync_lock.held_keys() == []

    def test_validation_error_aborts_before_stages(self, db, owner, client, sync_lock):
        with pytest.raises(ValidationError):
            _orchestrator(client, sync_lock).synchronize(db, owner.name)

        db.refresh(owner)
        assert owner.last_sync_status is None
        assert client.transaction_calls == []
        assert sync_lock.held_keys() == []

    def test_account_failure_skips_dependent_stages(self, db, owner, credential, sync_lock):
        client = MockBrokerageClient(should_fail=True, failure_type="auth")

        result = _orchestrator(client, sync_lock).synchronize(db, owner.name)

        assert result.accounts.synced == 0
        assert len(result.errors) == 1
        assert client.transaction_calls == []
        db.refresh(owner)
        assert owner.last_sync_status == "partial"
        assert "Failed to fetch accounts" in owner.last_sync_error

    def test_stop_request_halts_remaining_stages(self, db, owner, credential, client, sync_lock):
        class StoppingHoldingService(HoldingService):
            def sync_holdings(self, db, owner, full_sync=False, should_stop=None):
                sync_lock.request_stop(owner.name)
                return super().sync_holdings(db, owner, full_sync, should_stop)

        orchestrator = _orchestrator(
            client, sync_lock, holding_service=StoppingHoldingService(client)
        )

        result = orchestrator.synchronize(db, owner.name, full_sync=True)

        assert result.stopped is True
        assert result.holdings.synced == 0
        assert client.transaction_calls == []
        assert result.snapshot.created is False
        db.refresh(owner)
        assert owner.last_sync_status == "stopped"
        assert owner.last_sync_error == "Manually stopped"
        assert owner.last_successful_sync is None

    def test_unexpected_error_recorded_and_raised(self, db, owner, credential, client, sync_lock):
        class BrokenTransactions(TransactionService):
            def sync_transactions(self, *args, **kwargs):
                raise RuntimeError("database is locked")

        orchestrator = _orchestrator(
            client, sync_lock, transaction_service=BrokenTransactions(client)
        )

        with pytest.raises(RuntimeError):
            orchestrator.synchronize(db, owner.name)

        db.refresh(owner)
        assert owner.last_sync_status == "failed"
        assert owner.last_sync_error == "database is locked"
        # Earlier stages were committed before the failure
        assert db.query(Holding).count() == 3
        assert sync_lock.held_keys() == []

    def test_balance_failure_is_partial(self, db, owner, credential, client, sync_lock):
        client.balance_failures.add("11111111")

        result = _orchestrator(client, sync_lock).synchronize(db, owner.name, full_sync=True)

        assert result.accounts.synced == 2
        assert result.holdings.synced == 3
        assert [e.stage for e in result.errors] == ["accounts"]
        db.refresh(owner)
        assert owner.last_sync_status == "partial"
        assert owner.last_successful_sync is not None

    def test_snapshot_failure_is_partial(
        self, db, owner, credential, client, sync_lock, monkeypatch
    ):
        def broken_snapshot(db, owner_name, sector_threshold=None):
            raise ValueError("snapshot exploded")

        monkeypatch.setattr(SnapshotService, "create_snapshot", broken_snapshot)

        result = _orchestrator(client, sync_lock).synchronize(db, owner.name, full_sync=True)

        assert result.snapshot.error == "snapshot exploded"
        db.refresh(owner)
        assert owner.last_sync_status == "partial"
        assert owner.last_successful_sync is not None


class TestStatusAndBatch:
    def test_get_sync_status(self, db, owner, credential, client, sync_lock):
        orchestrator = _orchestrator(client, sync_lock)
        orchestrator.synchronize(db, owner.name, full_sync=True)

        status = orchestrator.get_sync_status(db, owner.name)

        assert status["in_progress"] is False
        assert status["last_sync_status"] == "success"
        assert status["counts"] == {
            "accounts": 2, "holdings": 3, "transactions": 2, "snapshots": 1,
        }
        assert orchestrator.get_sync_status(db, "nobody") is None

    def test_in_progress_reported(self, db, owner, client, sync_lock):
        sync_lock.acquire(owner.name)
        assert _orchestrator(client, sync_lock).get_sync_status(db, owner.name)["in_progress"] is True

    def test_stop_sync(self, db, owner, client, sync_lock):
        orchestrator = _orchestrator(client, sync_lock)
        assert orchestrator.stop_sync(db, owner.name) is False

        sync_lock.acquire(owner.name)
        assert orchestrator.stop_sync(db, owner.name) is True
        assert sync_lock.stop_requested(owner.name)
        db.refresh(owner)
        assert owner.last_sync_status == "stopped"

    def test_sync_all_owners(self, db, owner, credential, client, sync_lock):
        db.add(Owner(name="bob"))
        db.commit()

        outcome = _orchestrator(client, sync_lock).sync_all_owners(db)

        assert set(outcome["results"]) == {"alice"}
        assert set(outcome["failed"]) == {"bob"}
        statuses = _orchestrator(client, sync_lock).get_all_sync_statuses(db)
        assert [s["owner_name"] for s in statuses] == ["alice", "bob"]
