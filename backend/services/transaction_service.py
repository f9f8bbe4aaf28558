"""Transaction service - fetches, deduplicates and persists transaction history."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from integrations.brokerage_protocol import BrokerageClient, BrokerageTransaction
from integrations.exceptions import UPSTREAM_FAILURES
from models import Account, Owner, Transaction
from services.date_chunks import subtract_months, sync_window
from services.exceptions import PersistenceError
from services.sync_result import ErrorCategory, StageResult, SyncItemError
from services.transaction_fetcher import TransactionFetcher
from utils.transaction_types import TransactionType, classify_transaction_type

logger = logging.getLogger(__name__)

_AMOUNT_QUANTUM = Decimal("0.0001")  # matches Transaction.net_amount scale


def _naive_utc(value: datetime | None) -> datetime | None:
    """Normalize to naive UTC, the form SQLite stores and returns."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _quantize(amount: Decimal | None) -> Decimal:
    return Decimal(str(amount if amount is not None else 0)).quantize(_AMOUNT_QUANTUM)


def dedup_key(
    transaction_date: datetime,
    symbol: str | None,
    tx_type: TransactionType | str,
    net_amount: Decimal | None,
    description: str | None,
) -> tuple:
    """Identity of a transaction within one account."""
    return (
        _naive_utc(transaction_date),
        symbol or None,
        TransactionType(tx_type).value,
        _quantize(net_amount),
        description,
    )


@dataclass
class PersistOutcome:
    """Counts from persisting one batch of transactions."""

    inserted: int = 0
    duplicates: int = 0
    errors: list[SyncItemError] = field(default_factory=list)


class TransactionService:
    """Service for syncing transaction history from the brokerage."""

    def __init__(
        self,
        client: BrokerageClient,
        fetcher: TransactionFetcher | None = None,
        *,
        full_lookback_months: int | None = None,
        incremental_lookback_months: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._client = client
        self.fetcher = fetcher or TransactionFetcher(client)
        self.full_lookback_months = (
            full_lookback_months or settings.SYNC_FULL_LOOKBACK_MONTHS
        )
        self.incremental_lookback_months = (
            incremental_lookback_months or settings.SYNC_INCREMENTAL_LOOKBACK_MONTHS
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def persist_transactions(
        db: Session,
        account: Account,
        items: Iterable[BrokerageTransaction],
    ) -> PersistOutcome:
        """Insert transactions whose identity key is new for the account.

        Existing keys are loaded in one query. Each insert runs in its own
        savepoint so one failing record does not block its siblings; the
        failure is recorded in the outcome instead.

        Args:
            db: Database session.
            account: The Account the transactions belong to.
            items: Transactions from the brokerage (may overlap earlier runs).

        Returns:
            PersistOutcome with inserted/duplicate counts and per-record errors.
        """
        items = list(items)
        outcome = PersistOutcome()
        if not items:
            return outcome

        existing_keys = {
            dedup_key(row.transaction_date, row.symbol, row.type, row.net_amount, row.description)
            for row in db.query(
                Transaction.transaction_date,
                Transaction.symbol,
                Transaction.type,
                Transaction.net_amount,
                Transaction.description,
            ).filter(Transaction.account_id == account.id)
        }

        for item in items:
            tx_type = classify_transaction_type(item.type)
            key = dedup_key(
                item.transaction_date, item.symbol, tx_type, item.net_amount, item.description
            )
            if key in existing_keys:
                outcome.duplicates += 1
                continue

            is_dividend = tx_type is TransactionType.DIVIDEND
            dividend_per_share = Decimal("0")
            if is_dividend and item.quantity is not None and item.quantity > 0:
                dividend_per_share = abs(item.net_amount) / item.quantity

            try:
                with db.begin_nested():
                    db.add(
                        Transaction(
                            account_id=account.id,
                            trade_date=_naive_utc(item.trade_date),
                            transaction_date=_naive_utc(item.transaction_date),
                            settlement_date=_naive_utc(item.settlement_date),
                            action=item.action,
                            symbol=item.symbol or None,
                            symbol_id=item.symbol_id,
                            description=item.description,
                            currency=item.currency,
                            quantity=item.quantity,
                            price=item.price,
                            gross_amount=item.gross_amount,
                            commission=item.commission,
                            net_amount=_quantize(item.net_amount),
                            type=tx_type.value,
                            raw_type=item.type,
                            is_dividend=is_dividend,
                            dividend_per_share=dividend_per_share,
                        )
                    )
                    db.flush()
            except SQLAlchemyError as exc:
                error = PersistenceError(str(exc), record_key=repr(key))
                logger.warning(
                    "Failed to save transaction %s for account %s: %s",
                    key, account.number, error,
                )
                outcome.errors.append(
                    SyncItemError(
                        stage="transactions",
                        message=f"Failed to save transaction on {key[0]}: {error}",
                        category=ErrorCategory.PERSISTENCE,
                        account_number=account.number,
                        symbol=item.symbol,
                    )
                )
                continue

            existing_keys.add(key)
            outcome.inserted += 1

        logger.info(
            "Transactions for account %s: %d new, %d duplicates skipped, %d failed",
            account.number, outcome.inserted, outcome.duplicates, len(outcome.errors),
        )
        return outcome

    def sync_transactions(
        self,
        db: Session,
        owner: Owner,
        full_sync: bool = False,
        should_stop: Callable[[], bool] | None = None,
    ) -> StageResult:
        """Fetch and persist the sync window for every account of the owner.

        Accounts are processed sequentially. Chunk failures and record
        failures are accumulated; an unexpected error in one account is
        recorded and the next account still runs.
        """
        result = StageResult()
        accounts = (
            db.query(Account).filter_by(owner_id=owner.id).order_by(Account.number).all()
        )
        if not accounts:
            logger.warning("No accounts found for %s, skipping transaction sync", owner.name)
            return result.finish()

        start, end = sync_window(
            full_sync,
            now=self._clock(),
            full_months=self.full_lookback_months,
            incremental_months=self.incremental_lookback_months,
            utc_offset=self.fetcher.utc_offset,
        )
        logger.info(
            "Transaction sync started for %s: %d accounts, %s to %s (full_sync=%s)",
            owner.name, len(accounts), start, end, full_sync,
        )

        for account in accounts:
            if should_stop is not None and should_stop():
                logger.warning("Stop requested; transaction sync for %s halted", owner.name)
                break
            try:
                fetched = self.fetcher.fetch(
                    owner.name, account.number, start, end, should_stop
                )
                result.errors.extend(fetched.errors)
                outcome = self.persist_transactions(db, account, fetched.transactions)
                result.synced += outcome.inserted
                result.errors.extend(outcome.errors)
            except UPSTREAM_FAILURES as exc:
                logger.warning(
                    "Transaction sync failed for account %s: %s", account.number, exc
                )
                result.errors.append(
                    SyncItemError(
                        stage="transactions",
                        message=str(exc),
                        category=ErrorCategory.UPSTREAM,
                        account_number=account.number,
                    )
                )
            except Exception as exc:
                logger.error(
                    "Unexpected error syncing transactions for account %s: %s",
                    account.number, exc, exc_info=True,
                )
                result.errors.append(
                    SyncItemError(
                        stage="transactions",
                        message=str(exc),
                        account_number=account.number,
                    )
                )

        logger.info(
            "Transaction sync completed for %s: %d synced, %d errors",
            owner.name, result.synced, len(result.errors),
        )
        return result.finish()

    @staticmethod
    def get_dividend_transactions(
        db: Session, account_id: str, symbol: str
    ) -> list[Transaction]:
        """Dividend transactions for one (account, symbol), newest first."""
        return (
            db.query(Transaction)
            .filter(
                Transaction.account_id == account_id,
                Transaction.symbol == symbol,
                Transaction.type == TransactionType.DIVIDEND.value,
            )
            .order_by(Transaction.transaction_date.desc())
            .all()
        )

    @staticmethod
    def get_transaction_statistics(db: Session, owner_name: str) -> dict:
        """Per-type counts and amounts plus the overall date range for an owner."""
        base = (
            db.query(Transaction)
            .join(Account, Transaction.account_id == Account.id)
            .join(Owner, Account.owner_id == Owner.id)
            .filter(Owner.name == owner_name)
        )
        rows = (
            base.with_entities(
                Transaction.type,
                func.count(Transaction.id),
                func.sum(Transaction.net_amount),
                func.min(Transaction.transaction_date),
                func.max(Transaction.transaction_date),
            )
            .group_by(Transaction.type)
            .all()
        )
        by_type = []
        for tx_type, count, total, earliest, latest in rows:
            total = Decimal(str(total or 0))
            by_type.append({
                "type": tx_type,
                "count": count,
                "total_amount": total,
                "avg_amount": total / count if count else Decimal("0"),
                "earliest_date": earliest,
                "latest_date": latest,
            })
        by_type.sort(key=lambda entry: entry["count"], reverse=True)

        earliest_dates = [entry["earliest_date"] for entry in by_type if entry["earliest_date"]]
        latest_dates = [entry["latest_date"] for entry in by_type if entry["latest_date"]]
        return {
            "owner_name": owner_name,
            "total_transactions": sum(entry["count"] for entry in by_type),
            "dividend_transactions": sum(
                entry["count"] for entry in by_type
                if entry["type"] == TransactionType.DIVIDEND.value
            ),
            "date_range": {
                "earliest": min(earliest_dates) if earliest_dates else None,
                "latest": max(latest_dates) if latest_dates else None,
            },
            "by_type": by_type,
        }

    @staticmethod
    def cleanup_old_transactions(
        db: Session,
        owner_name: str,
        retention_months: int | None = None,
        now: datetime | None = None,
    ) -> int:
        """Delete an owner's transactions older than the retention window.

        Returns:
            Number of transactions deleted (not yet committed).
        """
        retention_months = retention_months or settings.TRANSACTION_RETENTION_MONTHS
        now = now or datetime.now(timezone.utc)
        cutoff_day = subtract_months(now.date(), retention_months)
        cutoff = datetime(cutoff_day.year, cutoff_day.month, cutoff_day.day)

        account_ids = (
            db.query(Account.id)
            .join(Owner, Account.owner_id == Owner.id)
            .filter(Owner.name == owner_name)
        )
        deleted = (
            db.query(Transaction)
            .filter(
                Transaction.account_id.in_(account_ids.scalar_subquery()),
                Transaction.transaction_date < cutoff,
            )
            .delete(synchronize_session=False)
        )
        if deleted:
            logger.info(
                "Cleaned up %d transactions older than %s for %s",
                deleted, cutoff_day, owner_name,
            )
        return deleted
