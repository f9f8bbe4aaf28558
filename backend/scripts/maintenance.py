#!/usr/bin/env python
"""Database maintenance: retention cleanup and dividend recalculation.

Deletes snapshots older than SNAPSHOT_RETENTION_DAYS and transactions
older than TRANSACTION_RETENTION_MONTHS, and recomputes stored dividend
data from local transactions. Nothing here calls the brokerage.

Usage:
    python -m scripts.maintenance cleanup
    python -m scripts.maintenance cleanup --owner alice --dry-run
    python -m scripts.maintenance recalculate-dividends --owner alice --symbol ENB.TO
"""

import argparse

from sqlalchemy.orm import Session

from database import get_session_local
from logging_config import setup_logging
from services.holding_service import HoldingService
from services.owner_service import OwnerService
from services.snapshot_service import SnapshotService
from services.transaction_service import TransactionService


def _owner_names(db: Session, owner: str | None) -> list[str]:
    if owner:
        return [owner]
    return [o.name for o in OwnerService.list_owners(db, active_only=False)]


def cleanup(
    db: Session,
    owner: str | None = None,
    snapshot_days: int | None = None,
    transaction_months: int | None = None,
) -> dict:
    """Apply both retention policies; returns deleted counts."""
    snapshots = SnapshotService.cleanup_old_snapshots(
        db, retention_days=snapshot_days, owner_name=owner
    )
    transactions = 0
    for name in _owner_names(db, owner):
        deleted = TransactionService.cleanup_old_transactions(
            db, name, retention_months=transaction_months
        )
        print(f"  {name}: {deleted} transactions removed")
        transactions += deleted
    return {"snapshots": snapshots, "transactions": transactions}


def recalculate_dividends(db: Session, owner: str | None = None, symbol: str | None = None) -> int:
    """Recompute dividend data for one or all owners; returns holdings updated."""
    service = HoldingService(client=None)
    updated = 0
    for name in _owner_names(db, owner):
        count = service.recalculate_dividends(db, name, symbol=symbol)
        print(f"  {name}: {count} holdings recalculated")
        updated += count
    return updated


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Portfolio database maintenance")
    subparsers = parser.add_subparsers(dest="command", required=True)

    cleanup_parser = subparsers.add_parser("cleanup", help="Apply retention policies")
    cleanup_parser.add_argument("--snapshot-days", type=int, default=None)
    cleanup_parser.add_argument("--transaction-months", type=int, default=None)

    recalc_parser = subparsers.add_parser(
        "recalculate-dividends", help="Recompute stored dividend data"
    )
    recalc_parser.add_argument("--symbol", default=None)

    for sub in (cleanup_parser, recalc_parser):
        sub.add_argument("--owner", default=None, help="Limit to one owner")
        sub.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would change without committing",
        )
    args = parser.parse_args(argv)

    setup_logging()
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        if args.command == "cleanup":
            counts = cleanup(db, args.owner, args.snapshot_days, args.transaction_months)
            print(
                f"\nSnapshots removed: {counts['snapshots']}"
                f"\nTransactions removed: {counts['transactions']}"
            )
        else:
            updated = recalculate_dividends(db, args.owner, args.symbol)
            print(f"\nHoldings recalculated: {updated}")

        if args.dry_run:
            db.rollback()
            print("\n[DRY RUN] No changes made. Run without --dry-run to apply.")
        else:
            db.commit()
            print("\nDone.")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        raise
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
