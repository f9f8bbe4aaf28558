"""Account sync and account-level statistics."""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from integrations.brokerage_protocol import (
    AccountBalances,
    BrokerageAccount,
    BrokerageClient,
    CurrencyBalance,
)
from integrations.exceptions import UPSTREAM_FAILURES
from models import Account, Holding, Owner, Transaction
from services.sync_result import ErrorCategory, StageResult, SyncItemError
from utils.transaction_types import TransactionType

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _balance_to_dict(balance: CurrencyBalance) -> dict:
    return {
        "currency": balance.currency,
        "cash": str(balance.cash),
        "market_value": str(balance.market_value),
        "total_equity": str(balance.total_equity),
        "buying_power": str(balance.buying_power),
    }


class AccountService:
    """Upserts an owner's accounts and maintains their balance/position stats."""

    def __init__(self, client: BrokerageClient, default_currency: str | None = None):
        self._client = client
        self.default_currency = default_currency or settings.DEFAULT_CURRENCY

    def sync_accounts(self, db: Session, owner: Owner) -> StageResult:
        """Fetch the owner's accounts and upsert them by (owner, number).

        A failure to list accounts is recorded in the result rather than
        raised. Balances are optional: when they cannot be fetched the
        failure is recorded and the account is still upserted with zero
        cash in the default currency.

        Returns:
            StageResult with the number of accounts upserted.
        """
        result = StageResult()
        try:
            remote_accounts = self._client.get_accounts(owner.name) or []
        except UPSTREAM_FAILURES as exc:
            logger.error("Failed to fetch accounts for %s: %s", owner.name, exc)
            result.errors.append(
                SyncItemError(
                    stage="accounts",
                    message=f"Failed to fetch accounts: {exc}",
                    category=ErrorCategory.UPSTREAM,
                )
            )
            return result.finish()

        logger.info("Found %d accounts for %s", len(remote_accounts), owner.name)
        for remote in remote_accounts:
            balances = self._fetch_balances(owner.name, remote.number, result.errors)
            try:
                with db.begin_nested():
                    self._upsert_account(db, owner, remote, balances)
                    db.flush()
                result.synced += 1
            except SQLAlchemyError as exc:
                logger.error(
                    "Failed to save account %s for %s: %s", remote.number, owner.name, exc
                )
                result.errors.append(
                    SyncItemError(
                        stage="accounts",
                        message=f"Failed to save account {remote.number}: {exc}",
                        category=ErrorCategory.PERSISTENCE,
                        account_number=remote.number,
                    )
                )

        owner.number_of_accounts = (
            db.query(func.count(Account.id)).filter(Account.owner_id == owner.id).scalar()
        )
        db.flush()
        logger.info(
            "Account sync completed for %s: %d synced, %d errors",
            owner.name, result.synced, len(result.errors),
        )
        return result.finish()

    def refresh_balances(
        self, db: Session, owner: Owner, account_number: str | None = None
    ) -> int:
        """Re-fetch balances for existing accounts without listing accounts.

        Returns:
            Number of accounts whose balances were updated.
        """
        query = db.query(Account).filter(Account.owner_id == owner.id)
        if account_number:
            query = query.filter(Account.number == account_number)

        updated = 0
        for account in query.all():
            balances = self._fetch_balances(owner.name, account.number)
            if balances is None:
                continue
            self._apply_balances(account, balances)
            updated += 1
        db.flush()
        logger.info("Refreshed balances for %d accounts of %s", updated, owner.name)
        return updated

    def _fetch_balances(
        self,
        owner_name: str,
        account_number: str,
        errors: list[SyncItemError] | None = None,
    ) -> AccountBalances | None:
        try:
            return self._client.get_account_balances(account_number, owner_name)
        except UPSTREAM_FAILURES as exc:
            logger.warning(
                "Failed to fetch balances for account %s: %s", account_number, exc
            )
            if errors is not None:
                errors.append(
                    SyncItemError(
                        stage="accounts",
                        message=f"Failed to fetch balances for account {account_number}: {exc}",
                        category=ErrorCategory.UPSTREAM,
                        account_number=account_number,
                    )
                )
            return None

    def _upsert_account(
        self,
        db: Session,
        owner: Owner,
        remote: BrokerageAccount,
        balances: AccountBalances | None,
    ) -> Account:
        account = (
            db.query(Account).filter_by(owner_id=owner.id, number=remote.number).first()
        )
        if account is None:
            account = Account(owner_id=owner.id, number=remote.number)
            db.add(account)
            logger.info("Created account %s for %s", remote.number, owner.name)

        account.account_type = remote.type
        account.status = remote.status
        account.is_primary = remote.is_primary
        account.is_billing = remote.is_billing
        account.client_account_type = remote.client_account_type
        account.synced_at = _utcnow_naive()
        if balances is not None:
            self._apply_balances(account, balances)
        elif account.currency is None:
            account.currency = self.default_currency
        return account

    def _apply_balances(self, account: Account, balances: AccountBalances) -> None:
        primary = balances.primary(self.default_currency)
        account.currency = primary.currency or self.default_currency
        account.cash = primary.cash
        account.market_value = primary.market_value
        account.total_equity = primary.total_equity
        account.per_currency_balances = [_balance_to_dict(b) for b in balances.per_currency]
        account.balances_updated_at = _utcnow_naive()

    @staticmethod
    def update_account_statistics(db: Session, account: Account) -> Account:
        """Recompute position totals and net deposits from stored rows."""
        holdings = db.query(Holding).filter(Holding.account_id == account.id).all()
        account.number_of_positions = len(holdings)
        account.total_investment = sum((h.total_cost or ZERO for h in holdings), ZERO)
        account.current_value = sum((h.current_market_value or ZERO for h in holdings), ZERO)
        account.day_pnl = sum((h.day_pnl or ZERO for h in holdings), ZERO)
        account.open_pnl = sum((h.open_pnl or ZERO for h in holdings), ZERO)
        account.closed_pnl = sum((h.closed_pnl or ZERO for h in holdings), ZERO)

        totals = dict(
            db.query(Transaction.type, func.sum(Transaction.net_amount))
            .filter(
                Transaction.account_id == account.id,
                Transaction.type.in_(
                    [TransactionType.DEPOSIT.value, TransactionType.WITHDRAWAL.value]
                ),
            )
            .group_by(Transaction.type)
            .all()
        )
        deposits = abs(Decimal(str(totals.get(TransactionType.DEPOSIT.value) or 0)))
        withdrawals = abs(Decimal(str(totals.get(TransactionType.WITHDRAWAL.value) or 0)))
        account.net_deposits = deposits - withdrawals
        db.flush()
        return account

    @staticmethod
    def get_account_sync_stats(db: Session, owner_name: str) -> dict:
        """Per-account position and transaction counts for an owner."""
        accounts = (
            db.query(Account)
            .join(Owner, Account.owner_id == Owner.id)
            .filter(Owner.name == owner_name)
            .order_by(Account.number)
            .all()
        )
        stats = []
        for account in accounts:
            transaction_count = (
                db.query(func.count(Transaction.id))
                .filter(Transaction.account_id == account.id)
                .scalar()
            )
            stats.append({
                "account_number": account.number,
                "account_type": account.account_type,
                "currency": account.currency,
                "cash": account.cash,
                "total_equity": account.total_equity,
                "number_of_positions": account.number_of_positions,
                "transaction_count": transaction_count,
                "synced_at": account.synced_at,
                "balances_updated_at": account.balances_updated_at,
            })
        return {
            "owner_name": owner_name,
            "total_accounts": len(stats),
            "accounts": stats,
        }
