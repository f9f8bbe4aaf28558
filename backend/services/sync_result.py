"""Result objects returned by the sync stages and the orchestrator."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorCategory(str, Enum):
    """Category of a sync error."""

    VALIDATION = "validation"
    UPSTREAM = "upstream"
    PERSISTENCE = "persistence"
    CONCURRENCY = "concurrency"
    UNKNOWN = "unknown"


@dataclass
class SyncItemError:
    """Structured error for one failed item (account, chunk, record).

    Every failure that does not abort the sync lands in a StageResult as
    one of these.
    """

    stage: str  # "accounts" | "holdings" | "transactions" | "snapshot"
    message: str
    category: ErrorCategory = ErrorCategory.UNKNOWN
    account_number: str | None = None
    symbol: str | None = None
    chunk_start: date | None = None
    chunk_end: date | None = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "message": self.message,
            "category": self.category.value,
            "account_number": self.account_number,
            "symbol": self.symbol,
            "chunk_start": self.chunk_start.isoformat() if self.chunk_start else None,
            "chunk_end": self.chunk_end.isoformat() if self.chunk_end else None,
        }


@dataclass
class StageResult:
    """Count of items synced by one stage plus its per-item errors."""

    synced: int = 0
    errors: list[SyncItemError] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    def merge(self, other: "StageResult") -> None:
        """Fold a sub-result (e.g., one account) into this one."""
        self.synced += other.synced
        self.errors.extend(other.errors)

    def finish(self) -> "StageResult":
        self.finished_at = _utcnow()
        return self

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "synced": self.synced,
            "errors": [e.to_dict() for e in self.errors],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class SnapshotOutcome:
    """Whether the post-sync snapshot was created."""

    created: bool = False
    snapshot_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "snapshot_id": self.snapshot_id,
            "error": self.error,
        }


@dataclass
class OwnerSyncResult:
    """Report for one orchestrated sync of an owner.

    Returned even on partial failure; stage errors never abort later
    stages.
    """

    owner_name: str
    full_sync: bool = False
    accounts: StageResult = field(default_factory=StageResult)
    holdings: StageResult = field(default_factory=StageResult)
    transactions: StageResult = field(default_factory=StageResult)
    snapshot: SnapshotOutcome = field(default_factory=SnapshotOutcome)
    stopped: bool = False
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def errors(self) -> list[SyncItemError]:
        return [*self.accounts.errors, *self.holdings.errors, *self.transactions.errors]

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        return {
            "owner_name": self.owner_name,
            "full_sync": self.full_sync,
            "accounts": self.accounts.to_dict(),
            "holdings": self.holdings.to_dict(),
            "transactions": self.transactions.to_dict(),
            "snapshot": self.snapshot.to_dict(),
            "stopped": self.stopped,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
        }
