"""Paginated transaction history fetcher.

Drives one upstream call per date chunk, strictly in order, with a
courtesy delay between chunks and exponential backoff on failures.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from config import settings
from integrations.brokerage_protocol import BrokerageClient, BrokerageTransaction
from integrations.exceptions import UPSTREAM_FAILURES
from services.date_chunks import DateChunk, split_date_range
from services.sync_result import ErrorCategory, SyncItemError

logger = logging.getLogger(__name__)


@dataclass
class FetchResult:
    """Transactions obtained for one account plus per-chunk failures."""

    transactions: list[BrokerageTransaction] = field(default_factory=list)
    chunk_count: int = 0
    succeeded_chunks: int = 0
    failed_chunks: list[DateChunk] = field(default_factory=list)
    errors: list[SyncItemError] = field(default_factory=list)
    stopped: bool = False


class TransactionFetcher:
    """Fetch an account's transaction history chunk by chunk."""

    def __init__(
        self,
        client: BrokerageClient,
        *,
        max_days: int | None = None,
        request_delay_ms: int | None = None,
        max_retries: int | None = None,
        retry_base_delay: float | None = None,
        utc_offset: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize with a client and optional overrides of the settings.

        Args:
            client: Brokerage API client.
            max_days: Longest window per request.
            request_delay_ms: Pause between consecutive chunks.
            max_retries: Total attempts per chunk before it is skipped.
            retry_base_delay: Backoff base; retry n waits ``base * 2**n``.
            utc_offset: Exchange offset used in request bounds.
            sleep: Injected for tests.
        """
        self._client = client
        self.max_days = max_days or settings.SYNC_MAX_DAYS_PER_REQUEST
        self.request_delay_ms = (
            settings.SYNC_REQUEST_DELAY_MS if request_delay_ms is None else request_delay_ms
        )
        self.max_retries = max_retries or settings.SYNC_MAX_RETRIES
        self.retry_base_delay = (
            settings.SYNC_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        )
        self.utc_offset = utc_offset or settings.EXCHANGE_UTC_OFFSET
        self._sleep = sleep

    def fetch(
        self,
        owner_name: str,
        account_number: str,
        start: date,
        end: date,
        should_stop: Callable[[], bool] | None = None,
    ) -> FetchResult:
        """Fetch every chunk of ``[start, end]`` for one account.

        A chunk that exhausts its retries is logged, recorded in
        ``errors`` and skipped; the remaining chunks still run. The stop
        callback is checked before each chunk.
        """
        chunks = split_date_range(start, end, self.max_days)
        result = FetchResult(chunk_count=len(chunks))
        logger.info(
            "Fetching transactions for account %s (%s to %s) in %d chunks",
            account_number, start, end, len(chunks),
        )

        for index, chunk in enumerate(chunks):
            if should_stop is not None and should_stop():
                logger.warning(
                    "Stop requested; skipping remaining %d chunks for account %s",
                    len(chunks) - index, account_number,
                )
                result.stopped = True
                break

            fetched = self._fetch_chunk(
                owner_name, account_number, chunk, index + 1, len(chunks), result
            )
            if fetched is None:
                continue

            result.transactions.extend(fetched)
            result.succeeded_chunks += 1
            if index < len(chunks) - 1 and self.request_delay_ms > 0:
                self._sleep(self.request_delay_ms / 1000)

        logger.info(
            "Completed transaction fetch for account %s: %d transactions, "
            "%d/%d chunks ok, %d failed",
            account_number, len(result.transactions), result.succeeded_chunks,
            len(chunks), len(result.failed_chunks),
        )
        return result

    def _fetch_chunk(
        self,
        owner_name: str,
        account_number: str,
        chunk: DateChunk,
        position: int,
        total: int,
        result: FetchResult,
    ) -> list[BrokerageTransaction] | None:
        """Fetch one chunk with retries; None means the chunk was skipped.

        Any exception raised for the chunk is retried unless it is a typed
        upstream error marked non-retriable.
        """
        start_iso, end_iso = chunk.formatted(self.utc_offset)
        for attempt in range(1, self.max_retries + 1):
            try:
                data = self._client.get_transactions(
                    account_number, owner_name, start_iso, end_iso
                )
            except Exception as exc:
                retriable = getattr(exc, "retriable", True)
                if attempt >= self.max_retries or not retriable:
                    logger.error(
                        "Failed to fetch chunk %d/%d for account %s after %d attempt(s): %s",
                        position, total, account_number, attempt, exc,
                    )
                    result.failed_chunks.append(chunk)
                    result.errors.append(
                        SyncItemError(
                            stage="transactions",
                            message=(
                                f"Chunk {start_iso} to {end_iso} failed after "
                                f"{attempt} attempt(s): {exc}"
                            ),
                            category=(
                                ErrorCategory.UPSTREAM
                                if isinstance(exc, UPSTREAM_FAILURES)
                                else ErrorCategory.UNKNOWN
                            ),
                            account_number=account_number,
                            chunk_start=chunk.start,
                            chunk_end=chunk.end,
                        )
                    )
                    return None
                delay = self.retry_base_delay * (2 ** attempt)
                logger.warning(
                    "Chunk %d/%d for account %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    position, total, account_number, attempt, self.max_retries, delay, exc,
                )
                self._sleep(delay)
                continue

            if not data:
                logger.debug(
                    "No transactions in chunk %d/%d for account %s", position, total, account_number
                )
                return []
            logger.debug(
                "Retrieved %d transactions from chunk %d/%d for account %s",
                len(data), position, total, account_number,
            )
            return list(data)
        return None
