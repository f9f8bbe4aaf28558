"""Sync error taxonomy.

Upstream API failures use :mod:`integrations.exceptions`; the errors here
cover the remaining categories raised by the sync services.
"""


class SyncError(Exception):
    """Base exception for sync failures raised to callers."""

    pass


class ValidationError(SyncError):
    """Owner missing or inactive, or no active credential.

    Fatal: raised before any sync stage runs.
    """

    def __init__(self, message: str, owner_name: str = ""):
        self.owner_name = owner_name
        super().__init__(message)


class PersistenceError(SyncError):
    """A single record could not be written to the store."""

    def __init__(self, message: str, record_key: str = ""):
        self.record_key = record_key
        super().__init__(message)


class ConcurrencyError(SyncError, ValueError):
    """A sync for the same owner is already running."""

    def __init__(self, owner_name: str):
        self.owner_name = owner_name
        super().__init__(f"Sync already in progress for {owner_name}")
