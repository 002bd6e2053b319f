class PoolSyncError(Exception):
    """Base error for the ingestion pipeline."""


class DecodeError(PoolSyncError):
    """A log for a known topic could not be decoded by a strategy."""


class StoreUnavailableError(PoolSyncError):
    """The relational store cannot be reached; the current batch is aborted."""
