"""Custom exceptions for the baker daemon.

All exceptions live here to avoid circular imports between the node client,
the storage layer and the ingestion pipeline. The scheduler decides how loudly
a failed run is reported (and whether the process must exit) from the class of
the exception alone.
"""


class BakerdError(Exception):
    """Base exception for all daemon errors."""


class NodeError(BakerdError):
    """Raised when a node query cannot be completed."""


class NodeUnavailableError(NodeError):
    """Raised on transport failures, timeouts and non-2xx node responses.

    Transient: the run is aborted and retried on the next tick.
    """


class NodeResponseError(NodeError):
    """Raised when the node answers with an unexpected document."""


class MalformedResponseError(NodeResponseError):
    """Raised when a node document is missing fields or has the wrong shape."""


class AmbiguousHeightError(NodeResponseError):
    """Raised when the node reports more than one block at a finalized height."""

    def __init__(self, height: int, hashes: list[str]) -> None:
        super().__init__(f"{len(hashes)} blocks reported at height {height}")
        self.height = height
        self.hashes = hashes


class ConsistencyError(BakerdError):
    """Raised when local data contradicts what the node reports.

    Never resolved automatically: either the node served non-final data or the
    local database was corrupted.
    """


class BlockConflictError(ConsistencyError):
    """Raised when a block conflicts with a stored block of the same height or hash."""


class WatermarkRegressionError(ConsistencyError):
    """Raised when the watermark would move to a lower height."""


class StorageError(BakerdError):
    """Raised when the storage engine fails (disk, locking, corrupted file).

    Fatal for the process: the daemon exits so that a supervisor restarts it.
    """


class PriceSourceError(BakerdError):
    """Raised when the price source cannot provide the requested tickers."""
