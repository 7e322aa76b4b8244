"""Baker node monitoring daemon: block/account ingestion, reconciliation and a read-only API."""

__version__ = "0.5.0"
