"""Block ingestion and account reconciliation."""

from bakerd.ingestion.pipeline import HeightCursor, IngestionPipeline, IngestionReport
from bakerd.ingestion.reconciliation import ReconciliationEngine

__all__ = ["HeightCursor", "IngestionPipeline", "IngestionReport", "ReconciliationEngine"]
