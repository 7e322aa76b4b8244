"""Local durable state -- SQLite database and typed store."""

from bakerd.storage.database import SCHEMA_VERSION, Database
from bakerd.storage.store import Store

__all__ = ["Database", "SCHEMA_VERSION", "Store"]
