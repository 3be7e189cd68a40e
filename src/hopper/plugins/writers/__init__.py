"""Built-in item writers."""

from hopper.plugins.writers.database import DatabaseBatchWriter, DatabaseBatchWriterConfig

__all__ = ["DatabaseBatchWriter", "DatabaseBatchWriterConfig"]
