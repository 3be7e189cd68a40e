"""Worker pool infrastructure for concurrent record processing."""

from hopper.engine.pooling.executor import PooledProcessor
from hopper.engine.pooling.reorder_buffer import OrderedResult, ReorderBuffer

__all__ = [
    "OrderedResult",
    "PooledProcessor",
    "ReorderBuffer",
]
