"""Execution engine: chunk pipeline, step executor and job operator."""

from hopper.engine.operator import JobOperator
from hopper.engine.pipeline import ChunkControl, ChunkPipeline, StepResult
from hopper.engine.retry import MaxRetriesExceeded, RetryManager
from hopper.engine.skip import AlwaysSkipPolicy, FunctionSkipPolicy, LimitCheckingSkipPolicy, NeverSkipPolicy
from hopper.engine.step import StepExecutor

__all__ = [
    "AlwaysSkipPolicy",
    "ChunkControl",
    "ChunkPipeline",
    "FunctionSkipPolicy",
    "JobOperator",
    "LimitCheckingSkipPolicy",
    "MaxRetriesExceeded",
    "NeverSkipPolicy",
    "RetryManager",
    "StepExecutor",
    "StepResult",
]
