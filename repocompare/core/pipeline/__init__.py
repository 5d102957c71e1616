"""Comparison pipeline: orchestration, background jobs, and batch work."""

from .batch import BatchResult, QueuedAnalysisProcessor
from .cache import ComparisonCache
from .comparison import ComparisonPipeline, PipelineResult
from .deep import DeepAnalysisPipeline
from .engine import ComparisonEngine
from .status import StatusStore
from .worker import ComparisonWorker, OperationJob

__all__ = [
    "BatchResult",
    "QueuedAnalysisProcessor",
    "ComparisonCache",
    "ComparisonPipeline",
    "PipelineResult",
    "DeepAnalysisPipeline",
    "ComparisonEngine",
    "StatusStore",
    "ComparisonWorker",
    "OperationJob",
]
