"""Core processing module for MagToEpub.

The orchestrator lives in ``magtoepub.core.pipeline``.
"""

from magtoepub.core.planner import BatchPlanner, PageBatch, plan_batches
from magtoepub.core.state import (
    ConversionState,
    ConversionStats,
    ProgressChannel,
    ProgressEvent,
    Stage,
    StageResult,
)

__all__ = [
    "BatchPlanner",
    "PageBatch",
    "plan_batches",
    "ConversionState",
    "ConversionStats",
    "ProgressChannel",
    "ProgressEvent",
    "Stage",
    "StageResult",
]
