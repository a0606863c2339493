"""
Dense tracker orchestration and diagnostics.
"""

from dvo_tracking.tracking.stats import (
    DenseTrackerResult,
    IterationStats,
    LevelStats,
    TerminationCriterion,
)
from dvo_tracking.tracking.dense_tracker import (
    DenseTracker,
    IterationContext,
    assemble_result,
)

__all__ = [
    "DenseTracker",
    "DenseTrackerResult",
    "IterationContext",
    "IterationStats",
    "LevelStats",
    "TerminationCriterion",
    "assemble_result",
]
