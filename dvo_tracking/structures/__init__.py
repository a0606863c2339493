"""
Arrays-only data structures for dense tracking.

PointBatch is the per-level reference point set; TrackingWorkspace holds the
padded buffers the kernels run over.
"""

from dvo_tracking.structures.point_batch import (
    PointBatch,
    empty_point_batch,
)
from dvo_tracking.structures.workspace import TrackingWorkspace

__all__ = [
    "PointBatch",
    "empty_point_batch",
    "TrackingWorkspace",
]
