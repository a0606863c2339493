"""
Fixed-capacity scratch buffers for one tracker instance.

Kernels are jitted on array shapes, so each level's point batch is padded to
a single capacity (the point budget of the finest visited level) with a
`selected` mask. One compilation then serves every iteration of every level.

Buffers only grow. A workspace belongs to exactly one tracker; two alignments
must not share it concurrently.
"""

from __future__ import annotations

import numpy as np

from dvo_tracking.common import constants
from dvo_tracking.structures.point_batch import PointBatch


class TrackingWorkspace:
    """Padded reference point buffers with a validity mask."""

    def __init__(self, capacity: int = 0):
        self._capacity = 0
        self._allocate(max(int(capacity), 0))
        self._num_loaded = 0

    def _allocate(self, capacity: int) -> None:
        self._capacity = capacity
        self.points = np.zeros((capacity, 3), dtype=np.float64)
        self.reference = np.zeros((capacity, constants.DT_D_CHANNELS), dtype=np.float64)
        self.selected = np.zeros(capacity, dtype=bool)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def num_loaded(self) -> int:
        return self._num_loaded

    def reserve(self, capacity: int) -> None:
        """Grow to hold at least `capacity` points; never shrinks."""
        if capacity > self._capacity:
            self._allocate(int(capacity))
            self._num_loaded = 0

    def load(self, batch: PointBatch) -> np.ndarray:
        """
        Copy a batch into the buffer prefix and clear the tail.

        Returns:
            (capacity,) bool mask of loaded rows

        Raises:
            ValueError: if the batch exceeds the reserved capacity
        """
        n = batch.num_points
        if n > self._capacity:
            raise ValueError(f"Batch of {n} points exceeds workspace capacity {self._capacity}")

        self.points[:n] = batch.points
        self.points[n:] = 0.0
        self.reference[:n] = batch.reference_channels()
        self.reference[n:] = 0.0
        self.selected[:n] = True
        self.selected[n:] = False
        self._num_loaded = n
        return self.selected
