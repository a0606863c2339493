"""
Reference point batches (arrays-only).

A PointBatch holds every selected reference pixel of one pyramid level:
its back-projected 3D position and the values the residual kernel needs from
the reference image. Batches are immutable for the duration of an alignment.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np


class PointBatch(NamedTuple):
    """Arrays-only reference point set (N points)."""

    points: np.ndarray  # (N, 3) float64, reference camera frame
    intensity_and_depth: np.ndarray  # (N, 2) float64, [I, Z] observed in the reference
    intensity_gradient: np.ndarray  # (N, 2) float64, [dI/dx, dI/dy] in the reference
    depth_gradient: np.ndarray  # (N, 2) float64, [dZ/dx, dZ/dy] in the reference

    @property
    def num_points(self) -> int:
        return int(self.points.shape[0])

    def homogeneous_points(self) -> np.ndarray:
        """(N, 4) points with a trailing 1."""
        return np.hstack([self.points, np.ones((self.num_points, 1), dtype=np.float64)])

    def reference_channels(self) -> np.ndarray:
        """(N, 6) [I, Z, dI/dx, dI/dy, dZ/dx, dZ/dy], the acceleration-structure layout."""
        return np.hstack([self.intensity_and_depth, self.intensity_gradient, self.depth_gradient])


def empty_point_batch() -> PointBatch:
    return PointBatch(
        points=np.zeros((0, 3), dtype=np.float64),
        intensity_and_depth=np.zeros((0, 2), dtype=np.float64),
        intensity_gradient=np.zeros((0, 2), dtype=np.float64),
        depth_gradient=np.zeros((0, 2), dtype=np.float64),
    )
