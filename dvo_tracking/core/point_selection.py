"""
Reference point selection.

A predicate decides per pixel whether a reference pixel becomes a tracking
point; PointSelection applies it to one pyramid level and back-projects the
selected pixels with the level's intrinsics.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import numpy as np

from dvo_tracking.core.rgbd_image import IntrinsicMatrix, RgbdImage, RgbdImagePyramid
from dvo_tracking.structures.point_batch import PointBatch, empty_point_batch

_logger = logging.getLogger(__name__)


class ValidPointPredicate:
    """Selects every pixel with a finite depth measurement."""

    def mask(self, image: RgbdImage) -> np.ndarray:
        return np.isfinite(image.depth)

    def __repr__(self) -> str:
        return "ValidPointPredicate()"


class ValidPointAndGradientThresholdPredicate(ValidPointPredicate):
    """
    Finite depth and derivatives, plus at least one derivative magnitude
    strictly above its threshold.

    Thresholds of zero keep every pixel with a non-zero gradient.
    """

    def __init__(self, intensity_threshold: float = 0.0, depth_threshold: float = 0.0):
        self.intensity_threshold = float(intensity_threshold)
        self.depth_threshold = float(depth_threshold)

    def mask(self, image: RgbdImage) -> np.ndarray:
        d = image.calculate_derivatives()
        finite = np.isfinite(image.depth) & np.all(np.isfinite(d), axis=0)

        intensity_mag = np.maximum(np.abs(d[0]), np.abs(d[1]))
        depth_mag = np.maximum(np.abs(d[2]), np.abs(d[3]))
        with np.errstate(invalid="ignore"):
            strong = (intensity_mag > self.intensity_threshold) | (depth_mag > self.depth_threshold)
        return finite & strong

    def __repr__(self) -> str:
        return (
            f"ValidPointAndGradientThresholdPredicate(intensity_threshold={self.intensity_threshold}, "
            f"depth_threshold={self.depth_threshold})"
        )


class PointSelection:
    """
    Selects and caches reference points per (level, intrinsics).

    The cache is bound to one pyramid; rebinding clears it.
    """

    def __init__(
        self,
        predicate: Optional[ValidPointPredicate] = None,
        pyramid: Optional[RgbdImagePyramid] = None,
    ):
        self.predicate = predicate if predicate is not None else ValidPointPredicate()
        self._pyramid: Optional[RgbdImagePyramid] = None
        self._cache: Dict[Tuple[int, IntrinsicMatrix], PointBatch] = {}
        if pyramid is not None:
            self.set_rgbd_image_pyramid(pyramid)

    def set_rgbd_image_pyramid(self, pyramid: RgbdImagePyramid) -> None:
        self._pyramid = pyramid
        self._cache.clear()

    def get_rgbd_image_pyramid(self) -> RgbdImagePyramid:
        if self._pyramid is None:
            raise ValueError("PointSelection has no pyramid bound")
        return self._pyramid

    def get_maximum_number_of_points(self, level: int) -> int:
        image = self.get_rgbd_image_pyramid().level(level)
        return image.width * image.height

    def select(self, level: int, intrinsics: IntrinsicMatrix) -> PointBatch:
        """
        Points of one level in row-major pixel order.

        Args:
            level: pyramid level index
            intrinsics: camera model used for back-projection

        Returns:
            PointBatch with points ((u-ox)z/fx, (v-oy)z/fy, z)
        """
        key = (level, intrinsics)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        image = self.get_rgbd_image_pyramid().level(level)
        mask = self.predicate.mask(image)
        v, u = np.nonzero(mask)
        if v.size == 0:
            batch = empty_point_batch()
        else:
            z = image.depth[v, u]
            x = (u.astype(np.float64) - intrinsics.ox) * z / intrinsics.fx
            y = (v.astype(np.float64) - intrinsics.oy) * z / intrinsics.fy

            d = image.calculate_derivatives()
            # Reference depth derivatives carry zero blend weight; NaN must not leak into residuals.
            depth_gradient = np.stack([d[2][v, u], d[3][v, u]], axis=1)
            depth_gradient = np.where(np.isfinite(depth_gradient), depth_gradient, 0.0)

            batch = PointBatch(
                points=np.stack([x, y, z], axis=1),
                intensity_and_depth=np.stack([image.intensity[v, u], z], axis=1),
                intensity_gradient=np.stack([d[0][v, u], d[1][v, u]], axis=1),
                depth_gradient=depth_gradient,
            )

        _logger.debug(f"Selected {batch.num_points}/{mask.size} points at level {level}")
        self._cache[key] = batch
        return batch
