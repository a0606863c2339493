"""
RGB-D images, camera intrinsics and image pyramids.

Intensity is stored as float in [0, 255]; depth in meters with NaN marking
missing measurements (zero or non-finite input depth becomes NaN).

Derivatives are central differences, 0.5 * (f[x+1] - f[x-1]), with zero
borders. Depth derivatives propagate NaN from missing neighbours.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from dvo_tracking.common import constants


@dataclass(frozen=True)
class IntrinsicMatrix:
    """Pinhole intrinsics (focal lengths and principal point, pixels)."""

    fx: float
    fy: float
    ox: float
    oy: float

    @classmethod
    def from_matrix(cls, K: np.ndarray) -> "IntrinsicMatrix":
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"Expected 3x3 intrinsic matrix, got shape {K.shape}")
        return cls(fx=float(K[0, 0]), fy=float(K[1, 1]), ox=float(K[0, 2]), oy=float(K[1, 2]))

    def to_matrix(self) -> np.ndarray:
        return np.array([
            [self.fx, 0.0, self.ox],
            [0.0, self.fy, self.oy],
            [0.0, 0.0, 1.0],
        ], dtype=np.float64)

    def as_array(self) -> np.ndarray:
        """[fx, fy, ox, oy] for kernels."""
        return np.array([self.fx, self.fy, self.ox, self.oy], dtype=np.float64)

    def scale(self, factor: float) -> "IntrinsicMatrix":
        """
        Intrinsics of an image resized by factor.

        The principal point is scaled about pixel corners, not centers, so
        (ox + 0.5) * factor - 0.5.
        """
        return IntrinsicMatrix(
            fx=self.fx * factor,
            fy=self.fy * factor,
            ox=(self.ox + 0.5) * factor - 0.5,
            oy=(self.oy + 0.5) * factor - 0.5,
        )


def _derivative_x(image: np.ndarray) -> np.ndarray:
    d = np.zeros_like(image)
    d[:, 1:-1] = 0.5 * (image[:, 2:] - image[:, :-2])
    return d


def _derivative_y(image: np.ndarray) -> np.ndarray:
    d = np.zeros_like(image)
    d[1:-1, :] = 0.5 * (image[2:, :] - image[:-2, :])
    return d


def _downsample_intensity(intensity: np.ndarray) -> np.ndarray:
    """2x2 box mean (odd trailing row/column dropped)."""
    h, w = intensity.shape[0] // 2, intensity.shape[1] // 2
    blocks = intensity[: 2 * h, : 2 * w].reshape(h, 2, w, 2)
    return blocks.mean(axis=(1, 3))


def _downsample_depth(depth: np.ndarray) -> np.ndarray:
    """2x2 mean over finite samples; NaN where a block has none."""
    h, w = depth.shape[0] // 2, depth.shape[1] // 2
    blocks = depth[: 2 * h, : 2 * w].reshape(h, 2, w, 2)
    finite = np.isfinite(blocks)
    count = finite.sum(axis=(1, 3))
    total = np.where(finite, blocks, 0.0).sum(axis=(1, 3))
    out = np.full((h, w), np.nan, dtype=np.float64)
    np.divide(total, count, out=out, where=count > 0)
    return out


class RgbdImage:
    """One intensity + depth image with lazily computed derivatives."""

    def __init__(
        self,
        intensity: np.ndarray,
        depth: np.ndarray,
        intrinsics: IntrinsicMatrix,
        timestamp: float = 0.0,
    ):
        intensity = np.asarray(intensity, dtype=np.float64)
        depth = np.asarray(depth, dtype=np.float64)

        if intensity.ndim != 2:
            raise ValueError(f"Expected 2D intensity array, got shape {intensity.shape}")
        if depth.shape != intensity.shape:
            raise ValueError(
                f"Depth shape {depth.shape} does not match intensity shape {intensity.shape}"
            )

        depth = np.where(np.isfinite(depth) & (depth > 0.0), depth, np.nan)

        self.intensity = intensity
        self.depth = depth
        self.intrinsics = intrinsics
        self.timestamp = float(timestamp)

        self._derivatives: Optional[np.ndarray] = None
        self._acceleration: Optional[np.ndarray] = None

    @property
    def height(self) -> int:
        return int(self.intensity.shape[0])

    @property
    def width(self) -> int:
        return int(self.intensity.shape[1])

    def calculate_derivatives(self) -> np.ndarray:
        """(4, H, W) stack [dI/dx, dI/dy, dZ/dx, dZ/dy]; cached."""
        if self._derivatives is None:
            self._derivatives = np.stack([
                _derivative_x(self.intensity),
                _derivative_y(self.intensity),
                _derivative_x(self.depth),
                _derivative_y(self.depth),
            ], axis=0)
        return self._derivatives

    @property
    def intensity_dx(self) -> np.ndarray:
        return self.calculate_derivatives()[0]

    @property
    def intensity_dy(self) -> np.ndarray:
        return self.calculate_derivatives()[1]

    @property
    def depth_dx(self) -> np.ndarray:
        return self.calculate_derivatives()[2]

    @property
    def depth_dy(self) -> np.ndarray:
        return self.calculate_derivatives()[3]

    def build_acceleration_structure(self) -> np.ndarray:
        """
        Interleaved (H, W, 6) array [I, Z, dI/dx, dI/dy, dZ/dx, dZ/dy].

        A single gather per corner then yields every channel the residual
        kernel interpolates.
        """
        if self._acceleration is None:
            d = self.calculate_derivatives()
            self._acceleration = np.ascontiguousarray(np.stack(
                [self.intensity, self.depth, d[0], d[1], d[2], d[3]], axis=-1
            ))
        return self._acceleration

    def downsample(self) -> "RgbdImage":
        """Next coarser pyramid level (half resolution)."""
        if self.width < 2 or self.height < 2:
            raise ValueError(f"Cannot downsample a {self.width}x{self.height} image")
        return RgbdImage(
            intensity=_downsample_intensity(self.intensity),
            depth=_downsample_depth(self.depth),
            intrinsics=self.intrinsics.scale(constants.DT_PYRAMID_SCALE),
            timestamp=self.timestamp,
        )


class RgbdImagePyramid:
    """
    Coarse-to-fine pyramid; level 0 is full resolution.

    Levels are built on demand: compute(n) guarantees levels 0..n-1 exist and
    is a no-op when they already do.
    """

    def __init__(
        self,
        intensity: np.ndarray,
        depth: np.ndarray,
        intrinsics: IntrinsicMatrix,
        timestamp: float = 0.0,
    ):
        self._levels: List[RgbdImage] = [RgbdImage(intensity, depth, intrinsics, timestamp)]

    @classmethod
    def from_image(cls, image: RgbdImage) -> "RgbdImagePyramid":
        pyramid = cls.__new__(cls)
        pyramid._levels = [image]
        return pyramid

    @property
    def timestamp(self) -> float:
        return self._levels[0].timestamp

    def __len__(self) -> int:
        return len(self._levels)

    def compute(self, num_levels: int) -> None:
        while len(self._levels) < num_levels:
            self._levels.append(self._levels[-1].downsample())

    def level(self, idx: int) -> RgbdImage:
        if idx < 0:
            raise ValueError(f"Pyramid level must be >= 0, got {idx}")
        self.compute(idx + 1)
        return self._levels[idx]
