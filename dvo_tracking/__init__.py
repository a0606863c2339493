"""
Dense RGB-D visual odometry.

Frame-to-frame rigid motion estimation by direct photometric and geometric
alignment over an image pyramid (robust IRLS + damped Gauss-Newton on SE(3)).

Subpackages:
- common/: constants, JAX init, configuration, SE(3) geometry
- core/: RGB-D images, pyramids, point selection, Revertable
- structures/: arrays-only point batches and workspaces
- operators/: residual, weighting and normal-equation kernels
- tracking/: DenseTracker and its diagnostics
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "DenseTracker",
    "DenseTrackerConfig",
    "DenseTrackerResult",
    "IntrinsicMatrix",
    "PointSelection",
    "RgbdImage",
    "RgbdImagePyramid",
    "TerminationCriterion",
    "default_config",
    "load_config",
]

# Lazy so that importing the package does not initialise JAX.
_LAZY_ATTRS: dict[str, tuple[str, str]] = {
    "DenseTracker": ("dvo_tracking.tracking.dense_tracker", "DenseTracker"),
    "DenseTrackerResult": ("dvo_tracking.tracking.stats", "DenseTrackerResult"),
    "TerminationCriterion": ("dvo_tracking.tracking.stats", "TerminationCriterion"),
    "DenseTrackerConfig": ("dvo_tracking.common.config", "DenseTrackerConfig"),
    "default_config": ("dvo_tracking.common.config", "default_config"),
    "load_config": ("dvo_tracking.common.config", "load_config"),
    "IntrinsicMatrix": ("dvo_tracking.core.rgbd_image", "IntrinsicMatrix"),
    "RgbdImage": ("dvo_tracking.core.rgbd_image", "RgbdImage"),
    "RgbdImagePyramid": ("dvo_tracking.core.rgbd_image", "RgbdImagePyramid"),
    "PointSelection": ("dvo_tracking.core.point_selection", "PointSelection"),
}


def __getattr__(name: str) -> Any:
    target = _LAZY_ATTRS.get(name)
    if target is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = target
    return getattr(import_module(module_name), attr_name)


def __dir__() -> list[str]:
    return sorted(set(globals().keys()) | set(_LAZY_ATTRS.keys()))
