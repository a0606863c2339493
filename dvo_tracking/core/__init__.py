"""
Tracking collaborators: images, pyramids, point selection and the
rollback-capable estimate holder.
"""

from dvo_tracking.core.revertable import Revertable
from dvo_tracking.core.rgbd_image import (
    IntrinsicMatrix,
    RgbdImage,
    RgbdImagePyramid,
)
from dvo_tracking.core.point_selection import (
    PointSelection,
    ValidPointPredicate,
    ValidPointAndGradientThresholdPredicate,
)

__all__ = [
    "Revertable",
    "IntrinsicMatrix",
    "RgbdImage",
    "RgbdImagePyramid",
    "PointSelection",
    "ValidPointPredicate",
    "ValidPointAndGradientThresholdPredicate",
]
