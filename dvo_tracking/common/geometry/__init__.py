"""
Geometry package for dense RGB-D tracking.

SE(3) and SO(3) operations on 6-vector poses [x, y, z, rx, ry, rz].

Usage:
    from dvo_tracking.common.geometry import (
        se3_compose,
        se3_exp,
        se3_log,
    )
"""

from __future__ import annotations

from dvo_tracking.common.geometry.se3 import (
    skew,
    rotvec_to_rotmat,
    rotmat_to_rotvec,
    se3_identity,
    se3_to_rt,
    se3_from_rt,
    se3_to_matrix,
    se3_from_matrix,
    se3_compose,
    se3_inverse,
    se3_relative,
    se3_apply,
    se3_exp,
    se3_log,
    se3_distance,
)

__all__ = [
    # SO(3) operations
    "skew",
    "rotvec_to_rotmat",
    "rotmat_to_rotvec",
    # SE(3) operations
    "se3_identity",
    "se3_to_rt",
    "se3_from_rt",
    "se3_to_matrix",
    "se3_from_matrix",
    "se3_compose",
    "se3_inverse",
    "se3_relative",
    "se3_apply",
    "se3_exp",
    "se3_log",
    "se3_distance",
]
