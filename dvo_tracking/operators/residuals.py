"""
Photometric + geometric residual kernel (arrays-only JAX).

Per reference point p (reference camera frame) and hypothesis (R, t):

  q = R p + t                          (current camera frame)
  (u, v) = (fx q.x / q.z + ox, fy q.y / q.z + oy)
  c = bilinear(acceleration_structure, u, v)   (6 channels, current image)
  s = w_cur * c + w_ref * [I_ref, q.z, dI/dx_ref, dI/dy_ref, dZ/dx_ref, dZ/dy_ref]

  residual        = s[0:2] = [(I_cur - I_ref) / 255, Z_cur - q.z]
  intensity grad  = s[2:4] (focal-length scaled, averaged over both images)
  depth grad      = s[4:6] (focal-length scaled, current image only)

A point is valid when it is selected, lies in front of the camera, projects
inside [0, W-1) x [0, H-1) and all six blended channels are finite.
Invalid rows are zeroed (transformed point [0, 0, 1]) so downstream
reductions need only the mask.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np

from dvo_tracking.common.jax_init import jax, jnp
from dvo_tracking.common import constants as C
from dvo_tracking.core.rgbd_image import IntrinsicMatrix


class ResidualBatch(NamedTuple):
    """Masked per-point kernel outputs (capacity rows)."""

    residuals: jnp.ndarray  # (N, 2)
    transformed_points: jnp.ndarray  # (N, 3)
    intensity_gradient: jnp.ndarray  # (N, 2)
    depth_gradient: jnp.ndarray  # (N, 2)
    valid: jnp.ndarray  # (N,) bool


def residual_blend_weights(intrinsics: IntrinsicMatrix) -> tuple[np.ndarray, np.ndarray]:
    """
    (w_cur, w_ref) channel weights for one level.

    Returns:
        w_cur = [1/255, 1, 0.5 fx/255, 0.5 fy/255, fx, fy]
        w_ref = [-1/255, -1, 0.5 fx/255, 0.5 fy/255, 0, 0]
    """
    s = C.DT_INTENSITY_SCALE
    fx, fy = intrinsics.fx, intrinsics.fy
    w_cur = np.array([
        s,
        1.0,
        C.DT_INTENSITY_DERIVATIVE_WEIGHT_CURRENT * fx * s,
        C.DT_INTENSITY_DERIVATIVE_WEIGHT_CURRENT * fy * s,
        C.DT_DEPTH_DERIVATIVE_WEIGHT_CURRENT * fx,
        C.DT_DEPTH_DERIVATIVE_WEIGHT_CURRENT * fy,
    ], dtype=np.float64)
    w_ref = np.array([
        -s,
        -1.0,
        C.DT_INTENSITY_DERIVATIVE_WEIGHT_REFERENCE * fx * s,
        C.DT_INTENSITY_DERIVATIVE_WEIGHT_REFERENCE * fy * s,
        C.DT_DEPTH_DERIVATIVE_WEIGHT_REFERENCE * fx,
        C.DT_DEPTH_DERIVATIVE_WEIGHT_REFERENCE * fy,
    ], dtype=np.float64)
    return w_cur, w_ref


@jax.jit
def _bilinear_gather(accel: jnp.ndarray, u: jnp.ndarray, v: jnp.ndarray) -> jnp.ndarray:
    """Bilinear samples (N, 6) of an (H, W, 6) structure; callers mask out-of-range rows."""
    H, W = accel.shape[0], accel.shape[1]
    u0f = jnp.clip(jnp.floor(u), 0.0, W - 2.0)
    v0f = jnp.clip(jnp.floor(v), 0.0, H - 2.0)
    a = (u - u0f)[:, None]
    b = (v - v0f)[:, None]
    u0 = u0f.astype(jnp.int32)
    v0 = v0f.astype(jnp.int32)

    c00 = accel[v0, u0]
    c01 = accel[v0, u0 + 1]
    c10 = accel[v0 + 1, u0]
    c11 = accel[v0 + 1, u0 + 1]
    return (1.0 - a) * (1.0 - b) * c00 + a * (1.0 - b) * c01 + (1.0 - a) * b * c10 + a * b * c11


@jax.jit
def compute_residuals_jax(
    points: jnp.ndarray,  # (N, 3) reference frame
    reference: jnp.ndarray,  # (N, 6) reference channels
    selected: jnp.ndarray,  # (N,) bool
    R: jnp.ndarray,  # (3, 3)
    t: jnp.ndarray,  # (3,)
    intrinsics: jnp.ndarray,  # (4,) [fx, fy, ox, oy]
    accel: jnp.ndarray,  # (H, W, 6) current image
    w_cur: jnp.ndarray,  # (6,)
    w_ref: jnp.ndarray,  # (6,)
) -> ResidualBatch:
    """Evaluate residuals and linearisation data for all points under (R, t)."""
    points = jnp.asarray(points, dtype=jnp.float64)
    H, W = accel.shape[0], accel.shape[1]
    fx, fy, ox, oy = intrinsics[0], intrinsics[1], intrinsics[2], intrinsics[3]

    q = points @ R.T + t[None, :]
    z = q[:, 2]
    in_front = z > C.DT_EPS_DEPTH
    safe_z = jnp.where(in_front, z, 1.0)

    u = fx * q[:, 0] / safe_z + ox
    v = fy * q[:, 1] / safe_z + oy
    in_image = (u >= 0.0) & (u < W - 1.0) & (v >= 0.0) & (v < H - 1.0)

    current = _bilinear_gather(accel, u, v)
    ref = reference.at[:, 1].set(z)
    blended = w_cur[None, :] * current + w_ref[None, :] * ref

    valid = selected & in_front & in_image & jnp.all(jnp.isfinite(blended), axis=1)
    mask = valid[:, None]

    blended = jnp.where(mask, blended, 0.0)
    q_out = jnp.where(mask, q, jnp.array([0.0, 0.0, 1.0], dtype=jnp.float64)[None, :])

    return ResidualBatch(
        residuals=blended[:, 0:2],
        transformed_points=q_out,
        intensity_gradient=blended[:, 2:4],
        depth_gradient=blended[:, 4:6],
        valid=valid,
    )
