"""
SE(3) geometry for pose increments and tracked estimates.

Pose representation: (x, y, z, rx, ry, rz) where:
- (x, y, z): translation in R^3
- (rx, ry, rz): rotation vector (axis-angle) in so(3)

Twist representation: (vx, vy, vz, wx, wy, wz), translation first, matching
the column order of the tracking Jacobians.

Numerical Policy:
    ROTATION_EPSILON = 1e-10: below this angle first-order expansions are exact
    to double precision.
    SINGULARITY_EPSILON = 1e-6: threshold for the theta ~ pi branch of the log.

References:
- Barfoot (2017): State Estimation for Robotics
- Sola et al. (2018): A micro Lie theory for state estimation
"""

import math
from typing import Tuple

import numpy as np


ROTATION_EPSILON: float = 1e-10
SINGULARITY_EPSILON: float = 1e-6


# =============================================================================
# so(3) <-> SO(3)
# =============================================================================


def skew(v: np.ndarray) -> np.ndarray:
    """Skew-symmetric matrix from 3-vector (hat operator)."""
    v = np.asarray(v, dtype=float).reshape(-1)
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ], dtype=float)


def rotvec_to_rotmat(rotvec: np.ndarray) -> np.ndarray:
    """
    Rodrigues' formula: R = I + sin(θ)[k]_× + (1-cos(θ))[k]_×².

    Exponential map so(3) -> SO(3).
    """
    rotvec = np.asarray(rotvec, dtype=float).reshape(-1)
    theta = np.linalg.norm(rotvec)

    if theta < ROTATION_EPSILON:
        return np.eye(3, dtype=float) + skew(rotvec)

    K = skew(rotvec / theta)
    return np.eye(3, dtype=float) + math.sin(theta) * K + (1.0 - math.cos(theta)) * (K @ K)


def rotmat_to_rotvec(R: np.ndarray) -> np.ndarray:
    """
    Logarithmic map SO(3) -> so(3), angle in [0, π].

    Handles three cases:
    1. θ ≈ 0: skew-symmetric part
    2. θ ≈ π: axis from the diagonal, signs from off-diagonal terms
    3. General: standard formula
    """
    R = np.asarray(R, dtype=float)

    cos_theta = np.clip((np.trace(R) - 1.0) / 2.0, -1.0, 1.0)
    theta = math.acos(cos_theta)
    antisym = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]], dtype=float)

    if theta < ROTATION_EPSILON:
        return antisym / 2.0

    if abs(theta - math.pi) < SINGULARITY_EPSILON:
        axis = np.sqrt(np.maximum((np.diag(R) + 1.0) * 0.5, 0.0))
        if axis[0] > 1e-6:
            axis[1] = math.copysign(axis[1], R[0, 1])
            axis[2] = math.copysign(axis[2], R[0, 2])
        elif axis[1] > 1e-6:
            axis[2] = math.copysign(axis[2], R[1, 2])
        axis_norm = np.linalg.norm(axis)
        if axis_norm < 1e-12:
            return np.zeros(3, dtype=float)
        return axis / axis_norm * theta

    return antisym / (2.0 * math.sin(theta)) * theta


def _so3_left_jacobian(phi: np.ndarray) -> np.ndarray:
    """J_l = I + (1-cos)/θ² [φ]_× + (θ-sin)/θ³ [φ]_×²."""
    theta = np.linalg.norm(phi)
    Phi = skew(phi)
    if theta < ROTATION_EPSILON:
        return np.eye(3) + 0.5 * Phi
    return (np.eye(3)
            + (1.0 - math.cos(theta)) / (theta * theta) * Phi
            + (theta - math.sin(theta)) / (theta * theta * theta) * (Phi @ Phi))


def _so3_left_jacobian_inv(phi: np.ndarray) -> np.ndarray:
    """J_l^{-1} = I - ½[φ]_× + (1 - (θ/2)cot(θ/2))/θ² [φ]_×²."""
    theta = np.linalg.norm(phi)
    Phi = skew(phi)
    if theta < ROTATION_EPSILON:
        return np.eye(3) - 0.5 * Phi
    half_theta = 0.5 * theta
    coeff = (1.0 - half_theta / math.tan(half_theta)) / (theta * theta)
    return np.eye(3) - 0.5 * Phi + coeff * (Phi @ Phi)


# =============================================================================
# SE(3) group operations on 6-vector poses
# =============================================================================


def se3_identity() -> np.ndarray:
    return np.zeros(6, dtype=float)


def se3_to_rt(T: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Split a pose into (R, t)."""
    T = np.asarray(T, dtype=float).reshape(-1)
    return rotvec_to_rotmat(T[3:6]), T[:3].copy()


def se3_from_rt(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    rotvec = rotmat_to_rotvec(R)
    t = np.asarray(t, dtype=float).reshape(-1)
    return np.array([t[0], t[1], t[2], rotvec[0], rotvec[1], rotvec[2]], dtype=float)


def se3_to_matrix(T: np.ndarray) -> np.ndarray:
    """Pose -> 4x4 homogeneous matrix."""
    R, t = se3_to_rt(T)
    M = np.eye(4, dtype=float)
    M[:3, :3] = R
    M[:3, 3] = t
    return M


def se3_from_matrix(M: np.ndarray) -> np.ndarray:
    """4x4 (or 3x4) homogeneous matrix -> pose."""
    M = np.asarray(M, dtype=float)
    if M.shape not in ((4, 4), (3, 4)):
        raise ValueError(f"Expected 4x4 or 3x4 transform, got shape {M.shape}")
    return se3_from_rt(M[:3, :3], M[:3, 3])


def se3_compose(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Compose two poses: T_a ∘ T_b.

    t_out = t_a + R_a t_b, R_out = R_a R_b (exact group composition).
    """
    R_a, t_a = se3_to_rt(a)
    R_b, t_b = se3_to_rt(b)
    return se3_from_rt(R_a @ R_b, t_a + R_a @ t_b)


def se3_inverse(a: np.ndarray) -> np.ndarray:
    """For T = (R, t), T^{-1} = (R^T, -R^T t)."""
    R, t = se3_to_rt(a)
    return se3_from_rt(R.T, -R.T @ t)


def se3_relative(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Group-consistent relative transform: a ⊖ b = b^{-1} ∘ a."""
    return se3_compose(se3_inverse(b), a)


def se3_apply(T: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Apply a pose to point(s).

    points: (N, 3) or (3,); returns the same shape.
    """
    points = np.asarray(points, dtype=float)
    single = points.ndim == 1
    if single:
        points = points.reshape(1, 3)

    R, t = se3_to_rt(T)
    result = points @ R.T + t

    if single:
        return result.reshape(-1)
    return result


def se3_exp(xi: np.ndarray) -> np.ndarray:
    """
    Exponential map se(3) -> SE(3).

    xi = (v, w): R = exp([w]_×), t = J_l(w) v.
    """
    xi = np.asarray(xi, dtype=float).reshape(-1)
    rho = xi[:3]
    phi = xi[3:6]
    t = _so3_left_jacobian(phi) @ rho
    return np.array([t[0], t[1], t[2], phi[0], phi[1], phi[2]], dtype=float)


def se3_log(T: np.ndarray) -> np.ndarray:
    """
    Logarithmic map SE(3) -> se(3).

    The rotation part is re-extracted from the matrix so angles stay in [0, π].
    """
    R, t = se3_to_rt(T)
    phi = rotmat_to_rotvec(R)
    rho = _so3_left_jacobian_inv(phi) @ t
    return np.array([rho[0], rho[1], rho[2], phi[0], phi[1], phi[2]], dtype=float)


def se3_distance(a: np.ndarray, b: np.ndarray) -> Tuple[float, float]:
    """(translation error, rotation angle error) between two poses."""
    delta = se3_relative(a, b)
    return float(np.linalg.norm(delta[:3])), float(np.linalg.norm(delta[3:6]))
