"""
Gauss-Newton normal equations for dense alignment.

Per valid point with transformed position q = (x, y, z), the projection
Jacobian with respect to a left-multiplied twist (v, w) is

  Jw = [[1/z, 0,   -x/z², -xy/z²,       1 + x²/z², -y/z],
        [0,   1/z, -y/z², -(1 + y²/z²), xy/z²,      x/z]]

and the depth of q changes along Jz = [0, 0, 1, y, -x, 0]. The 2x6 residual
Jacobian is

  J = [g_I · Jw,
       g_Z · Jw - Jz]

with g_I, g_Z the focal-scaled intensity and depth gradients. Accumulation:

  A = Σ Jᵀ (w Λ) J,    b = -Σ Jᵀ (w Λ) r

so that A x = b yields the Gauss-Newton step.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.linalg import cho_factor, cho_solve

from dvo_tracking.common.jax_init import jax, jnp
from dvo_tracking.common import constants as C


@jax.jit
def point_jacobians_jax(
    transformed_points: jnp.ndarray,  # (N, 3)
    intensity_gradient: jnp.ndarray,  # (N, 2)
    depth_gradient: jnp.ndarray,  # (N, 2)
) -> jnp.ndarray:
    """(N, 2, 6) residual Jacobians."""
    x = transformed_points[:, 0]
    y = transformed_points[:, 1]
    z = transformed_points[:, 2]
    z_inv = 1.0 / z
    z_inv_sq = z_inv * z_inv
    zeros = jnp.zeros_like(z)

    row0 = jnp.stack([
        z_inv,
        zeros,
        -x * z_inv_sq,
        -x * y * z_inv_sq,
        1.0 + x * x * z_inv_sq,
        -y * z_inv,
    ], axis=-1)
    row1 = jnp.stack([
        zeros,
        z_inv,
        -y * z_inv_sq,
        -(1.0 + y * y * z_inv_sq),
        x * y * z_inv_sq,
        x * z_inv,
    ], axis=-1)
    Jw = jnp.stack([row0, row1], axis=1)  # (N, 2, 6)

    Jz = jnp.stack([zeros, zeros, jnp.ones_like(z), y, -x, zeros], axis=-1)  # (N, 6)

    J_intensity = jnp.einsum("nk,nkj->nj", intensity_gradient, Jw)
    J_depth = jnp.einsum("nk,nkj->nj", depth_gradient, Jw) - Jz
    return jnp.stack([J_intensity, J_depth], axis=1)


@jax.jit
def accumulate_normal_equations_jax(
    residuals: jnp.ndarray,  # (N, 2)
    transformed_points: jnp.ndarray,  # (N, 3)
    intensity_gradient: jnp.ndarray,  # (N, 2)
    depth_gradient: jnp.ndarray,  # (N, 2)
    weights: jnp.ndarray,  # (N,)
    valid: jnp.ndarray,  # (N,) bool
    precision: jnp.ndarray,  # (2, 2)
) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """
    Weighted normal equations over valid points.

    Returns:
        A: (6, 6) symmetric information
        b: (6,) negative weighted gradient
    """
    J = point_jacobians_jax(transformed_points, intensity_gradient, depth_gradient)
    w = jnp.where(valid, weights, 0.0)

    JtL = jnp.einsum("nki,kl->nil", J, precision)  # (N, 6, 2)
    A = jnp.einsum("n,nil,nlj->ij", w, JtL, J)
    b = -jnp.einsum("n,nil,nl->i", w, JtL, residuals)
    A = 0.5 * (A + A.T)
    return A, b


def solve_normal_equations(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Solve the symmetric positive definite system A x = b by Cholesky.

    Raises:
        numpy.linalg.LinAlgError: if A is not positive definite or the
            system holds non-finite values
    """
    A = np.asarray(A, dtype=np.float64).reshape(C.DT_D_TWIST, C.DT_D_TWIST)
    b = np.asarray(b, dtype=np.float64).reshape(C.DT_D_TWIST)
    if not (np.all(np.isfinite(A)) and np.all(np.isfinite(b))):
        raise np.linalg.LinAlgError("Normal equations contain non-finite values")
    factor = cho_factor(A, lower=True, check_finite=False)
    return cho_solve(factor, b, check_finite=False)
