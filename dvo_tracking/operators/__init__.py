"""
Dense tracking operators.

Arrays-only JAX kernels over padded point batches (residuals, robust
weights and scale, normal equations) plus the host-side Cholesky solve.
"""

from dvo_tracking.operators.residuals import (
    ResidualBatch,
    compute_residuals_jax,
    residual_blend_weights,
)
from dvo_tracking.operators.weighting import (
    InfluenceFunction,
    ScaleEstimator,
    WeightCalculation,
    make_influence_function,
    make_scale_estimator,
    mahalanobis_sq_jax,
    negative_log_likelihood_jax,
)
from dvo_tracking.operators.normal_equations import (
    accumulate_normal_equations_jax,
    point_jacobians_jax,
    solve_normal_equations,
)

__all__ = [
    "ResidualBatch",
    "compute_residuals_jax",
    "residual_blend_weights",
    "InfluenceFunction",
    "ScaleEstimator",
    "WeightCalculation",
    "make_influence_function",
    "make_scale_estimator",
    "mahalanobis_sq_jax",
    "negative_log_likelihood_jax",
    "accumulate_normal_equations_jax",
    "point_jacobians_jax",
    "solve_normal_equations",
]
