"""
Robust weighting for bivariate (intensity, depth) residuals (arrays-only JAX).

Residuals are scored by their squared Mahalanobis distance

  d² = (r - μ)ᵀ Λ (r - μ)

under the running (mean μ, precision Λ) estimate of the level.

Influence functions map d² to a per-point IRLS weight w and a loss ρ:

  unit            w = 1                      ρ = d²/2
  t_distribution  w = (ν+2)/(ν+d²)           ρ = (ν+2)/2 · log(1 + d²/ν)
  tukey           w = (1-(d/b)²)² (d ≤ b)    ρ = b²/6 · (1-(1-(d/b)²)³) (d ≤ b), b²/6 otherwise
  huber           w = 1 (d ≤ k), k/d         ρ = d²/2 (d ≤ k), k(d - k/2) otherwise

Scale estimators return the 2x2 residual covariance (precision = inverse):

  unit                 I
  normal_distribution  Σ (r-μ)(r-μ)ᵀ / n
  t_distribution       Σ w (r-μ)(r-μ)ᵀ / n     (EM M-step with the current weights)
  mad                  diag((1.4826 · MAD_c)²)

Every kernel takes the validity mask; invalid rows contribute nothing and
n counts valid rows only. The negative complete-data log-likelihood is

  NLL = Σ ρ - n/2 · log|Λ|
"""

from __future__ import annotations

from typing import Tuple

from dvo_tracking.common.jax_init import jax, jnp
from dvo_tracking.common import constants as C
from dvo_tracking.common.config import (
    DenseTrackerConfig,
    InfluenceFunctionType,
    ScaleEstimatorType,
)


# =============================================================================
# Kernels
# =============================================================================


@jax.jit
def mahalanobis_sq_jax(
    residuals: jnp.ndarray,  # (N, 2)
    mean: jnp.ndarray,  # (2,)
    precision: jnp.ndarray,  # (2, 2)
) -> jnp.ndarray:
    diff = residuals - mean[None, :]
    d2 = jnp.einsum("ni,ij,nj->n", diff, precision, diff)
    return jnp.maximum(d2, 0.0)


@jax.jit
def unit_influence_jax(d2: jnp.ndarray, param: float) -> Tuple[jnp.ndarray, jnp.ndarray]:
    return jnp.ones_like(d2), 0.5 * d2


@jax.jit
def t_distribution_influence_jax(d2: jnp.ndarray, dof: float) -> Tuple[jnp.ndarray, jnp.ndarray]:
    w = (dof + 2.0) / (dof + d2)
    rho = 0.5 * (dof + 2.0) * jnp.log1p(d2 / dof)
    return w, rho


@jax.jit
def tukey_influence_jax(d2: jnp.ndarray, b: float) -> Tuple[jnp.ndarray, jnp.ndarray]:
    b2 = b * b
    inside = d2 <= b2
    u = 1.0 - d2 / b2
    w = jnp.where(inside, u * u, 0.0)
    rho = jnp.where(inside, b2 / 6.0 * (1.0 - u * u * u), b2 / 6.0)
    return w, rho


@jax.jit
def huber_influence_jax(d2: jnp.ndarray, k: float) -> Tuple[jnp.ndarray, jnp.ndarray]:
    d = jnp.sqrt(d2)
    inside = d <= k
    w = jnp.where(inside, 1.0, k / jnp.maximum(d, k))
    rho = jnp.where(inside, 0.5 * d2, k * (d - 0.5 * k))
    return w, rho


@jax.jit
def weighted_covariance_jax(
    residuals: jnp.ndarray,  # (N, 2)
    weights: jnp.ndarray,  # (N,)
    valid: jnp.ndarray,  # (N,) bool
    mean: jnp.ndarray,  # (2,)
) -> jnp.ndarray:
    """Σ w (r-μ)(r-μ)ᵀ / n over valid rows, symmetrised and lifted."""
    mask = valid.astype(jnp.float64)
    n = jnp.maximum(jnp.sum(mask), 1.0)
    diff = residuals - mean[None, :]
    cov = jnp.einsum("n,ni,nj->ij", weights * mask, diff, diff) / n
    cov = 0.5 * (cov + cov.T)
    return cov + C.DT_EPS_COVARIANCE * jnp.eye(C.DT_D_RESIDUAL, dtype=jnp.float64)


@jax.jit
def mad_covariance_jax(
    residuals: jnp.ndarray,  # (N, 2)
    valid: jnp.ndarray,  # (N,) bool
) -> jnp.ndarray:
    """Diagonal covariance from the per-channel median absolute deviation."""
    r = jnp.where(valid[:, None], residuals, jnp.nan)
    med = jnp.nanmedian(r, axis=0)
    mad = jnp.nanmedian(jnp.abs(r - med[None, :]), axis=0)
    sigma = C.DT_MAD_SCALE * mad
    return jnp.diag(sigma * sigma) + C.DT_EPS_COVARIANCE * jnp.eye(C.DT_D_RESIDUAL, dtype=jnp.float64)


@jax.jit
def negative_log_likelihood_jax(
    rho: jnp.ndarray,  # (N,)
    valid: jnp.ndarray,  # (N,) bool
    precision: jnp.ndarray,  # (2, 2)
) -> jnp.ndarray:
    """Σ ρ - n/2 · log|Λ|; NaN when Λ is not positive definite."""
    n = jnp.sum(valid.astype(jnp.float64))
    sign, logdet = jnp.linalg.slogdet(precision)
    nll = jnp.sum(jnp.where(valid, rho, 0.0)) - 0.5 * n * logdet
    return jnp.where(sign > 0.0, nll, jnp.nan)


# =============================================================================
# Strategies
# =============================================================================


class InfluenceFunction:
    """Maps squared Mahalanobis distances to IRLS weights and losses."""

    kind = InfluenceFunctionType.UNIT
    _kernel = staticmethod(unit_influence_jax)

    def __init__(self, param: float = 1.0):
        self.param = float(param)

    def evaluate(self, d2: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
        """(weights, rho) for each distance."""
        return self._kernel(d2, jnp.float64(self.param))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(param={self.param})"


class UnitInfluenceFunction(InfluenceFunction):
    pass


class TDistributionInfluenceFunction(InfluenceFunction):
    kind = InfluenceFunctionType.T_DISTRIBUTION
    _kernel = staticmethod(t_distribution_influence_jax)

    def __init__(self, param: float = C.DT_T_DISTRIBUTION_DOF_DEFAULT):
        super().__init__(param)


class TukeyInfluenceFunction(InfluenceFunction):
    kind = InfluenceFunctionType.TUKEY
    _kernel = staticmethod(tukey_influence_jax)

    def __init__(self, param: float = C.DT_TUKEY_B_DEFAULT):
        super().__init__(param)


class HuberInfluenceFunction(InfluenceFunction):
    kind = InfluenceFunctionType.HUBER
    _kernel = staticmethod(huber_influence_jax)

    def __init__(self, param: float = C.DT_HUBER_K_DEFAULT):
        super().__init__(param)


class ScaleEstimator:
    """Estimates the 2x2 residual covariance; unit variant returns identity."""

    kind = ScaleEstimatorType.UNIT

    def __init__(self, param: float = 1.0):
        self.param = float(param)

    def covariance(
        self,
        residuals: jnp.ndarray,
        weights: jnp.ndarray,
        valid: jnp.ndarray,
        mean: jnp.ndarray,
    ) -> jnp.ndarray:
        return jnp.eye(C.DT_D_RESIDUAL, dtype=jnp.float64)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(param={self.param})"


class UnitScaleEstimator(ScaleEstimator):
    pass


class NormalDistributionScaleEstimator(ScaleEstimator):
    kind = ScaleEstimatorType.NORMAL_DISTRIBUTION

    def covariance(self, residuals, weights, valid, mean):
        return weighted_covariance_jax(residuals, jnp.ones_like(weights), valid, mean)


class TDistributionScaleEstimator(ScaleEstimator):
    """
    EM M-step for the t-distribution scale.

    The E-step weights come in from the influence function, so `param`
    (degrees of freedom) only labels the estimator; pair it with a
    TDistributionInfluenceFunction of the same ν.
    """

    kind = ScaleEstimatorType.T_DISTRIBUTION

    def __init__(self, param: float = C.DT_T_DISTRIBUTION_DOF_DEFAULT):
        super().__init__(param)

    def covariance(self, residuals, weights, valid, mean):
        return weighted_covariance_jax(residuals, weights, valid, mean)


class MadScaleEstimator(ScaleEstimator):
    kind = ScaleEstimatorType.MAD

    def covariance(self, residuals, weights, valid, mean):
        return mad_covariance_jax(residuals, valid)


_SCALE_ESTIMATORS = {
    ScaleEstimatorType.UNIT: UnitScaleEstimator,
    ScaleEstimatorType.NORMAL_DISTRIBUTION: NormalDistributionScaleEstimator,
    ScaleEstimatorType.T_DISTRIBUTION: TDistributionScaleEstimator,
    ScaleEstimatorType.MAD: MadScaleEstimator,
}

_INFLUENCE_FUNCTIONS = {
    InfluenceFunctionType.UNIT: UnitInfluenceFunction,
    InfluenceFunctionType.T_DISTRIBUTION: TDistributionInfluenceFunction,
    InfluenceFunctionType.TUKEY: TukeyInfluenceFunction,
    InfluenceFunctionType.HUBER: HuberInfluenceFunction,
}


def make_scale_estimator(kind, param: float) -> ScaleEstimator:
    """
    Raises:
        ValueError: for unknown estimator names
    """
    return _SCALE_ESTIMATORS[ScaleEstimatorType(kind)](param)


def make_influence_function(kind, param: float) -> InfluenceFunction:
    """
    Raises:
        ValueError: for unknown influence function names
    """
    return _INFLUENCE_FUNCTIONS[InfluenceFunctionType(kind)](param)


class WeightCalculation:
    """
    One scale estimator paired with one influence function.

    Build with from_config(); disabled weighting yields the unit/unit pair, so
    every weight is 1 and the precision is the identity.
    """

    def __init__(self, scale_estimator: ScaleEstimator, influence_function: InfluenceFunction):
        self.scale_estimator = scale_estimator
        self.influence_function = influence_function

    @classmethod
    def from_config(cls, config: DenseTrackerConfig) -> "WeightCalculation":
        if not config.use_weighting:
            return cls.unit()
        return cls(
            make_scale_estimator(config.scale_estimator_type, config.scale_estimator_param),
            make_influence_function(config.influence_function_type, config.influence_function_param),
        )

    @classmethod
    def unit(cls) -> "WeightCalculation":
        return cls(UnitScaleEstimator(), UnitInfluenceFunction())

    @property
    def is_unit(self) -> bool:
        return (
            self.scale_estimator.kind == ScaleEstimatorType.UNIT
            and self.influence_function.kind == InfluenceFunctionType.UNIT
        )

    def calculate_weights(
        self,
        residuals: jnp.ndarray,
        valid: jnp.ndarray,
        mean: jnp.ndarray,
        precision: jnp.ndarray,
    ) -> jnp.ndarray:
        """Masked IRLS weights under the running (mean, precision)."""
        d2 = mahalanobis_sq_jax(residuals, mean, precision)
        w, _ = self.influence_function.evaluate(d2)
        return jnp.where(valid, w, 0.0)

    def calculate_scale(
        self,
        residuals: jnp.ndarray,
        weights: jnp.ndarray,
        valid: jnp.ndarray,
        mean: jnp.ndarray,
    ) -> jnp.ndarray:
        return self.scale_estimator.covariance(residuals, weights, valid, mean)

    def negative_log_likelihood(
        self,
        residuals: jnp.ndarray,
        valid: jnp.ndarray,
        mean: jnp.ndarray,
        precision: jnp.ndarray,
    ) -> float:
        d2 = mahalanobis_sq_jax(residuals, mean, precision)
        _, rho = self.influence_function.evaluate(d2)
        return float(negative_log_likelihood_jax(rho, valid, precision))

    def __repr__(self) -> str:
        return f"WeightCalculation({self.scale_estimator!r}, {self.influence_function!r})"
