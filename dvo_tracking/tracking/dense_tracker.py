"""
Dense RGB-D frame-to-frame tracker.

Coarse-to-fine alignment of a reference and a current RGB-D pyramid. Each
level runs iteratively reweighted least squares with damped Gauss-Newton
steps on SE(3):

  1. compose the proposed twist into both tracked poses
  2. evaluate residuals of the selected reference points
  3. update weights (unit on a level's first iteration) and the 2x2 scale
  4. accept iff the negative log-likelihood strictly decreased; otherwise
     revert both poses and stop the level
  5. solve (A + mu I) x = b + mu log(initial) for the next proposal
  6. stop on the iteration budget or once max|x| <= precision

Two poses are tracked: `estimate`, mapping reference points into the
current frame, and `initial`, the remaining offset from the current
linearisation point back to the initial guess (the prior).

Degenerate steps (too few valid residuals, singular scale or normal
equations) end the level without raising; the result reports
success=False when the finest level never produced an accepted solve.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np

from dvo_tracking.common.jax_init import jnp
from dvo_tracking.common import constants as C
from dvo_tracking.common.config import DenseTrackerConfig, default_config
from dvo_tracking.common.geometry import (
    se3_compose,
    se3_exp,
    se3_from_matrix,
    se3_identity,
    se3_inverse,
    se3_log,
    se3_to_matrix,
    se3_to_rt,
)
from dvo_tracking.core.point_selection import (
    PointSelection,
    ValidPointAndGradientThresholdPredicate,
)
from dvo_tracking.core.revertable import Revertable
from dvo_tracking.core.rgbd_image import RgbdImagePyramid
from dvo_tracking.operators.normal_equations import (
    accumulate_normal_equations_jax,
    solve_normal_equations,
)
from dvo_tracking.operators.residuals import compute_residuals_jax, residual_blend_weights
from dvo_tracking.operators.weighting import WeightCalculation
from dvo_tracking.structures.workspace import TrackingWorkspace
from dvo_tracking.tracking.stats import (
    DenseTrackerResult,
    IterationStats,
    LevelStats,
    TerminationCriterion,
)

_logger = logging.getLogger(__name__)


@dataclass
class IterationContext:
    """Loop bookkeeping; objective history never crosses levels."""

    level: int = 0
    iteration: int = 0
    error: float = float("inf")
    last_error: float = float("inf")

    def reset(self, level: int) -> None:
        self.level = level
        self.iteration = 0
        self.error = float("inf")
        self.last_error = float("inf")

    @property
    def is_first_iteration_on_level(self) -> bool:
        return self.iteration == 0

    def iterations_exceeded(self, max_iterations: int) -> bool:
        return self.iteration >= max_iterations

    def record_error(self, error: float) -> bool:
        """Shift the objective history; True iff the new error strictly decreased."""
        self.last_error = self.error
        self.error = error
        return bool(self.error < self.last_error)


class DenseTracker:
    """
    Estimates the rigid motion between two RGB-D frames.

    One instance owns its scratch workspace: do not run two match() calls
    on the same instance concurrently. Independent instances are safe.

    Example:
        >>> tracker = DenseTracker(load_config())
        >>> result = tracker.match(reference_pyramid, current_pyramid)
        >>> result.transformation  # 4x4 current camera pose in the reference frame
    """

    def __init__(self, config: Optional[DenseTrackerConfig] = None):
        self._config: Optional[DenseTrackerConfig] = None
        self._weight_calculation: Optional[WeightCalculation] = None
        self._predicate: Optional[ValidPointAndGradientThresholdPredicate] = None
        self._workspace = TrackingWorkspace()
        self._itctx = IterationContext()
        self.configure(config if config is not None else default_config())

    def configure(self, config: DenseTrackerConfig) -> None:
        """
        Raises:
            ValueError: if the configuration is not sane
        """
        if not config.is_sane():
            raise ValueError(f"Invalid dense tracker configuration: {config!r}")
        self._config = config.model_copy()
        self._weight_calculation = WeightCalculation.from_config(self._config)
        self._predicate = ValidPointAndGradientThresholdPredicate(
            intensity_threshold=self._config.intensity_derivative_threshold,
            depth_threshold=self._config.depth_derivative_threshold,
        )

    @property
    def configuration(self) -> DenseTrackerConfig:
        """Copy of the active configuration; use configure() to change it."""
        return self._config.model_copy()

    @property
    def weight_calculation(self) -> WeightCalculation:
        return self._weight_calculation

    @property
    def workspace(self) -> TrackingWorkspace:
        return self._workspace

    def match(
        self,
        reference: Union[RgbdImagePyramid, PointSelection],
        current: RgbdImagePyramid,
        initial_transformation: Optional[np.ndarray] = None,
    ) -> DenseTrackerResult:
        """
        Align `current` to `reference`.

        Args:
            reference: reference pyramid, or a PointSelection bound to one
            current: current pyramid
            initial_transformation: 4x4 guess in the output convention; used
                only when use_initial_estimate is set

        Returns:
            DenseTrackerResult with the 4x4 pose of the current camera in the
            reference frame
        """
        cfg = self._config

        if isinstance(reference, PointSelection):
            selection = reference
        else:
            selection = PointSelection(self._predicate, reference)
        selection.get_rgbd_image_pyramid().compute(cfg.num_levels)
        current.compute(cfg.num_levels)

        seed = se3_identity()
        if cfg.use_initial_estimate and initial_transformation is not None:
            seed = se3_inverse(se3_from_matrix(initial_transformation))

        initial = Revertable(seed)
        estimate = Revertable(se3_identity())

        self._workspace.reserve(selection.get_maximum_number_of_points(cfg.last_level))

        result = DenseTrackerResult(timestamp=current.timestamp)
        proposal = se3_log(seed)

        for level in range(cfg.first_level, cfg.last_level - 1, -1):
            level_stats = self._solve_level(level, selection, current, initial, estimate, proposal)
            result.levels.append(level_stats)
            # Later levels continue from the carried-over estimate.
            proposal = np.zeros(C.DT_D_TWIST, dtype=np.float64)

        return assemble_result(result, estimate.current, cfg)

    def _solve_level(
        self,
        level: int,
        selection: PointSelection,
        current: RgbdImagePyramid,
        initial: Revertable,
        estimate: Revertable,
        x: np.ndarray,
    ) -> LevelStats:
        """IRLS + damped Gauss-Newton on one pyramid level."""
        cfg = self._config
        weighting = self._weight_calculation
        itctx = self._itctx
        itctx.reset(level)

        mean = np.zeros(C.DT_D_RESIDUAL, dtype=np.float64)
        precision = np.zeros((C.DT_D_RESIDUAL, C.DT_D_RESIDUAL), dtype=np.float64)

        image = current.level(level)
        K = image.intrinsics
        w_cur, w_ref = residual_blend_weights(K)
        batch = selection.select(level, K)
        accel = jnp.asarray(image.build_acceleration_structure())

        selected = self._workspace.load(batch)
        points = jnp.asarray(self._workspace.points)
        reference = jnp.asarray(self._workspace.reference)
        selected = jnp.asarray(selected)
        intrinsics = jnp.asarray(K.as_array())
        w_cur = jnp.asarray(w_cur)
        w_ref = jnp.asarray(w_ref)

        level_stats = LevelStats(
            level=level,
            max_valid_pixels=selection.get_maximum_number_of_points(level),
            valid_pixels=batch.num_points,
        )

        while True:
            it = IterationStats(id=itctx.iteration, applied_increment=np.array(x, dtype=np.float64))
            level_stats.iterations.append(it)

            inc = se3_exp(x)
            initial.update(se3_compose(se3_inverse(inc), initial.current))
            estimate.update(se3_compose(inc, estimate.current))

            R, t = se3_to_rt(estimate.current)
            res = compute_residuals_jax(
                points, reference, selected, jnp.asarray(R), jnp.asarray(t),
                intrinsics, accel, w_cur, w_ref,
            )
            n = int(jnp.sum(res.valid))
            it.valid_constraints = n

            if n < cfg.min_valid_constraints:
                _logger.warning(
                    f"Level {level} iteration {itctx.iteration}: {n} valid residuals "
                    f"(< {cfg.min_valid_constraints}), stopping level"
                )
                initial.revert()
                estimate.revert()
                level_stats.termination = TerminationCriterion.DEGENERATE
                break

            mean_j = jnp.asarray(mean)
            if itctx.is_first_iteration_on_level:
                weights = res.valid.astype(jnp.float64)
            else:
                weights = weighting.calculate_weights(res.residuals, res.valid, mean_j, jnp.asarray(precision))

            covariance = np.asarray(weighting.calculate_scale(res.residuals, weights, res.valid, mean_j))
            try:
                precision = np.linalg.inv(covariance)
            except np.linalg.LinAlgError:
                precision = np.full_like(covariance, np.nan)

            nll = float("nan")
            if np.all(np.isfinite(precision)):
                nll = weighting.negative_log_likelihood(res.residuals, res.valid, mean_j, jnp.asarray(precision))

            it.t_distribution_log_likelihood = nll
            it.t_distribution_mean = mean.copy()
            it.t_distribution_precision = precision.copy()
            it.prior_log_likelihood = float(cfg.mu * np.sum(se3_log(initial.current) ** 2))

            if not np.isfinite(nll):
                _logger.warning(f"Level {level} iteration {itctx.iteration}: non-finite objective, stopping level")
                initial.revert()
                estimate.revert()
                level_stats.termination = TerminationCriterion.DEGENERATE
                break

            it.accepted = itctx.record_error(nll)
            if not it.accepted:
                initial.revert()
                estimate.revert()
                level_stats.termination = TerminationCriterion.OBJECTIVE_INCREASED
                break

            A, b = accumulate_normal_equations_jax(
                res.residuals, res.transformed_points, res.intensity_gradient, res.depth_gradient,
                weights, res.valid, jnp.asarray(precision),
            )
            A = np.asarray(A) + cfg.mu * np.eye(C.DT_D_TWIST)
            b = np.asarray(b) + cfg.mu * se3_log(initial.current)

            try:
                x = solve_normal_equations(A, b)
            except np.linalg.LinAlgError:
                _logger.warning(f"Level {level} iteration {itctx.iteration}: singular normal equations, stopping level")
                level_stats.termination = TerminationCriterion.DEGENERATE
                break

            it.estimate_increment = x
            it.estimate_information = A
            itctx.iteration += 1

            if itctx.iterations_exceeded(cfg.max_iterations_per_level):
                level_stats.termination = TerminationCriterion.ITERATIONS_EXCEEDED
                break
            if np.max(np.abs(x)) <= cfg.precision:
                level_stats.termination = TerminationCriterion.INCREMENT_TOO_SMALL
                break

        _logger.debug(
            f"Level {level}: {level_stats.valid_pixels}/{level_stats.max_valid_pixels} points, "
            f"{level_stats.num_iterations} iterations, termination={level_stats.termination.value}, "
            f"error={itctx.error:.6g}"
        )
        return level_stats


def assemble_result(
    result: DenseTrackerResult,
    estimate: np.ndarray,
    config: DenseTrackerConfig,
) -> DenseTrackerResult:
    """
    Fill the externally reported fields from the finest level.

    transformation is always estimate^{-1}; information and log_likelihood
    come from the last accepted iteration that produced a solved system.
    """
    result.transformation = se3_to_matrix(se3_inverse(estimate))

    last_level = result.levels[-1] if result.levels else None
    final = last_level.last_accepted_iteration() if last_level is not None else None

    if final is None:
        result.information = np.zeros((C.DT_D_TWIST, C.DT_D_TWIST), dtype=np.float64)
        result.log_likelihood = float("inf")
        result.success = False
        level_id = last_level.level if last_level is not None else None
        _logger.warning(f"Alignment failed: no accepted iteration on level {level_id}")
        return result

    result.information = np.asarray(final.estimate_information) * config.information_scale
    result.log_likelihood = final.t_distribution_log_likelihood + final.prior_log_likelihood
    result.success = True
    return result
