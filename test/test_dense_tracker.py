"""
Behavioural tests for DenseTracker on a synthetic textured plane.

The current frame is rendered from a camera displaced by a known rigid
motion; the tracker must recover that motion, keep its objective strictly
decreasing over accepted steps and report consistent diagnostics.
"""

import json

import numpy as np
import pytest

from dvo_tracking.common.config import DenseTrackerConfig
from dvo_tracking.common.geometry import (
    se3_compose,
    se3_distance,
    se3_exp,
    se3_from_matrix,
    se3_identity,
    se3_inverse,
    se3_log,
    se3_to_matrix,
)
from dvo_tracking.core.point_selection import PointSelection, ValidPointAndGradientThresholdPredicate
from dvo_tracking.core.rgbd_image import RgbdImagePyramid
from dvo_tracking.tracking.dense_tracker import DenseTracker, IterationContext
from dvo_tracking.tracking.stats import TerminationCriterion

from conftest import SCENE_INTRINSICS, render_plane_scene


def _reconstruct_transformation(result) -> np.ndarray:
    """Compose the accepted applied increments in evaluation order."""
    T = se3_identity()
    for level in result.levels:
        for it in level.iterations:
            if it.accepted:
                T = se3_compose(se3_exp(it.applied_increment), T)
    return se3_to_matrix(se3_inverse(T))


def _pose_error(a: np.ndarray, b: np.ndarray):
    return se3_distance(se3_from_matrix(a), se3_from_matrix(b))


class TestIterationContext:
    """Per-level bookkeeping."""

    def test_reset_clears_history(self):
        """reset() clears iteration and objective history."""
        ctx = IterationContext()
        ctx.iteration = 4
        ctx.record_error(1.0)
        ctx.reset(2)
        assert ctx.level == 2
        assert ctx.iteration == 0
        assert ctx.is_first_iteration_on_level
        assert ctx.error == float("inf")

    def test_record_error_requires_strict_decrease(self):
        """Only a strictly lower objective is recorded as progress."""
        ctx = IterationContext()
        assert ctx.record_error(5.0)
        assert not ctx.record_error(5.0)
        assert not ctx.record_error(float("nan"))

    def test_iterations_exceeded(self):
        """Budget check is inclusive."""
        ctx = IterationContext(iteration=3)
        assert ctx.iterations_exceeded(3)
        assert not ctx.iterations_exceeded(4)


class TestConfigure:
    """Configuration handling."""

    def test_insane_configuration_raises(self):
        """configure() rejects an insane configuration."""
        cfg = DenseTrackerConfig.model_construct(first_level=0, last_level=2)
        with pytest.raises(ValueError):
            DenseTracker(cfg)

    def test_configuration_is_copied(self):
        """Later edits to the passed config do not leak in."""
        cfg = DenseTrackerConfig(first_level=1, last_level=0)
        tracker = DenseTracker(cfg)
        cfg.first_level = 2
        assert tracker.configuration.first_level == 1

    def test_returned_configuration_is_detached(self):
        """Mutating the reported configuration leaves the tracker unchanged."""
        tracker = DenseTracker(DenseTrackerConfig(first_level=1, last_level=0))
        cfg = tracker.configuration
        cfg.use_weighting = False
        cfg.first_level = 3

        assert tracker.configuration.use_weighting
        assert tracker.configuration.first_level == 1
        assert not tracker.weight_calculation.is_unit

        tracker.configure(cfg)
        assert tracker.configuration.first_level == 3
        assert tracker.weight_calculation.is_unit

    def test_default_configuration(self):
        """No config means the defaults."""
        assert DenseTracker().configuration.first_level == 3


class TestEndToEnd:
    """Recovery of a known rigid motion."""

    def test_single_level_unweighted_recovers_motion(self, reference_pyramid, current_pyramid, ground_truth_motion):
        """Unweighted single-level tracking recovers the motion tightly."""
        cfg = DenseTrackerConfig(
            first_level=0,
            last_level=0,
            mu=0.0,
            use_weighting=False,
            max_iterations_per_level=5,
            precision=1e-12,
        )
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid)

        assert result.success
        assert len(result.levels) == 1
        assert result.levels[0].num_iterations <= 5

        trans_err, rot_err = _pose_error(result.transformation, ground_truth_motion)
        assert trans_err < 1e-4
        assert rot_err < 1e-4

    def test_coarse_to_fine_robust_recovers_motion(self, reference_pyramid, current_pyramid, ground_truth_motion):
        """Robust coarse-to-fine tracking recovers the motion."""
        cfg = DenseTrackerConfig(first_level=2, last_level=0, max_iterations_per_level=20)
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid)

        assert result.success
        trans_err, rot_err = _pose_error(result.transformation, ground_truth_motion)
        assert trans_err < 1e-3
        assert rot_err < 1e-3
        assert result.information.shape == (6, 6)
        assert np.all(np.linalg.eigvalsh(result.information) > 0.0)
        assert np.isfinite(result.log_likelihood)
        assert result.timestamp == pytest.approx(0.033)

    def test_identical_frames_stay_at_identity(self, reference_pyramid):
        """Identical frames give the identity transform."""
        current = RgbdImagePyramid(*render_plane_scene(), SCENE_INTRINSICS)
        cfg = DenseTrackerConfig(first_level=1, last_level=0, max_iterations_per_level=5)
        result = DenseTracker(cfg).match(reference_pyramid, current)
        assert np.allclose(result.transformation, np.eye(4), atol=1e-6)

    def test_reference_point_selection_accepted(self, reference_pyramid, current_pyramid, ground_truth_motion):
        """A PointSelection works as the reference."""
        selection = PointSelection(ValidPointAndGradientThresholdPredicate(), reference_pyramid)
        cfg = DenseTrackerConfig(first_level=1, last_level=0, use_weighting=False, max_iterations_per_level=10)
        result = DenseTracker(cfg).match(selection, current_pyramid)

        trans_err, rot_err = _pose_error(result.transformation, ground_truth_motion)
        assert trans_err < 1e-3 and rot_err < 1e-3


class TestMonotonicity:
    """Accepted steps strictly decrease the objective; others are rolled back."""

    def test_accepted_objectives_strictly_decrease(self, reference_pyramid, current_pyramid):
        """Accepted objectives strictly decrease within a level."""
        cfg = DenseTrackerConfig(first_level=2, last_level=0, max_iterations_per_level=15)
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid)

        for level in result.levels:
            previous = float("inf")
            for it in level.iterations:
                if it.accepted:
                    assert it.t_distribution_log_likelihood < previous
                    previous = it.t_distribution_log_likelihood
                else:
                    assert not it.t_distribution_log_likelihood < previous
                    assert it is level.iterations[-1]

    def test_tied_objective_is_rejected_and_rolled_back(self, reference_pyramid, current_pyramid, monkeypatch):
        """A tied objective is rejected and its step reverted."""
        # Budget of 2 would also be exhausted by accepting the second iteration.
        cfg = DenseTrackerConfig(first_level=0, last_level=0, max_iterations_per_level=2, precision=1e-12)
        tracker = DenseTracker(cfg)
        monkeypatch.setattr(tracker.weight_calculation, "negative_log_likelihood", lambda *args, **kwargs: 1.0)

        result = tracker.match(reference_pyramid, current_pyramid)
        level = result.levels[0]

        assert level.termination == TerminationCriterion.OBJECTIVE_INCREASED
        assert [it.accepted for it in level.iterations] == [True, False]
        assert level.iterations[1].estimate_information is None
        # The first proposal is the zero twist, the second was reverted.
        assert np.allclose(result.transformation, np.eye(4), atol=1e-12)
        # Result comes from the last accepted iteration.
        assert result.success
        assert np.allclose(
            result.information, level.iterations[0].estimate_information * cfg.information_scale
        )
        assert result.log_likelihood == pytest.approx(1.0)

    def test_increasing_objective_is_rejected(self, reference_pyramid, current_pyramid, monkeypatch):
        """An increasing objective ends the level."""
        cfg = DenseTrackerConfig(first_level=0, last_level=0, max_iterations_per_level=10)
        tracker = DenseTracker(cfg)
        values = iter([3.0, 2.0, 2.5, 1.0])
        monkeypatch.setattr(tracker.weight_calculation, "negative_log_likelihood", lambda *a, **k: next(values))

        result = tracker.match(reference_pyramid, current_pyramid)
        level = result.levels[0]
        assert [it.accepted for it in level.iterations] == [True, True, False]
        assert level.termination == TerminationCriterion.OBJECTIVE_INCREASED
        assert np.allclose(result.transformation, _reconstruct_transformation(result), atol=1e-10)
        assert result.log_likelihood == pytest.approx(2.0)


class TestTermination:
    """Budget and convergence criteria."""

    def test_iteration_budget(self, reference_pyramid, current_pyramid):
        """Stops when the iteration budget is spent."""
        cfg = DenseTrackerConfig(first_level=0, last_level=0, max_iterations_per_level=1)
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid)
        assert result.levels[0].termination == TerminationCriterion.ITERATIONS_EXCEEDED
        assert result.levels[0].num_iterations == 1

    def test_increment_too_small(self, reference_pyramid, current_pyramid):
        """Stops when the increment falls below precision."""
        cfg = DenseTrackerConfig(first_level=0, last_level=0, precision=10.0)
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid)
        assert result.levels[0].termination == TerminationCriterion.INCREMENT_TOO_SMALL
        assert result.levels[0].num_iterations == 1

    def test_degenerate_without_points(self):
        """No valid points ends every level as degenerate."""
        intensity, depth = render_plane_scene()
        depth[:] = np.nan
        reference = RgbdImagePyramid(intensity, depth, SCENE_INTRINSICS)
        current = RgbdImagePyramid(*render_plane_scene(), SCENE_INTRINSICS)

        cfg = DenseTrackerConfig(first_level=1, last_level=0)
        result = DenseTracker(cfg).match(reference, current)

        assert not result.success
        assert all(lvl.termination == TerminationCriterion.DEGENERATE for lvl in result.levels)
        assert all(lvl.valid_pixels == 0 for lvl in result.levels)
        assert np.allclose(result.information, 0.0)
        assert result.log_likelihood == float("inf")
        assert np.allclose(result.transformation, np.eye(4))


class TestWeightingBypass:
    """Disabled weighting equals unit weights with identity precision."""

    def test_disabled_matches_unit_strategies(self, reference_pyramid, current_pyramid):
        """Disabled weighting equals unit strategies."""
        common = dict(first_level=1, last_level=0, max_iterations_per_level=6)
        disabled = DenseTracker(DenseTrackerConfig(
            use_weighting=False,
            scale_estimator_type="mad",
            influence_function_type="tukey",
            **common,
        ))
        unit = DenseTracker(DenseTrackerConfig(
            use_weighting=True,
            scale_estimator_type="unit",
            influence_function_type="unit",
            **common,
        ))
        assert disabled.weight_calculation.is_unit

        a = disabled.match(reference_pyramid, current_pyramid)
        b = unit.match(reference_pyramid, current_pyramid)

        assert np.allclose(a.transformation, b.transformation, atol=1e-10)
        for la, lb in zip(a.levels, b.levels):
            assert la.termination == lb.termination
            assert len(la.iterations) == len(lb.iterations)
            for ia, ib in zip(la.iterations, lb.iterations):
                assert np.allclose(ia.t_distribution_precision, np.eye(2))
                assert ia.t_distribution_log_likelihood == pytest.approx(ib.t_distribution_log_likelihood)


class TestLevelTraversal:
    """Coarse-to-fine order."""

    def test_levels_visited_coarse_to_fine(self, reference_pyramid, current_pyramid):
        """Levels run from first_level down to last_level."""
        cfg = DenseTrackerConfig(first_level=3, last_level=0, max_iterations_per_level=3)
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid)

        assert [lvl.level for lvl in result.levels] == [3, 2, 1, 0]
        assert result.levels[0].max_valid_pixels == 20 * 15
        assert result.levels[-1].max_valid_pixels == 160 * 120
        for lvl in result.levels:
            assert lvl.iterations[0].id == 0


class TestInitialEstimate:
    """Seeding from a caller-supplied guess."""

    def test_initial_estimate_is_first_proposal(self, reference_pyramid, current_pyramid, ground_truth_motion):
        """The initial guess is the first applied increment."""
        cfg = DenseTrackerConfig(first_level=0, last_level=0, use_initial_estimate=True, max_iterations_per_level=3)
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid, ground_truth_motion)

        first = result.levels[0].iterations[0]
        assert np.allclose(first.applied_increment, se3_log(se3_inverse(se3_from_matrix(ground_truth_motion))))
        trans_err, rot_err = _pose_error(result.transformation, ground_truth_motion)
        assert trans_err < 1e-4 and rot_err < 1e-4

    def test_initial_estimate_ignored_when_disabled(self, reference_pyramid, current_pyramid, ground_truth_motion):
        """The guess is ignored without use_initial_estimate."""
        cfg = DenseTrackerConfig(first_level=0, last_level=0, max_iterations_per_level=1)
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid, ground_truth_motion)
        assert np.allclose(result.levels[0].iterations[0].applied_increment, 0.0)

    def test_prior_term_reported(self, reference_pyramid, current_pyramid):
        """Prior term starts at zero and grows with drift."""
        guess = se3_to_matrix(np.array([0.02, 0.0, 0.0, 0.0, 0.0, 0.0]))
        cfg = DenseTrackerConfig(
            first_level=0, last_level=0, use_initial_estimate=True, mu=5.0, max_iterations_per_level=4
        )
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid, guess)
        its = result.levels[0].iterations
        # The seed is applied exactly, so the prior starts at zero and grows as the estimate moves away.
        assert its[0].prior_log_likelihood == pytest.approx(0.0, abs=1e-20)
        assert any(it.prior_log_likelihood > 0.0 for it in its[1:])


class TestResult:
    """Reconstruction and serialisation."""

    def test_reconstruction_from_accepted_increments(self, reference_pyramid, current_pyramid):
        """Accepted increments compose to the result."""
        cfg = DenseTrackerConfig(first_level=2, last_level=0, max_iterations_per_level=10)
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid)
        assert np.allclose(result.transformation, _reconstruct_transformation(result), atol=1e-9)

    def test_tracker_is_reusable(self, reference_pyramid, current_pyramid):
        """Repeated matches give equal, independent results."""
        tracker = DenseTracker(DenseTrackerConfig(first_level=1, last_level=0, max_iterations_per_level=5))
        a = tracker.match(reference_pyramid, current_pyramid)
        b = tracker.match(reference_pyramid, current_pyramid)
        assert a is not b
        assert np.allclose(a.transformation, b.transformation)

    def test_json_serialisation(self, reference_pyramid, current_pyramid):
        """Result serialises to JSON."""
        cfg = DenseTrackerConfig(first_level=1, last_level=0, max_iterations_per_level=3)
        result = DenseTracker(cfg).match(reference_pyramid, current_pyramid)
        data = json.loads(result.to_json())

        assert data["success"] is True
        assert np.array(data["transformation"]).shape == (4, 4)
        assert [lvl["level"] for lvl in data["levels"]] == [1, 0]
        names = {c.value for c in TerminationCriterion}
        assert all(lvl["termination"] in names for lvl in data["levels"])
        first = data["levels"][0]["iterations"][0]
        assert len(first["applied_increment"]) == 6
        assert np.array(first["t_distribution_precision"]).shape == (2, 2)

    def test_failed_match_serialises_to_strict_json(self):
        """Non-finite diagnostics of a failed match become null."""
        intensity, depth = render_plane_scene()
        depth[:] = np.nan
        reference = RgbdImagePyramid(intensity, depth, SCENE_INTRINSICS)
        current = RgbdImagePyramid(*render_plane_scene(), SCENE_INTRINSICS)
        result = DenseTracker(DenseTrackerConfig(first_level=0, last_level=0)).match(reference, current)

        def _reject(token):
            raise ValueError(f"non-standard JSON constant {token}")

        data = json.loads(result.to_json(), parse_constant=_reject)
        assert data["success"] is False
        assert data["log_likelihood"] is None
        assert data["levels"][0]["iterations"][0]["t_distribution_log_likelihood"] is None


class TestReweighting:
    """Robust weights follow the previous iteration's scale."""

    def test_weights_use_previous_precision(self, reference_pyramid, ground_truth_motion, monkeypatch):
        """Unit weights open each level; later iterations reuse the last precision and damp outliers."""
        intensity, depth = render_plane_scene(ground_truth_motion)
        intensity[40:60, 60:90] = 0.0
        current = RgbdImagePyramid(intensity, depth, SCENE_INTRINSICS, 0.033)

        selection = PointSelection(ValidPointAndGradientThresholdPredicate(), reference_pyramid)
        cfg = DenseTrackerConfig(first_level=1, last_level=0, max_iterations_per_level=6, precision=1e-12)
        tracker = DenseTracker(cfg)

        calls = []
        calculate_weights = tracker.weight_calculation.calculate_weights

        def _recording_weights(residuals, valid, mean, precision):
            weights = calculate_weights(residuals, valid, mean, precision)
            calls.append((np.asarray(precision), np.asarray(weights)))
            return weights

        monkeypatch.setattr(tracker.weight_calculation, "calculate_weights", _recording_weights)
        result = tracker.match(selection, current)

        expected = [
            lvl.iterations[k - 1].t_distribution_precision
            for lvl in result.levels
            for k in range(1, lvl.num_iterations)
        ]
        assert result.levels[-1].num_iterations >= 2
        assert len(calls) == len(expected)
        for (precision, _), previous in zip(calls, expected):
            assert np.allclose(precision, previous)

        # Reference pixels whose projection stays inside the corrupted block.
        batch = selection.select(0, reference_pyramid.level(0).intrinsics)
        K = SCENE_INTRINSICS
        u = batch.points[:, 0] * K.fx / batch.points[:, 2] + K.ox
        v = batch.points[:, 1] * K.fy / batch.points[:, 2] + K.oy
        outliers = (u >= 64) & (u <= 85) & (v >= 44) & (v <= 55)
        assert outliers.sum() > 0

        weights = calls[-1][1][:batch.num_points]
        assert np.all(weights[outliers] < 1.0)
        assert np.median(weights[outliers]) < np.median(weights[~outliers])
