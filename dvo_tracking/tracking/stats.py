"""
Alignment diagnostics.

IterationStats and LevelStats record every evaluated proposal; the
DenseTrackerResult is created fresh per match() call and owned by the caller.
All three serialise to plain JSON for telemetry and tuning.
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np


def _json_safe(obj):
    """
    Convert numpy arrays/scalars and enums to JSON-serializable Python types.

    Non-finite floats become None so the output stays strict JSON.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if obj is None or isinstance(obj, (str, int, bool)):
        return obj

    if isinstance(obj, (list, tuple)):
        return [_json_safe(x) for x in obj]
    if isinstance(obj, dict):
        return {str(k): _json_safe(v) for k, v in obj.items()}

    if isinstance(obj, np.ndarray):
        return _json_safe(obj.tolist())
    if isinstance(obj, np.generic):
        return _json_safe(obj.item())

    # JAX arrays
    tolist = getattr(obj, "tolist", None)
    if callable(tolist):
        return _json_safe(tolist())

    return repr(obj)


class TerminationCriterion(str, Enum):
    """Why a level's loop stopped."""

    ITERATIONS_EXCEEDED = "iterations_exceeded"
    INCREMENT_TOO_SMALL = "increment_too_small"
    OBJECTIVE_INCREASED = "objective_increased"
    DEGENERATE = "degenerate"


@dataclass
class IterationStats:
    """
    One evaluated proposal.

    Attributes:
        id: iteration index within the level
        applied_increment: twist composed into the estimate before evaluation
        valid_constraints: number of valid residuals
        t_distribution_log_likelihood: negative complete-data log-likelihood
        prior_log_likelihood: mu * ||log(initial)||²
        t_distribution_mean: running residual mean
        t_distribution_precision: 2x2 residual precision
        accepted: objective strictly decreased
        estimate_increment: solved twist (accepted iterations only)
        estimate_information: damped 6x6 system matrix (accepted iterations only)
    """

    id: int
    applied_increment: np.ndarray
    valid_constraints: int = 0
    t_distribution_log_likelihood: float = float("nan")
    prior_log_likelihood: float = 0.0
    t_distribution_mean: np.ndarray = field(default_factory=lambda: np.zeros(2))
    t_distribution_precision: np.ndarray = field(default_factory=lambda: np.zeros((2, 2)))
    accepted: bool = False
    estimate_increment: Optional[np.ndarray] = None
    estimate_information: Optional[np.ndarray] = None

    @property
    def has_solution(self) -> bool:
        return self.estimate_information is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "applied_increment": _json_safe(self.applied_increment),
            "valid_constraints": self.valid_constraints,
            "t_distribution_log_likelihood": _json_safe(self.t_distribution_log_likelihood),
            "prior_log_likelihood": _json_safe(self.prior_log_likelihood),
            "t_distribution_mean": _json_safe(self.t_distribution_mean),
            "t_distribution_precision": _json_safe(self.t_distribution_precision),
            "accepted": self.accepted,
            "estimate_increment": _json_safe(self.estimate_increment),
            "estimate_information": _json_safe(self.estimate_information),
        }


@dataclass
class LevelStats:
    """Per-level summary plus its iteration records (in evaluation order)."""

    level: int
    max_valid_pixels: int = 0
    valid_pixels: int = 0
    termination: Optional[TerminationCriterion] = None
    iterations: List[IterationStats] = field(default_factory=list)

    @property
    def num_iterations(self) -> int:
        return len(self.iterations)

    def last_accepted_iteration(self) -> Optional[IterationStats]:
        """
        Latest record carrying a solved system.

        A final record rolled back on objective_increased is skipped.
        """
        candidates = self.iterations
        if self.termination == TerminationCriterion.OBJECTIVE_INCREASED and candidates:
            candidates = candidates[:-1]
        for it in reversed(candidates):
            if it.has_solution:
                return it
        return None

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "max_valid_pixels": self.max_valid_pixels,
            "valid_pixels": self.valid_pixels,
            "termination": _json_safe(self.termination),
            "iterations": [it.to_dict() for it in self.iterations],
        }


@dataclass
class DenseTrackerResult:
    """
    Outcome of one alignment.

    transformation is the 4x4 pose of the current camera in the reference
    frame; information is the calibrated 6x6 information of the final
    accepted step.
    """

    transformation: np.ndarray = field(default_factory=lambda: np.eye(4))
    information: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))
    log_likelihood: float = float("inf")
    success: bool = False
    levels: List[LevelStats] = field(default_factory=list)
    timestamp: float = 0.0

    def to_dict(self) -> dict:
        return {
            "transformation": _json_safe(self.transformation),
            "information": _json_safe(self.information),
            "log_likelihood": _json_safe(self.log_likelihood),
            "success": self.success,
            "timestamp": _json_safe(self.timestamp),
            "levels": [lvl.to_dict() for lvl in self.levels],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, allow_nan=False)
