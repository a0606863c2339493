"""Pydantic configuration model for the dense tracker."""

from __future__ import annotations

import os
from enum import Enum
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from dvo_tracking.common import constants


DEFAULT_CONFIG_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config", "dense_tracker.yaml"
)


class ScaleEstimatorType(str, Enum):
    UNIT = "unit"
    NORMAL_DISTRIBUTION = "normal_distribution"
    T_DISTRIBUTION = "t_distribution"
    MAD = "mad"


class InfluenceFunctionType(str, Enum):
    UNIT = "unit"
    T_DISTRIBUTION = "t_distribution"
    TUKEY = "tukey"
    HUBER = "huber"


class DenseTrackerConfig(BaseModel):
    """
    Dense tracker parameters.

    Pyramid levels are traversed from first_level (coarse) down to
    last_level (fine), so first_level >= last_level.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    first_level: int = Field(constants.DT_FIRST_LEVEL_DEFAULT, ge=0)
    last_level: int = Field(constants.DT_LAST_LEVEL_DEFAULT, ge=0)
    max_iterations_per_level: int = Field(constants.DT_MAX_ITERATIONS_PER_LEVEL_DEFAULT, ge=1)
    precision: float = Field(constants.DT_PRECISION_DEFAULT, gt=0.0)
    mu: float = Field(constants.DT_MU_DEFAULT, ge=0.0)

    use_initial_estimate: bool = False
    use_weighting: bool = True

    scale_estimator_type: ScaleEstimatorType = ScaleEstimatorType.T_DISTRIBUTION
    scale_estimator_param: float = Field(constants.DT_T_DISTRIBUTION_DOF_DEFAULT, gt=0.0)
    influence_function_type: InfluenceFunctionType = InfluenceFunctionType.T_DISTRIBUTION
    influence_function_param: float = Field(constants.DT_T_DISTRIBUTION_DOF_DEFAULT, gt=0.0)

    intensity_derivative_threshold: float = Field(constants.DT_INTENSITY_DERIVATIVE_THRESHOLD_DEFAULT, ge=0.0)
    depth_derivative_threshold: float = Field(constants.DT_DEPTH_DERIVATIVE_THRESHOLD_DEFAULT, ge=0.0)

    information_scale: float = Field(constants.DT_INFORMATION_SCALE_DEFAULT, gt=0.0)
    min_valid_constraints: int = Field(constants.DT_MIN_VALID_CONSTRAINTS, ge=1)

    @model_validator(mode="after")
    def _check_level_range(self) -> "DenseTrackerConfig":
        if self.first_level < self.last_level:
            raise ValueError(
                f"first_level ({self.first_level}) must be >= last_level ({self.last_level})"
            )
        return self

    @property
    def num_levels(self) -> int:
        """Number of pyramid levels that must exist (levels 0..first_level)."""
        return self.first_level + 1

    def is_sane(self) -> bool:
        return (
            self.first_level >= self.last_level >= 0
            and self.max_iterations_per_level >= 1
            and self.precision > 0.0
            and self.mu >= 0.0
            and self.information_scale > 0.0
            and self.min_valid_constraints >= 1
        )


def default_config() -> DenseTrackerConfig:
    """Fresh default-valued configuration (independent per call)."""
    return DenseTrackerConfig()


def _load_yaml_file(path: str) -> Dict[str, Any]:
    """Load a YAML config file, unwrapping an optional top-level dense_tracker key."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping in {path}, got {type(data).__name__}")

    if "dense_tracker" in data and isinstance(data["dense_tracker"], dict):
        return data["dense_tracker"]
    return data


def load_config(path: Optional[str] = None, **overrides: Any) -> DenseTrackerConfig:
    """
    Build a DenseTrackerConfig from YAML.

    Args:
        path: YAML file; the packaged dense_tracker.yaml when None
        **overrides: field values that take precedence over the file

    Raises:
        ValueError: if the merged parameters fail validation
    """
    values = _load_yaml_file(path or DEFAULT_CONFIG_PATH)
    merged = {**values, **overrides}
    return DenseTrackerConfig(**merged)
