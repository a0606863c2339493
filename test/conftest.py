import os
import sys

import numpy as np
import pytest

# Ensure local package import works for pytest collection.
_TEST_DIR = os.path.dirname(__file__)
_PKG_ROOT = os.path.abspath(os.path.join(_TEST_DIR, ".."))
if _PKG_ROOT not in sys.path:
    sys.path.insert(0, _PKG_ROOT)

from dvo_tracking.common.geometry import se3_exp, se3_to_matrix
from dvo_tracking.core.rgbd_image import IntrinsicMatrix, RgbdImagePyramid


# =============================================================================
# Synthetic scene
# =============================================================================
# A textured, tilted plane n·X = d seen by a pinhole camera. The texture is a
# function of the 3D surface point, so any camera pose renders a consistent
# intensity + depth image pair without interpolation.

SCENE_WIDTH = 160
SCENE_HEIGHT = 120
SCENE_INTRINSICS = IntrinsicMatrix(fx=130.0, fy=130.0, ox=79.5, oy=59.5)

_PLANE_NORMAL = np.array([0.2, -0.15, 1.0]) / np.linalg.norm([0.2, -0.15, 1.0])
_PLANE_DISTANCE = 2.0

_TEXTURE_DIR_A = np.array([1.0, 0.3, 0.0]) / np.linalg.norm([1.0, 0.3, 0.0])
_TEXTURE_DIR_B = np.array([-0.4, 1.0, 0.2]) / np.linalg.norm([-0.4, 1.0, 0.2])


def _texture(X: np.ndarray) -> np.ndarray:
    a = X @ _TEXTURE_DIR_A
    b = X @ _TEXTURE_DIR_B
    return 128.0 + 50.0 * np.sin(2.0 * np.pi * a / 1.2) + 40.0 * np.cos(2.0 * np.pi * b / 0.9 + 0.5)


def render_plane_scene(camera_pose: np.ndarray = None):
    """
    Render (intensity, depth) of the plane from a camera at camera_pose.

    camera_pose is the 4x4 pose of the camera in the reference frame.
    """
    if camera_pose is None:
        camera_pose = np.eye(4)
    R = camera_pose[:3, :3]
    t = camera_pose[:3, 3]
    K = SCENE_INTRINSICS

    u, v = np.meshgrid(np.arange(SCENE_WIDTH, dtype=float), np.arange(SCENE_HEIGHT, dtype=float))
    rays = np.stack([(u - K.ox) / K.fx, (v - K.oy) / K.fy, np.ones_like(u)], axis=-1)
    rays_ref = rays @ R.T
    s = (_PLANE_DISTANCE - _PLANE_NORMAL @ t) / (rays_ref @ _PLANE_NORMAL)
    X = t + s[..., None] * rays_ref
    return _texture(X), s


def scene_pyramid(camera_pose: np.ndarray = None, timestamp: float = 0.0) -> RgbdImagePyramid:
    intensity, depth = render_plane_scene(camera_pose)
    return RgbdImagePyramid(intensity, depth, SCENE_INTRINSICS, timestamp)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def rng():
    """Seeded generator for reproducible tests."""
    return np.random.default_rng(42)


@pytest.fixture
def ground_truth_motion() -> np.ndarray:
    """4x4 pose of the current camera in the reference frame (sub-2px image motion)."""
    twist = np.array([0.010, -0.008, 0.012, 0.004, -0.006, 0.003])
    return se3_to_matrix(se3_exp(twist))


@pytest.fixture
def reference_pyramid() -> RgbdImagePyramid:
    return scene_pyramid(np.eye(4), timestamp=0.0)


@pytest.fixture
def current_pyramid(ground_truth_motion) -> RgbdImagePyramid:
    return scene_pyramid(ground_truth_motion, timestamp=0.033)


@pytest.fixture
def packaged_config_path() -> str:
    return os.path.join(_PKG_ROOT, "dvo_tracking", "config", "dense_tracker.yaml")
