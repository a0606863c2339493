"""
Dense RGB-D tracking constants only.

=============================================================================
CONVENTION QUICK REFERENCE
=============================================================================

SE(3) POSES:
  Internal 6D: [trans(3), rotvec(3)] = [x, y, z, rx, ry, rz]
  Twists use the same ordering: [v(3), w(3)] (translation first)

TRACKED ESTIMATE:
  estimate maps reference-frame points into the current camera frame
  reported transformation = estimate^{-1} (current camera pose in reference frame)

RESIDUALS (per point, 2D):
  r = [intensity difference / 255, depth difference in meters]

ACCELERATION STRUCTURE CHANNELS (per pixel, 6D):
  [I, Z, dI/dx, dI/dy, dZ/dx, dZ/dy]
=============================================================================
"""

# =============================================================================
# Problem dimensions
# =============================================================================

DT_D_TWIST = 6  # se(3) tangent dimension
DT_D_RESIDUAL = 2  # intensity + depth
DT_D_CHANNELS = 6  # acceleration structure channels

# SE(3) has exactly 6 DOF; fewer valid residuals cannot constrain an increment
DT_MIN_VALID_CONSTRAINTS = 6

# =============================================================================
# Epsilon constants (domain stabilization)
# =============================================================================

DT_EPS_DEPTH = 1e-9  # Points closer than this to the image plane are invalid
DT_EPS_COVARIANCE = 1e-12  # Lift added to 2x2 residual covariances before inversion

# =============================================================================
# Residual blend weights
# =============================================================================
# Intensities are stored in [0, 255]; residuals and derivatives are scaled to [0, 1].
# Intensity derivatives are averaged between reference and current image (ESM style),
# depth derivatives come from the current image only.

DT_INTENSITY_SCALE = 1.0 / 255.0
DT_INTENSITY_DERIVATIVE_WEIGHT_CURRENT = 0.5
DT_INTENSITY_DERIVATIVE_WEIGHT_REFERENCE = 0.5
DT_DEPTH_DERIVATIVE_WEIGHT_CURRENT = 1.0
DT_DEPTH_DERIVATIVE_WEIGHT_REFERENCE = 0.0

# =============================================================================
# Robust weighting defaults
# =============================================================================

DT_T_DISTRIBUTION_DOF_DEFAULT = 5.0
DT_TUKEY_B_DEFAULT = 4.6851  # 95% asymptotic efficiency under Gaussian noise
DT_HUBER_K_DEFAULT = 1.345  # 95% asymptotic efficiency under Gaussian noise
DT_MAD_SCALE = 1.4826  # MAD -> standard deviation for Gaussian data

# =============================================================================
# Tracker defaults (DenseTrackerConfig)
# =============================================================================

DT_FIRST_LEVEL_DEFAULT = 3
DT_LAST_LEVEL_DEFAULT = 1
DT_MAX_ITERATIONS_PER_LEVEL_DEFAULT = 100
DT_PRECISION_DEFAULT = 5e-7
DT_MU_DEFAULT = 0.0
DT_INTENSITY_DERIVATIVE_THRESHOLD_DEFAULT = 0.0
DT_DEPTH_DERIVATIVE_THRESHOLD_DEFAULT = 0.0

# Empirical sensor-noise calibration applied to the final information matrix
# (variance applied twice, not derived from the residual statistics).
DT_SENSOR_NOISE_VARIANCE = 0.008
DT_INFORMATION_SCALE_DEFAULT = DT_SENSOR_NOISE_VARIANCE * DT_SENSOR_NOISE_VARIANCE

# =============================================================================
# Pyramid
# =============================================================================

DT_PYRAMID_SCALE = 0.5  # Each level halves width and height
