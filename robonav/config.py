"""Default configuration parameters for the simulation and estimation toolkit.

This module centralizes the construction-time defaults for:
- Vehicle kinematics and actuator limits
- Odometry and sensor noise models
- Random-waypoint driver behaviour
- EKF initialization and data association

Every constructor in the package takes these values as keyword defaults, so
overriding one for a single object never requires editing this file.
"""

import numpy as np

# ============================================================================
# Vehicle Parameters
# ============================================================================

DT = 0.1
"""Sample interval between simulation steps (seconds)."""

SPEED_MAX = 5.0
"""Maximum forward speed magnitude (m/s). Demands beyond it are clamped."""

ACCEL_MAX = np.inf
"""Maximum change in speed per second (m/s²).

Infinite by default, i.e. no acceleration limit. The limit is applied before
the speed clamp, relative to the speed used in the previous step.
"""

WHEEL_SEPARATION = 1.0
"""Unicycle wheel separation W (meters).

The unicycle turn rate is steer / W, so a steer input of π/2 with W = 1 turns
the vehicle by π/2 rad per second.
"""

WHEELBASE = 1.0
"""Bicycle wheelbase L (meters), front to rear axle."""

STEER_MAX = 0.45 * np.pi
"""Bicycle steering wheel limit (radians)."""

ODOMETRY_COVARIANCE = np.diag([0.02, 0.5 * np.pi / 180]) ** 2
"""Odometry noise covariance V (2×2) on [distance, heading change] per step.

- Distance: 2 cm standard deviation per step
- Heading change: 0.5° standard deviation per step
"""

# ============================================================================
# Range-Bearing Sensor Parameters
# ============================================================================

OBSERVATION_COVARIANCE = np.diag([0.1, 1.0 * np.pi / 180]) ** 2
"""Observation noise covariance W (2×2) on [range, bearing].

- Range: 10 cm standard deviation
- Bearing: 1° standard deviation
"""

SENSOR_RANGE = None
"""Maximum sensing range (meters). None means unlimited."""

SENSOR_ANGLE = None
"""Half field of view (radians). Bearings outside [-angle, angle] are not seen.
None means the full circle is visible."""

SENSOR_INTERVAL = 1
"""Return a reading every this many calls; the other calls return None."""

# ============================================================================
# Driver Parameters (random waypoint pursuit)
# ============================================================================

DRIVER_SPEED = 1.0
"""Cruise speed demanded by the driver (m/s)."""

DRIVER_DTHRESH = 0.05
"""Target-reach tolerance as a fraction of the workspace diagonal."""

DRIVER_HEADING_GAIN = 0.3
"""Proportional gain from heading error (rad) to steer demand."""

DRIVER_MARGIN = 0.1
"""Fraction of the workspace width/height excluded at each edge when
drawing a new target."""

DRIVER_SLOWDOWN_RADIUS = 0.0
"""Distance to target (meters) inside which speed ramps down linearly.

Zero keeps the speed constant all the way to the target.
"""

# ============================================================================
# Extended Kalman Filter Parameters
# ============================================================================

INITIAL_COVARIANCE = np.diag([0.005, 0.005, 0.001]) ** 2
"""Initial vehicle pose covariance P0 (3×3).

Small values: runs normally start from a well known pose.
"""

ASSOCIATION_CONFIDENCE = 0.99
"""Confidence level of the Mahalanobis association gate.

Converted to a chi-square threshold with 2 degrees of freedom:
- 0.95: 5.99
- 0.99: 9.21
- 0.999: 13.82
"""

CONDITION_LIMIT = 1e12
"""Innovation covariances with a larger condition number are treated as
singular and the observation is skipped."""
