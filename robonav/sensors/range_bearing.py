"""
Range-bearing landmark sensor.

The sensor measures the distance and relative bearing from the vehicle to
every landmark it can see. Visibility is a hard cutoff on range and bearing;
readings are corrupted by additive Gaussian noise.

Measurement Model
-----------------
For vehicle pose (x, y, θ) and landmark (l_x, l_y):

    r = √((l_x - x)² + (l_y - y)²)
    β = atan2(l_y - y, l_x - x) - θ

with Jacobians, writing Δx = l_x - x, Δy = l_y - y, r² = Δx² + Δy²:

    Hx = [[-Δx/r,  -Δy/r,   0],
          [ Δy/r², -Δx/r², -1]]

    Hp = [[ Δx/r,   Δy/r ],
          [-Δy/r²,  Δx/r²]]

The inverse model g(x, z) places a landmark from a single observation and is
used to add newly seen landmarks to a SLAM state.
"""

import logging
from collections import namedtuple

import numpy as np

from robonav import config
from robonav.errors import ConfigurationError
from robonav.utils.data_utils import check_covariance, wrap_angle

logger = logging.getLogger(__name__)

Observation = namedtuple("Observation", "range bearing id")
"""One landmark observation. ``id`` is None when ids are withheld."""


def _parse_limits(value, name, symmetric):
    if value is None:
        return None
    limits = np.array(value, dtype=float).flatten()
    if limits.size == 1:
        if limits[0] <= 0:
            raise ConfigurationError(f"{name} must be positive, got {limits[0]}")
        limits = np.r_[-limits[0], limits[0]] if symmetric else np.r_[0.0, limits[0]]
    if limits.size != 2 or not limits[0] < limits[1]:
        raise ConfigurationError(f"{name} must be a scalar or an increasing (min, max) pair")
    return limits


class RangeBearingSensor:
    """
    Noisy range-bearing sensor observing a :class:`LandmarkMap`.

    Parameters
    ----------
    map : LandmarkMap
        Map of landmarks to observe. Not owned by the sensor.
    W : array_like, shape (2, 2), optional
        Observation noise covariance on [range, bearing].
        Default: :data:`robonav.config.OBSERVATION_COVARIANCE`.
    range : float or (float, float), optional
        Maximum range, or (min, max) range interval. None: unlimited.
    angle : float or (float, float), optional
        Half field of view, or (min, max) bearing interval. None: full circle.
    interval : int, optional
        Produce a reading on every ``interval``-th call only.
    known_ids : bool, optional
        Report the landmark id with each observation. When False the id is
        withheld and estimators must associate observations themselves.
    seed : int or None, optional
        Seed of the noise generator.

    Examples
    --------
    >>> sensor = RangeBearingSensor(lm_map, W=np.diag([0.1, np.deg2rad(1)]) ** 2,
    ...                             range=4, angle=np.pi / 2)
    >>> sensor.reading(np.array([0.0, 0.0, 0.0]))
    [Observation(range=2.03..., bearing=0.31..., id=3)]
    """

    def __init__(
        self,
        map,
        W=None,
        range=config.SENSOR_RANGE,
        angle=config.SENSOR_ANGLE,
        interval=config.SENSOR_INTERVAL,
        known_ids=True,
        seed=0,
    ):
        self._map = map
        if W is None:
            W = config.OBSERVATION_COVARIANCE
        self._W = check_covariance(W, 2, "W")
        self._r_range = _parse_limits(range, "range", symmetric=False)
        self._theta_range = _parse_limits(angle, "angle", symmetric=True)
        if int(interval) != interval or interval < 1:
            raise ConfigurationError(f"interval must be an integer >= 1, got {interval}")
        self._interval = int(interval)
        self._known_ids = bool(known_ids)
        self._seed = seed
        self.init()

    @property
    def map(self):
        return self._map

    @property
    def W(self):
        return self._W.copy()

    @property
    def interval(self):
        return self._interval

    @property
    def known_ids(self):
        return self._known_ids

    @property
    def r_range(self):
        return None if self._r_range is None else self._r_range.copy()

    @property
    def theta_range(self):
        return None if self._theta_range is None else self._theta_range.copy()

    @property
    def count(self):
        return self._count

    def init(self):
        """Reset the sample counter and re-seed the noise generator."""
        self._count = 0
        self._random = np.random.default_rng(self._seed)

    # measurement model
    def h(self, pose, landmark):
        """
        Noise-free measurement of one or more landmarks.

        Parameters
        ----------
        pose : array_like, shape (3,)
            Vehicle pose.
        landmark : array_like, shape (2,) or (N, 2)
            Landmark position(s).

        Returns
        -------
        ndarray, shape (2,) or (N, 2)
            [range, bearing] per landmark, bearing wrapped to (-π, π].
        """
        pose = np.asarray(pose, dtype=float).flatten()
        landmark = np.asarray(landmark, dtype=float)
        lm = np.atleast_2d(landmark)
        dx = lm[:, 0] - pose[0]
        dy = lm[:, 1] - pose[1]
        z = np.column_stack((np.hypot(dx, dy), wrap_angle(np.arctan2(dy, dx) - pose[2])))
        if landmark.ndim == 1:
            return z[0]
        return z

    def Hx(self, pose, landmark):
        """Jacobian dh/dx (2×3) with respect to the vehicle pose."""
        pose = np.asarray(pose, dtype=float).flatten()
        landmark = np.asarray(landmark, dtype=float).flatten()
        dx = landmark[0] - pose[0]
        dy = landmark[1] - pose[1]
        r2 = dx**2 + dy**2
        r = np.sqrt(r2)
        return np.array(
            [
                [-dx / r, -dy / r, 0.0],
                [dy / r2, -dx / r2, -1.0],
            ]
        )

    def Hp(self, pose, landmark):
        """Jacobian dh/dp (2×2) with respect to the landmark position."""
        pose = np.asarray(pose, dtype=float).flatten()
        landmark = np.asarray(landmark, dtype=float).flatten()
        dx = landmark[0] - pose[0]
        dy = landmark[1] - pose[1]
        r2 = dx**2 + dy**2
        r = np.sqrt(r2)
        return np.array(
            [
                [dx / r, dy / r],
                [-dy / r2, dx / r2],
            ]
        )

    # inverse measurement model
    def g(self, pose, z):
        """Landmark position implied by observation ``z`` = [range, bearing] from ``pose``."""
        pose = np.asarray(pose, dtype=float).flatten()
        r, b = np.asarray(z, dtype=float).flatten()[:2]
        heading = pose[2] + b
        return np.array([pose[0] + r * np.cos(heading), pose[1] + r * np.sin(heading)])

    def Gx(self, pose, z):
        """Jacobian dg/dx (2×3) with respect to the vehicle pose."""
        pose = np.asarray(pose, dtype=float).flatten()
        r, b = np.asarray(z, dtype=float).flatten()[:2]
        heading = pose[2] + b
        return np.array(
            [
                [1.0, 0.0, -r * np.sin(heading)],
                [0.0, 1.0, r * np.cos(heading)],
            ]
        )

    def Gz(self, pose, z):
        """Jacobian dg/dz (2×2) with respect to the observation."""
        pose = np.asarray(pose, dtype=float).flatten()
        r, b = np.asarray(z, dtype=float).flatten()[:2]
        heading = pose[2] + b
        return np.array(
            [
                [np.cos(heading), -r * np.sin(heading)],
                [np.sin(heading), r * np.cos(heading)],
            ]
        )

    # sensing
    def visible(self, true_pose):
        """
        Noise-free measurements of every landmark inside the sensing limits.

        Returns
        -------
        list of (ndarray, int)
            ``(z, id)`` pairs in increasing id order.
        """
        true_pose = np.asarray(true_pose, dtype=float).flatten()
        if len(self._map) == 0:
            return []
        if self._r_range is not None:
            ids = self._map.within(true_pose[:2], self._r_range[1])
        else:
            ids = np.arange(len(self._map))
        if len(ids) == 0:
            return []

        z = self.h(true_pose, self._map.landmarks[ids])
        keep = np.full(len(ids), True)
        if self._r_range is not None:
            keep &= (z[:, 0] >= self._r_range[0]) & (z[:, 0] <= self._r_range[1])
        if self._theta_range is not None:
            keep &= (z[:, 1] >= self._theta_range[0]) & (z[:, 1] <= self._theta_range[1])
        return [(z[i], int(ids[i])) for i in np.flatnonzero(keep)]

    def reading(self, true_pose):
        """
        Noisy observations of all visible landmarks.

        Parameters
        ----------
        true_pose : array_like, shape (3,)
            True vehicle pose.

        Returns
        -------
        list of Observation or None
            None on calls that fall between sampling instants, otherwise one
            observation per visible landmark (possibly an empty list).
        """
        self._count += 1
        if self._count % self._interval != 0:
            return None

        observations = []
        for z, lm_id in self.visible(true_pose):
            zn = z + self._noise()
            observations.append(
                Observation(
                    float(zn[0]),
                    float(wrap_angle(zn[1])),
                    lm_id if self._known_ids else None,
                )
            )
        logger.debug("Sample %d: %d landmarks visible", self._count, len(observations))
        return observations

    def observe(self, true_pose):
        """Alias of :meth:`reading`."""
        return self.reading(true_pose)

    def _noise(self):
        if not self._W.any():
            return np.zeros(2)
        return self._random.multivariate_normal(np.zeros(2), self._W)

    def __str__(self):
        s = "RangeBearingSensor object\n"
        s += f"  W=diag({np.sqrt(np.diag(self._W))})**2, interval={self._interval}"
        if self._r_range is not None:
            s += f"\n  range: {self._r_range[0]:g} to {self._r_range[1]:g}"
        if self._theta_range is not None:
            s += f"\n  angle: {self._theta_range[0]:g} to {self._theta_range[1]:g}"
        if not self._known_ids:
            s += "\n  landmark ids withheld"
        return s
