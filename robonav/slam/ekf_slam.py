"""
Extended Kalman Filter SLAM.

This module implements EKF-SLAM: the joint estimation of the vehicle pose and
the positions of the landmarks it observes. Landmarks are not known in
advance; each is added to the state the first time it is seen.

Mathematical Foundation
-----------------------
Augmented State Vector:
    x = [x, y, θ, m_{0,x}, m_{0,y}, ..., m_{k-1,x}, m_{k-1,y}]^T

Covariance Matrix Structure:
    P = [ Pvv  Pvm ]
        [ Pmv  Pmm ]

Where:
    - Pvv (3×3): Vehicle pose uncertainty
    - Pvm (3×2k): Vehicle-landmark correlations
    - Pmm (2k×2k): Landmark-landmark correlations

Prediction only changes Pvv and Pvm. A correction with any landmark moves
the whole state through these correlations.

State Augmentation
------------------
A landmark first observed as z = (r, β) from the estimated pose x̂v is
placed at g(x̂v, z) = [x + r cos(θ+β), y + r sin(θ+β)] and the covariance is
extended with

    Pll = Gx Pvv Gxᵀ + Gz W Gzᵀ
    Pl* = Gx Pv*

where Gx and Gz are the Jacobians of g with respect to the pose and the
observation.

Landmark Slots
--------------
Landmark ids map to slots in order of first sighting; slot k occupies state
elements 3+2k and 4+2k for the rest of the run. The state and covariance
live in preallocated buffers whose landmark capacity doubles when full.

References
----------
.. [1] Thrun, S., Burgard, W., & Fox, D. (2005). Probabilistic Robotics.
       Chapter 10: SLAM with Extended Kalman Filters.
.. [2] Smith, R., Self, M., & Cheeseman, P. (1990). Estimating uncertain
       spatial relationships in robotics. Autonomous Robot Vehicles.

Examples
--------
>>> sensor = RangeBearingSensor(lm_map, W, range=4)
>>> slam = ExtendedKalmanFilterSLAM(veh, V, P0, sensor=sensor)
>>> slam.run(1000)
>>> slam.get_map()
array([[...]])
"""

import logging

import numpy as np

from robonav import config
from robonav.errors import ConfigurationError, OutOfRangeError
from robonav.localization.EKF import ExtendedKalmanFilter
from robonav.visualization import plots

logger = logging.getLogger(__name__)


class ExtendedKalmanFilterSLAM(ExtendedKalmanFilter):
    """
    Extended Kalman Filter for Simultaneous Localization and Mapping.

    Observations with a landmark id update that landmark, or add it to the
    state on first sighting. Observations without an id are associated with
    the estimated landmark of smallest Mahalanobis distance; when none lies
    inside the gate the observation starts a new landmark.

    Parameters
    ----------
    vehicle : Vehicle
        Vehicle providing the motion model; also driven by :meth:`run`.
    V_est : array_like, shape (2, 2), optional
        Odometry covariance assumed by the filter. Default: ``vehicle.V``.
    P0 : array_like, shape (3, 3), optional
        Initial pose covariance.
    x0 : array_like, shape (3,), optional
        Initial pose estimate. Default: origin.
    sensor : RangeBearingSensor
        Source of observations and of the measurement model. Its map is used
        for simulation only, never by the filter.
    W_est : array_like, shape (2, 2), optional
        Observation covariance assumed by the filter. Default: ``sensor.W``.
    confidence : float, optional
        Confidence level of the association gate, in (0, 1).
    joseph : bool, optional
        Use the Joseph form for the covariance update.
    history : bool, optional
        Keep a full :class:`EKFLog` per step. Each record holds the whole
        covariance, so memory grows with steps × landmarks².

    Attributes
    ----------
    landmarks : dict
        Landmark id → slot, in order of first sighting.
    """

    def __init__(
        self,
        vehicle,
        V_est=None,
        P0=None,
        x0=None,
        sensor=None,
        W_est=None,
        confidence=config.ASSOCIATION_CONFIDENCE,
        joseph=False,
        history=True,
    ):
        if sensor is None:
            raise ConfigurationError("EKF SLAM requires a sensor")
        super().__init__(
            vehicle,
            V_est=V_est,
            P0=P0,
            x0=x0,
            sensor=sensor,
            W_est=W_est,
            confidence=confidence,
            joseph=joseph,
            history=history,
        )
        # The filter builds its own map, the sensor map is ground truth.
        self._map = None
        self._reset_map()

    # landmark slots
    def _reset_map(self):
        self._landmarks = {}
        self._slot_ids = []
        self._pending = []

    def _grow(self):
        """Make room for one more landmark, doubling the slot capacity if full."""
        needed = self._dim + 2
        capacity = len(self._xbuf)
        if needed <= capacity:
            return
        new_capacity = 3 + 2 * max(1, 2 * ((capacity - 3) // 2))

        n = self._dim
        xbuf = np.zeros(new_capacity)
        Pbuf = np.zeros((new_capacity, new_capacity))
        xbuf[:n] = self._xbuf[:n]
        Pbuf[:n, :n] = self._Pbuf[:n, :n]
        self._xbuf = xbuf
        self._Pbuf = Pbuf
        logger.debug("Landmark capacity grown to %d slots", (new_capacity - 3) // 2)

    @property
    def landmarks(self):
        return dict(self._landmarks)

    @property
    def nlandmarks(self):
        return len(self._slot_ids)

    def landmark_index(self, lm_id):
        """
        Index of the first state element of landmark ``lm_id``.

        Raises
        ------
        OutOfRangeError
            If the landmark is not in the state.
        """
        try:
            slot = self._landmarks[lm_id]
        except (KeyError, TypeError):
            raise OutOfRangeError(f"landmark {lm_id!r} is not in the state") from None
        return 3 + 2 * slot

    def landmark(self, lm_id):
        """Estimated position of landmark ``lm_id``."""
        i = self.landmark_index(lm_id)
        return self._xbuf[i : i + 2].copy()

    def landmark_P(self, lm_id):
        """Covariance (2×2) of the estimated position of landmark ``lm_id``."""
        i = self.landmark_index(lm_id)
        return self._Pbuf[i : i + 2, i : i + 2].copy()

    def get_map(self):
        """Estimated landmark positions in slot order, shape (k, 2)."""
        return self._xbuf[3 : self._dim].reshape(-1, 2).copy()

    # hooks on the localization filter
    def _known_landmark(self, lm_id, z):
        if lm_id in self._landmarks:
            i = 3 + 2 * self._landmarks[lm_id]
            return self._xbuf[i : i + 2].copy(), i
        if not any(pending_id == lm_id for pending_id, _ in self._pending):
            self._pending.append((lm_id, z))
        return None

    def _candidates(self):
        for lm_id, slot in self._landmarks.items():
            i = 3 + 2 * slot
            yield lm_id, self._xbuf[i : i + 2].copy(), i

    def _unmatched(self, z):
        taken = set(self._landmarks) | {pending_id for pending_id, _ in self._pending}
        new_id = len(taken)
        while new_id in taken:
            new_id += 1
        self._pending.append((new_id, z))
        logger.debug("Observation %s matched no landmark, new landmark %d", np.round(z, 3), new_id)

    def _after_update(self):
        for lm_id, z in self._pending:
            self._augment(lm_id, z)
        self._pending = []

    def _discard_pending(self):
        self._pending = []

    def _augment(self, lm_id, z):
        """Append landmark ``lm_id`` observed as ``z`` to the state."""
        self._grow()
        n = self._dim
        x = self._xbuf
        P = self._Pbuf

        xv = x[:3].copy()
        Gx = self.sensor.Gx(xv, z)
        Gz = self.sensor.Gz(xv, z)

        x[n : n + 2] = self.sensor.g(xv, z)
        Plx = Gx @ P[:3, :n]
        P[n : n + 2, :n] = Plx
        P[:n, n : n + 2] = Plx.T
        P[n : n + 2, n : n + 2] = Gx @ P[:3, :3] @ Gx.T + Gz @ self._W_est @ Gz.T

        self._landmarks[lm_id] = len(self._slot_ids)
        self._slot_ids.append(lm_id)
        self._dim = n + 2
        logger.debug("Added landmark %s at %s", lm_id, np.round(x[n : n + 2], 3))

    # results
    def plot_data(self, ax=None, **kwargs):
        """Plot trajectories, the true map and the estimated map with ellipses."""
        landmark_P = [self.landmark_P(lm_id) for lm_id in self._slot_ids]
        return plots.plot_run(
            self.vehicle.x_hist,
            self.get_xyt(),
            self.get_P(),
            map=self.sensor.map,
            estimated_landmarks=self.get_map(),
            landmark_covariances=landmark_P,
            ax=ax,
            title="EKF SLAM",
            **kwargs,
        )

    def __str__(self):
        return super().__str__() + f"\n  {self.nlandmarks} landmarks in the state"
