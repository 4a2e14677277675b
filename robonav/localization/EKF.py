"""
Extended Kalman Filter (EKF) Localization Implementation

This module implements the Extended Kalman Filter for a vehicle driving among
point landmarks and measuring range and bearing to them. The same class covers
dead reckoning with covariance growth (no sensor) and map-based localization
(sensor plus a known map); :mod:`robonav.slam.ekf_slam` extends it to
simultaneous localization and mapping.

References
----------
.. [1] Thrun, S., Fox, D., & Burgard, W. (2005). Probabilistic Robotics.
       MIT Press. Chapter 7, Table 7.2.
.. [2] Corke, P. (2017). Robotics, Vision and Control. Springer.
       Chapter 6: Localization.

Notes
-----
The filter represents the belief over the state by its mean x̂ and
covariance P. The first three state elements are always the vehicle pose
(x, y, θ); any further elements are landmark positions, two per landmark.
Observations are processed one at a time, each with its own gain.
"""

import logging
from collections import namedtuple
from enum import Enum

import numpy as np
from scipy.stats import chi2

from robonav import config
from robonav.errors import (
    ConfigurationError,
    NumericDegeneracyError,
    OutOfRangeError,
    SequenceError,
)
from robonav.utils.data_utils import (
    build_state_timeseries,
    check_covariance,
    check_pose,
    wrap_angle,
)
from robonav.utils.metrics import compute_nees
from robonav.visualization import plots

logger = logging.getLogger(__name__)

EKFLog = namedtuple("EKFLog", "t xest Pest odo z")
"""History record of one completed filter step."""


class EstimatorState(Enum):
    """Lifecycle of an estimator."""

    UNINITIALIZED = "uninitialized"
    RUNNING = "running"
    DONE = "done"


class ExtendedKalmanFilter:
    """
    Extended Kalman Filter for Vehicle Localization

    Estimates the pose of a vehicle from noisy odometry and, when a sensor is
    given, from range-bearing observations of landmarks at known positions.

    Mathematical Foundation
    ----------------------
    The EKF maintains a Gaussian belief N(x̂, P) where:

    - State: x = [x, y, θ]^T (vehicle pose)
    - Motion model: x' = f(x, u + w), w ~ N(0, V)
    - Measurement model: z = h(x, p) + v, v ~ N(0, W)

    Algorithm Steps
    --------------
    1. Prediction:
       - x̂⁻ = f(x̂, u)
       - P⁻ = Fx P Fxᵀ + Fv V Fvᵀ

    2. Correction, for each observation:
       - ν = z - h(x̂⁻, p), bearing wrapped to (-π, π]
       - S = H P⁻ Hᵀ + W
       - K = P⁻ Hᵀ S⁻¹
       - x̂ = x̂⁻ + K ν
       - P = (I - K H) P⁻

    Data Association
    ---------------
    Observations carrying a landmark id are trusted as-is. Observations
    without one are matched to the landmark with the smallest Mahalanobis
    distance d² = νᵀ S⁻¹ ν, provided d² is below the chi-square gate for
    ``confidence`` with 2 degrees of freedom. Unmatched observations are
    discarded and counted in ``rejected_observations``.

    Parameters
    ----------
    vehicle : Vehicle
        Vehicle providing the motion model; also driven by :meth:`run`.
    V_est : array_like, shape (2, 2), optional
        Odometry covariance assumed by the filter. Default: ``vehicle.V``.
    P0 : array_like, shape (3, 3), optional
        Initial pose covariance. Default:
        :data:`robonav.config.INITIAL_COVARIANCE`.
    x0 : array_like, shape (3,), optional
        Initial pose estimate. Default: origin.
    sensor : RangeBearingSensor, optional
        Source of observations and of the measurement model. None gives dead
        reckoning with covariance growth.
    W_est : array_like, shape (2, 2), optional
        Observation covariance assumed by the filter. Default: ``sensor.W``.
    map : LandmarkMap, optional
        Known landmark map. Default: ``sensor.map``.
    confidence : float, optional
        Confidence level of the association gate, in (0, 1).
    joseph : bool, optional
        Use the Joseph form (I-KH) P (I-KH)ᵀ + K W Kᵀ for the covariance
        update.
    history : bool, optional
        Keep a full :class:`EKFLog` per step in ``history``.

    Attributes
    ----------
    history : list of EKFLog
        One record per completed step.
    skipped_observations : int
        Observations dropped because the innovation covariance was singular.
    rejected_observations : int
        Observations without id that matched no landmark.

    Examples
    --------
    >>> veh = Unicycle(covar=V)
    >>> veh.add_driver(RandomPath(10))
    >>> lm_map = LandmarkMap.random(20, workspace=10)
    >>> sensor = RangeBearingSensor(lm_map, W, range=4)
    >>> ekf = ExtendedKalmanFilter(veh, V, P0, sensor=sensor)
    >>> ekf.run(1000)
    >>> ekf.get_xyt()[-1]
    array([...])

    See Also
    --------
    robonav.slam.ekf_slam.ExtendedKalmanFilterSLAM : EKF with map building
    robonav.localization.dead_reckoning.DeadReckoning : Odometry-only baseline
    """

    def __init__(
        self,
        vehicle,
        V_est=None,
        P0=None,
        x0=None,
        sensor=None,
        W_est=None,
        map=None,
        confidence=config.ASSOCIATION_CONFIDENCE,
        joseph=False,
        history=True,
    ):
        self.vehicle = vehicle
        self.sensor = sensor
        self._V_est = check_covariance(vehicle.V if V_est is None else V_est, 2, "V_est")
        self._P0 = check_covariance(
            config.INITIAL_COVARIANCE if P0 is None else P0, 3, "P0"
        )
        self._x0 = check_pose(np.zeros(3) if x0 is None else x0)

        if W_est is None and sensor is not None:
            W_est = sensor.W
        self._W_est = None if W_est is None else check_covariance(W_est, 2, "W_est")
        if map is None and sensor is not None:
            map = sensor.map
        self._map = map

        if not 0 < confidence < 1:
            raise ConfigurationError(f"confidence must be in (0, 1), got {confidence}")
        self._confidence = float(confidence)
        self._gate = float(chi2.ppf(confidence, 2))
        self._joseph = bool(joseph)
        self._keep_history = bool(history)

        self._state = EstimatorState.UNINITIALIZED
        self._allocate(3)
        self._clear_logs()

    # properties
    @property
    def state(self):
        return self._state

    @property
    def x_est(self):
        """Copy of the current state estimate."""
        return self._xbuf[: self._dim].copy()

    @property
    def P_est(self):
        """Copy of the current state covariance."""
        return self._Pbuf[: self._dim, : self._dim].copy()

    @property
    def V_est(self):
        return self._V_est.copy()

    @property
    def W_est(self):
        return None if self._W_est is None else self._W_est.copy()

    @property
    def map(self):
        return self._map

    @property
    def gate(self):
        """Chi-square threshold on d² for accepting an association."""
        return self._gate

    @property
    def history(self):
        return self._history

    @property
    def t(self):
        """Simulation time of the last completed step (s)."""
        return self._steps * self.vehicle.dt

    @property
    def skipped_observations(self):
        return self._skipped

    @property
    def rejected_observations(self):
        return self._rejected

    # state storage
    def _allocate(self, capacity):
        self._xbuf = np.zeros(capacity)
        self._Pbuf = np.zeros((capacity, capacity))
        self._dim = 3

    def _clear_logs(self):
        self._history = []
        self._xv_hist = []
        self._Pv_hist = []
        self._steps = 0
        self._predicted = False
        self._last_odo = None
        self._skipped = 0
        self._rejected = 0

    def _reset_map(self):
        """Forget estimator-owned map state. Localization has none."""

    # lifecycle
    def init(self, x0=None, P0=None):
        """
        Start a new estimation run.

        Resets the vehicle and sensor, sets the initial mean and covariance
        and clears the history.

        Parameters
        ----------
        x0 : array_like, shape (3,), optional
            Initial pose estimate. Default: the constructor value.
        P0 : array_like, shape (3, 3), optional
            Initial pose covariance. Default: the constructor value.

        Raises
        ------
        SequenceError
            If called in the middle of a run.
        """
        if self._state is EstimatorState.RUNNING and (self._steps > 0 or self._predicted):
            raise SequenceError("init() called in the middle of a run")

        x0 = self._x0 if x0 is None else check_pose(x0)
        P0 = self._P0 if P0 is None else check_covariance(P0, 3, "P0")

        self.vehicle.init()
        if self.sensor is not None:
            self.sensor.init()

        self._allocate(3)
        self._reset_map()
        self._xbuf[:3] = x0
        self._Pbuf[:3, :3] = P0
        self._clear_logs()
        self._state = EstimatorState.RUNNING
        logger.debug("%s initialized at %s", self.__class__.__name__, x0)

    def _require_running(self, operation):
        if self._state is EstimatorState.UNINITIALIZED:
            raise SequenceError(f"{operation}() called before init()")
        if self._state is EstimatorState.DONE:
            raise SequenceError(f"{operation}() called after the run finished, call init()")

    # prediction
    def predict(self, odo):
        """
        Propagate the estimate through the motion model.

        Only the vehicle rows and columns of the covariance change: the
        vehicle block becomes Fx Pvv Fxᵀ + Fv V Fvᵀ and the vehicle-map
        cross-covariance becomes Fx Pvm.

        Parameters
        ----------
        odo : array_like, shape (2,)
            Measured odometry [distance, heading change].
        """
        self._require_running("predict")
        odo = np.asarray(odo, dtype=float).flatten()[:2]
        n = self._dim
        x = self._xbuf[:n]
        P = self._Pbuf[:n, :n]

        xv = x[:3].copy()
        Fx = self.vehicle.Fx(xv, odo)
        Fv = self.vehicle.Fv(xv, odo)

        x[:3] = self.vehicle.f(xv, odo)
        P[:3, :3] = Fx @ P[:3, :3] @ Fx.T + Fv @ self._V_est @ Fv.T
        if n > 3:
            Pvm = Fx @ P[:3, 3:]
            P[:3, 3:] = Pvm
            P[3:, :3] = Pvm.T
        P[:] = 0.5 * (P + P.T)

        self._predicted = True
        self._last_odo = odo.copy()

    # correction
    def update(self, observations):
        """
        Correct the estimate with the observations of one time step.

        Must follow a call to :meth:`predict`. Observations are processed
        sequentially; an observation whose innovation covariance is singular
        is skipped with a warning and leaves the estimate unchanged.

        Parameters
        ----------
        observations : list of Observation or None
            Readings of this step. None or an empty list only completes the
            step.

        Raises
        ------
        SequenceError
            If no prediction was made since the previous update.
        OutOfRangeError
            If a known landmark id is not in the map. The estimate is
            restored to its predicted value and the step stays open, so
            ``update`` can be called again.
        """
        self._require_running("update")
        if not self._predicted:
            raise SequenceError("update() requires a preceding predict()")

        z = None if observations is None else list(observations)
        if z:
            if self.sensor is None or self._W_est is None:
                raise ConfigurationError("observations given to an estimator without a sensor")
            n = self._dim
            x_saved = self._xbuf[:n].copy()
            P_saved = self._Pbuf[:n, :n].copy()
            counts = (self._skipped, self._rejected)
            try:
                for obs in z:
                    self._observation_update(obs)
            except OutOfRangeError:
                self._xbuf[:n] = x_saved
                self._Pbuf[:n, :n] = P_saved
                self._skipped, self._rejected = counts
                self._discard_pending()
                raise
        self._after_update()

        self._steps += 1
        self._predicted = False
        xv = self._xbuf[:3].copy()
        Pv = self._Pbuf[:3, :3].copy()
        self._xv_hist.append(xv)
        self._Pv_hist.append(Pv)
        if self._keep_history:
            self._history.append(
                EKFLog(self.t, self.x_est, self.P_est, self._last_odo, z)
            )
        logger.debug(
            "Step %d: %d observations, state dimension %d",
            self._steps,
            0 if z is None else len(z),
            self._dim,
        )

    def predict_update(self, odo, observations):
        """Run :meth:`predict` then :meth:`update` for one time step."""
        self.predict(odo)
        self.update(observations)

    def _after_update(self):
        """Hook run once all observations of a step have been processed."""

    def _discard_pending(self):
        """Hook run when an update is abandoned, to drop queued work."""

    def _observation_update(self, obs):
        z = np.array([obs[0], obs[1]], dtype=float)
        lm_id = obs[2]

        if lm_id is not None:
            target = self._known_landmark(lm_id, z)
            if target is None:
                return
            position, index = target
        else:
            match = self._associate(z)
            if match is None:
                self._unmatched(z)
                return
            lm_id, position, index = match

        try:
            self._correct(z, position, index)
        except NumericDegeneracyError as exc:
            self._skipped += 1
            logger.warning("Skipping observation of landmark %s: %s", lm_id, exc)

    def _known_landmark(self, lm_id, z):
        """Position and state index of landmark ``lm_id``, or None to defer it."""
        return self._map.landmark(lm_id), None

    def _candidates(self):
        """Yield ``(id, position, state index)`` for every association candidate."""
        if self._map is None:
            return
        for lm_id, position in enumerate(self._map.landmarks):
            yield lm_id, position, None

    def _unmatched(self, z):
        self._rejected += 1
        logger.debug("Observation %s matched no landmark, discarded", np.round(z, 3))

    def _innovation(self, z, position, index):
        """
        Innovation, measurement Jacobian and innovation covariance.

        Raises
        ------
        NumericDegeneracyError
            If the landmark coincides with the vehicle or S cannot be inverted
            reliably.
        """
        n = self._dim
        xv = self._xbuf[:3]
        P = self._Pbuf[:n, :n]

        with np.errstate(divide="ignore", invalid="ignore"):
            nu = z - self.sensor.h(xv, position)
            H = np.zeros((2, n))
            H[:, :3] = self.sensor.Hx(xv, position)
            if index is not None:
                H[:, index : index + 2] = self.sensor.Hp(xv, position)
        nu[1] = wrap_angle(nu[1])

        if not (np.all(np.isfinite(H)) and np.all(np.isfinite(nu))):
            raise NumericDegeneracyError("landmark coincides with the vehicle position")
        S = H @ P @ H.T + self._W_est
        if np.linalg.cond(S) > config.CONDITION_LIMIT:
            raise NumericDegeneracyError("innovation covariance is ill-conditioned")
        return nu, H, S

    def _associate(self, z):
        """
        Nearest-neighbour association by Mahalanobis distance.

        Returns
        -------
        tuple or None
            ``(id, position, state index)`` of the best candidate, or None if
            no candidate falls inside the gate.
        """
        best = None
        best_d2 = np.inf
        for lm_id, position, index in self._candidates():
            try:
                nu, _, S = self._innovation(z, position, index)
                d2 = float(nu @ np.linalg.solve(S, nu))
            except (NumericDegeneracyError, np.linalg.LinAlgError):
                continue
            if d2 < best_d2:
                best_d2 = d2
                best = (lm_id, position, index)

        if best is None or best_d2 >= self._gate:
            return None
        logger.debug("Associated observation with landmark %s, d2=%.3f", best[0], best_d2)
        return best

    def _correct(self, z, position, index):
        nu, H, S = self._innovation(z, position, index)

        n = self._dim
        x = self._xbuf[:n]
        P = self._Pbuf[:n, :n]
        try:
            K = P @ H.T @ np.linalg.inv(S)
        except np.linalg.LinAlgError as exc:
            raise NumericDegeneracyError("innovation covariance is singular") from exc

        x_new = x + K @ nu
        x_new[2] = wrap_angle(x_new[2])
        I_KH = np.eye(n) - K @ H
        if self._joseph:
            P_new = I_KH @ P @ I_KH.T + K @ self._W_est @ K.T
        else:
            P_new = I_KH @ P
        P_new = 0.5 * (P_new + P_new.T)

        if not (np.all(np.isfinite(x_new)) and np.all(np.isfinite(P_new))):
            raise NumericDegeneracyError("update produced non-finite values")
        x[:] = x_new
        P[:] = P_new

    # simulation
    def run(self, n, observer=None):
        """
        Simulate the vehicle and run the filter for ``n`` steps.

        Each step drives the vehicle with its driver, takes a sensor reading
        at the new true pose and runs :meth:`predict_update`.

        Parameters
        ----------
        n : int
            Number of steps.
        observer : callable, optional
            Called after each step as
            ``observer(pose_history, estimate_history, covariance_history)``
            with arrays of shape (k, 3), (k, 3) and (k, 3, 3).
            See :class:`robonav.visualization.plots.LivePlot`.
        """
        if self._state is not EstimatorState.RUNNING:
            self.init()

        logger.info("Running %s for %d steps", self.__class__.__name__, n)
        for _ in range(n):
            odo = self.vehicle.step()
            z = None
            if self.sensor is not None:
                z = self.sensor.reading(self.vehicle.x)
            self.predict_update(odo, z)
            if observer is not None:
                observer(self.vehicle.x_hist, self.get_xyt(), self.get_P())

        self._state = EstimatorState.DONE
        logger.info(
            "Run finished after %d steps: final estimate %s, %d skipped, %d rejected observations",
            self._steps,
            np.round(self._xbuf[:3], 3),
            self._skipped,
            self._rejected,
        )

    # results
    def get_xyt(self):
        """Estimated vehicle pose after each completed step, shape (k, 3)."""
        return np.array(self._xv_hist).reshape(-1, 3)

    def get_P(self):
        """Vehicle pose covariance after each completed step, shape (k, 3, 3)."""
        return np.array(self._Pv_hist).reshape(-1, 3, 3)

    def get_Pnorm(self):
        """Square root of the determinant of the pose covariance per step."""
        P = self.get_P()
        if len(P) == 0:
            return np.zeros(0)
        return np.sqrt(np.abs(np.linalg.det(P)))

    def nees(self):
        """Normalized estimation error squared of the pose, per step."""
        est = self.get_xyt()
        truth = self.vehicle.x_hist[-len(est):] if len(est) else np.zeros((0, 3))
        return compute_nees(truth, est, self.get_P())

    def build_dataframes(self):
        """
        Convert the run to pandas DataFrames for analysis.

        Updates class attributes:
        - self.states_df: estimated pose and its variances per step
        - self.gt: true vehicle pose per step
        """
        est = self.get_xyt()
        variances = np.diagonal(self.get_P(), axis1=1, axis2=2)
        stamps = self.vehicle.dt * np.arange(1, len(est) + 1)
        self.states_df = build_state_timeseries(
            stamps,
            np.hstack((est, variances)),
            cols=["x", "y", "theta", "var_x", "var_y", "var_theta"],
        )
        self.gt = self.vehicle.build_dataframe()

    def plot_data(self, ax=None, **kwargs):
        """Plot the true and estimated trajectories with confidence ellipses."""
        return plots.plot_run(
            self.vehicle.x_hist,
            self.get_xyt(),
            self.get_P(),
            map=self._map,
            ax=ax,
            title="EKF Localization",
            **kwargs,
        )

    def __str__(self):
        s = f"{self.__class__.__name__} object: state {self._state.value}, {self._steps} steps\n"
        s += f"  V_est=diag({np.sqrt(np.diag(self._V_est))})**2"
        if self._W_est is not None:
            s += f", W_est=diag({np.sqrt(np.diag(self._W_est))})**2"
        s += f"\n  gate d2 < {self._gate:.3f} ({self._confidence:g} confidence)"
        if self._joseph:
            s += ", Joseph form"
        return s
