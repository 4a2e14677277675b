"""
Discrete-time vehicle kinematics with noisy odometry.

This module holds the behaviour shared by every vehicle in the toolkit: the
odometry motion model used both to advance the true pose and by estimators
during prediction, its Jacobians, actuator clamping, odometry noise injection
and the true-pose history.

Motion Model
------------
Odometry is the pair u = (d, Δθ), the distance travelled and the heading
change over one sample interval. The next pose is

    x' = x + d·cos(θ + Δθ)
    y' = y + d·sin(θ + Δθ)
    θ' = θ + Δθ

Concrete vehicles only decide how a (speed, steer) demand maps to a heading
rate; see :mod:`robonav.vehicle.unicycle` and :mod:`robonav.vehicle.bicycle`.

References
----------
.. [1] Corke, P. (2017). Robotics, Vision and Control. Springer.
       Chapter 6: Localization.
"""

import logging
from abc import ABC, abstractmethod

import numpy as np

from robonav import config
from robonav.errors import SequenceError
from robonav.utils.data_utils import (
    build_state_timeseries,
    check_covariance,
    check_pose,
    check_positive,
)

logger = logging.getLogger(__name__)


class Vehicle(ABC):
    """
    Abstract planar vehicle with true pose, odometry noise and history.

    The estimators only rely on the motion-model capability of this class:
    :meth:`f`, :meth:`Fx` and :meth:`Fv`. Subclasses implement
    :meth:`turn_rate`, which converts a clamped (speed, steer) demand into a
    heading rate.

    Parameters
    ----------
    covar : array_like, shape (2, 2), optional
        Odometry noise covariance V on [distance, heading change].
        Default: :data:`robonav.config.ODOMETRY_COVARIANCE`.
    speed_max : float, optional
        Maximum speed magnitude (m/s).
    accel_max : float, optional
        Maximum speed change per second (m/s²); ``inf`` disables the limit.
    steer_max : float or None, optional
        Maximum steer magnitude; None disables the limit.
    dt : float, optional
        Sample interval (s).
    x0 : array_like, shape (3,), optional
        Initial pose, restored by :meth:`init`. Default: origin.
    seed : int or None, optional
        Seed of the odometry noise generator.

    Attributes
    ----------
    x : ndarray, shape (3,)
        Copy of the current true pose.
    x_hist : ndarray, shape (k, 3)
        True pose after each of the k completed steps.
    odometry : ndarray, shape (2,)
        True odometry of the most recent step.
    """

    def __init__(
        self,
        covar=None,
        speed_max=config.SPEED_MAX,
        accel_max=config.ACCEL_MAX,
        steer_max=None,
        dt=config.DT,
        x0=None,
        seed=0,
    ):
        if covar is None:
            covar = config.ODOMETRY_COVARIANCE
        self._V = check_covariance(covar, 2, "covar")
        self._speed_max = check_positive(speed_max, "speed_max", allow_inf=True)
        self._accel_max = check_positive(accel_max, "accel_max", allow_inf=True)
        self._steer_max = (
            None if steer_max is None else check_positive(steer_max, "steer_max")
        )
        self._dt = check_positive(dt, "dt")
        self._x0 = check_pose(np.zeros(3) if x0 is None else x0)
        self._seed = seed
        self._driver = None
        self.init()

    # properties
    @property
    def x(self):
        """Copy of the current true pose."""
        return self._x.copy()

    @property
    def x0(self):
        """Initial pose restored by :meth:`init`."""
        return self._x0.copy()

    @property
    def x_hist(self):
        """True pose after each completed step, shape (k, 3)."""
        return np.array(self._x_hist).reshape(-1, 3)

    @property
    def odometry(self):
        """True odometry of the most recent step."""
        return self._odometry.copy()

    @property
    def V(self):
        """Odometry noise covariance."""
        return self._V.copy()

    @property
    def dt(self):
        """Sample interval (s)."""
        return self._dt

    @property
    def speed_max(self):
        return self._speed_max

    @property
    def accel_max(self):
        return self._accel_max

    @property
    def steer_max(self):
        """Steer limit, or None when steering is unlimited."""
        return self._steer_max

    @property
    def driver(self):
        return self._driver

    def init(self):
        """
        Reset the vehicle to its initial state.

        Restores ``x0``, clears the history, forgets the previous speed used
        by the acceleration limit, re-seeds the noise generator and
        re-initializes the attached driver, so that two runs started with
        :meth:`init` are bit-identical.
        """
        self._x = self._x0.copy()
        self._x_hist = []
        self._odometry = np.zeros(2)
        self._v_prev = 0.0
        self._random = np.random.default_rng(self._seed)
        if self._driver is not None:
            self._driver.init()

    def add_driver(self, driver):
        """
        Attach a driver that supplies (speed, steer) demands.

        The vehicle keeps a reference to the driver and the driver receives a
        back-reference to the vehicle so it can read the current pose.
        """
        self._driver = driver
        driver.vehicle = self
        driver.init()

    @abstractmethod
    def turn_rate(self, speed, steer):
        """Heading rate (rad/s) produced by an already clamped demand."""

    def f(self, x, odo, w=None):
        """
        Predict the next state from odometry.

        Parameters
        ----------
        x : array_like, shape (3,) or (N, 3)
            Current state, or a batch of N states.
        odo : array_like, shape (2,)
            Odometry [distance, heading change].
        w : array_like, shape (2,), optional
            Odometry noise added to ``odo``. Default: zero.

        Returns
        -------
        ndarray, shape (3,) or (N, 3)
            Next state(s), same shape as ``x``.
        """
        x = np.asarray(x, dtype=float)
        odo = np.asarray(odo, dtype=float).flatten()
        dd, dth = odo[0], odo[1]
        if w is not None:
            w = np.asarray(w, dtype=float).flatten()
            dd, dth = dd + w[0], dth + w[1]

        xb = np.atleast_2d(x)
        thp = xb[:, 2] + dth
        xnext = xb + np.column_stack(
            (dd * np.cos(thp), dd * np.sin(thp), np.full(xb.shape[0], dth))
        )
        if x.ndim == 1:
            return xnext[0]
        return xnext

    def Fx(self, x, odo):
        """
        Jacobian df/dx (3×3) at state ``x`` for odometry ``odo``.

        Evaluated at the predicted heading θ + Δθ:

            [[1, 0, -d·sin(θ+Δθ)],
             [0, 1,  d·cos(θ+Δθ)],
             [0, 0,  1          ]]
        """
        dd, dth = np.asarray(odo, dtype=float).flatten()[:2]
        thp = float(np.asarray(x, dtype=float).flatten()[2]) + dth
        return np.array(
            [
                [1.0, 0.0, -dd * np.sin(thp)],
                [0.0, 1.0, dd * np.cos(thp)],
                [0.0, 0.0, 1.0],
            ]
        )

    def Fv(self, x, odo):
        """
        Jacobian df/dw (3×2) at state ``x`` for odometry ``odo``.

        Evaluated at the predicted heading θ + Δθ:

            [[cos(θ+Δθ), -d·sin(θ+Δθ)],
             [sin(θ+Δθ),  d·cos(θ+Δθ)],
             [0,          1          ]]
        """
        dd, dth = np.asarray(odo, dtype=float).flatten()[:2]
        thp = float(np.asarray(x, dtype=float).flatten()[2]) + dth
        return np.array(
            [
                [np.cos(thp), -dd * np.sin(thp)],
                [np.sin(thp), dd * np.cos(thp)],
                [0.0, 1.0],
            ]
        )

    def limit_control(self, u):
        """
        Apply acceleration, speed and steer limits to a demand.

        Saturation is silent: out-of-range demands are clamped, never
        rejected. The acceleration limit is applied first, relative to the
        speed used in the previous step.

        Returns
        -------
        tuple of float
            Clamped (speed, steer).
        """
        speed, steer = (float(v) for v in np.asarray(u, dtype=float).flatten()[:2])

        if np.isfinite(self._accel_max):
            dv = self._accel_max * self._dt
            speed = min(self._v_prev + dv, max(speed, self._v_prev - dv))
        speed = min(self._speed_max, max(speed, -self._speed_max))
        if self._steer_max is not None:
            steer = min(self._steer_max, max(steer, -self._steer_max))
        return speed, steer

    def update(self, u):
        """
        Move the vehicle one sample interval and return the true odometry.

        Parameters
        ----------
        u : array_like, shape (2,)
            Demand [speed, steer], clamped by :meth:`limit_control`.

        Returns
        -------
        ndarray, shape (2,)
            Noise-free odometry [distance, heading change].

        Notes
        -----
        Appends the new true pose to ``x_hist`` and stores the odometry in
        ``odometry``.
        """
        speed, steer = self.limit_control(u)
        self._v_prev = speed

        odo = np.array([speed * self._dt, self.turn_rate(speed, steer) * self._dt])
        self._x = self.f(self._x, odo)
        self._odometry = odo
        self._x_hist.append(self._x.copy())
        return odo.copy()

    def step(self, speed=None, steer=None):
        """
        Move one time step and return noisy odometry.

        Parameters
        ----------
        speed : float or array_like, optional
            Speed demand, or a [speed, steer] pair when ``steer`` is omitted.
        steer : float, optional
            Steer demand.

        Returns
        -------
        ndarray, shape (2,)
            Odometry with zero-mean Gaussian noise of covariance V added.

        Raises
        ------
        SequenceError
            If no demand is given and no driver is attached.
        """
        if speed is None and steer is None:
            if self._driver is None:
                raise SequenceError("no demand given and no driver attached")
            u = self._driver.demand()
        elif steer is None and np.ndim(speed) == 1:
            u = speed
        else:
            u = (0.0 if speed is None else speed, 0.0 if steer is None else steer)

        odo = self.update(u)
        return odo + self._noise()

    def _noise(self):
        if not self._V.any():
            return np.zeros(2)
        return self._random.multivariate_normal(np.zeros(2), self._V)

    def run(self, n):
        """
        Drive the vehicle alone for ``n`` steps using its driver.

        Returns
        -------
        ndarray, shape (n, 3)
            True poses after each of the ``n`` steps.
        """
        if self._driver is None:
            raise SequenceError("run() requires an attached driver")
        for _ in range(n):
            self.step()
        logger.info("Vehicle ran %d steps, final pose %s", n, np.round(self._x, 3))
        return self.x_hist[-n:] if n > 0 else np.zeros((0, 3))

    def build_dataframe(self):
        """
        Convert the true-pose history to a time-indexed DataFrame.

        Returns
        -------
        pandas.DataFrame
            Columns ['x', 'y', 'theta'], one row per completed step, indexed
            by the time at the end of the step.
        """
        hist = self.x_hist
        stamps = self._dt * np.arange(1, len(hist) + 1)
        return build_state_timeseries(stamps, hist, cols=["x", "y", "theta"])

    def __str__(self):
        s = f"{self.__class__.__name__} object\n"
        s += f"  dt={self._dt:g}, speed_max={self._speed_max:g}, accel_max={self._accel_max:g}"
        if self._steer_max is not None:
            s += f", steer_max={self._steer_max:g}"
        s += f"\n  V=diag({np.sqrt(np.diag(self._V))})**2"
        s += f"\n  x={self._x}, x0={self._x0}"
        if self._driver is not None:
            s += f"\n  driver: {self._driver.__class__.__name__}"
        return s
