"""
Dead Reckoning Localization Implementation.

This module implements the simplest form of localization: integrating
odometry through the vehicle motion model without any external correction.
Dead reckoning serves as a baseline for comparison with the EKF, whose
prediction step it reproduces exactly when no observations are used.
"""

import logging

import numpy as np

from robonav.utils.data_utils import build_timeseries, check_pose, wrap_angle
from robonav.visualization import plots

logger = logging.getLogger(__name__)


class DeadReckoning:
    """
    Dead reckoning localization using only odometry measurements.

    Starting from a known initial pose, the estimate is advanced with the
    measured odometry of each step through the same motion model f(x, u)
    that moves the vehicle:

        x_{t+1} = x_t + d * cos(θ_t + Δθ)
        y_{t+1} = y_t + d * sin(θ_t + Δθ)
        θ_{t+1} = θ_t + Δθ

    No uncertainty is propagated, so odometry noise accumulates without
    bound. For the same estimate with a covariance, use
    :class:`robonav.localization.EKF.ExtendedKalmanFilter` without a sensor.

    Parameters
    ----------
    vehicle : Vehicle
        Vehicle providing the motion model; also driven by :meth:`run`.
    x0 : array_like, shape (3,), optional
        Initial pose. Default: ``vehicle.x0``.

    Attributes
    ----------
    states : ndarray, shape (T, 4)
        Estimated trajectory [t, x, y, θ], starting with the initial pose at
        t = 0.

    Examples
    --------
    >>> veh = Unicycle()
    >>> veh.add_driver(RandomPath(10))
    >>> dr = DeadReckoning(veh)
    >>> dr.run(500)
    >>> final_error = np.linalg.norm(dr.states[-1, 1:3] - veh.x[:2])
    """

    def __init__(self, vehicle, x0=None):
        self.vehicle = vehicle
        self._x0 = check_pose(vehicle.x0 if x0 is None else x0)
        self.initialization()

    def initialization(self):
        """Restart the trajectory from the initial pose at t = 0."""
        self.states = np.array([np.r_[0.0, self._x0]])
        self.last_timestamp = 0.0

    def motion_update(self, odo):
        """
        Advance the estimate by one step of measured odometry.

        Parameters
        ----------
        odo : array_like, shape (2,)
            Odometry [distance, heading change].

        Returns
        -------
        ndarray, shape (3,)
            New pose estimate, heading wrapped to (-π, π].
        """
        x = self.vehicle.f(self.states[-1][1:], odo)
        x[2] = wrap_angle(x[2])
        self.last_timestamp = self.vehicle.dt * len(self.states)
        self.states = np.append(self.states, np.array([np.r_[self.last_timestamp, x]]), axis=0)
        return x

    def run(self, n):
        """
        Drive the vehicle ``n`` steps and integrate its noisy odometry.

        The vehicle is reset first, so the estimate starts from its initial
        pose.
        """
        self.vehicle.init()
        self.initialization()
        for _ in range(n):
            self.motion_update(self.vehicle.step())
        logger.info(
            "Dead reckoning finished after %d steps, final estimate %s",
            n,
            np.round(self.states[-1][1:], 3),
        )
        return self.states

    def build_dataframes(self):
        """
        Convert the trajectories to time-indexed DataFrames.

        Updates class attributes:
        - self.states_df: estimated trajectory
        - self.gt: true trajectory of the vehicle
        """
        self.states_df = build_timeseries(self.states, cols=["stamp", "x", "y", "theta"])
        self.gt = self.vehicle.build_dataframe()

    def plot_data(self, ax=None, **kwargs):
        """Plot the dead reckoning estimate against the true trajectory."""
        return plots.plot_run(
            self.vehicle.x_hist,
            self.states[1:, 1:],
            ax=ax,
            title="Dead Reckoning",
            **kwargs,
        )
