"""
Random waypoint driver.

Steers a vehicle toward a randomly chosen target inside a rectangular
workspace. Whenever the vehicle comes within a tolerance of its target a new
one is drawn, so the vehicle wanders the workspace indefinitely.
"""

import logging

import numpy as np

from robonav import config
from robonav.errors import ConfigurationError, SequenceError
from robonav.utils.data_utils import (
    angdiff,
    check_pose,
    check_positive,
    parse_workspace,
)

logger = logging.getLogger(__name__)


class RandomPath:
    """
    Random waypoint pursuit driver.

    The steer demand is proportional to the heading error between the
    vehicle and its target, saturated to the steer limit of the driver and of
    the vehicle. Speed is constant except inside ``slowdown_radius`` of the
    target, where it ramps down linearly.

    Parameters
    ----------
    workspace : float or array_like
        Scalar half-width ``w`` for ``[-w, w, -w, w]``, or
        ``[xmin, xmax, ymin, ymax]``.
    speed : float, optional
        Cruise speed (m/s).
    dthresh : float, optional
        Target-reach tolerance as a fraction of the workspace diagonal.
    headinggain : float, optional
        Steer demand per radian of heading error.
    margin : float, optional
        Fraction of the workspace width/height excluded at each edge when
        drawing targets, in [0, 0.5).
    slowdown_radius : float, optional
        Distance (m) inside which speed decreases toward the target.
    steer_max : float, optional
        Driver steer limit; the vehicle limit also applies.
    seed : int or None, optional
        Seed of the target generator.

    Examples
    --------
    >>> veh = Unicycle()
    >>> veh.add_driver(RandomPath(10))
    >>> veh.run(1000)
    """

    def __init__(
        self,
        workspace,
        speed=config.DRIVER_SPEED,
        dthresh=config.DRIVER_DTHRESH,
        headinggain=config.DRIVER_HEADING_GAIN,
        margin=config.DRIVER_MARGIN,
        slowdown_radius=config.DRIVER_SLOWDOWN_RADIUS,
        steer_max=None,
        seed=0,
    ):
        self._workspace = parse_workspace(workspace)
        self._speed = check_positive(speed, "speed")
        self._headinggain = check_positive(headinggain, "headinggain")
        if not 0 <= margin < 0.5:
            raise ConfigurationError(f"margin must be in [0, 0.5), got {margin}")
        self._margin = float(margin)
        if slowdown_radius < 0:
            raise ConfigurationError("slowdown_radius must be non-negative")
        self._slowdown_radius = float(slowdown_radius)
        self._steer_max = (
            None if steer_max is None else check_positive(steer_max, "steer_max")
        )
        diagonal = np.linalg.norm(self._workspace[[1, 3]] - self._workspace[[0, 2]])
        self._dthresh = check_positive(dthresh, "dthresh") * diagonal
        self._seed = seed
        self.vehicle = None
        self.init()

    @property
    def workspace(self):
        return self._workspace.copy()

    @property
    def goal(self):
        return None if self._goal is None else self._goal.copy()

    @property
    def dthresh(self):
        return self._dthresh

    def init(self):
        """Re-seed the target generator and forget the current target."""
        self._random = np.random.default_rng(self._seed)
        self._goal = None
        self._ngoals = 0

    def _new_goal(self, position):
        lo = self._workspace[[0, 2]]
        hi = self._workspace[[1, 3]]
        inset = self._margin * (hi - lo)
        # Avoid picking a target right under the vehicle, give up after a
        # bounded number of draws for very small workspaces.
        for _ in range(100):
            goal = self._random.uniform(lo + inset, hi - inset)
            if np.linalg.norm(goal - position) > 2 * self._dthresh:
                break
        else:
            logger.debug(
                "No target found more than %.3g m from %s, keeping %s",
                2 * self._dthresh,
                np.round(position, 3),
                np.round(goal, 3),
            )
        self._goal = goal
        self._ngoals += 1
        logger.debug("New target %d at %s", self._ngoals, np.round(goal, 3))

    def demand(self, pose=None):
        """
        Compute the (speed, steer) demand for the current pose.

        Parameters
        ----------
        pose : array_like, shape (3,), optional
            Vehicle pose. Default: the attached vehicle's true pose.

        Returns
        -------
        ndarray, shape (2,)
            Demand [speed, steer].

        Raises
        ------
        SequenceError
            If no pose is given and no vehicle is attached.
        """
        if pose is None:
            if self.vehicle is None:
                raise SequenceError("driver is not attached to a vehicle")
            pose = self.vehicle.x
        pose = check_pose(pose, "pose")
        position = pose[:2]

        if self._goal is None:
            self._new_goal(position)
        d = np.linalg.norm(self._goal - position)
        if d < self._dthresh:
            self._new_goal(position)
            d = np.linalg.norm(self._goal - position)

        speed = self._speed
        if self.vehicle is not None:
            speed = min(speed, self.vehicle.speed_max)
        if self._slowdown_radius > 0 and d < self._slowdown_radius:
            speed *= d / self._slowdown_radius

        goal_heading = np.arctan2(
            self._goal[1] - position[1], self._goal[0] - position[0]
        )
        steer = self._headinggain * angdiff(goal_heading, pose[2])
        for limit in (self._steer_max, getattr(self.vehicle, "steer_max", None)):
            if limit is not None:
                steer = min(limit, max(steer, -limit))

        return np.array([speed, steer])

    def __str__(self):
        return (
            f"RandomPath driver: workspace={self._workspace}, speed={self._speed:g}, "
            f"dthresh={self._dthresh:.3g}, headinggain={self._headinggain:g}"
        )
