"""Unicycle (differential steer) vehicle."""

from robonav import config
from robonav.utils.data_utils import check_positive
from robonav.vehicle.base import Vehicle


class Unicycle(Vehicle):
    """
    Differential steer vehicle on a plane.

    The steer input is the wheel speed difference; the heading rate is
    steer / W where W is the wheel separation. With W = 1 m and dt = 1 s a
    demand of (speed=1, steer=0) moves the vehicle 1 m forward and a demand
    of (speed=1, steer=π/2) turns it by π/2.

    Parameters
    ----------
    W : float, optional
        Wheel separation (m). Default: :data:`robonav.config.WHEEL_SEPARATION`.
    **kwargs
        Passed to :class:`robonav.vehicle.base.Vehicle` (``covar``,
        ``speed_max``, ``accel_max``, ``steer_max``, ``dt``, ``x0``,
        ``seed``).

    Examples
    --------
    >>> veh = Unicycle(covar=np.diag([0.1, 0.01]) ** 2)
    >>> odo = veh.step(0.2, 0.1)
    """

    def __init__(self, W=config.WHEEL_SEPARATION, **kwargs):
        self._W = check_positive(W, "W")
        super().__init__(**kwargs)

    @property
    def W(self):
        return self._W

    def turn_rate(self, speed, steer):
        return steer / self._W

    def __str__(self):
        return super().__str__() + f"\n  W={self._W:g}"
