"""Kinematic bicycle (car-like) vehicle."""

import numpy as np

from robonav import config
from robonav.utils.data_utils import check_positive
from robonav.vehicle.base import Vehicle


class Bicycle(Vehicle):
    """
    Car-like vehicle with a steered front wheel.

    Heading rate is v·tan(γ)/L for speed v, steer angle γ and wheelbase L.
    The steer angle is always limited, by default to
    :data:`robonav.config.STEER_MAX`.

    Parameters
    ----------
    L : float, optional
        Wheelbase (m).
    steer_max : float, optional
        Steering wheel limit (rad).
    **kwargs
        Passed to :class:`robonav.vehicle.base.Vehicle`.
    """

    def __init__(self, L=config.WHEELBASE, steer_max=config.STEER_MAX, **kwargs):
        self._L = check_positive(L, "L")
        super().__init__(steer_max=steer_max, **kwargs)

    @property
    def L(self):
        return self._L

    def turn_rate(self, speed, steer):
        return speed * np.tan(steer) / self._L

    def radius_min(self):
        """Minimum turning radius at the steer limit (m)."""
        if self._steer_max is None:
            return 0.0
        return self._L / np.tan(self._steer_max)

    def __str__(self):
        return super().__str__() + f"\n  L={self._L:g}"
