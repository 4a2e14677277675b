import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pytest  # noqa: E402

from robonav.mapping.landmark_map import LandmarkMap  # noqa: E402
from robonav.sensors import RangeBearingSensor  # noqa: E402
from robonav.vehicle import RandomPath, Unicycle  # noqa: E402

V = np.diag([0.02, np.deg2rad(0.5)]) ** 2
W = np.diag([0.1, np.deg2rad(1)]) ** 2
P0 = np.diag([0.005, 0.005, 0.001]) ** 2


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def lm_map():
    return LandmarkMap.random(20, workspace=10, seed=1)


@pytest.fixture
def vehicle():
    veh = Unicycle(covar=V, seed=2)
    veh.add_driver(RandomPath(10, seed=3))
    return veh


@pytest.fixture
def sensor(lm_map):
    return RangeBearingSensor(lm_map, W, range=4, angle=np.pi / 2, seed=4)


def numeric_jacobian(func, x, eps=1e-7):
    """Central difference Jacobian of ``func`` at ``x``."""
    x = np.asarray(x, dtype=float)
    f0 = np.asarray(func(x), dtype=float)
    J = np.zeros((f0.size, x.size))
    for i in range(x.size):
        dx = np.zeros_like(x)
        dx[i] = eps
        J[:, i] = (np.asarray(func(x + dx)) - np.asarray(func(x - dx))) / (2 * eps)
    return J
