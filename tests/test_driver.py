import logging

import numpy as np
import pytest

from robonav.errors import ConfigurationError, SequenceError
from robonav.utils.data_utils import parse_workspace
from robonav.vehicle import Bicycle, RandomPath, Unicycle


def test_scalar_workspace_is_square():
    np.testing.assert_array_equal(parse_workspace(3), [-3, 3, -3, 3])
    np.testing.assert_array_equal(parse_workspace([0, 4, 1, 2]), [0, 4, 1, 2])


@pytest.mark.parametrize("workspace", [0, [1, 1, 0, 2], [0, 2, 3, 1], [0, 1, 2]])
def test_degenerate_workspace_is_rejected(workspace):
    with pytest.raises(ConfigurationError):
        RandomPath(workspace)


def test_dthresh_is_fraction_of_diagonal():
    driver = RandomPath([0, 3, 0, 4], dthresh=0.1)
    assert driver.dthresh == pytest.approx(0.5)


def test_goal_is_inside_shrunk_workspace():
    driver = RandomPath(10, margin=0.2, seed=5)
    for _ in range(50):
        driver.init()
        driver.demand([0.0, 0.0, 0.0])
        goal = driver.goal
        assert np.all(np.abs(goal) <= 6.0)


def test_new_goal_is_away_from_vehicle():
    driver = RandomPath(10, seed=7)
    driver.demand([0.0, 0.0, 0.0])
    assert np.linalg.norm(driver.goal) > 2 * driver.dthresh


def test_unreachable_goal_spacing_is_logged(caplog):
    # dthresh larger than the workspace: no target can be 2·dthresh away
    driver = RandomPath([0, 1, 0, 1], dthresh=2.0, seed=0)
    with caplog.at_level(logging.DEBUG, logger="robonav"):
        driver.demand([0.5, 0.5, 0.0])
    assert driver.goal is not None
    assert "No target found" in caplog.text


def test_goal_is_replaced_when_reached():
    driver = RandomPath(10, seed=1)
    driver.demand([0.0, 0.0, 0.0])
    first = driver.goal
    driver.demand(np.r_[first, 0.0])
    assert not np.allclose(driver.goal, first)


def test_steer_is_proportional_to_heading_error():
    driver = RandomPath(10, headinggain=0.3, seed=2)
    driver.demand([0.0, 0.0, 0.0])
    goal = driver.goal
    heading = np.arctan2(goal[1], goal[0])
    speed, steer = driver.demand([0.0, 0.0, heading - 0.5])
    assert speed == pytest.approx(1.0)
    assert steer == pytest.approx(0.15)


def test_steer_is_saturated_by_vehicle_limit():
    veh = Bicycle(steer_max=0.01, covar=np.zeros((2, 2)))
    driver = RandomPath(10, headinggain=10.0, seed=2)
    veh.add_driver(driver)
    _, steer = driver.demand()
    assert abs(steer) <= 0.01


def test_speed_capped_by_vehicle():
    veh = Unicycle(speed_max=0.5, covar=np.zeros((2, 2)))
    driver = RandomPath(10, speed=2.0)
    veh.add_driver(driver)
    speed, _ = driver.demand()
    assert speed == pytest.approx(0.5)


def test_slowdown_near_goal():
    driver = RandomPath(10, speed=1.0, slowdown_radius=100.0, seed=3)
    driver.demand([0.0, 0.0, 0.0])
    d = np.linalg.norm(driver.goal)
    speed, _ = driver.demand([0.0, 0.0, 0.0])
    assert speed == pytest.approx(d / 100.0)


def test_demand_without_vehicle_raises():
    with pytest.raises(SequenceError):
        RandomPath(10).demand()


def test_vehicle_stays_near_workspace():
    veh = Unicycle(covar=np.zeros((2, 2)))
    veh.add_driver(RandomPath(10, seed=4))
    traj = veh.run(2000)
    assert np.all(np.abs(traj[:, :2]) < 15.0)


def test_init_reseeds_goals():
    driver = RandomPath(10, seed=11)
    driver.demand([0.0, 0.0, 0.0])
    first = driver.goal
    driver.init()
    assert driver.goal is None
    driver.demand([0.0, 0.0, 0.0])
    np.testing.assert_array_equal(driver.goal, first)
