import numpy as np
import pytest
from conftest import P0, V

from robonav.localization import DeadReckoning, ExtendedKalmanFilter
from robonav.utils.data_utils import angdiff
from robonav.vehicle import RandomPath, Unicycle


def test_follows_noise_free_vehicle_exactly():
    veh = Unicycle(covar=np.zeros((2, 2)))
    veh.add_driver(RandomPath(10, seed=1))
    dr = DeadReckoning(veh)
    states = dr.run(400)
    np.testing.assert_allclose(states[1:, 1:3], veh.x_hist[:, :2], atol=1e-9)
    np.testing.assert_allclose(angdiff(states[1:, 3], veh.x_hist[:, 2]), 0.0, atol=1e-9)
    assert np.all(np.abs(states[:, 3]) <= np.pi)


def test_states_start_at_initial_pose(vehicle):
    dr = DeadReckoning(vehicle, x0=[1.0, -1.0, 0.5])
    states = dr.run(25)
    assert states.shape == (26, 4)
    np.testing.assert_array_equal(states[0], [0.0, 1.0, -1.0, 0.5])
    np.testing.assert_allclose(states[:, 0], 0.1 * np.arange(26))


def test_motion_update_straight_step():
    veh = Unicycle(covar=np.zeros((2, 2)))
    dr = DeadReckoning(veh)
    x = dr.motion_update([0.5, 0.0])
    np.testing.assert_allclose(x, [0.5, 0.0, 0.0])
    assert dr.last_timestamp == pytest.approx(0.1)
    assert len(dr.states) == 2


def test_matches_filter_prediction(vehicle):
    dr = DeadReckoning(vehicle)
    states = dr.run(300)
    ekf = ExtendedKalmanFilter(vehicle, V, P0)
    ekf.run(300)
    est = ekf.get_xyt()
    np.testing.assert_allclose(states[1:, 1:3], est[:, :2], atol=1e-9)
    np.testing.assert_allclose(angdiff(states[1:, 3], est[:, 2]), 0.0, atol=1e-9)


def test_noisy_odometry_drifts(vehicle):
    dr = DeadReckoning(vehicle)
    states = dr.run(1000)
    assert np.linalg.norm(states[-1, 1:3] - vehicle.x[:2]) > 0


def test_build_dataframes(vehicle):
    dr = DeadReckoning(vehicle)
    dr.run(40)
    dr.build_dataframes()
    assert list(dr.states_df.columns) == ["x", "y", "theta"]
    assert len(dr.states_df) == 41
    assert len(dr.gt) == 40
    assert dr.gt.index.isin(dr.states_df.index).all()
