import logging

import numpy as np
import pytest
from conftest import P0, V, W

from robonav.errors import ConfigurationError, OutOfRangeError, SequenceError
from robonav.localization import EKFLog, EstimatorState, ExtendedKalmanFilter
from robonav.mapping.landmark_map import LandmarkMap
from robonav.sensors import Observation, RangeBearingSensor
from robonav.vehicle import RandomPath, Unicycle


def single_step_filter(landmarks, P0=P0, known_ids=True):
    """Filter on a stationary vehicle, initialized and with one prediction done."""
    veh = Unicycle(covar=V)
    sensor = RangeBearingSensor(LandmarkMap(landmarks), W, known_ids=known_ids)
    ekf = ExtendedKalmanFilter(veh, V, P0, sensor=sensor)
    ekf.init()
    ekf.predict([0.0, 0.0])
    return ekf


def test_prediction_reproduces_noise_free_trajectory():
    veh = Unicycle(covar=np.zeros((2, 2)))
    veh.add_driver(RandomPath(10, seed=3))
    ekf = ExtendedKalmanFilter(veh, V_est=V, P0=P0)
    ekf.run(500)
    np.testing.assert_array_equal(ekf.get_xyt(), veh.x_hist)


def test_dead_reckoning_covariance_grows(vehicle):
    ekf = ExtendedKalmanFilter(vehicle, V, P0)
    ekf.run(200)
    Pnorm = ekf.get_Pnorm()
    assert Pnorm.shape == (200,)
    assert Pnorm[-1] > Pnorm[0]


def test_sensor_bounds_uncertainty(vehicle, sensor):
    dr = ExtendedKalmanFilter(vehicle, V, P0)
    dr.run(500)
    dr_uncertainty = dr.get_Pnorm()[-1]

    ekf = ExtendedKalmanFilter(vehicle, V, P0, sensor=sensor)
    ekf.run(500)
    assert ekf.get_Pnorm()[-1] < dr_uncertainty


def test_long_run_keeps_covariance_symmetric_and_positive(vehicle, sensor):
    ekf = ExtendedKalmanFilter(vehicle, V, P0, sensor=sensor, history=False)
    ekf.init()
    for _ in range(10000):
        odo = vehicle.step()
        ekf.predict_update(odo, sensor.reading(vehicle.x))
        P = ekf.P_est
        assert np.array_equal(P, P.T)
        assert np.min(np.linalg.eigvalsh(P)) > 0

    assert ekf.history == []
    assert len(ekf.get_xyt()) == 10000
    assert np.linalg.norm(ekf.x_est[:2] - vehicle.x[:2]) < 1.0


def test_localization_tracks_true_pose(vehicle, sensor):
    ekf = ExtendedKalmanFilter(vehicle, V, P0, sensor=sensor)
    ekf.run(1000)
    errors = np.linalg.norm(ekf.get_xyt()[:, :2] - vehicle.x_hist[:, :2], axis=1)
    assert np.mean(errors) < 0.5


def test_bearing_innovation_is_wrapped():
    # landmark straight behind the vehicle, seen just across the ±π cut
    ekf = single_step_filter([[-2.0, 0.0]], P0=np.diag([0.01, 0.01, 0.5]) ** 2)
    ekf.update([Observation(2.0, -np.pi + 0.01, 0)])
    assert ekf.x_est[2] == pytest.approx(-0.01, abs=1e-3)


def test_unknown_id_is_associated_inside_gate():
    ekf = single_step_filter([[3.0, 0.0], [0.0, 3.0]], known_ids=False)
    ekf.update([Observation(2.9, 0.0, None)])
    assert ekf.rejected_observations == 0
    # landmark appears closer, so the vehicle moved towards it
    assert ekf.x_est[0] > 0


def test_unknown_id_outside_gate_is_rejected():
    ekf = single_step_filter([[3.0, 0.0], [0.0, 3.0]], known_ids=False)
    x_before = ekf.x_est
    ekf.update([Observation(3.0, np.pi, None)])
    assert ekf.rejected_observations == 1
    np.testing.assert_array_equal(ekf.x_est, x_before)


def test_degenerate_update_leaves_state_unchanged(caplog):
    ekf = single_step_filter([[0.0, 0.0]])
    x_before, P_before = ekf.x_est, ekf.P_est
    with caplog.at_level(logging.WARNING, logger="robonav"):
        ekf.update([Observation(0.5, 0.1, 0)])
    assert ekf.skipped_observations == 1
    np.testing.assert_array_equal(ekf.x_est, x_before)
    np.testing.assert_array_equal(ekf.P_est, P_before)
    assert "Skipping observation" in caplog.text
    # the step still completes
    assert len(ekf.get_xyt()) == 1


def test_known_id_missing_from_map_raises():
    ekf = single_step_filter([[3.0, 0.0]])
    with pytest.raises(OutOfRangeError):
        ekf.update([Observation(3.0, 0.0, 5)])


def test_failed_update_restores_earlier_corrections():
    ekf = single_step_filter([[3.0, 0.0]])
    x_before, P_before = ekf.x_est, ekf.P_est
    with pytest.raises(OutOfRangeError):
        ekf.update([Observation(2.5, 0.0, 0), Observation(3.0, 0.0, 5)])
    np.testing.assert_array_equal(ekf.x_est, x_before)
    np.testing.assert_array_equal(ekf.P_est, P_before)
    assert len(ekf.get_xyt()) == 0

    # the prediction is kept, so the step can be completed
    ekf.update([Observation(2.5, 0.0, 0)])
    assert len(ekf.get_xyt()) == 1
    assert ekf.x_est[0] > 0


def gate_offset(ekf, landmark, scale):
    """Range error giving d² = scale × gate for a landmark straight ahead."""
    H = ekf.sensor.Hx(ekf.x_est, landmark)
    S = H @ ekf.P_est @ H.T + ekf.W_est
    return np.sqrt(scale * ekf.gate / np.linalg.inv(S)[0, 0])


def test_gate_threshold_on_range_innovation():
    ekf = single_step_filter([[3.0, 0.0]], known_ids=False)
    delta = gate_offset(ekf, [3.0, 0.0], 1.01)
    x_before = ekf.x_est
    ekf.update([Observation(3.0 + delta, 0.0, None)])
    assert ekf.rejected_observations == 1
    np.testing.assert_array_equal(ekf.x_est, x_before)

    ekf = single_step_filter([[3.0, 0.0]], known_ids=False)
    delta = gate_offset(ekf, [3.0, 0.0], 0.99)
    ekf.update([Observation(3.0 + delta, 0.0, None)])
    assert ekf.rejected_observations == 0
    assert ekf.x_est[0] < 0


def test_observations_without_sensor_raise():
    ekf = ExtendedKalmanFilter(Unicycle(covar=V), V, P0)
    ekf.init()
    ekf.predict([0.1, 0.0])
    with pytest.raises(ConfigurationError):
        ekf.update([Observation(1.0, 0.0, 0)])


def test_empty_update_only_completes_the_step():
    ekf = single_step_filter([[3.0, 0.0]])
    x_before, P_before = ekf.x_est, ekf.P_est
    ekf.update([])
    ekf.predict([0.0, 0.0])
    ekf.update(None)
    assert len(ekf.get_xyt()) == 2
    np.testing.assert_array_equal(ekf.get_xyt()[0], x_before)
    np.testing.assert_array_equal(ekf.get_P()[0], P_before)


def test_repeated_predict_is_allowed():
    ekf = single_step_filter([[3.0, 0.0]])
    P_once = ekf.P_est
    ekf.predict([0.0, 0.0])
    assert np.trace(ekf.P_est) > np.trace(P_once)
    ekf.update(None)
    assert ekf.t == pytest.approx(0.1)


def test_predict_before_init_raises():
    ekf = ExtendedKalmanFilter(Unicycle(covar=V), V, P0)
    assert ekf.state is EstimatorState.UNINITIALIZED
    with pytest.raises(SequenceError):
        ekf.predict([0.1, 0.0])


def test_update_without_predict_raises():
    ekf = ExtendedKalmanFilter(Unicycle(covar=V), V, P0)
    ekf.init()
    with pytest.raises(SequenceError):
        ekf.update(None)
    ekf.predict([0.1, 0.0])
    ekf.update(None)
    with pytest.raises(SequenceError):
        ekf.update(None)


def test_init_mid_run_raises():
    ekf = ExtendedKalmanFilter(Unicycle(covar=V), V, P0)
    ekf.init()
    # no step taken yet, so re-initializing is fine
    ekf.init(x0=[1.0, 1.0, 0.0])
    np.testing.assert_array_equal(ekf.x_est, [1.0, 1.0, 0.0])
    ekf.predict([0.1, 0.0])
    with pytest.raises(SequenceError):
        ekf.init()


def test_run_finishes_and_can_be_repeated(vehicle, sensor):
    ekf = ExtendedKalmanFilter(vehicle, V, P0, sensor=sensor)
    ekf.run(100)
    assert ekf.state is EstimatorState.DONE
    first = ekf.get_xyt()
    with pytest.raises(SequenceError):
        ekf.predict([0.1, 0.0])

    ekf.run(100)
    np.testing.assert_array_equal(ekf.get_xyt(), first)

    ekf.init()
    assert ekf.state is EstimatorState.RUNNING
    assert len(ekf.get_xyt()) == 0


def test_same_seeds_give_identical_runs(lm_map):
    def build():
        veh = Unicycle(covar=V, seed=8)
        veh.add_driver(RandomPath(10, seed=9))
        sensor = RangeBearingSensor(lm_map, W, range=4, seed=10)
        return ExtendedKalmanFilter(veh, V, P0, sensor=sensor)

    a, b = build(), build()
    a.run(300)
    b.run(300)
    np.testing.assert_array_equal(a.get_xyt(), b.get_xyt())
    np.testing.assert_array_equal(a.get_P(), b.get_P())


def test_joseph_form_matches_standard_update(lm_map):
    def build(joseph):
        veh = Unicycle(covar=V, seed=8)
        veh.add_driver(RandomPath(10, seed=9))
        sensor = RangeBearingSensor(lm_map, W, range=4, seed=10)
        return ExtendedKalmanFilter(veh, V, P0, sensor=sensor, joseph=joseph)

    standard, joseph = build(False), build(True)
    standard.run(200)
    joseph.run(200)
    np.testing.assert_allclose(standard.get_xyt(), joseph.get_xyt(), atol=1e-8)
    np.testing.assert_allclose(standard.get_P(), joseph.get_P(), atol=1e-10)


def test_observer_is_called_every_step(vehicle):
    calls = []

    def observer(poses, estimates, covariances):
        calls.append((poses.shape, estimates.shape, covariances.shape))

    ekf = ExtendedKalmanFilter(vehicle, V, P0)
    ekf.run(5, observer=observer)
    assert calls == [((k, 3), (k, 3), (k, 3, 3)) for k in range(1, 6)]


def test_history_records_each_step(vehicle, sensor):
    ekf = ExtendedKalmanFilter(vehicle, V, P0, sensor=sensor)
    ekf.run(20)
    assert len(ekf.history) == 20
    log = ekf.history[-1]
    assert isinstance(log, EKFLog)
    assert log.t == pytest.approx(2.0)
    np.testing.assert_array_equal(log.xest, ekf.x_est)
    np.testing.assert_array_equal(log.Pest, ekf.P_est)
    assert log.odo.shape == (2,)
    assert isinstance(log.z, list)


def test_build_dataframes_aligns_with_ground_truth(vehicle, sensor):
    ekf = ExtendedKalmanFilter(vehicle, V, P0, sensor=sensor)
    ekf.run(50)
    ekf.build_dataframes()
    assert list(ekf.states_df.columns) == ["x", "y", "theta", "var_x", "var_y", "var_theta"]
    assert len(ekf.states_df) == 50
    assert ekf.states_df.index.equals(ekf.gt.index)
    assert np.all(ekf.states_df[["var_x", "var_y", "var_theta"]].to_numpy() > 0)


def test_nees(vehicle, sensor):
    ekf = ExtendedKalmanFilter(vehicle, V, P0, sensor=sensor)
    ekf.run(300)
    nees = ekf.nees()
    assert nees.shape == (300,)
    assert np.all(nees >= 0)
    assert np.mean(nees) < 20


def test_run_logs_progress(vehicle, caplog):
    ekf = ExtendedKalmanFilter(vehicle, V, P0)
    with caplog.at_level(logging.INFO, logger="robonav"):
        ekf.run(3)
    assert "Running ExtendedKalmanFilter for 3 steps" in caplog.text


def test_gate_and_defaults(vehicle, sensor):
    ekf = ExtendedKalmanFilter(vehicle, sensor=sensor, confidence=0.99)
    assert ekf.gate == pytest.approx(9.21, abs=0.01)
    np.testing.assert_array_equal(ekf.V_est, vehicle.V)
    np.testing.assert_array_equal(ekf.W_est, sensor.W)
    assert ekf.map is sensor.map
    assert "ExtendedKalmanFilter object" in str(ekf)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"confidence": 0.0},
        {"confidence": 1.0},
        {"P0": np.eye(2)},
        {"V_est": -np.eye(2)},
        {"x0": [0.0, 0.0]},
    ],
)
def test_invalid_configuration_is_rejected(vehicle, kwargs):
    with pytest.raises(ConfigurationError):
        ExtendedKalmanFilter(vehicle, **kwargs)
