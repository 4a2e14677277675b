import matplotlib.pyplot as plt
import numpy as np
import pytest
from conftest import P0, V
from matplotlib.axes import Axes
from matplotlib.image import AxesImage
from scipy.stats import chi2

from robonav.localization import DeadReckoning, ExtendedKalmanFilter
from robonav.slam.ekf_slam import ExtendedKalmanFilterSLAM
from robonav.visualization.plots import (
    LivePlot,
    ellipse_points,
    plot_covariance,
    plot_ellipse,
    plot_run,
)


def test_ellipse_points_lie_on_confidence_contour():
    P = np.array([[4.0, 1.0], [1.0, 2.0]])
    centre = np.array([1.0, -2.0])
    pts = ellipse_points(P, centre, confidence=0.9, n=50)
    assert pts.shape == (50, 2)
    np.testing.assert_allclose(pts[0], pts[-1])
    d = pts - centre
    d2 = np.einsum("ij,ij->i", d, np.linalg.solve(P, d.T).T)
    np.testing.assert_allclose(d2, chi2.ppf(0.9, 2))


def test_degenerate_ellipse_collapses_to_a_line():
    pts = ellipse_points(np.diag([1.0, 0.0]), [0.0, 0.0])
    np.testing.assert_allclose(pts[:, 1], 0.0, atol=1e-12)


def test_plot_ellipse_draws_on_given_axes():
    _, ax = plt.subplots()
    line = plot_ellipse(np.eye(2), [0.0, 0.0], ax=ax, color="r")
    assert line in ax.lines


def test_plot_run(lm_map):
    poses = np.column_stack((np.linspace(0, 5, 30), np.zeros(30), np.zeros(30)))
    covs = np.tile(P0, (30, 1, 1))
    ax = plot_run(
        poses,
        poses + 0.01,
        covs,
        map=lm_map,
        estimated_landmarks=lm_map.landmarks[:3] + 0.1,
        landmark_covariances=[np.eye(2) * 0.01] * 3,
        title="run",
        n_ellipses=5,
    )
    assert isinstance(ax, Axes)
    assert ax.get_title() == "run"
    # two trajectories, start, end, five pose and three landmark ellipses, landmark estimates
    assert len(ax.lines) == 2 + 2 + 5 + 3 + 1


def test_plot_run_with_empty_history():
    ax = plot_run(np.zeros((0, 3)), np.zeros((0, 3)), np.zeros((0, 3, 3)))
    assert isinstance(ax, Axes)


def test_plot_covariance():
    P = np.diag([1.0, 1e-2, 1e-4])
    image = plot_covariance(P, colorbar=True)
    assert isinstance(image, AxesImage)
    data = image.get_array()
    np.testing.assert_allclose(np.diag(data), [0.0, -2.0, -4.0])
    # zeros are shown at the smallest magnitude
    assert data[0, 1] == pytest.approx(-4.0)


def test_live_plot_redraws_every_n_steps(vehicle, lm_map):
    live = LivePlot(lm_map, every=5, pause=0)
    ekf = ExtendedKalmanFilter(vehicle, V, P0)
    ekf.run(22, observer=live)
    assert live.calls == 22
    assert live.frames == 4
    assert len(live.ax.lines) > 0


def test_estimator_plots(vehicle, sensor):
    dr = DeadReckoning(vehicle)
    dr.run(30)
    assert dr.plot_data().get_title() == "Dead Reckoning"

    ekf = ExtendedKalmanFilter(vehicle, V, P0, sensor=sensor)
    ekf.run(30)
    _, ax = plt.subplots()
    assert ekf.plot_data(ax=ax) is ax

    slam = ExtendedKalmanFilterSLAM(vehicle, V, P0, sensor=sensor)
    slam.run(30)
    assert slam.plot_data(n_ellipses=3).get_title() == "EKF SLAM"
