"""
Matplotlib rendering of estimation runs.

The functions here only consume history arrays, so any estimator (or a
saved run, see :mod:`robonav.data.reader`) can be plotted:

- :func:`plot_run`: true and estimated trajectories, landmarks and pose
  confidence ellipses
- :func:`plot_ellipse`: confidence ellipse of a 2-D Gaussian
- :func:`plot_covariance`: covariance matrix as a log-scale image
- :class:`LivePlot`: observer for ``run()`` redrawing during the simulation
"""

import matplotlib.pyplot as plt
import numpy as np
from scipy.stats import chi2


def ellipse_points(P, centre, confidence=0.95, n=60):
    """
    Boundary of the confidence region of N(centre, P).

    Parameters
    ----------
    P : array_like, shape (2, 2)
        Covariance.
    centre : array_like, shape (2,)
        Mean.
    confidence : float, optional
        Probability mass inside the ellipse.
    n : int, optional
        Number of boundary points.

    Returns
    -------
    ndarray, shape (n, 2)
        Closed polygon, first point repeated last.
    """
    P = np.asarray(P, dtype=float)[:2, :2]
    centre = np.asarray(centre, dtype=float).flatten()[:2]
    s = chi2.ppf(confidence, 2)
    evals, evecs = np.linalg.eigh(0.5 * (P + P.T))
    radii = np.sqrt(s * np.clip(evals, 0.0, None))
    t = np.linspace(0, 2 * np.pi, n)
    circle = np.vstack((np.cos(t), np.sin(t)))
    return (evecs @ (radii[:, np.newaxis] * circle)).T + centre


def plot_ellipse(P, centre, confidence=0.95, ax=None, **kwargs):
    """Draw the confidence ellipse of N(centre, P) and return the line."""
    if ax is None:
        ax = plt.gca()
    pts = ellipse_points(P, centre, confidence)
    (line,) = ax.plot(pts[:, 0], pts[:, 1], **kwargs)
    return line


def plot_run(
    pose_history,
    estimate_history,
    covariance_history=None,
    map=None,
    estimated_landmarks=None,
    landmark_covariances=None,
    ax=None,
    title=None,
    confidence=0.95,
    n_ellipses=10,
    show=False,
):
    """
    Plot a localization or SLAM run.

    Plot Elements
    ------------
    - Blue line: true vehicle trajectory
    - Red line: estimated trajectory
    - Green/yellow markers: start and end of the true trajectory
    - Red ellipses: pose confidence at ``n_ellipses`` evenly spaced steps
    - Grey stars with ids: true landmarks
    - Black dots and ellipses: estimated landmarks (SLAM)

    Parameters
    ----------
    pose_history : array_like, shape (k, 3)
        True poses.
    estimate_history : array_like, shape (k, 3)
        Estimated poses.
    covariance_history : array_like, shape (k, 3, 3), optional
        Pose covariances; no ellipses when omitted.
    map : LandmarkMap, optional
        True landmarks.
    estimated_landmarks : array_like, shape (m, 2), optional
        Estimated landmark positions.
    landmark_covariances : sequence of (2, 2) arrays, optional
        Covariances of ``estimated_landmarks``.
    ax : matplotlib.axes.Axes, optional
        Target axes. Default: current axes.
    title : str, optional
        Axes title.
    confidence : float, optional
        Confidence level of all ellipses.
    n_ellipses : int, optional
        Number of pose ellipses along the trajectory.
    show : bool, optional
        Call ``plt.show()`` at the end.

    Returns
    -------
    matplotlib.axes.Axes
    """
    if ax is None:
        ax = plt.gca()
    poses = np.asarray(pose_history, dtype=float).reshape(-1, 3)
    estimates = np.asarray(estimate_history, dtype=float).reshape(-1, 3)

    if len(poses) > 0:
        ax.plot(poses[:, 0], poses[:, 1], "b", label="Ground truth")
        ax.plot(poses[0, 0], poses[0, 1], "go", label="Start point")
        ax.plot(poses[-1, 0], poses[-1, 1], "yo", label="End point")
    if len(estimates) > 0:
        ax.plot(estimates[:, 0], estimates[:, 1], "r", label="Estimate")

    if covariance_history is not None and len(estimates) > 0 and n_ellipses > 0:
        covariances = np.asarray(covariance_history, dtype=float).reshape(-1, 3, 3)
        label = f"{confidence * 100:.3g}% confidence"
        for i, k in enumerate(np.unique(np.linspace(0, len(estimates) - 1, n_ellipses).round().astype(int))):
            plot_ellipse(
                covariances[k][:2, :2],
                estimates[k, :2],
                confidence,
                ax=ax,
                color="r",
                alpha=0.5,
                label=label if i == 0 else None,
            )

    if map is not None and len(map) > 0:
        landmarks = map.landmarks
        ax.scatter(
            landmarks[:, 0],
            landmarks[:, 1],
            s=200,
            c="k",
            alpha=0.2,
            marker="*",
            label="Landmark Locations",
        )
        for lm_id, (x, y) in enumerate(landmarks):
            ax.text(x, y, str(lm_id), alpha=0.5, fontsize=10)

    if estimated_landmarks is not None and len(estimated_landmarks) > 0:
        est_lm = np.asarray(estimated_landmarks, dtype=float).reshape(-1, 2)
        ax.plot(est_lm[:, 0], est_lm[:, 1], "k.", label="Landmark Estimates")
        if landmark_covariances is not None:
            for P, centre in zip(landmark_covariances, est_lm):
                plot_ellipse(P, centre, confidence, ax=ax, color="k", alpha=0.5)

    ax.set_xlabel("x [m]")
    ax.set_ylabel("y [m]")
    ax.set_aspect("equal", adjustable="datalim")
    if title is not None:
        ax.set_title(title)
    ax.legend(loc="center left", bbox_to_anchor=(1, 0.5))
    if show:
        plt.show()
    return ax


def plot_covariance(P, ax=None, colorbar=False):
    """
    Display a covariance matrix as an image of log10 |P|.

    Zero elements are shown at the smallest non-zero magnitude.

    Returns
    -------
    matplotlib.image.AxesImage
    """
    if ax is None:
        ax = plt.gca()
    with np.errstate(divide="ignore"):
        z = np.log10(np.abs(np.asarray(P, dtype=float)))
    finite = np.isfinite(z)
    z[~finite] = z[finite].min() if finite.any() else 0.0
    image = ax.imshow(z, cmap="Reds")
    ax.set_xlabel("State")
    ax.set_ylabel("State")
    if colorbar:
        ax.figure.colorbar(image, ax=ax, label="log covariance")
    return image


class LivePlot:
    """
    Observer for ``run()`` that redraws the run while it is simulated.

    Parameters
    ----------
    map : LandmarkMap, optional
        True landmarks to draw.
    every : int, optional
        Redraw on every ``every``-th call.
    pause : float, optional
        Seconds passed to ``plt.pause`` after each redraw; 0 skips the pause.
    ax : matplotlib.axes.Axes, optional
        Target axes. Default: a new figure.

    Examples
    --------
    >>> ekf.run(500, observer=LivePlot(lm_map, every=20))
    """

    def __init__(self, map=None, every=10, pause=1e-3, ax=None):
        self.map = map
        self.every = max(1, int(every))
        self.pause = pause
        if ax is None:
            _, ax = plt.subplots()
        self.ax = ax
        self.calls = 0
        self.frames = 0

    def __call__(self, pose_history, estimate_history, covariance_history):
        self.calls += 1
        if self.calls % self.every != 0:
            return
        self.ax.cla()
        plot_run(
            pose_history,
            estimate_history,
            covariance_history,
            map=self.map,
            ax=self.ax,
            n_ellipses=2,
        )
        self.frames += 1
        if self.pause > 0:
            plt.pause(self.pause)
