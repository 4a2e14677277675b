"""
Trajectory evaluation metrics for simulated localization and SLAM runs.

This module provides metrics for judging estimator performance against the
true trajectory of the simulated vehicle: Absolute Trajectory Error (ATE),
error statistics, consistency via the Normalized Estimation Error Squared
(NEES), and summary figures of a recorded run. Trajectory metrics operate on
pandas DataFrames with timestamp indices, as produced by the
``build_dataframes()`` method of every estimator.
"""

import logging
from typing import Tuple

import numpy as np
import pandas as pd
from scipy.stats import chi2

from robonav.utils.data_utils import wrap_angle

logger = logging.getLogger(__name__)


def _align(estimated_states: pd.DataFrame, groundtruth_data: pd.DataFrame) -> pd.DataFrame:
    """Inner join of two trajectories on their timestamp index."""
    for name, frame in (("estimated_states", estimated_states), ("groundtruth_data", groundtruth_data)):
        if not isinstance(frame, pd.DataFrame):
            raise ValueError(
                f"{name} must be a DataFrame, got {type(frame).__name__}. "
                "Did you call build_dataframes() first?"
            )
        for col in ("x", "y"):
            if col not in frame.columns:
                raise ValueError(
                    f"{name} missing required column '{col}'. "
                    f"Available columns: {list(frame.columns)}"
                )

    cols = ["x", "y"]
    if "theta" in estimated_states.columns and "theta" in groundtruth_data.columns:
        cols.append("theta")
    aligned = estimated_states[cols].join(groundtruth_data[cols], how="inner", rsuffix="_gt")
    if len(aligned) == 0:
        raise RuntimeError(
            "Timestamp alignment produced 0 matching frames. "
            f"Estimated time range: [{estimated_states.index.min()}, {estimated_states.index.max()}], "
            f"ground truth time range: [{groundtruth_data.index.min()}, {groundtruth_data.index.max()}]"
        )
    return aligned


def _position_errors(aligned: pd.DataFrame) -> np.ndarray:
    return np.hypot(aligned["x"] - aligned["x_gt"], aligned["y"] - aligned["y_gt"]).to_numpy()


def compute_ate(
    estimated_states: pd.DataFrame,
    groundtruth_data: pd.DataFrame,
    verbose: bool = True,
) -> float:
    """
    Compute Absolute Trajectory Error (ATE) using RMSE with timestamp matching.

    Parameters
    ----------
    estimated_states : pd.DataFrame
        Estimated trajectory with datetime index and columns ['x', 'y'] at
        least, typically ``estimator.states_df``.
    groundtruth_data : pd.DataFrame
        True trajectory with datetime index, typically ``estimator.gt``.
    verbose : bool, optional
        Log alignment and error statistics at INFO level. Default: True.

    Returns
    -------
    float
        Root mean squared position error in meters.

    Raises
    ------
    ValueError
        If inputs are not DataFrames or miss required columns.
    RuntimeError
        If timestamp alignment produces no matching frames.

    Examples
    --------
    >>> ekf.run(1000)
    >>> ekf.build_dataframes()
    >>> compute_ate(ekf.states_df, ekf.gt, verbose=False)
    0.0873...
    """
    aligned = _align(estimated_states, groundtruth_data)
    errors = _position_errors(aligned)
    ate = float(np.sqrt(np.mean(errors**2)))

    if verbose:
        alignment_pct = len(aligned) / len(estimated_states) * 100
        logger.info(
            "ATE: %d aligned frames (%.1f%% of estimates), mean %.4f m, max %.4f m, RMSE %.4f m",
            len(aligned),
            alignment_pct,
            np.mean(errors),
            np.max(errors),
            ate,
        )
        if alignment_pct < 90:
            logger.warning(
                "Only %.1f%% of frames aligned, check the time stamps of both trajectories",
                alignment_pct,
            )
    return ate


def compute_trajectory_stats(
    estimated_states: pd.DataFrame,
    groundtruth_data: pd.DataFrame,
) -> dict:
    """
    Compute detailed trajectory error statistics.

    Returns
    -------
    dict
        Dictionary containing:
        - 'ate': Absolute Trajectory Error (RMSE)
        - 'mean_error', 'std_error', 'median_error', 'max_error', 'min_error':
          statistics of the position error (m)
        - 'final_error': position error of the last aligned frame (m)
        - 'heading_rmse': RMS wrapped heading error (rad), NaN if either
          frame has no 'theta' column
        - 'aligned_frames': Number of temporally aligned frames
        - 'alignment_ratio': Fraction of estimates successfully aligned
    """
    aligned = _align(estimated_states, groundtruth_data)
    errors = _position_errors(aligned)

    heading_rmse = np.nan
    if "theta" in aligned.columns:
        dtheta = wrap_angle((aligned["theta"] - aligned["theta_gt"]).to_numpy())
        heading_rmse = float(np.sqrt(np.mean(dtheta**2)))

    return {
        "ate": float(np.sqrt(np.mean(errors**2))),
        "mean_error": float(np.mean(errors)),
        "std_error": float(np.std(errors)),
        "median_error": float(np.median(errors)),
        "max_error": float(np.max(errors)),
        "min_error": float(np.min(errors)),
        "final_error": float(errors[-1]),
        "heading_rmse": heading_rmse,
        "aligned_frames": len(aligned),
        "alignment_ratio": len(aligned) / len(estimated_states),
    }


def compare_algorithms(
    algorithms: dict[str, Tuple[pd.DataFrame, pd.DataFrame]]
) -> pd.DataFrame:
    """
    Compare several estimators on ATE and related error figures.

    Parameters
    ----------
    algorithms : dict
        Algorithm name → (states_df, gt_df).
        Example: {'DR': (dr.states_df, dr.gt), 'EKF': (ekf.states_df, ekf.gt)}

    Returns
    -------
    pd.DataFrame
        Columns ['Algorithm', 'ATE', 'Mean Error', 'Max Error',
        'Final Error', 'Heading RMSE', 'Aligned Frames'], best ATE first.
    """
    rows = []
    for name, (states_df, gt_df) in algorithms.items():
        stats = compute_trajectory_stats(states_df, gt_df)
        rows.append(
            {
                "Algorithm": name,
                "ATE": stats["ate"],
                "Mean Error": stats["mean_error"],
                "Max Error": stats["max_error"],
                "Final Error": stats["final_error"],
                "Heading RMSE": stats["heading_rmse"],
                "Aligned Frames": stats["aligned_frames"],
            }
        )
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.sort_values("ATE").reset_index(drop=True)


def compute_nees(
    true_poses: np.ndarray,
    estimated_poses: np.ndarray,
    covariances: np.ndarray,
) -> np.ndarray:
    """
    Normalized Estimation Error Squared of the pose at every step.

    For a consistent filter NEES follows a chi-square distribution with 3
    degrees of freedom, so its mean should be close to 3.

    Parameters
    ----------
    true_poses : ndarray, shape (k, 3)
        True poses.
    estimated_poses : ndarray, shape (k, 3)
        Estimated poses.
    covariances : ndarray, shape (k, 3, 3)
        Pose covariances of the estimates.

    Returns
    -------
    ndarray, shape (k,)
        eᵀ P⁻¹ e per step, with the heading error wrapped to (-π, π].
    """
    true_poses = np.asarray(true_poses, dtype=float).reshape(-1, 3)
    estimated_poses = np.asarray(estimated_poses, dtype=float).reshape(-1, 3)
    covariances = np.asarray(covariances, dtype=float).reshape(-1, 3, 3)
    if not len(true_poses) == len(estimated_poses) == len(covariances):
        raise ValueError(
            f"length mismatch: {len(true_poses)} true poses, "
            f"{len(estimated_poses)} estimates, {len(covariances)} covariances"
        )

    errors = estimated_poses - true_poses
    errors[:, 2] = wrap_angle(errors[:, 2])
    if len(errors) == 0:
        return np.zeros(0)
    weighted = np.linalg.solve(covariances, errors[:, :, np.newaxis])[:, :, 0]
    return np.einsum("ij,ij->i", errors, weighted)


def nees_bounds(n_steps: int, confidence: float = 0.95, dof: int = 3) -> Tuple[float, float]:
    """
    Two-sided confidence interval of the mean NEES over ``n_steps`` steps.

    The sum of n independent chi-square(dof) variables is chi-square(n·dof),
    so the bounds are the chi-square quantiles divided by n.
    """
    alpha = 1.0 - confidence
    lower = chi2.ppf(alpha / 2, n_steps * dof) / n_steps
    upper = chi2.ppf(1 - alpha / 2, n_steps * dof) / n_steps
    return float(lower), float(upper)


def compute_run_metrics(reader) -> dict:
    """
    Summarize a recorded run.

    Parameters
    ----------
    reader : Reader
        Loaded run, see :class:`robonav.data.reader.Reader`.

    Returns
    -------
    dict
        Dictionary containing:
        - 'path_length': Total distance travelled (m)
        - 'duration': Time from first to last ground truth pose (s)
        - 'n_landmarks': Number of landmarks in the map
        - 'distance': Straight-line start-to-end distance (m)
        - 'n_observations': Number of landmark observations
        - 'm_density': Observations per meter travelled
    """
    gt = reader.groundtruth_data
    if len(gt) > 1:
        path_length = float(np.sum(np.hypot(np.diff(gt[:, 1]), np.diff(gt[:, 2]))))
        duration = float(gt[-1, 0] - gt[0, 0])
        distance = float(np.linalg.norm(gt[-1, 1:3] - gt[0, 1:3]))
    else:
        path_length = duration = distance = 0.0

    n_observations = len(reader.measurement_data)
    return {
        "path_length": path_length,
        "duration": duration,
        "n_landmarks": len(reader.landmark_locations),
        "distance": distance,
        "n_observations": n_observations,
        "m_density": n_observations / path_length if path_length > 0 else 0.0,
    }
