"""
Data transformation and validation utilities.

This module provides helper functions shared by the vehicle, sensor and
estimator classes: angle wrapping, construction-time parameter checks, and
conversion of history buffers into time-indexed pandas DataFrames.
"""

import numpy as np
import pandas as pd

from robonav.errors import ConfigurationError


def wrap_angle(angle):
    """
    Wrap an angle, or an array of angles, to the interval (-π, π].

    Parameters
    ----------
    angle : float or ndarray
        Angle(s) in radians.

    Returns
    -------
    float or ndarray
        Equivalent angle(s) in (-π, π].

    Examples
    --------
    >>> wrap_angle(3 * np.pi / 2)
    -1.5707963267948966
    >>> wrap_angle(-np.pi)
    3.141592653589793
    """
    return np.pi - np.mod(np.pi - angle, 2 * np.pi)


def angdiff(a, b):
    """Signed difference ``a - b`` wrapped to (-π, π]."""
    return wrap_angle(a - b)


def check_covariance(matrix, dim, name):
    """
    Validate a covariance matrix given at construction time.

    Parameters
    ----------
    matrix : array_like
        Candidate covariance matrix.
    dim : int
        Required dimension; the matrix must be ``dim × dim``.
    name : str
        Parameter name used in the error message.

    Returns
    -------
    ndarray of shape (dim, dim)
        Float copy of the matrix.

    Raises
    ------
    ConfigurationError
        If the matrix has the wrong shape, is not symmetric, contains
        non-finite values or has a negative eigenvalue.
    """
    try:
        matrix = np.array(matrix, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a numeric matrix") from exc
    if matrix.shape != (dim, dim):
        raise ConfigurationError(
            f"{name} must have shape ({dim}, {dim}), got {matrix.shape}"
        )
    if not np.all(np.isfinite(matrix)):
        raise ConfigurationError(f"{name} contains non-finite values")
    if not np.allclose(matrix, matrix.T):
        raise ConfigurationError(f"{name} must be symmetric")
    scale = max(1.0, np.max(np.abs(matrix)))
    if np.min(np.linalg.eigvalsh(matrix)) < -1e-12 * scale:
        raise ConfigurationError(f"{name} must be positive semi-definite")
    return matrix


def check_positive(value, name, allow_inf=False):
    """Return ``value`` as a float, raising ConfigurationError unless it is > 0."""
    try:
        value = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc
    if np.isnan(value) or value <= 0 or (np.isinf(value) and not allow_inf):
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def check_pose(pose, name="x0"):
    """Return ``pose`` as a float array of shape (3,)."""
    pose = np.array(pose, dtype=float).flatten()
    if pose.shape != (3,) or not np.all(np.isfinite(pose)):
        raise ConfigurationError(f"{name} must be a finite (x, y, theta) triple")
    return pose


def parse_workspace(workspace):
    """
    Normalize a workspace argument to ``[xmin, xmax, ymin, ymax]``.

    A scalar ``w`` means the square ``[-w, w, -w, w]``.

    Raises
    ------
    ConfigurationError
        If the workspace has the wrong length or zero/negative extent.
    """
    try:
        ws = np.array(workspace, dtype=float).flatten()
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("workspace must be numeric") from exc
    if ws.size == 1:
        ws = np.r_[-ws[0], ws[0], -ws[0], ws[0]]
    if ws.size != 4 or not np.all(np.isfinite(ws)):
        raise ConfigurationError(
            "workspace must be a scalar or [xmin, xmax, ymin, ymax]"
        )
    if ws[1] <= ws[0] or ws[3] <= ws[2]:
        raise ConfigurationError(f"workspace has zero or negative size: {ws}")
    return ws


def build_timeseries(data, cols):
    """
    Convert a numpy history array to a DataFrame with a datetime index.

    Utility function to create time-indexed DataFrames from history buffers
    whose first column is the simulation time in seconds. Simulation time
    zero maps to the Unix epoch, which keeps trajectories from the same run
    aligned on identical index values.

    Parameters
    ----------
    data : ndarray
        Input data array where the first column contains time in seconds.
    cols : list of str
        Column names for the DataFrame. First column should be 'stamp'.

    Returns
    -------
    pandas.DataFrame
        Time-indexed DataFrame with datetime index and remaining columns.

    Examples
    --------
    >>> data = np.array([
    ...     [0.1, 0.1, 0.0, 0.0],
    ...     [0.2, 0.2, 0.0, 0.0],
    ... ])
    >>> df = build_timeseries(data, cols=['stamp', 'x', 'y', 'theta'])
    >>> df.index[0]
    Timestamp('1970-01-01 00:00:00.100000')
    """
    timeseries = pd.DataFrame(np.asarray(data, dtype=float).reshape(-1, len(cols)), columns=cols)
    timeseries["stamp"] = pd.to_datetime(timeseries["stamp"], unit="s")
    timeseries = timeseries.set_index("stamp")
    return timeseries


def build_state_timeseries(stamp, data, cols):
    """
    Build time-indexed DataFrame from separate timestamp and data arrays.

    Parameters
    ----------
    stamp : array_like
        Time of each row in seconds.
    data : ndarray
        Data array with one row per timestamp.
    cols : list of str
        Column names for the data columns.

    Returns
    -------
    pandas.DataFrame
        Time-indexed DataFrame with timestamp converted to datetime.
    """
    timeseries = pd.DataFrame(np.asarray(data, dtype=float).reshape(-1, len(cols)), columns=cols)
    timeseries["stamp"] = pd.to_datetime(np.asarray(stamp, dtype=float), unit="s")
    timeseries = timeseries.set_index("stamp")
    return timeseries
