"""
Simulation Run Reader Module

This module stores a completed simulation run as a set of whitespace
delimited ``.dat`` tables and loads such a directory back, so that runs can
be archived, compared between estimators, or analysed without re-running the
simulation.

Files written by :func:`save_run`:

- ``Groundtruth.dat``: [time[s], x[m], y[m], orientation[rad]]
- ``Odometry.dat``: [time[s], distance[m], heading change[rad]]
- ``Measurement.dat``: [time[s], landmark id, range[m], bearing[rad]],
  id -1 when the sensor withheld it
- ``Estimate.dat``: [time[s], x[m], y[m], orientation[rad], var x, var y,
  var orientation]
- ``Landmark_Groundtruth.dat``: [landmark id, x[m], y[m]]
"""

import logging
import os
import warnings

import numpy as np

from robonav.mapping.landmark_map import LandmarkMap
from robonav.utils.data_utils import build_timeseries

logger = logging.getLogger(__name__)

GROUNDTRUTH_FILE = "Groundtruth.dat"
ODOMETRY_FILE = "Odometry.dat"
MEASUREMENT_FILE = "Measurement.dat"
ESTIMATE_FILE = "Estimate.dat"
LANDMARK_FILE = "Landmark_Groundtruth.dat"


def save_run(directory, vehicle, estimator=None, map=None):
    """
    Write a simulation run to ``directory``.

    Parameters
    ----------
    directory : str or path-like
        Output directory, created if missing.
    vehicle : Vehicle
        Vehicle whose true trajectory is saved. The initial pose is written
        at time 0, followed by one pose per completed step.
    estimator : ExtendedKalmanFilter, optional
        Source of odometry, observations and estimates. Odometry and
        observations are taken from its ``history``, so they are only
        written when the estimator keeps one.
    map : LandmarkMap, optional
        Landmark map. Default: the estimator's sensor map, if any.

    Returns
    -------
    str
        The output directory.
    """
    os.makedirs(directory, exist_ok=True)
    dt = vehicle.dt

    # Ground truth: [Time[s], x[m], y[m], orientation[rad]]
    poses = np.vstack((vehicle.x0, vehicle.x_hist))
    stamps = dt * np.arange(len(poses))
    groundtruth = np.column_stack((stamps, poses))

    odometry = np.zeros((0, 3))
    measurement = np.zeros((0, 4))
    estimate = np.zeros((0, 7))
    if estimator is not None:
        # Odometry: [Time[s], distance[m], heading change[rad]]
        # Measurement: [Time[s], Subject#, range[m], bearing[rad]]
        odometry_rows = []
        measurement_rows = []
        for log in estimator.history:
            if log.odo is not None:
                odometry_rows.append(np.r_[log.t, log.odo])
            for obs in log.z or []:
                lm_id = -1 if obs[2] is None else obs[2]
                measurement_rows.append([log.t, lm_id, obs[0], obs[1]])
        if odometry_rows:
            odometry = np.array(odometry_rows)
        if measurement_rows:
            measurement = np.array(measurement_rows, dtype=float)

        # Estimate: [Time[s], x[m], y[m], orientation[rad], var x, var y, var orientation]
        est = estimator.get_xyt()
        variances = np.diagonal(estimator.get_P(), axis1=1, axis2=2)
        estimate = np.column_stack((dt * np.arange(1, len(est) + 1), est, variances))

        if map is None and estimator.sensor is not None:
            map = estimator.sensor.map

    # Landmark ground truth: [Subject#, x[m], y[m]]
    landmarks = np.zeros((0, 3))
    if map is not None and len(map) > 0:
        landmarks = np.column_stack((np.arange(len(map)), map.landmarks))

    _save(directory, GROUNDTRUTH_FILE, groundtruth, "time x y theta")
    _save(directory, ODOMETRY_FILE, odometry, "time distance dtheta")
    _save(directory, MEASUREMENT_FILE, measurement, "time id range bearing")
    _save(directory, ESTIMATE_FILE, estimate, "time x y theta var_x var_y var_theta")
    _save(directory, LANDMARK_FILE, landmarks, "id x y")
    logger.info(
        "Saved run to %s: %d poses, %d odometry, %d measurements, %d landmarks",
        directory,
        len(groundtruth),
        len(odometry),
        len(measurement),
        len(landmarks),
    )
    return directory


def _save(directory, name, data, header):
    np.savetxt(os.path.join(directory, name), data, fmt="%.10g", header=header)


def _load(directory, name, ncols):
    with warnings.catch_warnings():
        # Tables with no rows only hold the header line.
        warnings.simplefilter("ignore", UserWarning)
        data = np.loadtxt(os.path.join(directory, name))
    # Ensure arrays are 2D (handle empty and single-row files)
    if data.size == 0:
        return data.reshape(0, ncols)
    if data.ndim == 1:
        return data.reshape(1, -1)
    return data


class Reader:
    """
    Reader for simulation runs written by :func:`save_run`.

    Parameters
    ----------
    directory : str or path-like
        Directory holding the five ``.dat`` tables.

    Attributes
    ----------
    groundtruth_data : ndarray of shape (n_poses, 4)
        True vehicle poses [time[s], x[m], y[m], theta[rad]].
    odometry_data : ndarray of shape (n_steps, 3)
        Measured odometry [time[s], distance[m], dtheta[rad]].
    measurement_data : ndarray of shape (n_measurements, 4)
        Observations [time[s], landmark_id, range[m], bearing[rad]];
        landmark_id is -1 for observations without id.
    estimate_data : ndarray of shape (n_steps, 7)
        Estimated pose and its variances.
    landmark_groundtruth_data : ndarray of shape (n_landmarks, 3)
        True landmark positions [landmark_id, x[m], y[m]].
    landmark_locations : dict
        Landmark position lookup table {landmark_id: [x[m], y[m]]}.

    Raises
    ------
    FileNotFoundError
        If the directory or one of the tables is missing.

    Examples
    --------
    >>> save_run("runs/ekf", veh, ekf)
    >>> reader = Reader("runs/ekf")
    >>> reader.landmark_map()
    """

    def __init__(self, directory):
        self.directory = directory
        self.load_data(directory)

    def load_data(self, directory):
        """Load all tables of a run directory."""
        self.groundtruth_data = _load(directory, GROUNDTRUTH_FILE, 4)
        self.odometry_data = _load(directory, ODOMETRY_FILE, 3)
        self.measurement_data = _load(directory, MEASUREMENT_FILE, 4)
        self.estimate_data = _load(directory, ESTIMATE_FILE, 7)
        self.landmark_groundtruth_data = _load(directory, LANDMARK_FILE, 3)

        # Lookup table to map landmark Subject# to coordinates
        self.landmark_locations = {}
        for row in self.landmark_groundtruth_data:
            self.landmark_locations[int(row[0])] = row[1:3].copy()
        logger.debug(
            "Loaded run from %s: %d poses, %d measurements",
            directory,
            len(self.groundtruth_data),
            len(self.measurement_data),
        )

    def landmark_map(self):
        """Rebuild the :class:`LandmarkMap` of the run, ordered by id."""
        ids = sorted(self.landmark_locations)
        return LandmarkMap([self.landmark_locations[i] for i in ids])

    def build_dataframes(self):
        """
        Convert the tables to time-indexed pandas DataFrames.

        Updates class attributes:
        - self.gt: true trajectory
        - self.states_df: estimated trajectory and variances
        - self.motion: odometry
        - self.sensor: landmark observations
        """
        self.gt = build_timeseries(self.groundtruth_data, cols=["stamp", "x", "y", "theta"])
        self.states_df = build_timeseries(
            self.estimate_data,
            cols=["stamp", "x", "y", "theta", "var_x", "var_y", "var_theta"],
        )
        self.motion = build_timeseries(self.odometry_data, cols=["stamp", "distance", "dtheta"])
        self.sensor = build_timeseries(
            self.measurement_data, cols=["stamp", "id", "range_l", "bearing_l"]
        )
