"""
Static map of point landmarks.

A :class:`LandmarkMap` is an ordered, immutable set of 2-D landmark
positions. The position of a landmark's row is its id, so ids run from 0 to
N-1. Spatial queries are answered by a k-d tree built once at construction.
"""

import numbers

import numpy as np
from scipy.spatial import KDTree

from robonav.errors import ConfigurationError, OutOfRangeError
from robonav.utils.data_utils import parse_workspace


class LandmarkMap:
    """
    Fixed set of 2-D landmarks indexed by integer id.

    Parameters
    ----------
    landmarks : array_like, shape (N, 2)
        Landmark coordinates [x, y], one row per landmark.
    workspace : float or array_like, optional
        Extent of the mapped area, used for plotting. Default: bounding box
        of the landmarks.

    Examples
    --------
    >>> lm_map = LandmarkMap([[1.0, 2.0], [-3.0, 0.5]])
    >>> lm_map.landmark(1)
    array([-3. ,  0.5])
    >>> lm_map.nearest([0.0, 2.0])
    (0, 1.0)
    """

    def __init__(self, landmarks, workspace=None):
        try:
            landmarks = np.array(landmarks, dtype=float)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("landmarks must be numeric") from exc
        if landmarks.size == 0:
            landmarks = landmarks.reshape(0, 2)
        if landmarks.ndim != 2 or landmarks.shape[1] != 2:
            raise ConfigurationError(
                f"landmarks must have shape (N, 2), got {landmarks.shape}"
            )
        if not np.all(np.isfinite(landmarks)):
            raise ConfigurationError("landmarks contain non-finite coordinates")
        landmarks.setflags(write=False)
        self._landmarks = landmarks

        if workspace is not None:
            self._workspace = parse_workspace(workspace)
        elif len(landmarks) > 0:
            lo = landmarks.min(axis=0)
            hi = landmarks.max(axis=0)
            self._workspace = np.r_[lo[0], hi[0], lo[1], hi[1]]
        else:
            self._workspace = np.zeros(4)

        self._tree = KDTree(landmarks.copy()) if len(landmarks) > 0 else None

    @classmethod
    def random(cls, nlandmarks, workspace=10, seed=0):
        """
        Create a map of landmarks drawn uniformly inside a workspace.

        Parameters
        ----------
        nlandmarks : int
            Number of landmarks.
        workspace : float or array_like, optional
            Scalar ``w`` for ``[-w, w, -w, w]`` or ``[xmin, xmax, ymin, ymax]``.
        seed : int or None, optional
            Random seed.
        """
        if int(nlandmarks) != nlandmarks or nlandmarks < 0:
            raise ConfigurationError("nlandmarks must be a non-negative integer")
        ws = parse_workspace(workspace)
        rng = np.random.default_rng(seed)
        landmarks = rng.uniform(ws[[0, 2]], ws[[1, 3]], size=(int(nlandmarks), 2))
        return cls(landmarks, workspace=ws)

    @property
    def landmarks(self):
        """Read-only (N, 2) array of landmark coordinates."""
        return self._landmarks

    @property
    def workspace(self):
        return self._workspace.copy()

    def __len__(self):
        return len(self._landmarks)

    def __iter__(self):
        return iter(self._landmarks)

    def __getitem__(self, lm_id):
        return self.landmark(lm_id)

    def landmark(self, lm_id):
        """
        Position of landmark ``lm_id``.

        Raises
        ------
        OutOfRangeError
            If ``lm_id`` is not an integer id present in the map.
        """
        if (
            isinstance(lm_id, (bool, np.bool_))
            or not isinstance(lm_id, numbers.Integral)
            or not 0 <= lm_id < len(self._landmarks)
        ):
            raise OutOfRangeError(
                f"Unknown landmark id {lm_id!r}, map has {len(self._landmarks)} landmarks"
            )
        return self._landmarks[int(lm_id)].copy()

    def nearest(self, point):
        """
        Landmark closest to ``point``.

        Returns
        -------
        tuple of (int, float)
            Landmark id and its Euclidean distance to ``point``.
        """
        if self._tree is None:
            raise OutOfRangeError("map has no landmarks")
        distance, lm_id = self._tree.query(np.asarray(point, dtype=float)[:2])
        return int(lm_id), float(distance)

    def within(self, point, radius):
        """Sorted array of the ids of landmarks within ``radius`` of ``point``."""
        if self._tree is None:
            return np.zeros(0, dtype=int)
        ids = self._tree.query_ball_point(np.asarray(point, dtype=float)[:2], radius)
        return np.array(sorted(ids), dtype=int)

    def __str__(self):
        return f"LandmarkMap object: {len(self)} landmarks, workspace {self._workspace}"
