"""Localization algorithms: Dead Reckoning, EKF."""

from .dead_reckoning import DeadReckoning
from .EKF import EKFLog, EstimatorState, ExtendedKalmanFilter

__all__ = ["DeadReckoning", "EKFLog", "EstimatorState", "ExtendedKalmanFilter"]
