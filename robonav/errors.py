"""
Exception hierarchy for the vehicle simulation and estimation toolkit.

All errors derive from :class:`RoboNavError` and also from the closest
built-in exception, so callers can catch either ``ConfigurationError`` or a
plain ``ValueError``.
"""


class RoboNavError(Exception):
    """Base class for all toolkit errors."""


class ConfigurationError(RoboNavError, ValueError):
    """Invalid dimensions, signs or limits passed at construction time."""


class OutOfRangeError(RoboNavError, IndexError):
    """Landmark id not present in the map or the estimated state."""


class NumericDegeneracyError(RoboNavError, ArithmeticError):
    """Innovation covariance is singular or too badly conditioned to invert.

    Raised inside an estimator update and handled there by skipping the
    offending observation.
    """


class SequenceError(RoboNavError, RuntimeError):
    """Lifecycle misuse, e.g. ``update`` without a preceding ``predict``."""
