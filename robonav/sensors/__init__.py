"""Exteroceptive sensors: range-bearing landmark sensor."""

from .range_bearing import Observation, RangeBearingSensor

__all__ = ["Observation", "RangeBearingSensor"]
