"""Vehicle models and drivers: Unicycle, Bicycle, RandomPath."""

from .base import Vehicle
from .bicycle import Bicycle
from .driver import RandomPath
from .unicycle import Unicycle

__all__ = ["Vehicle", "Unicycle", "Bicycle", "RandomPath"]
