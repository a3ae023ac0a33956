from .clock import SimulationClock
from .field import SensorField, SensorPlacement

__all__ = ["SimulationClock", "SensorField", "SensorPlacement"]
