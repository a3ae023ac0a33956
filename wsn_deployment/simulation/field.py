import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from ..config import SystemConfig
from ..spatial import Position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SensorPlacement:
    sensor_id: int
    position: Position


class SensorField:
    """
    Initial random placement of sensor devices over the target area.

    Sensors are scattered uniformly over the tiled part of the area, the
    way the devices would land after an air drop.
    """

    def __init__(self, config: SystemConfig, seed: Optional[int] = None):
        self.config = config
        self.seed = config.seed if seed is None else seed
        self._placements: List[SensorPlacement] = []

    @property
    def placements(self) -> List[SensorPlacement]:
        return list(self._placements)

    @property
    def extent(self) -> float:
        """Side length of the area actually tiled by location areas."""
        return self.config.lattice_side * self.config.area.robot_range

    def scatter(self) -> List[SensorPlacement]:
        rng = np.random.default_rng(self.seed)
        count = self.config.sensors.num_sensors
        coords = rng.uniform(0.0, self.extent, size=(count, 2))

        first = self.config.sensors.first_sensor_id
        self._placements = [
            SensorPlacement(first + i, Position(float(x), float(y)))
            for i, (x, y) in enumerate(coords)
        ]
        logger.info(f"Scattered {count} sensors over {self.extent:.0f}m x {self.extent:.0f}m (seed={self.seed})")
        return self.placements

    def density(self) -> float:
        """Sensors per location area."""
        if self.config.num_location_areas == 0:
            return 0.0
        return len(self._placements) / self.config.num_location_areas
