"""
Spatial partitioning helpers.

Pure functions that split a square region into a deterministic lattice
of square cells, plus the Euclidean geometry used for nearest-neighbour
selection. Location areas and grids are both produced here.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class Position:
    """A point in the target area (metres)."""
    x: float
    y: float

    def distance_to(self, other: "Position") -> float:
        return distance(self, other)

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)


@dataclass(frozen=True)
class Cell:
    """One lattice cell: sequential id (from 1) and its center."""
    cell_id: int
    center: Position


def distance(a: Position, b: Position) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def lattice(origin: Position, cell_size: float, side: int, max_cells: Optional[int] = None) -> List[Cell]:
    """
    Partition a square starting at ``origin`` into ``side x side`` cells.

    Cells are numbered from 1 in row-major order (y outer, x inner) and
    centered at ``origin + (index + 0.5) * cell_size``. When ``max_cells``
    is given the lattice is truncated in the same order.
    """
    limit = side * side if max_cells is None else min(side * side, max_cells)
    cells = []
    for row in range(side):
        for col in range(side):
            if len(cells) >= limit:
                return cells
            center = Position(
                origin.x + (col + 0.5) * cell_size,
                origin.y + (row + 0.5) * cell_size,
            )
            cells.append(Cell(cell_id=len(cells) + 1, center=center))
    return cells


def tile_location_areas(area_size: float, robot_range: float, max_areas: int) -> List[Cell]:
    """Tile the target area with robot-range cells; excess area is not tiled."""
    side = int(area_size // robot_range)
    return lattice(Position(0.0, 0.0), robot_range, side, max_cells=max_areas)


def partition_grids(la_center: Position, robot_range: float, sensor_range: float) -> List[Cell]:
    """Split one location area into sensor-range grids."""
    side = int(robot_range // sensor_range)
    corner = Position(la_center.x - robot_range / 2, la_center.y - robot_range / 2)
    return lattice(corner, sensor_range, side)


def nearest_index(origin: Position, points: Sequence[Position]) -> Optional[int]:
    """
    Index of the point closest to ``origin``.

    Ties resolve to the lowest index, so callers that keep points sorted
    by id get lowest-id tie breaking.
    """
    if not points:
        return None
    coords = np.array([[p.x, p.y] for p in points], dtype=float)
    dists = np.hypot(coords[:, 0] - origin.x, coords[:, 1] - origin.y)
    return int(np.argmin(dists))


def within_radius(origin: Position, points: Sequence[Position], radius: float) -> List[int]:
    """Indices (in input order) of points no farther than ``radius``."""
    if not points:
        return []
    coords = np.array([[p.x, p.y] for p in points], dtype=float)
    dists = np.hypot(coords[:, 0] - origin.x, coords[:, 1] - origin.y)
    return [int(i) for i in np.flatnonzero(dists <= radius)]
