"""
Configuration settings for the WSN Deployment Simulator.
"""

import json
import math
from dataclasses import dataclass, field, fields, asdict, is_dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .exceptions import ConfigurationError


class SensorMode(Enum):
    """Sensor operating mode. Values match the wire encoding."""
    IDLE = 0
    ACTIVE = 1


class RobotPhase(Enum):
    """Robot local-phase state machine."""
    IDLE = auto()
    TOPOLOGY_DISCOVERY = auto()
    DISPERSION = auto()
    REPORTING = auto()


class CoordinatorPhase(Enum):
    """Base station global-phase state machine."""
    INIT = auto()
    READY = auto()
    RUNNING = auto()
    DONE = auto()


class AssignmentState(Enum):
    """Per-robot state as tracked by the base station."""
    ASSIGNING = auto()       # Assignment chosen, retries still scheduled
    WAITING_REPORT = auto()  # Retry schedule exhausted
    FINISHED = auto()        # No uncovered LA left for this robot


class DispersionCase(Enum):
    """The four coverage cases of the dispersion algorithm."""
    DEPLOY_AND_COLLECT = 1   # stock > 0, co-located sensors present
    DEPLOY_FROM_STOCK = 2    # stock > 0, no co-located sensors
    RELOCATE_IN_PLACE = 3    # stock == 0, co-located sensors present
    UNCOVERED = 4            # stock == 0, no co-located sensors


@dataclass
class AreaConfig:
    """Geometry of the target area."""
    target_area_size: float = 1000.0  # metres per side
    robot_range: float = 200.0        # robot perception range
    sensor_range: float = 50.0        # sensor perception range
    max_location_areas: int = 100


@dataclass
class RobotConfig:
    """Mobile robot fleet settings."""
    num_robots: int = 2
    first_robot_id: int = 2  # robot ids are node ids; 0 is the wildcard
    capacity: int = 15
    initial_stock: int = 10
    move_budget: Optional[int] = None  # None = one move per grid
    discovery_window: float = 5.0      # seconds
    max_sensor_records: int = 100
    start_positions: List[Tuple[float, float]] = field(
        default_factory=lambda: [(433.0, 531.0), (500.0, 500.0)]
    )


@dataclass
class SensorConfig:
    """Randomly scattered sensor devices."""
    num_sensors: int = 60
    first_sensor_id: int = 1
    discovery_radius: Optional[float] = None  # None = half-diagonal of an LA


@dataclass
class RetryPolicy:
    """Bounded resend schedule for LA assignment messages."""
    attempts: int = 5       # total sends, including the first
    interval: float = 10.0  # seconds between sends


@dataclass
class NetworkConfig:
    """Best-effort transport behaviour."""
    loss_probability: float = 0.0
    duplicate_probability: float = 0.0
    acknowledge_commands: bool = False
    max_attempts_per_la: int = 1


@dataclass
class EnergyProfile:
    """Power and coefficient constants for one node role (W, J/m, J/m^2)."""
    power_baseline: float = 0.003
    power_processing: float = 0.020
    power_transmit: float = 0.050
    power_receive: float = 0.030
    power_idle: float = 0.00065
    sensing_coefficient: float = 0.0005   # mu
    mobility_coefficient: float = 0.0     # tau
    bandwidth: float = 31250.0            # bytes per second (250 kbps)


def _robot_profile() -> EnergyProfile:
    return EnergyProfile(
        power_baseline=0.1,
        power_processing=0.0,
        power_transmit=0.2,
        power_receive=0.15,
        power_idle=0.0,
        sensing_coefficient=0.0,
        mobility_coefficient=0.0005,
    )


def _base_station_profile() -> EnergyProfile:
    return EnergyProfile(
        power_baseline=0.0018,
        power_processing=0.0,
        power_transmit=0.0174,
        power_receive=0.0188,
        power_idle=0.000054,
        sensing_coefficient=0.0,
    )


@dataclass
class EnergyConfig:
    """Energy profiles per node role."""
    sensor: EnergyProfile = field(default_factory=EnergyProfile)
    robot: EnergyProfile = field(default_factory=_robot_profile)
    base_station: EnergyProfile = field(default_factory=_base_station_profile)


@dataclass
class TUIConfig:
    """Configuration for the TUI."""
    refresh_rate_ms: int = 200
    log_buffer_size: int = 100
    steps_per_refresh: int = 1


@dataclass
class SystemConfig:
    """Master configuration container."""
    area: AreaConfig = field(default_factory=AreaConfig)
    robots: RobotConfig = field(default_factory=RobotConfig)
    sensors: SensorConfig = field(default_factory=SensorConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    energy: EnergyConfig = field(default_factory=EnergyConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)

    tick_interval: float = 1.0  # seconds of simulated time per step
    seed: Optional[int] = 42
    max_ticks: int = 5000

    @property
    def lattice_side(self) -> int:
        """LAs per row of the target area (before clamping)."""
        return int(self.area.target_area_size // self.area.robot_range)

    @property
    def num_location_areas(self) -> int:
        return min(self.lattice_side ** 2, self.area.max_location_areas)

    @property
    def grids_per_side(self) -> int:
        return int(self.area.robot_range // self.area.sensor_range)

    @property
    def grids_per_la(self) -> int:
        return self.grids_per_side ** 2

    @property
    def move_budget(self) -> int:
        if self.robots.move_budget is None:
            return self.grids_per_la
        return self.robots.move_budget

    @property
    def discovery_radius(self) -> float:
        if self.sensors.discovery_radius is not None:
            return self.sensors.discovery_radius
        return self.area.robot_range * math.sqrt(2) / 2

    @property
    def robot_ids(self) -> List[int]:
        first = self.robots.first_robot_id
        return list(range(first, first + self.robots.num_robots))

    def validate(self) -> "SystemConfig":
        """Check cross-field consistency. Returns self for chaining."""
        area = self.area
        if area.target_area_size <= 0 or area.robot_range <= 0 or area.sensor_range <= 0:
            raise ConfigurationError("Area size and perception ranges must be positive")
        if area.sensor_range > area.robot_range:
            raise ConfigurationError(
                f"Sensor range {area.sensor_range} exceeds robot range {area.robot_range}"
            )
        if area.robot_range > area.target_area_size:
            raise ConfigurationError("Robot range exceeds the target area size")
        if area.max_location_areas < 1:
            raise ConfigurationError("max_location_areas must be at least 1")

        robots = self.robots
        if robots.num_robots < 1:
            raise ConfigurationError("At least one robot is required")
        if robots.first_robot_id < 1:
            raise ConfigurationError("Robot id 0 is reserved for wildcard assignments")
        if robots.capacity < 0 or not 0 <= robots.initial_stock <= robots.capacity:
            raise ConfigurationError(
                f"Initial stock {robots.initial_stock} must lie in [0, {robots.capacity}]"
            )
        if robots.move_budget is not None and robots.move_budget < 0:
            raise ConfigurationError("move_budget must be non-negative")
        if robots.discovery_window < 0:
            raise ConfigurationError("discovery_window must be non-negative")

        if self.sensors.num_sensors < 0:
            raise ConfigurationError("num_sensors must be non-negative")
        if self.retry.attempts < 1 or self.retry.interval <= 0:
            raise ConfigurationError("Retry policy needs at least one attempt and a positive interval")
        for name in ("loss_probability", "duplicate_probability"):
            value = getattr(self.network, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must lie in [0, 1], got {value}")
        if self.network.max_attempts_per_la < 1:
            raise ConfigurationError("max_attempts_per_la must be at least 1")
        if self.tick_interval <= 0:
            raise ConfigurationError("tick_interval must be positive")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemConfig":
        """Build a config from (possibly partial) nested overrides."""
        config = _apply_overrides(cls(), data, "config")
        config.robots.start_positions = [
            (float(x), float(y)) for x, y in config.robots.start_positions
        ]
        return config.validate()


def _apply_overrides(target: Any, data: Dict[str, Any], path: str) -> Any:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping at '{path}', got {type(data).__name__}")

    known = {f.name for f in fields(target)}
    for key, value in data.items():
        if key not in known:
            raise ConfigurationError(f"Unknown configuration key '{path}.{key}'")
        current = getattr(target, key)
        if is_dataclass(current):
            _apply_overrides(current, value, f"{path}.{key}")
        else:
            setattr(target, key, value)
    return target


def load_config(path: Union[str, Path]) -> SystemConfig:
    """Load a JSON configuration file on top of the defaults."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
    return SystemConfig.from_dict(data)


# Global default configuration
DEFAULT_CONFIG = SystemConfig()
