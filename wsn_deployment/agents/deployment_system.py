import logging
from typing import Any, Dict, List, Optional

from .base import MessageBus
from .coordinator_agent import BaseStationCoordinator
from .robot_agent import RobotAgent
from .sensor_agent import SensorAgent
from ..config import SensorMode, SystemConfig, DEFAULT_CONFIG
from ..simulation.clock import SimulationClock
from ..simulation.field import SensorPlacement
from ..spatial import Position

logger = logging.getLogger(__name__)


class DeploymentSystem:
    """
    Cooperative scheduler for one base station, N robots and M sensors.

    Every tick advances the simulated clock and steps each agent once in
    a fixed order (base station, robots, sensors). Agents only talk
    through the message bus.
    """

    def __init__(
        self,
        placements: List[SensorPlacement],
        config: Optional[SystemConfig] = None
    ):
        self.config = config or DEFAULT_CONFIG
        self.placements = placements

        self.message_bus = MessageBus(
            loss_probability=self.config.network.loss_probability,
            duplicate_probability=self.config.network.duplicate_probability,
            seed=self.config.seed,
        )
        self.clock = SimulationClock(self.config.tick_interval)

        self.coordinator: Optional[BaseStationCoordinator] = None
        self.robot_agents: Dict[int, RobotAgent] = {}
        self.sensor_agents: Dict[int, SensorAgent] = {}

        self._initialized = False

        logger.info(
            f"DeploymentSystem created for {self.config.robots.num_robots} robots, "
            f"{len(placements)} sensors"
        )

    @property
    def tick(self) -> int:
        return self.clock.ticks

    @property
    def is_done(self) -> bool:
        return self.coordinator is not None and self.coordinator.is_done

    def _start_position(self, index: int) -> Position:
        positions = self.config.robots.start_positions
        if index < len(positions):
            x, y = positions[index]
            return Position(float(x), float(y))
        half = self.config.lattice_side * self.config.area.robot_range / 2
        return Position(half, half)

    def initialize(self) -> None:
        if self._initialized:
            logger.warning("DeploymentSystem already initialized")
            return

        config = self.config
        self.coordinator = BaseStationCoordinator(self.message_bus, config)

        for index, robot_id in enumerate(config.robot_ids):
            self.robot_agents[robot_id] = RobotAgent(
                robot_id=robot_id,
                message_bus=self.message_bus,
                area=config.area,
                settings=config.robots,
                energy_profile=config.energy.robot,
                start_position=self._start_position(index),
                expect_acks=config.network.acknowledge_commands,
            )

        for placement in self.placements:
            self.sensor_agents[placement.sensor_id] = SensorAgent(
                sensor_id=placement.sensor_id,
                position=placement.position,
                message_bus=self.message_bus,
                sensing_range=config.area.sensor_range,
                discovery_radius=config.discovery_radius,
                energy_profile=config.energy.sensor,
                acknowledge_commands=config.network.acknowledge_commands,
            )

        self._initialized = True
        self.coordinator.initialize()
        self.coordinator.start(self.robot_agents.keys())

        logger.info(
            f"DeploymentSystem initialized: 1 base station, {len(self.robot_agents)} robots, "
            f"{len(self.sensor_agents)} sensors, {self.coordinator.num_location_areas} location areas"
        )

    def reset(self) -> None:
        if not self._initialized:
            return

        self.coordinator.reset()
        for agent in self.robot_agents.values():
            agent.reset()
        for agent in self.sensor_agents.values():
            agent.reset()

        self.message_bus.reset()
        self.clock.reset()

        self.coordinator.initialize()
        self.coordinator.start(self.robot_agents.keys())
        logger.info("DeploymentSystem reset complete")

    def step(self) -> Dict[str, Any]:
        if not self._initialized:
            raise RuntimeError("DeploymentSystem not initialized. Call initialize() first.")

        elapsed = self.clock.advance()
        environment = self.clock.environment(elapsed)

        self.coordinator.step(environment)
        for agent in self.robot_agents.values():
            agent.step(environment)
        for agent in self.sensor_agents.values():
            agent.step(environment)

        return self.get_system_status()

    def run(self, max_ticks: Optional[int] = None) -> int:
        """Step until the base station is done or ``max_ticks`` is reached."""
        limit = self.config.max_ticks if max_ticks is None else max_ticks
        steps = 0
        while not self.is_done and steps < limit:
            self.step()
            steps += 1
        if not self.is_done:
            logger.warning(f"Deployment not finished after {steps} ticks")
        return steps

    def node_energy(self) -> Dict[str, float]:
        energy = {self.coordinator.agent_id: self.coordinator.energy.total}
        for agent in self.robot_agents.values():
            energy[agent.agent_id] = agent.energy.total
        for agent in self.sensor_agents.values():
            energy[agent.agent_id] = agent.energy.total
        return energy

    def total_network_energy(self) -> float:
        return self.coordinator.total_network_energy(self.node_energy())

    def active_sensors(self) -> List[SensorAgent]:
        return [s for s in self.sensor_agents.values() if s.mode == SensorMode.ACTIVE]

    def get_system_status(self) -> Dict[str, Any]:
        if not self._initialized:
            return {"error": "Not initialized"}

        robot_energy = sum(a.energy.total for a in self.robot_agents.values())
        sensor_energy = sum(a.energy.total for a in self.sensor_agents.values())

        return {
            "tick": self.clock.ticks,
            "sim_time": self.clock.time,
            "done": self.is_done,
            "coordinator": self.coordinator.get_status(),
            "robots": {rid: agent.get_status() for rid, agent in self.robot_agents.items()},
            "sensor_count": len(self.sensor_agents),
            "active_sensors": len(self.active_sensors()),
            "relocated_sensors": sum(1 for s in self.sensor_agents.values() if s.deployed),
            "coverage_percentage": self.coordinator.coverage_percentage,
            "energy": {
                "base_station": self.coordinator.energy.total,
                "robots": robot_energy,
                "sensors": sensor_energy,
                "total": self.total_network_energy(),
            },
            "bus": {
                "published": self.message_bus.stats.published,
                "delivered": self.message_bus.stats.delivered,
                "dropped": self.message_bus.stats.dropped,
                "duplicated": self.message_bus.stats.duplicated,
            },
        }

    def get_agent_summary(self) -> str:
        if not self._initialized:
            return "System not initialized"

        coord = self.coordinator.get_status()
        lines = [
            "=== Deployment System Summary ===",
            f"Total Agents: {1 + len(self.robot_agents) + len(self.sensor_agents)}",
            "",
            "BASE STATION:",
            f"  • phase={coord['phase']}, LAs={coord['location_areas']}, "
            f"covered grids={coord['total_covered_grids']}, "
            f"coverage={coord['coverage_percentage']:.1f}%",
            "",
            "ROBOT AGENTS:",
        ]

        for agent in self.robot_agents.values():
            status = agent.get_status()
            lines.append(
                f"  • {agent.agent_id}: phase={status['phase']}, LA={status['la_id']}, "
                f"stock={status['stock']}/{status['capacity']}, "
                f"LAs done={status['las_completed']}, "
                f"travelled={status['distance_travelled']:.0f}m"
            )

        lines.extend([
            "",
            "SENSOR AGENTS:",
            f"  • {len(self.sensor_agents)} total, {len(self.active_sensors())} active",
        ])

        return "\n".join(lines)
