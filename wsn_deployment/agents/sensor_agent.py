
import logging
from typing import Any, Dict, List, Set, Tuple

from .base import Agent, Message, MessageBus, robot_agent_id, sensor_agent_id
from .messages import CommandAck, DiscoveryBroadcast, MessageType, SensorCommand, SensorReply
from ..config import EnergyProfile, SensorMode
from ..energy import EnergyAccountant
from ..spatial import Position, distance

logger = logging.getLogger(__name__)


class SensorAgent(Agent):

    def __init__(
        self,
        sensor_id: int,
        position: Position,
        message_bus: MessageBus,
        sensing_range: float,
        discovery_radius: float,
        energy_profile: EnergyProfile,
        acknowledge_commands: bool = False
    ):
        super().__init__(
            sensor_agent_id(sensor_id),
            message_bus,
            EnergyAccountant(energy_profile, sensing_range),
        )

        self.sensor_id = sensor_id
        self.sensing_range = sensing_range
        self.discovery_radius = discovery_radius
        self.acknowledge_commands = acknowledge_commands

        self._initial_position = position
        self._position = position
        self._mode = SensorMode.IDLE
        self._deployed = False

        self._answered_rounds: Set[Tuple[int, int]] = set()
        self._outbox: List[Tuple[Any, str]] = []

        self.replies_sent = 0
        self.commands_received = 0
        self.sensing_events = 0

        self.subscribe(MessageType.DISCOVERY_BROADCAST)

        logger.debug(f"SensorAgent '{self.agent_id}' at ({position.x:.0f}, {position.y:.0f})")

    @property
    def mode(self) -> SensorMode:
        return self._mode

    @property
    def position(self) -> Position:
        return self._position

    @property
    def deployed(self) -> bool:
        return self._deployed

    def reset(self):
        super().reset()
        self._position = self._initial_position
        self._mode = SensorMode.IDLE
        self._deployed = False
        self._answered_rounds.clear()
        self._outbox.clear()
        self.replies_sent = 0
        self.commands_received = 0
        self.sensing_events = 0

    def on_message(self, message: Message, record: Any):
        if isinstance(record, DiscoveryBroadcast):
            self._handle_discovery(record)
        elif isinstance(record, SensorCommand):
            self._handle_command(message, record)
        else:
            self.ignore_misaddressed(message, "not a sensor message")

    def _handle_discovery(self, record: DiscoveryBroadcast):
        key = (record.robot_id, record.round)
        if key in self._answered_rounds:
            return

        if distance(record.position, self._position) > self.discovery_radius:
            return

        self._answered_rounds.add(key)
        reply = SensorReply(
            sensor_id=self.sensor_id,
            position=self._position,
            mode=self._mode,
            robot_id=record.robot_id,
        )
        self._outbox.append((reply, robot_agent_id(record.robot_id)))

    def _handle_command(self, message: Message, command: SensorCommand):
        if command.sensor_id != self.sensor_id:
            self.ignore_misaddressed(message, f"command for sensor {command.sensor_id}")
            return

        self.commands_received += 1
        if command.target_mode == SensorMode.ACTIVE:
            if command.position is not None:
                self._position = command.position
                self._deployed = True
            self._mode = SensorMode.ACTIVE
            logger.debug(
                f"Sensor {self.sensor_id} ACTIVE at ({self._position.x:.0f}, {self._position.y:.0f})"
            )
        else:
            self._mode = SensorMode.IDLE
            logger.debug(f"Sensor {self.sensor_id} collected, now IDLE")

        if self.acknowledge_commands:
            self._outbox.append((CommandAck(self.sensor_id, self._mode), message.sender_id))

    def sense(self, environment: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "elapsed": environment.get("elapsed", 0.0),
            "mode": self._mode,
            "pending_sends": len(self._outbox),
        }

    def decide(self, observations: Dict[str, Any]) -> Dict[str, Any]:
        sends = list(self._outbox)
        self._outbox.clear()
        return {
            "elapsed": observations["elapsed"],
            "active": observations["mode"] == SensorMode.ACTIVE,
            "sends": sends,
        }

    def act(self, actions: Dict[str, Any]) -> None:
        self._accrue_energy(actions["elapsed"], actions["active"])

        for record, recipient in actions["sends"]:
            self.send(record, recipient)
            if isinstance(record, SensorReply):
                self.replies_sent += 1

    def _accrue_energy(self, elapsed: float, active: bool):
        if elapsed <= 0:
            return
        self.energy.baseline(elapsed)
        if active:
            self.energy.processing(elapsed)
            self.energy.sensing()
            self.sensing_events += 1
        else:
            self.energy.idle_radio(elapsed)

    def get_status(self) -> Dict[str, Any]:
        return {
            "sensor_id": self.sensor_id,
            "position": self._position.as_tuple(),
            "mode": self._mode.name,
            "deployed": self._deployed,
            "replies_sent": self.replies_sent,
            "commands_received": self.commands_received,
            "energy": self.energy.stats.to_dict(),
        }
