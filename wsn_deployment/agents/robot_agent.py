"""
Mobile robot agent.

Works one location area at a time: moves to its center, splits it into
grids, discovers nearby sensors, then visits grids nearest-first and
applies one of four coverage cases per visit until the move budget or
the uncovered grids run out. The covered-grid count is reported to the
base station and the robot waits for its next assignment.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from .base import Agent, Message, MessageBus, BASE_STATION_ID, sensor_agent_id
from .messages import (
    WILDCARD_ROBOT_ID,
    CommandAck,
    DiscoveryBroadcast,
    LAAssignment,
    RobotReport,
    SensorCommand,
    SensorReply,
)
from ..config import AreaConfig, DispersionCase, EnergyProfile, RobotConfig, RobotPhase, SensorMode
from ..energy import EnergyAccountant
from ..spatial import Position, distance, nearest_index, partition_grids, within_radius

logger = logging.getLogger(__name__)


@dataclass
class Grid:
    grid_id: int
    center: Position
    covered: bool = False


@dataclass
class SensorRecord:
    """The robot's last known view of one sensor."""
    sensor_id: int
    position: Position
    mode: SensorMode


@dataclass
class DispersionOutcome:
    """What happened during one grid visit."""
    grid_id: int
    case: DispersionCase
    stock_before: int
    stock_after: int
    distance: float
    activated: Optional[int] = None
    collected: List[int] = field(default_factory=list)

    @property
    def covered(self) -> bool:
        return self.case != DispersionCase.UNCOVERED


class RobotAgent(Agent):

    def __init__(
        self,
        robot_id: int,
        message_bus: MessageBus,
        area: AreaConfig,
        settings: RobotConfig,
        energy_profile: EnergyProfile,
        start_position: Position,
        expect_acks: bool = False
    ):
        super().__init__(f"robot_{robot_id}", message_bus, EnergyAccountant(energy_profile))

        self.robot_id = robot_id
        self.robot_range = area.robot_range
        self.sensor_range = area.sensor_range
        self.capacity = settings.capacity
        self.initial_stock = settings.initial_stock
        self.discovery_window = settings.discovery_window
        self.max_sensor_records = settings.max_sensor_records
        self.expect_acks = expect_acks

        grids_per_la = int(area.robot_range // area.sensor_range) ** 2
        self.move_budget = grids_per_la if settings.move_budget is None else settings.move_budget

        self._start_position = start_position
        self._position = start_position
        self._phase = RobotPhase.IDLE
        self._stock = self.initial_stock

        self._la_id: Optional[int] = None
        self._la_center: Optional[Position] = None
        self._grids: List[Grid] = []
        self._sensors: Dict[int, SensorRecord] = {}
        self._moves_remaining = 0
        self._moves_made = 0
        self._discovery_round = 0
        self._discovery_deadline = 0.0

        self._pending_assignment: Optional[LAAssignment] = None
        self._completed_reports: Dict[int, RobotReport] = {}
        self._report_resends: List[RobotReport] = []
        self._awaiting_ack: Set[int] = set()
        self._last_outcomes: List[DispersionOutcome] = []

        self.stall_ticks = 0
        self.dropped_replies = 0
        self.late_replies = 0
        self.commands_sent = 0
        self.acks_received = 0
        self.las_completed = 0
        self.case_counts: Counter = Counter()

        logger.info(
            f"RobotAgent '{self.agent_id}' at ({start_position.x:.0f}, {start_position.y:.0f}), "
            f"stock {self._stock}/{self.capacity}, move budget {self.move_budget}"
        )

    @property
    def phase(self) -> RobotPhase:
        return self._phase

    @property
    def position(self) -> Position:
        return self._position

    @property
    def stock(self) -> int:
        return self._stock

    @property
    def la_id(self) -> Optional[int]:
        return self._la_id

    @property
    def moves_made(self) -> int:
        return self._moves_made

    @property
    def moves_remaining(self) -> int:
        return self._moves_remaining

    @property
    def grids(self) -> List[Grid]:
        return list(self._grids)

    @property
    def sensor_records(self) -> List[SensorRecord]:
        return list(self._sensors.values())

    @property
    def covered_grids(self) -> int:
        return sum(1 for g in self._grids if g.covered)

    @property
    def last_outcomes(self) -> List[DispersionOutcome]:
        return list(self._last_outcomes)

    @property
    def unacknowledged_commands(self) -> int:
        return len(self._awaiting_ack)

    def reset(self):
        super().reset()
        self._position = self._start_position
        self._phase = RobotPhase.IDLE
        self._stock = self.initial_stock
        self._la_id = None
        self._la_center = None
        self._grids.clear()
        self._sensors.clear()
        self._moves_remaining = 0
        self._moves_made = 0
        self._discovery_round = 0
        self._discovery_deadline = 0.0
        self._pending_assignment = None
        self._completed_reports.clear()
        self._report_resends.clear()
        self._awaiting_ack.clear()
        self._last_outcomes.clear()
        self.stall_ticks = 0
        self.dropped_replies = 0
        self.late_replies = 0
        self.commands_sent = 0
        self.acks_received = 0
        self.las_completed = 0
        self.case_counts.clear()

    # Message handling

    def on_message(self, message: Message, record: Any):
        if isinstance(record, LAAssignment):
            self._handle_assignment(message, record)
        elif isinstance(record, SensorReply):
            self._handle_sensor_reply(message, record)
        elif isinstance(record, CommandAck):
            self.acks_received += 1
            self._awaiting_ack.discard(record.sensor_id)
        else:
            self.ignore_misaddressed(message, "not a robot message")

    def _handle_assignment(self, message: Message, assignment: LAAssignment):
        if assignment.robot_id not in (self.robot_id, WILDCARD_ROBOT_ID):
            self.ignore_misaddressed(message, f"assignment for robot {assignment.robot_id}")
            return

        cached = self._completed_reports.get(assignment.la_id)
        if cached is not None:
            # Our report was lost or is still in flight; repeat it.
            if cached not in self._report_resends:
                self._report_resends.append(cached)
            return

        if self._phase != RobotPhase.IDLE or self._pending_assignment is not None:
            if assignment.la_id != self._la_id:
                logger.debug(f"Robot_{self.robot_id} busy, ignoring assignment for LA_{assignment.la_id}")
            return

        self._pending_assignment = assignment

    def _handle_sensor_reply(self, message: Message, reply: SensorReply):
        if reply.robot_id != self.robot_id:
            self.ignore_misaddressed(message, f"reply meant for robot {reply.robot_id}")
            return
        if self._phase != RobotPhase.TOPOLOGY_DISCOVERY:
            self.late_replies += 1
            return
        self.upsert_sensor(reply)

    def upsert_sensor(self, reply: SensorReply) -> bool:
        """Insert or refresh a sensor record. Returns False if the table is full."""
        record = self._sensors.get(reply.sensor_id)
        if record is not None:
            record.position = reply.position
            record.mode = reply.mode
            return True
        if len(self._sensors) >= self.max_sensor_records:
            self.dropped_replies += 1
            return False
        self._sensors[reply.sensor_id] = SensorRecord(reply.sensor_id, reply.position, reply.mode)
        logger.debug(
            f"Robot_{self.robot_id} discovered Sensor_{reply.sensor_id} at "
            f"({reply.position.x:.0f}, {reply.position.y:.0f}), {reply.mode.name}"
        )
        return True

    # Sense-Decide-Act

    def sense(self, environment: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "elapsed": environment.get("elapsed", 0.0),
            "phase": self._phase,
            "assignment": self._pending_assignment,
            "discovery_expired": (
                self._phase == RobotPhase.TOPOLOGY_DISCOVERY
                and self._current_time >= self._discovery_deadline
            ),
            "can_disperse": self._moves_remaining > 0 and any(not g.covered for g in self._grids),
        }

    def decide(self, observations: Dict[str, Any]) -> Dict[str, Any]:
        phase = observations["phase"]
        transition = "wait"

        if phase == RobotPhase.IDLE and observations["assignment"] is not None:
            transition = "begin_local_phase"
        elif phase == RobotPhase.TOPOLOGY_DISCOVERY and observations["discovery_expired"]:
            transition = "begin_dispersion"
        elif phase == RobotPhase.DISPERSION:
            transition = "disperse" if observations["can_disperse"] else "finish_dispersion"
        elif phase == RobotPhase.REPORTING:
            transition = "report"

        return {
            "elapsed": observations["elapsed"],
            "transition": transition,
            "resend_reports": list(self._report_resends),
        }

    def act(self, actions: Dict[str, Any]) -> None:
        if actions["elapsed"] > 0:
            self.energy.baseline(actions["elapsed"])

        for report in actions["resend_reports"]:
            logger.info(f"Robot_{self.robot_id} repeating report for LA_{report.la_id}")
            self.send(report, BASE_STATION_ID)
        self._report_resends.clear()

        transition = actions["transition"]
        if transition == "begin_local_phase":
            assignment = self._pending_assignment
            self._pending_assignment = None
            self.begin_local_phase(assignment)
        elif transition == "begin_dispersion":
            self.begin_dispersion()
        elif transition == "disperse":
            self.dispersion_step()
            if self._moves_remaining == 0 or self.covered_grids == len(self._grids):
                self._phase = RobotPhase.REPORTING
        elif transition == "finish_dispersion":
            self._phase = RobotPhase.REPORTING
        elif transition == "report":
            self.report()
        elif self._phase == RobotPhase.IDLE:
            self.stall_ticks += 1

    # Local phase

    def begin_local_phase(self, assignment: LAAssignment):
        """Idle -> TopologyDiscovery for a newly assigned location area."""
        self._la_id = assignment.la_id
        self._la_center = assignment.center
        self._grids.clear()
        self._sensors.clear()
        self._last_outcomes.clear()
        self._moves_remaining = self.move_budget
        self._moves_made = 0
        self.stall_ticks = 0

        logger.info(
            f"Robot_{self.robot_id} assigned LA_{assignment.la_id} at "
            f"({assignment.center.x:.0f}, {assignment.center.y:.0f})"
        )

        self._move_to(assignment.center)

        cells = partition_grids(assignment.center, self.robot_range, self.sensor_range)
        self._grids = [Grid(cell.cell_id, cell.center) for cell in cells]
        logger.debug(f"Robot_{self.robot_id} divided LA_{assignment.la_id} into {len(self._grids)} grids")

        self._discovery_round += 1
        self.broadcast(DiscoveryBroadcast(self.robot_id, self._position, self._discovery_round))
        self._discovery_deadline = self._current_time + self.discovery_window
        self._phase = RobotPhase.TOPOLOGY_DISCOVERY

    def begin_dispersion(self):
        """TopologyDiscovery -> Dispersion once the discovery window closes."""
        self._moves_remaining = self.move_budget
        self._moves_made = 0
        self._phase = RobotPhase.DISPERSION
        logger.info(
            f"Robot_{self.robot_id} found {len(self._sensors)} sensors in LA_{self._la_id}; "
            f"dispersing with NO_P={self._moves_remaining}, stock={self._stock}"
        )

    def dispersion_step(self) -> Optional[DispersionOutcome]:
        """Visit the nearest uncovered grid and apply one coverage case."""
        uncovered = [g for g in self._grids if not g.covered]
        if self._moves_remaining <= 0 or not uncovered:
            return None

        grid = uncovered[nearest_index(self._position, [g.center for g in uncovered])]
        travelled = self._move_to(grid.center)
        co_located = self._co_located(grid)
        stock_before = self._stock

        outcome = DispersionOutcome(
            grid_id=grid.grid_id,
            case=DispersionCase.UNCOVERED,
            stock_before=stock_before,
            stock_after=stock_before,
            distance=travelled,
        )

        if self._stock > 0 and co_located:
            outcome.case = DispersionCase.DEPLOY_AND_COLLECT
            self._stock -= 1
            grid.covered = True
            outcome.collected = self._collect(co_located)
        elif self._stock > 0:
            outcome.case = DispersionCase.DEPLOY_FROM_STOCK
            self._stock -= 1
            grid.covered = True
        elif co_located:
            outcome.case = DispersionCase.RELOCATE_IN_PLACE
            chosen = co_located[0]
            self._command(SensorCommand(chosen, SensorMode.ACTIVE, grid.center))
            record = self._sensors[chosen]
            record.position = grid.center
            record.mode = SensorMode.ACTIVE
            grid.covered = True
            outcome.activated = chosen
            outcome.collected = self._collect(co_located[1:])

        self._moves_remaining -= 1
        self._moves_made += 1
        outcome.stock_after = self._stock
        self.case_counts[outcome.case] += 1
        self._last_outcomes.append(outcome)

        logger.debug(
            f"Robot_{self.robot_id} Grid_{grid.grid_id}: {outcome.case.name} "
            f"(stock {stock_before}->{self._stock}, collected {len(outcome.collected)}, "
            f"NO_P={self._moves_remaining})"
        )
        return outcome

    def _co_located(self, grid: Grid) -> List[int]:
        """Idle sensors within half a sensor range of the grid center, in discovery order."""
        idle = [r for r in self._sensors.values() if r.mode == SensorMode.IDLE]
        hits = within_radius(grid.center, [r.position for r in idle], self.sensor_range / 2)
        return [idle[i].sensor_id for i in hits]

    def _collect(self, sensor_ids: List[int]) -> List[int]:
        collected = []
        for sensor_id in sensor_ids:
            if self._stock >= self.capacity:
                break
            del self._sensors[sensor_id]
            self._stock += 1
            self._command(SensorCommand(sensor_id, SensorMode.IDLE))
            collected.append(sensor_id)
        return collected

    def _command(self, command: SensorCommand):
        self.send(command, sensor_agent_id(command.sensor_id))
        self.commands_sent += 1
        if self.expect_acks:
            self._awaiting_ack.add(command.sensor_id)

    def _move_to(self, target: Position) -> float:
        travelled = distance(self._position, target)
        self._position = target
        if travelled > 0:
            self.energy.mobility(travelled)
        return travelled

    def report(self) -> RobotReport:
        """Reporting -> Idle: send the covered-grid count to the base station."""
        report = RobotReport(self.robot_id, self.covered_grids, self._la_id)
        # A 0 report leaves the LA open; reassigning it starts a fresh attempt
        if report.covered_grids > 0:
            self._completed_reports[self._la_id] = report
        else:
            self._completed_reports.pop(self._la_id, None)
        self.las_completed += 1
        self.send(report, BASE_STATION_ID)

        logger.info(
            f"Robot_{self.robot_id} completed LA_{self._la_id}: "
            f"{report.covered_grids}/{len(self._grids)} grids covered in {self._moves_made} moves"
        )

        self._stock = self.initial_stock
        self._phase = RobotPhase.IDLE
        return report

    def get_status(self) -> Dict[str, Any]:
        return {
            "robot_id": self.robot_id,
            "phase": self._phase.name,
            "la_id": self._la_id,
            "position": self._position.as_tuple(),
            "stock": self._stock,
            "capacity": self.capacity,
            "moves_made": self._moves_made,
            "moves_remaining": self._moves_remaining,
            "covered_grids": self.covered_grids,
            "total_grids": len(self._grids),
            "sensors_known": len(self._sensors),
            "las_completed": self.las_completed,
            "commands_sent": self.commands_sent,
            "unacknowledged_commands": self.unacknowledged_commands,
            "stall_ticks": self.stall_ticks,
            "distance_travelled": self.energy.distance_travelled,
            "energy": self.energy.stats.to_dict(),
        }
