"""
Base station coordinator.

Owns the location-area table and the per-robot assignment table and runs
the global phase: hand every robot the lowest-id LA that is neither
covered nor held by another robot, resend the assignment on a bounded
schedule until the robot reports, record the reported coverage (first
report for an LA wins) and reassign. The run is done once no robot can
be given another LA.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional

from .base import Agent, Message, MessageBus, BASE_STATION_ID, robot_agent_id
from .messages import LAAssignment, RobotReport
from ..config import AssignmentState, CoordinatorPhase, SystemConfig
from ..energy import EnergyAccountant
from ..spatial import Position, tile_location_areas

logger = logging.getLogger(__name__)


@dataclass
class LocationArea:
    la_id: int
    center: Position
    covered_grids: int = 0   # 0 = not yet reported
    reported_by: Optional[int] = None
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["center"] = self.center.as_tuple()
        return data


@dataclass
class RobotAssignment:
    robot_id: int
    la_id: Optional[int] = None
    state: AssignmentState = AssignmentState.ASSIGNING
    sends_made: int = 0
    next_send_time: float = 0.0
    stall_ticks: int = 0
    las_completed: int = 0


class BaseStationCoordinator(Agent):

    def __init__(self, message_bus: MessageBus, config: SystemConfig):
        super().__init__(
            BASE_STATION_ID,
            message_bus,
            EnergyAccountant(config.energy.base_station),
        )

        self.config = config
        self.grids_per_la = config.grids_per_la
        self.retry = config.retry
        self.max_attempts_per_la = config.network.max_attempts_per_la

        self._phase = CoordinatorPhase.INIT
        self._las: Dict[int, LocationArea] = {}
        self._assignments: Dict[int, RobotAssignment] = {}
        self._pending_reports: List[RobotReport] = []

        self.total_covered_grids = 0
        self.reports_applied = 0
        self.duplicate_reports = 0
        self.stale_reports = 0
        self.assignment_sends = 0

        logger.info(f"BaseStationCoordinator initialized ({self.grids_per_la} grids per LA)")

    @property
    def phase(self) -> CoordinatorPhase:
        return self._phase

    @property
    def num_location_areas(self) -> int:
        return len(self._las)

    @property
    def is_done(self) -> bool:
        return self._phase == CoordinatorPhase.DONE

    @property
    def coverage_percentage(self) -> float:
        possible = len(self._las) * self.grids_per_la
        if possible == 0:
            return 0.0
        return 100.0 * self.total_covered_grids / possible

    def reset(self):
        super().reset()
        self._phase = CoordinatorPhase.INIT
        self._las.clear()
        self._assignments.clear()
        self._pending_reports.clear()
        self.total_covered_grids = 0
        self.reports_applied = 0
        self.duplicate_reports = 0
        self.stale_reports = 0
        self.assignment_sends = 0

    def initialize(self, target_area_size: Optional[float] = None, robot_range: Optional[float] = None):
        """Init -> Ready: tile the target area into location areas."""
        area = self.config.area
        size = area.target_area_size if target_area_size is None else target_area_size
        rng = area.robot_range if robot_range is None else robot_range

        cells = tile_location_areas(size, rng, area.max_location_areas)
        self._las = {cell.cell_id: LocationArea(cell.cell_id, cell.center) for cell in cells}
        self.total_covered_grids = 0
        self._phase = CoordinatorPhase.READY

        logger.info(f"Base station tiled {size:.0f}m area into {len(self._las)} location areas")

    def start(self, robot_ids: Iterable[int]):
        """Ready -> Running: give every robot its first location area."""
        if self._phase == CoordinatorPhase.INIT:
            self.initialize()

        self._phase = CoordinatorPhase.RUNNING
        for robot_id in robot_ids:
            self._assignments[robot_id] = RobotAssignment(robot_id)
            self.assign(robot_id)
        self._check_done()

    def assign(self, robot_id: int) -> Optional[LocationArea]:
        """
        Hand ``robot_id`` the lowest-id uncovered LA nobody else holds.

        Sends the first assignment message immediately; resends follow the
        retry policy from ``act``. Marks the robot finished when nothing is
        left for it.
        """
        assignment = self._assignments.setdefault(robot_id, RobotAssignment(robot_id))

        held = {
            a.la_id for a in self._assignments.values()
            if a.robot_id != robot_id and a.state != AssignmentState.FINISHED and a.la_id is not None
        }

        la = None
        for candidate in self._las.values():
            if candidate.covered_grids > 0 or candidate.la_id in held:
                continue
            if candidate.attempts >= self.max_attempts_per_la:
                continue
            la = candidate
            break

        assignment.stall_ticks = 0
        if la is None:
            assignment.la_id = None
            assignment.state = AssignmentState.FINISHED
            logger.info(f"Robot_{robot_id} finished: no uncovered location area left")
            return None

        la.attempts += 1
        assignment.la_id = la.la_id
        assignment.state = AssignmentState.ASSIGNING
        assignment.sends_made = 0
        self._send_assignment(assignment)

        logger.info(f"Assigned LA_{la.la_id} ({la.center.x:.0f}, {la.center.y:.0f}) to Robot_{robot_id}")
        return la

    def _send_assignment(self, assignment: RobotAssignment):
        la = self._las[assignment.la_id]
        self.send(LAAssignment(assignment.robot_id, la.la_id, la.center), robot_agent_id(assignment.robot_id))
        self.assignment_sends += 1
        assignment.sends_made += 1
        assignment.next_send_time = self._current_time + self.retry.interval
        if assignment.sends_made >= self.retry.attempts:
            assignment.state = AssignmentState.WAITING_REPORT

    def on_message(self, message: Message, record: Any):
        if isinstance(record, RobotReport):
            self._pending_reports.append(record)
        else:
            self.ignore_misaddressed(message, "base station only accepts robot reports")

    def on_report(self, report: RobotReport) -> bool:
        """
        Apply one robot report and reassign the robot.

        Returns False when the report is stale (not about the robot's
        current LA) and therefore ignored.
        """
        assignment = self._assignments.get(report.robot_id)
        if assignment is None or assignment.la_id is None or assignment.la_id != report.la_id:
            self.stale_reports += 1
            logger.debug(f"Ignoring stale report from Robot_{report.robot_id} for LA_{report.la_id}")
            return False

        la = self._las[report.la_id]
        covered = max(0, min(report.covered_grids, self.grids_per_la))
        if la.covered_grids == 0:
            la.covered_grids = covered
            if covered > 0:
                la.reported_by = report.robot_id
                self.total_covered_grids += covered
            self.reports_applied += 1
            logger.info(
                f"Robot_{report.robot_id} covered {covered}/{self.grids_per_la} grids in LA_{la.la_id} "
                f"(total {self.total_covered_grids})"
            )
        else:
            self.duplicate_reports += 1

        assignment.las_completed += 1
        self.assign(report.robot_id)
        self._check_done()
        return True

    def _check_done(self):
        if self._phase != CoordinatorPhase.RUNNING:
            return
        if self._assignments and all(
            a.state == AssignmentState.FINISHED for a in self._assignments.values()
        ):
            self._phase = CoordinatorPhase.DONE
            logger.info(
                f"Deployment complete: {self.total_covered_grids} grids covered, "
                f"{self.coverage_percentage:.1f}% coverage"
            )

    def sense(self, environment: Dict[str, Any]) -> Dict[str, Any]:
        due = [
            a.robot_id for a in self._assignments.values()
            if a.state == AssignmentState.ASSIGNING and self._current_time >= a.next_send_time
        ]
        return {
            "elapsed": environment.get("elapsed", 0.0),
            "reports": list(self._pending_reports),
            "due_resends": due,
        }

    def decide(self, observations: Dict[str, Any]) -> Dict[str, Any]:
        self._pending_reports.clear()
        return {
            "elapsed": observations["elapsed"],
            "reports": observations["reports"],
            "resend": observations["due_resends"],
        }

    def act(self, actions: Dict[str, Any]) -> None:
        if actions["elapsed"] > 0:
            self.energy.baseline(actions["elapsed"])
            self.energy.idle_radio(actions["elapsed"])

        reassigned = set()
        for report in actions["reports"]:
            if self.on_report(report):
                reassigned.add(report.robot_id)

        for robot_id in actions["resend"]:
            assignment = self._assignments[robot_id]
            if robot_id in reassigned or assignment.state != AssignmentState.ASSIGNING:
                continue
            logger.debug(
                f"Resending LA_{assignment.la_id} to Robot_{robot_id} "
                f"(send {assignment.sends_made + 1}/{self.retry.attempts})"
            )
            self._send_assignment(assignment)

        for assignment in self._assignments.values():
            if assignment.state == AssignmentState.WAITING_REPORT:
                assignment.stall_ticks += 1

    @property
    def stall_ticks(self) -> int:
        return max((a.stall_ticks for a in self._assignments.values()), default=0)

    def total_network_energy(self, node_energy: Dict[str, float]) -> float:
        """Sum of the given per-node totals plus the base station's own."""
        return self.energy.total + sum(
            total for agent_id, total in node_energy.items() if agent_id != self.agent_id
        )

    def get_location_areas(self) -> List[LocationArea]:
        return list(self._las.values())

    def get_assignment(self, robot_id: int) -> Optional[RobotAssignment]:
        return self._assignments.get(robot_id)

    def get_assignments(self) -> List[RobotAssignment]:
        return list(self._assignments.values())

    def get_status(self) -> Dict[str, Any]:
        return {
            "phase": self._phase.name,
            "location_areas": len(self._las),
            "reported_las": sum(1 for la in self._las.values() if la.covered_grids > 0),
            "total_covered_grids": self.total_covered_grids,
            "coverage_percentage": self.coverage_percentage,
            "assignments": {
                a.robot_id: {"la_id": a.la_id, "state": a.state.name, "stall_ticks": a.stall_ticks}
                for a in self._assignments.values()
            },
            "assignment_sends": self.assignment_sends,
            "duplicate_reports": self.duplicate_reports,
            "stale_reports": self.stale_reports,
            "energy": self.energy.stats.to_dict(),
        }
