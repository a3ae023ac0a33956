import logging
import threading
from typing import Dict, List, Optional, Callable, Any
from dataclasses import dataclass

from .config import SystemConfig, DEFAULT_CONFIG
from .simulation import SensorField
from .agents import DeploymentSystem

logger = logging.getLogger(__name__)


@dataclass
class OrchestrationResult:
    sim_time: float
    tick: int
    coverage_percentage: float
    total_covered_grids: int
    location_areas: List[Dict[str, Any]]
    robots: Dict[int, Dict[str, Any]]
    energy: Dict[str, float]
    done: bool
    agent_summary: Optional[Dict] = None


class SystemOrchestrator:

    def __init__(
        self,
        config: SystemConfig = None,
        event_callback: Callable[[str], None] = None
    ):
        self.config = config or DEFAULT_CONFIG
        self._event_callback = event_callback
        # step and reset may come from different threads (the TUI runs steps in an executor)
        self._lock = threading.Lock()

        logger.info("Initializing system components...")

        self._field = SensorField(self.config)
        self._field.scatter()

        self._system = DeploymentSystem(self._field.placements, self.config)
        self._system.initialize()

        self._robot_phases: Dict[int, str] = {}
        self._reported_las: Dict[int, int] = {}
        self._announced_done = False
        self._snapshot_progress()

        logger.info(
            f"System initialized with {len(self._field.placements)} sensors, "
            f"{len(self._system.robot_agents)} robots, "
            f"{self._system.coordinator.num_location_areas} location areas"
        )
        self._emit_event(
            f"[cyan]Deployment started: {self._system.coordinator.num_location_areas} LAs x "
            f"{self.config.grids_per_la} grids, {len(self._system.robot_agents)} robots, "
            f"{len(self._field.placements)} sensors[/cyan]"
        )

    def _emit_event(self, message: str):
        if self._event_callback:
            self._event_callback(message)

    def _snapshot_progress(self):
        self._robot_phases = {
            rid: agent.phase.name for rid, agent in self._system.robot_agents.items()
        }
        self._reported_las = {
            la.la_id: la.covered_grids
            for la in self._system.coordinator.get_location_areas()
        }

    def _emit_progress(self):
        coordinator = self._system.coordinator

        for la in coordinator.get_location_areas():
            if la.covered_grids > 0 and self._reported_las.get(la.la_id, 0) == 0:
                colour = "green" if la.covered_grids == self.config.grids_per_la else "yellow"
                self._emit_event(
                    f"[{colour}]LA_{la.la_id} covered {la.covered_grids}/{self.config.grids_per_la} "
                    f"grids (Robot_{la.reported_by})[/{colour}]"
                )

        for rid, agent in self._system.robot_agents.items():
            phase = agent.phase.name
            if phase != self._robot_phases.get(rid) and phase == "TOPOLOGY_DISCOVERY":
                self._emit_event(f"[blue]Robot_{rid} started LA_{agent.la_id}[/blue]")

        if coordinator.is_done and not self._announced_done:
            self._announced_done = True
            self._emit_event(
                f"[bold green]Deployment complete: {coordinator.coverage_percentage:.1f}% coverage "
                f"after {self._system.tick} ticks[/bold green]"
            )

        self._snapshot_progress()

    def step(self) -> OrchestrationResult:
        with self._lock:
            agent_summary = self._system.step()
            self._emit_progress()
            return self._result(agent_summary)

    def run_to_completion(self, max_ticks: Optional[int] = None) -> OrchestrationResult:
        limit = self.config.max_ticks if max_ticks is None else max_ticks
        result = self.current_result()
        steps = 0
        while not self._system.is_done and steps < limit:
            result = self.step()
            steps += 1
        if not self._system.is_done:
            self._emit_event(f"[red]Deployment stalled: not finished after {steps} ticks[/red]")
        return result

    def current_result(self) -> OrchestrationResult:
        with self._lock:
            return self._result(self._system.get_system_status())

    def _result(self, agent_summary: Dict[str, Any]) -> OrchestrationResult:
        coordinator = self._system.coordinator
        return OrchestrationResult(
            sim_time=self._system.clock.time,
            tick=self._system.tick,
            coverage_percentage=coordinator.coverage_percentage,
            total_covered_grids=coordinator.total_covered_grids,
            location_areas=[la.to_dict() for la in coordinator.get_location_areas()],
            robots={rid: agent.get_status() for rid, agent in self._system.robot_agents.items()},
            energy=agent_summary.get("energy", {}),
            done=self._system.is_done,
            agent_summary=agent_summary,
        )

    def reset(self):
        with self._lock:
            self._system.reset()
            self._announced_done = False
            self._snapshot_progress()
        self._emit_event("[yellow]System reset complete[/yellow]")

    @property
    def sim_time(self) -> float:
        return self._system.clock.time

    @property
    def deployment_system(self) -> DeploymentSystem:
        return self._system

    @property
    def field(self) -> SensorField:
        return self._field
