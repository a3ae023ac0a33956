import logging
import threading
from typing import Optional, List, Dict, Callable, Any
from datetime import datetime

from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical, ScrollableContainer
from textual.widgets import Header, Footer, Static, RichLog
from textual.binding import Binding

from rich.panel import Panel
from rich.console import Group

from ..reporting import coverage_map, energy_table, location_area_table, robot_table

logger = logging.getLogger(__name__)


class CoveragePanel(Static):

    def __init__(self, grids_per_la: int, side: int, **kwargs):
        super().__init__(**kwargs)
        self._grids_per_la = grids_per_la
        self._side = side
        self._location_areas: List[Dict[str, Any]] = []

    def update_location_areas(self, location_areas: List[Dict[str, Any]]):
        self._location_areas = location_areas
        self.refresh()

    def render(self) -> Panel:
        if not self._location_areas:
            return Panel("Initializing...", title="Location Areas")

        reported = sum(1 for la in self._location_areas if la["covered_grids"] > 0)
        content = Group(
            coverage_map(self._location_areas, self._grids_per_la, self._side),
            location_area_table(self._location_areas, self._grids_per_la),
        )
        return Panel(
            content,
            title=f"Location Areas ({reported}/{len(self._location_areas)} reported)",
            border_style="blue"
        )


class StatusPanel(Static):

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._sim_time: float = 0.0
        self._agent_summary: Optional[Dict] = None

    def update_status(self, sim_time: float, agent_summary: Dict = None):
        self._sim_time = sim_time
        self._agent_summary = agent_summary
        self.refresh()

    def render(self) -> Panel:
        if self._agent_summary is None:
            return Panel("Initializing...", title="System Status")

        hours = int(self._sim_time // 3600)
        minutes = int((self._sim_time % 3600) // 60)
        seconds = int(self._sim_time % 60)
        time_str = f"{hours:02d}:{minutes:02d}:{seconds:02d}"

        coord = self._agent_summary.get("coordinator", {})
        phase = coord.get("phase", "INIT")
        phase_colors = {
            "INIT": ("white", "○"),
            "READY": ("cyan", "○"),
            "RUNNING": ("yellow", "◉"),
            "DONE": ("green", "●"),
        }
        color, icon = phase_colors.get(phase, ("white", "○"))

        coverage = self._agent_summary.get("coverage_percentage", 0.0)
        bar_len = int(coverage / 5)
        bar = "█" * bar_len + "░" * (20 - bar_len)
        bus = self._agent_summary.get("bus", {})

        lines = [
            f"[bold]Simulation Time:[/bold] {time_str}  (tick {self._agent_summary.get('tick', 0)})",
            "",
            f"[bold]Base Station:[/bold] [{color}]{icon} {phase}[/{color}]",
            f"[bold]Coverage:[/bold] {coverage:.1f}%",
            f"  [green]{bar}[/green]",
            f"[bold]Covered Grids:[/bold] {coord.get('total_covered_grids', 0)}",
            "",
            f"[bold]Active Sensors:[/bold] {self._agent_summary.get('active_sensors', 0)}"
            f"/{self._agent_summary.get('sensor_count', 0)}",
            f"[bold]Relocated Sensors:[/bold] {self._agent_summary.get('relocated_sensors', 0)}",
            "",
            f"[bold]Messages:[/bold] {bus.get('published', 0)} sent, "
            f"{bus.get('dropped', 0)} lost, {bus.get('duplicated', 0)} duplicated",
            f"[bold]Assignment Sends:[/bold] {coord.get('assignment_sends', 0)}",
            f"[bold]Stale Reports:[/bold] {coord.get('stale_reports', 0)}",
        ]

        stalled = [
            f"Robot_{rid}" for rid, a in coord.get("assignments", {}).items()
            if a.get("stall_ticks", 0) > 0
        ]
        if stalled:
            lines.append(f"[bold red]Waiting on reports:[/bold red] {', '.join(stalled)}")

        return Panel("\n".join(lines), title="System Status", border_style="cyan")


class RobotsPanel(Static):

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._robots: Dict[int, Dict[str, Any]] = {}
        self._energy: Dict[str, float] = {}

    def update_robots(self, robots: Dict[int, Dict[str, Any]], energy: Dict[str, float]):
        self._robots = robots
        self._energy = energy
        self.refresh()

    def render(self) -> Panel:
        if not self._robots:
            return Panel("[dim]No robots[/dim]", title="Robots", border_style="dim")
        return Panel(
            Group(robot_table(self._robots), "", energy_table(self._energy)),
            title=f"Robots ({len(self._robots)})",
            border_style="magenta"
        )


class DeploymentDashboard(App):

    CSS = """
    Screen {
        layout: horizontal;
    }

    #left-area {
        width: 2fr;
        height: 100%;
    }

    #header-area {
        height: 3;
        padding: 0 1;
        background: $surface;
    }

    #coverage-container {
        height: 1fr;
    }

    #log-panel {
        height: 8;
        border: solid green;
    }

    #right-column {
        width: 1fr;
        height: 100%;
    }

    #status-panel {
        height: auto;
        min-height: 15;
    }

    #robots-panel {
        height: auto;
        min-height: 10;
    }
    """

    BINDINGS = [
        Binding("s", "show_summary", "Summary"),
        Binding("r", "reset_system", "Reset"),
        Binding("q", "quit", "Quit"),
        Binding("p", "toggle_pause", "Pause/Resume"),
    ]

    def __init__(
        self,
        grids_per_la: int,
        lattice_side: int,
        show_summary_callback: Callable[[], str] = None,
        reset_callback: Callable[[], None] = None,
        **kwargs
    ):
        super().__init__(**kwargs)
        self._grids_per_la = grids_per_la
        self._lattice_side = lattice_side
        self._show_summary_callback = show_summary_callback
        self._reset_callback = reset_callback
        self._paused = False

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        with Horizontal():
            with Vertical(id="left-area"):
                with Container(id="header-area"):
                    yield Static(
                        "[bold cyan]WSN DEPLOYMENT SIMULATOR[/bold cyan] [dim]| Robot-assisted sensor dispersion[/dim]",
                        id="title"
                    )
                with ScrollableContainer(id="coverage-container"):
                    yield CoveragePanel(self._grids_per_la, self._lattice_side, id="coverage-panel")
                yield RichLog(id="log-panel", highlight=True, markup=True, max_lines=50)

            with ScrollableContainer(id="right-column"):
                yield StatusPanel(id="status-panel")
                yield RobotsPanel(id="robots-panel")

        yield Footer()

    def on_mount(self) -> None:
        self.log_message("[green]System initialized[/green]")
        self.log_message("Press [bold]P[/bold] to pause, [bold]S[/bold] for a summary, [bold]Q[/bold] to quit")

    def action_show_summary(self) -> None:
        if self._show_summary_callback:
            summary = self._show_summary_callback()
            self.log_message("\n" + summary)

    def action_reset_system(self) -> None:
        if self._reset_callback:
            self._reset_callback()
            self.log_message("[yellow]System reset[/yellow]")

    def action_toggle_pause(self) -> None:
        self._paused = not self._paused
        status = "PAUSED" if self._paused else "RESUMED"
        self.log_message(f"[yellow]Simulation {status}[/yellow]")

    @property
    def is_paused(self) -> bool:
        return self._paused

    def log_message(self, message: str) -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")

        def _write():
            log_widget = self.query_one("#log-panel", RichLog)
            log_widget.write(f"[dim]{timestamp}[/dim] {message}")

        # Background threads must hand the write to the UI thread.
        if getattr(self, "_thread_id", None) == threading.get_ident():
            _write()
        else:
            self.call_from_thread(_write)

    def update_location_areas(self, location_areas: List[Dict[str, Any]]) -> None:
        panel = self.query_one("#coverage-panel", CoveragePanel)
        panel.update_location_areas(location_areas)

    def update_status(self, sim_time: float, agent_summary: Dict = None) -> None:
        panel = self.query_one("#status-panel", StatusPanel)
        panel.update_status(sim_time, agent_summary)

    def update_robots(self, robots: Dict[int, Dict[str, Any]], energy: Dict[str, float]) -> None:
        panel = self.query_one("#robots-panel", RobotsPanel)
        panel.update_robots(robots, energy)
