"""
Rich renderings of a deployment run.

Shared by the headless CLI output and the dashboard panels.
"""

from typing import Any, Dict, List

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .orchestrator import OrchestrationResult

PHASE_STYLES = {
    "IDLE": "dim",
    "TOPOLOGY_DISCOVERY": "blue",
    "DISPERSION": "yellow",
    "REPORTING": "magenta",
}


def coverage_style(covered: int, grids_per_la: int) -> str:
    if covered == 0:
        return "dim"
    if covered >= grids_per_la:
        return "bold green"
    if covered >= grids_per_la / 2:
        return "green"
    return "yellow"


def location_area_table(location_areas: List[Dict[str, Any]], grids_per_la: int) -> Table:
    table = Table(show_header=True, header_style="bold cyan", expand=True, box=None)
    table.add_column("LA", style="green", width=6, no_wrap=True)
    table.add_column("Center", justify="right", width=14, no_wrap=True)
    table.add_column("Covered", justify="right", width=10, no_wrap=True)
    table.add_column("Robot", justify="center", width=7, no_wrap=True)

    for la in location_areas:
        covered = la["covered_grids"]
        x, y = la["center"]
        robot = "---" if la["reported_by"] is None else str(la["reported_by"])
        table.add_row(
            f"LA_{la['la_id']}",
            f"({x:.0f}, {y:.0f})",
            Text(f"{covered}/{grids_per_la}", style=coverage_style(covered, grids_per_la)),
            robot,
        )
    return table


def coverage_map(location_areas: List[Dict[str, Any]], grids_per_la: int, side: int) -> Text:
    """One character per LA, top row printed first."""
    text = Text()
    if side <= 0:
        return text
    rows = [location_areas[i:i + side] for i in range(0, len(location_areas), side)]
    for row in reversed(rows):
        for la in row:
            covered = la["covered_grids"]
            glyph = "█" if covered >= grids_per_la else "▓" if covered else "░"
            text.append(glyph * 2, style=coverage_style(covered, grids_per_la))
        text.append("\n")
    return text


def robot_table(robots: Dict[int, Dict[str, Any]]) -> Table:
    table = Table(show_header=True, header_style="bold cyan", expand=True, box=None)
    table.add_column("Robot", style="green", no_wrap=True)
    table.add_column("Phase", no_wrap=True)
    table.add_column("LA", justify="right")
    table.add_column("Stock", justify="right")
    table.add_column("Moves", justify="right")
    table.add_column("LAs done", justify="right")
    table.add_column("Travelled", justify="right")
    table.add_column("Energy (J)", justify="right")

    for rid, status in robots.items():
        phase = status["phase"]
        la = "---" if status["la_id"] is None else str(status["la_id"])
        table.add_row(
            f"Robot_{rid}",
            Text(phase, style=PHASE_STYLES.get(phase, "white")),
            la,
            f"{status['stock']}/{status['capacity']}",
            f"{status['moves_made']}",
            f"{status['las_completed']}",
            f"{status['distance_travelled']:.0f} m",
            f"{status['energy']['total']:.3f}",
        )
    return table


def energy_table(energy: Dict[str, float]) -> Table:
    table = Table(show_header=False, expand=True, box=None)
    table.add_column("Role", style="bold")
    table.add_column("Joules", justify="right")
    for role in ("base_station", "robots", "sensors", "total"):
        if role in energy:
            table.add_row(role.replace("_", " ").title(), f"{energy[role]:.4f}")
    return table


def summary_renderable(result: OrchestrationResult, grids_per_la: int) -> Group:
    state = "[bold green]COMPLETE[/bold green]" if result.done else "[yellow]IN PROGRESS[/yellow]"
    summary = result.agent_summary or {}
    header = Text.from_markup(
        f"[bold]Status:[/bold] {state}   "
        f"[bold]Ticks:[/bold] {result.tick}   "
        f"[bold]Sim time:[/bold] {result.sim_time:.0f}s\n"
        f"[bold]Coverage:[/bold] {result.coverage_percentage:.1f}% "
        f"({result.total_covered_grids}/{len(result.location_areas) * grids_per_la} grids)   "
        f"[bold]Active sensors:[/bold] {summary.get('active_sensors', 0)}/{summary.get('sensor_count', 0)}"
    )
    return Group(
        header,
        Panel(robot_table(result.robots), title="Robots", border_style="blue"),
        Panel(location_area_table(result.location_areas, grids_per_la), title="Location Areas", border_style="green"),
        Panel(energy_table(result.energy), title="Energy", border_style="magenta"),
    )


def print_summary(result: OrchestrationResult, grids_per_la: int, console: Console = None):
    console = console or Console()
    console.print(Panel(summary_renderable(result, grids_per_la), title="WSN Deployment Summary", border_style="cyan"))


def summary_text(result: OrchestrationResult, grids_per_la: int, width: int = 100) -> str:
    """Plain-text rendering of the summary, for logs and the dashboard."""
    console = Console(width=width, color_system=None)
    with console.capture() as capture:
        console.print(summary_renderable(result, grids_per_la))
    return capture.get()
