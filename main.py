#!/usr/bin/env python3

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console

sys.path.insert(0, str(Path(__file__).parent))

from wsn_deployment.config import SystemConfig, load_config
from wsn_deployment.exceptions import ConfigurationError
from wsn_deployment.orchestrator import SystemOrchestrator
from wsn_deployment.reporting import print_summary, summary_text
from wsn_deployment.tui.dashboard import DeploymentDashboard

logging.basicConfig(
    level=logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('wsn_deployment.log'),
    ]
)

logging.getLogger('wsn_deployment').setLevel(logging.INFO)

logger = logging.getLogger("wsn_deployment")


class DeploymentApp:

    def __init__(self, config: SystemConfig):
        self._config = config
        self._orchestrator: SystemOrchestrator = None
        self._dashboard: DeploymentDashboard = None
        self._update_task: asyncio.Task = None
        self._log_messages = []

    def _log_callback(self, message: str):
        self._log_messages.append(message)
        if self._dashboard:
            self._dashboard.log_message(message)

    def _show_summary(self) -> str:
        if self._orchestrator:
            result = self._orchestrator.current_result()
            return summary_text(result, self._config.grids_per_la)
        return "No data available"

    def _reset_system(self):
        if self._orchestrator:
            self._orchestrator.reset()

    async def _update_loop(self):
        await asyncio.sleep(0.5)

        refresh = self._config.tui.refresh_rate_ms / 1000.0
        steps = max(1, self._config.tui.steps_per_refresh)

        while True:
            try:
                if self._dashboard and self._dashboard.is_paused:
                    await asyncio.sleep(0.1)
                    continue

                if self._orchestrator and not self._orchestrator.deployment_system.is_done:
                    loop = asyncio.get_running_loop()
                    result = None
                    for _ in range(steps):
                        result = await loop.run_in_executor(None, self._orchestrator.step)
                        if result.done:
                            break

                    logger.debug(f"Step completed. Tick: {result.tick}. Coverage: {result.coverage_percentage:.1f}%")

                    if self._dashboard:
                        self._dashboard.update_location_areas(result.location_areas)
                        self._dashboard.update_status(result.sim_time, result.agent_summary)
                        self._dashboard.update_robots(result.robots, result.energy)

                await asyncio.sleep(refresh)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logging.exception(f"Error in update loop: {e}")
                await asyncio.sleep(1)

    async def run_async(self):
        self._orchestrator = SystemOrchestrator(
            self._config,
            event_callback=self._log_callback
        )

        self._dashboard = DeploymentDashboard(
            grids_per_la=self._config.grids_per_la,
            lattice_side=self._config.lattice_side,
            show_summary_callback=self._show_summary,
            reset_callback=self._reset_system
        )

        self._update_task = asyncio.create_task(self._update_loop())

        try:
            await self._dashboard.run_async()
        finally:
            if self._update_task:
                self._update_task.cancel()
                try:
                    await self._update_task
                except asyncio.CancelledError:
                    pass

    def run(self):
        asyncio.run(self.run_async())


def run_headless(config: SystemConfig) -> int:
    console = Console()
    orchestrator = SystemOrchestrator(config, event_callback=console.print)
    result = orchestrator.run_to_completion()
    print_summary(result, config.grids_per_la, console)
    return 0 if result.done else 2


def build_config(args: argparse.Namespace) -> SystemConfig:
    config = load_config(args.config) if args.config else SystemConfig()

    if args.seed is not None:
        config.seed = args.seed
    if args.robots is not None:
        config.robots.num_robots = args.robots
    if args.sensors is not None:
        config.sensors.num_sensors = args.sensors
    if args.max_ticks is not None:
        config.max_ticks = args.max_ticks
    if args.loss is not None:
        config.network.loss_probability = args.loss

    return config.validate()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Robot-assisted WSN Deployment Simulator")
    parser.add_argument("--config", type=Path, help="JSON file with configuration overrides")
    parser.add_argument("--headless", action="store_true", help="Run to completion and print a summary")
    parser.add_argument("--seed", type=int, help="Random seed for sensor scattering and the radio channel")
    parser.add_argument("--robots", type=int, help="Number of mobile robots")
    parser.add_argument("--sensors", type=int, help="Number of scattered sensors")
    parser.add_argument("--max-ticks", type=int, help="Stop after this many ticks")
    parser.add_argument("--loss", type=float, help="Message loss probability in [0, 1]")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    if args.headless:
        sys.exit(run_headless(config))

    print("""
+==============================================================+
|       WSN DEPLOYMENT SIMULATOR                               |
|       Robot-assisted sensor dispersion                       |
+--------------------------------------------------------------+
|  Controls:                                                   |
|    S - Show summary          R - Reset system                |
|    P - Pause/Resume          Q - Quit                        |
+==============================================================+
    """)

    try:
        app = DeploymentApp(config)
        app.run()
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        print(f"Error: {e}")
        logging.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    main()
