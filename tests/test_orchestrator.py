import importlib
import threading

import numpy as np
import pytest

from wsn_deployment.agents import DeploymentSystem
from wsn_deployment.config import (
    AreaConfig,
    DispersionCase,
    NetworkConfig,
    SensorConfig,
    SystemConfig,
)
from wsn_deployment.energy import EnergyAccountant
from wsn_deployment.orchestrator import SystemOrchestrator
from wsn_deployment.reporting import summary_text
from wsn_deployment.simulation import SensorField, SimulationClock


def small_config(**network):
    return SystemConfig(
        area=AreaConfig(target_area_size=400.0, robot_range=200.0, sensor_range=50.0),
        sensors=SensorConfig(num_sensors=20),
        network=NetworkConfig(**network),
        seed=7,
        max_ticks=2000,
    ).validate()


def test_clock_advances_in_fixed_ticks():
    clock = SimulationClock(tick_interval=2.0)
    assert clock.advance() == 2.0
    clock.advance()
    assert clock.time == 4.0 and clock.ticks == 2
    assert clock.environment(2.0) == {"sim_time": 4.0, "elapsed": 2.0, "tick": 2}
    clock.reset()
    assert clock.time == 0.0

    with pytest.raises(ValueError):
        SimulationClock(tick_interval=0.0)


def test_field_scatter_is_seeded_and_bounded():
    config = small_config()
    a = SensorField(config).scatter()
    b = SensorField(config).scatter()

    assert a == b
    assert [p.sensor_id for p in a] == list(range(1, 21))
    coords = np.array([p.position.as_tuple() for p in a])
    assert coords.min() >= 0.0 and coords.max() <= 400.0
    assert SensorField(config).density() == 0.0


def test_deployment_system_requires_initialize():
    config = small_config()
    system = DeploymentSystem(SensorField(config).scatter(), config)
    with pytest.raises(RuntimeError):
        system.step()
    assert system.get_system_status() == {"error": "Not initialized"}


def test_run_to_completion_covers_every_location_area():
    config = small_config()
    orchestrator = SystemOrchestrator(config)

    result = orchestrator.run_to_completion()

    assert result.done
    assert len(result.location_areas) == 4
    for la in result.location_areas:
        assert 10 <= la["covered_grids"] <= 16
        assert la["reported_by"] in (2, 3)
    assert result.total_covered_grids == sum(la["covered_grids"] for la in result.location_areas)
    assert 0.0 <= result.coverage_percentage <= 100.0
    assert sum(r["las_completed"] for r in result.robots.values()) >= 4


def test_runs_are_deterministic_for_a_seed():
    first = SystemOrchestrator(small_config()).run_to_completion()
    second = SystemOrchestrator(small_config()).run_to_completion()

    assert first.tick == second.tick
    assert first.location_areas == second.location_areas
    assert first.energy == second.energy


def test_lossy_runs_are_deterministic_for_a_seed():
    first = SystemOrchestrator(small_config(loss_probability=0.2)).run_to_completion(max_ticks=600)
    second = SystemOrchestrator(small_config(loss_probability=0.2)).run_to_completion(max_ticks=600)

    assert first.tick == second.tick
    assert first.location_areas == second.location_areas
    assert first.agent_summary["bus"] == second.agent_summary["bus"]
    assert first.agent_summary["bus"]["dropped"] > 0
    for la in first.location_areas:
        assert 0 <= la["covered_grids"] <= 16


def test_energy_totals_agree():
    config = small_config()
    orchestrator = SystemOrchestrator(config)
    orchestrator.run_to_completion()
    system = orchestrator.deployment_system

    for sensor in system.sensor_agents.values():
        replayed = EnergyAccountant.replay(config.energy.sensor, sensor.energy.trace, config.area.sensor_range)
        assert np.isclose(replayed.total, sensor.energy.total)

    energy = system.get_system_status()["energy"]
    assert np.isclose(
        energy["total"], energy["base_station"] + energy["robots"] + energy["sensors"]
    )
    assert np.isclose(system.total_network_energy(), sum(system.node_energy().values()))


def test_active_sensors_come_from_in_place_relocations():
    orchestrator = SystemOrchestrator(small_config())
    orchestrator.run_to_completion()
    system = orchestrator.deployment_system

    relocations = sum(
        robot.case_counts[DispersionCase.RELOCATE_IN_PLACE] for robot in system.robot_agents.values()
    )
    assert len(system.active_sensors()) <= relocations
    for sensor in system.active_sensors():
        assert sensor.deployed


def test_acknowledged_commands_all_settle():
    orchestrator = SystemOrchestrator(small_config(acknowledge_commands=True))
    result = orchestrator.run_to_completion()

    assert result.done
    robots = orchestrator.deployment_system.robot_agents.values()
    assert sum(r.acks_received for r in robots) == sum(r.commands_sent for r in robots)
    for status in result.robots.values():
        assert status["unacknowledged_commands"] == 0


def test_events_are_emitted():
    events = []
    orchestrator = SystemOrchestrator(small_config(), event_callback=events.append)
    orchestrator.run_to_completion()

    assert "Deployment started" in events[0]
    assert any("Deployment complete" in e for e in events)
    assert any("started LA_1" in e for e in events)


def test_stall_is_reported_when_ticks_run_out():
    events = []
    orchestrator = SystemOrchestrator(small_config(), event_callback=events.append)

    result = orchestrator.run_to_completion(max_ticks=3)

    assert not result.done
    assert result.tick == 3
    assert "stalled" in events[-1]


def test_reset_restarts_the_run():
    orchestrator = SystemOrchestrator(small_config())
    finished = orchestrator.run_to_completion()

    orchestrator.reset()

    assert orchestrator.sim_time == 0.0
    fresh = orchestrator.current_result()
    assert not fresh.done
    assert fresh.total_covered_grids == 0

    again = orchestrator.run_to_completion()
    assert again.location_areas == finished.location_areas


def test_reset_from_another_thread_while_stepping():
    orchestrator = SystemOrchestrator(small_config(loss_probability=0.1))
    expected = SystemOrchestrator(small_config(loss_probability=0.1)).run_to_completion(max_ticks=600)
    stop = threading.Event()

    def keep_stepping():
        while not stop.is_set():
            orchestrator.step()

    worker = threading.Thread(target=keep_stepping)
    worker.start()
    try:
        for _ in range(20):
            orchestrator.reset()
    finally:
        stop.set()
        worker.join(timeout=10)
    assert not worker.is_alive()

    orchestrator.reset()
    result = orchestrator.run_to_completion(max_ticks=600)

    assert result.tick == expected.tick
    assert result.location_areas == expected.location_areas


def test_summary_text_lists_robots_and_coverage():
    config = small_config()
    result = SystemOrchestrator(config).run_to_completion()

    text = summary_text(result, config.grids_per_la)

    assert "Coverage" in text
    assert "Robot_2" in text and "Robot_3" in text
    assert "LA_4" in text
    assert "\x1b[" not in text


def test_cli_overrides(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    main = importlib.import_module("main")

    config = main.build_config(main.parse_args(["--seed", "3", "--robots", "4", "--loss", "0.1"]))

    assert config.seed == 3
    assert config.robots.num_robots == 4
    assert config.robot_ids == [2, 3, 4, 5]
    assert config.network.loss_probability == 0.1
