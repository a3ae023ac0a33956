import numpy as np
import pytest

from wsn_deployment.agents.base import Message, MessageBus
from wsn_deployment.agents.messages import (
    CommandAck,
    LAAssignment,
    MessageType,
    RobotReport,
    SensorReply,
    decode_payload,
)
from wsn_deployment.agents.robot_agent import RobotAgent
from wsn_deployment.config import (
    AreaConfig,
    DispersionCase,
    EnergyConfig,
    RobotConfig,
    RobotPhase,
    SensorMode,
)
from wsn_deployment.spatial import Position

LA_CENTER = Position(100.0, 100.0)
FIRST_GRID = Position(75.0, 75.0)  # grid 6, nearest to the LA center with lowest id


def make_robot(initial_stock=10, capacity=15, move_budget=None, sensor_ids=range(1, 11), expect_acks=False):
    bus = MessageBus(seed=0)
    bus.register_agent("base_station")
    for sid in sensor_ids:
        bus.register_agent(f"sensor_{sid}")
    robot = RobotAgent(
        robot_id=2,
        message_bus=bus,
        area=AreaConfig(),
        settings=RobotConfig(capacity=capacity, initial_stock=initial_stock, move_budget=move_budget),
        energy_profile=EnergyConfig().robot,
        start_position=Position(0.0, 0.0),
        expect_acks=expect_acks,
    )
    return bus, robot


def enter_dispersion(robot, sensors=()):
    robot.begin_local_phase(LAAssignment(2, 1, LA_CENTER))
    for sid, position, mode in sensors:
        robot.upsert_sensor(SensorReply(sid, position, mode, 2))
    robot.begin_dispersion()


def commands_for(bus, sensor_id):
    return [
        decode_payload(m.msg_type, m.payload)
        for m in bus.get_messages(f"sensor_{sensor_id}")
        if m.msg_type == MessageType.SENSOR_COMMAND
    ]


def test_local_phase_setup():
    bus, robot = make_robot()

    robot.begin_local_phase(LAAssignment(2, 1, LA_CENTER))

    assert robot.phase == RobotPhase.TOPOLOGY_DISCOVERY
    assert robot.position == LA_CENTER
    assert robot.la_id == 1
    assert len(robot.grids) == 16
    assert not any(g.covered for g in robot.grids)
    assert np.isclose(robot.energy.distance_travelled, np.hypot(100.0, 100.0))
    log = bus.get_message_log()
    assert log[-1].msg_type == MessageType.DISCOVERY_BROADCAST


def test_deploy_from_stock_without_co_located_sensors():
    bus, robot = make_robot(initial_stock=10)
    enter_dispersion(robot)

    outcome = robot.dispersion_step()

    assert outcome.case == DispersionCase.DEPLOY_FROM_STOCK
    assert outcome.grid_id == 6
    assert robot.position == FIRST_GRID
    assert robot.stock == 9
    assert robot.grids[5].covered
    assert robot.commands_sent == 0


def test_deploy_and_collect_co_located_sensors():
    bus, robot = make_robot(initial_stock=1, capacity=15)
    enter_dispersion(robot, [
        (1, Position(75.0, 75.0), SensorMode.IDLE),
        (2, Position(80.0, 75.0), SensorMode.IDLE),
        (3, Position(75.0, 70.0), SensorMode.IDLE),
    ])

    outcome = robot.dispersion_step()

    assert outcome.case == DispersionCase.DEPLOY_AND_COLLECT
    assert outcome.stock_before == 1
    assert outcome.stock_after == 3
    assert outcome.collected == [1, 2, 3]
    assert robot.stock == 3
    assert robot.grids[5].covered
    assert robot.commands_sent == 3
    assert robot.sensor_records == []
    for sid in (1, 2, 3):
        commands = commands_for(bus, sid)
        assert len(commands) == 1
        assert commands[0].target_mode == SensorMode.IDLE
        assert commands[0].position is None


def test_uncovered_when_no_stock_and_no_sensors():
    bus, robot = make_robot(initial_stock=0)
    enter_dispersion(robot)

    outcome = robot.dispersion_step()

    assert outcome.case == DispersionCase.UNCOVERED
    assert not outcome.covered
    assert not robot.grids[5].covered
    assert robot.moves_made == 1
    assert robot.moves_remaining == 15
    assert robot.stock == 0


def test_relocate_in_place_then_collect_the_rest():
    bus, robot = make_robot(initial_stock=0)
    enter_dispersion(robot, [
        (4, Position(70.0, 80.0), SensorMode.IDLE),
        (5, Position(76.0, 76.0), SensorMode.IDLE),
        (6, Position(60.0, 60.0), SensorMode.IDLE),
    ])

    outcome = robot.dispersion_step()

    assert outcome.case == DispersionCase.RELOCATE_IN_PLACE
    assert outcome.activated == 4
    assert outcome.collected == [5, 6]
    assert robot.stock == 2
    assert robot.grids[5].covered

    activation = commands_for(bus, 4)
    assert len(activation) == 1
    assert activation[0].target_mode == SensorMode.ACTIVE
    assert activation[0].position == FIRST_GRID

    records = {r.sensor_id: r for r in robot.sensor_records}
    assert list(records) == [4]
    assert records[4].mode == SensorMode.ACTIVE
    assert records[4].position == FIRST_GRID


def test_collection_stops_at_capacity():
    bus, robot = make_robot(initial_stock=1, capacity=2)
    enter_dispersion(robot, [
        (sid, Position(75.0 + sid, 75.0), SensorMode.IDLE) for sid in range(1, 5)
    ])

    outcome = robot.dispersion_step()

    assert outcome.case == DispersionCase.DEPLOY_AND_COLLECT
    assert outcome.collected == [1, 2]
    assert robot.stock == 2
    assert [r.sensor_id for r in robot.sensor_records] == [3, 4]
    assert robot.commands_sent == 2


def test_active_or_distant_sensors_are_not_co_located():
    bus, robot = make_robot(initial_stock=5)
    enter_dispersion(robot, [
        (1, Position(75.0, 75.0), SensorMode.ACTIVE),
        (2, Position(75.0, 101.0), SensorMode.IDLE),
    ])

    outcome = robot.dispersion_step()

    assert outcome.case == DispersionCase.DEPLOY_FROM_STOCK
    assert robot.commands_sent == 0
    assert len(robot.sensor_records) == 2


def test_co_location_boundary_is_inclusive():
    bus, robot = make_robot(initial_stock=0)
    enter_dispersion(robot, [(1, Position(100.0, 75.0), SensorMode.IDLE)])

    outcome = robot.dispersion_step()

    assert outcome.case == DispersionCase.RELOCATE_IN_PLACE
    assert outcome.activated == 1


def test_visits_nearest_grid_with_lowest_id_tie_break():
    bus, robot = make_robot(initial_stock=10)
    enter_dispersion(robot)

    visited = [robot.dispersion_step().grid_id for _ in range(3)]

    assert visited[0] == 6
    assert visited[1] == 2
    assert visited[2] == 1


def test_move_budget_invariant_and_monotone_coverage():
    bus, robot = make_robot(initial_stock=10)
    robot.begin_local_phase(LAAssignment(2, 1, LA_CENTER))

    assert robot.phase == RobotPhase.TOPOLOGY_DISCOVERY
    assert robot.moves_made == 0
    assert robot.moves_remaining == robot.move_budget == 16

    for sid, position in ((1, Position(25.0, 25.0)), (2, Position(175.0, 175.0)), (3, Position(125.0, 25.0))):
        robot.upsert_sensor(SensorReply(sid, position, SensorMode.IDLE, 2))
    robot.begin_dispersion()
    assert robot.moves_made + robot.moves_remaining == robot.move_budget

    covered_before = set()
    while True:
        outcome = robot.dispersion_step()
        if outcome is None:
            break
        assert robot.moves_made + robot.moves_remaining == robot.move_budget
        assert 0 <= robot.stock <= robot.capacity
        covered_now = {g.grid_id for g in robot.grids if g.covered}
        assert covered_before <= covered_now
        covered_before = covered_now

    assert robot.moves_made == 16
    assert robot.moves_remaining == 0
    assert robot.covered_grids == 13


def test_stops_when_every_grid_is_covered():
    bus, robot = make_robot(initial_stock=16, capacity=16, move_budget=20)
    enter_dispersion(robot)

    steps = 0
    while robot.dispersion_step() is not None:
        steps += 1

    assert steps == 16
    assert robot.covered_grids == 16
    assert robot.moves_remaining == 4
    assert robot.stock == 0


def test_uncovered_grid_keeps_drawing_remaining_moves():
    bus, robot = make_robot(initial_stock=1)
    enter_dispersion(robot)

    outcomes = []
    while True:
        outcome = robot.dispersion_step()
        if outcome is None:
            break
        outcomes.append(outcome)

    assert len(outcomes) == 16
    assert outcomes[0].case == DispersionCase.DEPLOY_FROM_STOCK
    assert {o.grid_id for o in outcomes[1:]} == {2}
    assert all(o.case == DispersionCase.UNCOVERED for o in outcomes[1:])
    assert robot.covered_grids == 1


def test_limited_move_budget():
    bus, robot = make_robot(initial_stock=10, move_budget=3)
    enter_dispersion(robot)

    outcomes = [robot.dispersion_step() for _ in range(5)]

    assert outcomes[3] is None and outcomes[4] is None
    assert robot.moves_made == 3
    assert robot.covered_grids == 3


def test_report_resets_stock_and_returns_to_idle():
    bus, robot = make_robot(initial_stock=10)
    enter_dispersion(robot)
    for _ in range(4):
        robot.dispersion_step()

    report = robot.report()

    assert report == RobotReport(2, 4, 1)
    assert robot.phase == RobotPhase.IDLE
    assert robot.stock == 10
    messages = bus.get_messages("base_station")
    assert len(messages) == 1
    assert decode_payload(messages[0].msg_type, messages[0].payload) == report


def test_sensor_table_capacity():
    bus = MessageBus(seed=0)
    robot = RobotAgent(
        2, bus, AreaConfig(), RobotConfig(max_sensor_records=2), EnergyConfig().robot, Position(0.0, 0.0)
    )

    assert robot.upsert_sensor(SensorReply(1, Position(1.0, 1.0), SensorMode.IDLE, 2))
    assert robot.upsert_sensor(SensorReply(2, Position(2.0, 2.0), SensorMode.IDLE, 2))
    assert not robot.upsert_sensor(SensorReply(3, Position(3.0, 3.0), SensorMode.IDLE, 2))
    # existing entries still update in place
    assert robot.upsert_sensor(SensorReply(1, Position(9.0, 9.0), SensorMode.ACTIVE, 2))

    records = robot.sensor_records
    assert [r.sensor_id for r in records] == [1, 2]
    assert records[0].position == Position(9.0, 9.0)
    assert records[0].mode == SensorMode.ACTIVE
    assert robot.dropped_replies == 1


def _assign(bus, robot_id, la_id, center=LA_CENTER):
    bus.publish(Message(
        MessageType.LA_ASSIGNMENT, "base_station", "robot_2",
        LAAssignment(robot_id, la_id, center).to_payload(),
    ))


def _reply(bus, sensor_id, position, robot_id=2):
    bus.publish(Message(
        MessageType.SENSOR_REPLY, f"sensor_{sensor_id}", "robot_2",
        SensorReply(sensor_id, position, SensorMode.IDLE, robot_id).to_payload(),
    ))


def test_message_driven_local_phase():
    bus, robot = make_robot(initial_stock=10)

    robot.step({"sim_time": 1.0, "elapsed": 1.0})
    assert robot.phase == RobotPhase.IDLE
    assert robot.stall_ticks == 1

    _assign(bus, 2, 1)
    robot.step({"sim_time": 2.0, "elapsed": 1.0})
    assert robot.phase == RobotPhase.TOPOLOGY_DISCOVERY
    assert robot.stall_ticks == 0

    _reply(bus, 1, Position(75.0, 75.0))
    _reply(bus, 2, Position(20.0, 20.0), robot_id=3)
    for t in (3.0, 4.0, 5.0, 6.0):
        robot.step({"sim_time": t, "elapsed": 1.0})
        assert robot.phase == RobotPhase.TOPOLOGY_DISCOVERY

    assert [r.sensor_id for r in robot.sensor_records] == [1]
    assert robot.misaddressed_ignored == 1

    robot.step({"sim_time": 7.0, "elapsed": 1.0})
    assert robot.phase == RobotPhase.DISPERSION
    assert robot.moves_remaining == 16

    t = 8.0
    while robot.phase == RobotPhase.DISPERSION:
        robot.step({"sim_time": t, "elapsed": 1.0})
        t += 1.0
    assert robot.phase == RobotPhase.REPORTING
    assert robot.moves_made == 16

    robot.step({"sim_time": t, "elapsed": 1.0})
    assert robot.phase == RobotPhase.IDLE
    reports = [
        decode_payload(m.msg_type, m.payload) for m in bus.get_messages("base_station")
    ]
    assert reports == [RobotReport(2, 11, 1)]


def test_wildcard_and_foreign_assignments():
    bus, robot = make_robot()

    _assign(bus, 3, 1)
    robot.step({"sim_time": 1.0, "elapsed": 1.0})
    assert robot.phase == RobotPhase.IDLE
    assert robot.misaddressed_ignored == 1

    _assign(bus, 0, 4, Position(700.0, 100.0))
    robot.step({"sim_time": 2.0, "elapsed": 1.0})
    assert robot.phase == RobotPhase.TOPOLOGY_DISCOVERY
    assert robot.la_id == 4


def test_busy_robot_ignores_new_assignment():
    bus, robot = make_robot()
    _assign(bus, 2, 1)
    robot.step({"sim_time": 1.0, "elapsed": 1.0})

    _assign(bus, 2, 2, Position(300.0, 100.0))
    robot.step({"sim_time": 2.0, "elapsed": 1.0})

    assert robot.la_id == 1
    assert robot.position == LA_CENTER


def test_repeated_assignment_for_completed_la_resends_report():
    bus, robot = make_robot(initial_stock=10)
    enter_dispersion(robot)
    robot.dispersion_step()
    robot.report()
    bus.get_messages("base_station")

    _assign(bus, 2, 1)
    robot.step({"sim_time": 50.0, "elapsed": 1.0})

    assert robot.phase == RobotPhase.IDLE
    messages = bus.get_messages("base_station")
    assert len(messages) == 1
    assert decode_payload(messages[0].msg_type, messages[0].payload) == RobotReport(2, 1, 1)


def test_zero_coverage_la_is_worked_again_when_reassigned():
    bus, robot = make_robot(initial_stock=0)
    enter_dispersion(robot)
    while robot.dispersion_step() is not None:
        pass
    assert robot.report() == RobotReport(2, 0, 1)
    bus.get_messages("base_station")

    _assign(bus, 2, 1)
    robot.step({"sim_time": 50.0, "elapsed": 1.0})

    assert robot.phase == RobotPhase.TOPOLOGY_DISCOVERY
    assert robot.la_id == 1
    assert robot.las_completed == 1
    assert bus.get_messages("base_station") == []


def test_outstanding_commands_tracked_only_when_acks_expected():
    sensors = [(1, Position(70.0, 70.0), SensorMode.IDLE), (2, Position(80.0, 80.0), SensorMode.IDLE)]

    bus, robot = make_robot()
    enter_dispersion(robot, sensors)
    robot.dispersion_step()
    assert robot.commands_sent == 2
    assert robot.get_status()["unacknowledged_commands"] == 0

    bus, robot = make_robot(expect_acks=True)
    enter_dispersion(robot, sensors)
    robot.dispersion_step()
    assert robot.unacknowledged_commands == 2

    bus.publish(Message(
        MessageType.COMMAND_ACK, "sensor_1", "robot_2", CommandAck(1, SensorMode.IDLE).to_payload()
    ))
    robot.step({"sim_time": 1.0, "elapsed": 1.0})

    assert robot.acks_received == 1
    assert robot.get_status()["unacknowledged_commands"] == 1


def test_late_replies_are_not_recorded():
    bus, robot = make_robot()
    enter_dispersion(robot)

    _reply(bus, 1, Position(75.0, 75.0))
    robot.step({"sim_time": 1.0, "elapsed": 1.0})

    assert robot.late_replies == 1
    assert all(r.sensor_id != 1 for r in robot.sensor_records)


@pytest.mark.parametrize("stock", [0, 1, 7, 15])
def test_stock_never_leaves_bounds(stock):
    bus, robot = make_robot(initial_stock=stock, capacity=15, sensor_ids=range(1, 41))
    sensors = [
        (sid, Position(25.0 + 50.0 * (sid % 4), 25.0 + 50.0 * ((sid // 4) % 4)), SensorMode.IDLE)
        for sid in range(1, 41)
    ]
    enter_dispersion(robot, sensors)

    while True:
        outcome = robot.dispersion_step()
        if outcome is None:
            break
        assert 0 <= outcome.stock_after <= 15

    assert robot.covered_grids == 16
