"""
Protocol message records.

Every message on the bus is tagged with a MessageType and carries a flat
payload dictionary. Each type has a fixed field set and a fixed on-air
size (used for radio energy accounting); receivers decode payloads
through ``decode_payload`` which rejects anything that does not match.
"""

import math
from dataclasses import dataclass
from enum import Enum
from numbers import Real
from typing import Any, Dict, Optional

from ..config import SensorMode
from ..exceptions import MalformedMessageError
from ..spatial import Position

WILDCARD_ROBOT_ID = 0


class MessageType(Enum):
    """Types of messages agents can exchange. Values are the wire tags."""
    # Base station -> Robot
    LA_ASSIGNMENT = 4

    # Robot -> Base station
    ROBOT_REPORT = 3

    # Robot -> all Sensors
    DISCOVERY_BROADCAST = 1

    # Sensor -> Robot
    SENSOR_REPLY = 2
    COMMAND_ACK = 5

    # Robot -> Sensor
    SENSOR_COMMAND = 6


@dataclass(frozen=True)
class LAAssignment:
    robot_id: int
    la_id: int
    center: Position

    def to_payload(self) -> Dict[str, Any]:
        return {
            "robot_id": self.robot_id,
            "la_id": self.la_id,
            "center_x": self.center.x,
            "center_y": self.center.y,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LAAssignment":
        return cls(
            robot_id=int(payload["robot_id"]),
            la_id=int(payload["la_id"]),
            center=Position(float(payload["center_x"]), float(payload["center_y"])),
        )


@dataclass(frozen=True)
class RobotReport:
    robot_id: int
    covered_grids: int
    la_id: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "robot_id": self.robot_id,
            "covered_grids": self.covered_grids,
            "la_id": self.la_id,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RobotReport":
        return cls(
            robot_id=int(payload["robot_id"]),
            covered_grids=int(payload["covered_grids"]),
            la_id=int(payload["la_id"]),
        )


@dataclass(frozen=True)
class DiscoveryBroadcast:
    robot_id: int
    position: Position
    round: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "robot_id": self.robot_id,
            "x": self.position.x,
            "y": self.position.y,
            "round": self.round,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DiscoveryBroadcast":
        return cls(
            robot_id=int(payload["robot_id"]),
            position=Position(float(payload["x"]), float(payload["y"])),
            round=int(payload["round"]),
        )


@dataclass(frozen=True)
class SensorReply:
    sensor_id: int
    position: Position
    mode: SensorMode
    robot_id: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sensor_id": self.sensor_id,
            "x": self.position.x,
            "y": self.position.y,
            "mode": self.mode.value,
            "robot_id": self.robot_id,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SensorReply":
        return cls(
            sensor_id=int(payload["sensor_id"]),
            position=Position(float(payload["x"]), float(payload["y"])),
            mode=SensorMode(payload["mode"]),
            robot_id=int(payload["robot_id"]),
        )


@dataclass(frozen=True)
class SensorCommand:
    sensor_id: int
    target_mode: SensorMode
    position: Optional[Position] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "sensor_id": self.sensor_id,
            "mode": self.target_mode.value,
            "x": self.position.x if self.position else None,
            "y": self.position.y if self.position else None,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SensorCommand":
        position = None
        if payload["x"] is not None and payload["y"] is not None:
            position = Position(float(payload["x"]), float(payload["y"]))
        return cls(
            sensor_id=int(payload["sensor_id"]),
            target_mode=SensorMode(payload["mode"]),
            position=position,
        )


@dataclass(frozen=True)
class CommandAck:
    sensor_id: int
    mode: SensorMode

    def to_payload(self) -> Dict[str, Any]:
        return {"sensor_id": self.sensor_id, "mode": self.mode.value}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CommandAck":
        return cls(sensor_id=int(payload["sensor_id"]), mode=SensorMode(payload["mode"]))


# type -> (record class, field set, on-air size in bytes incl. type tag)
MESSAGE_SCHEMAS = {
    MessageType.LA_ASSIGNMENT: (LAAssignment, {"robot_id", "la_id", "center_x", "center_y"}, 7),
    MessageType.ROBOT_REPORT: (RobotReport, {"robot_id", "covered_grids", "la_id"}, 4),
    MessageType.DISCOVERY_BROADCAST: (DiscoveryBroadcast, {"robot_id", "x", "y", "round"}, 7),
    MessageType.SENSOR_REPLY: (SensorReply, {"sensor_id", "x", "y", "mode", "robot_id"}, 8),
    MessageType.SENSOR_COMMAND: (SensorCommand, {"sensor_id", "mode", "x", "y"}, 7),
    MessageType.COMMAND_ACK: (CommandAck, {"sensor_id", "mode"}, 3),
}

RECORD_TYPES = {schema[0]: msg_type for msg_type, schema in MESSAGE_SCHEMAS.items()}

# Fields that may legitimately be None
_OPTIONAL_FIELDS = {MessageType.SENSOR_COMMAND: {"x", "y"}}

# Coordinates are real-valued; every other field is an id, count, round or mode
_COORDINATE_FIELDS = {"center_x", "center_y", "x", "y"}


def message_size(msg_type: MessageType) -> int:
    return MESSAGE_SCHEMAS[msg_type][2]


def message_type_of(record: Any) -> MessageType:
    return RECORD_TYPES[type(record)]


def validate_payload(msg_type: Any, payload: Any) -> None:
    """Raise MalformedMessageError unless ``payload`` fits ``msg_type``."""
    if msg_type not in MESSAGE_SCHEMAS:
        raise MalformedMessageError(msg_type, "unknown message type")
    if not isinstance(payload, dict):
        raise MalformedMessageError(msg_type, "payload is not a mapping")

    _, expected, _ = MESSAGE_SCHEMAS[msg_type]
    keys = set(payload.keys())
    if keys != expected:
        missing = sorted(expected - keys)
        extra = sorted(keys - expected)
        raise MalformedMessageError(msg_type, f"missing={missing} unexpected={extra}")

    optional = _OPTIONAL_FIELDS.get(msg_type, set())
    for key, value in payload.items():
        if value is None and key in optional:
            continue
        if isinstance(value, bool) or not isinstance(value, Real):
            raise MalformedMessageError(msg_type, f"field '{key}' is not numeric")
        if not math.isfinite(value):
            raise MalformedMessageError(msg_type, f"field '{key}' is not finite")
        if key not in _COORDINATE_FIELDS and value != int(value):
            raise MalformedMessageError(msg_type, f"field '{key}' is not an integer")


def decode_payload(msg_type: Any, payload: Any):
    """Validate and convert a payload into its typed record."""
    validate_payload(msg_type, payload)
    record_cls = MESSAGE_SCHEMAS[msg_type][0]
    try:
        return record_cls.from_payload(payload)
    except (TypeError, ValueError, OverflowError) as e:
        raise MalformedMessageError(msg_type, str(e)) from e
