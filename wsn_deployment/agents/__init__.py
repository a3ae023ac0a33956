"""
Multi-Agent System for WSN Deployment.

This package implements the three cooperating roles:
- BaseStationCoordinator: assigns location areas and aggregates coverage
- RobotAgent: discovers sensors in an LA and disperses them over its grids
- SensorAgent: answers discovery and obeys activate/collect commands
- DeploymentSystem: steps all agents on a shared simulated clock

Agents communicate only through a best-effort message bus.
"""

from .base import Agent, Message, MessageBus, BASE_STATION_ID, BROADCAST
from .messages import MessageType
from .sensor_agent import SensorAgent
from .robot_agent import RobotAgent
from .coordinator_agent import BaseStationCoordinator
from .deployment_system import DeploymentSystem

__all__ = [
    "Agent",
    "Message",
    "MessageBus",
    "MessageType",
    "BASE_STATION_ID",
    "BROADCAST",
    "SensorAgent",
    "RobotAgent",
    "BaseStationCoordinator",
    "DeploymentSystem",
]
