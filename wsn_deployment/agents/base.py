"""
Base Agent and Message Infrastructure.

Provides the best-effort transport and the sense-decide-act agent loop
shared by the base station, the robots and the sensors.
"""

import logging
import random
import threading
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..energy import EnergyAccountant
from ..exceptions import MalformedMessageError
from .messages import MessageType, decode_payload, message_size, message_type_of

logger = logging.getLogger(__name__)

BROADCAST = "*"
BASE_STATION_ID = "base_station"


def robot_agent_id(robot_id: int) -> str:
    return f"robot_{robot_id}"


def sensor_agent_id(sensor_id: int) -> str:
    return f"sensor_{sensor_id}"


@dataclass
class Message:
    """
    Message passed between agents.

    The payload is the flat field mapping of one protocol record; see
    ``messages.MESSAGE_SCHEMAS``.
    """
    msg_type: MessageType
    sender_id: str
    recipient_id: str  # Use "*" for broadcast
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    @property
    def size(self) -> int:
        try:
            return message_size(self.msg_type)
        except KeyError:
            return 0


@dataclass
class BusStatistics:
    published: int = 0
    delivered: int = 0
    dropped: int = 0
    duplicated: int = 0
    unknown_recipient: int = 0


class MessageBus:
    """
    Best-effort message transport.

    Direct and broadcast delivery with independent per-delivery loss and
    duplication. Pending messages for one recipient are interleaved
    randomly across senders while each sender's own order is kept.
    Seeded, so a run is reproducible.
    """

    def __init__(
        self,
        loss_probability: float = 0.0,
        duplicate_probability: float = 0.0,
        seed: Optional[int] = None,
        log_enabled: bool = True
    ):
        self.loss_probability = loss_probability
        self.duplicate_probability = duplicate_probability
        self._seed = seed
        self._rng = random.Random(seed)
        self._queues: Dict[str, List[Message]] = {}
        self._subscribers: Dict[MessageType, List[str]] = defaultdict(list)
        self._lock = threading.Lock()
        self._message_log: deque = deque(maxlen=1000)
        self._log_enabled = log_enabled
        self.stats = BusStatistics()

    def register_agent(self, agent_id: str):
        """Register an agent to receive messages."""
        with self._lock:
            if agent_id not in self._queues:
                self._queues[agent_id] = []
                logger.debug(f"MessageBus: Registered agent '{agent_id}'")

    def subscribe(self, agent_id: str, msg_type: MessageType):
        """Subscribe an agent to broadcasts of a message type."""
        with self._lock:
            if agent_id not in self._subscribers[msg_type]:
                self._subscribers[msg_type].append(agent_id)

    def publish(self, message: Message):
        """
        Publish a message to the bus.

        - Direct messages go to the specified recipient
        - Broadcast messages (*) go to all subscribers of that type
        Each individual delivery may be lost or duplicated.
        """
        with self._lock:
            self.stats.published += 1
            if self._log_enabled:
                self._message_log.append(message)

            if message.recipient_id == BROADCAST:
                recipients = [
                    r for r in self._subscribers.get(message.msg_type, [])
                    if r != message.sender_id
                ]
            elif message.recipient_id in self._queues:
                recipients = [message.recipient_id]
            else:
                self.stats.unknown_recipient += 1
                logger.warning(f"MessageBus: Unknown recipient '{message.recipient_id}'")
                return

            for recipient in recipients:
                self._deliver(recipient, message)

    def _deliver(self, recipient: str, message: Message):
        if recipient not in self._queues:
            return
        if self.loss_probability and self._rng.random() < self.loss_probability:
            self.stats.dropped += 1
            return
        self._queues[recipient].append(message)
        self.stats.delivered += 1
        if self.duplicate_probability and self._rng.random() < self.duplicate_probability:
            self._queues[recipient].append(message)
            self.stats.duplicated += 1

    def get_messages(self, agent_id: str, max_messages: int = 1000) -> List[Message]:
        """Take pending messages for an agent (non-blocking)."""
        with self._lock:
            queue = self._queues.get(agent_id)
            if not queue:
                return []
            batch = queue[:max_messages]
            del queue[:max_messages]
            return self._interleave(batch)

    def _interleave(self, messages: List[Message]) -> List[Message]:
        by_sender: Dict[str, deque] = defaultdict(deque)
        for message in messages:
            by_sender[message.sender_id].append(message)
        if len(by_sender) <= 1:
            return messages

        ordered = []
        senders = list(by_sender.keys())
        while senders:
            sender = self._rng.choice(senders)
            ordered.append(by_sender[sender].popleft())
            if not by_sender[sender]:
                senders.remove(sender)
        return ordered

    def get_message_count(self, agent_id: str) -> int:
        with self._lock:
            return len(self._queues.get(agent_id, []))

    def get_message_log(self, limit: int = 100) -> List[Message]:
        """Get recent message history."""
        with self._lock:
            return list(self._message_log)[-limit:]

    def clear_log(self):
        with self._lock:
            self._message_log.clear()

    def reset(self):
        """Empty all queues and the log and restart the channel from its seed."""
        with self._lock:
            for queue in self._queues.values():
                queue.clear()
            self._message_log.clear()
            self._rng = random.Random(self._seed)
            self.stats = BusStatistics()


class Agent(ABC):
    """
    Abstract base class for all agents in the system.

    Each agent has:
    - Unique identifier
    - Connection to message bus
    - Its own energy accountant
    - Sense-Decide-Act loop
    """

    def __init__(
        self,
        agent_id: str,
        message_bus: MessageBus,
        energy: Optional[EnergyAccountant] = None
    ):
        self.agent_id = agent_id
        self._bus = message_bus
        self._bus.register_agent(agent_id)
        self.energy = energy
        self._current_time = 0.0

        self.messages_sent = 0
        self.messages_received = 0
        self.malformed_discarded = 0
        self.misaddressed_ignored = 0

        logger.info(f"Agent '{agent_id}' initialized")

    def send(self, record: Any, recipient: str) -> Message:
        """Encode a protocol record and hand it to the transport."""
        message = Message(
            msg_type=message_type_of(record),
            sender_id=self.agent_id,
            recipient_id=recipient,
            payload=record.to_payload(),
            timestamp=self._current_time,
        )
        if self.energy is not None:
            self.energy.transmit(message.size)
        self.messages_sent += 1
        self._bus.publish(message)
        return message

    def broadcast(self, record: Any) -> Message:
        return self.send(record, BROADCAST)

    def receive_messages(self) -> List[Message]:
        """Receive all pending messages, charging receive energy."""
        messages = self._bus.get_messages(self.agent_id)
        for message in messages:
            self.messages_received += 1
            if self.energy is not None:
                self.energy.receive(message.size)
        return messages

    def subscribe(self, msg_type: MessageType):
        """Subscribe to a message type for broadcasts."""
        self._bus.subscribe(self.agent_id, msg_type)

    def _handle_messages(self, messages: List[Message]):
        """Decode and dispatch; malformed messages are logged and dropped."""
        for message in messages:
            try:
                record = decode_payload(message.msg_type, message.payload)
            except MalformedMessageError as e:
                self.malformed_discarded += 1
                logger.warning(f"Agent '{self.agent_id}' discarded message from '{message.sender_id}': {e}")
                continue
            self.on_message(message, record)

    def on_message(self, message: Message, record: Any):
        """Handle a single decoded message. Override in subclasses."""
        logger.debug(f"Agent '{self.agent_id}' received {message.msg_type.name} from '{message.sender_id}'")

    def ignore_misaddressed(self, message: Message, reason: str):
        self.misaddressed_ignored += 1
        logger.debug(f"Agent '{self.agent_id}' ignored {message.msg_type.name} from '{message.sender_id}': {reason}")

    @abstractmethod
    def sense(self, environment: Dict[str, Any]) -> Dict[str, Any]:
        """
        Perceive the environment.

        Args:
            environment: Current state of the world (at least ``sim_time``
                and ``elapsed``)

        Returns:
            Observations relevant to this agent
        """
        pass

    @abstractmethod
    def decide(self, observations: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make decisions based on observations.

        Args:
            observations: Output from sense()

        Returns:
            Actions to take
        """
        pass

    @abstractmethod
    def act(self, actions: Dict[str, Any]) -> None:
        """
        Execute decided actions.

        Args:
            actions: Output from decide()
        """
        pass

    def step(self, environment: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute one sense-decide-act cycle.

        Args:
            environment: Current world state

        Returns:
            Results of the agent's actions
        """
        self._current_time = environment.get("sim_time", self._current_time)

        messages = self.receive_messages()
        self._handle_messages(messages)

        observations = self.sense(environment)
        actions = self.decide(observations)
        self.act(actions)

        return {
            "agent_id": self.agent_id,
            "observations": observations,
            "actions": actions,
            "messages_processed": len(messages)
        }

    def reset(self):
        """Reset agent state. Override in subclasses."""
        self._current_time = 0.0
        self.messages_sent = 0
        self.messages_received = 0
        self.malformed_discarded = 0
        self.misaddressed_ignored = 0
        if self.energy is not None:
            self.energy.reset()
