"""
Energy accounting shared by base station, robots and sensors.

Every node owns one EnergyAccountant. Each charge is a closed-form
function of elapsed time, message size or travelled distance, and is
appended to an ordered trace so a run can be replayed exactly.
"""

from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Tuple

from .config import EnergyProfile


@dataclass
class EnergyStats:
    """Running energy totals for one node, in Joules."""
    baseline: float = 0.0
    sensing: float = 0.0
    processing: float = 0.0
    transmit: float = 0.0
    receive: float = 0.0
    idle_radio: float = 0.0
    mobility: float = 0.0

    @property
    def radio(self) -> float:
        return self.transmit + self.receive + self.idle_radio

    @property
    def total(self) -> float:
        return (
            self.baseline + self.sensing + self.processing
            + self.transmit + self.receive + self.idle_radio + self.mobility
        )

    def to_dict(self) -> Dict[str, float]:
        data = asdict(self)
        data["total"] = self.total
        return data


# (category, input quantity) - the quantity is seconds, bytes, metres or
# None for sensing events.
EnergyEvent = Tuple[str, Optional[float]]

CATEGORIES = ("baseline", "sensing", "processing", "transmit", "receive", "idle_radio", "mobility")


class EnergyAccountant:

    def __init__(self, profile: EnergyProfile, sensing_range: float = 0.0):
        self.profile = profile
        self.sensing_range = sensing_range
        self.stats = EnergyStats()
        self._trace: List[EnergyEvent] = []
        self._distance_travelled = 0.0

    @staticmethod
    def _check(quantity: float, what: str):
        if quantity < 0:
            raise ValueError(f"{what} must be non-negative, got {quantity}")

    def baseline(self, duration: float) -> float:
        self._check(duration, "duration")
        energy = self.profile.power_baseline * duration
        self.stats.baseline += energy
        self._trace.append(("baseline", duration))
        return energy

    def sensing(self) -> float:
        """One sensing event: mu * r^2, independent of elapsed time."""
        energy = self.profile.sensing_coefficient * self.sensing_range ** 2
        self.stats.sensing += energy
        self._trace.append(("sensing", None))
        return energy

    def processing(self, duration: float) -> float:
        self._check(duration, "duration")
        energy = self.profile.power_processing * duration
        self.stats.processing += energy
        self._trace.append(("processing", duration))
        return energy

    def transmit(self, num_bytes: int) -> float:
        self._check(num_bytes, "message size")
        energy = self.profile.power_transmit * (num_bytes / self.profile.bandwidth)
        self.stats.transmit += energy
        self._trace.append(("transmit", num_bytes))
        return energy

    def receive(self, num_bytes: int) -> float:
        self._check(num_bytes, "message size")
        energy = self.profile.power_receive * (num_bytes / self.profile.bandwidth)
        self.stats.receive += energy
        self._trace.append(("receive", num_bytes))
        return energy

    def idle_radio(self, duration: float) -> float:
        self._check(duration, "duration")
        energy = self.profile.power_idle * duration
        self.stats.idle_radio += energy
        self._trace.append(("idle_radio", duration))
        return energy

    def mobility(self, distance: float) -> float:
        self._check(distance, "distance")
        energy = self.profile.mobility_coefficient * distance
        self.stats.mobility += energy
        self._distance_travelled += distance
        self._trace.append(("mobility", distance))
        return energy

    @property
    def total(self) -> float:
        return self.stats.total

    @property
    def distance_travelled(self) -> float:
        return self._distance_travelled

    @property
    def trace(self) -> List[EnergyEvent]:
        return list(self._trace)

    @classmethod
    def replay(
        cls,
        profile: EnergyProfile,
        trace: List[EnergyEvent],
        sensing_range: float = 0.0
    ) -> "EnergyAccountant":
        """Rebuild an accountant by re-applying a recorded trace."""
        accountant = cls(profile, sensing_range)
        for category, quantity in trace:
            if category not in CATEGORIES:
                raise ValueError(f"Unknown energy category '{category}'")
            handler = getattr(accountant, category)
            if quantity is None:
                handler()
            else:
                handler(quantity)
        return accountant

    def reset(self):
        self.stats = EnergyStats()
        self._trace.clear()
        self._distance_travelled = 0.0
