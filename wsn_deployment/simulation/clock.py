import logging

logger = logging.getLogger(__name__)


class SimulationClock:
    """Monotonic simulated clock advanced in fixed ticks."""

    def __init__(self, tick_interval: float = 1.0, start_time: float = 0.0):
        if tick_interval <= 0:
            raise ValueError(f"tick_interval must be positive, got {tick_interval}")
        self.tick_interval = tick_interval
        self._start_time = start_time
        self._time = start_time
        self._ticks = 0

    @property
    def time(self) -> float:
        return self._time

    @property
    def ticks(self) -> int:
        return self._ticks

    def advance(self) -> float:
        """Move forward one tick and return the elapsed seconds."""
        self._ticks += 1
        self._time = self._start_time + self._ticks * self.tick_interval
        return self.tick_interval

    def environment(self, elapsed: float) -> dict:
        return {"sim_time": self._time, "elapsed": elapsed, "tick": self._ticks}

    def reset(self):
        self._time = self._start_time
        self._ticks = 0
        logger.debug("Simulation clock reset")
