# universal/global_clock.py
import logging
import time
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class SimulationClock:
    """Host-owned simulation clock.

    Measures wall-clock time elapsed since the previous tick and hands it,
    together with the user-controlled rate multiplier, to every registered
    listener (e.g. the FleetManager). There is no fixed tick rate; each
    listener sees a monotonic, non-negative elapsed time.
    """

    def __init__(self, time_source: Callable[[], float] = time.monotonic,
                 tick_interval: float = 1 / 60):
        self._time_source = time_source
        self.time_multiplier = 1.0
        self.tick_interval = tick_interval
        self.running = False
        self.elapsed_sim_s = 0.0
        self._last_wall_time: Optional[float] = None
        self._listeners: List[Callable[[float, float], None]] = []

    # ---- core time control ----
    def tick(self) -> float:
        """Measure elapsed wall time and notify listeners.

        The first tick after construction (or after ``resume``) only
        establishes the time base and reports zero elapsed time.

        Returns:
            Elapsed wall-clock seconds handed to listeners.
        """
        now = self._time_source()
        if self._last_wall_time is None:
            dt = 0.0
        else:
            dt = max(0.0, now - self._last_wall_time)
        self._last_wall_time = now
        self.elapsed_sim_s += dt * self.time_multiplier

        for cb in list(self._listeners):
            try:
                cb(dt, self.time_multiplier)
            except Exception:
                logger.exception("Clock listener raised an exception")
        return dt

    def run(self, duration_s: Optional[float] = None):
        """Tick continuously until stopped or ``duration_s`` of wall time."""
        self.running = True
        start = self._time_source()
        while self.running:
            self.tick()
            if (duration_s is not None and
                    self._time_source() - start >= duration_s):
                break
            time.sleep(self.tick_interval)
        self.running = False

    def stop(self):
        """Stop the continuous run loop."""
        self.running = False

    def pause(self):
        self.running = False
        self._last_wall_time = None

    def resume(self):
        # Time spent paused is not simulated
        self._last_wall_time = None
        self.running = True

    def set_speed(self, multiplier: float):
        """
        Set how fast simulation time advances.
        multiplier = 1.0 → real time
        multiplier = 10.0 → 10× faster
        multiplier = 0.0 → frozen (same as pause)
        """
        if multiplier < 0:
            multiplier = 0.0
        self.time_multiplier = multiplier
        logger.info("Simulation rate set to %sx", multiplier)

    def register_listener(self, callback: Callable[[float, float], None]):
        """Receive ``(elapsed_s, rate_multiplier)`` on every tick."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unregister_listener(self, callback: Callable[[float, float], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def __repr__(self):
        return (f"SimulationClock(rate={self.time_multiplier}x, "
                f"elapsed={self.elapsed_sim_s:.1f}s)")


# Shared singleton
clock = SimulationClock()
