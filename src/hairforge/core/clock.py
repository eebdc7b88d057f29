"""Frame clock supplying the simulation time step."""

import time

from hairforge.constants import MAX_DELTA_TIME


class FrameClock:
    """Tracks elapsed time between simulation frames.

    While paused, :meth:`get_delta` reports 0 and the owner is expected to
    freeze the hair instead of integrating it.
    """

    def __init__(self, max_delta: float = MAX_DELTA_TIME):
        self.max_delta = max_delta
        self._last_time = time.perf_counter()
        self._paused = False
        self.elapsed: float = 0.0

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        # Time spent paused must not show up as one huge step
        self._paused = False
        self._last_time = time.perf_counter()

    def get_delta(self) -> float:
        """Return seconds since the last call, clamped to ``max_delta``."""
        now = time.perf_counter()
        dt = now - self._last_time
        self._last_time = now
        if self._paused:
            return 0.0
        dt = min(dt, self.max_delta)
        self.elapsed += dt
        return dt

    def reset(self) -> None:
        self._last_time = time.perf_counter()
        self.elapsed = 0.0
