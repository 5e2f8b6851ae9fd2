"""Wall-clock view of the SimPy timeline."""

from datetime import UTC, datetime, timedelta

import simpy


class MeterClock:
    """Converts SimPy time (seconds since start) to wall datetimes."""

    def __init__(self, start_time: datetime, env: simpy.Environment):
        self._start_time = start_time.astimezone(UTC)
        self._env = env

    def current_time(self) -> datetime:
        """Convert SimPy now to datetime."""
        return self._start_time + timedelta(seconds=self._env.now)

    def now_ms(self) -> int:
        """Milliseconds elapsed on the SimPy timeline."""
        return round(self._env.now * 1000)
