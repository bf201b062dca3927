import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable


logger = logging.getLogger(__name__)

DEFAULT_DAILY_QUOTA = 10_000


class UsageMeter:
    """
    Quota units consumed today against a fixed daily ceiling. Owned by the
    app and handed to the pipeline; nothing here resets on its own.
    """

    def __init__(self, total: int = DEFAULT_DAILY_QUOTA):
        self.total = total
        self._used = 0
        self._lock = threading.Lock()

    def _snapshot(self) -> dict[str, int]:
        return {
            "used": self._used,
            "total": self.total,
            "remaining": self.total - self._used,
        }

    def track(self, units: int) -> dict[str, int]:
        if units < 0:
            raise ValueError("units must not be negative")
        with self._lock:
            self._used += units
            return self._snapshot()

    def current(self) -> dict[str, int]:
        with self._lock:
            return self._snapshot()

    def reset_daily(self) -> None:
        with self._lock:
            previous = self._used
            self._used = 0
        logger.info("Daily usage reset (was %d units)", previous)


def seconds_until_next_reset(now: datetime, reset_hour_utc: int = 0) -> float:
    now = now.astimezone(timezone.utc)
    boundary = now.replace(hour=reset_hour_utc, minute=0, second=0, microsecond=0)
    if boundary <= now:
        boundary += timedelta(days=1)
    return (boundary - now).total_seconds()


class DailyResetScheduler:
    """Daemon thread that calls meter.reset_daily() at reset_hour_utc every day."""

    def __init__(
        self,
        meter: UsageMeter,
        reset_hour_utc: int = 0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        if not 0 <= reset_hour_utc <= 23:
            raise ValueError("reset_hour_utc must be between 0 and 23")
        self.meter = meter
        self.reset_hour_utc = reset_hour_utc
        self.clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="usage-reset", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            delay = seconds_until_next_reset(self.clock(), self.reset_hour_utc)
            if self._stop.wait(delay):
                return
            self.meter.reset_daily()
