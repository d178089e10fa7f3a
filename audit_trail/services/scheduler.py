"""
Daily background task with an explicit start/stop lifecycle.

One thread sleeps until the next HH:MM UTC, runs its action once,
then waits for the following day. stop() wakes the thread and joins
it, so shutdown and tests terminate it deterministically.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_run_delay(
    hour_utc: int, minute_utc: int, now: datetime | None = None
) -> float:
    """Seconds from now until the next hour_utc:minute_utc UTC."""
    now = now or _utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    target = now.replace(hour=hour_utc, minute=minute_utc, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class DailyTask:

    def __init__(
        self,
        name: str,
        action: Callable[[], object],
        hour_utc: int = 0,
        minute_utc: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not 0 <= hour_utc <= 23 or not 0 <= minute_utc <= 59:
            raise ValueError(f"Invalid UTC time {hour_utc}:{minute_utc}")
        self.name = name
        self.action = action
        self.hour_utc = hour_utc
        self.minute_utc = minute_utc
        self.clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._run_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "DailyTask":
        if self.is_running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name=f"daily-task-{self.name}", daemon=True
        )
        self._thread.start()
        logger.info(
            "scheduled_task_started",
            task=self.name,
            at=f"{self.hour_utc:02d}:{self.minute_utc:02d}Z",
        )
        return self

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("scheduled_task_stopped", task=self.name)

    def run_once(self) -> bool:
        """
        Run the action now. Returns False if it failed or another run
        was already in progress; failures are logged, never raised.
        """
        if not self._run_lock.acquire(blocking=False):
            logger.warning("scheduled_task_overlap_skipped", task=self.name)
            return False
        try:
            self.action()
            return True
        except Exception:
            logger.error("scheduled_task_failed", task=self.name, exc_info=True)
            return False
        finally:
            self._run_lock.release()

    def _loop(self) -> None:
        while True:
            delay = next_run_delay(self.hour_utc, self.minute_utc, self.clock())
            if self._stop.wait(delay):
                return
            self.run_once()
