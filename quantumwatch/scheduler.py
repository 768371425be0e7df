"""Cron-driven scheduler: each stage on its own timer, own thread, own connection."""
import logging
import threading
from collections.abc import Callable
from datetime import datetime

from quantumwatch.database import Database
from quantumwatch.errors import ConfigError
from quantumwatch.pipeline import STAGES, run_stage
from quantumwatch.stage_runner import StageLockError

logger = logging.getLogger(__name__)

# (min, max) for minute, hour, day of month, month, day of week (0 = Sunday)
FIELD_RANGES = [(0, 59), (0, 23), (1, 31), (1, 12), (0, 6)]


def _parse_field(field: str, low: int, high: int, is_weekday: bool = False) -> set[int]:
    values: set[int] = set()
    for part in field.split(","):
        base, _, step_str = part.partition("/")
        step = int(step_str) if step_str else 1
        if step < 1:
            raise ValueError(f"step must be positive in {part!r}")

        if base == "*":
            start, end = low, high
        elif "-" in base:
            start_str, end_str = base.split("-", 1)
            start, end = int(start_str), int(end_str)
        else:
            start = int(base)
            end = high if step_str else start

        if is_weekday and end == 7:
            # 7 is an alias for Sunday
            values.add(0)
            end = 6
            if start == 7:
                continue
        if start < low or end > high or start > end:
            raise ValueError(f"{part!r} outside {low}-{high}")
        values.update(range(start, end + 1, step))
    return values


class CronSchedule:
    """Five-field cron expression: minute hour day-of-month month day-of-week.

    Supports ``*``, lists, ranges and steps. When both day fields are
    restricted a time matches if either does, as in cron.
    """

    def __init__(self, expression: str):
        self.expression = expression
        fields = expression.split()
        if len(fields) != 5:
            raise ConfigError(f"Invalid cron expression {expression!r}: expected 5 fields")
        try:
            parsed = [
                _parse_field(f, low, high, is_weekday=(i == 4))
                for i, (f, (low, high)) in enumerate(zip(fields, FIELD_RANGES))
            ]
        except ValueError as e:
            raise ConfigError(f"Invalid cron expression {expression!r}: {e}")

        self.minutes, self.hours, self.days, self.months, self.weekdays = parsed
        self._day_restricted = fields[2] != "*"
        self._weekday_restricted = fields[4] != "*"

    def matches(self, when: datetime) -> bool:
        if when.minute not in self.minutes or when.hour not in self.hours:
            return False
        if when.month not in self.months:
            return False

        day_ok = when.day in self.days
        weekday_ok = (when.weekday() + 1) % 7 in self.weekdays
        if self._day_restricted and self._weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok


class Scheduler:
    """Fire stages when their cron expression matches the current minute.

    A stage whose previous run is still going when it comes due again is
    skipped for that minute. Stages never share a database connection.
    """

    def __init__(
        self,
        config: dict,
        db_factory: Callable[[], Database],
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.db_factory = db_factory
        self.clock = clock
        self.schedules: dict[str, CronSchedule] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._last_fired: dict[str, datetime] = {}
        self._stop = threading.Event()

        for name in STAGES:
            expression = config["schedule"].get(name)
            if not expression:
                logger.info(f"[SCHEDULER] No schedule for {name}, not scheduled")
                continue
            try:
                self.schedules[name] = CronSchedule(expression)
                logger.info(f"[SCHEDULER] Scheduled {name} with pattern: {expression}")
            except ConfigError as e:
                logger.error(f"[SCHEDULER] {e}. {name} not scheduled.")

    def due_stages(self, now: datetime) -> list[str]:
        """Stages whose schedule matches now and that haven't fired this minute."""
        minute = now.replace(second=0, microsecond=0)
        return [
            name
            for name, schedule in self.schedules.items()
            if schedule.matches(minute) and self._last_fired.get(name) != minute
        ]

    def is_running(self, name: str) -> bool:
        thread = self._threads.get(name)
        return thread is not None and thread.is_alive()

    def launch(self, name: str) -> bool:
        """Start name in a worker thread unless it is already running."""
        if self.is_running(name):
            logger.warning(f"[SCHEDULER] {name} still running, skipping this tick")
            return False
        thread = threading.Thread(
            target=self._run_stage, args=(name,), name=f"stage-{name}", daemon=True
        )
        self._threads[name] = thread
        thread.start()
        return True

    def _run_stage(self, name: str) -> None:
        try:
            db = self.db_factory()
        except Exception as e:
            logger.error(f"[SCHEDULER] {name} aborted, store unavailable: {e}")
            return
        try:
            result = run_stage(name, db, self.config)
            if result.disabled:
                logger.warning(f"[SCHEDULER] {name} disabled: {result.disabled}")
        except StageLockError as e:
            logger.warning(f"[SCHEDULER] {e}")
        except Exception:
            logger.exception(f"[SCHEDULER] {name} crashed")
        finally:
            db.close()

    def tick(self, now: datetime | None = None) -> list[str]:
        """Launch due stages; return the names launched."""
        now = now or self.clock()
        minute = now.replace(second=0, microsecond=0)
        launched = []
        for name in self.due_stages(now):
            self._last_fired[name] = minute
            if self.launch(name):
                launched.append(name)
        return launched

    def stop(self) -> None:
        self._stop.set()

    def serve(self) -> None:
        """Run until stop() is called (or KeyboardInterrupt)."""
        for name in self.config["schedule"].get("run_on_startup") or []:
            if name in STAGES:
                logger.info(f"[SCHEDULER] Running {name} on startup")
                self.launch(name)
            else:
                logger.error(f"[SCHEDULER] Unknown stage in run_on_startup: {name}")

        poll_seconds = self.config["schedule"]["poll_seconds"]
        logger.info(f"[SCHEDULER] Started with {len(self.schedules)} scheduled stages")
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(poll_seconds)

    def join(self, timeout: float | None = None) -> None:
        for thread in list(self._threads.values()):
            thread.join(timeout)
