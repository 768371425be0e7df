"""Common select/process/persist loop shared by every pipeline stage."""
import logging
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from quantumwatch.database import Database
from quantumwatch.errors import ConfigError


@contextmanager
def timer(operation_name: str, logger: logging.Logger):
    """Context manager to time operations and log duration."""
    start = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start
        logger.debug(f"{operation_name} took {duration:.1f}s")


class StageLockError(Exception):
    """Another run of the same stage is still in progress."""


@dataclass
class StageResult:
    """Outcome of one stage invocation."""

    stage: str
    selected: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)
    records: list = field(default_factory=list)
    disabled: str | None = None
    aborted: bool = False


class StageRunner:
    """Select pending work, process each item, persist the outcome.

    Subclasses implement select_pending, process_one and persist_outcome.
    run() adds what every stage needs around them: configuration check,
    per-stage lock, sequential processing with a fixed delay between
    items, per-item failure isolation and run bookkeeping.
    """

    name = "stage"
    log_prefix = "[STAGE]"

    def __init__(self, db: Database, config: dict, sleep=time.sleep):
        self.db = db
        self.config = config
        self.sleep = sleep
        self.logger = logging.getLogger(self.__class__.__module__)

    # --- hooks ---

    def check_config(self) -> None:
        """Raise ConfigError if the stage cannot run with this configuration."""

    @property
    def batch_size(self) -> int | None:
        return None

    @property
    def delay_seconds(self) -> float:
        return 0.0

    def delay_after(self, item) -> float:
        """Pause between item and the next one in the same batch."""
        return self.delay_seconds

    def select_pending(self, limit: int | None) -> list:
        raise NotImplementedError

    def process_one(self, item) -> Any | None:
        """Do the external work for item. None means nothing to persist."""
        raise NotImplementedError

    def persist_outcome(self, item, outcome) -> Any | None:
        """Write outcome. None means a concurrent run already wrote it."""
        raise NotImplementedError

    def describe(self, item) -> str:
        return str(getattr(item, "id", item))

    # --- driver ---

    def handle(self, item) -> Any | None:
        """Process and persist one item; errors propagate to the caller."""
        outcome = self.process_one(item)
        if outcome is None:
            return None
        return self.persist_outcome(item, outcome)

    def _acquire(self, force: bool) -> int:
        lock_minutes = self.config["pipeline"]["lock_timeout_minutes"]
        running = self.db.get_running_run(self.name, lock_minutes)
        if running is not None and not force:
            raise StageLockError(
                f"Stage '{self.name}' already running (run {running['id']} "
                f"started {running['started_at']}). Use --force to override."
            )
        return self.db.record_run_start(self.name)

    def _mark_failed(self, run_id: int) -> None:
        try:
            self.db.record_run_failed(run_id)
        except sqlite3.Error as e:
            self.logger.error(f"{self.log_prefix} Could not mark run {run_id} failed: {e}")

    def run(self, limit: int | None = None, force: bool = False) -> StageResult:
        """Run one invocation of the stage.

        Args:
            limit: Max items to select (defaults to the stage batch size)
            force: Ignore a running lock held by another invocation

        Raises:
            StageLockError: another invocation holds the lock
        """
        result = StageResult(stage=self.name)

        try:
            self.check_config()
        except ConfigError as e:
            self.logger.warning(f"{self.log_prefix} Stage disabled: {e}")
            result.disabled = str(e)
            return result

        run_id = self._acquire(force)
        limit = limit if limit is not None else self.batch_size

        # The run row is the lock; it must never be left in 'running'
        try:
            return self._run_batch(run_id, limit, result)
        except BaseException:
            self._mark_failed(run_id)
            raise

    def _run_batch(self, run_id: int, limit: int | None, result: StageResult) -> StageResult:
        try:
            items = self.select_pending(limit)
        except sqlite3.Error as e:
            self.logger.error(f"{self.log_prefix} Could not select pending work: {e}")
            self._mark_failed(run_id)
            result.aborted = True
            return result

        result.selected = len(items)
        self.db.record_run_selected(run_id, len(items))
        self.logger.info(f"{self.log_prefix} {len(items)} pending")

        previous = None
        for item in items:
            if previous is not None:
                delay = self.delay_after(previous)
                if delay:
                    self.sleep(delay)
            previous = item

            label = self.describe(item)
            try:
                with timer(f"{self.log_prefix} {label}", self.logger):
                    record = self.handle(item)
            except Exception as e:
                self.logger.error(f"{self.log_prefix} ✗ {label}: {e}")
                result.failed += 1
                result.failures.append((label, str(e)))
                continue

            if record is None:
                result.skipped += 1
            else:
                result.processed += 1
                result.records.append(record)

        self.db.record_run_complete(run_id, result.processed, result.skipped, result.failed)
        self.logger.info(
            f"{self.log_prefix} Done: {result.processed} processed, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result
