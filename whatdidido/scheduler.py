from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from .errors import InvalidArgument, InvalidState, TaskExecutionFailed
from .models import SchedulerStatus

Task = Callable[[], Any]
TimerFactory = Callable[..., Any]

DEFAULT_RETRY_DELAY_SECONDS = 2.0


class PowerSource(Protocol):
    def idle_duration_minutes(self) -> float: ...

    def subscribe(
        self,
        on_suspend: Callable[[], None],
        on_resume: Callable[[], None],
    ) -> Callable[[], None]: ...


class SchedulerState(Enum):
    STOPPED = "stopped"
    ARMED = "armed"
    EXECUTING = "executing"
    SUSPENDED_WAS_RUNNING = "suspended_was_running"
    SUSPENDED_WAS_STOPPED = "suspended_was_stopped"


_RUNNING_STATES = (SchedulerState.ARMED, SchedulerState.EXECUTING)
_SUSPENDED_STATES = (SchedulerState.SUSPENDED_WAS_RUNNING, SchedulerState.SUSPENDED_WAS_STOPPED)


class OutcomeStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_IDLE = "skipped_idle"
    SKIPPED_NO_TASK = "skipped_no_task"


@dataclass(frozen=True)
class TaskOutcome:
    status: OutcomeStatus
    attempts: int = 0
    error: TaskExecutionFailed | None = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED


class Scheduler:
    """Runs one task roughly every ``interval_minutes``.

    A single ``threading.Timer`` is armed at a time, and the next one only
    after the current execution (retries included) has finished, so executions
    of one scheduler never overlap. Task failures are retried, logged and
    dropped; they never stop the schedule. ``execute_now`` shares the same
    execution lock as timer-driven runs.

    Suspend and resume notifications from ``power`` move the scheduler through
    the ``SUSPENDED_*`` states; resuming restarts the interval from zero.
    """

    def __init__(
        self,
        power: PowerSource,
        *,
        interval_minutes: float = 1.0,
        max_retries: int = 2,
        idle_threshold_minutes: float = 5.0,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        name: str = "scheduler",
        logger: logging.Logger | None = None,
        timer_factory: TimerFactory = threading.Timer,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if interval_minutes <= 0:
            raise InvalidArgument("interval_minutes must be positive")
        if int(max_retries) < 1:
            raise InvalidArgument("max_retries must be at least 1")

        self.name = name
        self.max_retries = int(max_retries)
        self.idle_threshold_minutes = float(idle_threshold_minutes)
        self.retry_delay_seconds = max(0.0, float(retry_delay_seconds))
        self._interval_minutes = float(interval_minutes)
        self._power = power
        self._logger = logger or logging.getLogger(f"{__name__}.{name}")
        self._timer_factory = timer_factory
        self._sleep = sleep

        self._lock = threading.RLock()
        self._execution_lock = threading.Lock()
        self._state = SchedulerState.STOPPED
        self._task: Task | None = None
        self._timer: Any = None
        # Bumped whenever the armed cycle is abandoned; stale timer callbacks
        # and in-flight executions compare against it before re-arming.
        self._generation = 0
        self._unsubscribe = power.subscribe(self.suspend, self.resume)

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state in _RUNNING_STATES

    @property
    def interval_minutes(self) -> float:
        return self._interval_minutes

    def start(self, task: Task) -> None:
        with self._lock:
            if self.running:
                self._logger.warning("Scheduler %s already running", self.name)
                raise InvalidState(f"Scheduler {self.name} is already running")
            if not callable(task):
                raise InvalidArgument("Task function is required")

            self._task = task
            self._begin_cycle_locked()
            self._logger.info(
                "Starting scheduler %s with %s minute interval",
                self.name,
                _fmt_minutes(self._interval_minutes),
            )

    def stop(self) -> None:
        with self._lock:
            if self._state is SchedulerState.STOPPED:
                return
            self._abandon_cycle_locked()
            self._state = SchedulerState.STOPPED
        self._logger.info("Scheduler %s stopped", self.name)

    def pause(self) -> None:
        with self._lock:
            if self._state in _SUSPENDED_STATES:
                return
            was_running = self.running
            self._abandon_cycle_locked()
            if was_running:
                self._state = SchedulerState.SUSPENDED_WAS_RUNNING
            else:
                self._state = SchedulerState.SUSPENDED_WAS_STOPPED
        self._logger.info("Scheduler %s paused (was running: %s)", self.name, was_running)

    def suspend(self) -> None:
        self.pause()

    def resume(self) -> None:
        with self._lock:
            state = self._state
            if state is SchedulerState.SUSPENDED_WAS_STOPPED:
                self._state = SchedulerState.STOPPED
                return
            if state is not SchedulerState.SUSPENDED_WAS_RUNNING:
                return
            self._state = SchedulerState.STOPPED
            if self._task is None:
                return
            self._begin_cycle_locked()
        self._logger.info("Scheduler %s resumed, interval restarted", self.name)

    def update_interval(self, interval_minutes: float) -> None:
        try:
            new_interval = float(interval_minutes)
        except (TypeError, ValueError):
            new_interval = 0.0
        if new_interval <= 0:
            self._logger.warning("Ignoring invalid interval %r for %s", interval_minutes, self.name)
            return

        with self._lock:
            self._interval_minutes = new_interval
            if self.running:
                self._abandon_cycle_locked()
                self._begin_cycle_locked()
        self._logger.info("Interval for %s updated to %s minutes", self.name, _fmt_minutes(new_interval))

    def execute_now(self, task: Task | None = None) -> TaskOutcome:
        """Runs once on the calling thread, with the idle check and retries.

        ``task`` overrides the scheduled task for this run only; the armed
        timer is left alone.
        """
        if task is not None and not callable(task):
            raise InvalidArgument("Task function is required")
        self._logger.info("Executing %s immediately (manual trigger)", self.name)
        return self._run_once(task)

    def execute_with_retry(self, task: Task) -> TaskOutcome:
        last_error: BaseException | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                task()
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                self._logger.warning(
                    "Task attempt %d/%d for %s failed: %s",
                    attempt,
                    self.max_retries,
                    self.name,
                    exc,
                )
                if attempt < self.max_retries:
                    self._sleep(self.retry_delay_seconds)
                continue
            return TaskOutcome(OutcomeStatus.SUCCEEDED, attempts=attempt)

        failure = TaskExecutionFailed(
            f"Task for {self.name} failed after {self.max_retries} attempts: {last_error}",
            attempts=self.max_retries,
            last_error=last_error,
        )
        return TaskOutcome(OutcomeStatus.FAILED, attempts=self.max_retries, error=failure)

    def get_status(self) -> SchedulerStatus:
        return SchedulerStatus(running=self.running, interval_minutes=self._interval_minutes)

    def close(self) -> None:
        self.stop()
        self._unsubscribe()

    def _begin_cycle_locked(self) -> None:
        self._generation += 1
        self._arm_locked(self._generation)

    def _abandon_cycle_locked(self) -> None:
        self._generation += 1
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()

    def _arm_locked(self, generation: int) -> None:
        timer = self._timer_factory(
            self._interval_minutes * 60,
            self._on_timer,
            args=(generation,),
        )
        timer.daemon = True
        self._timer = timer
        self._state = SchedulerState.ARMED
        timer.start()

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state is not SchedulerState.ARMED:
                return
            self._timer = None
            self._state = SchedulerState.EXECUTING

        self._run_once()

        with self._lock:
            if generation != self._generation:
                # Stopped, paused or restarted while executing.
                return
            self._arm_locked(generation)

    def _run_once(self, override: Task | None = None) -> TaskOutcome:
        with self._execution_lock:
            task = override if override is not None else self._task
            if task is None:
                self._logger.warning("No task configured for %s", self.name)
                return TaskOutcome(OutcomeStatus.SKIPPED_NO_TASK)

            idle_minutes = self._idle_minutes()
            if idle_minutes is not None and idle_minutes >= self.idle_threshold_minutes:
                self._logger.debug(
                    "User idle for %.1f minutes, skipping %s",
                    idle_minutes,
                    self.name,
                )
                return TaskOutcome(OutcomeStatus.SKIPPED_IDLE)

            outcome = self.execute_with_retry(task)
            if outcome.ok:
                self._logger.debug("Task for %s executed successfully", self.name)
            else:
                self._logger.error("Task execution failed: %s", outcome.error)
            return outcome

    def _idle_minutes(self) -> float | None:
        if self.idle_threshold_minutes <= 0:
            return None
        try:
            return float(self._power.idle_duration_minutes())
        except Exception as exc:  # noqa: BLE001
            self._logger.warning("Could not read idle time for %s: %s", self.name, exc)
            return None


def _fmt_minutes(value: float) -> str:
    return f"{value:g}"
