from __future__ import annotations

import threading
import time
import unittest

from whatdidido.errors import InvalidArgument, InvalidState, TaskExecutionFailed
from whatdidido.power import PowerMonitor
from whatdidido.scheduler import OutcomeStatus, Scheduler, SchedulerState


class FakeTimer:
    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.function(*self.args, **self.kwargs)


class TimerRecorder:
    def __init__(self):
        self.timers: list[FakeTimer] = []

    def __call__(self, interval, function, args=None, kwargs=None) -> FakeTimer:
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def live(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if timer.started and not (timer.cancelled or timer.fired)]

    @property
    def last(self) -> FakeTimer:
        return self.timers[-1]


class FakePower:
    def __init__(self, idle_minutes: float = 0.0):
        self.idle_minutes = idle_minutes
        self.listeners = []

    def idle_duration_minutes(self) -> float:
        return self.idle_minutes

    def subscribe(self, on_suspend, on_resume):
        entry = (on_suspend, on_resume)
        self.listeners.append(entry)
        return lambda: self.listeners.remove(entry)


class CountingTask:
    def __init__(self, failures: int = 0):
        self.calls = 0
        self.failures = failures

    def __call__(self) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"boom {self.calls}")


class SchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.timers = TimerRecorder()
        self.power = FakePower()
        self.sleeps: list[float] = []
        self.scheduler = Scheduler(
            self.power,
            interval_minutes=2,
            max_retries=3,
            idle_threshold_minutes=5,
            timer_factory=self.timers,
            sleep=self.sleeps.append,
        )

    def test_rejects_invalid_construction(self) -> None:
        with self.assertRaises(InvalidArgument):
            Scheduler(self.power, interval_minutes=0, timer_factory=self.timers)
        with self.assertRaises(InvalidArgument):
            Scheduler(self.power, max_retries=0, timer_factory=self.timers)

    def test_start_arms_one_daemon_timer(self) -> None:
        self.scheduler.start(CountingTask())
        self.assertEqual(len(self.timers.live), 1)
        self.assertEqual(self.timers.last.interval, 120)
        self.assertTrue(self.timers.last.daemon)
        self.assertEqual(self.scheduler.state, SchedulerState.ARMED)
        self.assertTrue(self.scheduler.get_status().running)

    def test_start_twice_raises_invalid_state(self) -> None:
        self.scheduler.start(CountingTask())
        with self.assertRaises(InvalidState):
            self.scheduler.start(CountingTask())
        self.assertEqual(len(self.timers.live), 1)

    def test_start_requires_callable(self) -> None:
        with self.assertRaises(InvalidArgument):
            self.scheduler.start("not a task")  # type: ignore[arg-type]
        self.assertFalse(self.scheduler.running)

    def test_stop_is_idempotent(self) -> None:
        self.scheduler.stop()
        self.scheduler.start(CountingTask())
        self.scheduler.stop()
        self.scheduler.stop()
        self.assertEqual(self.scheduler.state, SchedulerState.STOPPED)
        self.assertEqual(self.timers.live, [])
        self.assertTrue(self.timers.timers[0].cancelled)

    def test_timer_fire_runs_task_and_rearms(self) -> None:
        task = CountingTask()
        self.scheduler.start(task)
        first = self.timers.last
        first.fire()
        self.assertEqual(task.calls, 1)
        self.assertEqual(len(self.timers.timers), 2)
        self.assertIsNot(self.timers.last, first)
        self.assertEqual(self.scheduler.state, SchedulerState.ARMED)

    def test_idle_skip_does_not_run_task(self) -> None:
        task = CountingTask()
        self.scheduler.start(task)
        self.power.idle_minutes = 5
        outcome = self.scheduler.execute_now()
        self.assertEqual(outcome.status, OutcomeStatus.SKIPPED_IDLE)
        self.assertEqual(task.calls, 0)

        self.timers.last.fire()
        self.assertEqual(task.calls, 0)
        self.assertEqual(len(self.timers.live), 1)
        self.assertTrue(self.scheduler.running)

    def test_zero_threshold_disables_idle_check(self) -> None:
        scheduler = Scheduler(
            FakePower(idle_minutes=600),
            interval_minutes=1,
            idle_threshold_minutes=0,
            timer_factory=self.timers,
        )
        task = CountingTask()
        scheduler.start(task)
        self.assertTrue(scheduler.execute_now().ok)
        self.assertEqual(task.calls, 1)

    def test_retry_ceiling(self) -> None:
        task = CountingTask(failures=100)
        self.scheduler.start(task)
        self.timers.last.fire()

        self.assertEqual(task.calls, 3)
        self.assertEqual(self.sleeps, [2.0, 2.0])
        self.assertTrue(self.scheduler.running)
        self.assertEqual(len(self.timers.live), 1)

    def test_failed_outcome_carries_last_error(self) -> None:
        task = CountingTask(failures=100)
        self.scheduler.start(task)
        outcome = self.scheduler.execute_now()
        self.assertEqual(outcome.status, OutcomeStatus.FAILED)
        self.assertEqual(outcome.attempts, 3)
        self.assertIsInstance(outcome.error, TaskExecutionFailed)
        self.assertIsInstance(outcome.error.last_error, RuntimeError)
        self.assertIn("boom 3", str(outcome.error))

    def test_retry_succeeds_after_failures(self) -> None:
        task = CountingTask(failures=1)
        outcome = self.scheduler.execute_with_retry(task)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.attempts, 2)
        self.assertEqual(task.calls, 2)

    def test_execute_now_without_task(self) -> None:
        outcome = self.scheduler.execute_now()
        self.assertEqual(outcome.status, OutcomeStatus.SKIPPED_NO_TASK)
        self.assertEqual(self.timers.timers, [])

    def test_execute_now_leaves_timer_alone(self) -> None:
        task = CountingTask()
        self.scheduler.start(task)
        armed = self.timers.last
        self.assertTrue(self.scheduler.execute_now().ok)
        self.assertEqual(task.calls, 1)
        self.assertEqual(self.timers.live, [armed])

    def test_execute_now_with_task_while_stopped(self) -> None:
        task = CountingTask()
        self.assertTrue(self.scheduler.execute_now(task).ok)
        self.assertEqual(task.calls, 1)
        self.assertFalse(self.scheduler.running)
        self.assertEqual(self.timers.timers, [])

        self.power.idle_minutes = 5
        outcome = self.scheduler.execute_now(task)
        self.assertEqual(outcome.status, OutcomeStatus.SKIPPED_IDLE)
        self.assertEqual(task.calls, 1)

        with self.assertRaises(InvalidArgument):
            self.scheduler.execute_now("not callable")

    def test_update_interval_replaces_timer(self) -> None:
        self.scheduler.start(CountingTask())
        old = self.timers.last
        self.scheduler.update_interval(7)

        status = self.scheduler.get_status()
        self.assertEqual(status.interval_minutes, 7)
        self.assertTrue(status.running)
        self.assertTrue(old.cancelled)
        self.assertEqual(len(self.timers.live), 1)
        self.assertEqual(self.timers.last.interval, 420)

    def test_update_interval_when_stopped_does_not_arm(self) -> None:
        self.scheduler.update_interval(3)
        self.assertEqual(self.scheduler.interval_minutes, 3)
        self.assertEqual(self.timers.timers, [])

    def test_update_interval_ignores_invalid_values(self) -> None:
        self.scheduler.start(CountingTask())
        with self.assertLogs("whatdidido.scheduler", level="WARNING"):
            self.scheduler.update_interval(0)
        self.assertEqual(self.scheduler.interval_minutes, 2)
        self.assertEqual(len(self.timers.timers), 1)

    def test_stale_timer_is_ignored(self) -> None:
        task = CountingTask()
        self.scheduler.start(task)
        stale = self.timers.last
        self.scheduler.update_interval(4)
        stale.fire()
        self.assertEqual(task.calls, 0)
        self.assertEqual(len(self.timers.live), 1)

    def test_suspend_and_resume_while_running(self) -> None:
        task = CountingTask()
        self.scheduler.start(task)
        suspend, resume = self.power.listeners[0]

        suspend()
        self.assertEqual(self.scheduler.state, SchedulerState.SUSPENDED_WAS_RUNNING)
        self.assertEqual(self.timers.live, [])
        self.assertFalse(self.scheduler.running)

        resume()
        self.assertEqual(self.scheduler.state, SchedulerState.ARMED)
        self.assertEqual(len(self.timers.live), 1)
        self.assertEqual(len(self.timers.timers), 2)

    def test_suspend_and_resume_while_stopped(self) -> None:
        self.scheduler.suspend()
        self.assertEqual(self.scheduler.state, SchedulerState.SUSPENDED_WAS_STOPPED)
        self.scheduler.resume()
        self.assertEqual(self.scheduler.state, SchedulerState.STOPPED)
        self.assertEqual(self.timers.timers, [])

    def test_resume_is_not_sticky(self) -> None:
        self.scheduler.start(CountingTask())
        self.scheduler.suspend()
        self.scheduler.resume()
        self.scheduler.stop()

        self.scheduler.suspend()
        self.scheduler.resume()
        self.assertEqual(self.scheduler.state, SchedulerState.STOPPED)
        self.assertEqual(self.timers.live, [])

    def test_resume_without_suspend_is_noop(self) -> None:
        self.scheduler.start(CountingTask())
        self.scheduler.resume()
        self.assertEqual(len(self.timers.timers), 1)

    def test_power_monitor_drives_scheduler(self) -> None:
        monitor = PowerMonitor(idle_reader=lambda: 0.0)
        scheduler = Scheduler(monitor, interval_minutes=1, timer_factory=self.timers)
        scheduler.start(CountingTask())

        monitor.notify_suspend()
        monitor.notify_suspend()
        self.assertEqual(scheduler.state, SchedulerState.SUSPENDED_WAS_RUNNING)
        monitor.notify_resume()
        self.assertEqual(scheduler.state, SchedulerState.ARMED)

        scheduler.close()
        monitor.notify_suspend()
        self.assertEqual(scheduler.state, SchedulerState.STOPPED)

    def test_stop_during_execution_does_not_rearm(self) -> None:
        def task() -> None:
            self.scheduler.stop()

        self.scheduler.start(task)
        self.timers.last.fire()
        self.assertEqual(self.scheduler.state, SchedulerState.STOPPED)
        self.assertEqual(self.timers.live, [])
        self.assertEqual(len(self.timers.timers), 1)


class SchedulerConcurrencyTests(unittest.TestCase):
    def test_executions_never_overlap(self) -> None:
        timers = TimerRecorder()
        scheduler = Scheduler(FakePower(), interval_minutes=1, timer_factory=timers)
        active = 0
        peak = 0
        guard = threading.Lock()

        def slow_task() -> None:
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with guard:
                active -= 1

        scheduler.start(slow_task)
        workers = [threading.Thread(target=scheduler.execute_now) for _ in range(4)]
        workers.append(threading.Thread(target=timers.last.fire))
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=5)

        self.assertEqual(peak, 1)
        scheduler.stop()


if __name__ == "__main__":
    unittest.main()
