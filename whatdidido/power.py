from __future__ import annotations

import ctypes
import logging
import sys
import threading
import time
from datetime import datetime
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[], None]
IdleReader = Callable[[], float]

if sys.platform == "win32":
    from ctypes import wintypes

    class _LastInputInfo(ctypes.Structure):
        _fields_ = [("cbSize", wintypes.UINT), ("dwTime", wintypes.DWORD)]

    _user32 = ctypes.WinDLL("user32", use_last_error=True)
    _kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)

    _user32.GetLastInputInfo.argtypes = [ctypes.POINTER(_LastInputInfo)]
    _user32.GetLastInputInfo.restype = wintypes.BOOL
    _kernel32.GetTickCount.restype = wintypes.DWORD


def system_idle_seconds() -> float:
    if sys.platform != "win32":
        return 0.0

    info = _LastInputInfo()
    info.cbSize = ctypes.sizeof(_LastInputInfo)
    if not _user32.GetLastInputInfo(ctypes.byref(info)):
        return 0.0
    # Both counters are 32-bit milliseconds and wrap after ~49.7 days.
    elapsed_ms = (_kernel32.GetTickCount() - info.dwTime) & 0xFFFFFFFF
    return elapsed_ms / 1000.0


class PowerMonitor:
    """Wall clock, user idle time and suspend/resume notifications.

    Suspend and resume are delivered once per transition: a repeated
    ``notify_suspend`` without a resume in between is ignored, as is a resume
    that was never preceded by a suspend.
    """

    def __init__(
        self,
        idle_reader: IdleReader | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._idle_reader = idle_reader or system_idle_seconds
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._lock = threading.Lock()
        self._listeners: list[tuple[Listener, Listener]] = []
        self._suspended = False

    @property
    def suspended(self) -> bool:
        return self._suspended

    def now(self) -> datetime:
        return self._clock()

    def idle_duration_minutes(self) -> float:
        return max(0.0, float(self._idle_reader())) / 60

    def subscribe(self, on_suspend: Listener, on_resume: Listener) -> Callable[[], None]:
        entry = (on_suspend, on_resume)
        with self._lock:
            self._listeners.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)

        return unsubscribe

    def notify_suspend(self) -> None:
        with self._lock:
            if self._suspended:
                return
            self._suspended = True
            listeners = [on_suspend for on_suspend, _ in self._listeners]
        logger.info("System suspended")
        self._deliver(listeners, "suspend")

    def notify_resume(self) -> None:
        with self._lock:
            if not self._suspended:
                return
            self._suspended = False
            listeners = [on_resume for _, on_resume in self._listeners]
        logger.info("System resumed")
        self._deliver(listeners, "resume")

    @staticmethod
    def _deliver(listeners: list[Listener], kind: str) -> None:
        for listener in listeners:
            try:
                listener()
            except Exception:  # noqa: BLE001
                logger.exception("Power %s listener failed", kind)


class SleepWatcher:
    """Detects system sleep from wall-clock jumps and reports it to a monitor.

    ``time.monotonic`` does not advance while the machine sleeps, the wall clock
    does. When the two drift apart by more than ``tolerance_seconds`` between
    polls, the gap is reported as a suspend immediately followed by a resume.
    """

    def __init__(
        self,
        monitor: PowerMonitor,
        poll_seconds: float = 15.0,
        tolerance_seconds: float = 60.0,
    ):
        self._monitor = monitor
        self._poll_seconds = max(1.0, float(poll_seconds))
        self._tolerance_seconds = max(1.0, float(tolerance_seconds))
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._watch_loop,
            name="whatdidido-sleep-watcher",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout_seconds: float = 5.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        thread.join(timeout=timeout_seconds)
        self._thread = None

    def check(self, wall_elapsed: float, monotonic_elapsed: float) -> bool:
        if wall_elapsed - monotonic_elapsed <= self._tolerance_seconds:
            return False
        logger.info(
            "Wall clock jumped %.0fs ahead of monotonic time, treating as sleep",
            wall_elapsed - monotonic_elapsed,
        )
        self._monitor.notify_suspend()
        self._monitor.notify_resume()
        return True

    def _watch_loop(self) -> None:
        last_wall = time.time()
        last_mono = time.monotonic()
        while not self._stop_event.wait(self._poll_seconds):
            wall = time.time()
            mono = time.monotonic()
            self.check(wall - last_wall, mono - last_mono)
            last_wall, last_mono = wall, mono
