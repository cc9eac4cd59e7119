"""Duty-cycle worker pool that consumes CPU in short quanta."""

from __future__ import annotations

import math
import os
import threading
import time
from typing import Callable, List, Optional, Protocol

DEFAULT_QUANTUM = 0.001
"""Default quantum in seconds; bounds the busy loop to a responsive interval."""

MIN_QUANTUM = 0.001
MAX_QUANTUM = 0.005

_NS_PER_SECOND = 1_000_000_000


def _yield_thread() -> None:
    time.sleep(0)


def busy_wait(duration: float) -> None:
    """Spin for ``duration`` seconds, yielding to other threads while spinning."""
    if duration <= 0:
        return
    deadline = time.monotonic() + duration
    while time.monotonic() < deadline:
        _yield_thread()


def try_sched_idle() -> bool:
    """Move the calling thread to the SCHED_IDLE policy.

    Returns False where the platform has no SCHED_IDLE support, True once the
    policy is applied. Raises OSError when the kernel refuses the change.
    """
    setter = getattr(os, "sched_setscheduler", None)
    policy = getattr(os, "SCHED_IDLE", None)
    param_type = getattr(os, "sched_param", None)
    if setter is None or policy is None or param_type is None:
        return False
    setter(0, policy, param_type(0))
    return True


class Ticker(Protocol):
    """Source of periodic ticks for a worker."""

    def wait(self, stop_event: threading.Event) -> bool:
        """Block until the next tick; False once the worker should stop."""

    def stop(self) -> None:
        """Release the ticker."""


class _MonotonicTicker:
    """Fixed-interval ticker that drops ticks a slow consumer missed."""

    def __init__(self, interval: float) -> None:
        self._interval = interval
        self._next = time.monotonic() + interval
        self._stopped = False

    def wait(self, stop_event: threading.Event) -> bool:
        if self._stopped:
            return False
        delay = self._next - time.monotonic()
        if delay > 0 and stop_event.wait(delay):
            return False
        if stop_event.is_set():
            return False
        now = time.monotonic()
        self._next += self._interval
        if self._next <= now:
            self._next = now + self._interval
        return True

    def stop(self) -> None:
        self._stopped = True


def _ignore_error(_: BaseException) -> None:
    return None


class Pool:
    """A group of duty-cycle workers that consume CPU in short quanta."""

    def __init__(self, workers: int, quantum: float = DEFAULT_QUANTUM) -> None:
        if workers <= 0:
            raise ValueError("shape: worker count must be positive")
        if quantum <= 0:
            quantum = DEFAULT_QUANTUM
        quantum = min(max(quantum, MIN_QUANTUM), MAX_QUANTUM)

        self._workers = workers
        self._quantum_ns = round(quantum * _NS_PER_SECOND)
        self._target = 0.0

        self.busy_func: Callable[[float], None] = busy_wait
        self.sleep_func: Callable[[float], None] = time.sleep
        self.yield_func: Callable[[], None] = _yield_thread
        self.ticker_factory: Callable[[float], Ticker] = _MonotonicTicker
        self.worker_start_hook: Optional[Callable[[], object]] = None
        self.worker_start_error_handler: Callable[[BaseException], None] = _ignore_error

    @property
    def workers(self) -> int:
        """Number of worker threads managed by the pool."""
        return self._workers

    @property
    def quantum(self) -> float:
        """Duty-cycle quantum of each worker, in seconds."""
        return self._quantum_ns / _NS_PER_SECOND

    @property
    def target(self) -> float:
        """Current duty-cycle target in [0, 1]."""
        return self._target

    def set_target(self, target: float) -> None:
        """Update the duty-cycle target, clamped to [0, 1]; NaN becomes 0."""
        if math.isnan(target):
            target = 0.0
        self._target = float(min(max(target, 0.0), 1.0))

    def set_worker_start_error_handler(
        self, handler: Optional[Callable[[BaseException], None]]
    ) -> None:
        """Install the handler called when the worker start hook fails; None resets it."""
        self.worker_start_error_handler = handler if handler is not None else _ignore_error

    def start(self, stop_event: threading.Event) -> List[threading.Thread]:
        """Launch the worker threads; they exit once ``stop_event`` is set."""
        threads = [
            threading.Thread(target=self._worker, args=(stop_event,), daemon=True)
            for _ in range(self._workers)
        ]
        for thread in threads:
            thread.start()
        return threads

    def _worker(self, stop_event: threading.Event) -> None:
        quantum_ns = self._quantum_ns
        busy_fn = self.busy_func
        sleep_fn = self.sleep_func
        yield_fn = self.yield_func
        start_hook = self.worker_start_hook
        error_handler = self.worker_start_error_handler

        ticker = self.ticker_factory(self.quantum)
        try:
            if start_hook is not None:
                try:
                    start_hook()
                except Exception as err:  # noqa: BLE001 - reported to the handler
                    if error_handler is not None:
                        error_handler(err)

            while ticker.wait(stop_event):
                busy_ns = min(int(self._target * quantum_ns), quantum_ns)
                idle_ns = quantum_ns - busy_ns

                if busy_ns > 0:
                    busy_fn(busy_ns / _NS_PER_SECOND)
                else:
                    yield_fn()

                if idle_ns > 0:
                    sleep_fn(idle_ns / _NS_PER_SECOND)
                else:
                    yield_fn()

                yield_fn()
        finally:
            ticker.stop()


def configure_rootful_hooks(pool: Optional[Pool], rootful: bool) -> None:
    """Install the SCHED_IDLE start hook on a pool when running with privileges."""
    if pool is None:
        return
    if rootful:
        pool.worker_start_hook = try_sched_idle