"""Periodic driver for renewal passes.

Responsibilities:
- Run a renewal pass every tick while started
- Optionally run a pass immediately on start
- Run an on-demand pass without waiting for the next tick
- Never run two passes at once
- Report lifecycle state and the last pass summary
"""

import threading
from enum import Enum
from typing import Optional

from graph_renewal.logging_config import get_logger
from graph_renewal.models.api_response import PassSummary, SchedulerStatusResponse
from graph_renewal.services.renewal_orchestrator import (
    RenewalOrchestrator,
    get_renewal_orchestrator,
)

logger = get_logger(__name__)


class SchedulerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class RenewalScheduler:
    """Runs the orchestrator on a fixed interval in a background thread.

    Args:
        orchestrator: optional orchestrator object, if missing,
        global instance is used
        tick_seconds: interval between passes, defaults to the orchestrator's settings
        run_on_start: run a pass as soon as the scheduler starts
    """

    def __init__(
        self,
        orchestrator: Optional[RenewalOrchestrator] = None,
        tick_seconds: Optional[float] = None,
        run_on_start: Optional[bool] = None,
    ) -> None:
        self._orchestrator = orchestrator or get_renewal_orchestrator()
        settings = self._orchestrator.settings
        self._tick_seconds = tick_seconds if tick_seconds is not None else settings.tick_seconds
        self._run_on_start = settings.run_on_start if run_on_start is None else run_on_start

        # state lock
        self._lock = threading.RLock()
        # held for the whole duration of a pass
        self._pass_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._state = SchedulerState.IDLE
        self._passes_completed = 0
        self._last_pass: Optional[PassSummary] = None

        logger.info(
            "renewal_scheduler_initialized",
            tick_seconds=self._tick_seconds,
            run_on_start=self._run_on_start,
        )

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return self._state

    @property
    def orchestrator(self) -> RenewalOrchestrator:
        return self._orchestrator

    @property
    def tick_seconds(self) -> float:
        return self._tick_seconds

    def start(self) -> bool:
        """Begin periodic passes.

        Returns:
            True if the scheduler was started, False if it was already running
        """
        with self._lock:
            if self._state is SchedulerState.RUNNING:
                logger.info("renewal_scheduler_already_running")
                return False

            self._stop_event = threading.Event()
            self._state = SchedulerState.RUNNING
            self._thread = threading.Thread(
                target=self._loop,
                args=(self._stop_event,),
                name="renewal-scheduler",
                daemon=True,
            )
            self._thread.start()

        logger.info("renewal_scheduler_started", tick_seconds=self._tick_seconds)
        return True

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop periodic passes. A pass already in progress runs to completion.

        Args:
            timeout: how long to wait for the scheduler thread to exit

        Returns:
            True if the scheduler was stopped, False if it was not running
        """
        with self._lock:
            if self._state is not SchedulerState.RUNNING:
                logger.info("renewal_scheduler_not_running", state=self._state.value)
                return False
            self._state = SchedulerState.STOPPED
            self._stop_event.set()
            thread = self._thread
            self._thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

        logger.info("renewal_scheduler_stopped")
        return True

    def run_now(self) -> PassSummary:
        """Run a pass immediately, waiting for any pass in progress to finish first."""
        with self._pass_lock:
            return self._run_pass_locked(trigger="manual")

    def _loop(self, stop_event: threading.Event) -> None:
        if self._run_on_start:
            self._tick(stop_event)
        while not stop_event.wait(self._tick_seconds):
            self._tick(stop_event)
        logger.debug("renewal_scheduler_loop_exited")

    def _tick(self, stop_event: threading.Event) -> None:
        if stop_event.is_set():
            return
        if not self._pass_lock.acquire(blocking=False):
            logger.info("renewal_tick_skipped", reason="pass_in_progress")
            return
        try:
            self._run_pass_locked(trigger="scheduled")
        except Exception as e:
            # keep the loop alive
            logger.error(
                "renewal_tick_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
        finally:
            self._pass_lock.release()

    def _run_pass_locked(self, trigger: str) -> PassSummary:
        logger.info("renewal_pass_triggered", trigger=trigger)
        summary = self._orchestrator.run_pass()
        with self._lock:
            self._passes_completed += 1
            self._last_pass = summary
        return summary

    def is_pass_in_progress(self) -> bool:
        return self._pass_lock.locked()

    def status(self) -> SchedulerStatusResponse:
        with self._lock:
            return SchedulerStatusResponse(
                state=self._state.value,
                pass_in_progress=self.is_pass_in_progress(),
                passes_completed=self._passes_completed,
                tick_seconds=self._tick_seconds,
                last_pass=self._last_pass,
            )


_scheduler_instance: Optional[RenewalScheduler] = None
_scheduler_lock = threading.Lock()


def get_renewal_scheduler() -> RenewalScheduler:
    global _scheduler_instance
    if _scheduler_instance is None:
        with _scheduler_lock:
            if _scheduler_instance is None:
                _scheduler_instance = RenewalScheduler()
    return _scheduler_instance


def reset_renewal_scheduler() -> None:
    global _scheduler_instance
    with _scheduler_lock:
        if _scheduler_instance is not None:
            _scheduler_instance.stop()
        _scheduler_instance = None


def start_renewal_service() -> bool:
    """Start the global scheduler; a no-op if already running."""
    return get_renewal_scheduler().start()


def stop_renewal_service() -> bool:
    """Stop the global scheduler; a no-op if not running."""
    return get_renewal_scheduler().stop()


def run_renewal_task_now() -> PassSummary:
    """Run one pass on the global scheduler immediately."""
    return get_renewal_scheduler().run_now()
