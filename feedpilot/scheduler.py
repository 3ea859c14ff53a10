# feedpilot/scheduler.py
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MAX_INSTANCES
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .errors import NotFoundError
from .logging_setup import get_logger
from .models import utcnow

logger = get_logger("feedpilot.scheduler")

TICK_JOB_ID = "scheduler_tick"

TaskFn = Callable[[], Awaitable[Any]]


@dataclass
class TaskState:
    name: str
    interval: int
    fn: TaskFn = field(repr=False)
    last_run_at: Optional[datetime] = None
    running: bool = False
    runs: int = 0
    skips: int = 0
    failures: int = 0
    last_finished_at: Optional[datetime] = None
    last_outcome: Any = None
    last_error: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return self.interval > 0

    def interval_elapsed(self, now: datetime) -> bool:
        if self.last_run_at is None:
            return True
        return (now - self.last_run_at).total_seconds() >= self.interval

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_secs": self.interval,
            "enabled": self.enabled,
            "running": self.running,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "runs": self.runs,
            "skips": self.skips,
            "failures": self.failures,
            "last_outcome": self.last_outcome,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerEvent:
    task_name: str
    ok: bool
    outcome: Any = None
    error: Optional[str] = None
    finished_at: datetime = field(default_factory=utcnow)


Listener = Callable[[SchedulerEvent], Any]


class Scheduler:
    """
    Interval task runner. An APScheduler job calls `tick()` every
    `check_interval` seconds; the tick starts every task whose interval has
    passed as its own asyncio task. A task still running from an earlier tick
    is skipped, never queued.
    """

    def __init__(self, check_interval: int = 30, grace: float = 30.0):
        self.check_interval = max(1, int(check_interval))
        self.grace = grace
        self.tasks: Dict[str, TaskState] = {}
        self._listeners: List[Listener] = []
        self._inflight: Dict[str, asyncio.Task] = {}
        self._aps: Optional[AsyncIOScheduler] = None
        self._stopping = False

    # --- Registration ---

    def register(self, name: str, interval: int, fn: TaskFn) -> TaskState:
        state = TaskState(name=name, interval=int(interval), fn=fn)
        self.tasks[name] = state
        if state.enabled:
            logger.info(f"Task registered: {name} every {state.interval}s")
        else:
            logger.info(f"Task registered: {name} (disabled)")
        return state

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # --- Ticking ---

    def due_tasks(self, now: Optional[datetime] = None) -> List[str]:
        now = now or utcnow()
        return [
            s.name for s in self.tasks.values()
            if s.enabled and not s.running and s.interval_elapsed(now)
        ]

    async def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Start every due task. Returns the names started."""
        if self._stopping:
            return []
        now = now or utcnow()
        started: List[str] = []
        for state in self.tasks.values():
            if not state.enabled or not state.interval_elapsed(now):
                continue
            if state.running:
                state.skips += 1
                logger.debug(f"Task {state.name} still running, skipping this tick")
                continue
            self._launch(state, now)
            started.append(state.name)
        return started

    def run_now(self, name: str) -> Optional[asyncio.Task]:
        """
        Start `name` right away, even if its interval is 0. Returns the running
        asyncio task, or None when the task is already running.
        """
        state = self.tasks.get(name)
        if state is None:
            raise NotFoundError("task", name)
        if self._stopping:
            return None
        if state.running:
            state.skips += 1
            return None
        return self._launch(state, utcnow())

    def _launch(self, state: TaskState, now: datetime) -> asyncio.Task:
        state.running = True
        state.last_run_at = now
        task = asyncio.create_task(self._execute(state), name=f"feedpilot:{state.name}")
        self._inflight[state.name] = task
        return task

    async def _execute(self, state: TaskState) -> None:
        logger.info("TASK_START", extra={"task": state.name})
        event: Optional[SchedulerEvent] = None
        try:
            outcome = await state.fn()
            state.runs += 1
            state.last_outcome = outcome
            state.last_error = None
            event = SchedulerEvent(task_name=state.name, ok=True, outcome=outcome)
            logger.info("TASK_OK", extra={"task": state.name, "outcome": outcome})
        except asyncio.CancelledError:
            state.failures += 1
            state.last_error = "cancelled"
            event = SchedulerEvent(task_name=state.name, ok=False, error="cancelled")
            logger.warning("TASK_CANCELLED", extra={"task": state.name})
            raise
        except Exception as e:
            state.runs += 1
            state.failures += 1
            state.last_error = f"{type(e).__name__}: {e}"
            event = SchedulerEvent(task_name=state.name, ok=False, error=state.last_error)
            logger.exception("TASK_FAILED", extra={"task": state.name, "handled": True, "error": type(e).__name__})
        finally:
            state.running = False
            state.last_finished_at = utcnow()
            self._inflight.pop(state.name, None)
            if event is not None:
                await self._emit(event)

    async def _emit(self, event: SchedulerEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("LISTENER_FAILED", extra={"task": event.task_name, "handled": True})

    async def wait_idle(self) -> None:
        """Wait for whatever is running right now to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    # --- Lifecycle ---

    def start(self) -> None:
        """Drive `tick()` from an APScheduler interval job. Needs a running loop."""
        if self._aps is not None and self._aps.running:
            return
        self._stopping = False
        self._aps = AsyncIOScheduler()
        self._aps.add_job(
            self.tick,
            IntervalTrigger(seconds=self.check_interval),
            id=TICK_JOB_ID,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(),
            replace_existing=True,
        )
        self._aps.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES)
        self._aps.start()
        logger.info(f"Scheduler started, tick every {self.check_interval}s")

    @property
    def running(self) -> bool:
        return self._aps is not None and self._aps.running

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "check_interval_secs": self.check_interval,
            "tasks": {name: s.snapshot() for name, s in self.tasks.items()},
        }

    async def shutdown(self, grace: Optional[float] = None) -> None:
        """Stop ticking, give running tasks `grace` seconds, then cancel the rest."""
        grace = self.grace if grace is None else grace
        self._stopping = True
        aps, self._aps = self._aps, None
        if aps is not None and aps.running:
            aps.shutdown(wait=False)
            # AsyncIOScheduler completes its stop on the next loop iteration
            await asyncio.sleep(0)
            logger.info("APScheduler stopped")

        pending = list(self._inflight.values())
        if not pending:
            return
        logger.info(f"Waiting up to {grace}s for {len(pending)} running task(s)")
        _, still_running = await asyncio.wait(pending, timeout=grace)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"Cancelled {len(still_running)} task(s) after grace period")
            await asyncio.gather(*still_running, return_exceptions=True)


def _job_listener(event):
    if getattr(event, "code", None) == EVENT_JOB_MAX_INSTANCES:
        logger.warning("TICK_SKIPPED", extra={"job_id": event.job_id, "handled": True})
    elif getattr(event, "exception", None):
        logger.error(
            "JOB_ERROR",
            exc_info=event.exception,
            extra={"handled": False, "job_id": event.job_id, "run_time": str(event.scheduled_run_time)},
        )
    else:
        logger.debug("JOB_OK", extra={"job_id": event.job_id, "run_time": str(event.scheduled_run_time)})
