"""
ardor.services.refresh_coordinator — Live Refresh Coordinator
==============================================================

Two independent triggers feed one evaluator:

* a per-monitor poll loop (default every 5 s), and
* change notifications via :meth:`RefreshCoordinator.notify`, which
  refresh only the monitors bound to that subject.

Evaluations for one subject are serialized by a per-subject
``asyncio.Lock``; distinct subjects never wait on each other.  A monitor
carries a generation token that :meth:`SubjectMonitor.set_subject`
bumps, so a result computed for a previous subject is dropped instead of
applied.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Collection
from typing import TYPE_CHECKING

from ardor.engine.transitions import Subject
from ardor.services.evaluation_service import (
    EvaluationResult,
    RankUpNotification,
    ScoreSnapshot,
)

if TYPE_CHECKING:
    from ardor.services.evaluation_service import SubjectEvaluator

logger = logging.getLogger(__name__)

RankUpListener = Callable[[Subject, RankUpNotification], Awaitable[None]]

DEFAULT_POLL_INTERVAL = 5.0


class SubjectMonitor:
    """A live view of one subject, kept fresh by polling and notifications."""

    def __init__(
        self,
        coordinator: RefreshCoordinator,
        subject: Subject,
        poll_interval: float,
    ) -> None:
        self._coordinator = coordinator
        self._subject = subject
        self._poll_interval = poll_interval
        self._generation = 0
        self._issued = 0      # last request number handed out
        self._applied = 0     # last request number whose result was kept
        self._task: asyncio.Task | None = None
        self._stopped = False
        self.snapshot = ScoreSnapshot.pending(subject)

    @property
    def subject(self) -> Subject:
        return self._subject

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError(f"Monitor for {self._subject} was stopped")
        if self.running:
            return
        self._task = asyncio.create_task(
            self._poll_loop(), name=f"ardor-poll-{self._subject}",
        )

    async def _poll_loop(self) -> None:
        while not self._stopped:
            await self.refresh()
            await asyncio.sleep(self._poll_interval)

    async def refresh(self) -> ScoreSnapshot | None:
        """Evaluate the current subject and apply the result.

        Returns the applied snapshot, or None when the result was stale:
        the subject changed, the monitor stopped, or a later request for
        the same subject already landed.
        """
        if self._stopped:
            return None
        generation = self._generation
        subject = self._subject
        self._issued += 1
        request = self._issued

        try:
            result = await self._coordinator.evaluate(subject)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Evaluation failed for %s", subject)
            return None

        if self._stopped or generation != self._generation or request < self._applied:
            logger.debug("Discarding stale result for %s (request %d)", subject, request)
            return None

        self._applied = request
        self.snapshot = result.snapshot
        return result.snapshot

    def set_subject(self, subject: Subject) -> None:
        """Rebind the monitor; any in-flight result for the old subject is dropped."""
        if subject == self._subject:
            return
        old = self._subject
        self._generation += 1
        self._applied = self._issued
        self._subject = subject
        self.snapshot = ScoreSnapshot.pending(subject)
        self._coordinator._rebind(self, old, subject)
        if self.running:
            self._coordinator._spawn(self.refresh())

    def stop(self) -> None:
        """Cancel the poll loop and unregister from the coordinator."""
        if self._stopped:
            return
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
        self._coordinator._forget(self)


class RefreshCoordinator:
    """Owns every :class:`SubjectMonitor` and the per-subject locks."""

    def __init__(
        self,
        evaluator: SubjectEvaluator,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0 (got {poll_interval})")
        self._evaluator = evaluator
        self._poll_interval = poll_interval
        self._monitors: dict[Subject, set[SubjectMonitor]] = {}
        self._locks: dict[Subject, asyncio.Lock] = {}
        self._listeners: list[RankUpListener] = []
        self._tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------
    # Monitors
    # -------------------------------------------------------------------
    def attach(self, subject: Subject, *, start: bool = True) -> SubjectMonitor:
        monitor = SubjectMonitor(self, subject, self._poll_interval)
        self._monitors.setdefault(subject, set()).add(monitor)
        if start:
            monitor.start()
        logger.info("Watching %s", subject)
        return monitor

    def detach(self, monitor: SubjectMonitor) -> None:
        monitor.stop()

    def detach_idle(self, active: Collection[Subject]) -> list[Subject]:
        """Stop every monitor whose subject is not in *active*.

        Returns the subjects that stopped being watched.  Their locks go
        with them unless an evaluation is still holding one.
        """
        idle = [subject for subject in self.subjects if subject not in active]
        for subject in idle:
            for monitor in self.monitors_for(subject):
                monitor.stop()
        if idle:
            logger.info("Detached %d idle subjects", len(idle))
        return idle

    def is_watching(self, subject: Subject) -> bool:
        return bool(self._monitors.get(subject))

    def monitors_for(self, subject: Subject) -> list[SubjectMonitor]:
        return list(self._monitors.get(subject, ()))

    @property
    def subjects(self) -> list[Subject]:
        return [s for s, monitors in self._monitors.items() if monitors]

    def _rebind(self, monitor: SubjectMonitor, old: Subject, new: Subject) -> None:
        self._discard(monitor, old)
        self._monitors.setdefault(new, set()).add(monitor)

    def _forget(self, monitor: SubjectMonitor) -> None:
        self._discard(monitor, monitor.subject)
        logger.info("Stopped watching %s", monitor.subject)

    def _discard(self, monitor: SubjectMonitor, subject: Subject) -> None:
        monitors = self._monitors.get(subject)
        if monitors is None:
            return
        monitors.discard(monitor)
        if not monitors:
            del self._monitors[subject]
            lock = self._locks.get(subject)
            if lock is not None and not lock.locked():
                del self._locks[subject]

    # -------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------
    def notify(self, tenant_id: str, user_id: str) -> list[asyncio.Task]:
        """Schedule a refresh on every monitor bound to this subject.

        Returns immediately with the scheduled tasks; duplicate
        notifications simply re-run the pure pipeline.
        """
        subject = Subject.of(tenant_id, user_id)
        tasks = [self._spawn(m.refresh()) for m in self.monitors_for(subject)]
        if not tasks:
            logger.debug("Change notification for unwatched subject %s", subject)
        return tasks

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # -------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------
    def add_rank_up_listener(self, listener: RankUpListener) -> None:
        self._listeners.append(listener)

    def _lock_for(self, subject: Subject) -> asyncio.Lock:
        lock = self._locks.get(subject)
        if lock is None:
            lock = self._locks[subject] = asyncio.Lock()
        return lock

    async def evaluate(self, subject: Subject) -> EvaluationResult:
        """Run the pipeline for *subject*, serialized per subject."""
        async with self._lock_for(subject):
            result = await self._evaluator.evaluate(subject)
        if result.rank_up is not None:
            await self._fan_out(subject, result.rank_up)
        return result

    async def _fan_out(self, subject: Subject, notification: RankUpNotification) -> None:
        for listener in list(self._listeners):
            try:
                await listener(subject, notification)
            except Exception:
                logger.exception("Rank-up listener failed for %s", subject)

    # -------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------
    async def shutdown(self) -> None:
        """Stop every monitor and wait for in-flight refreshes to unwind."""
        monitors = [m for ms in self._monitors.values() for m in ms]
        poll_tasks = [m._task for m in monitors if m._task is not None]
        for monitor in monitors:
            monitor.stop()
        pending = [t for t in (*poll_tasks, *self._tasks) if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Refresh coordinator stopped (%d monitors)", len(monitors))
