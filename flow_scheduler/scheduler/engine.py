"""Workflow scheduler: owns schedules, runs the tick loop, dispatches firings."""

import asyncio
import dataclasses
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import structlog

from flow_scheduler.config import SchedulerSettings, get_settings
from flow_scheduler.monitoring.notifications import NotificationSink, WebhookNotifier
from flow_scheduler.scheduler.base import (
    ExecutionStatus,
    Schedule,
    ScheduleConfigurationError,
    ScheduleNotFoundError,
    SchedulePersistenceError,
    ScheduleType,
    ScheduledExecutionResult,
    ensure_utc,
)
from flow_scheduler.scheduler.clock import ScheduleClock
from flow_scheduler.scheduler.cron import resolve_timezone, validate_cron_expression
from flow_scheduler.scheduler.executor import (
    ExecutionReport,
    ExecutionRequest,
    WorkflowExecutor,
)
from flow_scheduler.scheduler.history import ExecutionHistory, SchedulerStats
from flow_scheduler.scheduler.store import ScheduleStore


logger = structlog.get_logger(__name__)


RECURRING_TYPES = (ScheduleType.INTERVAL, ScheduleType.CRON)

Snapshot = Optional[Tuple[int, str]]


def matches_event_filter(event_filter: Optional[Dict[str, Any]], payload: Dict[str, Any]) -> bool:
    """Check an event payload against a schedule's event filter.

    Each filter key must be present in the payload. A dict value is a
    ``{"min": x, "max": y}`` range, a list value is a membership test and
    anything else must compare equal.
    """
    if not event_filter:
        return True

    for key, value in event_filter.items():
        if key not in payload:
            return False

        event_value = payload[key]

        try:
            if isinstance(value, dict):
                if "min" in value and event_value < value["min"]:
                    return False
                if "max" in value and event_value > value["max"]:
                    return False
            elif isinstance(value, list):
                if event_value not in value:
                    return False
            elif event_value != value:
                return False
        except TypeError:
            return False

    return True


class WorkflowScheduler:
    """Decides when workflows run and hands them to an executor.

    Every mutation, whether it comes from the public API or from the tick
    loop, runs under one ``asyncio.Lock`` and never awaits while holding it.
    Reads are synchronous and return copies, so they always see a state
    between two mutations. Snapshot writes happen after the lock is
    released.
    """

    def __init__(
        self,
        settings: Optional[SchedulerSettings] = None,
        executor: Optional[WorkflowExecutor] = None,
        notifier: Optional[NotificationSink] = None,
        clock: Optional[ScheduleClock] = None
    ):
        self.settings = settings or get_settings()
        self.executor = executor
        self.clock = clock or ScheduleClock(self.settings.default_timezone)
        self.store = ScheduleStore(
            self.settings.schedule_file if self.settings.persistence_enabled else None
        )
        self.history = ExecutionHistory(retention_days=self.settings.history_retention_days)

        self._owns_notifier = notifier is None
        self.notifier = notifier if notifier is not None else self._build_notifier()

        self._stats = SchedulerStats()
        self._schedules_created = 0
        self._lock = asyncio.Lock()
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._initialized = False

        self._running = False
        self._scheduler_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._dispatch_tasks: Set[asyncio.Task] = set()
        self._notify_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load persisted schedules. A broken snapshot is logged, not fatal."""
        if self._initialized:
            return
        self._initialized = True

        if not self.settings.persistence_enabled:
            return

        try:
            count = await self.store.load()
            self._schedules_created = max(self._schedules_created, count)
        except SchedulePersistenceError as e:
            logger.warning("schedule_snapshot_unreadable", error=str(e))

    async def start(self) -> None:
        """Start the background tick loop. Calling it twice is harmless."""
        if self._scheduler_task is not None and not self._scheduler_task.done():
            return

        await self.initialize()

        self._running = True
        self._stop_event = asyncio.Event()
        self._scheduler_task = asyncio.create_task(self._scheduler_loop())

        logger.info(
            "scheduler_started",
            schedules=len(self.store),
            check_interval=self.settings.check_interval,
            enabled=self.settings.enabled
        )

    async def stop(self) -> None:
        """Stop the loop after its current tick, cancel dispatches, persist.

        Notifications still in flight, including those for executions
        cancelled here, are delivered before returning.
        """
        task = self._scheduler_task
        self._running = False

        if task is not None:
            if self._stop_event is not None:
                self._stop_event.set()
            # Let an in-flight tick finish so its count updates get persisted.
            await asyncio.gather(task, return_exceptions=True)
            self._scheduler_task = None

        dispatches = list(self._dispatch_tasks)
        for t in dispatches:
            t.cancel()
        if dispatches:
            await asyncio.gather(*dispatches, return_exceptions=True)

        notifications = list(self._notify_tasks)
        if notifications:
            await asyncio.gather(*notifications, return_exceptions=True)

        if self.settings.persistence_enabled:
            async with self._lock:
                snapshot = self.store.snapshot()
            await self._persist(snapshot)

        logger.info("scheduler_stopped")

    async def health_check(self) -> bool:
        return self._scheduler_task is not None and not self._scheduler_task.done()

    async def update_config(self, settings: SchedulerSettings) -> None:
        """Replace the live configuration."""
        resolve_timezone(settings.default_timezone)

        async with self._lock:
            self.settings = settings
            self.clock.default_timezone = settings.default_timezone
            self.store.path = (
                Path(settings.schedule_file) if settings.persistence_enabled else None
            )
            self.history.retention_days = settings.history_retention_days
            self._semaphore = None
            if self._owns_notifier:
                self.notifier = self._build_notifier()

        logger.info("scheduler_config_updated")

    # ------------------------------------------------------------------
    # Schedule management
    # ------------------------------------------------------------------

    async def schedule_workflow(
        self,
        workflow_id: str,
        schedule: Schedule,
        user_id: str
    ) -> str:
        """Register a schedule for ``workflow_id`` owned by ``user_id``.

        Returns:
            The new schedule id.

        Raises:
            ScheduleConfigurationError: the schedule is invalid; nothing is
                stored.
            SchedulePersistenceError: the schedule is stored in memory but
                the snapshot could not be written.
        """
        async with self._lock:
            now = self.clock.now()

            candidate = schedule.model_copy(deep=True)
            candidate.id = str(uuid.uuid4())
            candidate.workflow_id = workflow_id
            candidate.user_id = user_id
            candidate.created_at = now
            candidate.updated_at = now

            self.validate_schedule(candidate)
            candidate.next_execution = self.clock.next_fire(candidate, now)
            self._disarm_if_exhausted(candidate)

            self.store.create(candidate)
            self._schedules_created += 1
            snapshot = self._snapshot()

        logger.info(
            "schedule_added",
            schedule_id=candidate.id,
            workflow_id=workflow_id,
            name=candidate.name,
            type=candidate.schedule_type.value,
            next_execution=candidate.next_execution.isoformat() if candidate.next_execution else None
        )

        await self._persist(snapshot)
        return candidate.id

    async def update_schedule(self, schedule_id: str, schedule: Schedule) -> None:
        """Replace a schedule's definition.

        Identity, creation time and run history (``execution_count``,
        ``last_execution``) belong to the scheduler and are kept. The next
        fire time is recomputed, which re-arms a dormant schedule whose new
        definition can fire again.
        """
        async with self._lock:
            existing = self.store.get(schedule_id)
            if existing is None:
                raise ScheduleNotFoundError(schedule_id)

            now = self.clock.now()

            candidate = schedule.model_copy(deep=True)
            candidate.id = schedule_id
            candidate.workflow_id = candidate.workflow_id or existing.workflow_id
            candidate.user_id = candidate.user_id or existing.user_id
            candidate.created_at = existing.created_at
            candidate.updated_at = now
            candidate.execution_count = existing.execution_count
            candidate.last_execution = existing.last_execution

            self.validate_schedule(candidate)
            candidate.next_execution = self.clock.next_fire(candidate, now)
            self._disarm_if_exhausted(candidate)

            self.store.update(candidate)
            snapshot = self._snapshot()

        logger.info(
            "schedule_updated",
            schedule_id=schedule_id,
            next_execution=candidate.next_execution.isoformat() if candidate.next_execution else None
        )

        await self._persist(snapshot)

    async def delete_schedule(self, schedule_id: str) -> None:
        """Remove a schedule. Its execution history is kept."""
        async with self._lock:
            schedule = self.store.delete(schedule_id)
            snapshot = self._snapshot()

        logger.info("schedule_removed", schedule_id=schedule_id, name=schedule.name)

        await self._persist(snapshot)

    def validate_schedule(self, schedule: Schedule) -> None:
        """Raise ScheduleConfigurationError if ``schedule`` cannot be stored."""
        if not schedule.workflow_id or not schedule.workflow_id.strip():
            raise ScheduleConfigurationError("Workflow ID cannot be empty")

        if not schedule.user_id or not schedule.user_id.strip():
            raise ScheduleConfigurationError("User ID cannot be empty")

        config = schedule.config

        if schedule.schedule_type == ScheduleType.ONCE:
            if config.execution_time is None:
                raise ScheduleConfigurationError("Execution time required for one-time schedule")

        elif schedule.schedule_type == ScheduleType.INTERVAL:
            if config.interval_seconds is None:
                raise ScheduleConfigurationError("Interval required for interval schedule")
            if config.interval_seconds <= 0:
                raise ScheduleConfigurationError(
                    f"Interval must be positive, got {config.interval_seconds}"
                )

        elif schedule.schedule_type == ScheduleType.CRON:
            if not config.cron_expression:
                raise ScheduleConfigurationError("Cron expression required for cron schedule")
            is_valid, error = validate_cron_expression(config.cron_expression)
            if not is_valid:
                raise ScheduleConfigurationError(error)

        elif schedule.schedule_type == ScheduleType.EVENT:
            if not config.event_type:
                raise ScheduleConfigurationError("Event type required for event schedule")

        if config.timezone is not None:
            resolve_timezone(config.timezone)

        if config.timeout is not None and config.timeout <= 0:
            raise ScheduleConfigurationError(f"Timeout must be positive, got {config.timeout}")

        if (
            schedule.max_executions is not None
            and schedule.execution_count > schedule.max_executions
        ):
            raise ScheduleConfigurationError(
                f"max_executions ({schedule.max_executions}) is below the "
                f"current execution count ({schedule.execution_count})"
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        """Get a schedule by ID."""
        schedule = self.store.get(schedule_id)
        return schedule.model_copy(deep=True) if schedule else None

    def list_schedules(self, **filters) -> List[Schedule]:
        """List schedules with optional filters."""
        schedules = self.store.list()

        if "enabled" in filters:
            schedules = [s for s in schedules if s.enabled == filters["enabled"]]
        if "schedule_type" in filters:
            schedules = [s for s in schedules if s.schedule_type == filters["schedule_type"]]
        if "workflow_id" in filters:
            schedules = [s for s in schedules if s.workflow_id == filters["workflow_id"]]
        if "user_id" in filters:
            schedules = [s for s in schedules if s.user_id == filters["user_id"]]

        return [s.model_copy(deep=True) for s in schedules]

    def get_execution_history(
        self,
        schedule_id: Optional[str] = None
    ) -> List[ScheduledExecutionResult]:
        return self.history.query(schedule_id)

    def get_stats(self) -> SchedulerStats:
        """Get scheduler statistics."""
        schedules = self.store.list()

        by_type: Dict[str, int] = {}
        for schedule in schedules:
            key = schedule.schedule_type.value
            by_type[key] = by_type.get(key, 0) + 1

        return dataclasses.replace(
            self._stats,
            total_schedules=self._schedules_created,
            active_schedules=sum(1 for s in schedules if s.enabled),
            schedules_by_type=by_type
        )

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None) -> List[ScheduledExecutionResult]:
        """Run one due-schedule scan.

        Returns the Scheduled results emitted by this tick.
        """
        if not self.settings.enabled:
            return []

        fired: List[Tuple[Schedule, ScheduledExecutionResult]] = []
        snapshot: Snapshot = None

        async with self._lock:
            now = ensure_utc(now) if now is not None else self.clock.now()
            changed = False

            for schedule in self.store.list():
                if not schedule.enabled or schedule.next_execution is None:
                    continue
                if schedule.next_execution > now:
                    continue

                changed = True

                # Checked before firing so the count never passes the cap.
                if schedule.is_exhausted:
                    self._disarm(schedule, "max_executions_reached")
                    continue

                scheduled_at = schedule.next_execution
                # Next time first; a failure disarms this schedule only.
                next_execution = self._recompute(schedule, now)
                result = self._fire(schedule, now, scheduled_at)
                schedule.next_execution = next_execution
                if schedule.next_execution is None:
                    schedule.enabled = False
                self._disarm_if_exhausted(schedule)

                fired.append((schedule.model_copy(deep=True), result))

            if changed:
                self.store.touch()
                snapshot = self._snapshot()

        for schedule, result in fired:
            self._dispatch(schedule, result)

        if fired:
            logger.debug("tick_completed", fired=len(fired), now=now.isoformat())

        await self._persist(snapshot)
        return [result for _, result in fired]

    async def trigger_schedule(self, schedule_id: str) -> str:
        """Fire a schedule now, outside its clock. Returns the execution id.

        The schedule's ``next_execution`` is not moved.
        """
        async with self._lock:
            schedule = self.store.get(schedule_id)
            if schedule is None:
                raise ScheduleNotFoundError(schedule_id)
            if not schedule.enabled:
                raise ScheduleConfigurationError(f"Schedule {schedule_id} is disabled")
            if schedule.is_exhausted:
                raise ScheduleConfigurationError(
                    f"Schedule {schedule_id} reached max_executions ({schedule.max_executions})"
                )

            now = self.clock.now()
            result = self._fire(schedule, now, now)
            self._disarm_if_exhausted(schedule)
            self.store.touch()
            copy = schedule.model_copy(deep=True)
            snapshot = self._snapshot()

        logger.info("schedule_triggered", schedule_id=schedule_id, execution_id=result.execution_id)

        self._dispatch(copy, result)
        await self._persist(snapshot)
        return result.execution_id

    async def trigger_event(
        self,
        event_type: str,
        payload: Optional[Dict[str, Any]] = None
    ) -> List[str]:
        """Fire every enabled event schedule matching ``event_type`` and
        ``payload``. Returns the execution ids created."""
        payload = payload or {}
        fired: List[Tuple[Schedule, ScheduledExecutionResult]] = []
        snapshot: Snapshot = None

        async with self._lock:
            now = self.clock.now()

            for schedule in self.store.list():
                if schedule.schedule_type != ScheduleType.EVENT or not schedule.enabled:
                    continue
                if schedule.config.event_type != event_type:
                    continue
                if not matches_event_filter(schedule.config.event_filter, payload):
                    continue
                if schedule.is_exhausted:
                    self._disarm(schedule, "max_executions_reached")
                    continue

                result = self._fire(schedule, now, now)
                self._disarm_if_exhausted(schedule)
                fired.append((schedule.model_copy(deep=True), result))

            if fired:
                self.store.touch()
                snapshot = self._snapshot()

        logger.info("event_received", event_type=event_type, fired=len(fired))

        for schedule, result in fired:
            self._dispatch(schedule, result)

        await self._persist(snapshot)
        return [result.execution_id for _, result in fired]

    async def report_execution(self, result: ScheduledExecutionResult) -> None:
        """Record a result reported by an external executor."""
        async with self._lock:
            self._record(result)

        logger.debug(
            "execution_reported",
            execution_id=result.execution_id,
            schedule_id=result.schedule_id,
            status=result.status.value
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fire(
        self,
        schedule: Schedule,
        now: datetime,
        scheduled_at: datetime
    ) -> ScheduledExecutionResult:
        schedule.execution_count += 1
        schedule.last_execution = now

        result = ScheduledExecutionResult(
            schedule_id=schedule.id,
            execution_id=str(uuid.uuid4()),
            workflow_id=schedule.workflow_id,
            status=ExecutionStatus.SCHEDULED,
            scheduled_at=scheduled_at,
            executed_at=now
        )
        self._record(result)

        logger.info(
            "schedule_fired",
            schedule_id=schedule.id,
            workflow_id=schedule.workflow_id,
            execution_id=result.execution_id,
            execution_count=schedule.execution_count
        )
        return result

    def _recompute(self, schedule: Schedule, now: datetime) -> Optional[datetime]:
        if schedule.schedule_type not in RECURRING_TYPES:
            return None

        try:
            return self.clock.next_fire(schedule, now)
        except Exception as e:
            logger.error(
                "schedule_recompute_failed",
                schedule_id=schedule.id,
                error=str(e),
                error_type=type(e).__name__
            )
            return None

    def _disarm(self, schedule: Schedule, reason: str) -> None:
        schedule.enabled = False
        schedule.next_execution = None
        logger.info("schedule_disarmed", schedule_id=schedule.id, reason=reason)

    def _disarm_if_exhausted(self, schedule: Schedule) -> None:
        if schedule.is_exhausted and (schedule.enabled or schedule.next_execution):
            self._disarm(schedule, "max_executions_reached")

    def _record(self, result: ScheduledExecutionResult) -> None:
        self.history.append(result)
        self._stats.record(result)

        if result.status.is_terminal:
            self._notify("execution_completed", result)

    def _snapshot(self) -> Snapshot:
        if not self.settings.persistence_enabled:
            return None
        return self.store.snapshot()

    async def _persist(self, snapshot: Snapshot) -> None:
        if snapshot is None:
            return
        version, payload = snapshot
        await self.store.write_snapshot(version, payload)

    def _build_notifier(self) -> Optional[NotificationSink]:
        if not self.settings.notifications_enabled:
            return None
        return WebhookNotifier(self.settings.notification_webhook)

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.settings.max_concurrent_workflows)
        return self._semaphore

    def _track(self, tasks: Set[asyncio.Task], task: asyncio.Task) -> None:
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    def _notify(self, event: str, result: ScheduledExecutionResult) -> None:
        if self.notifier is None:
            return
        task = asyncio.create_task(self.notifier.notify(event, result))
        self._track(self._notify_tasks, task)
        task.add_done_callback(self._log_notify_failure)

    @staticmethod
    def _log_notify_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("notification_error", error=str(error))

    def _dispatch(self, schedule: Schedule, scheduled: ScheduledExecutionResult) -> None:
        """Hand a firing to the executor without waiting for it."""
        self._notify("execution_scheduled", scheduled)

        if self.executor is None:
            logger.warning(
                "no_executor_configured",
                schedule_id=schedule.id,
                execution_id=scheduled.execution_id
            )
            return

        task = asyncio.create_task(self._run_execution(schedule, scheduled))
        self._track(self._dispatch_tasks, task)

    async def _run_execution(
        self,
        schedule: Schedule,
        scheduled: ScheduledExecutionResult
    ) -> None:
        retry_config = schedule.config.retry_config
        current = scheduled
        attempt = 0

        try:
            while True:
                request = ExecutionRequest(
                    schedule_id=schedule.id,
                    execution_id=current.execution_id,
                    workflow_id=schedule.workflow_id,
                    scheduled_at=current.scheduled_at,
                    timeout=schedule.config.timeout,
                    attempt=attempt
                )

                async with self._get_semaphore():
                    started = self.clock.now()
                    try:
                        report = await self.executor.execute(request)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.error(
                            "executor_error",
                            execution_id=current.execution_id,
                            workflow_id=schedule.workflow_id,
                            error=str(e)
                        )
                        report = ExecutionReport(status=ExecutionStatus.FAILED, error=str(e))

                if report is None:
                    # The executor reports through report_execution later.
                    return

                outcome = current.model_copy(update={
                    "status": report.status,
                    "executed_at": started,
                    "completed_at": ensure_utc(report.completed_at),
                    "duration": report.duration,
                    "result": report.result,
                    "error": report.error,
                    "retry_attempts": attempt
                })

                should_retry = (
                    outcome.status in (ExecutionStatus.FAILED, ExecutionStatus.TIMEOUT)
                    and retry_config is not None
                    and retry_config.should_retry(attempt)
                    and schedule.id in self.store
                )

                async with self._lock:
                    self._record(outcome)
                    if should_retry:
                        attempt += 1
                        current = outcome.model_copy(update={
                            "status": ExecutionStatus.RETRYING,
                            "executed_at": self.clock.now(),
                            "completed_at": None,
                            "duration": None,
                            "result": None,
                            "retry_attempts": attempt
                        })
                        self._record(current)

                if not should_retry:
                    return

                delay = retry_config.get_delay(attempt)
                logger.info(
                    "execution_retry_scheduled",
                    execution_id=current.execution_id,
                    attempt=attempt,
                    delay=delay
                )
                await asyncio.sleep(delay)

        except asyncio.CancelledError:
            self._record(current.model_copy(update={
                "status": ExecutionStatus.CANCELLED,
                "completed_at": self.clock.now(),
                "error": "Execution cancelled by scheduler shutdown",
                "retry_attempts": attempt
            }))
            raise

    async def _scheduler_loop(self) -> None:
        """Main scheduler loop: one tick per ``check_interval``."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        logger.info("scheduler_loop_started", check_interval=self.settings.check_interval)

        while self._running:
            try:
                await self.tick()
            except SchedulePersistenceError as e:
                logger.error("tick_persist_failed", error=str(e))
            except Exception as e:
                logger.error("scheduler_loop_error", error=str(e))

            next_tick += self.settings.check_interval
            delay = next_tick - loop.time()
            if delay <= 0:
                # Fell behind; skip the missed ticks instead of bursting.
                next_tick = loop.time()
                delay = 0

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        logger.info("scheduler_loop_stopped")
