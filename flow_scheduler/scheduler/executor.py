"""Boundary between the scheduler and whatever runs workflows."""

import asyncio
import inspect
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

from flow_scheduler.scheduler.base import ExecutionStatus, utcnow


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ExecutionRequest:
    """What the executor receives when a schedule fires."""
    schedule_id: str
    execution_id: str
    workflow_id: str
    scheduled_at: datetime
    timeout: Optional[float] = None
    attempt: int = 0


class ExecutionReport(BaseModel):
    """Outcome of one execution attempt as reported by the executor."""
    status: ExecutionStatus
    result: Optional[Any] = None
    error: Optional[str] = None
    duration: Optional[float] = None
    completed_at: datetime = Field(default_factory=utcnow)


class WorkflowExecutor(Protocol):
    """Protocol for workflow executors.

    ``execute`` may return None when the outcome is delivered later through
    ``WorkflowScheduler.report_execution``.
    """

    async def execute(self, request: ExecutionRequest) -> Optional[ExecutionReport]:
        ...


class CallbackExecutor:
    """Runs a plain callable as the workflow.

    The callable receives ``(workflow_id, execution_id, scheduled_at)`` and
    may be sync or async. Sync callables run in the default thread pool.
    """

    def __init__(self, callback: Callable[..., Any]):
        self.callback = callback

    async def execute(self, request: ExecutionRequest) -> ExecutionReport:
        started = time.monotonic()

        try:
            call = self._invoke(request)
            if request.timeout is not None:
                result = await asyncio.wait_for(call, timeout=request.timeout)
            else:
                result = await call
        except asyncio.TimeoutError:
            return ExecutionReport(
                status=ExecutionStatus.TIMEOUT,
                error=f"Execution exceeded timeout of {request.timeout}s",
                duration=time.monotonic() - started
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "callback_execution_failed",
                workflow_id=request.workflow_id,
                execution_id=request.execution_id,
                error=str(e)
            )
            return ExecutionReport(
                status=ExecutionStatus.FAILED,
                error=str(e),
                duration=time.monotonic() - started
            )

        return ExecutionReport(
            status=ExecutionStatus.SUCCESS,
            result=result,
            duration=time.monotonic() - started
        )

    async def _invoke(self, request: ExecutionRequest) -> Any:
        args = (request.workflow_id, request.execution_id, request.scheduled_at)
        if inspect.iscoroutinefunction(self.callback):
            return await self.callback(*args)
        return await asyncio.to_thread(self.callback, *args)


class LoggingExecutor:
    """Executor that only logs the handoff and reports success."""

    async def execute(self, request: ExecutionRequest) -> ExecutionReport:
        logger.info(
            "workflow_dispatched",
            workflow_id=request.workflow_id,
            execution_id=request.execution_id,
            schedule_id=request.schedule_id,
            scheduled_at=request.scheduled_at.isoformat(),
            attempt=request.attempt
        )
        return ExecutionReport(status=ExecutionStatus.SUCCESS, duration=0.0)
