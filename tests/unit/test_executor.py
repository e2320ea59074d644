"""Tests for the executor boundary."""

import asyncio
import time

import pytest

from conftest import START
from flow_scheduler.scheduler import (
    CallbackExecutor,
    ExecutionRequest,
    ExecutionStatus,
    LoggingExecutor,
)


def _request(timeout=None):
    return ExecutionRequest(
        schedule_id="s1",
        execution_id="e1",
        workflow_id="wf-1",
        scheduled_at=START,
        timeout=timeout,
    )


class TestCallbackExecutor:

    @pytest.mark.asyncio
    async def test_sync_callback(self):
        calls = []

        def run(workflow_id, execution_id, scheduled_at):
            calls.append((workflow_id, execution_id, scheduled_at))
            return {"rows": 3}

        report = await CallbackExecutor(run).execute(_request())

        assert report.status == ExecutionStatus.SUCCESS
        assert report.result == {"rows": 3}
        assert report.duration >= 0
        assert calls == [("wf-1", "e1", START)]

    @pytest.mark.asyncio
    async def test_async_callback(self):
        async def run(workflow_id, execution_id, scheduled_at):
            await asyncio.sleep(0)
            return workflow_id

        report = await CallbackExecutor(run).execute(_request())

        assert report.status == ExecutionStatus.SUCCESS
        assert report.result == "wf-1"

    @pytest.mark.asyncio
    async def test_exception_becomes_failed_report(self):
        def run(*args):
            raise RuntimeError("disk full")

        report = await CallbackExecutor(run).execute(_request())

        assert report.status == ExecutionStatus.FAILED
        assert report.error == "disk full"

    @pytest.mark.asyncio
    async def test_async_timeout(self):
        async def run(*args):
            await asyncio.sleep(5)

        report = await CallbackExecutor(run).execute(_request(timeout=0.05))

        assert report.status == ExecutionStatus.TIMEOUT
        assert "timeout" in report.error

    @pytest.mark.asyncio
    async def test_sync_timeout(self):
        def run(*args):
            time.sleep(0.3)

        report = await CallbackExecutor(run).execute(_request(timeout=0.05))

        assert report.status == ExecutionStatus.TIMEOUT


@pytest.mark.asyncio
async def test_logging_executor_reports_success():
    report = await LoggingExecutor().execute(_request())

    assert report.status == ExecutionStatus.SUCCESS
    assert report.duration == 0.0
