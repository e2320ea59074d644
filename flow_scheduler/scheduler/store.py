"""Schedule storage with whole-set snapshot persistence."""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import aiofiles
import aiofiles.os
import structlog

from flow_scheduler.scheduler.base import (
    Schedule,
    ScheduleNotFoundError,
    SchedulePersistenceError,
)


logger = structlog.get_logger(__name__)


class ScheduleStore:
    """Authoritative map of schedule id to :class:`Schedule`.

    The store does no locking of its own; the owning scheduler serializes
    mutations. Each mutation bumps :attr:`version` so that snapshot writes
    issued out of order never replace newer content with older content.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else None
        self._schedules: Dict[str, Schedule] = {}
        self._version = 0
        self._written_version = 0
        self._write_lock = asyncio.Lock()

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        return len(self._schedules)

    def __contains__(self, schedule_id: object) -> bool:
        return schedule_id in self._schedules

    def get(self, schedule_id: str) -> Optional[Schedule]:
        return self._schedules.get(schedule_id)

    def list(self) -> List[Schedule]:
        return list(self._schedules.values())

    def create(self, schedule: Schedule) -> None:
        if schedule.id in self._schedules:
            raise ValueError(f"Schedule {schedule.id} already exists")
        self._schedules[schedule.id] = schedule
        self._version += 1

    def update(self, schedule: Schedule) -> None:
        if schedule.id not in self._schedules:
            raise ScheduleNotFoundError(schedule.id)
        self._schedules[schedule.id] = schedule
        self._version += 1

    def delete(self, schedule_id: str) -> Schedule:
        try:
            schedule = self._schedules.pop(schedule_id)
        except KeyError:
            raise ScheduleNotFoundError(schedule_id) from None
        self._version += 1
        return schedule

    def touch(self) -> None:
        """Record an in-place mutation of stored schedules."""
        self._version += 1

    def snapshot(self) -> Tuple[int, str]:
        """Serialize the whole set. Returns ``(version, payload)``."""
        payload = json.dumps(
            [schedule.to_dict() for schedule in self._schedules.values()],
            indent=2
        )
        return self._version, payload

    async def write_snapshot(self, version: int, payload: str) -> bool:
        """Atomically replace the snapshot file with ``payload``.

        Returns False when the write was skipped because a newer version
        is already on disk.

        Raises:
            SchedulePersistenceError: the file could not be written.
        """
        if self.path is None:
            return False

        async with self._write_lock:
            if version <= self._written_version:
                return False

            try:
                await self._write_atomic(payload)
            except OSError as e:
                logger.error(
                    "schedule_snapshot_write_failed",
                    path=str(self.path),
                    error=str(e)
                )
                raise SchedulePersistenceError(
                    f"Failed to write schedule file {self.path}: {e}"
                ) from e

            self._written_version = version

        logger.debug("schedules_saved", path=str(self.path), version=version)
        return True

    async def save(self) -> bool:
        """Snapshot the current set and write it."""
        version, payload = self.snapshot()
        return await self.write_snapshot(version, payload)

    async def _write_atomic(self, payload: str) -> None:
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            dir=str(self.path.parent)
        )
        os.close(fd)
        try:
            async with aiofiles.open(tmp_name, "w", encoding="utf-8") as fh:
                await fh.write(payload)
                await fh.flush()
                await asyncio.to_thread(os.fsync, fh.fileno())
            await aiofiles.os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    async def load(self) -> int:
        """Replace the in-memory set with the snapshot on disk.

        A missing file loads nothing. Returns the number of schedules loaded.

        Raises:
            SchedulePersistenceError: the file exists but cannot be read or
                parsed. The in-memory set is left untouched.
        """
        if self.path is None or not await aiofiles.os.path.exists(self.path):
            return 0

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
            records = json.loads(content) if content.strip() else []
            if not isinstance(records, list):
                raise ValueError("snapshot must be a JSON array")
            schedules = [Schedule.from_dict(record) for record in records]
        except (OSError, ValueError) as e:
            raise SchedulePersistenceError(
                f"Failed to load schedule file {self.path}: {e}"
            ) from e

        self._schedules = {schedule.id: schedule for schedule in schedules}
        self._version += 1
        # What is on disk is exactly what was just loaded.
        self._written_version = self._version

        logger.info("schedules_loaded", path=str(self.path), count=len(schedules))
        return len(schedules)
