"""
SyncTaskSupervisor — tracked background syncs.

User-triggered syncs can run in the background; every task is registered,
its outcome recorded, and shutdown waits for in-flight work instead of
dropping it.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Dict, Optional

from core.sync_service import SyncOrchestrator
from utils.errors import SyncInProgressError
from utils.schemas import SyncTaskInfo

logger = logging.getLogger(__name__)


class SyncTaskSupervisor:
    def __init__(self, orchestrator: SyncOrchestrator, history_size: int = 500) -> None:
        self._orchestrator = orchestrator
        self._history_size = history_size
        self._tasks: Dict[str, asyncio.Task] = {}
        self._info: "OrderedDict[str, SyncTaskInfo]" = OrderedDict()

    def is_running(self, user_id: str, provider: str) -> bool:
        return any(
            info.state == "running" and info.user_id == str(user_id) and info.provider == provider
            for info in self._info.values()
        ) or self._orchestrator.is_syncing(user_id, provider)

    def submit(self, user_id: str, provider: str) -> str:
        """Start a background sync and return its task id."""
        if self.is_running(user_id, provider):
            raise SyncInProgressError(
                f"Sync already running for {provider}/{user_id}",
                provider=provider,
            )
        task_id = str(uuid.uuid4())
        self._info[task_id] = SyncTaskInfo(
            task_id=task_id,
            user_id=str(user_id),
            provider=provider,
            state="running",
            submitted_at=datetime.now(timezone.utc),
        )
        task = asyncio.create_task(self._orchestrator.sync_provider(user_id, provider))
        self._tasks[task_id] = task
        task.add_done_callback(lambda t, tid=task_id: self._on_done(tid, t))
        self._trim()
        return task_id

    def _on_done(self, task_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(task_id, None)
        info = self._info.get(task_id)
        if info is None:
            return
        info.finished_at = datetime.now(timezone.utc)
        if task.cancelled():
            info.state = "failed"
            info.error = "cancelled"
            return
        exc = task.exception()
        if exc is not None:
            info.state = "failed"
            info.error = str(exc)
            logger.error("Background sync %s (%s) raised: %s", task_id, info.provider, exc)
            return
        result = task.result()
        info.result = result
        info.state = "succeeded" if result.success else "failed"
        info.error = result.error

    def _trim(self) -> None:
        excess = len(self._info) - self._history_size
        if excess <= 0:
            return
        finished = [tid for tid, info in self._info.items() if info.state != "running"]
        for tid in finished[:excess]:
            del self._info[tid]

    def get(self, task_id: str) -> Optional[SyncTaskInfo]:
        return self._info.get(task_id)

    async def wait(self, task_id: str) -> Optional[SyncTaskInfo]:
        task = self._tasks.get(task_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._info.get(task_id)

    async def shutdown(self) -> None:
        """Wait for every in-flight sync to finish."""
        pending = list(self._tasks.values())
        if pending:
            logger.info("Waiting for %d background syncs", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
