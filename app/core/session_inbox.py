"""
Single-consumer job queue per WhatsApp session.

Jobs for one session run strictly in submission order; different sessions
each have their own inbox and run concurrently.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

from app.infra.logging_config import get_logger

logger = get_logger()

InboxJob = Callable[[], Awaitable[Any]]


class SessionInbox:
    def __init__(self, session_id: UUID) -> None:
        self.session_id = session_id
        self._queue: asyncio.Queue[InboxJob] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(
            self._consume(), name=f"session-inbox-{self.session_id}"
        )

    async def submit(self, job: InboxJob) -> None:
        if not self.is_running:
            self.start()
        await self._queue.put(job)

    async def join(self) -> None:
        """Wait until every submitted job has finished."""
        await self._queue.join()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _consume(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Jobs resubmit their own retries; keep serving the session
                logger.exception("Inbox job failed for session %s", self.session_id)
            finally:
                self._queue.task_done()
