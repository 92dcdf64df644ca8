"""Keeps the session registry in step with the whatsapp_sessions table."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

from app.config import Settings, get_settings
from app.core.session_registry import SessionRegistry
from app.db import db_manager
from app.infra.logging_config import get_logger
from app.workers.outbound_poller import SessionScope

logger = get_logger()


class SessionWatcher:
    """Connects new sessions and tears down sessions flagged should_disconnect."""

    def __init__(
        self,
        registry: SessionRegistry,
        session_scope: Optional[SessionScope] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.registry = registry
        self.session_scope = session_scope or db_manager.db_session
        self.settings = settings or get_settings()
        self._task: Optional[asyncio.Task[None]] = None

    async def sync_once(self) -> None:
        with self.session_scope() as db:
            await self.registry.rebuild(db)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="session-watcher")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.settings.session_poll_interval_seconds)
            try:
                await self.sync_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error while syncing sessions")
