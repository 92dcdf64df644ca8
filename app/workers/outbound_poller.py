"""
Fixed-interval sender for pending outbound messages.

Every tick picks up to ``outbound_poll_batch_size`` pending rows for sessions
with a live transport, claims each one in the registry so it is never
dispatched twice concurrently, and sends it with a timeout. A failed or timed
out send marks the row failed; there is no automatic retry.
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Callable, ContextManager, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.core.session_registry import SessionRegistry
from app.db import db_manager
from app.exceptions import SendFailed
from app.infra.logging_config import get_logger
from app.schemas.bridge import OutboundSendResult
from app.services.message_service import MessageService

logger = get_logger()

SessionScope = Callable[[], ContextManager[Session]]


@dataclass(frozen=True)
class PendingSend:
    message_id: UUID
    session_id: UUID
    remote_id: str
    body: str


@dataclass
class PollResult:
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class OutboundPoller:
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

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="outbound-poller")
            logger.info(
                "Outbound poller started interval=%ss batch=%d",
                self.settings.outbound_poll_interval_seconds,
                self.settings.outbound_poll_batch_size,
            )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in outbound polling loop")
            await asyncio.sleep(self.settings.outbound_poll_interval_seconds)

    async def poll_once(self) -> PollResult:
        result = PollResult()
        session_ids = self.registry.session_ids()
        if not session_ids:
            return result

        with self.session_scope() as db:
            messages = MessageService(db)
            pending = [
                PendingSend(m.id, m.session_id, m.remote_id, m.body or "")
                for m in messages.list_pending(
                    self.settings.outbound_poll_batch_size, session_ids=session_ids
                )
            ]
            for item in pending:
                transport = self.registry.get_transport(item.session_id)
                if transport is None or not await self.registry.claim(
                    item.message_id, item.session_id
                ):
                    result.skipped += 1
                    continue
                try:
                    send_result = await self._send(transport, item)
                except SendFailed as e:
                    logger.warning("%s", e)
                    messages.mark_failed(item.message_id)
                    result.failed += 1
                else:
                    messages.mark_sent(item.message_id, send_result.provider_message_id)
                    result.sent += 1
                finally:
                    await self.registry.release(item.message_id)
        return result

    async def _send(self, transport, item: PendingSend) -> OutboundSendResult:
        try:
            send_result = await asyncio.wait_for(
                transport.send(item.remote_id, item.body),
                timeout=self.settings.outbound_send_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise SendFailed(item.message_id, "timed out") from e
        except Exception as e:
            raise SendFailed(item.message_id, str(e)) from e
        if not send_result.success:
            raise SendFailed(item.message_id, send_result.error)
        return send_result
