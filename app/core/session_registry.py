"""
Process-wide registry of live WhatsApp sessions.

Holds, per session, the transport used to reach the gateway and the inbox
that serializes inbound processing, plus the in-flight claims of the
outbound poller. Nothing here is persisted; ``rebuild`` restores it from the
sessions table after a restart.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.adapters.base import BasePlatformAdapter
from app.core.session_inbox import SessionInbox
from app.infra.logging_config import get_logger
from app.services.session_service import SessionService

logger = get_logger()

TransportFactory = Callable[[UUID], Optional[BasePlatformAdapter]]


class SessionRegistry:
    def __init__(self, transport_factory: Optional[TransportFactory] = None) -> None:
        self._transport_factory = transport_factory
        self._lock = asyncio.Lock()
        self._transports: Dict[UUID, BasePlatformAdapter] = {}
        self._inboxes: Dict[UUID, SessionInbox] = {}
        # message id -> session id
        self._in_flight: Dict[UUID, UUID] = {}

    def get_transport(self, session_id: UUID) -> Optional[BasePlatformAdapter]:
        return self._transports.get(session_id)

    def has_session(self, session_id: UUID) -> bool:
        return session_id in self._transports

    def session_ids(self) -> List[UUID]:
        return list(self._transports)

    async def register(self, session_id: UUID, transport: BasePlatformAdapter) -> None:
        async with self._lock:
            previous = self._transports.get(session_id)
            self._transports[session_id] = transport
        if previous is not None and previous is not transport:
            await previous.aclose()
        logger.info("Registered transport for session %s", session_id)

    async def get_inbox(self, session_id: UUID) -> SessionInbox:
        async with self._lock:
            inbox = self._inboxes.get(session_id)
            if inbox is None:
                inbox = SessionInbox(session_id)
                self._inboxes[session_id] = inbox
            inbox.start()
            return inbox

    async def teardown(self, session_id: UUID) -> None:
        """Drop the session's transport, inbox and claims (logout or disconnect)."""
        async with self._lock:
            transport = self._transports.pop(session_id, None)
            inbox = self._inboxes.pop(session_id, None)
            for message_id in [m for m, s in self._in_flight.items() if s == session_id]:
                del self._in_flight[message_id]
        if inbox is not None:
            await inbox.stop()
        if transport is not None:
            await transport.aclose()
        logger.info("Tore down session %s", session_id)

    async def claim(self, message_id: UUID, session_id: UUID) -> bool:
        """Mark an outbound message in flight. False if it already is."""
        async with self._lock:
            if message_id in self._in_flight:
                return False
            self._in_flight[message_id] = session_id
            return True

    async def release(self, message_id: UUID) -> None:
        async with self._lock:
            self._in_flight.pop(message_id, None)

    def is_claimed(self, message_id: UUID) -> bool:
        return message_id in self._in_flight

    async def rebuild(self, db: DBSession) -> None:
        """Sync live sessions with the sessions table: connect new ones, drop disconnecting ones."""
        service = SessionService(db)
        for session in service.list_disconnecting_sessions():
            if self.has_session(session.id):
                logger.info("Disconnecting session %s", session.id)
                await self.teardown(session.id)

        if self._transport_factory is None:
            return
        for session in service.list_active_sessions():
            if self.has_session(session.id):
                continue
            transport = self._transport_factory(session.id)
            if transport is not None:
                await self.register(session.id, transport)

    async def close_all(self) -> None:
        for session_id in set(self._transports) | set(self._inboxes):
            await self.teardown(session_id)
