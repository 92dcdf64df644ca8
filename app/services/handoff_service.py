"""
Chat mode tracking: automated replies versus a human operator.

A chat leaves ``ai`` mode when the customer explicitly asks for a person or
when reply generation signals a handoff. Only an operator switches it back.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.adapters.base import MessagingTransport
from app.config import Settings, get_settings
from app.exceptions import ChatNotFound
from app.models.chat import CHAT_MODES, MODE_HUMAN, Chat
from app.models.message import SENDER_AGENT, Message
from app.schemas.bridge import HistoryItem
from app.services.bot_service import BotService
from app.services.chat_service import ChatService
from app.services.message_service import MessageService
from app.workers.llm import ReplyGenerator

logger = logging.getLogger(__name__)

HUMAN_REQUEST_PHRASES = (
    "عايز اكلم خدمة العملاء",
    "حولني خدمة العملاء",
    "اكلم خدمة العملاء",
    "موظف",
    "عايز موظف",
    "تحويل خدمة العملاء",
    "اتكلم مع موظف",
    "عايز اتكلم مع شخص",
    "customer service",
    "talk to a human",
    "speak to a human",
    "talk to an agent",
    "real person",
)


class HandoffAction(str, Enum):
    HUMAN_REQUESTED = "human_requested"
    HUMAN_MODE = "human_mode"
    REPLIED = "replied"
    HANDED_OFF = "handed_off"
    DISABLED = "disabled"
    IGNORED = "ignored"


def requests_human(text: Optional[str]) -> bool:
    """True when the text contains one of the explicit human-request phrases."""
    normalized = (text or "").lower().strip()
    if not normalized:
        return False
    return any(phrase.lower() in normalized for phrase in HUMAN_REQUEST_PHRASES)


def history_role(msg: Message) -> str:
    return "assistant" if msg.sender == SENDER_AGENT else "user"


class HandoffService:
    def __init__(
        self,
        db: DBSession,
        reply_generator: Optional[ReplyGenerator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.reply_generator = reply_generator
        self.chats = ChatService(db)
        self.messages = MessageService(db)
        self.bots = BotService(db)

    def set_mode(self, session_id: UUID, chat_id: UUID, mode: str) -> Chat:
        """Operator switch between ai and human. needs_human follows the mode."""
        if mode not in CHAT_MODES:
            raise ValueError(f"Invalid mode {mode!r}, expected one of {sorted(CHAT_MODES)}")
        chat = self.chats.get_chat_in_session(session_id, chat_id)
        if chat is None:
            raise ChatNotFound(f"Chat {chat_id} not found in session {session_id}")
        chat = self.chats.update_chat(chat, mode=mode, needs_human=mode == MODE_HUMAN)
        logger.info("Chat %s mode set to %s", chat.id, mode)
        return chat

    def hand_off(self, chat: Chat) -> Chat:
        return self.chats.update_chat(chat, mode=MODE_HUMAN, needs_human=True)

    def build_history(self, chat_id: UUID, current: Message) -> list[HistoryItem]:
        """Recent messages of the chat before ``current``, oldest first."""
        recent = self.messages.get_recent_messages(
            chat_id, self.settings.reply_history_limit
        )
        return [
            HistoryItem(role=history_role(m), content=m.body)
            for m in recent
            if m.id != current.id and (m.body or "").strip()
        ]

    async def handle_inbound(
        self, chat: Chat, message: Message, transport: MessagingTransport
    ) -> HandoffAction:
        text = (message.body or "").strip()
        if message.is_from_us or not text:
            return HandoffAction.IGNORED

        self.db.refresh(chat)

        if requests_human(text):
            self.hand_off(chat)
            logger.info("Chat %s asked for a human, switching to human mode", chat.id)
            await self._send(transport, chat, self.settings.handoff_confirmation_message)
            return HandoffAction.HUMAN_REQUESTED

        if chat.mode == MODE_HUMAN:
            logger.info("Chat %s is in human mode, skipping automated reply", chat.id)
            return HandoffAction.HUMAN_MODE

        if not self.settings.ai_enabled or self.reply_generator is None:
            return HandoffAction.DISABLED

        history = self.build_history(chat.id, message)
        bot_config = self.bots.build_config(chat.bot_id, text)
        result = await self.reply_generator.generate(history, text, bot_config)
        await self._send(transport, chat, result.reply)

        if result.handoff:
            self.hand_off(chat)
            logger.info(
                "Chat %s handed off to a human: %s", chat.id, result.handoff_reason
            )
            return HandoffAction.HANDED_OFF
        return HandoffAction.REPLIED

    async def _send(self, transport: MessagingTransport, chat: Chat, text: str) -> None:
        result = await transport.send(chat.remote_id, text)
        if not result.success:
            logger.warning(
                "Automated message to chat %s was not delivered: %s",
                chat.id,
                result.error,
            )
