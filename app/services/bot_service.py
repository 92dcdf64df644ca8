"""Bot lookup and knowledge retrieval for automated replies."""

from __future__ import annotations

import logging
import re
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.models.bot import Bot, BotKnowledge
from app.schemas.bridge import BotConfig

logger = logging.getLogger(__name__)

MAX_KNOWLEDGE_ITEMS = 5
MIN_WORD_LENGTH = 3

_WHITESPACE = re.compile(r"\s+")


def _words(text: Optional[str]) -> List[str]:
    return [w for w in _WHITESPACE.split((text or "").lower()) if w]


def message_words(message: str) -> List[str]:
    """Words of a user message long enough to be used as search terms."""
    return [w for w in _words(message) if len(w) >= MIN_WORD_LENGTH]


def knowledge_terms(item: BotKnowledge) -> List[str]:
    terms = [str(k).lower() for k in (item.keywords or []) if k]
    terms.extend(_words(item.title))
    terms.extend(_words(item.category))
    return terms


def is_relevant(item: BotKnowledge, words: List[str]) -> bool:
    """A word and a term match when either one contains the other."""
    terms = knowledge_terms(item)
    return any(term in word or word in term for word in words for term in terms)


class BotService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_active_bot(self, bot_id: UUID) -> Optional[Bot]:
        return (
            self.db.query(Bot)
            .filter(Bot.id == bot_id, Bot.is_active.is_(True))
            .first()
        )

    def get_active_knowledge(self, bot_id: UUID) -> List[BotKnowledge]:
        return (
            self.db.query(BotKnowledge)
            .filter(BotKnowledge.bot_id == bot_id, BotKnowledge.is_active.is_(True))
            .order_by(BotKnowledge.priority.desc())
            .all()
        )

    def find_relevant_knowledge(self, bot_id: UUID, message: str) -> List[BotKnowledge]:
        words = message_words(message)
        if not words:
            return []
        relevant = [k for k in self.get_active_knowledge(bot_id) if is_relevant(k, words)]
        return relevant[:MAX_KNOWLEDGE_ITEMS]

    def build_config(self, bot_id: Optional[UUID], message: str) -> BotConfig:
        """Reply configuration for a chat; defaults when the chat has no active bot."""
        if bot_id is None:
            return BotConfig()
        bot = self.get_active_bot(bot_id)
        if bot is None:
            logger.info("Bot %s not found or inactive, using defaults", bot_id)
            return BotConfig()
        knowledge = self.find_relevant_knowledge(bot.id, message)
        return BotConfig(
            bot_id=str(bot.id),
            personality=bot.personality or None,
            knowledge=[f"[{k.title}]\n{k.content}" for k in knowledge],
            temperature=bot.temperature or 0.7,
            max_tokens=bot.max_tokens or 200,
        )
