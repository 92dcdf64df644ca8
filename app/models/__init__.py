from app.models.bot import Bot, BotKnowledge
from app.models.chat import Chat
from app.models.jid_mapping import JidMapping
from app.models.message import Message
from app.models.whatsapp_session import WhatsAppSession

__all__ = [
    "Bot",
    "BotKnowledge",
    "Chat",
    "JidMapping",
    "Message",
    "WhatsAppSession",
]
