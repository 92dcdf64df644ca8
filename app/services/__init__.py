from app.services.chat_merge_service import ChatMergeService
from app.services.chat_resolver import ChatResolver
from app.services.chat_service import ChatService
from app.services.echo_reconciler import EchoReconciler
from app.services.message_service import MessageService
from app.services.session_service import SessionService

__all__ = [
    "ChatMergeService",
    "ChatResolver",
    "ChatService",
    "EchoReconciler",
    "MessageService",
    "SessionService",
]
