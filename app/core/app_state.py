from __future__ import annotations

from typing import Optional

from app.core.session_registry import SessionRegistry
from app.workers.llm import ReplyGenerator


class AppState:
    def __init__(self) -> None:
        self.registry = SessionRegistry()
        self.reply_generator: Optional[ReplyGenerator] = None
        # Process webhook deliveries inside the request instead of the session inbox
        self.inline_inbound = False

    def reset(self, registry: Optional[SessionRegistry] = None) -> None:
        self.registry = registry or SessionRegistry()
        self.reply_generator = None
        self.inline_inbound = False


state = AppState()
