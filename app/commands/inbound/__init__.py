"""Inbound event command handlers."""

from app.commands.inbound.handle_inbound_command import (
    HandleInboundMessageCommand,
    HistoryIngestResult,
    InboundOutcome,
    InboundStatus,
)

__all__ = [
    "HandleInboundMessageCommand",
    "HistoryIngestResult",
    "InboundOutcome",
    "InboundStatus",
]
