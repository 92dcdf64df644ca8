"""Schemas for the duplicate-chat auditor."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

MergeAction = Literal["merge_by_phone_jid", "merge_by_name_pattern"]


class MergeCandidate(BaseModel):
    phone_chat_id: UUID
    phone_chat_remote_id: str
    lid_chat_id: UUID
    lid_chat_remote_id: str
    action: MergeAction


class AuditStats(BaseModel):
    total_chats: int
    phone_chats: int
    lid_chats: int
    potential_merges: int


class AuditReport(BaseModel):
    session_id: UUID
    dry_run: bool = True
    stats: AuditStats
    candidates: list[MergeCandidate] = Field(default_factory=list)


class MergeOutcome(BaseModel):
    phone_chat_id: UUID
    lid_chat_id: UUID
    surviving_chat_id: Optional[UUID] = None
    action: MergeAction
    success: bool
    moved_messages: int = 0
    error: Optional[str] = None


class MergeExecution(BaseModel):
    session_id: UUID
    dry_run: bool = False
    results: list[MergeOutcome] = Field(default_factory=list)


class ChatAnalysisRow(BaseModel):
    id: UUID
    remote_id: str
    phone_jid: Optional[str] = None
    name: Optional[str] = None
    is_phone: bool
    is_lid: bool
    created_at: datetime
    last_message_at: Optional[datetime] = None


class DuplicateAnalysis(BaseModel):
    session_id: UUID
    total_chats: int
    phone_chats: int
    lid_chats: int
    chats: list[ChatAnalysisRow] = Field(default_factory=list)
