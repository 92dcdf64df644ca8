"""
Operator-triggered audit of duplicate phone/LID chats within one session.

Runs independently of the event stream and may overlap with it. Execution
goes through ChatMergeService.link_identifiers, so the audit applies the same
survivor policy as live resolution: the phone chat survives and takes over
the LID as its remote_id.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.core.jid import extract_jid_number, is_lid_jid, is_phone_jid
from app.exceptions import BridgeError
from app.models.chat import Chat
from app.models.jid_mapping import MAPPING_SOURCE_AUDIT
from app.schemas.audit import (
    AuditReport,
    AuditStats,
    ChatAnalysisRow,
    DuplicateAnalysis,
    MergeCandidate,
    MergeExecution,
    MergeOutcome,
)
from app.services.chat_merge_service import ChatMergeService
from app.services.chat_service import ChatService
from app.services.message_service import MessageService

logger = logging.getLogger(__name__)

NAME_MATCH_DIGITS = 4


class DuplicateChatAuditor:
    def __init__(self, db: DBSession) -> None:
        self.db = db
        self.chats = ChatService(db)
        self.messages = MessageService(db)
        self.merges = ChatMergeService(db)

    def analyze(self, session_id: UUID) -> DuplicateAnalysis:
        """Classify every individual chat of the session as phone or LID addressed."""
        chats = self.chats.list_individual_chats(session_id)
        rows = [
            ChatAnalysisRow(
                id=chat.id,
                remote_id=chat.remote_id,
                phone_jid=chat.phone_jid,
                name=chat.name,
                is_phone=is_phone_jid(chat.remote_id),
                is_lid=is_lid_jid(chat.remote_id),
                created_at=chat.created_at,
                last_message_at=chat.last_message_at,
            )
            for chat in chats
        ]
        return DuplicateAnalysis(
            session_id=session_id,
            total_chats=len(rows),
            phone_chats=sum(1 for row in rows if row.is_phone),
            lid_chats=sum(1 for row in rows if row.is_lid),
            chats=rows,
        )

    def audit(self, session_id: UUID) -> AuditReport:
        """Dry run: report candidate pairs without touching any row."""
        chats = self.chats.list_individual_chats(session_id)
        phone_chats = [c for c in chats if is_phone_jid(c.remote_id)]
        lid_chats = [c for c in chats if is_lid_jid(c.remote_id)]
        candidates = self.find_candidates(phone_chats, lid_chats)
        logger.info(
            "Duplicate audit session=%s phone_chats=%d lid_chats=%d candidates=%d",
            session_id,
            len(phone_chats),
            len(lid_chats),
            len(candidates),
        )
        return AuditReport(
            session_id=session_id,
            dry_run=True,
            stats=AuditStats(
                total_chats=len(chats),
                phone_chats=len(phone_chats),
                lid_chats=len(lid_chats),
                potential_merges=len(candidates),
            ),
            candidates=candidates,
        )

    def execute(self, session_id: UUID) -> MergeExecution:
        """Merge every candidate pair. A failing pair is reported, the rest still run."""
        report = self.audit(session_id)
        results = [self._execute_one(session_id, c) for c in report.candidates]
        merged = sum(1 for r in results if r.success)
        logger.info(
            "Duplicate merge session=%s merged=%d failed=%d",
            session_id,
            merged,
            len(results) - merged,
        )
        return MergeExecution(session_id=session_id, dry_run=False, results=results)

    @staticmethod
    def find_candidates(
        phone_chats: List[Chat], lid_chats: List[Chat]
    ) -> List[MergeCandidate]:
        """
        Pair LID chats with the phone chat of the same contact.

        First by the LID chat's phone_jid, then by the heuristic that the LID
        chat's name contains the last digits of the phone number. Each chat
        appears in at most one pair.
        """
        candidates: List[MergeCandidate] = []
        used_phone: set = set()
        used_lid: set = set()

        for lid_chat in lid_chats:
            if not lid_chat.phone_jid:
                continue
            match = next(
                (
                    pc
                    for pc in phone_chats
                    if pc.id not in used_phone
                    and (
                        pc.remote_id == lid_chat.phone_jid
                        or pc.phone_jid == lid_chat.phone_jid
                    )
                ),
                None,
            )
            if match is None or match.id == lid_chat.id:
                continue
            candidates.append(_candidate(match, lid_chat, "merge_by_phone_jid"))
            used_phone.add(match.id)
            used_lid.add(lid_chat.id)

        for phone_chat in phone_chats:
            if phone_chat.id in used_phone:
                continue
            suffix = extract_jid_number(phone_chat.remote_id)[-NAME_MATCH_DIGITS:]
            for lid_chat in lid_chats:
                if lid_chat.id in used_lid:
                    continue
                if lid_chat.name and suffix and suffix in lid_chat.name:
                    candidates.append(_candidate(phone_chat, lid_chat, "merge_by_name_pattern"))
                    used_phone.add(phone_chat.id)
                    used_lid.add(lid_chat.id)
                    break

        return candidates

    def _execute_one(self, session_id: UUID, candidate: MergeCandidate) -> MergeOutcome:
        outcome = MergeOutcome(
            phone_chat_id=candidate.phone_chat_id,
            lid_chat_id=candidate.lid_chat_id,
            action=candidate.action,
            success=False,
        )
        phone_chat = self.chats.get_chat_in_session(session_id, candidate.phone_chat_id)
        lid_chat = self.chats.get_chat_in_session(session_id, candidate.lid_chat_id)
        if phone_chat is None or lid_chat is None:
            outcome.error = "chat no longer exists"
            return outcome

        phone_jid: Optional[str] = phone_chat.phone_jid
        if not is_phone_jid(phone_jid):
            phone_jid = phone_chat.remote_id
        moved = self.messages.get_message_count(lid_chat.id)
        try:
            survivor = self.merges.link_identifiers(
                session_id, lid_chat.remote_id, phone_jid, source=MAPPING_SOURCE_AUDIT
            )
        except BridgeError as exc:
            self.db.rollback()
            logger.warning(
                "Duplicate merge failed phone_chat=%s lid_chat=%s: %s",
                candidate.phone_chat_id,
                candidate.lid_chat_id,
                exc,
            )
            outcome.error = str(exc)
            return outcome

        outcome.success = True
        outcome.surviving_chat_id = survivor.id
        outcome.moved_messages = moved
        logger.info(
            "Merged LID chat %s into phone chat %s (%s)",
            candidate.lid_chat_id,
            survivor.id,
            candidate.action,
        )
        return outcome


def _candidate(phone_chat: Chat, lid_chat: Chat, action: str) -> MergeCandidate:
    return MergeCandidate(
        phone_chat_id=phone_chat.id,
        phone_chat_remote_id=phone_chat.remote_id,
        lid_chat_id=lid_chat.id,
        lid_chat_remote_id=lid_chat.remote_id,
        action=action,
    )
