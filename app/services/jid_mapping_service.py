"""Service for the lid -> phone mapping table (read-side hint only)."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.models.jid_mapping import MAPPING_SOURCE_HINT, JidMapping

logger = logging.getLogger(__name__)


class JidMappingService:
    def __init__(self, db: DBSession) -> None:
        self.db = db

    def get_phone_for_lid(self, session_id: UUID, lid_jid: str) -> Optional[str]:
        mapping = self._get(session_id, lid_jid)
        return mapping.phone_jid if mapping else None

    def record(
        self,
        session_id: UUID,
        lid_jid: str,
        phone_jid: str,
        source: str = MAPPING_SOURCE_HINT,
    ) -> JidMapping:
        """Insert or update the mapping for lid_jid. Concurrent inserts converge on one row."""
        mapping = self._get(session_id, lid_jid)
        if mapping is None:
            mapping = JidMapping(
                session_id=session_id,
                lid_jid=lid_jid,
                phone_jid=phone_jid,
                source=source,
            )
            self.db.add(mapping)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                mapping = self._get(session_id, lid_jid)
                if mapping is None:
                    raise
            else:
                self.db.refresh(mapping)
                logger.info(
                    "Recorded JID mapping session=%s lid=%s phone=%s source=%s",
                    session_id,
                    lid_jid,
                    phone_jid,
                    source,
                )
                return mapping
        if mapping.phone_jid != phone_jid:
            mapping.phone_jid = phone_jid
            mapping.source = source
            self.db.commit()
            self.db.refresh(mapping)
        return mapping

    def _get(self, session_id: UUID, lid_jid: str) -> Optional[JidMapping]:
        return (
            self.db.query(JidMapping)
            .filter(JidMapping.session_id == session_id, JidMapping.lid_jid == lid_jid)
            .first()
        )
