"""JidMapping model: discovered lid -> phone links, a read-side hint only."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, String, UniqueConstraint, Uuid

from app.db import Base
from app.models.mixins import TimestampMixin

MAPPING_SOURCE_ECHO = "echo"
MAPPING_SOURCE_HINT = "hint"
MAPPING_SOURCE_AUDIT = "audit"


class JidMapping(Base, TimestampMixin):
    """Chat.phone_jid stays authoritative; this table only helps presentation."""

    __tablename__ = "jid_mappings"
    __table_args__ = (
        UniqueConstraint("session_id", "lid_jid", name="uq_jid_mappings_session_lid"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, nullable=False, index=True)
    lid_jid = Column(String(128), nullable=False)
    phone_jid = Column(String(128), nullable=False)
    source = Column(String(16), nullable=False, default=MAPPING_SOURCE_HINT)
