import uuid

from sqlalchemy import Column, String, Text, DateTime, JSON, Uuid, Index

from scriptgate.core.utils import utcnow
from scriptgate.db.base import Base


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)
    event_type = Column(String(64), nullable=False)  # es: device_registered, device_transition, credential_rejected
    level = Column(String(16), nullable=False, default="info")
    device_hwid = Column(String(400), nullable=True, index=True)
    actor = Column(String(128), nullable=True)
    origin = Column(String(128), nullable=True)
    details = Column(JSON, nullable=True)
    message = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_events_type_created_at", "event_type", "created_at"),
    )
