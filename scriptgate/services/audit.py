from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from scriptgate.models.audit_event import AuditEvent

logger = logging.getLogger("scriptgate.audit")


@dataclass
class AuditEntry:
    event_type: str
    level: str = "info"
    device_hwid: Optional[str] = None
    actor: Optional[str] = None
    origin: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class AuditSink(Protocol):
    """Collaboratore fire-and-forget: append non deve mai far fallire la richiesta."""

    def append(self, entry: AuditEntry) -> None:
        ...


class DbAuditLog:
    """
    Salva gli eventi di audit nella tabella 'audit_events'.

    Usa una sessione propria (dalla factory) così il salvataggio non
    interferisce con la transazione della richiesta in corso.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def append(self, entry: AuditEntry) -> None:
        try:
            with self.session_factory() as db:
                db.add(AuditEvent(
                    event_type=entry.event_type,
                    level=entry.level,
                    device_hwid=entry.device_hwid,
                    actor=entry.actor,
                    origin=entry.origin,
                    message=entry.message,
                    details=entry.details or None,
                ))
                db.commit()
        except SQLAlchemyError as e:
            # In caso di errore, non bloccare mai il flusso principale
            logger.warning("audit append fallito (%s): %s", entry.event_type, e.__class__.__name__)


def query_events(
    db: Session,
    *,
    event_type: Optional[str] = None,
    device_hwid: Optional[str] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
) -> Iterable[AuditEvent]:
    """
    Query base per la consultazione admin con filtri comuni.
    """
    stmt = select(AuditEvent)
    if event_type:
        stmt = stmt.where(AuditEvent.event_type == event_type)
    if device_hwid:
        stmt = stmt.where(AuditEvent.device_hwid == device_hwid)
    if since:
        stmt = stmt.where(AuditEvent.created_at >= since)
    if until:
        stmt = stmt.where(AuditEvent.created_at < until)
    stmt = stmt.order_by(AuditEvent.created_at.desc()).offset(offset).limit(limit)
    return db.execute(stmt).scalars().all()
