# scriptgate/models/script_version.py
import uuid

from sqlalchemy import (
    Column,
    String,
    Integer,
    Boolean,
    DateTime,
    Text,
    Uuid,
    ForeignKey,
    Index,
    UniqueConstraint,
    text,
)

from scriptgate.core.utils import utcnow
from scriptgate.db.base import Base


class ScriptVersion(Base):
    __tablename__ = "script_versions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Nome logico: un re-upload con lo stesso nome aggiorna la riga
    name = Column(String(128), unique=True, nullable=False)
    version = Column(String(64), nullable=False)
    payload = Column(Text, nullable=False)
    checksum = Column(String(64), nullable=False)
    file_size = Column(Integer, nullable=False)
    update_notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=False)

    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)

    __table_args__ = (
        # Al massimo UNA riga attiva: garantito dal DB, non solo dall'app
        Index(
            "uq_script_versions_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )


class ScriptRevision(Base):
    """Storico append-only di ogni publish (audit/rollback)."""

    __tablename__ = "script_revisions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    script_id = Column(
        Uuid,
        ForeignKey("script_versions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = Column(String(128), nullable=False)
    # Progressivo per nome (1, 2, 3...): ordina lo storico
    revision = Column(Integer, nullable=False)
    version = Column(String(64), nullable=False)
    payload = Column(Text, nullable=False)
    checksum = Column(String(64), nullable=False)
    file_size = Column(Integer, nullable=False)
    update_notes = Column(Text, nullable=True)
    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("name", "revision", name="uq_script_revisions_name_revision"),
    )
