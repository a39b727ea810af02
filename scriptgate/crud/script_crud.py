# scriptgate/crud/script_crud.py
# Script Catalog: versioni caricate, versione attiva, checksum, storico, rendering.
from __future__ import annotations

import hashlib
import re
import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scriptgate.core.errors import ConcurrentUpdate, InvalidInput, NotFound
from scriptgate.core.utils import extract_version, utcnow
from scriptgate.db.session import store_errors, upsert_insert
from scriptgate.models.script_version import ScriptRevision, ScriptVersion
from scriptgate.services.audit import AuditEntry, AuditSink
from scriptgate.services.templates import LOADER_TEMPLATE, PLACEHOLDER_SCRIPT

MAX_PAYLOAD_BYTES = 10 * 1024 * 1024  # 10MB, userscript grandi compresi
DEFAULT_VERSION = "1.0.0"
NAME_MAX_LENGTH = 128

_SUFFIX_RE = re.compile(r"\.(user\.)?js$", re.IGNORECASE)


def compute_checksum(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def normalize_name(name: Optional[str]) -> str:
    """Nome logico dello script: "tool.user.js" e "tool" sono lo stesso script."""
    cleaned = _SUFFIX_RE.sub("", (name or "").strip())
    if not cleaned or len(cleaned) > NAME_MAX_LENGTH:
        raise InvalidInput("Invalid script name")
    return cleaned


def _load(db: Session, script_id: uuid.UUID) -> Optional[ScriptVersion]:
    stmt = (
        select(ScriptVersion)
        .where(ScriptVersion.id == script_id)
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalar_one_or_none()


def lock_active_rows():
    """SELECT ... FOR UPDATE sulla riga attiva (no-op su SQLite)."""
    return select(ScriptVersion.id).where(ScriptVersion.is_active.is_(True)).with_for_update()


def _activate(db: Session, script_id: uuid.UUID) -> None:
    """
    Prima spegne le altre righe attive, poi accende questa: l'indice unico
    parziale vieta comunque due righe attive, e la transazione rende il
    passaggio invisibile ai lettori concorrenti.

    Il lock sulla riga attiva serializza pubblicazioni concorrenti con nomi diversi.
    """
    db.execute(lock_active_rows()).all()
    now = utcnow()
    db.execute(
        update(ScriptVersion)
        .where(ScriptVersion.is_active.is_(True), ScriptVersion.id != script_id)
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(ScriptVersion)
        .where(ScriptVersion.id == script_id)
        .values(is_active=True, updated_at=now)
        .execution_options(synchronize_session=False)
    )


# =========================
#  LOOKUP
# =========================
def active_version(db: Session) -> Optional[ScriptVersion]:
    with store_errors(db):
        stmt = (
            select(ScriptVersion)
            .where(ScriptVersion.is_active.is_(True))
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return db.execute(stmt).scalar_one_or_none()


def get_version(db: Session, script_id: uuid.UUID) -> ScriptVersion:
    with store_errors(db):
        script = _load(db, script_id)
    if script is None:
        raise NotFound("Script not found")
    return script


# =========================
#  PUBLISH
# =========================
def publish(
    db: Session,
    name: str,
    payload: str,
    notes: Optional[str],
    actor: str,
    *,
    version: Optional[str] = None,
    checksum: Optional[str] = None,
    audit: Optional[AuditSink] = None,
) -> ScriptVersion:
    """
    Pubblica (o ri-pubblica) uno script e lo rende l'unica versione attiva.

    Upsert sul nome logico + spegnimento delle altre righe + riga di storico,
    tutto nella stessa transazione. Il checksum è sempre calcolato qui: quello
    eventualmente inviato dal chiamante serve solo come verifica d'integrità.
    """
    name = normalize_name(name)
    if not payload:
        raise InvalidInput("Script payload is required")

    file_size = len(payload.encode("utf-8"))
    if file_size > MAX_PAYLOAD_BYTES:
        raise InvalidInput("File too large. Maximum size is 10MB.")

    digest = compute_checksum(payload)
    if checksum and checksum.strip().lower() != digest:
        raise InvalidInput("Checksum mismatch")

    version = (version or extract_version(payload) or DEFAULT_VERSION).strip()[:64]
    now = utcnow()

    try:
        with store_errors(db):
            table = ScriptVersion.__table__
            ins = upsert_insert(db, table).values(
                id=uuid.uuid4(),
                name=name,
                version=version,
                payload=payload,
                checksum=digest,
                file_size=file_size,
                update_notes=notes,
                is_active=False,
                created_by=actor,
                created_at=now,
                updated_at=now,
            )
            stmt = ins.on_conflict_do_update(
                index_elements=["name"],
                set_={
                    "version": ins.excluded.version,
                    "payload": ins.excluded.payload,
                    "checksum": ins.excluded.checksum,
                    "file_size": ins.excluded.file_size,
                    "update_notes": ins.excluded.update_notes,
                    "created_by": ins.excluded.created_by,
                    "updated_at": ins.excluded.updated_at,
                },
            ).returning(table.c.id)
            script_id = db.execute(stmt).scalar_one()

            _activate(db, script_id)

            # la riga script_versions è già bloccata dall'upsert: il conteggio è stabile
            revision = db.execute(
                select(func.count()).select_from(ScriptRevision).where(ScriptRevision.name == name)
            ).scalar() + 1
            db.add(ScriptRevision(
                script_id=script_id,
                name=name,
                revision=revision,
                version=version,
                payload=payload,
                checksum=digest,
                file_size=file_size,
                update_notes=notes,
                created_by=actor,
                created_at=now,
            ))
            db.commit()
            script = _load(db, script_id)
    except IntegrityError as e:
        raise ConcurrentUpdate() from e

    if audit is not None:
        audit.append(AuditEntry(
            event_type="script_published",
            actor=actor,
            details={
                "script_id": str(script.id),
                "name": name,
                "version": version,
                "file_size": file_size,
                "checksum": digest,
            },
        ))
    return script


def set_active(
    db: Session,
    script_id: uuid.UUID,
    active: bool,
    actor: str,
    *,
    audit: Optional[AuditSink] = None,
) -> ScriptVersion:
    """Attiva (spegnendo tutte le altre) o disattiva una versione."""
    try:
        with store_errors(db):
            script = _load(db, script_id)
            if script is None:
                raise NotFound("Script not found")
            if active:
                _activate(db, script_id)
            else:
                db.execute(
                    update(ScriptVersion)
                    .where(ScriptVersion.id == script_id)
                    .values(is_active=False, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
            db.commit()
            script = _load(db, script_id)
    except IntegrityError as e:
        raise ConcurrentUpdate() from e

    if audit is not None:
        audit.append(AuditEntry(
            event_type="script_activated" if active else "script_deactivated",
            actor=actor,
            details={"script_id": str(script.id), "name": script.name, "version": script.version},
        ))
    return script


def rollback(
    db: Session,
    revision_id: uuid.UUID,
    actor: str,
    *,
    audit: Optional[AuditSink] = None,
) -> ScriptVersion:
    """Ripubblica una revisione dello storico (genera a sua volta una nuova revisione)."""
    with store_errors(db):
        revision = db.get(ScriptRevision, revision_id)
    if revision is None:
        raise NotFound("Revision not found")
    return publish(
        db,
        revision.name,
        revision.payload,
        f"Rollback to {revision.version}",
        actor,
        version=revision.version,
        audit=audit,
    )


# =========================
#  RENDER
# =========================
def render_template(template: str, personalization: Mapping[str, Any]) -> str:
    """
    Sostituisce i token {{KEY}}. Un token fornito ma assente nel template è
    un no-op; un token del template non fornito resta com'è.
    """
    rendered = template
    for key, value in personalization.items():
        rendered = rendered.replace("{{%s}}" % key, str(value))
    return rendered


def render(version: ScriptVersion, personalization: Mapping[str, Any]) -> bytes:
    """Payload personalizzato; la riga salvata non viene mai modificata."""
    return render_template(version.payload, personalization).encode("utf-8")


def render_placeholder(personalization: Mapping[str, Any]) -> bytes:
    return render_template(PLACEHOLDER_SCRIPT, personalization).encode("utf-8")


def render_loader(username: str, *, api_base: str, version: str, timestamp: str) -> bytes:
    """Loader generico personalizzato per utente (il secret non viene mai incluso)."""
    return render_template(LOADER_TEMPLATE, {
        "USERNAME": username,
        "API_BASE": api_base.rstrip("/"),
        "VERSION": version,
        "TIMESTAMP": timestamp,
    }).encode("utf-8")


# =========================
#  ADMIN HELPERS
# =========================
def serialize_script(script: ScriptVersion, include_payload: bool = False) -> Dict[str, Any]:
    data = {
        "id": str(script.id),
        "name": script.name,
        "version": script.version,
        "checksum": script.checksum,
        "size": script.file_size,
        "update_notes": script.update_notes,
        "is_active": bool(script.is_active),
        "created_by": script.created_by,
        "created_at": script.created_at,
        "updated_at": script.updated_at,
    }
    if include_payload:
        data["payload"] = script.payload
    return data


def serialize_revision(revision: ScriptRevision) -> Dict[str, Any]:
    return {
        "id": str(revision.id),
        "script_id": str(revision.script_id),
        "name": revision.name,
        "revision": revision.revision,
        "version": revision.version,
        "checksum": revision.checksum,
        "size": revision.file_size,
        "update_notes": revision.update_notes,
        "created_by": revision.created_by,
        "created_at": revision.created_at,
    }


def list_versions(db: Session) -> List[ScriptVersion]:
    with store_errors(db):
        return db.execute(
            select(ScriptVersion).order_by(ScriptVersion.updated_at.desc())
        ).scalars().all()


def history(db: Session, name: str) -> List[ScriptRevision]:
    """Storico delle pubblicazioni per nome logico, dalla più recente."""
    name = normalize_name(name)
    with store_errors(db):
        return db.execute(
            select(ScriptRevision)
            .where(ScriptRevision.name == name)
            .order_by(ScriptRevision.revision.desc())
        ).scalars().all()
