# scriptgate/crud/device_crud.py
# Device Ledger: ciclo di vita dei device (pending → active → blocked/expired).
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, NoReturn, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from scriptgate.core.errors import IllegalTransition, NotFound
from scriptgate.core.utils import compute_expiry, utcnow
from scriptgate.db.session import store_errors, upsert_insert
from scriptgate.models.device import (
    ApprovalSource,
    Device,
    DevicePaymentStatus,
    DeviceStatus,
)
from scriptgate.services.audit import AuditEntry, AuditSink


# =========================
#  ATTORI
# =========================
class ActorKind(str, enum.Enum):
    payment_gate = "payment_gate"
    admin = "admin"


@dataclass(frozen=True)
class Actor:
    """Chi chiede la transizione. `identity` finisce sempre in approved_by."""
    kind: ActorKind
    identity: str

    @classmethod
    def system(cls) -> "Actor":
        # Payment Gate automatico (es. scadenza a tempo)
        return cls(ActorKind.payment_gate, "system")

    @classmethod
    def payment_gate(cls, reviewed_by: str) -> "Actor":
        return cls(ActorKind.payment_gate, reviewed_by)

    @classmethod
    def admin(cls, identity: str) -> "Actor":
        return cls(ActorKind.admin, identity)


_AUTO_OR_ADMIN: FrozenSet[ActorKind] = frozenset({ActorKind.payment_gate, ActorKind.admin})
_ADMIN_ONLY: FrozenSet[ActorKind] = frozenset({ActorKind.admin})

# Tabella delle transizioni legali: (da, a) -> attori ammessi
TRANSITIONS: Dict[Tuple[DeviceStatus, DeviceStatus], FrozenSet[ActorKind]] = {
    (DeviceStatus.pending, DeviceStatus.active): _AUTO_OR_ADMIN,
    (DeviceStatus.pending, DeviceStatus.blocked): _ADMIN_ONLY,
    (DeviceStatus.active, DeviceStatus.blocked): _ADMIN_ONLY,
    (DeviceStatus.active, DeviceStatus.expired): _AUTO_OR_ADMIN,
    (DeviceStatus.blocked, DeviceStatus.pending): _ADMIN_ONLY,
    (DeviceStatus.expired, DeviceStatus.pending): _ADMIN_ONLY,
}


def is_allowed(current: DeviceStatus, target: DeviceStatus, actor: Actor) -> bool:
    allowed = TRANSITIONS.get((current, target))
    return bool(allowed) and actor.kind in allowed


# =========================
#  LOOKUP / REGISTRATION
# =========================
def get_device(db: Session, hwid: str) -> Optional[Device]:
    # populate_existing: lo stato va sempre riletto dal DB, mai dall'identity map
    with store_errors(db):
        stmt = (
            select(Device)
            .where(Device.hwid == hwid)
            .execution_options(populate_existing=True)
        )
        return db.execute(stmt).scalar_one_or_none()


def lookup_or_register(db: Session, hwid: str, username: str) -> Tuple[Device, bool]:
    """
    Ritorna (Device, created).

    Un solo INSERT ... ON CONFLICT (hwid) DO NOTHING: due primi contatti
    concorrenti per lo stesso hwid non possono creare righe duplicate.
    Se la riga esiste già viene restituita invariata.
    """
    now = utcnow()
    with store_errors(db):
        stmt = (
            upsert_insert(db, Device.__table__)
            .values(
                id=uuid.uuid4(),
                hwid=hwid,
                username=username,
                status=DeviceStatus.pending.value,
                payment_status=DevicePaymentStatus.unpaid.value,
                usage_count=0,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["hwid"])
        )
        result = db.execute(stmt)
        created = result.rowcount == 1
        db.commit()
        device = db.execute(
            select(Device)
            .where(Device.hwid == hwid)
            .execution_options(populate_existing=True)
        ).scalar_one()
    return device, created


# =========================
#  TRANSITIONS
# =========================
def transition(
    db: Session,
    hwid: str,
    target: DeviceStatus,
    actor: Actor,
    *,
    payment: Optional[Any] = None,
    license_days: int = 0,
    audit: Optional[AuditSink] = None,
    commit: bool = True,
) -> Device:
    """
    Applica una transizione della tabella TRANSITIONS.

    La scrittura è un UPDATE condizionato sullo stato di partenza
    (compare-and-set): se un'altra richiesta ha cambiato lo stato nel
    frattempo, la transizione fallisce con IllegalTransition.

    Con commit=False la transazione resta aperta (il Payment Gate la chiude
    insieme all'aggiornamento del pagamento) e l'audit della transizione
    riuscita spetta al chiamante. I rifiuti finiscono sempre nell'audit.
    """
    target = DeviceStatus(target)
    if not actor.identity:
        _reject(audit, hwid, None, target, actor, "approved_by is required")

    device = get_device(db, hwid)
    if device is None:
        raise NotFound("Device not found")

    current = DeviceStatus(device.status)
    if not is_allowed(current, target, actor):
        _reject(audit, hwid, current, target, actor,
                f"Transition {current.value} -> {target.value} not allowed")

    now = utcnow()
    values: Dict[str, Any] = {
        "status": target.value,
        "approved_at": now,
        "approved_by": actor.identity,
        "updated_at": now,
    }

    if target == DeviceStatus.active:
        if actor.kind == ActorKind.payment_gate:
            # attivazione automatica solo con un pagamento verificato
            if payment is None:
                _reject(audit, hwid, current, target, actor,
                        "Automatic activation requires a verified payment")
            values["payment_status"] = DevicePaymentStatus.paid.value
            values["payment_id"] = payment.id
            values["approval_source"] = ApprovalSource.payment.value
        else:
            values["approval_source"] = ApprovalSource.admin_override.value
        values["expires_at"] = compute_expiry(now, license_days)
    elif target == DeviceStatus.pending:
        # reintegro manuale: la vecchia approvazione non vale più
        values["approval_source"] = None
        values["expires_at"] = None

    with store_errors(db):
        stmt = (
            update(Device)
            .where(Device.hwid == hwid, Device.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        if result.rowcount != 1:
            db.rollback()
            _reject(audit, hwid, current, target, actor, "Device state changed concurrently")
        if commit:
            db.commit()
        db.refresh(device)

    if audit is not None and commit:
        audit.append(transition_entry(device, current, actor))
    return device


def _reject(
    audit: Optional[AuditSink],
    hwid: str,
    current: Optional[DeviceStatus],
    target: DeviceStatus,
    actor: Actor,
    reason: str,
) -> NoReturn:
    if audit is not None:
        audit.append(AuditEntry(
            event_type="transition_rejected",
            level="warning",
            device_hwid=hwid,
            actor=actor.identity or None,
            message=reason,
            details={
                "from": current.value if current is not None else None,
                "to": target.value,
                "actor_kind": actor.kind.value,
            },
        ))
    raise IllegalTransition(reason)


def transition_entry(device: Device, previous: DeviceStatus, actor: Actor) -> AuditEntry:
    return AuditEntry(
        event_type="device_transition",
        device_hwid=device.hwid,
        actor=actor.identity,
        details={
            "from": previous.value,
            "to": device.status,
            "actor_kind": actor.kind.value,
            "approval_source": device.approval_source,
        },
    )


def touch_usage(db: Session, device: Device) -> None:
    """Aggiorna contatori d'uso con un solo UPDATE atomico."""
    with store_errors(db):
        db.execute(
            update(Device)
            .where(Device.id == device.id)
            .values(usage_count=Device.usage_count + 1, last_used=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()


# =========================
#  ADMIN HELPERS
# =========================
def serialize_device(device: Device) -> Dict[str, Any]:
    return {
        "id": str(device.id),
        "hwid": device.hwid,
        "username": device.username,
        "status": device.status,
        "payment_status": device.payment_status,
        "payment_id": str(device.payment_id) if device.payment_id else None,
        "approved_at": device.approved_at,
        "approved_by": device.approved_by,
        "approval_source": device.approval_source,
        "expires_at": device.expires_at,
        "last_used": device.last_used,
        "usage_count": device.usage_count,
        "created_at": device.created_at,
    }


def list_devices(
    db: Session,
    status: Optional[DeviceStatus] = None,
    q: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    """
    Elenco device per pannello admin con filtri e paginazione.
    """
    filters = []
    if status is not None:
        filters.append(Device.status == DeviceStatus(status).value)
    if q:
        like = f"%{q}%"
        filters.append(or_(Device.username.ilike(like), Device.hwid.ilike(like)))

    count_stmt = select(func.count()).select_from(Device)
    page_stmt = select(Device)
    if filters:
        count_stmt = count_stmt.where(*filters)
        page_stmt = page_stmt.where(*filters)

    with store_errors(db):
        total = db.execute(count_stmt).scalar() or 0
        page_stmt = page_stmt.order_by(Device.created_at.desc()).limit(limit).offset(offset)
        items: List[Device] = db.execute(page_stmt).scalars().all()

    return {
        "total": total,
        "items": [serialize_device(x) for x in items],
    }


def count_by_status(db: Session) -> Dict[str, Any]:
    """Conteggi per il riepilogo admin: totale, per stato, utenti distinti."""
    with store_errors(db):
        rows = db.execute(
            select(Device.status, func.count()).group_by(Device.status)
        ).all()
        users = db.execute(select(func.count(func.distinct(Device.username)))).scalar() or 0

    by_status = {s.value: 0 for s in DeviceStatus}
    by_status.update({status: count for (status, count) in rows})
    return {"total": sum(by_status.values()), "by_status": by_status, "users": users}
