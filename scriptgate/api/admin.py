# scriptgate/api/admin.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from scriptgate.api.deps import (
    bearer_token,
    client_origin,
    get_audit,
    get_current_admin,
    get_db,
    get_notifier,
    get_settings,
    get_token_verifier,
    resolve_admin,
)
from scriptgate.core.config import Settings
from scriptgate.core.security import AdminIdentity, TokenVerifier
from scriptgate.crud import device_crud, script_crud
from scriptgate.db.session import store_errors
from scriptgate.schemas.admin import AdminCommandIn
from scriptgate.schemas.audit import AuditEventOut, AuditEventsOut
from scriptgate.schemas.payment import ReconcileIn
from scriptgate.schemas.script import ScriptPublishIn, ScriptPublishOut, ScriptSummary
from scriptgate.services import admin_commands, payment_gate
from scriptgate.services.audit import AuditSink, query_events
from scriptgate.services.notify import Notifier

# ✅ Tutte le rotte admin richiedono un token con role=admin
router = APIRouter(prefix="/api/admin", tags=["admin"])


# ===== PUBLISH SCRIPT =====
@router.post("/scripts", response_model=ScriptPublishOut, summary="Pubblica una versione dello script (admin)")
def admin_publish_script(
    payload: ScriptPublishIn,
    db: Session = Depends(get_db),
    header_token: Optional[str] = Depends(bearer_token),
    verifier: TokenVerifier = Depends(get_token_verifier),
    audit: AuditSink = Depends(get_audit),
    origin: Optional[str] = Depends(client_origin),
):
    """
    Carica (o ricarica con lo stesso nome) uno script e lo rende l'unico attivo.
    """
    admin = resolve_admin(payload.token, header_token, verifier, audit, origin)
    script = script_crud.publish(
        db,
        payload.name,
        payload.payload,
        payload.notes,
        admin.actor_id,
        version=payload.version,
        checksum=payload.checksum,
        audit=audit,
    )
    return ScriptPublishOut(script=ScriptSummary(
        id=str(script.id),
        name=script.name,
        version=script.version,
        size=script.file_size,
        checksum=script.checksum,
    ))


# ===== RECONCILE PAYMENT =====
@router.post("/payments/reconcile", summary="Approva o rifiuta un pagamento (admin)")
def admin_reconcile_payment(
    payload: ReconcileIn,
    db: Session = Depends(get_db),
    header_token: Optional[str] = Depends(bearer_token),
    verifier: TokenVerifier = Depends(get_token_verifier),
    settings: Settings = Depends(get_settings),
    audit: AuditSink = Depends(get_audit),
    origin: Optional[str] = Depends(client_origin),
    notifier: Notifier = Depends(get_notifier),
):
    admin = resolve_admin(payload.token, header_token, verifier, audit, origin)
    device = payment_gate.reconcile(
        db,
        payload.payment_id,
        payload.decision,
        admin.actor_id,
        license_days=settings.LICENSE_DURATION_DAYS,
        notifier=notifier,
        audit=audit,
    )
    return {"success": True, "device": device_crud.serialize_device(device)}


# ===== COMMANDS =====
@router.post("/commands", summary="Esegue un comando admin tipizzato")
def admin_command(
    payload: AdminCommandIn,
    db: Session = Depends(get_db),
    header_token: Optional[str] = Depends(bearer_token),
    verifier: TokenVerifier = Depends(get_token_verifier),
    settings: Settings = Depends(get_settings),
    audit: AuditSink = Depends(get_audit),
    origin: Optional[str] = Depends(client_origin),
):
    """
    Un solo endpoint, un comando per richiesta: il campo "action" seleziona
    la variante (list_devices, approve_device, activate_script, ...).
    """
    admin = resolve_admin(payload.token, header_token, verifier, audit, origin)
    ctx = admin_commands.AdminContext(db=db, admin=admin, settings=settings, audit=audit)
    return admin_commands.execute(payload.command, ctx)


# ===== AUDIT LOG =====
@router.get("/audit", response_model=AuditEventsOut, summary="Consulta il log di audit")
def admin_audit(
    db: Session = Depends(get_db),
    _admin: AdminIdentity = Depends(get_current_admin),
    event_type: Optional[str] = Query(None, description="Filtra per tipo evento"),
    device_hwid: Optional[str] = Query(None, description="Filtra per device"),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """
    Elenco eventi di audit con filtri e paginazione.
    """
    with store_errors(db):
        rows = query_events(
            db,
            event_type=event_type,
            device_hwid=device_hwid,
            since=since,
            until=until,
            limit=limit,
            offset=offset,
        )
        items = [AuditEventOut.model_validate(r) for r in rows]
    return AuditEventsOut(items=items, limit=limit, offset=offset)
