# scriptgate/api/routes.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from scriptgate.api.deps import client_origin, get_audit, get_db, get_notifier, get_settings
from scriptgate.core.config import Settings
from scriptgate.core.errors import NotFound
from scriptgate.crud import script_crud
from scriptgate.schemas.delivery import DeliveryDeniedOut, DeliveryIn, DeliveryWaitOut, LoaderIn
from scriptgate.schemas.payment import PaymentProofIn, PaymentProofOut
from scriptgate.schemas.script import ScriptMetadata, ScriptMetadataOut
from scriptgate.services import delivery, payment_gate
from scriptgate.services.audit import AuditSink
from scriptgate.services.delivery import DeliveryOutcome, OutcomeKind
from scriptgate.services.notify import Notifier

router = APIRouter(prefix="/api", tags=["delivery"])


def _script_response(outcome: DeliveryOutcome) -> Response:
    return Response(
        content=outcome.body,
        media_type="application/javascript",
        headers={
            "Content-Disposition": f'attachment; filename="{outcome.filename}"',
            "X-Script-Version": outcome.version or "",
            "X-Script-Checksum": outcome.checksum or "",
            "Cache-Control": "no-store",
        },
    )


# =====================================================================
# DELIVERY SCRIPT (client → userscript)
# =====================================================================
@router.post(
    "/delivery",
    summary="Consegna lo script attivo a un device approvato",
    responses={
        200: {"content": {"application/javascript": {}}, "model": DeliveryWaitOut},
        403: {"model": DeliveryDeniedOut},
    },
)
def delivery_endpoint(
    payload: DeliveryIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    audit: AuditSink = Depends(get_audit),
    origin: Optional[str] = Depends(client_origin),
):
    outcome = delivery.deliver(db, payload, settings=settings, audit=audit, origin=origin)

    if outcome.kind == OutcomeKind.wait:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content=DeliveryWaitOut(message=outcome.message).model_dump(),
        )
    if outcome.kind == OutcomeKind.denied:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content=DeliveryDeniedOut(message=outcome.message).model_dump(),
        )
    return _script_response(outcome)


# =====================================================================
# LOADER GENERICO
# =====================================================================
@router.post("/loader", summary="Loader userscript personalizzato per utente")
def loader_endpoint(
    payload: LoaderIn,
    request: Request,
    settings: Settings = Depends(get_settings),
    audit: AuditSink = Depends(get_audit),
    origin: Optional[str] = Depends(client_origin),
):
    outcome = delivery.loader(
        payload,
        settings=settings,
        audit=audit,
        api_base=str(request.base_url),
        origin=origin,
    )
    return _script_response(outcome)


# =====================================================================
# PROVA DI PAGAMENTO (non concede accesso)
# =====================================================================
@router.post("/payments/proof", response_model=PaymentProofOut, summary="Invia una prova di pagamento")
def payment_proof_endpoint(
    payload: PaymentProofIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    audit: AuditSink = Depends(get_audit),
    notifier: Notifier = Depends(get_notifier),
):
    fields = payment_gate.ProofFields(
        username=payload.username,
        email=payload.email,
        payment_method=payload.payment_method,
        transaction_id=payload.transaction_id,
        proof_reference=payload.proof,
        amount=payload.amount,
        currency=payload.currency,
        notes=payload.notes,
    )
    payment = payment_gate.record_proof(
        db,
        payload.device_hwid,
        fields,
        default_amount=settings.LICENSE_PRICE,
        default_currency=settings.LICENSE_CURRENCY,
        notifier=notifier,
        audit=audit,
    )
    return PaymentProofOut(paymentId=str(payment.id), status=payment.payment_status)


# =====================================================================
# METADATI SCRIPT ATTIVO (pubblico, per l'auto-verifica del checksum)
# =====================================================================
@router.get("/scripts/active", response_model=ScriptMetadataOut, summary="Metadati della versione attiva")
def active_script_metadata(db: Session = Depends(get_db)):
    script = script_crud.active_version(db)
    if script is None:
        raise NotFound("No active script found")
    return ScriptMetadataOut(script=ScriptMetadata(
        id=str(script.id),
        name=script.name,
        version=script.version,
        update_notes=script.update_notes,
        size=script.file_size,
        checksum=script.checksum,
        created_at=script.created_at,
        updated_at=script.updated_at,
    ))
