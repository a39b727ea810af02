# scriptgate/services/payment_gate.py
# Payment Gate: prova di pagamento ≠ approvazione.
# Una prova registra solo un pagamento "pending_verification"; l'accesso
# si sblocca esclusivamente con reconcile(approve) da parte di un admin.
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scriptgate.core.errors import (
    DuplicatePayment,
    IllegalTransition,
    InvalidInput,
    NotFound,
    ServiceError,
)
from scriptgate.core.utils import normalize_hwid, utcnow
from scriptgate.crud import device_crud
from scriptgate.crud.device_crud import Actor
from scriptgate.crud.payment_crud import get_payment
from scriptgate.db.session import store_errors
from scriptgate.models.device import Device, DevicePaymentStatus, DeviceStatus
from scriptgate.models.payment import Payment, PaymentDecision, PaymentStatus
from scriptgate.services.audit import AuditEntry, AuditSink

logger = logging.getLogger("scriptgate.payments")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
# Numeric(10, 2): al massimo 8 cifre intere
MAX_AMOUNT = Decimal("100000000")


@dataclass(frozen=True)
class ProofFields:
    username: str
    email: str
    payment_method: str
    transaction_id: Optional[str] = None
    proof_reference: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    notes: Optional[str] = None


def _notify_safely(notifier: Any, event_type: str, title: str, payload: Dict[str, Any],
                   recipient: Optional[str] = None) -> None:
    # La notifica non deve mai annullare una transizione già committata
    if notifier is None:
        return
    try:
        notifier.notify(event_type, title, payload, recipient=recipient)
    except Exception as e:
        logger.warning("notifica %s fallita: %s", event_type, e)


# =========================
#  PROOF
# =========================
def record_proof(
    db: Session,
    device_hwid: str,
    fields: ProofFields,
    *,
    default_amount: Decimal,
    default_currency: str,
    notifier: Any = None,
    audit: Optional[AuditSink] = None,
) -> Payment:
    """
    Registra una prova di pagamento. Lo stato del device NON cambia:
    cambia solo payment_status (pending_verification) e payment_id.
    """
    hwid = normalize_hwid(device_hwid)
    if not hwid:
        raise InvalidInput("Device fingerprint is required")
    if not fields.email or not EMAIL_RE.match(fields.email.strip()):
        raise InvalidInput("Invalid email address")
    if not (fields.payment_method or "").strip():
        raise InvalidInput("Payment method is required")

    device = device_crud.get_device(db, hwid)
    if device is None:
        raise NotFound("Device not found")
    if device.username != fields.username:
        raise InvalidInput("Username does not match this device")
    if device.status == DeviceStatus.active.value:
        raise InvalidInput("Device is already active")
    if device.status != DeviceStatus.pending.value:
        raise InvalidInput("Device is not awaiting payment")

    amount = fields.amount if fields.amount is not None else default_amount
    if amount <= 0 or amount >= MAX_AMOUNT or amount.as_tuple().exponent < -2:
        raise InvalidInput("Invalid amount")
    currency = (fields.currency or default_currency).strip().upper()
    if not CURRENCY_RE.match(currency):
        raise InvalidInput("Invalid currency")

    now = utcnow()
    payment = Payment(
        id=uuid.uuid4(),
        username=fields.username,
        email=fields.email.strip(),
        amount=amount,
        currency=currency,
        payment_method=fields.payment_method.strip()[:32],
        transaction_id=fields.transaction_id,
        payment_status=PaymentStatus.pending_verification.value,
        device_hwid=hwid,
        proof_reference=fields.proof_reference,
        notes=fields.notes,
        created_at=now,
        updated_at=now,
    )

    try:
        with store_errors(db):
            db.add(payment)
            db.flush()
            # CAS: il device deve essere ancora pending al momento della scrittura
            result = db.execute(
                update(Device)
                .where(Device.hwid == hwid, Device.status == DeviceStatus.pending.value)
                .values(
                    payment_status=DevicePaymentStatus.pending_verification.value,
                    payment_id=payment.id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise IllegalTransition("Device is not awaiting payment")
            db.commit()
    except IntegrityError as e:
        raise DuplicatePayment() from e

    if audit is not None:
        audit.append(AuditEntry(
            event_type="payment_proof_recorded",
            device_hwid=hwid,
            actor=fields.username,
            details={
                "payment_id": str(payment.id),
                "amount": str(amount),
                "currency": payment.currency,
                "payment_method": payment.payment_method,
            },
        ))

    _notify_safely(notifier, "payment_proof_received", "New payment proof", {
        "payment_id": str(payment.id),
        "username": payment.username,
        "email": payment.email,
        "amount": str(amount),
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "transaction_id": payment.transaction_id,
        "device_hwid": hwid,
    })
    return payment


# =========================
#  RECONCILE
# =========================
def _close_payment(db: Session, payment: Payment, status: PaymentStatus, reviewer: str) -> None:
    """CAS sullo stato del pagamento: vince una sola riconciliazione."""
    now = utcnow()
    result = db.execute(
        update(Payment)
        .where(
            Payment.id == payment.id,
            Payment.payment_status == PaymentStatus.pending_verification.value,
        )
        .values(payment_status=status.value, reviewed_by=reviewer, reviewed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise IllegalTransition("Payment already reconciled")


def reconcile(
    db: Session,
    payment_id: uuid.UUID,
    decision: PaymentDecision,
    actor: str,
    *,
    license_days: int = 0,
    notifier: Any = None,
    audit: Optional[AuditSink] = None,
) -> Device:
    """
    Chiude un pagamento in verifica.

    approve → pagamento completed + device active (stessa transazione)
    reject  → pagamento rejected + device torna unpaid (status resta pending)

    La notifica all'acquirente parte solo dopo il commit ed è best-effort.
    """
    decision = PaymentDecision(decision)
    if not actor:
        raise IllegalTransition("approved_by is required")

    payment = get_payment(db, payment_id)
    if payment is None:
        raise NotFound("Payment not found")
    if payment.payment_status != PaymentStatus.pending_verification.value:
        raise IllegalTransition("Payment already reconciled")

    ledger_actor = Actor.payment_gate(actor)
    previous: Optional[DeviceStatus] = None

    if decision == PaymentDecision.approve:
        try:
            with store_errors(db):
                _close_payment(db, payment, PaymentStatus.completed, actor)
            current = device_crud.get_device(db, payment.device_hwid)
            previous = DeviceStatus(current.status) if current is not None else None
            device = device_crud.transition(
                db,
                payment.device_hwid,
                DeviceStatus.active,
                ledger_actor,
                payment=payment,
                license_days=license_days,
                audit=audit,
                commit=False,
            )
            with store_errors(db):
                db.commit()
        except ServiceError:
            # il pagamento non resta "completed" se il device non si attiva
            db.rollback()
            raise
    else:
        now = utcnow()
        with store_errors(db):
            _close_payment(db, payment, PaymentStatus.rejected, actor)
            # solo un device ancora in attesa torna unpaid; gli altri restano invariati
            db.execute(
                update(Device)
                .where(
                    Device.hwid == payment.device_hwid,
                    Device.status == DeviceStatus.pending.value,
                    Device.payment_id == payment.id,
                )
                .values(
                    payment_status=DevicePaymentStatus.unpaid.value,
                    payment_id=payment.id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        device = device_crud.get_device(db, payment.device_hwid)
        db.refresh(device)

    with store_errors(db):
        db.refresh(payment)

    if audit is not None:
        if previous is not None:
            audit.append(device_crud.transition_entry(device, previous, ledger_actor))
        audit.append(AuditEntry(
            event_type="payment_reconciled",
            device_hwid=payment.device_hwid,
            actor=actor,
            details={"payment_id": str(payment.id), "decision": decision.value},
        ))

    if decision == PaymentDecision.approve:
        event_type, title = "payment_approved", "Payment approved"
        message = "Your payment was verified and your device is now active."
    else:
        event_type, title = "payment_rejected", "Payment rejected"
        message = "Your payment could not be verified. Please contact support."
    _notify_safely(notifier, event_type, title, {
        "payment_id": str(payment.id),
        "username": payment.username,
        "device_status": device.status,
        "message": message,
    }, recipient=payment.email)
    return device


# =========================
#  EXPIRY (lazy)
# =========================
def expire_if_due(db: Session, device: Device, *, audit: Optional[AuditSink] = None) -> Device:
    """
    Scadenza a tempo valutata durante la delivery (nessun job in background).
    Se un'altra richiesta ha già fatto scadere il device, ritorna lo stato attuale.
    """
    if device.status != DeviceStatus.active.value or not device.is_expired:
        return device
    try:
        return device_crud.transition(
            db, device.hwid, DeviceStatus.expired, Actor.system(), audit=audit,
        )
    except IllegalTransition:
        refreshed = device_crud.get_device(db, device.hwid)
        return refreshed if refreshed is not None else device
