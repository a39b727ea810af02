# scriptgate/crud/payment_crud.py
from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from scriptgate.db.session import store_errors
from scriptgate.models.payment import Payment, PaymentStatus


def get_payment(db: Session, payment_id: uuid.UUID) -> Optional[Payment]:
    with store_errors(db):
        stmt = (
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        return db.execute(stmt).scalar_one_or_none()


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    return {
        "id": str(payment.id),
        "username": payment.username,
        "email": payment.email,
        "amount": str(payment.amount) if payment.amount is not None else None,
        "currency": payment.currency,
        "payment_method": payment.payment_method,
        "transaction_id": payment.transaction_id,
        "payment_status": payment.payment_status,
        "device_hwid": payment.device_hwid,
        "proof_reference": payment.proof_reference,
        "notes": payment.notes,
        "reviewed_by": payment.reviewed_by,
        "reviewed_at": payment.reviewed_at,
        "created_at": payment.created_at,
    }


def list_payments(
    db: Session,
    status: Optional[PaymentStatus] = None,
    q: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    """
    Elenco pagamenti per pannello admin (coda di verifica inclusa).
    """
    filters = []
    if status is not None:
        filters.append(Payment.payment_status == PaymentStatus(status).value)
    if q:
        like = f"%{q}%"
        filters.append(or_(
            Payment.username.ilike(like),
            Payment.email.ilike(like),
            Payment.transaction_id.ilike(like),
        ))

    count_stmt = select(func.count()).select_from(Payment)
    page_stmt = select(Payment)
    if filters:
        count_stmt = count_stmt.where(*filters)
        page_stmt = page_stmt.where(*filters)

    with store_errors(db):
        total = db.execute(count_stmt).scalar() or 0
        page_stmt = page_stmt.order_by(Payment.created_at.desc()).limit(limit).offset(offset)
        items: List[Payment] = db.execute(page_stmt).scalars().all()

    return {
        "total": total,
        "items": [serialize_payment(x) for x in items],
    }


def count_by_status(db: Session) -> Dict[str, Any]:
    with store_errors(db):
        rows = db.execute(
            select(Payment.payment_status, func.count()).group_by(Payment.payment_status)
        ).all()

    by_status = {s.value: 0 for s in PaymentStatus}
    by_status.update({status: count for (status, count) in rows})
    return {"total": sum(by_status.values()), "by_status": by_status}
