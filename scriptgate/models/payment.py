# scriptgate/models/payment.py
import enum
import uuid

from sqlalchemy import Column, String, Numeric, DateTime, Text, Uuid, ForeignKey, Index, text

from scriptgate.core.utils import utcnow
from scriptgate.db.base import Base


class PaymentStatus(str, enum.Enum):
    pending_verification = "pending_verification"
    completed = "completed"
    rejected = "rejected"


class PaymentDecision(str, enum.Enum):
    approve = "approve"
    reject = "reject"


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(50), nullable=False, index=True)
    email = Column(String(254), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    payment_method = Column(String(32), nullable=False)
    transaction_id = Column(String(128), nullable=True)
    payment_status = Column(Text, nullable=False, default=PaymentStatus.pending_verification.value)

    device_hwid = Column(
        String(400),
        ForeignKey("devices.hwid", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Riferimento opaco alla prova (lo storage immagini è esterno)
    proof_reference = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    reviewed_by = Column(String(128), nullable=True)
    reviewed_at = Column(DateTime(timezone=False), nullable=True)

    created_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_payments_status", "payment_status"),
        # Un solo pagamento in verifica per device alla volta
        Index(
            "uq_payments_pending_per_device",
            "device_hwid",
            unique=True,
            postgresql_where=text("payment_status = 'pending_verification'"),
            sqlite_where=text("payment_status = 'pending_verification'"),
        ),
    )
