# scriptgate/models/device.py
import enum
import uuid

from sqlalchemy import Column, String, Integer, DateTime, Text, Uuid, Index

from scriptgate.core.utils import utcnow
from scriptgate.db.base import Base


class DeviceStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    blocked = "blocked"
    expired = "expired"


class DevicePaymentStatus(str, enum.Enum):
    unpaid = "unpaid"
    pending_verification = "pending_verification"
    paid = "paid"


class ApprovalSource(str, enum.Enum):
    # attivazione coperta da un pagamento verificato
    payment = "payment"
    # attivazione manuale admin senza pagamento
    admin_override = "admin_override"


class Device(Base):
    __tablename__ = "devices"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Fingerprint normalizzata (SHA-256 se > 400 caratteri): chiave della licenza
    hwid = Column(String(400), unique=True, nullable=False)
    username = Column(String(50), nullable=False, index=True)

    # Colonne TEXT (non Enum DB) ma coerenti con gli Enum applicativi
    status = Column(Text, nullable=False, default=DeviceStatus.pending.value)
    payment_status = Column(Text, nullable=False, default=DevicePaymentStatus.unpaid.value)

    # Riferimento (senza FK hard) al pagamento che ha cambiato lo stato per ultimo
    payment_id = Column(Uuid, nullable=True)

    approved_at = Column(DateTime(timezone=False), nullable=True)
    approved_by = Column(String(128), nullable=True)
    approval_source = Column(Text, nullable=True)

    expires_at = Column(DateTime(timezone=False), nullable=True)
    last_used = Column(DateTime(timezone=False), nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_devices_status", "status"),
    )

    @property
    def is_expired(self) -> bool:
        """True se la licenza ha una scadenza ed è già passata."""
        return self.expires_at is not None and self.expires_at <= utcnow()
