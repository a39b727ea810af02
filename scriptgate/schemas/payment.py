from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from scriptgate.models.payment import PaymentDecision


# ------------------------------------------------------------
# Prova di pagamento (pubblico)
# ------------------------------------------------------------
class PaymentProofIn(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., max_length=254)
    device_hwid: str = Field(..., min_length=1)
    payment_method: str = Field(..., min_length=1, max_length=32)
    transaction_id: Optional[str] = Field(None, max_length=128)
    # Riferimento opaco alla prova (URL/ID dello storage esterno)
    proof: Optional[str] = None
    # Numeric(10, 2) sul DB
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    currency: Optional[str] = Field(None, pattern=r"^[A-Za-z]{3}$")
    notes: Optional[str] = None


class PaymentProofOut(BaseModel):
    success: bool = True
    paymentId: str
    status: str = "pending_verification"


# ------------------------------------------------------------
# Riconciliazione (admin)
# ------------------------------------------------------------
class ReconcileIn(BaseModel):
    token: Optional[str] = None
    payment_id: UUID
    decision: PaymentDecision

