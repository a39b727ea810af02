from typing import Optional

from pydantic import BaseModel, Field

# ------------------------------------------------------------
# Delivery / Loader (client userscript)
# ------------------------------------------------------------
# Campi opzionali: la validazione vera la fa il Credential Gate, così ogni
# rifiuto passa dal log di audit invece di diventare un 422 generico.


class DeliveryIn(BaseModel):
    username: Optional[str] = None
    fingerprint: Optional[str] = None
    secret: Optional[str] = None


class LoaderIn(BaseModel):
    username: Optional[str] = None
    secret: Optional[str] = None


class DeliveryWaitOut(BaseModel):
    success: bool = False
    wait: bool = True
    status: str = "pending"
    message: str


class DeliveryDeniedOut(BaseModel):
    success: bool = False
    message: str = Field(..., description="Messaggio generico, senza motivo")
