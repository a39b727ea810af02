from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# ------------------------------------------------------------
# Upload / publish (admin)
# ------------------------------------------------------------
class ScriptPublishIn(BaseModel):
    token: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=160)
    payload: str = Field(..., min_length=1)
    notes: Optional[str] = None
    # Se assente: header "@version" del payload, poi 1.0.0
    version: Optional[str] = Field(None, max_length=64)
    # Se presente deve coincidere con lo SHA-256 calcolato dal server
    checksum: Optional[str] = Field(None, max_length=64)


class ScriptSummary(BaseModel):
    id: str
    name: str
    version: str
    size: int
    checksum: str


class ScriptPublishOut(BaseModel):
    success: bool = True
    script: ScriptSummary



# ------------------------------------------------------------
# Metadati pubblici della versione attiva (niente payload)
# ------------------------------------------------------------
class ScriptMetadata(BaseModel):
    id: str
    name: str
    version: str
    update_notes: Optional[str] = None
    size: int
    checksum: str
    created_at: datetime
    updated_at: datetime


class ScriptMetadataOut(BaseModel):
    success: bool = True
    script: ScriptMetadata
