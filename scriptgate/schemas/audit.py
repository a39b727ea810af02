from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel


class AuditEventOut(BaseModel):
    id: UUID
    created_at: datetime
    event_type: str
    level: str
    device_hwid: Optional[str] = None
    actor: Optional[str] = None
    origin: Optional[str] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    # Pydantic v2
    model_config = {"from_attributes": True}


class AuditEventsOut(BaseModel):
    items: List[AuditEventOut]
    limit: int
    offset: int
