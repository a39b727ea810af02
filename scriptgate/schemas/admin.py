from __future__ import annotations

from typing import Annotated, Dict, Literal, Optional, Type, Union
from uuid import UUID

from pydantic import BaseModel, Field

from scriptgate.models.device import DeviceStatus
from scriptgate.models.payment import PaymentStatus


# -------------------------------------------------------------
#  Comandi admin: unione chiusa, discriminata dal campo "action"
# -------------------------------------------------------------
class _Paged(BaseModel):
    q: Optional[str] = Field(None, max_length=128)
    limit: int = Field(50, ge=1, le=200)
    offset: int = Field(0, ge=0)


class _DeviceRef(BaseModel):
    hwid: str = Field(..., min_length=1)


class _ScriptRef(BaseModel):
    script_id: UUID


# ===== DEVICES =====
class ListDevices(_Paged):
    action: Literal["list_devices"]
    status: Optional[DeviceStatus] = None


class GetDevice(_DeviceRef):
    action: Literal["get_device"]


class ApproveDevice(_DeviceRef):
    action: Literal["approve_device"]


class BlockDevice(_DeviceRef):
    action: Literal["block_device"]


class ReinstateDevice(_DeviceRef):
    action: Literal["reinstate_device"]


class ExpireDevice(_DeviceRef):
    action: Literal["expire_device"]


# ===== SCRIPTS =====
class ListScripts(BaseModel):
    action: Literal["list_scripts"]


class GetScript(_ScriptRef):
    action: Literal["get_script"]
    include_payload: bool = False


class ScriptHistory(BaseModel):
    action: Literal["script_history"]
    name: str = Field(..., min_length=1, max_length=160)


class ActivateScript(_ScriptRef):
    action: Literal["activate_script"]


class DeactivateScript(_ScriptRef):
    action: Literal["deactivate_script"]


class RollbackScript(BaseModel):
    action: Literal["rollback_script"]
    revision_id: UUID


# ===== PAYMENTS =====
class ListPayments(_Paged):
    action: Literal["list_payments"]
    status: Optional[PaymentStatus] = None


# ===== RIEPILOGO =====
class Stats(BaseModel):
    action: Literal["stats"]


AdminCommand = Annotated[
    Union[
        ListDevices,
        GetDevice,
        ApproveDevice,
        BlockDevice,
        ReinstateDevice,
        ExpireDevice,
        ListScripts,
        GetScript,
        ScriptHistory,
        ActivateScript,
        DeactivateScript,
        RollbackScript,
        ListPayments,
        Stats,
    ],
    Field(discriminator="action"),
]


# -------------------------------------------------------------
#  Registry: action → schema corrispondente
# -------------------------------------------------------------
COMMAND_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "list_devices": ListDevices,
    "get_device": GetDevice,
    "approve_device": ApproveDevice,
    "block_device": BlockDevice,
    "reinstate_device": ReinstateDevice,
    "expire_device": ExpireDevice,
    "list_scripts": ListScripts,
    "get_script": GetScript,
    "script_history": ScriptHistory,
    "activate_script": ActivateScript,
    "deactivate_script": DeactivateScript,
    "rollback_script": RollbackScript,
    "list_payments": ListPayments,
    "stats": Stats,
}


class AdminCommandIn(BaseModel):
    token: Optional[str] = None
    command: AdminCommand
