# scriptgate/services/admin_commands.py
# Un handler per ogni variante di AdminCommand (dispatch sul tipo del comando).
from __future__ import annotations

from dataclasses import dataclass
from functools import singledispatch
from typing import Any, Dict

from sqlalchemy.orm import Session

from scriptgate.core.config import Settings
from scriptgate.core.errors import InvalidInput, NotFound
from scriptgate.core.security import AdminIdentity
from scriptgate.core.utils import normalize_hwid
from scriptgate.crud import device_crud, payment_crud, script_crud
from scriptgate.crud.device_crud import Actor
from scriptgate.models.device import DeviceStatus
from scriptgate.schemas.admin import (
    COMMAND_SCHEMAS,
    ActivateScript,
    ApproveDevice,
    BlockDevice,
    DeactivateScript,
    ExpireDevice,
    GetDevice,
    GetScript,
    ListDevices,
    ListPayments,
    ListScripts,
    ReinstateDevice,
    RollbackScript,
    ScriptHistory,
    Stats,
)
from scriptgate.services.audit import AuditSink


@dataclass(frozen=True)
class AdminContext:
    db: Session
    admin: AdminIdentity
    settings: Settings
    audit: AuditSink

    @property
    def actor(self) -> Actor:
        return Actor.admin(self.admin.actor_id)


@singledispatch
def execute(command: Any, ctx: AdminContext) -> Dict[str, Any]:
    expected = ", ".join(sorted(COMMAND_SCHEMAS))
    raise InvalidInput(f"Unsupported admin command: {type(command).__name__} (expected one of: {expected})")


# =========================
#  DEVICES
# =========================
def _device_hwid(raw: str) -> str:
    hwid = normalize_hwid(raw)
    if not hwid:
        raise InvalidInput("Device fingerprint is required")
    return hwid


def _move(ctx: AdminContext, raw_hwid: str, target: DeviceStatus) -> Dict[str, Any]:
    device = device_crud.transition(
        ctx.db,
        _device_hwid(raw_hwid),
        target,
        ctx.actor,
        license_days=ctx.settings.LICENSE_DURATION_DAYS,
        audit=ctx.audit,
    )
    return {"success": True, "device": device_crud.serialize_device(device)}


@execute.register
def _list_devices(command: ListDevices, ctx: AdminContext) -> Dict[str, Any]:
    return device_crud.list_devices(
        ctx.db, status=command.status, q=command.q, limit=command.limit, offset=command.offset,
    )


@execute.register
def _get_device(command: GetDevice, ctx: AdminContext) -> Dict[str, Any]:
    device = device_crud.get_device(ctx.db, _device_hwid(command.hwid))
    if device is None:
        raise NotFound("Device not found")
    return {"success": True, "device": device_crud.serialize_device(device)}


@execute.register
def _approve_device(command: ApproveDevice, ctx: AdminContext) -> Dict[str, Any]:
    # Override manuale: approval_source = admin_override
    return _move(ctx, command.hwid, DeviceStatus.active)


@execute.register
def _block_device(command: BlockDevice, ctx: AdminContext) -> Dict[str, Any]:
    return _move(ctx, command.hwid, DeviceStatus.blocked)


@execute.register
def _reinstate_device(command: ReinstateDevice, ctx: AdminContext) -> Dict[str, Any]:
    return _move(ctx, command.hwid, DeviceStatus.pending)


@execute.register
def _expire_device(command: ExpireDevice, ctx: AdminContext) -> Dict[str, Any]:
    return _move(ctx, command.hwid, DeviceStatus.expired)


# =========================
#  SCRIPTS
# =========================
@execute.register
def _list_scripts(command: ListScripts, ctx: AdminContext) -> Dict[str, Any]:
    items = script_crud.list_versions(ctx.db)
    return {"total": len(items), "items": [script_crud.serialize_script(x) for x in items]}


@execute.register
def _get_script(command: GetScript, ctx: AdminContext) -> Dict[str, Any]:
    script = script_crud.get_version(ctx.db, command.script_id)
    return {
        "success": True,
        "script": script_crud.serialize_script(script, include_payload=command.include_payload),
    }


@execute.register
def _script_history(command: ScriptHistory, ctx: AdminContext) -> Dict[str, Any]:
    revisions = script_crud.history(ctx.db, command.name)
    return {
        "name": script_crud.normalize_name(command.name),
        "items": [script_crud.serialize_revision(x) for x in revisions],
    }


@execute.register
def _activate_script(command: ActivateScript, ctx: AdminContext) -> Dict[str, Any]:
    script = script_crud.set_active(
        ctx.db, command.script_id, True, ctx.admin.actor_id, audit=ctx.audit,
    )
    return {"success": True, "script": script_crud.serialize_script(script)}


@execute.register
def _deactivate_script(command: DeactivateScript, ctx: AdminContext) -> Dict[str, Any]:
    script = script_crud.set_active(
        ctx.db, command.script_id, False, ctx.admin.actor_id, audit=ctx.audit,
    )
    return {"success": True, "script": script_crud.serialize_script(script)}


@execute.register
def _rollback_script(command: RollbackScript, ctx: AdminContext) -> Dict[str, Any]:
    script = script_crud.rollback(
        ctx.db, command.revision_id, ctx.admin.actor_id, audit=ctx.audit,
    )
    return {"success": True, "script": script_crud.serialize_script(script)}


# =========================
#  PAYMENTS
# =========================
@execute.register
def _list_payments(command: ListPayments, ctx: AdminContext) -> Dict[str, Any]:
    return payment_crud.list_payments(
        ctx.db, status=command.status, q=command.q, limit=command.limit, offset=command.offset,
    )


# =========================
#  RIEPILOGO
# =========================
@execute.register
def _stats(command: Stats, ctx: AdminContext) -> Dict[str, Any]:
    active = script_crud.active_version(ctx.db)
    return {
        "devices": device_crud.count_by_status(ctx.db),
        "payments": payment_crud.count_by_status(ctx.db),
        "active_script": script_crud.serialize_script(active) if active is not None else None,
    }
