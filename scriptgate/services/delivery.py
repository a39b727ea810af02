# scriptgate/services/delivery.py
# Delivery Orchestrator:
#   START -> Credential Gate -> [reject] | Device lookup
#         -> pending: WAIT | blocked/expired: DENIED | active: render -> SCRIPT
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from scriptgate.core.config import Settings
from scriptgate.core.utils import sha256_hex, utcnow
from scriptgate.crud import device_crud, script_crud
from scriptgate.models.device import DeviceStatus
from scriptgate.schemas.delivery import DeliveryIn, LoaderIn
from scriptgate.services import payment_gate
from scriptgate.services.audit import AuditEntry, AuditSink
from scriptgate.services.credentials import authorize

logger = logging.getLogger("scriptgate.delivery")

WAIT_MESSAGE = "Your device is awaiting approval. Please try again later."
DENIED_MESSAGE = "Access denied for this device."


class OutcomeKind(str, enum.Enum):
    script = "script"
    wait = "wait"
    denied = "denied"


@dataclass(frozen=True)
class DeliveryOutcome:
    kind: OutcomeKind
    message: Optional[str] = None
    body: Optional[bytes] = None
    checksum: Optional[str] = None
    version: Optional[str] = None
    filename: Optional[str] = None

    @classmethod
    def wait(cls) -> "DeliveryOutcome":
        # Nessun motivo e nessun payment_status: il chiamante non è autenticato
        return cls(OutcomeKind.wait, message=WAIT_MESSAGE)

    @classmethod
    def denied(cls) -> "DeliveryOutcome":
        return cls(OutcomeKind.denied, message=DENIED_MESSAGE)


def _timestamp() -> str:
    return utcnow().replace(microsecond=0).isoformat() + "Z"


def _render_script(db: Session, username: str) -> DeliveryOutcome:
    active = script_crud.active_version(db)
    personalization = {"USERNAME": username, "TIMESTAMP": _timestamp()}

    if active is None:
        # Catalogo vuoto: script minimo, checksum calcolato sui byte serviti
        personalization["VERSION"] = "0.0.0"
        body = script_crud.render_placeholder(personalization)
        checksum, version = sha256_hex(body.decode("utf-8")), "0.0.0"
    else:
        personalization["VERSION"] = active.version
        body = script_crud.render(active, personalization)
        checksum, version = active.checksum, active.version

    return DeliveryOutcome(
        OutcomeKind.script,
        body=body,
        checksum=checksum,
        version=version,
        filename=f"script-{username}.user.js",
    )


def deliver(
    db: Session,
    request: DeliveryIn,
    *,
    settings: Settings,
    audit: AuditSink,
    origin: Optional[str] = None,
) -> DeliveryOutcome:
    """
    Una richiesta di delivery. Le credenziali errate sollevano (Unauthorized /
    InvalidInput); gli esiti di dominio sono sempre un DeliveryOutcome.
    """
    creds = authorize(
        request.secret,
        request.username,
        request.fingerprint,
        expected_secret=settings.SITE_SECRET,
        audit=audit,
        origin=origin,
    )

    device, created = device_crud.lookup_or_register(db, creds.hwid, creds.username)
    if created:
        logger.info("nuovo device registrato per %s", creds.username)
        audit.append(AuditEntry(
            event_type="device_registered",
            device_hwid=device.hwid,
            actor=creds.username,
            origin=origin,
        ))

    if device.username != creds.username:
        # HWID già legato a un altro utente: nessun dettaglio al client
        audit.append(AuditEntry(
            event_type="delivery_denied",
            level="warn",
            device_hwid=device.hwid,
            actor=creds.username,
            origin=origin,
            details={"reason": "username_mismatch"},
        ))
        return DeliveryOutcome.denied()

    device = payment_gate.expire_if_due(db, device, audit=audit)
    status = DeviceStatus(device.status)

    if status == DeviceStatus.pending:
        return DeliveryOutcome.wait()

    if status in (DeviceStatus.blocked, DeviceStatus.expired):
        audit.append(AuditEntry(
            event_type="delivery_denied",
            device_hwid=device.hwid,
            actor=creds.username,
            origin=origin,
            details={"reason": status.value},
        ))
        return DeliveryOutcome.denied()

    outcome = _render_script(db, creds.username)
    device_crud.touch_usage(db, device)
    audit.append(AuditEntry(
        event_type="script_delivered",
        device_hwid=device.hwid,
        actor=creds.username,
        origin=origin,
        details={"version": outcome.version, "checksum": outcome.checksum},
    ))
    return outcome


def loader(
    request: LoaderIn,
    *,
    settings: Settings,
    audit: AuditSink,
    api_base: str,
    origin: Optional[str] = None,
) -> DeliveryOutcome:
    """Loader generico: secret + username, nessuna fingerprint e nessun accesso allo store."""
    creds = authorize(
        request.secret,
        request.username,
        None,
        expected_secret=settings.SITE_SECRET,
        audit=audit,
        origin=origin,
        require_fingerprint=False,
    )
    body = script_crud.render_loader(
        creds.username,
        api_base=api_base,
        version=settings.LOADER_VERSION,
        timestamp=_timestamp(),
    )
    return DeliveryOutcome(
        OutcomeKind.script,
        body=body,
        checksum=sha256_hex(body.decode("utf-8")),
        version=settings.LOADER_VERSION,
        filename=f"loader-{creds.username}.user.js",
    )
