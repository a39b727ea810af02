from __future__ import annotations

import hmac
import re
from dataclasses import dataclass
from typing import Optional

from scriptgate.core.errors import (
    InvalidSecret,
    InvalidUsername,
    MissingFingerprint,
    ServiceError,
)
from scriptgate.core.utils import normalize_hwid
from scriptgate.services.audit import AuditEntry, AuditSink

USERNAME_RE = re.compile(r"^[A-Za-z0-9_-]{1,50}$")


@dataclass(frozen=True)
class Credentials:
    username: str
    # HWID già normalizzato (None per il loader, che non richiede fingerprint)
    hwid: Optional[str]


def _secret_matches(supplied: Optional[str], expected: str) -> bool:
    # Un secret non configurato non autorizza nessuno
    if not expected:
        return False
    return hmac.compare_digest((supplied or "").encode("utf-8"), expected.encode("utf-8"))


def authorize(
    secret: Optional[str],
    username: Optional[str],
    fingerprint: Optional[str],
    *,
    expected_secret: str,
    audit: AuditSink,
    origin: Optional[str] = None,
    require_fingerprint: bool = True,
) -> Credentials:
    """
    Controlli economici e senza stato, eseguiti prima di qualsiasi accesso allo store.

    Ogni rifiuto va nel log di audit con l'origine di rete; il successo non
    viene loggato qui (lo fa l'orchestratore quando conosce lo stato device).
    """
    try:
        if not _secret_matches(secret, expected_secret):
            raise InvalidSecret()
        if not username or not USERNAME_RE.match(username):
            raise InvalidUsername()
        hwid = normalize_hwid(fingerprint or "")
        if require_fingerprint and not hwid:
            raise MissingFingerprint()
    except ServiceError as e:
        # Per il secret registriamo solo "unauthorized": nessuna traccia del valore inviato
        reason = "unauthorized" if isinstance(e, InvalidSecret) else e.code
        audit.append(AuditEntry(
            event_type="credential_rejected",
            level="warn",
            origin=origin,
            details={"reason": reason},
        ))
        raise

    return Credentials(username=username, hwid=hwid or None)
