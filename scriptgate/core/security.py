# scriptgate/core/security.py
# Admin Session Guard: il token admin è emesso altrove, qui viene solo verificato.
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from jose import jwt

from scriptgate.core.errors import Unauthorized

logger = logging.getLogger("scriptgate.security")

ADMIN_ROLE = "admin"


class TokenVerifier(Protocol):
    """Collaboratore esterno: verifica firma/scadenza e ritorna le claim."""

    def verify(self, token: str) -> Dict[str, Any]:
        ...


class JoseTokenVerifier:
    """Verifica JWT firmati (HS256 di default) tramite python-jose."""

    def __init__(self, secret: str, algorithms: Optional[List[str]] = None):
        self.secret = secret
        self.algorithms = algorithms or ["HS256"]

    def verify(self, token: str) -> Dict[str, Any]:
        # jwt.decode controlla anche "exp" se presente
        return jwt.decode(token, self.secret, algorithms=self.algorithms)


@dataclass(frozen=True)
class AdminIdentity:
    subject: str
    claims: Dict[str, Any]

    @property
    def actor_id(self) -> str:
        """Identità registrata in approved_by / created_by."""
        return f"admin:{self.subject}"


def require_admin(token: Optional[str], verifier: TokenVerifier) -> AdminIdentity:
    """
    Ritorna l'identità admin oppure solleva Unauthorized.

    Qualsiasi eccezione del verificatore viene mappata su Unauthorized con
    lo stesso messaggio del ruolo errato: il chiamante non deve poter
    distinguere "token malformato" da "ruolo sbagliato".
    """
    if not token:
        raise Unauthorized()

    try:
        claims = verifier.verify(token)
    except Exception as e:
        logger.info("admin token rejected: %s", type(e).__name__)
        raise Unauthorized() from None

    if not isinstance(claims, dict) or claims.get("role") != ADMIN_ROLE:
        raise Unauthorized()

    subject = claims.get("sub") or claims.get("username") or "unknown"
    return AdminIdentity(subject=str(subject), claims=claims)
