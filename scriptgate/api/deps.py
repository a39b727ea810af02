# scriptgate/api/deps.py
from __future__ import annotations

from typing import Iterator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from scriptgate.core.config import Settings
from scriptgate.core.errors import Unauthorized
from scriptgate.core.security import AdminIdentity, TokenVerifier, require_admin
from scriptgate.services.audit import AuditEntry, AuditSink
from scriptgate.services.notify import Notifier


# ==========================================================
#  COLLABORATORI (risolti in create_app, letti da app.state)
# ==========================================================
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    """Una sessione per richiesta, chiusa sempre a fine richiesta."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_audit(request: Request) -> AuditSink:
    return request.app.state.audit


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


def client_origin(request: Request) -> Optional[str]:
    """Origine di rete per l'audit (primo hop di X-Forwarded-For se presente)."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:128]
    return request.client.host if request.client else None


# ==========================================================
#  CONTROLLO ADMIN (bearer token verificato)
# ==========================================================
# Il token può arrivare nel body (campo "token") oppure come header:
#   Authorization: Bearer <token>
# ==========================================================
def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def resolve_admin(
    body_token: Optional[str],
    header_token: Optional[str],
    verifier: TokenVerifier,
    audit: Optional[AuditSink] = None,
    origin: Optional[str] = None,
) -> AdminIdentity:
    """
    Verifica il token admin. Ogni rifiuto va nell'audit senza dettagli sul
    motivo (token mancante, firma, ruolo: per il chiamante sono identici).
    """
    try:
        return require_admin(body_token or header_token, verifier)
    except Unauthorized:
        if audit is not None:
            audit.append(AuditEntry(
                event_type="admin_unauthorized",
                level="warning",
                origin=origin,
            ))
        raise


def get_current_admin(
    token: Optional[str] = Depends(bearer_token),
    verifier: TokenVerifier = Depends(get_token_verifier),
    audit: AuditSink = Depends(get_audit),
    origin: Optional[str] = Depends(client_origin),
) -> AdminIdentity:
    """Per le rotte admin senza body (GET): solo header Authorization."""
    return resolve_admin(None, token, verifier, audit, origin)
