# scriptgate/core/errors.py
from __future__ import annotations

from typing import Optional


# ------------------------------------------------------------
# Tassonomia errori applicativi
# ------------------------------------------------------------
# Ogni errore porta un codice stabile (usato nei log di audit) e lo
# status HTTP-equivalente. Il `message` è l'unico testo che arriva al client.

class ServiceError(Exception):
    code = "service_error"
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(ServiceError):
    code = "invalid_input"
    status_code = 400
    default_message = "Invalid input"


class InvalidUsername(InvalidInput):
    code = "invalid_username"
    default_message = "Invalid username format"


class MissingFingerprint(InvalidInput):
    code = "missing_fingerprint"
    default_message = "Device fingerprint is required"


class Unauthorized(ServiceError):
    # Mai distinguere il motivo (token malformato, ruolo errato, secret errato)
    code = "unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class InvalidSecret(Unauthorized):
    code = "invalid_secret"


class IllegalTransition(ServiceError):
    code = "illegal_transition"
    status_code = 409
    default_message = "Operation not allowed in the current state"


class DuplicatePayment(ServiceError):
    code = "duplicate_payment"
    status_code = 409
    default_message = "A payment is already awaiting verification for this device"


class ConcurrentUpdate(ServiceError):
    # Due scritture hanno violato un vincolo di unicità in parallelo: riprovare
    code = "concurrent_update"
    status_code = 409
    default_message = "Concurrent update detected, please retry"


class NotFound(ServiceError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class StoreUnavailable(ServiceError):
    # Retryable dal chiamante: mai interpretato come "risorsa assente"
    code = "store_unavailable"
    status_code = 503
    default_message = "Service temporarily unavailable"
