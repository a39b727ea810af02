from __future__ import annotations

import hmac
import hashlib
import json
import time
from typing import Dict, Any, Tuple, Optional

import httpx

DEFAULT_HEADER_SIG = "X-Webhook-Signature"
DEFAULT_HEADER_TS = "X-Webhook-Timestamp"
DEFAULT_HEADER_EVT = "X-Webhook-Event"


# ------------------------------------------------------------
# Helpers firma HMAC
# ------------------------------------------------------------
def hmac_digest(secret: str, message: bytes, algo: str = "sha256") -> str:
    """
    Calcola HMAC esadecimale con algoritmo scelto (sha256/sha512...).
    """
    algo = algo.lower()
    if not hasattr(hashlib, algo):
        raise ValueError(f"Unsupported HMAC algo: {algo}")
    return hmac.new(secret.encode("utf-8"), message, getattr(hashlib, algo)).hexdigest()


def build_signed_request(
    event_type: str,
    payload: Dict[str, Any],
    secret: Optional[str],
    timestamp: Optional[int] = None,
) -> Tuple[bytes, Dict[str, str]]:
    """
    Prepara body e header per un webhook firmato:
      - Body JSON: {"event_type": <str>, "payload": <dict>}
      - X-Webhook-Event / X-Webhook-Timestamp (anti-replay)
      - X-Webhook-Signature = HMAC(secret, "<timestamp>.<body>") se c'è un secret
    """
    body_dict = {"event_type": event_type, "payload": payload}
    body_bytes = json.dumps(
        body_dict, ensure_ascii=False, separators=(",", ":"), default=str
    ).encode("utf-8")

    ts = str(int(timestamp if timestamp is not None else time.time()))
    headers: Dict[str, str] = {
        "Content-Type": "application/json",
        DEFAULT_HEADER_EVT: event_type,
        DEFAULT_HEADER_TS: ts,
    }

    if secret:
        signed_message = f"{ts}.".encode("utf-8") + body_bytes
        headers[DEFAULT_HEADER_SIG] = hmac_digest(secret, signed_message)

    return body_bytes, headers


# ------------------------------------------------------------
# Webhook POST (singolo tentativo: niente retry dentro il core)
# ------------------------------------------------------------
def post_webhook(
    url: str,
    event_type: str,
    payload: Dict[str, Any],
    *,
    secret: Optional[str] = None,
    timeout_seconds: float = 5.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Ritorna (ok, error) dove error è None se ok=True.
    """
    body_bytes, headers = build_signed_request(event_type, payload, secret)

    try:
        with httpx.Client(timeout=httpx.Timeout(timeout_seconds), transport=transport) as client:
            resp = client.post(url, content=body_bytes, headers=headers)
    except httpx.HTTPError as e:
        return False, str(e)

    if 200 <= resp.status_code < 300:
        return True, None
    return False, f"HTTP {resp.status_code}: {resp.text[:500]}"
