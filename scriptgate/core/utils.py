import hashlib
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

# ------------------------------------------------------------
# Time helpers
# ------------------------------------------------------------

def utcnow() -> datetime:
    """Restituisce l'orario UTC corrente (naive, coerente con le colonne DB)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def compute_expiry(start: datetime, days: int) -> Optional[datetime]:
    """Scadenza licenza; None se la durata è 0 (licenza a vita)."""
    if days <= 0:
        return None
    return start + timedelta(days=days)

# ------------------------------------------------------------
# Digest / HWID
# ------------------------------------------------------------

HWID_MAX_LENGTH = 400

def sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()

def normalize_hwid(hwid: str) -> str:
    """
    Le fingerprint troppo lunghe vengono sostituite dal loro SHA-256,
    così la colonna unique resta limitata e la chiave rimane stabile.
    """
    hwid = (hwid or "").strip()
    if len(hwid) > HWID_MAX_LENGTH:
        return sha256_hex(hwid)
    return hwid

# ------------------------------------------------------------
# Userscript header
# ------------------------------------------------------------

_VERSION_RE = re.compile(r"@version\s+(.+)", re.IGNORECASE)

def extract_version(payload: str) -> Optional[str]:
    """Estrae la versione dall'header userscript (// @version 1.2.3)."""
    match = _VERSION_RE.search(payload or "")
    return match.group(1).strip() if match else None
