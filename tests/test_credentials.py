import pytest

from scriptgate.core.errors import InvalidSecret, InvalidUsername, MissingFingerprint, Unauthorized
from scriptgate.core.utils import HWID_MAX_LENGTH
from scriptgate.services.credentials import authorize

from conftest import SITE_SECRET


def _authorize(audit, secret=SITE_SECRET, username="alice_01", fingerprint="fp-abc", **kw):
    return authorize(
        secret, username, fingerprint,
        expected_secret=kw.pop("expected_secret", SITE_SECRET),
        audit=audit,
        origin="10.0.0.7",
        **kw,
    )


def test_valid_credentials_pass_without_audit(audit):
    creds = _authorize(audit)
    assert creds.username == "alice_01"
    assert creds.hwid == "fp-abc"
    assert audit.entries == []


def test_wrong_secret_is_unauthorized_and_not_recorded(audit):
    with pytest.raises(Unauthorized):
        _authorize(audit, secret="guess-me-123")

    [entry] = audit.of_type("credential_rejected")
    assert entry.details == {"reason": "unauthorized"}
    assert entry.origin == "10.0.0.7"
    assert "guess-me-123" not in repr(entry)


def test_unconfigured_secret_authorizes_nobody(audit):
    with pytest.raises(InvalidSecret):
        _authorize(audit, secret="", expected_secret="")


def test_secret_is_checked_before_other_fields(audit):
    # secret errato + username invalido: il motivo resta generico
    with pytest.raises(InvalidSecret):
        _authorize(audit, secret="nope", username="bad name!")
    assert audit.entries[0].details["reason"] == "unauthorized"


@pytest.mark.parametrize("username", [None, "", "has space", "x" * 51, "semi;colon"])
def test_invalid_username(audit, username):
    with pytest.raises(InvalidUsername):
        _authorize(audit, username=username)
    assert audit.entries[0].details["reason"] == "invalid_username"


def test_missing_fingerprint(audit):
    with pytest.raises(MissingFingerprint):
        _authorize(audit, fingerprint="   ")
    assert audit.entries[0].details["reason"] == "missing_fingerprint"


def test_loader_does_not_require_fingerprint(audit):
    creds = _authorize(audit, fingerprint=None, require_fingerprint=False)
    assert creds.hwid is None


def test_long_fingerprint_is_hashed(audit):
    creds = _authorize(audit, fingerprint="f" * (HWID_MAX_LENGTH + 1))
    assert len(creds.hwid) == 64
    assert creds.hwid == _authorize(audit, fingerprint="f" * (HWID_MAX_LENGTH + 1)).hwid
