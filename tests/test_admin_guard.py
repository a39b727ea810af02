import pytest

from scriptgate.core.errors import Unauthorized
from scriptgate.core.security import JoseTokenVerifier, require_admin

from conftest import TOKEN_SECRET, make_token


@pytest.fixture()
def verifier():
    return JoseTokenVerifier(TOKEN_SECRET)


def test_admin_token_is_accepted(verifier):
    identity = require_admin(make_token(sub="alice"), verifier)
    assert identity.subject == "alice"
    assert identity.actor_id == "admin:alice"
    assert identity.claims["role"] == "admin"


@pytest.mark.parametrize("token", [
    None,
    "",
    "not-a-jwt",
    make_token(role="user"),
    make_token(secret="another-secret"),
    make_token(expires_in=-60),
])
def test_everything_else_is_unauthorized_with_same_message(verifier, token):
    with pytest.raises(Unauthorized) as exc:
        require_admin(token, verifier)
    assert exc.value.message == "Unauthorized"


class _ExplodingVerifier:
    def verify(self, token):
        raise KeyError("boom")


def test_verifier_failure_maps_to_unauthorized():
    with pytest.raises(Unauthorized):
        require_admin("anything", _ExplodingVerifier())


class _ListVerifier:
    def verify(self, token):
        return ["role", "admin"]


def test_non_dict_claims_are_rejected():
    with pytest.raises(Unauthorized):
        require_admin("anything", _ListVerifier())
