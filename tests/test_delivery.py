from datetime import timedelta

import pytest

from scriptgate.core.errors import InvalidUsername, Unauthorized
from scriptgate.core.utils import utcnow
from scriptgate.crud import device_crud, script_crud
from scriptgate.crud.device_crud import Actor
from scriptgate.models.device import DeviceStatus
from scriptgate.models.payment import PaymentDecision
from scriptgate.schemas.delivery import DeliveryIn, LoaderIn
from scriptgate.services import delivery, payment_gate
from scriptgate.services.delivery import OutcomeKind
from scriptgate.services.payment_gate import ProofFields

from conftest import SITE_SECRET, force_status

SCRIPT = "// @version 3.1.0\nconsole.log('hello {{USERNAME}} v{{VERSION}}');\n"


def _deliver(db, settings, audit, hwid, username="alice", secret=SITE_SECRET):
    request = DeliveryIn(username=username, fingerprint=hwid, secret=secret)
    return delivery.deliver(db, request, settings=settings, audit=audit, origin="127.0.0.1")


def _pay_and_approve(db, hwid, decision=PaymentDecision.approve):
    payment = payment_gate.record_proof(
        db, hwid,
        ProofFields(username="alice", email="alice@example.com", payment_method="paypal"),
        default_amount=36, default_currency="USD",
    )
    return payment_gate.reconcile(db, payment.id, decision, "admin:alice")


def test_scenario_a_new_device_waits(db, settings, audit, new_hwid):
    hwid = new_hwid()
    outcome = _deliver(db, settings, audit, hwid)

    assert outcome.kind == OutcomeKind.wait
    assert outcome.body is None
    assert "payment" not in outcome.message.lower()
    assert device_crud.get_device(db, hwid).status == "pending"
    assert audit.of_type("device_registered")


def test_scenario_b_approved_payment_delivers_active_script(db, settings, audit, new_hwid):
    hwid = new_hwid()
    script_crud.publish(db, "tool", SCRIPT, None, "admin:alice")
    _deliver(db, settings, audit, hwid)
    _pay_and_approve(db, hwid)

    outcome = _deliver(db, settings, audit, hwid)

    assert outcome.kind == OutcomeKind.script
    assert outcome.body == b"// @version 3.1.0\nconsole.log('hello alice v3.1.0');\n"
    assert outcome.checksum == script_crud.active_version(db).checksum
    assert outcome.version == "3.1.0"
    assert outcome.filename == "script-alice.user.js"
    assert device_crud.get_device(db, hwid).usage_count == 1


def test_scenario_c_rejected_payment_keeps_waiting(db, settings, audit, new_hwid):
    hwid = new_hwid()
    script_crud.publish(db, "tool", SCRIPT, None, "admin:alice")
    _deliver(db, settings, audit, hwid)
    _pay_and_approve(db, hwid, decision=PaymentDecision.reject)

    outcome = _deliver(db, settings, audit, hwid)
    assert outcome.kind == OutcomeKind.wait
    assert outcome.body is None


def test_scenario_d_wrong_secret_touches_nothing(db, settings, audit, new_hwid):
    hwid = new_hwid()
    with pytest.raises(Unauthorized):
        _deliver(db, settings, audit, hwid, secret="wrong")

    assert device_crud.get_device(db, hwid) is None
    [entry] = audit.entries
    assert entry.details == {"reason": "unauthorized"}


def test_invalid_username_is_rejected_before_lookup(db, settings, audit, new_hwid):
    hwid = new_hwid()
    with pytest.raises(InvalidUsername):
        _deliver(db, settings, audit, hwid, username="bad user")
    assert device_crud.get_device(db, hwid) is None


@pytest.mark.parametrize("status", ["blocked", "expired"])
def test_blocked_and_expired_are_denied(db, settings, audit, new_hwid, status):
    hwid = new_hwid()
    _deliver(db, settings, audit, hwid)
    force_status(db, hwid, status)

    outcome = _deliver(db, settings, audit, hwid)
    assert outcome.kind == OutcomeKind.denied
    assert device_crud.get_device(db, hwid).status == status


def test_hwid_bound_to_other_user_is_denied(db, settings, audit, new_hwid):
    hwid = new_hwid()
    _deliver(db, settings, audit, hwid, username="alice")
    device_crud.transition(db, hwid, DeviceStatus.active, Actor.admin("admin:root"))

    outcome = _deliver(db, settings, audit, hwid, username="mallory")
    assert outcome.kind == OutcomeKind.denied
    assert audit.of_type("delivery_denied")[-1].details["reason"] == "username_mismatch"


def test_time_expired_license_is_denied(db, settings, audit, new_hwid):
    hwid = new_hwid()
    _deliver(db, settings, audit, hwid)
    _pay_and_approve(db, hwid)
    force_status(db, hwid, "active", expires_at=utcnow() - timedelta(seconds=1))

    outcome = _deliver(db, settings, audit, hwid)
    assert outcome.kind == OutcomeKind.denied
    assert device_crud.get_device(db, hwid).status == "expired"


def test_active_device_without_catalog_gets_placeholder(db, settings, audit, new_hwid):
    hwid = new_hwid()
    _deliver(db, settings, audit, hwid)
    device_crud.transition(db, hwid, DeviceStatus.active, Actor.admin("admin:root"))

    outcome = _deliver(db, settings, audit, hwid)
    assert outcome.kind == OutcomeKind.script
    assert b"ScriptGate placeholder" in outcome.body
    assert b"alice" in outcome.body
    assert len(outcome.checksum) == 64


def test_loader_is_personalized(settings, audit):
    outcome = delivery.loader(
        LoaderIn(username="alice", secret=SITE_SECRET),
        settings=settings, audit=audit, api_base="http://testserver/",
    )
    body = outcome.body.decode("utf-8")
    assert outcome.kind == OutcomeKind.script
    assert "ScriptGate Loader - alice" in body
    assert SITE_SECRET not in body
    assert outcome.version == settings.LOADER_VERSION


def test_loader_requires_secret(settings, audit):
    with pytest.raises(Unauthorized):
        delivery.loader(
            LoaderIn(username="alice", secret="nope"),
            settings=settings, audit=audit, api_base="http://testserver/",
        )
