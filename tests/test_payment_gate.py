from datetime import timedelta
from decimal import Decimal

import pytest

from scriptgate.core.errors import DuplicatePayment, IllegalTransition, InvalidInput, NotFound
from scriptgate.core.utils import utcnow
from scriptgate.crud import device_crud
from scriptgate.crud.device_crud import Actor
from scriptgate.crud.payment_crud import get_payment, list_payments
from scriptgate.models.device import DeviceStatus
from scriptgate.models.payment import PaymentDecision, PaymentStatus
from scriptgate.services import payment_gate
from scriptgate.services.payment_gate import ProofFields

from conftest import FailingNotifier, force_status

PRICE = Decimal("36.00")


def _fields(**overrides):
    data = dict(
        username="alice",
        email="alice@example.com",
        payment_method="paypal",
        transaction_id="TX-1",
        proof_reference="proofs/tx-1.png",
    )
    data.update(overrides)
    return ProofFields(**data)


def _proof(db, hwid, notifier=None, audit=None, **overrides):
    return payment_gate.record_proof(
        db, hwid, _fields(**overrides),
        default_amount=PRICE, default_currency="USD",
        notifier=notifier, audit=audit,
    )


@pytest.fixture()
def pending_hwid(db, new_hwid):
    hwid = new_hwid()
    device_crud.lookup_or_register(db, hwid, "alice")
    return hwid


def test_proof_never_grants_access(db, pending_hwid, notifier, audit):
    payment = _proof(db, pending_hwid, notifier=notifier, audit=audit)

    device = device_crud.get_device(db, pending_hwid)
    assert device.status == "pending"
    assert device.payment_status == "pending_verification"
    assert device.payment_id == payment.id

    assert payment.payment_status == PaymentStatus.pending_verification.value
    assert payment.amount == PRICE
    assert payment.currency == "USD"
    assert notifier.calls[0].event_type == "payment_proof_received"
    assert audit.of_type("payment_proof_recorded")


def test_second_pending_proof_is_rejected(db, pending_hwid):
    _proof(db, pending_hwid)
    with pytest.raises(DuplicatePayment):
        _proof(db, pending_hwid, transaction_id="TX-2")
    assert list_payments(db)["total"] == 1


def test_proof_validation(db, pending_hwid, new_hwid):
    with pytest.raises(NotFound):
        _proof(db, new_hwid())
    with pytest.raises(InvalidInput):
        _proof(db, pending_hwid, email="not-an-email")
    with pytest.raises(InvalidInput):
        _proof(db, pending_hwid, username="someone_else")


def test_proof_for_active_device_is_rejected(db, pending_hwid):
    device_crud.transition(db, pending_hwid, DeviceStatus.active, Actor.admin("admin:alice"))
    with pytest.raises(InvalidInput):
        _proof(db, pending_hwid)


def test_explicit_amount_is_kept(db, pending_hwid):
    payment = _proof(db, pending_hwid, amount=Decimal("10.50"), currency="eur")
    assert payment.amount == Decimal("10.50")
    assert payment.currency == "EUR"


def test_approve_activates_device(db, pending_hwid, notifier, audit):
    payment = _proof(db, pending_hwid)
    device = payment_gate.reconcile(
        db, payment.id, PaymentDecision.approve, "admin:alice", notifier=notifier, audit=audit,
    )

    assert device.status == "active"
    assert device.payment_status == "paid"
    assert device.approval_source == "payment"
    assert device.approved_by == "admin:alice"
    assert device.payment_id == payment.id

    stored = get_payment(db, payment.id)
    assert stored.payment_status == PaymentStatus.completed.value
    assert stored.reviewed_by == "admin:alice"

    assert notifier.calls[-1].event_type == "payment_approved"
    assert notifier.calls[-1].recipient == "alice@example.com"
    [transition] = audit.of_type("device_transition")
    assert transition.details["actor_kind"] == "payment_gate"


def test_payment_cannot_be_reconciled_twice(db, pending_hwid):
    payment = _proof(db, pending_hwid)
    payment_gate.reconcile(db, payment.id, PaymentDecision.approve, "admin:alice")
    with pytest.raises(IllegalTransition):
        payment_gate.reconcile(db, payment.id, PaymentDecision.approve, "admin:alice")
    with pytest.raises(IllegalTransition):
        payment_gate.reconcile(db, payment.id, PaymentDecision.reject, "admin:alice")


def test_reject_keeps_device_pending(db, pending_hwid):
    payment = _proof(db, pending_hwid)
    device = payment_gate.reconcile(db, payment.id, PaymentDecision.reject, "admin:alice")

    assert device.status == "pending"
    assert device.payment_status == "unpaid"
    assert get_payment(db, payment.id).payment_status == PaymentStatus.rejected.value

    # dopo un rifiuto si può inviare una nuova prova
    _proof(db, pending_hwid, transaction_id="TX-2")


def test_notification_failure_does_not_roll_back(db, pending_hwid):
    payment = _proof(db, pending_hwid, notifier=FailingNotifier())
    device = payment_gate.reconcile(
        db, payment.id, PaymentDecision.approve, "admin:alice", notifier=FailingNotifier(),
    )
    assert device.status == "active"
    assert device_crud.get_device(db, pending_hwid).status == "active"


def test_approve_for_blocked_device_keeps_payment_pending(db, pending_hwid):
    payment = _proof(db, pending_hwid)
    force_status(db, pending_hwid, "blocked")

    with pytest.raises(IllegalTransition):
        payment_gate.reconcile(db, payment.id, PaymentDecision.approve, "admin:alice")

    assert get_payment(db, payment.id).payment_status == PaymentStatus.pending_verification.value
    assert device_crud.get_device(db, pending_hwid).status == "blocked"


def test_unknown_payment(db):
    import uuid
    with pytest.raises(NotFound):
        payment_gate.reconcile(db, uuid.uuid4(), PaymentDecision.approve, "admin:alice")


def test_license_duration_sets_expiry(db, pending_hwid):
    payment = _proof(db, pending_hwid)
    device = payment_gate.reconcile(
        db, payment.id, PaymentDecision.approve, "admin:alice", license_days=30,
    )
    assert device.expires_at is not None


def test_expire_if_due(db, pending_hwid, audit):
    payment = _proof(db, pending_hwid)
    device = payment_gate.reconcile(db, payment.id, PaymentDecision.approve, "admin:alice")

    assert payment_gate.expire_if_due(db, device, audit=audit).status == "active"

    force_status(db, pending_hwid, "active", expires_at=utcnow() - timedelta(minutes=1))
    device = device_crud.get_device(db, pending_hwid)
    expired = payment_gate.expire_if_due(db, device, audit=audit)

    assert expired.status == "expired"
    assert expired.approved_by == "system"
    assert audit.of_type("device_transition")[-1].details["to"] == "expired"


def test_list_payments_by_status(db, pending_hwid):
    payment = _proof(db, pending_hwid)
    assert list_payments(db, status=PaymentStatus.pending_verification)["total"] == 1
    payment_gate.reconcile(db, payment.id, PaymentDecision.reject, "admin:alice")
    assert list_payments(db, status=PaymentStatus.pending_verification)["total"] == 0
    assert list_payments(db, q="TX-1")["items"][0]["payment_status"] == "rejected"


def test_device_activated_during_proof_keeps_its_payment(db, session_factory, pending_hwid, monkeypatch):
    first = _proof(db, pending_hwid)
    read_device = device_crud.get_device
    approved = []

    def read_then_approve(session, hwid):
        device = read_device(session, hwid)
        if not approved:
            # un admin approva la prima prova subito dopo la lettura
            approved.append(True)
            with session_factory() as other:
                payment_gate.reconcile(other, first.id, PaymentDecision.approve, "admin:bob")
        return device

    monkeypatch.setattr(device_crud, "get_device", read_then_approve)
    with pytest.raises(IllegalTransition):
        _proof(db, pending_hwid, transaction_id="TX-2")
    monkeypatch.undo()

    device = device_crud.get_device(db, pending_hwid)
    assert device.status == "active"
    assert device.payment_status == "paid"
    assert device.approval_source == "payment"
    assert device.payment_id == first.id
    assert list_payments(db)["total"] == 1


def test_reject_leaves_activated_device_untouched(db, pending_hwid):
    payment = _proof(db, pending_hwid)
    device_crud.transition(db, pending_hwid, DeviceStatus.active, Actor.admin("admin:alice"))

    device = payment_gate.reconcile(db, payment.id, PaymentDecision.reject, "admin:alice")

    assert device.status == "active"
    assert device.approval_source == "admin_override"
    assert device.payment_status != "unpaid"
    assert get_payment(db, payment.id).payment_status == PaymentStatus.rejected.value


@pytest.mark.parametrize("overrides", [
    {"amount": Decimal("100000000")},
    {"amount": Decimal("1.001")},
    {"amount": Decimal("0")},
    {"currency": "EURO"},
    {"currency": "E1"},
])
def test_amount_and_currency_must_fit_the_ledger(db, pending_hwid, overrides):
    with pytest.raises(InvalidInput):
        _proof(db, pending_hwid, **overrides)
    assert list_payments(db)["total"] == 0


def test_failed_activation_is_audited(db, pending_hwid, audit):
    payment = _proof(db, pending_hwid)
    force_status(db, pending_hwid, "blocked")

    with pytest.raises(IllegalTransition):
        payment_gate.reconcile(db, payment.id, PaymentDecision.approve, "admin:alice", audit=audit)

    [rejected] = audit.of_type("transition_rejected")
    assert rejected.device_hwid == pending_hwid
    assert rejected.details == {"from": "blocked", "to": "active", "actor_kind": "payment_gate"}
    assert not audit.of_type("device_transition")
