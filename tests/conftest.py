import time
import uuid
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import update

from main import create_app
from scriptgate.core.config import Settings
from scriptgate.db.base import Base, import_models
from scriptgate.db.session import build_session_factory
from scriptgate.models.device import Device

SITE_SECRET = "site-secret-for-tests"
TOKEN_SECRET = "token-secret-for-tests"


class RecordingAudit:
    """Audit sink in memoria: raccoglie le entry per le asserzioni."""

    def __init__(self):
        self.entries = []

    def append(self, entry):
        self.entries.append(entry)

    def of_type(self, event_type):
        return [e for e in self.entries if e.event_type == event_type]


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, event_type, title, payload, recipient=None):
        self.calls.append(SimpleNamespace(
            event_type=event_type, title=title, payload=payload, recipient=recipient,
        ))
        return {"log": True, "email": False, "webhook": False}


class FailingNotifier:
    def notify(self, event_type, title, payload, recipient=None):
        raise RuntimeError("smtp down")


def make_token(sub="alice", role="admin", secret=TOKEN_SECRET, expires_in=3600):
    claims = {"sub": sub, "role": role, "exp": int(time.time()) + expires_in}
    return jwt.encode(claims, secret, algorithm="HS256")


def _create_schema(session_factory):
    import_models()
    Base.metadata.create_all(bind=session_factory.kw["bind"])


# ==================== Fixtures ====================
@pytest.fixture()
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'scriptgate.db'}",
        SITE_SECRET=SITE_SECRET,
        ADMIN_TOKEN_SECRET=TOKEN_SECRET,
        LICENSE_DURATION_DAYS=0,
        LICENSE_PRICE=Decimal("36.00"),
        LICENSE_CURRENCY="USD",
        SMTP_HOST=None,
        ADMIN_NOTIFY_EMAIL=None,
        NOTIFY_WEBHOOK_URL=None,
        NOTIFY_WEBHOOK_SECRET=None,
    )


@pytest.fixture()
def session_factory(settings):
    factory = build_session_factory(settings.DATABASE_URL)
    _create_schema(factory)
    yield factory
    factory.kw["bind"].dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def audit():
    return RecordingAudit()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def app(settings):
    application = create_app(settings)
    _create_schema(application.state.session_factory)
    yield application
    application.state.session_factory.kw["bind"].dispose()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def admin_token():
    return make_token()


@pytest.fixture()
def new_hwid():
    return lambda: f"fp-{uuid.uuid4().hex}"


def force_status(db, hwid, status, **values):
    """Porta un device in uno stato arbitrario (solo setup dei test)."""
    db.execute(update(Device).where(Device.hwid == hwid).values(status=status, **values))
    db.commit()
