import hashlib

import pytest
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql

from scriptgate.core.errors import InvalidInput, NotFound
from scriptgate.crud import script_crud
from scriptgate.models.script_version import ScriptVersion

V1 = "// @version 1.0.0\nconsole.log('v1 for {{USERNAME}}');\n"
V2 = "// @version 2.0.0\nconsole.log('v2 for {{USERNAME}} at {{TIMESTAMP}}');\n"


def _sha(text):
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _active_count(db):
    return db.execute(
        select(func.count()).select_from(ScriptVersion).where(ScriptVersion.is_active.is_(True))
    ).scalar()


def test_publish_checksum_round_trip(db, audit):
    script_crud.publish(db, "tool.user.js", V1, "first", "admin:alice", audit=audit)
    active = script_crud.active_version(db)
    assert active.checksum == _sha(V1)
    assert active.file_size == len(V1.encode("utf-8"))
    assert active.created_by == "admin:alice"
    assert audit.of_type("script_published")[0].details["checksum"] == _sha(V1)


def test_republish_same_name_keeps_history(db):
    v1 = script_crud.publish(db, "tool.user.js", V1, "first", "admin:alice")
    v2 = script_crud.publish(db, "tool.js", V2, "second", "admin:alice")

    assert v1.id == v2.id
    active = script_crud.active_version(db)
    assert active.version == "2.0.0"
    assert active.payload == V2
    assert _active_count(db) == 1

    history = script_crud.history(db, "tool")
    assert [r.version for r in history] == ["2.0.0", "1.0.0"]
    assert history[1].payload == V1
    assert history[1].checksum == _sha(V1)


def test_publishing_another_name_deactivates_previous(db):
    a = script_crud.publish(db, "alpha", V1, None, "admin:alice")
    b = script_crud.publish(db, "beta", V2, None, "admin:alice")

    assert _active_count(db) == 1
    assert script_crud.active_version(db).id == b.id
    assert script_crud.get_version(db, a.id).is_active is False


def test_caller_checksum_must_match(db):
    with pytest.raises(InvalidInput):
        script_crud.publish(db, "tool", V1, None, "admin:alice", checksum="0" * 64)
    assert script_crud.active_version(db) is None

    ok = script_crud.publish(db, "tool", V1, None, "admin:alice", checksum=_sha(V1).upper())
    assert ok.checksum == _sha(V1)


def test_version_resolution(db):
    explicit = script_crud.publish(db, "a", V1, None, "admin:alice", version="9.9.9")
    assert explicit.version == "9.9.9"
    from_header = script_crud.publish(db, "b", V2, None, "admin:alice")
    assert from_header.version == "2.0.0"
    fallback = script_crud.publish(db, "c", "console.log(1);", None, "admin:alice")
    assert fallback.version == script_crud.DEFAULT_VERSION


@pytest.mark.parametrize("name,expected", [
    ("tool.user.js", "tool"),
    ("tool.JS", "tool"),
    ("  spaced.js ", "spaced"),
    ("plain", "plain"),
])
def test_normalize_name(name, expected):
    assert script_crud.normalize_name(name) == expected


@pytest.mark.parametrize("name", ["", ".user.js", "   ", "x" * 129])
def test_invalid_names(name):
    with pytest.raises(InvalidInput):
        script_crud.normalize_name(name)


def test_payload_limits(db):
    with pytest.raises(InvalidInput):
        script_crud.publish(db, "tool", "", None, "admin:alice")
    with pytest.raises(InvalidInput):
        script_crud.publish(db, "tool", "a" * (script_crud.MAX_PAYLOAD_BYTES + 1), None, "admin:alice")


def test_render_personalizes_without_mutating(db):
    script = script_crud.publish(db, "tool", V2, None, "admin:alice")
    body = script_crud.render(script, {"USERNAME": "bob", "TIMESTAMP": "now", "UNUSED": "x"})

    assert body == b"// @version 2.0.0\nconsole.log('v2 for bob at now');\n"
    assert script_crud.active_version(db).payload == V2


def test_render_leaves_unknown_tokens():
    assert script_crud.render_template("{{A}} {{B}}", {"A": 1}) == "1 {{B}}"


def test_loader_never_embeds_secret():
    body = script_crud.render_loader(
        "alice", api_base="https://api.example.test/", version="1.2.3", timestamp="t",
    ).decode("utf-8")
    assert "ScriptGate Loader - alice" in body
    assert "'https://api.example.test'" in body
    assert "{{" not in body


def test_deactivate_and_rollback(db):
    script_crud.publish(db, "tool", V1, None, "admin:alice")
    current = script_crud.publish(db, "tool", V2, None, "admin:alice")

    script_crud.set_active(db, current.id, False, "admin:alice")
    assert script_crud.active_version(db) is None

    old = script_crud.history(db, "tool")[-1]
    restored = script_crud.rollback(db, old.id, "admin:alice")
    assert restored.is_active is True
    assert restored.payload == V1
    assert restored.version == "1.0.0"
    assert len(script_crud.history(db, "tool")) == 3


def test_activate_switches_single_active(db):
    a = script_crud.publish(db, "alpha", V1, None, "admin:alice")
    script_crud.publish(db, "beta", V2, None, "admin:alice")
    script_crud.set_active(db, a.id, True, "admin:alice")
    assert script_crud.active_version(db).id == a.id
    assert _active_count(db) == 1


def test_unknown_script(db):
    import uuid
    with pytest.raises(NotFound):
        script_crud.get_version(db, uuid.uuid4())
    with pytest.raises(NotFound):
        script_crud.rollback(db, uuid.uuid4(), "admin:alice")


def test_activation_locks_the_active_row():
    sql = str(script_crud.lock_active_rows().compile(dialect=postgresql.dialect()))
    assert "FOR UPDATE" in sql
    assert "is_active" in sql


def test_publishing_after_another_name_was_activated(db):
    script_crud.publish(db, "alpha", V1, None, "admin:alice")
    script_crud.set_active(db, script_crud.active_version(db).id, True, "admin:alice")
    beta = script_crud.publish(db, "beta", V2, None, "admin:bob")

    assert script_crud.active_version(db).id == beta.id
    assert _active_count(db) == 1
