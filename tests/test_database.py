from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from yolo_transcript import database
from yolo_transcript.auth import create_user
from yolo_transcript.config import get_settings
from yolo_transcript.models import User


@pytest.fixture()
def fresh_engine():
    database.reset_engine()
    get_settings.cache_clear()
    yield
    database.reset_engine()
    get_settings.cache_clear()


def test_session_scope_falls_back_to_sqlite(monkeypatch, tmp_path, fresh_engine):
    fallback_db = tmp_path / "fallback.db"
    monkeypatch.setenv("YOLO_DATABASE_URL", "postgresql+psycopg2://invalid")
    monkeypatch.setenv("YOLO_FALLBACK_SQLITE_URL", f"sqlite:///{fallback_db}")

    real_create_engine = database.create_engine
    calls = {"primary": 0, "fallback": 0}

    def fake_create_engine(url: str, *args, **kwargs):
        if url.startswith("postgresql"):
            calls["primary"] += 1
            raise OperationalError("fail", None, None, None)
        calls["fallback"] += 1
        return real_create_engine(url, *args, **kwargs)

    monkeypatch.setattr(database, "create_engine", fake_create_engine)

    with database.session_scope() as session:
        assert session.execute(text("SELECT 1")).scalar_one() == 1
        assert session.query(User).count() == 0

    assert calls == {"primary": 1, "fallback": 1}
    assert fallback_db.exists()


def test_session_scope_keeps_instances_usable_after_commit(user):
    with database.session_scope() as session:
        record = create_user(session, "attached@example.com", "password123")
        created_id = record.id

    assert record.id == created_id
    assert record.email == "attached@example.com"


def test_session_scope_rolls_back_on_error(user):
    with pytest.raises(RuntimeError):
        with database.session_scope() as session:
            create_user(session, "rolled-back@example.com")
            raise RuntimeError("abort")

    with database.session_scope() as session:
        assert session.query(User).filter(User.email == "rolled-back@example.com").count() == 0
