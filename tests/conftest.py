import pytest

from chapterfix.core.db import init_db


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point DB_PATH at a fresh database for one test."""
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    init_db()
    return db_path


@pytest.fixture
def workspace(temp_db):
    return "ws-test"
