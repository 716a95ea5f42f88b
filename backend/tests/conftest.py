"""Shared fixtures: fresh schema per test, isolated image store, recorded scheduling."""

import pytest

from medscribe.db.base import Base
from medscribe.db.database import SessionLocal, create_tables, engine
from medscribe.services import dispatch
from medscribe.utils import storage


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    create_tables()
    yield


@pytest.fixture(autouse=True)
def image_dir(tmp_path, monkeypatch):
    path = tmp_path / "images"
    monkeypatch.setattr(storage, "IMAGE_DIR", path)
    return path


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def scheduled(monkeypatch):
    """Replace the queue with a list of the job specs that would have been enqueued."""
    specs = []
    monkeypatch.setattr(dispatch, "schedule", specs.append)
    return specs
