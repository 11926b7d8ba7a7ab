"""Shared fixtures: an in-memory database, rebuilt for every test."""

import os

# Must be set before config/database are imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["WORKER_INSTALL_ON_STARTUP"] = "false"
os.environ["TIMEZONE"] = "UTC"

from datetime import datetime, timezone

import pytest

import database


@pytest.fixture(autouse=True)
def clean_database():
    database.Base.metadata.drop_all(bind=database.engine)
    database.Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture
def db():
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def noon():
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
