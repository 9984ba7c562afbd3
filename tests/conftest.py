"""
Shared fixtures: a throwaway SQLite database per test, settings pointing
at it, a session, and a FastAPI TestClient over the full app.
"""
import logging

import pytest
from fastapi.testclient import TestClient

import crud
import models
from auth import TokenService, set_password
from config import Settings
from database import make_engine, make_session_factory
from main import create_app

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

TEST_SECRET = "test-signing-secret-0123456789abcdef"
ADMIN_EMAIL = "admin@x.com"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret=TEST_SECRET,
        database_url=f"sqlite:///{tmp_path / 'app.db'}",
        google_client_id="client-id",
        google_client_secret="client-secret",
        google_redirect_url="http://localhost:8080/auth/google/callback",
        static_dir=tmp_path / "static",
        admin_emails=frozenset({ADMIN_EMAIL}),
    )


@pytest.fixture
def session_factory(settings):
    engine = make_engine(settings.database_url)
    models.Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tokens():
    return TokenService(TEST_SECRET)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(name=None, email=None, password="hunter2", is_admin=False, exp=0):
        counter["n"] += 1
        n = counter["n"]
        user = models.User(
            name=name or f"user{n}",
            email=email or f"user{n}@x.com",
            is_admin=is_admin,
            exp=exp,
        )
        set_password(user, password)
        return crud.create_user(db, user)

    return _make


@pytest.fixture
def make_report(db):
    def _make(user, description="litter near trail", **kwargs):
        report = models.Report(
            user_id=user.id,
            latitude=kwargs.pop("latitude", 40.0),
            longitude=kwargs.pop("longitude", -73.0),
            description=description,
            **kwargs,
        )
        return crud.create_report(db, report)

    return _make


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}
