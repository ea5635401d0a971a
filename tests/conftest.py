from pathlib import Path
import os
import sys

ROOT = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from email_bulk import BulkEmailDispatcher
from server import create_app


class RecordingSender:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def __call__(self, to_email, subject, html, text):
        self.sent.append({"to": to_email, "subject": subject, "html": html, "text": text})
        if to_email in self.fail_for:
            raise RuntimeError(f"relay rejected {to_email}")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def sender():
    return RecordingSender()


def build_app(session_factory, sender, **services):
    services.setdefault("email_dispatcher", BulkEmailDispatcher(sender=sender, delay_seconds=0))
    app = create_app(create_tables=False, **services)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(session_factory, sender):
    with TestClient(build_app(session_factory, sender)) as test_client:
        yield test_client


def make_row(team_id, team_name, name, email="", mobile="", role="Team Member", status="Complete", organisation="MIT"):
    return {
        "Team ID": team_id,
        "Team Name": team_name,
        "Candidate role": role,
        "Candidate's Name": name,
        "Candidate's Email": email,
        "Candidate's Mobile": mobile,
        "Candidate's Organisation": organisation,
        "Reg. Status": status,
    }
