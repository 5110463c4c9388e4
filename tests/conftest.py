import pytest
from fastapi.testclient import TestClient

from backend.auth import create_session, hash_password
from backend.db import Role, User, init_db, make_engine, make_session_factory
from backend.scoring import ReviewPayload
from backend.server import create_app


@pytest.fixture
def engine():
    # In-memory SQLite shared across sessions via StaticPool
    eng = make_engine("sqlite://", echo=False)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def scorer():
    """No remote scorer: the local rules run. Override per test module."""
    return None


@pytest.fixture
def client(session_factory, scorer):
    app = create_app(session_factory=session_factory, scorer=scorer)
    with TestClient(app) as c:
        yield c


class StubScorer:
    """Stands in for the remote scorer. Returns a fixed payload or raises."""

    def __init__(self, payload: dict = None, exc: Exception = None):
        self.payload = payload or {}
        self.exc = exc
        self.calls = []

    async def score(self, documents, applicant):
        self.calls.append({"documents": documents, "applicant": applicant})
        if self.exc is not None:
            raise self.exc
        return ReviewPayload.model_validate(self.payload)


def make_user(session_factory, role: Role, email: str, name: str = None, password: str = "secret123"):
    with session_factory() as db:
        user = User(email=email, name=name or email.split("@")[0].title(),
                    password_hash=hash_password(password), role=role)
        db.add(user)
        db.commit()
        token = create_session(db, user)
        return {"id": user.id, "email": email, "name": user.name, "token": token,
                "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture
def applicant(session_factory):
    return make_user(session_factory, Role.APPLICANT, "jane@example.com", "Jane Doe")


@pytest.fixture
def other_applicant(session_factory):
    return make_user(session_factory, Role.APPLICANT, "mallory@example.com", "Mallory")


@pytest.fixture
def reviewer(session_factory):
    return make_user(session_factory, Role.REVIEWER, "rita@example.com", "Rita Reviewer")


@pytest.fixture
def admin(session_factory):
    return make_user(session_factory, Role.ADMIN, "root@example.com", "Ada Admin")


def doc(filename: str, size: int = 120_000, mime: str = "application/pdf") -> dict:
    return {"filename": filename, "mimeType": mime, "sizeBytes": size}


def application_body(*filenames, email: str = "jane@example.com", **overrides) -> dict:
    body = {
        "applicantName": "Jane Doe",
        "applicantEmail": email,
        "applicantPhone": "+1 555 0100",
        "documents": [doc(f) for f in filenames],
    }
    body.update(overrides)
    return body


@pytest.fixture
def submit(client, applicant):
    """POST an application as the applicant; returns the created record."""
    def _submit(*filenames, user=None, **overrides):
        user = user or applicant
        body = application_body(*filenames, email=user["email"], **overrides)
        r = client.post("/api/applications", json=body, headers=user["headers"])
        assert r.status_code == 201, r.text
        return r.json()["application"]
    return _submit
