import json
import os
import shutil
import tempfile
from pathlib import Path

# point the app at throwaway storage before its modules are imported;
# the /uploads mount and storage both read UPLOAD_DIR once, at import
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="woh-uploads-")
os.environ.pop("SENDGRID_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import storage
from db import get_session
from main import app
from notifications import EmailNotifier, get_notifier


class RecordingNotifier(EmailNotifier):
    """Renders real messages but keeps them instead of calling SendGrid."""

    def __init__(self):
        super().__init__(
            api_key="SG.test-key",
            sender="noreply@wall.test",
            operator_email="ops@wall.test",
        )
        self.outbox = []

    def _deliver(self, message):
        personalization = message["personalizations"][0]
        self.outbox.append(
            {
                "To": personalization["to"][0]["email"],
                "Subject": personalization["subject"],
                "Reply-To": message.get("reply_to", {}).get("email"),
                "html": message["content"][-1]["value"],
                "body": message,
            }
        )

    def sent_to(self, address):
        return [m for m in self.outbox if m["To"] == address]


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

DEFAULT_LOCATION = {"address": "12 Mill Road", "city": "Pune", "state": "MH", "area": "Kothrud"}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def upload_root():
    """The served upload directory, emptied for each test."""
    root = Path(storage.UPLOAD_ROOT)
    shutil.rmtree(root, ignore_errors=True)
    storage.ensure_upload_dirs()
    return root


@pytest.fixture
def client(engine, notifier, upload_root):
    def get_session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(client):
    def _make_user(name="Alice", email="a@x.com", password="secret1"):
        resp = client.post(
            "/api/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return {
            "user": body["user"],
            "token": body["token"],
            "headers": {"Authorization": f"Bearer {body['token']}"},
        }

    return _make_user


@pytest.fixture
def alice(make_user):
    return make_user("Alice", "a@x.com", "secret1")


@pytest.fixture
def bob(make_user):
    return make_user("Bob", "b@x.com", "secret2")


@pytest.fixture
def make_donation(client):
    def _make_donation(headers, title="Rice", files=None, **fields):
        data = {
            "type": "Food",
            "title": title,
            "description": "Two bags of basmati",
            "quantity": "5 kg",
            "location": json.dumps(DEFAULT_LOCATION),
            "availability": json.dumps({"start_time": "09:00", "end_time": "17:00"}),
        }
        data.update(fields)
        return client.post("/api/donations", data=data, files=files, headers=headers)

    return _make_donation


@pytest.fixture
def request_payload():
    def _payload(donation_id, **overrides):
        payload = {
            "donation_id": donation_id,
            "requestor_name": "Bob",
            "contact_number": "9999999999",
            "address": "4 Station Road",
            "reason": "Feeding a shelter",
        }
        payload.update(overrides)
        return payload

    return _payload
