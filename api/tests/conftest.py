import os
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("CELERY_TASK_EAGER_PROPAGATES", "true")

from disclosure_api.main import app  # noqa: E402
from disclosure_api import db as db_module  # noqa: E402
from disclosure_api.db import get_session  # noqa: E402
from disclosure_api import storage as storage_module  # noqa: E402
from disclosure_api import lifecycle  # noqa: E402
from disclosure_api import email as email_module  # noqa: E402
from disclosure_api.routers import disclosures as disclosures_router  # noqa: E402
from disclosure_api.utils import make_token  # noqa: E402


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine, monkeypatch):
    monkeypatch.setattr(db_module, "engine", test_engine)
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def db_session(test_engine, setup_db):
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)

    def fake_get_bytes(key: str) -> bytes:
        return store[key]

    for target in (storage_module, lifecycle, disclosures_router):
        if hasattr(target, "put_bytes"):
            monkeypatch.setattr(target, "put_bytes", fake_put_bytes)
        if hasattr(target, "get_bytes"):
            monkeypatch.setattr(target, "get_bytes", fake_get_bytes)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, body, html_body=None, sender_name=None, reply_to=None):
        messages.append(
            {
                "to": to,
                "subject": subject,
                "text": body,
                "html": html_body,
                "sender_name": sender_name,
                "reply_to": reply_to,
            }
        )

    monkeypatch.setattr(email_module, "send_email", fake_send_email)
    return messages


@pytest.fixture
def client(test_engine, setup_db, mock_storage, sent_emails):
    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _identity_headers(user_id, email, role="buyer", **extra):
    token = make_token({"user_id": user_id, "email": email, "role": role, **extra})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_headers():
    return _identity_headers


@pytest.fixture
def seller_headers():
    return _identity_headers(
        "seller-1", "seller@example.com", role="seller",
        first_name="Sally", last_name="Seller", phone="512-555-0100",
    )


@pytest.fixture
def buyer_headers():
    return _identity_headers("buyer-1", "buyer@example.com", first_name="Bob", last_name="Buyer")


FULL_FORM = {
    "section1": {
        "property_items": {"range": "Y", "oven": "Y", "dishwasher": "Y", "microwave": "N", "garage": "Y"},
        "water_supply": {"provider": "City of Austin"},
        "roof_info": {"roof_type": "Composition", "roof_age": "8 years", "built_before_1978": "no"},
    },
    "section2": {"defects": {"foundation": False, "walls": False}},
    "section3": {"conditions": {"termites": False}},
    "section4": {"additional_repairs": "no"},
    "section5": {"flood_data": {"flood_insurance_present": "no"}},
    "section6": {"flood_claim": "no"},
    "section7": {"fema_assistance": "no"},
    "section8": {"conditions": {"hoa": False}},
    "section9": {"has_reports": "no"},
    "section10": {"exemptions": {"homestead": True}},
    "section11": {"insurance_claims": "no"},
    "section12": {"unremediated_claims": "no"},
    "section13": {"smoke_detectors": "yes"},
    "utilities": {"electric": "Austin Energy"},
}


@pytest.fixture
def fill_form(client):
    def _fill(disclosure_id, headers, parts=FULL_FORM):
        for part, data in parts.items():
            resp = client.patch(
                f"/api/disclosures/{disclosure_id}/sections/{part}",
                json={"data": data},
                headers=headers,
            )
            assert resp.status_code == 200, resp.text
    return _fill


@pytest.fixture
def completed_disclosure(client, seller_headers, fill_form):
    """Create, fill and complete a disclosure for ``property_id``; returns its id."""

    def _create(property_id="prop-100"):
        resp = client.post(
            f"/api/disclosures/property/{property_id}",
            json={"property": {"address": "12 Oak St", "city": "Austin", "zip_code": "78701"}},
            headers=seller_headers,
        )
        assert resp.status_code == 200, resp.text
        disclosure_id = resp.json()["id"]
        fill_form(disclosure_id, seller_headers)
        resp = client.post(f"/api/disclosures/{disclosure_id}/complete", headers=seller_headers)
        assert resp.status_code == 200, resp.text
        return disclosure_id

    return _create
