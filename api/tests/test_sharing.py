from datetime import timedelta

import pytest
from sqlmodel import Session, select

from disclosure_api import config, sharing
from disclosure_api import email as email_module
from disclosure_api.errors import InvalidTransition
from disclosure_api.models import Disclosure, LedgerEntry, ShareGrant
from disclosure_api.utils import utcnow

SIMPLE_SIGNATURE_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/Pf8icQAAAABJRU5ErkJggg=="
BUYER_SIGNATURE = {"signature_data": SIMPLE_SIGNATURE_B64, "printed_name": "Bob Buyer"}


def share_with(client, headers, disclosure_id, email="buyer@example.com", **extra):
    response = client.post(
        f"/api/disclosures/{disclosure_id}/shares",
        json={"recipient_email": email, **extra},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    data = response.json()
    data["token"] = data["share_link"].rsplit("/", 1)[1]
    return data


def share_events(session, share_id, event_type):
    return session.exec(
        select(LedgerEntry).where(
            LedgerEntry.correlation_id == share_id,
            LedgerEntry.event_type == event_type,
        ).order_by(LedgerEntry.id)
    ).all()


def test_share_requires_completed_disclosure(client, seller_headers):
    created = client.post("/api/disclosures/property/prop-9", headers=seller_headers).json()
    response = client.post(
        f"/api/disclosures/{created['id']}/shares",
        json={"recipient_email": "buyer@example.com"},
        headers=seller_headers,
    )
    assert response.status_code == 409
    assert response.json()["guard"] == "disclosure_not_ready"


def test_share_creates_pending_grant_and_notifies(client, seller_headers, completed_disclosure, sent_emails, db_session):
    disclosure_id = completed_disclosure()
    share = share_with(
        client, seller_headers, disclosure_id,
        email="  Buyer@Example.com ", recipient_name="Bob Buyer", message="Take a look",
    )
    assert share["status"] == "pending"
    assert share["recipient_email"] == "buyer@example.com"
    assert share["view_count"] == 0
    assert "notification_warning" not in share
    assert len(share["token"]) >= 32

    invite = [m for m in sent_emails if m["to"] == "buyer@example.com"]
    assert len(invite) == 1
    assert share["share_link"] in invite[0]["text"]
    assert "Take a look" in invite[0]["text"]
    assert invite[0]["reply_to"] == "seller@example.com"
    assert invite[0]["sender_name"] == "Sally Seller via Seller Disclosures"

    grant = db_session.get(ShareGrant, share["id"])
    assert grant.shared_by == "seller-1"
    assert timedelta(days=29) < grant.expires_at - utcnow() <= timedelta(days=30)

    shared = share_events(db_session, share["id"], "shared")
    assert len(shared) == 1
    assert shared[0].meta["recipient_email"] == "buyer@example.com"
    assert shared[0].meta["recipient_name"] == "Bob Buyer"

    listing = client.get(f"/api/disclosures/{disclosure_id}/shares", headers=seller_headers).json()
    assert [s["id"] for s in listing] == [share["id"]]


def test_notification_failure_is_a_warning(client, seller_headers, completed_disclosure, monkeypatch, db_session):
    disclosure_id = completed_disclosure()

    def failing_send(*args, **kwargs):
        raise OSError("smtp unavailable")

    monkeypatch.setattr(email_module, "send_email", failing_send)
    share = share_with(client, seller_headers, disclosure_id)
    assert share["status"] == "pending"
    assert share["notification_warning"]
    assert db_session.get(ShareGrant, share["id"]) is not None


def test_scenario_c_anonymous_view_then_binding(client, seller_headers, buyer_headers, completed_disclosure, db_session):
    disclosure_id = completed_disclosure()
    share = share_with(client, seller_headers, disclosure_id)

    public = client.get(f"/api/buyer/view/{share['token']}")
    assert public.status_code == 200
    body = public.json()
    assert body["share"]["status"] == "viewed"
    assert body["requires_auth"] is False
    assert body["property"]["address"] == "12 Oak St"
    assert body["seller"] == {"first_name": "Sally", "last_name": "Seller", "phone": "512-555-0100"}
    assert "sections" not in body["disclosure"]

    listing = client.get("/api/buyer/disclosures", headers=buyer_headers).json()
    assert len(listing) == 1
    assert listing[0]["id"] == share["id"]
    assert listing[0]["recipient_user_id"] == "buyer-1"
    assert listing[0]["status"] == "viewed"

    detail = client.get(f"/api/buyer/disclosures/{share['id']}", headers=buyer_headers).json()
    assert detail["first_view"] is False
    assert detail["share"]["status"] == "viewed"
    assert detail["share"]["view_count"] == 2
    assert detail["disclosure"]["sections"]["section13"] == {"smoke_detectors": "yes"}
    assert "email" not in detail["seller"]

    views = share_events(db_session, share["id"], "share_viewed")
    assert [v.meta["first_view"] for v in views] == [True, False]
    assert [v.meta["public_access"] for v in views] == [True, False]


def test_unknown_token_is_generic_not_found(client):
    response = client.get("/api/buyer/view/not-a-real-token")
    assert response.status_code == 404
    assert response.json()["detail"] == "Disclosure not found or link has expired"


def test_expired_grant_is_gone_on_every_path(client, seller_headers, buyer_headers, completed_disclosure, db_session):
    disclosure_id = completed_disclosure()
    share = share_with(client, seller_headers, disclosure_id)
    grant = db_session.get(ShareGrant, share["id"])
    grant.expires_at = utcnow() - timedelta(minutes=1)
    db_session.add(grant)
    db_session.commit()

    token_view = client.get(f"/api/buyer/view/{share['token']}")
    assert token_view.status_code == 410
    assert token_view.json()["code"] == "expired"
    assert client.post(f"/api/buyer/view/{share['token']}/sign", json=BUYER_SIGNATURE).status_code == 410
    assert client.get(f"/api/buyer/disclosures/{share['id']}", headers=buyer_headers).status_code == 410

    db_session.expire_all()
    grant = db_session.get(ShareGrant, share["id"])
    assert grant.view_count == 0
    assert grant.status == "pending"


def test_identity_paths_are_equivalent(client, seller_headers, make_headers, completed_disclosure):
    disclosure_id = completed_disclosure()
    share = share_with(client, seller_headers, disclosure_id)

    by_email = make_headers("buyer-7", "BUYER@example.com")
    assert client.get(f"/api/buyer/disclosures/{share['id']}", headers=by_email).status_code == 200

    # bound to buyer-7 now; a changed email still resolves by user id
    by_id = make_headers("buyer-7", "new-address@example.com")
    response = client.get(f"/api/buyer/disclosures/{share['id']}", headers=by_id)
    assert response.status_code == 200
    assert response.json()["share"]["recipient_user_id"] == "buyer-7"

    stranger = make_headers("buyer-8", "stranger@example.com")
    assert client.get(f"/api/buyer/disclosures/{share['id']}", headers=stranger).status_code == 404
    assert client.get("/api/buyer/disclosures", headers=stranger).json() == []


def test_scenario_d_acknowledge_requires_view(client, seller_headers, buyer_headers, completed_disclosure, sent_emails):
    disclosure_id = completed_disclosure()
    share = share_with(client, seller_headers, disclosure_id)
    url = f"/api/buyer/disclosures/{share['id']}/acknowledge"

    pending = client.post(url, headers=buyer_headers)
    assert pending.status_code == 409
    assert pending.json()["guard"] == "share_not_viewed"

    client.get(f"/api/buyer/disclosures/{share['id']}", headers=buyer_headers)
    acknowledged = client.post(url, headers=buyer_headers)
    assert acknowledged.status_code == 200
    assert acknowledged.json()["status"] == "acknowledged"
    assert acknowledged.json()["acknowledged_at"]

    again = client.post(url, headers=buyer_headers)
    assert again.status_code == 409
    assert again.json()["guard"] == "share_already_acknowledged"

    seller_mail = [m for m in sent_emails if m["to"] == "seller@example.com"]
    assert any("acknowledged" in m["subject"].lower() for m in seller_mail)


def test_scenario_e_buyer_signing_slots(client, seller_headers, make_headers, completed_disclosure, db_session):
    disclosure_id = completed_disclosure()
    buyers = [
        make_headers(f"buyer-{n}", f"buyer{n}@example.com") for n in (1, 2, 3)
    ]
    shares = [share_with(client, seller_headers, disclosure_id, email=f"buyer{n}@example.com") for n in (1, 2, 3)]
    for share, headers in zip(shares, buyers):
        client.get(f"/api/buyer/disclosures/{share['id']}", headers=headers)

    first = client.post(f"/api/buyer/disclosures/{shares[0]['id']}/sign", json=BUYER_SIGNATURE, headers=buyers[0])
    assert first.status_code == 200
    assert first.json()["slot"] == "buyer1"
    assert first.json()["status"] == "signed"

    repeat = client.post(f"/api/buyer/disclosures/{shares[0]['id']}/sign", json=BUYER_SIGNATURE, headers=buyers[0])
    assert repeat.status_code == 409
    assert repeat.json()["guard"] == "share_already_signed"

    second = client.post(
        f"/api/buyer/disclosures/{shares[1]['id']}/sign",
        json={**BUYER_SIGNATURE, "printed_name": "Betty Buyer"},
        headers=buyers[1],
    )
    assert second.json()["slot"] == "buyer2"

    third = client.post(f"/api/buyer/disclosures/{shares[2]['id']}/sign", json=BUYER_SIGNATURE, headers=buyers[2])
    assert third.status_code == 409
    assert third.json()["guard"] == "buyer_slots_full"

    db_session.expire_all()
    disclosure = db_session.get(Disclosure, disclosure_id)
    assert disclosure.signature("buyer1")["printed_name"] == "Bob Buyer"
    assert disclosure.signature("buyer1")["user_id"] == "buyer-1"
    assert disclosure.signature("buyer1")["signed_at"]
    assert disclosure.signature("buyer2")["printed_name"] == "Betty Buyer"
    # the refused signature rolled back the grant transition too
    assert db_session.get(ShareGrant, shares[2]["id"]).status == "viewed"
    assert len(share_events(db_session, shares[0]["id"], "signed_buyer")) == 1


def test_sign_requires_view_first(client, seller_headers, buyer_headers, completed_disclosure):
    disclosure_id = completed_disclosure()
    share = share_with(client, seller_headers, disclosure_id)
    response = client.post(f"/api/buyer/disclosures/{share['id']}/sign", json=BUYER_SIGNATURE, headers=buyer_headers)
    assert response.status_code == 409
    assert response.json()["guard"] == "share_not_viewed"


def test_strict_mode_requires_acknowledgment(client, seller_headers, buyer_headers, completed_disclosure, monkeypatch):
    monkeypatch.setattr(config, "SIGN_REQUIRES_ACKNOWLEDGMENT", True)
    disclosure_id = completed_disclosure()
    share = share_with(client, seller_headers, disclosure_id)
    base = f"/api/buyer/disclosures/{share['id']}"
    client.get(base, headers=buyer_headers)

    refused = client.post(f"{base}/sign", json=BUYER_SIGNATURE, headers=buyer_headers)
    assert refused.status_code == 409
    assert refused.json()["guard"] == "share_not_acknowledged"

    client.post(f"{base}/acknowledge", headers=buyer_headers)
    assert client.post(f"{base}/sign", json=BUYER_SIGNATURE, headers=buyer_headers).status_code == 200


def test_token_path_acknowledge_and_sign(client, seller_headers, completed_disclosure, sent_emails, db_session):
    disclosure_id = completed_disclosure()
    share = share_with(client, seller_headers, disclosure_id)
    base = f"/api/buyer/view/{share['token']}"

    client.get(base)
    assert client.post(f"{base}/acknowledge").json()["status"] == "acknowledged"
    signed = client.post(f"{base}/sign", json=BUYER_SIGNATURE)
    assert signed.status_code == 200
    assert signed.json()["slot"] == "buyer1"

    db_session.expire_all()
    disclosure = db_session.get(Disclosure, disclosure_id)
    assert disclosure.signature("buyer1")["email"] == "buyer@example.com"
    assert disclosure.signature("buyer1")["user_id"] is None
    assert any(m["to"] == "seller@example.com" and "signed by buyer" in m["subject"] for m in sent_emails)


def test_viewing_never_regresses_status(client, seller_headers, completed_disclosure):
    disclosure_id = completed_disclosure()
    share = share_with(client, seller_headers, disclosure_id)
    base = f"/api/buyer/view/{share['token']}"
    client.get(base)
    client.post(f"{base}/sign", json=BUYER_SIGNATURE)

    after = client.get(base).json()
    assert after["share"]["status"] == "signed"
    assert after["share"]["view_count"] == 2


def test_first_view_is_recorded_once(setup_db, db_session):
    disclosure = Disclosure(property_id="p-1", seller_id="s-1", status="completed")
    db_session.add(disclosure)
    db_session.commit()
    grant = ShareGrant(
        disclosure_id=disclosure.id,
        recipient_email="buyer@example.com",
        shared_by="s-1",
        access_token="tok-1",
    )
    db_session.add(grant)
    db_session.commit()

    results = [sharing.view(db_session, grant, public=True) for _ in range(3)]
    assert results == [True, False, False]
    assert grant.view_count == 3
    assert grant.status == "viewed"
    assert grant.first_viewed_at is not None
    assert grant.last_viewed_at >= grant.first_viewed_at


def _grant_for(session, property_id="p-1", token="tok-1"):
    disclosure = Disclosure(property_id=property_id, seller_id="s-1", status="completed")
    session.add(disclosure)
    session.commit()
    grant = ShareGrant(
        disclosure_id=disclosure.id,
        recipient_email="buyer@example.com",
        shared_by="s-1",
        access_token=token,
    )
    session.add(grant)
    session.commit()
    return grant.id


def test_stale_sessions_record_one_first_view(setup_db, test_engine):
    with Session(test_engine) as session:
        grant_id = _grant_for(session)

    with Session(test_engine) as first, Session(test_engine) as second:
        mine = first.get(ShareGrant, grant_id)
        theirs = second.get(ShareGrant, grant_id)
        results = [sharing.view(first, mine, public=True), sharing.view(second, theirs, public=True)]

    assert results == [True, False]
    with Session(test_engine) as session:
        grant = session.get(ShareGrant, grant_id)
        assert grant.view_count == 2
        assert grant.status == "viewed"
        assert grant.first_viewed_at is not None


def test_stale_sessions_cannot_both_sign(client, seller_headers, completed_disclosure, test_engine):
    disclosure_id = completed_disclosure()
    share = share_with(client, seller_headers, disclosure_id)
    client.get(f"/api/buyer/view/{share['token']}")

    with Session(test_engine) as first, Session(test_engine) as second:
        mine = first.get(ShareGrant, share["id"])
        theirs = second.get(ShareGrant, share["id"])
        assert sharing.sign(first, mine, SIMPLE_SIGNATURE_B64, "Bob Buyer") == "buyer1"
        with pytest.raises(InvalidTransition) as refused:
            sharing.sign(second, theirs, SIMPLE_SIGNATURE_B64, "Bob Buyer")
    assert refused.value.guard == "share_already_signed"

    with Session(test_engine) as session:
        disclosure = session.get(Disclosure, disclosure_id)
        assert disclosure.signature("buyer1")["printed_name"] == "Bob Buyer"
        assert disclosure.signature("buyer2") is None
        assert len(share_events(session, share["id"], "share_signed")) == 1


def test_recipient_stats(client, seller_headers, buyer_headers, completed_disclosure):
    first = share_with(client, seller_headers, completed_disclosure("prop-a"))
    share_with(client, seller_headers, completed_disclosure("prop-b"))
    client.get(f"/api/buyer/disclosures/{first['id']}", headers=buyer_headers)
    client.post(f"/api/buyer/disclosures/{first['id']}/acknowledge", headers=buyer_headers)

    stats = client.get("/api/buyer/stats", headers=buyer_headers).json()
    assert stats["total"] == 2
    assert stats["pending"] == 1
    assert stats["acknowledged"] == 1
    assert stats["signed"] == 0
    assert stats["needs_action"] == 1
