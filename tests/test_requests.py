from sqlmodel import Session, select

import lifecycle
from models import Donation, Request, User


def html_of(message):
    return message["html"]


def test_second_request_is_refused(client, session, alice, bob, make_user, make_donation, request_payload):
    carol = make_user("Carol", "c@x.com", "secret3")
    donation = make_donation(alice["headers"]).json()

    first = client.post("/api/requests", json=request_payload(donation["id"]), headers=bob["headers"])
    assert first.status_code == 201, first.text
    body = first.json()
    assert body["status"] == "pending"
    assert body["urgency"] == "normal"
    assert body["donation"]["status"] == "requested"

    second = client.post(
        "/api/requests",
        json=request_payload(donation["id"], requestor_name="Carol"),
        headers=carol["headers"],
    )
    assert second.status_code == 400
    assert second.json()["code"] == "DONATION_ALREADY_REQUESTED"
    assert second.json()["current_status"] == "requested"

    rows = session.exec(select(Request).where(Request.donation_id == donation["id"])).all()
    assert len(rows) == 1


def test_request_notifies_donor_operator_and_requester(client, notifier, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"], title="Rice").json()
    resp = client.post("/api/requests", json=request_payload(donation["id"]), headers=bob["headers"])
    assert resp.status_code == 201

    (to_donor,) = notifier.sent_to("a@x.com")[-1:]
    assert to_donor["Subject"] == "New request for your donation: Rice"
    assert "Feeding a shelter" in html_of(to_donor)

    (to_operator,) = notifier.sent_to("ops@wall.test")
    assert to_operator["Subject"] == "Donation request: Rice"

    confirmations = [m for m in notifier.sent_to("b@x.com") if "received" in m["Subject"]]
    assert len(confirmations) == 1


def test_request_survives_mail_failure(client, notifier, alice, bob, make_donation, request_payload, monkeypatch):
    def broken(message):
        raise OSError("mail API unreachable")

    monkeypatch.setattr(notifier, "_deliver", broken)
    donation = make_donation(alice["headers"]).json()

    resp = client.post("/api/requests", json=request_payload(donation["id"]), headers=bob["headers"])
    assert resp.status_code == 201


def test_cannot_request_own_donation(client, alice, make_donation, request_payload):
    donation = make_donation(alice["headers"]).json()
    resp = client.post("/api/requests", json=request_payload(donation["id"]), headers=alice["headers"])
    assert resp.status_code == 403


def test_request_missing_donation(client, bob, request_payload):
    resp = client.post("/api/requests", json=request_payload(999), headers=bob["headers"])
    assert resp.status_code == 404


def test_request_completed_donation(client, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"]).json()
    client.patch(
        f"/api/donations/{donation['id']}/status",
        json={"status": "completed"},
        headers=alice["headers"],
    )
    resp = client.post("/api/requests", json=request_payload(donation["id"]), headers=bob["headers"])
    assert resp.status_code == 400
    assert resp.json()["code"] == "DONATION_UNAVAILABLE"


def test_request_requires_fields(client, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"]).json()
    resp = client.post(
        "/api/requests",
        json=request_payload(donation["id"], contact_number=""),
        headers=bob["headers"],
    )
    assert resp.status_code == 400
    assert client.get("/api/donations/public").json()[0]["status"] == "available"


def test_owner_approves_request(client, notifier, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"]).json()
    req = client.post(
        "/api/requests", json=request_payload(donation["id"]), headers=bob["headers"]
    ).json()

    resp = client.patch(
        f"/api/requests/{req['id']}/status", json={"status": "approved"}, headers=alice["headers"]
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"

    (approved,) = [m for m in notifier.sent_to("b@x.com") if "approved" in m["Subject"]]
    assert approved["Subject"] == "Your donation request was approved"
    assert "has been approved" in html_of(approved)


def test_rejection_email(client, notifier, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"]).json()
    req = client.post(
        "/api/requests", json=request_payload(donation["id"]), headers=bob["headers"]
    ).json()

    client.patch(
        f"/api/requests/{req['id']}/status", json={"status": "rejected"}, headers=alice["headers"]
    )
    subjects = [m["Subject"] for m in notifier.sent_to("b@x.com")]
    assert "Your donation request was not approved" in subjects

    # rejection does not hand the donation back
    detail = client.get(f"/api/donations/{donation['id']}", headers=alice["headers"]).json()
    assert detail["donation"]["status"] == "requested"


def test_only_owner_changes_request_status(client, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"]).json()
    req = client.post(
        "/api/requests", json=request_payload(donation["id"]), headers=bob["headers"]
    ).json()

    resp = client.patch(
        f"/api/requests/{req['id']}/status", json={"status": "approved"}, headers=bob["headers"]
    )
    assert resp.status_code == 403


def test_unknown_request_status(client, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"]).json()
    req = client.post(
        "/api/requests", json=request_payload(donation["id"]), headers=bob["headers"]
    ).json()
    resp = client.patch(
        f"/api/requests/{req['id']}/status", json={"status": "shipped"}, headers=alice["headers"]
    )
    assert resp.status_code == 400


def test_my_requests_include_donation(client, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"], title="Rice").json()
    client.post("/api/requests", json=request_payload(donation["id"]), headers=bob["headers"])

    mine = client.get("/api/requests/my-requests", headers=bob["headers"]).json()
    assert len(mine) == 1
    assert mine[0]["donation"]["title"] == "Rice"
    assert client.get("/api/requests/my-requests", headers=alice["headers"]).json() == []


def test_requests_for_donation_is_owner_only(client, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"]).json()
    client.post("/api/requests", json=request_payload(donation["id"]), headers=bob["headers"])

    owner_view = client.get(f"/api/requests/donation/{donation['id']}", headers=alice["headers"])
    assert owner_view.status_code == 200
    assert [r["requestor_name"] for r in owner_view.json()] == ["Bob"]

    other_view = client.get(f"/api/requests/donation/{donation['id']}", headers=bob["headers"])
    assert other_view.status_code == 403


def test_get_request_visibility(client, make_user, alice, bob, make_donation, request_payload):
    carol = make_user("Carol", "c@x.com", "secret3")
    donation = make_donation(alice["headers"]).json()
    req = client.post(
        "/api/requests", json=request_payload(donation["id"]), headers=bob["headers"]
    ).json()

    assert client.get(f"/api/requests/{req['id']}", headers=bob["headers"]).status_code == 200
    assert client.get(f"/api/requests/{req['id']}", headers=alice["headers"]).status_code == 200
    assert client.get(f"/api/requests/{req['id']}", headers=carol["headers"]).status_code == 403


def test_only_requester_deletes_request(client, alice, bob, make_donation, request_payload):
    donation = make_donation(alice["headers"]).json()
    req = client.post(
        "/api/requests", json=request_payload(donation["id"]), headers=bob["headers"]
    ).json()

    assert client.delete(f"/api/requests/{req['id']}", headers=alice["headers"]).status_code == 403

    resp = client.delete(f"/api/requests/{req['id']}", headers=bob["headers"])
    assert resp.status_code == 200
    assert client.get("/api/requests/my-requests", headers=bob["headers"]).json() == []


def test_claim_is_won_once(session):
    owner = User(email="owner@x.com", name="Owner")
    session.add(owner)
    session.commit()
    donation = Donation(
        user_id=owner.id,
        type="Food",
        title="Rice",
        description="Two bags",
        quantity="5 kg",
        location={"address": "1 Road", "city": "Pune", "state": "MH"},
    )
    session.add(donation)
    session.commit()

    assert lifecycle.claim_donation(session, donation.id) is True
    assert lifecycle.claim_donation(session, donation.id) is False
    session.commit()

    session.refresh(donation)
    assert donation.status == "requested"


def test_request_losing_the_claim_writes_nothing(
    client, engine, session, alice, bob, make_donation, request_payload, monkeypatch
):
    donation = make_donation(alice["headers"]).json()
    real_claim = lifecycle.claim_donation

    def claim_after_competitor(db_session, donation_id):
        # another request commits its claim between the status check and ours
        with Session(engine) as other:
            competing = other.get(Donation, donation_id)
            competing.status = "requested"
            other.add(competing)
            other.commit()
        return real_claim(db_session, donation_id)

    monkeypatch.setattr(lifecycle, "claim_donation", claim_after_competitor)

    resp = client.post("/api/requests", json=request_payload(donation["id"]), headers=bob["headers"])
    assert resp.status_code == 400
    assert resp.json()["code"] == "DONATION_ALREADY_REQUESTED"
    assert resp.json()["current_status"] == "requested"

    rows = session.exec(select(Request).where(Request.donation_id == donation["id"])).all()
    assert rows == []
