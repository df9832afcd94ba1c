# tests/integration/test_api_flow.py

import pytest

ORGANIZER = {"X-User-Id": "organizer-1", "X-User-Role": "organizer"}
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}


def _as(user_id):
    return {"X-User-Id": user_id}


@pytest.fixture
def event_id(db, make_event):
    event_id = make_event(capacity=1).id
    # Release the read transaction before the app's sessions write.
    db.commit()
    return event_id


def test_rsvp_flow(client, dispatcher, event_id):

    first = client.post(
        "/rsvps",
        json={"event_id": event_id, "status": "going"},
        headers=_as("user1"),
    )
    assert first.status_code == 201
    assert first.json()["waitlisted"] is False
    assert first.json()["ticket"]["check_in_status"] == "not_checked_in"
    first_rsvp_id = first.json()["rsvp"]["id"]

    second = client.post(
        "/rsvps",
        json={"event_id": event_id, "status": "going"},
        headers=_as("user2"),
    )
    assert second.status_code == 201
    assert second.json()["waitlisted"] is True
    assert second.json()["ticket"] is None
    assert second.json()["rsvp"]["waitlist_position"] == 1
    second_rsvp_id = second.json()["rsvp"]["id"]

    waitlist = client.get(f"/events/{event_id}/waitlist", headers=ORGANIZER)
    assert waitlist.status_code == 200
    assert [entry["rsvp_id"] for entry in waitlist.json()] == [second_rsvp_id]

    withdraw = client.delete(f"/rsvps/{first_rsvp_id}", headers=_as("user1"))
    assert withdraw.status_code == 204

    promoted = client.get(f"/rsvps/{second_rsvp_id}", headers=_as("user2"))
    assert promoted.status_code == 200
    assert promoted.json()["is_waitlisted"] is False
    assert promoted.json()["waitlist_position"] is None

    tickets = client.get("/tickets", headers=_as("user2"))
    assert tickets.status_code == 200
    assert len(tickets.json()) == 1
    qr_code = tickets.json()[0]["qr_code"]

    check_in = client.post(
        "/tickets/check-in-qr",
        json={"qr_code": qr_code, "event_id": event_id},
        headers=ORGANIZER,
    )
    assert check_in.status_code == 200
    assert check_in.json()["success"] is True
    assert check_in.json()["stats"]["check_in_rate"] == 100.0

    again = client.post(
        "/tickets/check-in-qr",
        json={"qr_code": qr_code, "event_id": event_id},
        headers=ORGANIZER,
    )
    assert again.status_code == 400
    assert again.json()["reason"] == "already checked in"
    assert again.json()["checked_in_at"] is not None

    assert dispatcher.sent[0][1] == "admission"
    assert (second_rsvp_id, "promotion") in dispatcher.sent


def test_missing_identity_is_rejected(client, event_id):
    response = client.post("/rsvps", json={"event_id": event_id})

    assert response.status_code == 401


def test_unknown_event_is_not_found(client):
    response = client.post(
        "/rsvps",
        json={"event_id": "missing", "status": "going"},
        headers=_as("user1"),
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Event not found"


def test_duplicate_rsvp_is_a_conflict(client, event_id):
    payload = {"event_id": event_id, "status": "maybe"}

    assert client.post("/rsvps", json=payload, headers=_as("user1")).status_code == 201
    assert client.post("/rsvps", json=payload, headers=_as("user1")).status_code == 409


def test_negative_plus_ones_fail_validation(client, event_id):
    response = client.post(
        "/rsvps",
        json={"event_id": event_id, "status": "going", "plus_one_count": -1},
        headers=_as("user1"),
    )

    assert response.status_code == 422


def test_attendee_cannot_read_waitlist(client, event_id):
    response = client.get(f"/events/{event_id}/waitlist", headers=_as("user1"))

    assert response.status_code == 403


def test_check_in_by_ticket_id(client, event_id):
    submitted = client.post(
        "/rsvps",
        json={"event_id": event_id, "status": "going"},
        headers=_as("user1"),
    )
    ticket_id = submitted.json()["ticket"]["id"]

    first = client.put(f"/tickets/{ticket_id}/check-in", headers=ORGANIZER)
    assert first.status_code == 200
    assert first.json()["ticket"]["check_in_status"] == "checked_in"
    assert first.json()["stats"]["checked_in"] == 1

    second = client.put(f"/tickets/{ticket_id}/check-in", headers=ORGANIZER)
    assert second.status_code == 409
    assert second.json()["detail"]["code"] == "ALREADY_CHECKED_IN"


def test_malformed_qr_is_a_bad_request(client, event_id):
    response = client.post(
        "/tickets/check-in-qr",
        json={"qr_code": "not-valid-base64!!", "event_id": event_id},
        headers=ORGANIZER,
    )

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["reason"] == "invalid format"


def test_admin_review_and_stats(client, event_id):
    submitted = client.post(
        "/rsvps",
        json={"event_id": event_id, "status": "going"},
        headers=_as("user1"),
    )
    rsvp_id = submitted.json()["rsvp"]["id"]

    forbidden = client.patch(
        f"/admin/rsvps/{rsvp_id}",
        json={"action": "approve"},
        headers=_as("user1"),
    )
    assert forbidden.status_code == 403

    approved = client.patch(
        f"/admin/rsvps/{rsvp_id}",
        json={"action": "approve"},
        headers=ADMIN,
    )
    assert approved.status_code == 200
    assert approved.json()["approval_status"] == "approved"

    stats = client.get(f"/events/{event_id}/rsvp-stats", headers=ORGANIZER)
    assert stats.status_code == 200
    assert stats.json()["breakdown"] == {"going": 1, "maybe": 0, "not_going": 0}
    assert stats.json()["available_seats"] == 0
