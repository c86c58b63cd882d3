# mypy: ignore-errors
"""Tests for user accounts, the composite profile and the social graph."""

from fastapi import status

from tests.conftest import auth_headers

PROFILE_BODY = {
    "user": {"headline": "Cardiologist", "specialization": "Cardiology", "current_role": "ignored"},
    "profile": {"bio": "Interventional cardiology", "languages": ["English", "Spanish"]},
    "experiences": [
        {"title": "Resident", "start_date": "2014-07-01", "end_date": "2017-06-30"},
        {"title": "Attending Cardiologist", "start_date": "2019-07-01", "is_current": True},
    ],
    "education": [{"degree_type": "MD", "institution_name": "State Medical School", "graduation_date": "2014-05-20"}],
    "skills": ["Echocardiography", {"name": "PCI", "category": "Procedures"}],
}


def test_read_and_update_me(client, auth_token, test_user) -> None:
    response = client.get("/api/v1/users/me", headers=auth_token)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["email"] == test_user.email

    response = client.put(
        "/api/v1/users/me",
        json={"headline": "Hospitalist", "location": "Boston"},
        headers=auth_token,
    )
    data = response.json()["data"]
    assert response.json()["message"] == "Profile updated successfully"
    assert data["headline"] == "Hospitalist"
    assert data["location"] == "Boston"
    assert data["first_name"] == "Alice"


def test_public_user_view_hides_email(client, auth_token, other_user) -> None:
    response = client.get(f"/api/v1/users/{other_user.id}", headers=auth_token)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["data"]["id"] == other_user.id
    assert "email" not in response.json()["data"]


def test_complete_profile_create_then_conflict(client, auth_token) -> None:
    response = client.post("/api/v1/users/me/profile/complete", json=PROFILE_BODY, headers=auth_token)

    assert response.status_code == status.HTTP_201_CREATED
    created = response.json()["data"]
    assert created["completion_percentage"] > 0
    data = client.get("/api/v1/users/me/profile/complete", headers=auth_token).json()["data"]
    assert data["profile"]["id"] == created["profile_id"]
    assert data["user"]["headline"] == "Cardiologist"
    assert data["user"]["current_role"] == "Attending Cardiologist"
    assert data["user"]["medical_school_graduation_year"] == 2014
    assert data["profile"]["languages"] == ["English", "Spanish"]
    assert len(data["professional"]["experiences"]) == 2
    assert sorted(skill["name"] for skill in data["professional"]["skills"]) == ["echocardiography", "pci"]

    response = client.post("/api/v1/users/me/profile/complete", json=PROFILE_BODY, headers=auth_token)
    assert response.status_code == status.HTTP_409_CONFLICT
    assert "PUT /api/v1/users/me/profile/complete" in response.json()["message"]


def test_complete_profile_update_reconciles_collections(client, auth_token) -> None:
    client.post("/api/v1/users/me/profile/complete", json=PROFILE_BODY, headers=auth_token)
    created = client.get("/api/v1/users/me/profile/complete", headers=auth_token).json()["data"]
    resident = next(e for e in created["professional"]["experiences"] if e["title"] == "Resident")

    response = client.put(
        "/api/v1/users/me/profile/complete",
        json={"experiences": [{"id": resident["id"], "title": "Chief Resident", "start_date": "2014-07-01", "end_date": "2017-06-30"}]},
        headers=auth_token,
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()["data"]
    assert [e["title"] for e in data["professional"]["experiences"]] == ["Chief Resident"]
    assert data["user"]["current_role"] is None
    assert len(data["professional"]["education"]) == 1


def test_complete_profile_rejects_foreign_record_ids(client, test_user, other_user) -> None:
    client.post("/api/v1/users/me/profile/complete", json=PROFILE_BODY, headers=auth_headers(other_user))
    created = client.get("/api/v1/users/me/profile/complete", headers=auth_headers(other_user)).json()["data"]
    foreign_id = created["professional"]["experiences"][0]["id"]

    response = client.put(
        "/api/v1/users/me/profile/complete",
        json={"experiences": [{"id": foreign_id, "title": "Stolen", "start_date": "2020-01-01"}]},
        headers=auth_headers(test_user),
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert "does not belong to you" in response.json()["message"]


def test_complete_profile_visible_to_others_without_private_fields(client, test_user, other_user) -> None:
    client.post("/api/v1/users/me/profile/complete", json=PROFILE_BODY, headers=auth_headers(test_user))

    response = client.get(f"/api/v1/users/{test_user.id}/profile/complete", headers=auth_headers(other_user))

    assert response.status_code == status.HTTP_200_OK
    assert "email" not in response.json()["data"]["user"]
    mine = client.get("/api/v1/users/me/profile/complete", headers=auth_headers(test_user)).json()["data"]
    assert mine["user"]["email"] == test_user.email


def test_connection_request_accept_and_remove(client, test_user, other_user) -> None:
    response = client.post(f"/api/v1/users/{other_user.id}/connect", headers=auth_headers(test_user))
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["data"]["status"] == "pending"

    incoming = client.get("/api/v1/users/me/connection-requests/incoming", headers=auth_headers(other_user))
    assert [r["requester"]["id"] for r in incoming.json()["data"]] == [test_user.id]

    again = client.post(f"/api/v1/users/{other_user.id}/connect", headers=auth_headers(test_user))
    assert again.status_code == status.HTTP_409_CONFLICT

    response = client.post(f"/api/v1/users/{test_user.id}/connect/accept", headers=auth_headers(other_user))
    assert response.json()["data"]["status"] == "accepted"
    connections = client.get("/api/v1/users/me/connections", headers=auth_headers(test_user)).json()["data"]
    assert [c["id"] for c in connections] == [other_user.id]

    response = client.delete(f"/api/v1/users/{other_user.id}/connect", headers=auth_headers(test_user))
    assert response.status_code == status.HTTP_200_OK
    assert client.get("/api/v1/users/me/connections", headers=auth_headers(other_user)).json()["data"] == []
    response = client.delete(f"/api/v1/users/{other_user.id}/connect", headers=auth_headers(test_user))
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_mutual_request_accepts(client, test_user, other_user) -> None:
    client.post(f"/api/v1/users/{other_user.id}/connect", headers=auth_headers(test_user))

    response = client.post(f"/api/v1/users/{test_user.id}/connect", headers=auth_headers(other_user))

    assert response.json()["data"]["status"] == "accepted"
    assert response.json()["message"] == "Connection accepted"


def test_decline_connection(client, test_user, other_user) -> None:
    client.post(f"/api/v1/users/{other_user.id}/connect", headers=auth_headers(test_user))

    response = client.post(f"/api/v1/users/{test_user.id}/connect/decline", headers=auth_headers(other_user))
    assert response.status_code == status.HTTP_200_OK
    assert client.get("/api/v1/users/me/connection-requests/incoming", headers=auth_headers(other_user)).json()["data"] == []

    response = client.post(f"/api/v1/users/{test_user.id}/connect/decline", headers=auth_headers(other_user))
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_connecting_to_self_or_missing_user(client, test_user, auth_token) -> None:
    assert client.post(f"/api/v1/users/{test_user.id}/connect", headers=auth_token).status_code == 400
    assert client.post("/api/v1/users/999999/connect", headers=auth_token).status_code == 404


def test_follow_is_idempotent(client, other_user, auth_token) -> None:
    first = client.post(f"/api/v1/users/{other_user.id}/follow", headers=auth_token)
    second = client.post(f"/api/v1/users/{other_user.id}/follow", headers=auth_token)

    assert first.json()["message"] == "Now following"
    assert second.json()["message"] == "Already following"
    response = client.delete(f"/api/v1/users/{other_user.id}/follow", headers=auth_token)
    assert response.json()["data"] == {"following": False}


def test_block_hides_user_and_drops_relationships(client, test_user, other_user, connect_users) -> None:
    connect_users(test_user, other_user)

    response = client.post(f"/api/v1/users/{other_user.id}/block", headers=auth_headers(test_user))
    assert response.json()["data"] == {"blocked": True}
    assert client.post(f"/api/v1/users/{other_user.id}/block", headers=auth_headers(test_user)).json()["message"] == "User already blocked"

    assert client.get("/api/v1/users/me/connections", headers=auth_headers(test_user)).json()["data"] == []
    assert client.get(f"/api/v1/users/{test_user.id}", headers=auth_headers(other_user)).status_code == 404
    assert client.get(f"/api/v1/users/{other_user.id}/status", headers=auth_headers(test_user)).status_code == 404
    assert client.post(f"/api/v1/users/{test_user.id}/connect", headers=auth_headers(other_user)).status_code == 403
    assert client.post(f"/api/v1/users/{test_user.id}/follow", headers=auth_headers(other_user)).status_code == 403

    blocked = client.get("/api/v1/users/me/blocks", headers=auth_headers(test_user)).json()["data"]
    assert [u["id"] for u in blocked] == [other_user.id]

    response = client.delete(f"/api/v1/users/{other_user.id}/block", headers=auth_headers(test_user))
    assert response.json()["data"] == {"blocked": False}
    assert client.get(f"/api/v1/users/{test_user.id}", headers=auth_headers(other_user)).status_code == 200
    assert client.delete(f"/api/v1/users/{other_user.id}/block", headers=auth_headers(test_user)).status_code == 404


def test_user_status(client, db_session, auth_token, other_user) -> None:
    other_user.is_online = True
    db_session.commit()

    response = client.get(f"/api/v1/users/{other_user.id}/status", headers=auth_token)

    assert response.json()["data"] == {"user_id": other_user.id, "is_online": True, "last_seen_at": None}
