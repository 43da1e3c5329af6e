"""
Tests for the chatroom endpoints.

Tests cover:
- Authentication on every route
- Personal chatrooms: order independence, participation, validation
- Group chatrooms: membership
- Listing and fetching
"""

from datetime import timedelta

from conftest import make_token

PREFIX = "/api/chat"


class TestAuthentication:

    def test_missing_token(self, client):
        response = client.get(f"{PREFIX}/chatrooms")
        assert response.status_code == 401

    def test_expired_token(self, client):
        headers = {"Authorization": f"Bearer {make_token('5', expires_in=timedelta(seconds=-60))}"}
        response = client.get(f"{PREFIX}/chatrooms", headers=headers)
        assert response.status_code == 401

    def test_refresh_token_rejected(self, client):
        headers = {"Authorization": f"Bearer {make_token('5', type='refresh')}"}
        response = client.get(f"{PREFIX}/chatrooms", headers=headers)
        assert response.status_code == 401


class TestPersonalChatrooms:

    def test_open_in_any_order(self, client, headers_5, headers_9):
        first = client.post(f"{PREFIX}/chatrooms/personal", json={"participantIds": ["9", "5"]}, headers=headers_5)
        second = client.post(f"{PREFIX}/chatrooms/personal", json={"participantIds": ["5", "9"]}, headers=headers_9)

        assert first.status_code == 200
        assert first.json()["id"] == "5_9"
        assert first.json()["kind"] == "PERSONAL"
        assert first.json()["participantIds"] == ["5", "9"]
        assert second.json()["id"] == "5_9"
        assert second.json()["createdAt"] == first.json()["createdAt"]

    def test_cannot_open_for_others(self, client, headers_40):
        response = client.post(f"{PREFIX}/chatrooms/personal", json={"participantIds": ["5", "9"]}, headers=headers_40)
        assert response.status_code == 403

    def test_unknown_user(self, client, headers_5):
        response = client.post(f"{PREFIX}/chatrooms/personal", json={"participantIds": ["5", "777"]}, headers=headers_5)
        assert response.status_code == 404

    def test_wrong_participant_count(self, client, headers_5):
        response = client.post(
            f"{PREFIX}/chatrooms/personal",
            json={"participantIds": ["5", "9", "12"]},
            headers=headers_5,
        )
        assert response.status_code == 400

    def test_empty_participants(self, client, headers_5):
        response = client.post(f"{PREFIX}/chatrooms/personal", json={"participantIds": []}, headers=headers_5)
        assert response.status_code == 422


class TestGroupChatrooms:

    def test_member_opens_group_room(self, client, headers_9):
        response = client.post(f"{PREFIX}/chatrooms/group", json={"groupId": "17"}, headers=headers_9)

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == "group_17"
        assert body["groupId"] == "17"
        assert body["participantIds"] == ["5", "9", "12"]

    def test_non_member_forbidden(self, client, headers_5):
        response = client.post(f"{PREFIX}/chatrooms/group", json={"groupId": "30"}, headers=headers_5)
        assert response.status_code == 403

    def test_unknown_group(self, client, headers_5):
        response = client.post(f"{PREFIX}/chatrooms/group", json={"groupId": "999"}, headers=headers_5)
        assert response.status_code == 404


class TestListing:

    def test_list_and_get(self, client, headers_5, headers_40):
        client.post(f"{PREFIX}/chatrooms/personal", json={"participantIds": ["5", "9"]}, headers=headers_5)
        client.post(f"{PREFIX}/chatrooms/group", json={"groupId": "17"}, headers=headers_5)

        listed = client.get(f"{PREFIX}/chatrooms", headers=headers_5)
        assert listed.status_code == 200
        assert {room["id"] for room in listed.json()} == {"5_9", "group_17"}

        assert client.get(f"{PREFIX}/chatrooms/5_9", headers=headers_5).status_code == 200
        assert client.get(f"{PREFIX}/chatrooms/5_9", headers=headers_40).status_code == 403
        assert client.get(f"{PREFIX}/chatrooms/1_2", headers=headers_5).status_code == 404
