"""Tests for the chat REST endpoints."""
import pytest


def auth_header(tokens, participant):
    return {"Authorization": f"Bearer {tokens.issue(participant.id)}"}


class TestInitPrivateChat:
    """POST /chat/private"""

    def test_creates_then_reuses_room(self, api_client, tokens, alice, bob):
        response = api_client.post(
            "/chat/private", json={"target_user_id": bob.id}, headers=auth_header(tokens, alice)
        )
        assert response.status_code == 201
        body = response.json()
        assert body["created"] is True

        again = api_client.post(
            "/chat/private", json={"target_user_id": alice.id}, headers=auth_header(tokens, bob)
        )
        assert again.status_code == 200
        assert again.json() == {"room_id": body["room_id"], "created": False}

    def test_cannot_chat_with_self(self, api_client, tokens, alice):
        response = api_client.post(
            "/chat/private", json={"target_user_id": alice.id}, headers=auth_header(tokens, alice)
        )
        assert response.status_code == 400

    def test_unknown_target(self, api_client, tokens, alice):
        response = api_client.post(
            "/chat/private", json={"target_user_id": 9999}, headers=auth_header(tokens, alice)
        )
        assert response.status_code == 404

    def test_target_id_out_of_range(self, api_client, tokens, alice):
        response = api_client.post(
            "/chat/private", json={"target_user_id": 2**200}, headers=auth_header(tokens, alice)
        )
        assert response.status_code == 422

    def test_requires_token(self, api_client, bob):
        response = api_client.post("/chat/private", json={"target_user_id": bob.id})
        assert response.status_code == 401

    def test_rejects_bad_token(self, api_client, bob):
        response = api_client.post(
            "/chat/private",
            json={"target_user_id": bob.id},
            headers={"Authorization": "Bearer garbage"},
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Token is invalid"


class TestRoomList:
    """GET /chat/rooms"""

    def test_lists_rooms_with_last_message_and_unread(self, api_client, tokens, store, alice, bob, carol):
        with_bob, _ = store.get_or_create_private_room(alice.id, bob.id)
        with_carol, _ = store.get_or_create_private_room(carol.id, alice.id)
        store.insert_message(with_bob.id, bob.id, "first")
        store.insert_message(with_carol.id, carol.id, "latest")

        response = api_client.get("/chat/rooms", headers=auth_header(tokens, alice))
        assert response.status_code == 200
        rooms = response.json()["data"]

        assert [r["room_id"] for r in rooms] == [with_carol.id, with_bob.id]
        assert rooms[0]["other_user_id"] == carol.id
        assert rooms[0]["other_display_name"] == "carol"
        assert rooms[0]["last_message"] == "latest"
        assert rooms[0]["unread_count"] == 1

    def test_empty(self, api_client, tokens, alice):
        response = api_client.get("/chat/rooms", headers=auth_header(tokens, alice))
        assert response.json() == {"data": []}


class TestRoomMessages:
    """GET /chat/rooms/{room_id}/messages"""

    def test_paginates_oldest_first(self, api_client, tokens, store, alice, room):
        ids = [store.insert_message(room.id, alice.id, f"m{i}").id for i in range(5)]

        page = api_client.get(
            f"/chat/rooms/{room.id}/messages?limit=2", headers=auth_header(tokens, alice)
        ).json()
        assert [m["id"] for m in page["messages"]] == ids[3:]
        assert page["has_more"] is True

        older = api_client.get(
            f"/chat/rooms/{room.id}/messages?limit=10&before_id={ids[3]}",
            headers=auth_header(tokens, alice),
        ).json()
        assert [m["id"] for m in older["messages"]] == ids[:3]
        assert older["has_more"] is False

    def test_non_member_forbidden(self, api_client, tokens, carol, room):
        response = api_client.get(
            f"/chat/rooms/{room.id}/messages", headers=auth_header(tokens, carol)
        )
        assert response.status_code == 403

    def test_unknown_room(self, api_client, tokens, alice):
        response = api_client.get("/chat/rooms/777/messages", headers=auth_header(tokens, alice))
        assert response.status_code == 404

    def test_limit_bounds(self, api_client, tokens, alice, room):
        response = api_client.get(
            f"/chat/rooms/{room.id}/messages?limit=0", headers=auth_header(tokens, alice)
        )
        assert response.status_code == 422

    @pytest.mark.parametrize("path", [
        f"/chat/rooms/{2**200}/messages",
        "/chat/rooms/0/messages",
        "/chat/rooms/1/messages?before_id=" + str(2**200),
        f"/chat/rooms/{2**64}/status",
    ])
    def test_out_of_range_ids(self, api_client, tokens, alice, path):
        response = api_client.get(path, headers=auth_header(tokens, alice))
        assert response.status_code == 422


class TestRoomStatus:
    """GET /chat/rooms/{room_id}/status"""

    def test_reports_online_and_in_room(self, api_client, tokens, alice, bob, room):
        with api_client.websocket_connect(f"/ws?token={tokens.issue(bob.id)}") as ws:
            ws.receive_json()
            ws.send_json({"type": "join_room", "chat_room_id": room.id})
            ws.receive_json()

            response = api_client.get(
                f"/chat/rooms/{room.id}/status", headers=auth_header(tokens, alice)
            )

        statuses = {s["user_id"]: s for s in response.json()["statuses"]}
        assert statuses[bob.id] == {"user_id": bob.id, "is_online": True, "in_room": True}
        assert statuses[alice.id] == {"user_id": alice.id, "is_online": False, "in_room": False}


def test_health(api_client):
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
