from decimal import Decimal

import pytest

from dealership.models.models import Role
from dealership.models.schemas import MessageClaim
from dealership.utils.auth import decode_token
from dealership.websocket import store

KEY = "user_7_vehicle_3_admin_1"


def send(body="Hello", key=KEY, sender_id=7, receiver_id=1, role=Role.USER):
    return store.append(
        MessageClaim(conversation_key=key, sender_id=sender_id, receiver_id=receiver_id, body=body),
        role,
    )


@pytest.fixture
def admin(make_user):
    return make_user(1, Role.ADMIN, "Showroom")


@pytest.fixture
def buyer(make_user):
    return make_user(7, name="Ayse")


class TestAuth:
    def test_register_then_login(self, client):
        response = client.post("/api/auth/register", json={
            "username": "ayse", "name": "Ayse Yilmaz", "password": "secret123",
        })
        assert response.status_code == 201
        assert response.json()["role"] == "user"

        response = client.post("/api/auth/login", json={"username": "ayse", "password": "secret123"})
        assert response.status_code == 200
        token = response.json()["access_token"]
        claims = decode_token(token)
        assert claims.role == Role.USER
        assert claims.display_name == "Ayse Yilmaz"

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["username"] == "ayse"

    def test_duplicate_username_rejected(self, client, buyer):
        response = client.post("/api/auth/register", json={
            "username": buyer.username, "name": "Someone", "password": "secret123",
        })
        assert response.status_code == 400

    def test_short_password_rejected(self, client):
        response = client.post("/api/auth/register", json={
            "username": "shorty", "name": "Shorty", "password": "123",
        })
        assert response.status_code == 422

    def test_wrong_password(self, client, buyer):
        response = client.post("/api/auth/login", json={"username": buyer.username, "password": "nope"})
        assert response.status_code == 401

    def test_missing_and_invalid_tokens(self, client):
        assert client.get("/api/auth/me").status_code == 401
        assert client.get("/api/auth/me", headers={"Authorization": "Token abc"}).status_code == 401
        assert client.get("/api/auth/me", headers={"Authorization": "Bearer abc"}).status_code == 403

    def test_admin_contact(self, client, admin, buyer, make_user, auth_header):
        make_user(5, Role.ADMIN, "Second Admin")
        response = client.get("/api/admin-user", headers=auth_header(buyer))
        assert response.status_code == 200
        assert response.json() == {"id": 1, "name": "Showroom"}

    def test_admin_contact_without_admin(self, client, buyer, auth_header):
        assert client.get("/api/admin-user", headers=auth_header(buyer)).status_code == 404


class TestVehicles:
    payload = {"brand": "Fiat", "model": "Egea", "year": 2021, "price": "690000"}

    def test_listing_is_public(self, client, make_vehicle):
        make_vehicle(3)
        response = client.get("/api/vehicles")
        assert response.status_code == 200
        assert [v["id"] for v in response.json()] == [3]
        assert client.get("/api/vehicles/3").json()["brand"] == "Toyota"
        assert client.get("/api/vehicles/99").status_code == 404

    def test_only_admin_can_manage(self, client, admin, buyer, auth_header):
        assert client.post("/api/vehicles", json=self.payload, headers=auth_header(buyer)).status_code == 403

        response = client.post("/api/vehicles", json=self.payload, headers=auth_header(admin))
        assert response.status_code == 201
        vehicle_id = response.json()["id"]
        assert Decimal(response.json()["price"]) == Decimal("690000")

        response = client.put(f"/api/vehicles/{vehicle_id}", json={"status": "sold"}, headers=auth_header(admin))
        assert response.json()["status"] == "sold"
        assert client.get("/api/vehicles?vehicle_status=available").json() == []

        assert client.delete(f"/api/vehicles/{vehicle_id}", headers=auth_header(buyer)).status_code == 403
        assert client.delete(f"/api/vehicles/{vehicle_id}", headers=auth_header(admin)).status_code == 200
        assert client.get(f"/api/vehicles/{vehicle_id}").status_code == 404

    def test_deleting_listing_removes_its_conversations(
        self, client, admin, buyer, make_vehicle, auth_header, token_for, foreign_keys
    ):
        make_vehicle(3)
        make_vehicle(4, "Renault", "Clio")
        send("Is it still available?")
        send("Yes", sender_id=1, receiver_id=7, role=Role.ADMIN)
        other_key = "user_7_vehicle_4_admin_1"
        send(key=other_key)

        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "join_room", "data": {"conversationKey": KEY, "token": token_for(buyer)}})
            assert len(ws.receive_json()["data"]) == 2

            assert client.delete("/api/vehicles/3", headers=auth_header(admin)).status_code == 200
            assert ws.receive_json() == {"type": "conversation_deleted", "data": KEY}

        assert store.history(KEY) == []
        [summary] = client.get("/api/conversations", headers=auth_header(admin)).json()
        assert summary["conversation_key"] == other_key
        # Conversations about the remaining listing still accept messages
        assert send("Still here", key=other_key).listing_id == 4

    def test_invalid_year_rejected(self, client, admin, auth_header):
        payload = dict(self.payload, year=1800)
        assert client.post("/api/vehicles", json=payload, headers=auth_header(admin)).status_code == 422


class TestPersonnel:
    def test_admin_only(self, client, admin, buyer, auth_header):
        assert client.get("/api/personnel", headers=auth_header(buyer)).status_code == 403

        response = client.post(
            "/api/personnel", json={"name": "Kemal", "position": "Sales"}, headers=auth_header(admin)
        )
        assert response.status_code == 201
        person_id = response.json()["id"]

        response = client.put(
            f"/api/personnel/{person_id}", json={"position": "Sales Lead"}, headers=auth_header(admin)
        )
        assert response.json()["position"] == "Sales Lead"
        assert [p["name"] for p in client.get("/api/personnel", headers=auth_header(admin)).json()] == ["Kemal"]

        assert client.delete(f"/api/personnel/{person_id}", headers=auth_header(admin)).status_code == 200
        assert client.delete(f"/api/personnel/{person_id}", headers=auth_header(admin)).status_code == 404


class TestConversations:
    def test_lists_are_role_scoped(self, client, admin, buyer, make_vehicle, auth_header):
        make_vehicle(3, "Toyota", "Corolla")
        send("Is it available?")

        response = client.get("/api/conversations", headers=auth_header(admin))
        assert response.status_code == 200
        [summary] = response.json()
        assert summary["conversation_key"] == KEY
        assert summary["counterpart_name"] == "Ayse"
        assert summary["vehicle_model"] == "Corolla"
        assert summary["unread_count"] == 1

        [summary] = client.get("/api/user-conversations", headers=auth_header(buyer)).json()
        assert summary["counterpart_name"] == "Showroom"
        assert summary["unread_count"] == 0

        assert client.get("/api/conversations", headers=auth_header(buyer)).status_code == 403
        assert client.get("/api/user-conversations", headers=auth_header(admin)).status_code == 403

    def test_unread_counts(self, client, admin, buyer, auth_header):
        send()
        send()
        send(key="user_8_vehicle_4_admin_1", sender_id=8)
        send("Yes", sender_id=1, receiver_id=7, role=Role.ADMIN)

        response = client.get("/api/notifications/unread-count", headers=auth_header(admin))
        assert response.json() == {"unreadCount": 2}
        response = client.get("/api/user-notifications/unread-count", headers=auth_header(buyer))
        assert response.json() == {"unreadCount": 1}

    def test_delete_message_permissions(self, client, admin, buyer, make_user, auth_header):
        stranger = make_user(8)
        other_admin = make_user(2, Role.ADMIN)
        mine = send()

        assert client.delete(f"/api/messages/{mine.id}", headers=auth_header(stranger)).status_code == 403
        assert client.delete(f"/api/messages/{mine.id}", headers=auth_header(other_admin)).status_code == 403
        assert client.delete(f"/api/messages/{mine.id}", headers=auth_header(buyer)).status_code == 200
        assert client.delete(f"/api/messages/{mine.id}", headers=auth_header(buyer)).status_code == 404

        theirs = send()
        assert client.delete(f"/api/messages/{theirs.id}", headers=auth_header(admin)).status_code == 200

    def test_delete_message_is_broadcast_to_room(self, client, admin, buyer, auth_header, token_for):
        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "join_room", "data": {"conversationKey": KEY, "token": token_for(buyer)}})
            ws.receive_json()
            message = send()

            assert client.delete(f"/api/messages/{message.id}", headers=auth_header(admin)).status_code == 200
            assert ws.receive_json() == {"type": "message_deleted", "data": {"messageId": message.id}}

    def test_admin_deletes_own_conversation(self, client, admin, buyer, make_user, auth_header, token_for):
        other_admin = make_user(2, Role.ADMIN)
        send()
        send("Yes", sender_id=1, receiver_id=7, role=Role.ADMIN)

        assert client.delete(f"/api/conversations/{KEY}", headers=auth_header(other_admin)).status_code == 403
        assert client.delete(f"/api/conversations/{KEY}", headers=auth_header(buyer)).status_code == 403

        with client.websocket_connect("/ws/chat") as ws:
            ws.send_json({"type": "join_room", "data": {"conversationKey": KEY, "token": token_for(buyer)}})
            assert len(ws.receive_json()["data"]) == 2

            response = client.delete(f"/api/conversations/{KEY}", headers=auth_header(admin))
            assert response.json()["deleted"] == 2
            assert ws.receive_json() == {"type": "conversation_deleted", "data": KEY}

        assert store.history(KEY) == []
        # Repeating the delete is harmless
        response = client.delete(f"/api/conversations/{KEY}", headers=auth_header(admin))
        assert response.status_code == 200
        assert response.json()["deleted"] == 0

    def test_buyer_deletes_only_own_conversation(self, client, admin, buyer, make_user, auth_header):
        make_user(8)
        foreign = "user_8_vehicle_3_admin_1"
        send(key=foreign, sender_id=8)
        send()

        assert client.delete(f"/api/user/conversations/{foreign}", headers=auth_header(buyer)).status_code == 403
        assert client.delete(f"/api/user/conversations/{KEY}", headers=auth_header(buyer)).json()["deleted"] == 1
        assert len(store.history(foreign)) == 1

    def test_malformed_key_rejected(self, client, admin, auth_header):
        response = client.delete("/api/conversations/not-a-key", headers=auth_header(admin))
        assert response.status_code == 400


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
