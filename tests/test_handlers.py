import jwt
import pytest

from starlette.websockets import WebSocketDisconnect

from chat_serv.config import settings

from tests.helpers import auth_header, make_token


API = "/api/v1/chats"


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def create_room(client, user_id=1, **body):
    response = client.post(f"{API}/createChatRoom", json={"name": "Campfire", **body}, headers=auth_header(user_id))
    assert response.status_code == 201, response.json()
    return response.json()["data"]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "ok"


def test_missing_token_is_unauthorized(client):
    response = client.get(f"{API}/unread-counts")

    assert response.status_code == 401
    assert response.json() == {
        "statusCode": 401,
        "data": {},
        "message": "Unauthorized: no token provided",
        "success": False
    }


@pytest.mark.parametrize("token", [
    "not-a-jwt",
    jwt.encode({"id": 1}, "some-other-secret-that-is-long-enough", algorithm="HS256"),
    jwt.encode({"id": 1, "exp": 1}, settings.jwt_access_secret, algorithm="HS256"),
])
def test_invalid_token_is_unauthorized(client, token):
    response = client.get(f"{API}/unread-counts", headers=bearer(token))

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_sub_claim_identifies_user(client):
    create_room(client, user_id=3)

    token = jwt.encode({"sub": "3"}, settings.jwt_access_secret, algorithm="HS256")

    response = client.get(f"{API}/unread-counts", headers=bearer(token))

    assert response.status_code == 200
    assert len(response.json()["data"]) == 1


def test_create_room_uses_camel_case_envelope(client):
    response = client.post(
        f"{API}/createChatRoom",
        json={"name": "Campfire", "isInviteOnly": True, "state": "CO"},
        headers=auth_header(1)
    )

    body = response.json()
    assert response.status_code == 201
    assert body["statusCode"] == 201
    assert body["success"] is True
    assert body["message"] == "Chat room created successfully"
    assert body["data"]["isInviteOnly"] is True
    assert body["data"]["users"][0]["userId"] == 1
    assert body["data"]["users"][0]["role"] == "OWNER"


def test_validation_errors_use_envelope(client):
    short = client.post(f"{API}/createChatRoom", json={"name": "ab"}, headers=auth_header(1))
    bad_id = client.get(f"{API}/messages/abc", headers=auth_header(1))

    assert short.status_code == 400
    assert short.json()["success"] is False
    assert bad_id.status_code == 400
    assert bad_id.json()["statusCode"] == 400


def test_join_and_conflict(client):
    room = create_room(client)

    joined = client.post(f"{API}/join/{room['id']}", headers=auth_header(2))
    again = client.post(f"{API}/join/{room['id']}", headers=auth_header(2))
    missing = client.post(f"{API}/join/999", headers=auth_header(2))

    assert joined.status_code == 201
    assert again.status_code == 409
    assert missing.status_code == 404


def test_join_request_flow(client):
    room = create_room(client, isInviteOnly=True)

    requested = client.post(f"{API}/join/{room['id']}", headers=auth_header(2))
    listed = client.get(f"{API}/{room['id']}/join-requests", headers=auth_header(1))
    handled = client.post(
        f"{API}/{room['id']}/join-requests/2",
        json={"action": "approve"},
        headers=auth_header(1)
    )

    assert requested.status_code == 200
    assert requested.json()["data"]["status"] == "PENDING"
    assert [r["userId"] for r in listed.json()["data"]] == [2]
    assert handled.status_code == 200
    assert handled.json()["data"]["status"] == "APPROVED"


def test_message_routes(client):
    room = create_room(client)
    client.post(f"{API}/join/{room['id']}", headers=auth_header(2))

    sent = client.post(
        f"{API}/send",
        json={"chatRoomId": room["id"], "content": "hi all", "attachments": [{"fileKey": "uploads/x.png"}]},
        headers=auth_header(2)
    )
    assert sent.status_code == 201
    message_id = sent.json()["data"]["id"]

    reply = client.post(f"{API}/messages/reply/{message_id}", json={"content": "hey"}, headers=auth_header(1))
    assert reply.status_code == 201
    assert reply.json()["data"]["parentMessage"]["id"] == message_id

    edited = client.put(f"{API}/messages/{message_id}/edit", json={"newContent": "hi everyone"}, headers=auth_header(2))
    assert edited.json()["data"]["isEdited"] is True

    listed = client.get(f"{API}/messages/{room['id']}", params={"pageSize": 1}, headers=auth_header(1))
    pagination = listed.json()["data"]["pagination"]
    assert pagination["hasMore"] is True
    assert pagination["totalMessages"] == 2
    assert pagination["nextCursor"] == reply.json()["data"]["id"]

    deleted = client.delete(f"{API}/messages/{message_id}", headers=auth_header(1))
    assert deleted.status_code == 200
    assert deleted.json()["data"] == {}


def test_outsider_is_forbidden(client):
    room = create_room(client)

    response = client.get(f"{API}/getChatRoomDetail/{room['id']}", headers=auth_header(5))

    assert response.status_code == 403
    assert response.json()["message"] == "You are not a member of this chat room"


def test_room_list_routes(client):
    room = create_room(client)

    mine = client.get(f"{API}/getUserChatRooms", headers=auth_header(1))
    directory = client.get(f"{API}/chatRooms", params={"pageSize": 5}, headers=auth_header(2))
    nothing = client.get(f"{API}/getUserChatRooms", headers=auth_header(2))
    zero_page = client.get(f"{API}/chatRooms", params={"pageSize": 0}, headers=auth_header(2))

    assert mine.json()["data"]["data"][0]["lastMessageSnippet"] == "No messages yet"
    assert directory.json()["data"]["chatRooms"][0]["memberCount"] == 1
    assert directory.json()["data"]["pagination"]["pageSize"] == 5
    assert nothing.status_code == 404
    assert zero_page.status_code == 400

    detail = client.get(f"{API}/getChatRoomDetail/{room['id']}", headers=auth_header(1))
    assert detail.json()["data"]["currentUserRole"] == "OWNER"


def test_membership_routes(client):
    room = create_room(client)
    for user_id in (2, 3):
        client.post(f"{API}/join/{room['id']}", headers=auth_header(user_id))

    removed = client.delete(f"{API}/removeUser/{room['id']}/3", headers=auth_header(1))
    owner_leaves = client.delete(f"{API}/{room['id']}/leave", headers=auth_header(1))
    transferred = client.put(
        f"{API}/{room['id']}/transfer-ownership",
        json={"newOwnerId": 2},
        headers=auth_header(1)
    )
    left = client.delete(f"{API}/{room['id']}/leave", headers=auth_header(1))
    read = client.put(f"{API}/updateLastRead/{room['id']}", headers=auth_header(2))

    assert removed.status_code == 200
    assert owner_leaves.status_code == 403
    assert transferred.status_code == 200
    assert left.status_code == 200
    assert read.json()["data"]["lastReadAt"] is not None


def test_upload_url(client, files):
    ok = client.post(
        "/api/v1/uploads/generate-upload-url",
        json={"fileType": "image/png", "fileName": "avatar.png"},
        headers=auth_header(1)
    )
    no_type = client.post("/api/v1/uploads/generate-upload-url", json={}, headers=auth_header(1))
    empty_folder = client.post(
        "/api/v1/uploads/generate-upload-url",
        json={"fileType": "image/png", "folder": ""},
        headers=auth_header(1)
    )

    data = ok.json()["data"]
    assert data["fileKey"].startswith("uploads/chatrooms/")
    assert data["fileKey"].endswith(".png")
    assert data["fileKey"] in data["uploadUrl"]
    assert no_type.status_code == 400
    assert empty_folder.status_code == 400
    assert len(files.put_calls) == 1


def test_unexpected_error_is_generic_500(client, application, monkeypatch):
    async def explode(user_id):
        raise RuntimeError("database is on fire")

    monkeypatch.setattr(application.chat_service, "get_unread_counts", explode)

    response = client.get(f"{API}/unread-counts", headers=auth_header(1))

    assert response.status_code == 500
    assert response.json()["message"] == "Internal server error"
    assert "fire" not in response.text


def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/chat?token=nope") as websocket:
            websocket.receive_json()

    assert exc.value.code == 4401


def test_websocket_commands(client):
    room = create_room(client)

    with client.websocket_connect(f"/ws/chat?token={make_token(1)}") as websocket:
        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"event": "pong", "data": {}}

        websocket.send_json({"type": "joinChat", "chatRoomId": room["id"]})
        assert websocket.receive_json() == {"event": "joinedChat", "data": {"chatRoomId": room["id"]}}

        websocket.send_json({"type": "joinChat", "chatRoomId": 999})
        assert websocket.receive_json()["event"] == "error"

        websocket.send_text("garbage")
        assert websocket.receive_json()["data"]["message"] == "Unknown command"
