"""
Tests for the WebSocket group stream.

Uses Starlette's TestClient as a context manager so HTTP calls and the socket
share one event loop.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from groupchat.main import app


@pytest.fixture
def client(override_dependencies):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def group_id(client):
    response = client.post(
        "/api/groups",
        json={"name": "Road Trip", "creator_id": "u1", "member_ids": ["u2", "u3"]},
    )
    return response.json()["group_id"]


class TestGroupStream:

    def test_initial_snapshot(self, client, group_id):
        with client.websocket_connect(f"/api/groups/{group_id}/stream?user_id=u2") as ws:
            frame = ws.receive_json()

        assert frame["type"] == "snapshot"
        assert frame["group"]["id"] == group_id
        assert frame["group"]["members"] == ["u1", "u2", "u3"]

    def test_message_delivered_and_censored_for_viewer(self, client, group_id):
        client.post("/api/users/u3/hidden-words", json={"word": "darn"})

        with client.websocket_connect(f"/api/groups/{group_id}/stream?user_id=u3") as ws:
            ws.receive_json()

            client.post(
                f"/api/groups/{group_id}/messages",
                json={"sender_id": "u2", "body": "darn traffic"},
            )
            frame = ws.receive_json()

        [message] = frame["group"]["messages"]
        assert message["message"] == "darn traffic"
        assert message["display"] == "**** traffic"

    def test_ping_pong(self, client, group_id):
        with client.websocket_connect(f"/api/groups/{group_id}/stream?user_id=u1") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})

            assert ws.receive_json() == {"type": "pong"}

    def test_group_deleted_ends_stream(self, client, group_id):
        with client.websocket_connect(f"/api/groups/{group_id}/stream?user_id=u2") as ws:
            ws.receive_json()

            client.request("DELETE", f"/api/groups/{group_id}", json={"requester_id": "u1"})

            assert ws.receive_json() == {"type": "deleted", "group_id": group_id}
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

    def test_removed_member_stream_ends(self, client, group_id):
        with client.websocket_connect(f"/api/groups/{group_id}/stream?user_id=u2") as ws:
            ws.receive_json()

            client.request("DELETE", f"/api/groups/{group_id}/members/u2", json={"requester_id": "u1"})

            assert ws.receive_json() == {"type": "removed", "group_id": group_id}

    def test_non_member_rejected(self, client, group_id):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/api/groups/{group_id}/stream?user_id=u9") as ws:
                ws.receive_json()

        assert exc_info.value.code == 1008

    def test_caller_mismatch_rejected(self, client, group_id, group_feed):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(
                f"/api/groups/{group_id}/stream?user_id=u2",
                headers={"X-User-ID": "u3"},
            ) as ws:
                ws.receive_json()

        assert exc_info.value.code == 1008
        assert group_feed.subscriber_count(group_id) == 0

    def test_matching_caller_accepted(self, client, group_id):
        with client.websocket_connect(
            f"/api/groups/{group_id}/stream?user_id=u2",
            headers={"X-User-ID": "u2"},
        ) as ws:
            frame = ws.receive_json()

        assert frame["type"] == "snapshot"

    def test_missing_group_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/api/groups/nope/stream?user_id=u1") as ws:
                ws.receive_json()

        assert exc_info.value.code == 1008

    def test_subscription_released_on_disconnect(self, client, group_id, group_feed):
        with client.websocket_connect(f"/api/groups/{group_id}/stream?user_id=u2") as ws:
            ws.receive_json()
            assert group_feed.subscriber_count(group_id) == 1

        assert group_feed.subscriber_count(group_id) == 0
