"""Tests for the HTTP history and conversation-list endpoints."""
import pytest

from conftest import run

from forum_realtime.database import utcnow


@pytest.fixture
def auth(token):
    def _auth(user_id):
        return {"Authorization": f"Bearer {token(user_id)}"}
    return _auth


def _post_global(services, sender, count):
    for i in range(count):
        run(services.store.create_global_message(sender, f"g{i}", []))


def _private(services, sender, peer, text, attachments=()):
    conversation = run(services.store.find_or_create_conversation((sender, peer)))
    return run(services.store.append_message(conversation.id, sender, text, list(attachments)))


class TestAuthRequired:
    @pytest.mark.parametrize("path", [
        "/chat/global/history",
        "/chat/global/online-count",
        "/chat/private/bob/history",
        "/chat/conversations",
    ])
    def test_missing_token_is_401(self, api_client, path):
        assert api_client.get(path).status_code == 401

    def test_invalid_token_is_401(self, api_client):
        response = api_client.get(
            "/chat/conversations", headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401


class TestGlobalHistory:
    def test_paginated_newest_first(self, api_client, services, auth):
        _post_global(services, "alice", 5)

        response = api_client.get("/chat/global/history?page=1&limit=2", headers=auth("bob"))
        assert response.status_code == 200
        body = response.json()
        assert [m["text"] for m in body["messages"]] == ["g3", "g4"]
        assert body["pagination"] == {
            "page": 1, "limit": 2, "total": 5, "totalPages": 3, "hasMore": True,
        }
        assert body["messages"][0]["sender"]["displayName"] == "Alice A."

    def test_last_page(self, api_client, services, auth):
        _post_global(services, "alice", 5)
        body = api_client.get(
            "/chat/global/history?page=3&limit=2", headers=auth("bob")
        ).json()
        assert [m["text"] for m in body["messages"]] == ["g0"]
        assert body["pagination"]["hasMore"] is False

    def test_limit_clamped_to_max(self, api_client, services, auth):
        body = api_client.get(
            "/chat/global/history?limit=1000", headers=auth("bob")
        ).json()
        assert body["pagination"]["limit"] == services.config.chat.max_page_size

    def test_default_limit(self, api_client, services, auth):
        body = api_client.get("/chat/global/history", headers=auth("bob")).json()
        assert body["pagination"]["limit"] == services.config.chat.default_page_size
        assert body["pagination"]["totalPages"] == 0
        assert body["messages"] == []

    def test_invalid_page_rejected(self, api_client, auth):
        response = api_client.get("/chat/global/history?page=0", headers=auth("bob"))
        assert response.status_code == 422


class TestOnlineCount:
    def test_counts_online_users(self, api_client, services, auth):
        run(services.users.set_presence("alice", True, utcnow(), "c1"))
        run(services.users.set_presence("bob", True, utcnow(), "c2"))
        run(services.users.set_presence("bob", False, utcnow(), None))

        response = api_client.get("/chat/global/online-count", headers=auth("eve"))
        assert response.json() == {"count": 1}


class TestPrivateHistory:
    def test_no_conversation_is_not_created(self, api_client, services, auth):
        response = api_client.get("/chat/private/bob/history", headers=auth("alice"))

        assert response.status_code == 200
        body = response.json()
        assert body["conversationId"] is None
        assert body["messages"] == []
        assert body["hasMore"] is False
        assert run(services.store.find_conversation(("alice", "bob"))) is None

    def test_pages_from_the_end(self, api_client, services, auth):
        for i in range(3):
            _private(services, "alice", "bob", f"p{i}")

        body = api_client.get(
            "/chat/private/alice/history?limit=2", headers=auth("bob")
        ).json()
        assert [m["text"] for m in body["messages"]] == ["p1", "p2"]
        assert body["hasMore"] is True
        assert body["messages"][0]["sender"]["username"] == "alice"

        older = api_client.get(
            "/chat/private/alice/history?limit=2&page=2", headers=auth("bob")
        ).json()
        assert [m["text"] for m in older["messages"]] == ["p0"]
        assert older["hasMore"] is False
        assert older["conversationId"] == body["conversationId"]

    def test_unknown_sender_placeholder(self, api_client, services, auth):
        _private(services, "ghost", "alice", "who am i")
        body = api_client.get("/chat/private/ghost/history", headers=auth("alice")).json()
        assert body["messages"][0]["sender"]["displayName"] == "Unknown User"


class TestConversationList:
    def test_lists_with_peer_presence_and_unread(self, api_client, services, auth):
        _private(services, "bob", "alice", "hi alice")
        _private(services, "eve", "alice", "", attachments=["att-1"])
        run(services.users.set_presence("eve", True, utcnow(), "c9"))

        response = api_client.get("/chat/conversations", headers=auth("alice"))
        assert response.status_code == 200
        conversations = response.json()["conversations"]

        assert [c["peer"]["id"] for c in conversations] == ["eve", "bob"]
        eve, bob = conversations
        assert eve["lastMessage"] == "[File]"
        assert eve["peer"]["isOnline"] is True
        assert eve["peer"]["lastSeen"] is not None
        assert eve["unreadCount"] == 1
        assert bob["lastMessage"] == "hi alice"
        assert bob["peer"]["displayName"] == "Bob B."
        assert bob["peer"]["isOnline"] is False
        assert bob["lastMessageAt"]

    def test_read_mark_clears_unread(self, api_client, services, auth):
        _private(services, "bob", "alice", "one")
        conversation = run(services.store.find_conversation(("alice", "bob")))
        run(services.store.set_read_mark(conversation.id, "alice", utcnow()))

        [entry] = api_client.get("/chat/conversations", headers=auth("alice")).json()["conversations"]
        assert entry["unreadCount"] == 0

    def test_empty_list(self, api_client, auth):
        assert api_client.get(
            "/chat/conversations", headers=auth("alice")
        ).json() == {"conversations": []}


def test_health(api_client):
    assert api_client.get("/health").json() == {"status": "ok"}
