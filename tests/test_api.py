# tests/test_api.py

from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from courier_node.messaging import compose_message
from courier_node.store import conversation_id_for


@pytest.fixture
def client():
    from courier_node.main import app
    return TestClient(app)


def _messages_url(a: str, b: str) -> str:
    return f"/conversations/{quote(conversation_id_for(a, b), safe='')}/messages"


class TestHealth:
    def test_healthy(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["checks"]["database"] is True


class TestDirectoryRoutes:
    def test_bind_and_lookup(self, client, alice_keys):
        resp = client.put("/directory/alice", json={"public_key": alice_keys.public_key_b64})
        assert resp.status_code == 201

        resp = client.get("/directory/alice")
        assert resp.status_code == 200
        assert resp.json()["public_key"] == alice_keys.public_key_b64

    def test_rebind_same_key(self, client, alice_keys):
        client.put("/directory/alice", json={"public_key": alice_keys.public_key_b64})
        resp = client.put("/directory/alice", json={"public_key": alice_keys.public_key_b64})
        assert resp.status_code == 200
        assert resp.json()["created"] is False

    def test_rebind_other_key_conflicts(self, client, alice_keys, bob_keys):
        client.put("/directory/alice", json={"public_key": alice_keys.public_key_b64})
        resp = client.put("/directory/alice", json={"public_key": bob_keys.public_key_b64})
        assert resp.status_code == 409

    def test_malformed_key(self, client):
        resp = client.put("/directory/alice", json={"public_key": "garbage"})
        assert resp.status_code == 422

    def test_unknown_identity(self, client):
        assert client.get("/directory/nobody").status_code == 404


class TestConversationRoutes:
    def test_post_and_list(self, client, alice_keys, directory):
        rec = compose_message("hello", "alice", "bob", alice_keys.private_key, directory, sent_at=5)

        resp = client.post(_messages_url("alice", "bob"), json=rec.to_dict())
        assert resp.status_code == 201

        resp = client.get(_messages_url("bob", "alice"))
        body = resp.json()
        assert body["count"] == 1
        assert body["messages"][0] == rec.to_dict()

    def test_wrong_conversation(self, client, alice_keys, directory):
        rec = compose_message("hello", "alice", "bob", alice_keys.private_key, directory, sent_at=5)
        resp = client.post(_messages_url("alice", "carol"), json=rec.to_dict())
        assert resp.status_code == 422

    def test_unknown_scheme(self, client, alice_keys, directory):
        rec = compose_message("hello", "alice", "bob", alice_keys.private_key, directory, sent_at=5)
        body = rec.to_dict()
        body["scheme"] = "cryptojs-aes"
        resp = client.post(_messages_url("alice", "bob"), json=body)
        assert resp.status_code == 422

    def test_too_large(self, client, monkeypatch, alice_keys, directory):
        import courier_node.main as main_mod
        monkeypatch.setattr(main_mod, "MAX_MESSAGE_SIZE", 100)

        rec = compose_message("hello", "alice", "bob", alice_keys.private_key, directory, sent_at=5)
        resp = client.post(_messages_url("alice", "bob"), json=rec.to_dict())
        assert resp.status_code == 413

    def test_lookalike_pairs_do_not_share_a_conversation(self, client, mallory_keys):
        from courier_node.directory import Directory

        d = Directory()
        d.put_public_key("a|b", mallory_keys.public_key_b64)
        d.put_public_key("c", mallory_keys.public_key_b64)

        rec = compose_message("secret", "a|b", "c", mallory_keys.private_key, d, sent_at=5)
        assert client.post(_messages_url("a|b", "c"), json=rec.to_dict()).status_code == 201
        assert client.post(_messages_url("a", "b|c"), json=rec.to_dict()).status_code == 422

        body = client.get(_messages_url("a", "b|c")).json()
        assert body["count"] == 0


def _stream_url(a: str, b: str) -> str:
    return f"/conversations/{conversation_id_for(a, b)}/stream"


class TestConversationStream:
    def test_initial_batch_then_push(self, client, alice_keys, bob_keys, directory):
        import courier_node.main as main_mod

        first = compose_message("one", "alice", "bob", alice_keys.private_key, directory, sent_at=1)
        client.post(_messages_url("alice", "bob"), json=first.to_dict())

        with client.websocket_connect(_stream_url("alice", "bob")) as ws:
            initial = ws.receive_json()
            assert initial["count"] == 1
            assert initial["messages"][0] == first.to_dict()
            assert main_mod.channel.subscriber_count(conversation_id_for("alice", "bob")) == 1

            second = compose_message("two", "bob", "alice", bob_keys.private_key, directory, sent_at=2)
            assert client.post(_messages_url("bob", "alice"), json=second.to_dict()).status_code == 201

            pushed = ws.receive_json()
            assert pushed["conversation_id"] == conversation_id_for("alice", "bob")
            assert [m["sentAt"] for m in pushed["messages"]] == [1, 2]

    def test_empty_conversation_streams_empty_batch(self, client):
        with client.websocket_connect(_stream_url("alice", "bob")) as ws:
            assert ws.receive_json()["messages"] == []


class TestIdentityConversations:
    def test_lists_conversations_newest_first(self, client, alice_keys, directory, mallory_keys):
        directory.put_public_key("carol", mallory_keys.public_key_b64)
        for text, peer, at in [("hi bob", "bob", 10), ("hi carol", "carol", 20), ("again", "bob", 5)]:
            rec = compose_message(text, "alice", peer, alice_keys.private_key, directory, sent_at=at)
            client.post(_messages_url("alice", peer), json=rec.to_dict())

        body = client.get("/identities/alice/conversations").json()
        assert body["count"] == 2
        assert [c["peer_id"] for c in body["conversations"]] == ["carol", "bob"]
        assert body["conversations"][1]["last_sent_at"] == 10
        assert body["conversations"][1]["count"] == 2

    def test_unknown_identity_has_no_conversations(self, client):
        body = client.get("/identities/nobody/conversations").json()
        assert body == {"identity": "nobody", "count": 0, "conversations": []}
