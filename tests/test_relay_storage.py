# tests/test_relay_storage.py

import pytest

from courier_node.channel import Channel
from courier_node.directory import Directory
from courier_node.errors import DirectoryLookupError, IdentityConflictError, KeyFormatError
from courier_node.messaging import compose_message
from courier_node.store import MessageStore, conversation_id_for


class TestDirectory:
    def test_lookup_missing(self):
        with pytest.raises(DirectoryLookupError):
            Directory().get_public_key("nobody")

    def test_bind_and_lookup(self, alice_keys):
        d = Directory()
        assert d.put_public_key("alice", alice_keys.public_key_b64) is True
        assert d.get_public_key("alice") == alice_keys.public_key_b64

    def test_rebinding_same_key_is_noop(self, alice_keys):
        d = Directory()
        d.put_public_key("alice", alice_keys.public_key_b64)
        assert d.put_public_key("alice", alice_keys.public_key_b64) is False

    def test_rebinding_other_key_refused(self, alice_keys, bob_keys):
        d = Directory()
        d.put_public_key("alice", alice_keys.public_key_b64)
        with pytest.raises(IdentityConflictError):
            d.put_public_key("alice", bob_keys.public_key_b64)
        assert d.get_public_key("alice") == alice_keys.public_key_b64

    def test_malformed_key_refused(self):
        with pytest.raises(KeyFormatError):
            Directory().put_public_key("alice", "garbage")

    def test_reset_requires_confirm(self, alice_keys, bob_keys):
        d = Directory()
        d.put_public_key("alice", alice_keys.public_key_b64)
        with pytest.raises(IdentityConflictError):
            d.reset_public_key("alice", bob_keys.public_key_b64)
        d.reset_public_key("alice", bob_keys.public_key_b64, confirm=True)
        assert d.get_public_key("alice") == bob_keys.public_key_b64

    def test_list_identities(self, directory):
        assert [r["identity"] for r in directory.list_identities()] == ["alice", "bob"]


class TestConversationId:
    def test_symmetric(self):
        assert conversation_id_for("alice", "bob") == conversation_id_for("bob", "alice")

    def test_needs_two_parties(self):
        with pytest.raises(ValueError):
            conversation_id_for("alice", "alice")

    @pytest.mark.parametrize("first, second", [
        (("a|b", "c"), ("a", "b|c")),
        (("a,b", "c"), ("a", "b,c")),
        (("a\"", "b"), ("a", "\"b")),
    ])
    def test_separator_in_identity_does_not_collide(self, first, second):
        assert conversation_id_for(*first) != conversation_id_for(*second)

    def test_lookalike_pair_reads_nothing(self, mallory_keys):
        from courier_node.messaging import read_conversation, send_message

        d = Directory()
        for identity in ("a|b", "c", "a"):
            d.put_public_key(identity, mallory_keys.public_key_b64)
        store = MessageStore()
        send_message(store, "secret", "a|b", "c", mallory_keys.private_key, d, sent_at=1)

        other = conversation_id_for("a", "b|c")
        assert store.list_records(other) == []
        assert read_conversation(store, other, "a", mallory_keys.private_key, d) == []


class TestMessageStore:
    def test_ordered_by_sent_at(self, alice_keys, directory):
        store = MessageStore()
        for ts in (30, 10, 20):
            store.append_record(
                compose_message(f"t{ts}", "alice", "bob", alice_keys.private_key, directory, sent_at=ts)
            )

        cid = conversation_id_for("alice", "bob")
        assert [r.sent_at for r in store.list_records(cid)] == [10, 20, 30]
        assert store.count(cid) == 3

    def test_records_survive_storage_unchanged(self, alice_keys, directory):
        store = MessageStore()
        rec = compose_message("hi", "alice", "bob", alice_keys.private_key, directory, sent_at=1)
        store.append_record(rec)
        assert store.list_records(conversation_id_for("alice", "bob")) == [rec]

    def test_conversations_are_separate(self, alice_keys, directory):
        store = MessageStore()
        store.append_record(compose_message("hi", "alice", "bob", alice_keys.private_key, directory, sent_at=1))
        assert store.list_records(conversation_id_for("alice", "carol")) == []

    def test_list_conversations(self, alice_keys, bob_keys, directory, mallory_keys):
        directory.put_public_key("carol", mallory_keys.public_key_b64)
        store = MessageStore()
        store.append_record(compose_message("a", "alice", "bob", alice_keys.private_key, directory, sent_at=10))
        store.append_record(compose_message("b", "bob", "alice", bob_keys.private_key, directory, sent_at=30))
        store.append_record(compose_message("c", "alice", "carol", alice_keys.private_key, directory, sent_at=20))

        assert store.list_conversations("alice") == [
            {"conversation_id": conversation_id_for("alice", "bob"), "peer_id": "bob", "last_sent_at": 30, "count": 2},
            {"conversation_id": conversation_id_for("alice", "carol"), "peer_id": "carol", "last_sent_at": 20, "count": 1},
        ]
        assert [c["peer_id"] for c in store.list_conversations("bob")] == ["alice"]
        assert store.list_conversations("dave") == []

    def test_find_conversation(self, alice_keys, directory):
        store = MessageStore()
        assert store.find_conversation("alice", "bob") is None

        store.append_record(compose_message("a", "alice", "bob", alice_keys.private_key, directory, sent_at=7))
        found = store.find_conversation("bob", "alice")
        assert found["conversation_id"] == conversation_id_for("alice", "bob")
        assert found["peer_id"] == "alice"
        assert found["last_sent_at"] == 7


class TestChannel:
    def test_append_pushes_full_batch(self, alice_keys, directory):
        channel = Channel()
        store = MessageStore(channel=channel)
        batches = []
        channel.subscribe(conversation_id_for("alice", "bob"), batches.append)

        for ts in (1, 2):
            store.append_record(
                compose_message("x", "alice", "bob", alice_keys.private_key, directory, sent_at=ts)
            )

        assert [len(b) for b in batches] == [1, 2]

    def test_cancelled_subscription_gets_nothing(self):
        channel = Channel()
        got = []
        sub = channel.subscribe("c", got.append)
        sub.cancel()
        assert channel.publish("c", []) == 0
        assert got == []
        assert channel.subscriber_count("c") == 0

    def test_failing_subscriber_does_not_block_others(self):
        channel = Channel()
        got = []

        def broken(batch):
            raise RuntimeError("boom")

        channel.subscribe("c", broken)
        channel.subscribe("c", got.append)
        assert channel.publish("c", []) == 1
        assert got == [[]]
