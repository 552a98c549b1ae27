# courier_node/store.py

import hashlib
import json
import logging
from typing import List, Optional

from courier_node.channel import Channel
from courier_node.codec import TransportRecord
from courier_node.database import get_db

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = (
    "version", "scheme", "ciphertext", "nonce",
    "sender_wrapped_key", "recipient_wrapped_key", "signature",
    "sender_id", "recipient_id", "sent_at",
)


def conversation_id_for(identity_a: str, identity_b: str) -> str:
    """Both parties derive the same id regardless of who asks."""
    if identity_a == identity_b:
        raise ValueError("a conversation needs two distinct identities")
    # hash of the JSON-encoded sorted pair: no separator can be forged
    pair = json.dumps(sorted([identity_a, identity_b]), separators=(",", ":"))
    return hashlib.sha256(pair.encode("utf-8")).hexdigest()


class MessageStore:
    """
    Append-only store of opaque transport records.

    The relay only ever sees ciphertext, wrapped keys and metadata. When a
    Channel is attached, every append republishes the conversation's full
    ordered batch.
    """

    def __init__(self, channel: Optional[Channel] = None):
        self.channel = channel

    def append_record(self, record: TransportRecord) -> int:
        conversation_id = conversation_id_for(record.sender_id, record.recipient_id)

        db = get_db()
        cur = db.execute(
            f"""
            INSERT INTO messages(conversation_id, {", ".join(_RECORD_COLUMNS)})
            VALUES (?, {", ".join("?" for _ in _RECORD_COLUMNS)})
            """,
            (conversation_id, *(getattr(record, c) for c in _RECORD_COLUMNS))
        )
        db.commit()
        message_id = cur.lastrowid
        logger.info(f"Stored message {message_id} in {conversation_id}")

        if self.channel is not None:
            self.channel.publish(conversation_id, self.list_records(conversation_id))

        return message_id

    def list_records(self, conversation_id: str) -> List[TransportRecord]:
        """Ascending by sent_at; ties keep insertion order."""
        db = get_db()
        rows = db.execute(
            f"""
            SELECT {", ".join(_RECORD_COLUMNS)}
            FROM messages
            WHERE conversation_id = ?
            ORDER BY sent_at, id
            """,
            (conversation_id,)
        ).fetchall()
        return [TransportRecord(**{c: r[c] for c in _RECORD_COLUMNS}) for r in rows]

    def count(self, conversation_id: str) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS n FROM messages WHERE conversation_id = ?",
            (conversation_id,)
        ).fetchone()
        return row["n"]

    def list_conversations(self, identity: str) -> List[dict]:
        """
        Every conversation identity takes part in, most recent first.
        Each entry: conversation_id, peer_id, last_sent_at, count.
        """
        db = get_db()
        rows = db.execute(
            """
            SELECT conversation_id,
                   CASE WHEN sender_id = ? THEN recipient_id ELSE sender_id END AS peer_id,
                   MAX(sent_at) AS last_sent_at,
                   COUNT(*) AS n
            FROM messages
            WHERE sender_id = ? OR recipient_id = ?
            GROUP BY conversation_id
            ORDER BY last_sent_at DESC, conversation_id
            """,
            (identity, identity, identity)
        ).fetchall()
        return [
            {
                "conversation_id": r["conversation_id"],
                "peer_id": r["peer_id"],
                "last_sent_at": r["last_sent_at"],
                "count": r["n"],
            }
            for r in rows
        ]

    def find_conversation(self, identity_a: str, identity_b: str) -> Optional[dict]:
        """Summary of the conversation between two identities, or None if nothing was sent yet."""
        conversation_id = conversation_id_for(identity_a, identity_b)
        for summary in self.list_conversations(identity_a):
            if summary["conversation_id"] == conversation_id:
                return summary
        return None
