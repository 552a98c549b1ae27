# courier_node/database.py

import logging
import sqlite3

from courier_node.config import DB_PATH, ensure_directories

logger = logging.getLogger(__name__)

_conn = None


def get_db():
    """
    Returns a global SQLite connection and initializes the DB schema if needed.
    The connection is created with check_same_thread=False so FastAPI worker
    threads can safely execute queries using the same connection.
    """
    global _conn
    if _conn is None:
        ensure_directories()

        _conn = sqlite3.connect(DB_PATH, check_same_thread=False)
        _conn.row_factory = sqlite3.Row

        # ---- Performance pragmas ----
        _conn.execute("PRAGMA journal_mode=WAL")
        _conn.execute("PRAGMA synchronous=NORMAL")

        # -----------------------------------------------------
        #  DIRECTORY TABLE (identity -> public key)
        # -----------------------------------------------------
        _conn.execute("""
            CREATE TABLE IF NOT EXISTS directory (
                identity TEXT PRIMARY KEY,
                public_key TEXT NOT NULL,
                bound_at INTEGER NOT NULL
            );
        """)

        # -----------------------------------------------------
        #  MESSAGES TABLE (opaque transport records)
        # -----------------------------------------------------
        _conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                scheme TEXT NOT NULL,
                ciphertext TEXT NOT NULL,
                nonce TEXT NOT NULL,
                sender_wrapped_key TEXT NOT NULL,
                recipient_wrapped_key TEXT NOT NULL,
                signature TEXT NOT NULL,
                sender_id TEXT NOT NULL,
                recipient_id TEXT NOT NULL,
                sent_at INTEGER NOT NULL
            );
        """)

        # ---- Indexes for common queries ----
        _conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
            "ON messages(conversation_id, sent_at, id)"
        )

        _conn.commit()
        logger.info("Database initialized (WAL mode, indexes created)")

    return _conn


def close_db():
    global _conn
    if _conn is not None:
        _conn.close()
        _conn = None
