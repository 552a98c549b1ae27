# courier_node/directory.py

import logging
import time
from typing import Dict, List

from cryptography.hazmat.primitives.asymmetric import rsa

from courier_node.database import get_db
from courier_node.errors import DirectoryLookupError, IdentityConflictError
from courier_node.keys import public_key_from_b64

logger = logging.getLogger(__name__)


class Directory:
    """
    identity -> public key, backed by the `directory` table.

    Binding is append-only: put_public_key() accepts the first key for an
    identity and the identical key again, and refuses anything else.
    Rebinding goes through reset_public_key() only.
    """

    def get_public_key(self, identity: str) -> str:
        db = get_db()
        row = db.execute(
            "SELECT public_key FROM directory WHERE identity = ?",
            (identity,)
        ).fetchone()
        if row is None:
            raise DirectoryLookupError(identity)
        return row["public_key"]

    def load_public_key(self, identity: str) -> rsa.RSAPublicKey:
        """get_public_key() parsed into a key object."""
        return public_key_from_b64(self.get_public_key(identity))

    def put_public_key(self, identity: str, public_key_b64: str) -> bool:
        """
        Returns True when a new binding was written, False when the identical
        key was already bound.
        """
        public_key_from_b64(public_key_b64)

        db = get_db()
        row = db.execute(
            "SELECT public_key FROM directory WHERE identity = ?",
            (identity,)
        ).fetchone()

        if row is not None:
            if row["public_key"] == public_key_b64:
                return False
            logger.warning(f"Refusing to rebind identity {identity}: a different key is bound")
            raise IdentityConflictError(identity)

        db.execute(
            "INSERT INTO directory(identity, public_key, bound_at) VALUES (?, ?, ?)",
            (identity, public_key_b64, int(time.time()))
        )
        db.commit()
        logger.info(f"Directory: bound public key for {identity}")
        return True

    def reset_public_key(self, identity: str, public_key_b64: str, confirm: bool = False) -> None:
        """
        Explicit administrative rebind. Every envelope previously wrapped for
        the old key becomes unreadable by this identity.
        """
        if not confirm:
            raise IdentityConflictError(identity)

        public_key_from_b64(public_key_b64)

        db = get_db()
        db.execute(
            "INSERT OR REPLACE INTO directory(identity, public_key, bound_at) VALUES (?, ?, ?)",
            (identity, public_key_b64, int(time.time()))
        )
        db.commit()
        logger.warning(
            f"Directory: public key for {identity} was reset; "
            "messages wrapped for the previous key can no longer be opened"
        )

    def list_identities(self) -> List[Dict]:
        db = get_db()
        rows = db.execute(
            "SELECT identity, public_key, bound_at FROM directory ORDER BY identity"
        ).fetchall()
        return [
            {
                "identity": r["identity"],
                "public_key": r["public_key"],
                "bound_at": r["bound_at"],
            }
            for r in rows
        ]
