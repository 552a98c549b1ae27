# courier_node/keystore.py

import logging
import os
from pathlib import Path
from typing import Optional

import nacl.exceptions
import nacl.utils
from nacl.pwhash import argon2i
from nacl.secret import SecretBox
from cryptography.hazmat.primitives.asymmetric import rsa

from courier_node import config
from courier_node.errors import KeyFormatError, LocalKeyMissingError
from courier_node.keys import private_key_from_der, private_key_to_der

logger = logging.getLogger(__name__)

SALT_SIZE = argon2i.SALTBYTES
OPSLIMIT = argon2i.OPSLIMIT_INTERACTIVE
MEMLIMIT = argon2i.MEMLIMIT_INTERACTIVE


def _derive_key(password: str, salt: bytes) -> bytes:
    return argon2i.kdf(
        SecretBox.KEY_SIZE, password.encode(), salt,
        opslimit=OPSLIMIT, memlimit=MEMLIMIT,
    )


def encrypt_private_key(private_bytes: bytes, password: str) -> bytes:
    salt = nacl.utils.random(SALT_SIZE)
    key = _derive_key(password, salt)
    box = SecretBox(key)
    encrypted = box.encrypt(private_bytes)
    return salt + encrypted


def decrypt_private_key(bundle: bytes, password: str) -> bytes:
    salt = bundle[:SALT_SIZE]
    ciphertext = bundle[SALT_SIZE:]
    key = _derive_key(password, salt)
    box = SecretBox(key)
    return box.decrypt(ciphertext)


class SecretKeyHandle:
    """
    Caller-owned handle on the viewer's private key for one session.

    Pass it (or .key) into each sign/unwrap call. After release() the key is
    dropped and .key raises LocalKeyMissingError.
    """

    def __init__(self, private_key: rsa.RSAPrivateKey):
        self._key: Optional[rsa.RSAPrivateKey] = private_key

    @property
    def key(self) -> rsa.RSAPrivateKey:
        if self._key is None:
            raise LocalKeyMissingError("private key handle has been released")
        return self._key

    @property
    def released(self) -> bool:
        return self._key is None

    def release(self):
        self._key = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def __repr__(self):
        return f"<SecretKeyHandle released={self.released}>"


def resolve_private_key(private_key) -> rsa.RSAPrivateKey:
    """Accepts a SecretKeyHandle or a bare RSA private key."""
    if isinstance(private_key, SecretKeyHandle):
        return private_key.key
    if private_key is None:
        raise LocalKeyMissingError("no private key supplied")
    return private_key


class LocalKeyStore:
    """
    The viewer's own private key at rest: PKCS#8 DER sealed with an
    Argon2i-derived SecretBox key. Layout on disk is salt || nonce || box.
    """

    def __init__(self, path: Path, password: str):
        self.path = Path(path)
        self._password = password

    def exists(self) -> bool:
        return self.path.exists()

    def get(self) -> Optional[SecretKeyHandle]:
        if not self.path.exists():
            return None

        bundle = self.path.read_bytes()
        try:
            der = decrypt_private_key(bundle, self._password)
        except nacl.exceptions.CryptoError as exc:
            logger.error("Local key store %s could not be unlocked: %s", self.path, exc)
            raise LocalKeyMissingError("local private key could not be unlocked") from exc

        try:
            return SecretKeyHandle(private_key_from_der(der))
        except KeyFormatError as exc:
            raise LocalKeyMissingError(f"local private key is corrupt: {exc}") from exc

    @classmethod
    def default(cls) -> "LocalKeyStore":
        """Key store at the configured path, unlocked with COURIER_PASSWORD."""
        return cls(config.PRIVATE_KEY_PATH, config.COURIER_PASSWORD)

    def set(self, private_key: rsa.RSAPrivateKey):
        bundle = encrypt_private_key(private_key_to_der(private_key), self._password)
        self._write(bundle)
        logger.info("Private key written to %s", self.path)

    def backup(self) -> Optional[bytes]:
        """Raw sealed bundle currently on disk, or None."""
        if not self.path.exists():
            return None
        return self.path.read_bytes()

    def restore(self, bundle: Optional[bytes]):
        """Put back what backup() returned. None means there was no key."""
        if bundle is None:
            self.clear()
        else:
            self._write(bundle)
        logger.info("Private key store %s restored", self.path)

    def _write(self, bundle: bytes):
        # the old bundle stays readable until the rename lands
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_bytes(bundle)
            os.replace(tmp, self.path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def clear(self):
        if self.path.exists():
            self.path.unlink()
            logger.info("Private key removed from %s", self.path)
