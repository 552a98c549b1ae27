# courier_node/envelopes.py

import logging
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from courier_node.config import CONTENT_KEY_SIZE, NONCE_SIZE
from courier_node.errors import DecryptError, KeyUnwrapError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Envelope:
    """
    ciphertext + nonce + one wrapped content key per authorized reader.

    Every blob in wrapped_keys opens to the same content key.
    ciphertext carries the 16-byte GCM tag at its end.
    """
    ciphertext: bytes
    nonce: bytes
    wrapped_keys: Mapping[str, bytes] = field(default_factory=dict)

    def __post_init__(self):
        # read-only view over a private copy
        object.__setattr__(self, "wrapped_keys", MappingProxyType(dict(self.wrapped_keys)))

    def wrapped_key_for(self, reader_id: str) -> bytes:
        try:
            return self.wrapped_keys[reader_id]
        except KeyError:
            raise KeyUnwrapError(f"envelope has no wrapped key for reader {reader_id!r}") from None


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def create_content_key() -> bytes:
    """
    Create a fresh 32-byte AES-256 key for one message.
    """
    return AESGCM.generate_key(bit_length=CONTENT_KEY_SIZE * 8)


def wrap_key_for_reader(content_key: bytes, reader_public_key: rsa.RSAPublicKey) -> bytes:
    """
    Encrypt content_key for one reader with RSA-OAEP.
    OAEP is randomized, so wrapping the same key twice yields different blobs.
    """
    return reader_public_key.encrypt(content_key, _oaep())


def open_wrapped_key(blob: bytes, reader_private_key: rsa.RSAPrivateKey) -> bytes:
    """
    Recover the content key from a wrapped blob.
    Raises KeyUnwrapError if the blob was not wrapped for this private key.
    """
    try:
        content_key = reader_private_key.decrypt(blob, _oaep())
    except (ValueError, TypeError) as e:
        raise KeyUnwrapError(f"wrapped key does not open with this private key: {e}") from e

    if len(content_key) != CONTENT_KEY_SIZE:
        raise KeyUnwrapError(
            f"bad content key length: got {len(content_key)}, expected {CONTENT_KEY_SIZE}"
        )
    return content_key


def wrap_for_recipients(
    plaintext: str,
    readers: Iterable[Tuple[str, rsa.RSAPublicKey]],
) -> Envelope:
    """
    Hybrid-encrypt plaintext once, then wrap its content key for every reader.

    readers: [(reader_id, public_key), ...]. In a conversation this is always
    the sender and the recipient, so the author can reread their own message
    with their own private key.
    """
    readers = list(readers)
    if not readers:
        raise ValueError("at least one reader is required")

    reader_ids = [reader_id for reader_id, _pk in readers]
    if len(set(reader_ids)) != len(reader_ids):
        raise ValueError(f"duplicate reader ids: {reader_ids}")

    content_key = create_content_key()
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(content_key).encrypt(nonce, plaintext.encode("utf-8"), None)

    wrapped: Dict[str, bytes] = {}
    for reader_id, reader_pk in readers:
        wrapped[reader_id] = wrap_key_for_reader(content_key, reader_pk)

    return Envelope(ciphertext=ciphertext, nonce=nonce, wrapped_keys=wrapped)


def decrypt_content(envelope: Envelope, content_key: bytes) -> str:
    try:
        raw = AESGCM(content_key).decrypt(envelope.nonce, envelope.ciphertext, None)
    except InvalidTag:
        raise DecryptError("ciphertext failed authentication") from None
    except ValueError as e:
        # wrong nonce length and similar structural problems
        raise DecryptError(f"ciphertext could not be decrypted: {e}") from e

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptError("decrypted content is not UTF-8 text") from e


def unwrap(envelope: Envelope, reader_id: str, reader_private_key: rsa.RSAPrivateKey) -> str:
    """
    Open the blob addressed to reader_id, then decrypt the content.

    KeyUnwrapError: no blob for reader_id, or it does not open with this key.
    DecryptError:   the content key opened but the ciphertext did not authenticate.
    """
    blob = envelope.wrapped_key_for(reader_id)
    content_key = open_wrapped_key(blob, reader_private_key)
    return decrypt_content(envelope, content_key)
