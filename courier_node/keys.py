# courier_node/keys.py

import binascii
import logging
from base64 import b64decode, b64encode
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from courier_node.config import RSA_KEY_SIZE, RSA_PUBLIC_EXPONENT
from courier_node.errors import GenerationError, KeyFormatError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyPair:
    """
    An identity key pair.

    RSA, 2048-bit modulus, public exponent 65537. The same pair is used with
    SHA-256 for OAEP key wrapping and PSS signatures.
    """
    public_key: rsa.RSAPublicKey
    private_key: rsa.RSAPrivateKey

    @property
    def public_key_b64(self) -> str:
        return public_key_to_b64(self.public_key)


def generate() -> KeyPair:
    try:
        sk = rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=RSA_KEY_SIZE,
        )
    except (OSError, ValueError, UnsupportedAlgorithm) as exc:
        logger.error("Key pair generation failed: %s", exc)
        raise GenerationError(f"key pair generation failed: {exc}") from exc

    return KeyPair(public_key=sk.public_key(), private_key=sk)


# -----------------------------------------------------------
# Serialization helpers
# -----------------------------------------------------------

def public_key_to_b64(pk: rsa.RSAPublicKey) -> str:
    """DER SubjectPublicKeyInfo -> base64 text (the Directory format)."""
    der = pk.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return b64encode(der).decode("ascii")


def public_key_from_b64(text: str) -> rsa.RSAPublicKey:
    if not isinstance(text, str) or not text.strip():
        raise KeyFormatError("public key must be a non-empty base64 string")

    try:
        der = b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyFormatError(f"public key is not valid base64: {exc}") from exc

    try:
        pk = serialization.load_der_public_key(der)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise KeyFormatError(f"public key is not a DER SubjectPublicKeyInfo: {exc}") from exc

    if not isinstance(pk, rsa.RSAPublicKey):
        raise KeyFormatError("public key is not an RSA key")
    if pk.key_size != RSA_KEY_SIZE:
        raise KeyFormatError(f"public key is {pk.key_size} bits, expected {RSA_KEY_SIZE}")
    return pk


def private_key_to_der(sk: rsa.RSAPrivateKey) -> bytes:
    """PKCS#8 DER, unencrypted. Only ever handed to the local key store."""
    return sk.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def private_key_from_der(der: bytes) -> rsa.RSAPrivateKey:
    try:
        sk = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyFormatError(f"private key is not PKCS#8 DER: {exc}") from exc

    if not isinstance(sk, rsa.RSAPrivateKey):
        raise KeyFormatError("private key is not an RSA key")
    return sk
