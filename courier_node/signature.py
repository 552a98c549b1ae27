# courier_node/signature.py

import logging

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from courier_node.config import PSS_SALT_LENGTH

logger = logging.getLogger(__name__)


def _pss() -> padding.PSS:
    return padding.PSS(
        mgf=padding.MGF1(hashes.SHA256()),
        salt_length=PSS_SALT_LENGTH,
    )


def sign(plaintext: str, private_key: rsa.RSAPrivateKey) -> bytes:
    """
    RSA-PSS / SHA-256 signature over the UTF-8 plaintext.
    PSS is salted, so two signatures over the same text differ.
    """
    return private_key.sign(plaintext.encode("utf-8"), _pss(), hashes.SHA256())


def verify(plaintext: str, signature: bytes, claimed_public_key: rsa.RSAPublicKey) -> bool:
    """
    Returns True only for a valid signature by claimed_public_key.
    Never raises: bad input of any kind is reported as False.
    """
    try:
        claimed_public_key.verify(
            signature,
            plaintext.encode("utf-8"),
            _pss(),
            hashes.SHA256(),
        )
        return True
    except InvalidSignature:
        return False
    except Exception as e:
        logger.warning(f"Signature verification rejected malformed input: {e!r}")
        return False
