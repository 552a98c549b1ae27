# courier_node/tls.py

import datetime
import logging
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from courier_node.config import RSA_KEY_SIZE, RSA_PUBLIC_EXPONENT

logger = logging.getLogger(__name__)


def ensure_relay_certificate(cert_path, key_path, common_name: str, days: int) -> bool:
    """
    Make sure the relay has a TLS certificate to serve with.

    An existing cert/key pair is left alone. Otherwise a self-signed one is
    issued for common_name (plus localhost) and written as PEM.
    Returns True when a new pair was written.
    """
    cert_path, key_path = Path(cert_path), Path(key_path)
    if cert_path.exists() and key_path.exists():
        logger.debug(f"Relay certificate present at {cert_path}")
        return False

    now = datetime.datetime.now(datetime.timezone.utc)
    key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])

    names = [x509.DNSName(common_name)]
    if common_name != "localhost":
        names.append(x509.DNSName("localhost"))

    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName(names), critical=False)
        .sign(key, hashes.SHA256())
    )

    cert_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))

    logger.info(f"Issued self-signed relay certificate for CN={common_name}, valid {days} days")
    return True
