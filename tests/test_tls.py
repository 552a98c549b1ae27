# tests/test_tls.py

from cryptography import x509
from cryptography.x509.oid import NameOID

from courier_node.tls import ensure_relay_certificate


class TestRelayCertificate:
    def test_issues_self_signed_pair(self, tmp_path):
        cert_path = tmp_path / "ssl" / "cert.pem"
        key_path = tmp_path / "ssl" / "key.pem"

        assert ensure_relay_certificate(cert_path, key_path, "relay.test", 30) is True

        cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
        cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
        assert cn == "relay.test"
        assert cert.issuer == cert.subject

        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert set(san.get_values_for_type(x509.DNSName)) == {"relay.test", "localhost"}
        assert b"PRIVATE KEY" in key_path.read_bytes()

    def test_lifetime_follows_days(self, tmp_path):
        cert_path, key_path = tmp_path / "c.pem", tmp_path / "k.pem"
        ensure_relay_certificate(cert_path, key_path, "localhost", 10)

        cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
        lifetime = cert.not_valid_after_utc - cert.not_valid_before_utc
        assert lifetime.days == 10

    def test_existing_pair_is_kept(self, tmp_path):
        cert_path, key_path = tmp_path / "c.pem", tmp_path / "k.pem"
        ensure_relay_certificate(cert_path, key_path, "localhost", 10)
        before = cert_path.read_bytes()

        assert ensure_relay_certificate(cert_path, key_path, "other", 10) is False
        assert cert_path.read_bytes() == before
