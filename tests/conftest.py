import datetime as dt
from datetime import timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from chilean_einvoice.certificates import Credential
from chilean_einvoice.config import SIIConfig
from chilean_einvoice.models import SubmitterIdentity


def _self_signed_cert(private_key=None, common_name="76.543.210-3"):
    private_key = private_key or rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "CL"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Org"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(dt.datetime.now(timezone.utc) - dt.timedelta(days=1))
        .not_valid_after(dt.datetime.now(timezone.utc) + dt.timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    return private_key, cert


class DummyResponse:
    def __init__(self, text="", status_code=200):
        self.text = text
        self.status_code = status_code
        self.content = text.encode("utf-8")

    @property
    def ok(self):
        return 200 <= self.status_code < 400


class DummyTokenProvider:
    def __init__(self, token="token123"):
        self.token = token
        self.calls = 0

    def get_token(self):
        self.calls += 1
        return self.token


@pytest.fixture(scope="session")
def key_and_cert():
    return _self_signed_cert()


@pytest.fixture(scope="session")
def credential(key_and_cert):
    key, cert = key_and_cert
    return Credential.from_key_and_certificate(key, cert)


@pytest.fixture(scope="session")
def cert_pem(key_and_cert):
    return key_and_cert[1].public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def pfx_shrouded(tmp_path, key_and_cert):
    key, cert = key_and_cert
    data = pkcs12.serialize_key_and_certificates(
        b"firma", key, cert, None, serialization.BestAvailableEncryption(b"secret")
    )
    path = tmp_path / "shrouded.pfx"
    path.write_bytes(data)
    return path


@pytest.fixture
def pfx_plain(tmp_path, key_and_cert):
    key, cert = key_and_cert
    data = pkcs12.serialize_key_and_certificates(b"firma", key, cert, None, serialization.NoEncryption())
    path = tmp_path / "plain.pfx"
    path.write_bytes(data)
    return path


@pytest.fixture
def identity():
    return SubmitterIdentity("11111111", "1", "60803000", "K")


@pytest.fixture
def cfg(identity):
    return SIIConfig(environment="cert", identity=identity, timeout=15)
