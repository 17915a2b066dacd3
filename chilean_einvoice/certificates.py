"""PKCS#12 credential loading.

A ``.pfx`` exported by Windows, OpenSSL or Java keytool may carry the private
key in a *shrouded* key bag (PKCS#8, encrypted) or in a plain key bag. The
loader records which bag types are visible before decrypting so that every
failure can be reported precisely instead of as a generic parse error.
"""
import base64
import datetime as _dt
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple

from asn1crypto import pkcs12 as asn1_pkcs12
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from .errors import (
    CredentialError,
    MalformedContainerError,
    MissingCertificateError,
    MissingPrivateKeyError,
    UnsupportedKeyError,
    WrongPassphraseError,
)
from .utils_crypto import rsa_modexp_b64, thumbprint_sha1_b64

logger = logging.getLogger(__name__)

# Search order for the private key.
KEY_BAG_TYPES = ("pkcs8_shrouded_key_bag", "key_bag")


@dataclass(frozen=True)
class BagScan:
    """Bag types found in the unencrypted safes of a PFX."""

    visible: Tuple[str, ...] = ()
    encrypted_safes: int = 0

    @property
    def key_bag_type(self) -> Optional[str]:
        for bag_type in KEY_BAG_TYPES:
            if bag_type in self.visible:
                return bag_type
        return None

    def describe(self) -> str:
        seen = ", ".join(self.visible) or "none"
        return f"visible bags: {seen}; encrypted safes: {self.encrypted_safes}"


@dataclass(frozen=True)
class Credential:
    """Signing key plus the leaf certificate it belongs to."""

    private_key: rsa.RSAPrivateKey = field(repr=False)
    certificate: x509.Certificate = field(repr=False)
    certificate_der: bytes = field(repr=False)
    modulus_b64: str = field(repr=False)
    exponent_b64: str
    key_bag_type: Optional[str] = None
    additional_certificates: Tuple[x509.Certificate, ...] = field(default=(), repr=False)
    key_algorithm: str = "RSA"

    @classmethod
    def from_key_and_certificate(
        cls,
        private_key,
        certificate: x509.Certificate,
        *,
        key_bag_type: Optional[str] = None,
        additional_certificates: Sequence[x509.Certificate] = (),
    ) -> "Credential":
        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise UnsupportedKeyError(
                f"Private key is {type(private_key).__name__}; the SII handshake requires RSA"
            )
        if not _same_public_key(private_key, certificate):
            raise CredentialError("Certificate does not belong to the private key")
        modulus_b64, exponent_b64 = rsa_modexp_b64(certificate.public_key())
        return cls(
            private_key=private_key,
            certificate=certificate,
            certificate_der=certificate.public_bytes(serialization.Encoding.DER),
            modulus_b64=modulus_b64,
            exponent_b64=exponent_b64,
            key_bag_type=key_bag_type,
            additional_certificates=tuple(additional_certificates),
        )

    @property
    def certificate_b64(self) -> str:
        return base64.b64encode(self.certificate_der).decode("ascii")

    @property
    def key_size(self) -> int:
        return self.private_key.key_size

    @property
    def subject(self) -> str:
        return self.certificate.subject.rfc4514_string()

    @property
    def thumbprint(self) -> str:
        return thumbprint_sha1_b64(self.certificate_der)

    def is_expired(self, now: Optional[_dt.datetime] = None) -> bool:
        now = now or _dt.datetime.now(_dt.timezone.utc)
        return self.certificate.not_valid_after_utc < now


def _same_public_key(private_key, certificate: x509.Certificate) -> bool:
    cert_key = certificate.public_key()
    if not isinstance(cert_key, rsa.RSAPublicKey) or not isinstance(private_key, rsa.RSAPrivateKey):
        return False
    return cert_key.public_numbers() == private_key.public_key().public_numbers()


def scan_bags(data: bytes) -> BagScan:
    """Structural pass over the PFX. Raises :class:`MalformedContainerError`."""
    visible = []
    encrypted = 0
    try:
        pfx = asn1_pkcs12.Pfx.load(data)
        pfx["version"].native
        for content_info in pfx.authenticated_safe:
            if content_info["content_type"].native == "data":
                safe = asn1_pkcs12.SafeContents.load(content_info["content"].native)
                visible.extend(str(bag["bag_id"].native) for bag in safe)
            else:
                encrypted += 1
    except (ValueError, TypeError, KeyError, OverflowError) as exc:
        raise MalformedContainerError(f"Not a PKCS#12 container: {exc}") from exc
    return BagScan(visible=tuple(visible), encrypted_safes=encrypted)


def load_credential_bytes(data: bytes, passphrase: Optional[str | bytes] = None, *, source: str = "<bytes>") -> Credential:
    scan = scan_bags(data)
    logger.debug("PKCS#12 %s: %s", source, scan.describe())

    if isinstance(passphrase, str):
        passphrase = passphrase.encode("utf-8")
    try:
        bundle = pkcs12.load_pkcs12(data, passphrase or None)
    except ValueError as exc:
        raise WrongPassphraseError(
            f"Could not decrypt PKCS#12 {source}: wrong passphrase or unsupported encryption"
        ) from exc

    key = bundle.key
    if key is None:
        raise MissingPrivateKeyError(
            f"No private key in PKCS#12 {source} (searched {', '.join(KEY_BAG_TYPES)}; {scan.describe()})",
            searched=KEY_BAG_TYPES,
        )
    if not isinstance(key, rsa.RSAPrivateKey):
        raise UnsupportedKeyError(
            f"Private key in {source} is {type(key).__name__}; the SII handshake requires RSA"
        )

    others = [c.certificate for c in bundle.additional_certs]
    leaf = bundle.cert.certificate if bundle.cert is not None else None
    if leaf is None:
        matches = [c for c in others if _same_public_key(key, c)]
        if not matches:
            raise MissingCertificateError(f"No certificate for the private key in PKCS#12 {source}")
        leaf = matches[0]
    others = [c for c in others if c is not leaf]

    credential = Credential.from_key_and_certificate(
        key,
        leaf,
        key_bag_type=scan.key_bag_type,
        additional_certificates=others,
    )
    if credential.is_expired():
        logger.warning("Certificate %s expired on %s", credential.subject, credential.certificate.not_valid_after_utc)
    logger.info("Loaded credential %s (%d-bit RSA) from %s", credential.subject, credential.key_size, source)
    return credential


class CertificateStore:
    """Holds the single active credential for one signing identity."""

    def __init__(self, path: Path | str, passphrase: Optional[str] = None):
        self.path = Path(path)
        self._passphrase = passphrase
        self._credential: Optional[Credential] = None
        self._lock = threading.Lock()

    @staticmethod
    def load(path: Path | str, passphrase: Optional[str] = None) -> Credential:
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise CredentialError(f"Cannot read PKCS#12 file {path}: {exc}") from exc
        return load_credential_bytes(data, passphrase, source=str(path))

    @property
    def credential(self) -> Credential:
        with self._lock:
            if self._credential is None:
                self._credential = self.load(self.path, self._passphrase)
            return self._credential

    def reload(self) -> Credential:
        credential = self.load(self.path, self._passphrase)
        with self._lock:
            self._credential = credential
        return credential
