"""Chilean SII electronic-document SDK: seed/token auth, DTE upload, status queries."""
from .auth import SessionCache, TokenProvider
from .certificates import CertificateStore, Credential
from .client import SIIClient
from .config import Environment, SIIConfig
from .errors import (
    AuthorityRejection,
    CredentialError,
    MalformedContainerError,
    MissingCertificateError,
    MissingPrivateKeyError,
    ProtocolParseError,
    SigningError,
    SIIError,
    TransportError,
    UnsupportedKeyError,
    WrongPassphraseError,
)
from .models import DocumentStatus, SubmissionStatus, SubmitterIdentity, UploadReceipt
from .xmldsig import AUTH_PROFILE, DOCUMENT_PROFILE, SignatureProfile, XmlSigner, verify_signature
from importlib.metadata import version as _v, PackageNotFoundError
try:
    __version__ = _v("chilean-einvoice")
except PackageNotFoundError:
    __version__ = "0.0.0+editable"

__all__ = [
    # configuration
    "SIIConfig",
    "Environment",
    "SubmitterIdentity",
    # clients
    "SIIClient",
    "SessionCache",
    "TokenProvider",
    "CertificateStore",
    "Credential",
    "XmlSigner",
    "SignatureProfile",
    "AUTH_PROFILE",
    "DOCUMENT_PROFILE",
    "verify_signature",
    # results
    "UploadReceipt",
    "SubmissionStatus",
    "DocumentStatus",
    # errors
    "SIIError",
    "CredentialError",
    "MalformedContainerError",
    "WrongPassphraseError",
    "MissingPrivateKeyError",
    "MissingCertificateError",
    "UnsupportedKeyError",
    "SigningError",
    "ProtocolParseError",
    "AuthorityRejection",
    "TransportError",
]
