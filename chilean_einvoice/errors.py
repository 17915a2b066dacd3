from typing import Optional

from .utils import excerpt


class SIIError(RuntimeError):
    """Base class for any SII protocol, credential or transport problem."""

    def __init__(self, msg: str, *, response: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(msg)
        self.response = excerpt(response) if response is not None else None
        self.status_code = status_code


class CredentialError(SIIError):
    """The PKCS#12 credential cannot be used. Fix the configuration, do not retry."""
    pass


class MalformedContainerError(CredentialError):
    """The file is not a PKCS#12 (PFX) container."""
    pass


class WrongPassphraseError(CredentialError):
    """The container is well formed but cannot be decrypted with the passphrase."""
    pass


class MissingPrivateKeyError(CredentialError):
    """No private key in either shrouded or plain key bags."""

    def __init__(self, msg: str, *, searched: tuple = ()):
        super().__init__(msg)
        self.searched = searched


class MissingCertificateError(CredentialError):
    """No leaf certificate matching the private key."""
    pass


class UnsupportedKeyError(CredentialError):
    """The private key is not RSA, so no RSAKeyValue can be published."""
    pass


class SigningError(SIIError):
    """XML signature could not be built or does not verify."""
    pass


class ProtocolParseError(SIIError):
    """No parsing strategy could read the response. Safe to retry once."""
    pass


class AuthorityRejection(SIIError):
    """The SII answered well-formed but reported failure (ESTADO, STATUS, SOAP fault)."""

    def __init__(
        self,
        msg: str,
        *,
        code: Optional[str] = None,
        glosa: Optional[str] = None,
        response: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(msg, response=response, status_code=status_code)
        self.code = code
        self.glosa = glosa


class TransportError(SIIError):
    """Network, timeout, SSL or non-2xx responses without a readable body."""
    pass
