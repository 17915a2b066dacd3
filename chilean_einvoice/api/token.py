import logging
from typing import Optional

from ..certificates import CertificateStore, Credential
from ..config import SIIConfig
from ..errors import AuthorityRejection, CredentialError, ProtocolParseError, TransportError
from ..models import ParseFailure, Rejected, Token, TokenResult
from ..soap.client import SoapClient
from ..soap.envelope import build_seed_document, build_token_request
from ..soap.response import iter_respuestas
from ..utils import mask_token
from ..xmldsig import AUTH_PROFILE, XmlSigner

logger = logging.getLogger(__name__)

RETURN_TAG = "getTokenReturn"
OK_ESTADO = "00"


def parse_token_response(raw: str) -> TokenResult:
    """Token if any reader finds one; otherwise the first failing ESTADO; otherwise a parse failure."""
    rejected: Optional[Rejected] = None
    for respuesta in iter_respuestas(raw, RETURN_TAG, ("TOKEN",)):
        token = (respuesta.get("TOKEN") or "").strip()
        if token:
            logger.debug("Token read via %s strategy", respuesta.strategy)
            return Token(token)
        estado = (respuesta.estado or "").strip()
        if rejected is None and estado and estado != OK_ESTADO:
            rejected = Rejected(code=estado, glosa=respuesta.glosa, raw=raw)
    if rejected is not None:
        return rejected
    return ParseFailure("no TOKEN in GetTokenFromSeed response", raw=raw)


class TokenExchanger:
    """Signs a seed and trades it for a session token at GetTokenFromSeed."""

    def __init__(
        self,
        cfg: SIIConfig,
        soap_client: SoapClient,
        credential: Optional[Credential] = None,
        *,
        store: Optional[CertificateStore] = None,
    ):
        self.cfg = cfg
        self.soap_client = soap_client
        self._credential = credential
        self._store = store

    def _resolve_credential(self, credential: Optional[Credential]) -> Credential:
        if credential is not None:
            return credential
        if self._credential is not None:
            return self._credential
        if self._store is not None:
            return self._store.credential
        raise CredentialError("No signing credential configured")

    def signed_seed(self, seed: str, credential: Optional[Credential] = None) -> str:
        signer = XmlSigner(self._resolve_credential(credential), AUTH_PROFILE)
        return signer.sign_to_string(build_seed_document(seed))

    def request_token(self, seed: str, credential: Optional[Credential] = None) -> TokenResult:
        envelope = build_token_request(self.signed_seed(seed, credential))
        resp = self.soap_client.post_xml(self.cfg.token_url, envelope)
        result = parse_token_response(resp.text)
        if isinstance(result, ParseFailure) and not resp.ok:
            raise TransportError(
                f"GetTokenFromSeed returned HTTP {resp.status_code}",
                response=resp.text,
                status_code=resp.status_code,
            )
        return result

    def exchange_seed(self, seed: str, credential: Optional[Credential] = None) -> str:
        result = self.request_token(seed, credential)
        if isinstance(result, Rejected):
            raise AuthorityRejection(
                f"SII rejected the signed seed (ESTADO={result.code}): {result.glosa or 'no GLOSA'}",
                code=result.code,
                glosa=result.glosa,
                response=result.raw,
            )
        if isinstance(result, ParseFailure):
            raise ProtocolParseError(f"Cannot read token: {result.reason}", response=result.raw)
        logger.info("Obtained SII token %s", mask_token(result.value))
        return result.value
