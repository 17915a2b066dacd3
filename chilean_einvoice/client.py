import datetime as _dt
import logging
from typing import Any, Mapping, Optional

import requests

from .api.seed import SeedClient
from .api.status import StatusClient
from .api.token import TokenExchanger
from .api.upload import DocumentUploader, EnvelopeBuilder
from .auth import SessionCache
from .certificates import CertificateStore, Credential
from .config import SIIConfig
from .errors import CredentialError
from .models import DocumentStatus, SubmissionStatus, SubmitterIdentity, UploadReceipt
from .soap.client import SoapClient

logger = logging.getLogger(__name__)


class SIIClient:
    """Seed/token handshake, DTE upload and status queries behind one object."""

    def __init__(
        self,
        cfg: SIIConfig,
        *,
        session: Optional[requests.Session] = None,
        credential: Optional[Credential] = None,
        services: Optional[Mapping[str, Any]] = None,
        status_retries: int = 0,
    ):
        self.cfg = cfg
        self._session = session or requests.Session()
        if not cfg.verify_ssl:
            self._session.verify = False  # noqa: S501 (certification host only)

        self.store = None
        if credential is None and cfg.pfx_path is not None:
            self.store = CertificateStore(cfg.pfx_path, cfg.pfx_password)
        self._credential = credential

        self.soap_client = SoapClient(cfg, self._session, services=services)
        self.seed_client = SeedClient(cfg, self.soap_client)
        self.token_exchanger = TokenExchanger(cfg, self.soap_client, credential, store=self.store)
        # seed and token are two calls, each bounded by cfg.timeout
        self.session_cache = SessionCache.from_clients(
            self.seed_client, self.token_exchanger, ttl=cfg.token_ttl, wait_timeout=cfg.timeout * 2
        )
        self.uploader = DocumentUploader(cfg, self.soap_client, self.session_cache)
        self.status_client = StatusClient(cfg, self.soap_client, self.session_cache, retries=status_retries)

    @property
    def credential(self) -> Credential:
        if self._credential is not None:
            return self._credential
        if self.store is None:
            raise CredentialError("No PKCS#12 path configured (SII_CERT_PFX_PATH)")
        return self.store.credential

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_seed(self) -> str:
        return self.seed_client.get_seed()

    def get_token(self, *, force_refresh: bool = False) -> str:
        """Cached session token; ``force_refresh`` drops the cached one first."""
        if force_refresh:
            self.session_cache.invalidate()
        return self.session_cache.get_token()

    def upload(self, envelope_xml: bytes | str, identity: Optional[SubmitterIdentity] = None) -> UploadReceipt:
        return self.uploader.upload(envelope_xml, identity=identity)

    def submit(self, document: Any, builder: EnvelopeBuilder, identity: Optional[SubmitterIdentity] = None) -> UploadReceipt:
        """Build the envelope for ``document`` and upload it."""
        identity = self.uploader.resolve_identity(identity)
        envelope = builder.build_envelope(document, identity)
        logger.debug("Built envelope of %d bytes", len(envelope))
        return self.uploader.upload(envelope, identity=identity)

    def submission_status(self, track_id: str | int) -> SubmissionStatus:
        return self.status_client.query_submission_status(track_id)

    def document_status(
        self,
        issuer_rut: str | int,
        issuer_dv: Optional[str],
        receiver_rut: str | int,
        receiver_dv: Optional[str],
        document_type: str | int,
        folio: str | int,
        issue_date: _dt.date | str,
        total_amount: str | int,
    ) -> DocumentStatus:
        return self.status_client.query_document_status(
            issuer_rut,
            issuer_dv,
            receiver_rut,
            receiver_dv,
            document_type,
            folio,
            issue_date,
            total_amount,
        )
