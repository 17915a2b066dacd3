import logging
import re
from typing import Any, Optional, Protocol

from ..auth import TokenProvider
from ..config import SIIConfig
from ..errors import SIIError
from ..models import SubmitterIdentity, UploadReceipt
from ..soap.client import SoapClient
from ..soap.response import fully_unescape
from ..utils import excerpt

logger = logging.getLogger(__name__)

UPLOAD_FILENAME = "envio.xml"

_TRACKID_PATTERNS = (
    re.compile(r"<TRACKID>\s*(\d+)\s*</TRACKID>", re.IGNORECASE),
    re.compile(r"TRACKID\s*=\s*(\d+)", re.IGNORECASE),
)
_STATUS = re.compile(r"<STATUS>\s*([^<]*?)\s*</STATUS>", re.IGNORECASE)


class EnvelopeBuilder(Protocol):
    """Produces the signed EnvioDTE / EnvioBOLETA bytes for a business document."""

    def build_envelope(self, document: Any, identity: SubmitterIdentity) -> bytes:
        ...


def parse_upload_response(http_status: int, body: str) -> UploadReceipt:
    text = fully_unescape(body or "")
    track_id = None
    for pattern in _TRACKID_PATTERNS:
        match = pattern.search(text)
        if match:
            track_id = match.group(1)
            break
    status = _STATUS.search(text)
    return UploadReceipt(
        http_status=http_status,
        raw=body or "",
        track_id=track_id,
        upload_status=status.group(1) if status else None,
    )


class DocumentUploader:
    def __init__(self, cfg: SIIConfig, soap_client: SoapClient, token_provider: Optional[TokenProvider] = None):
        self.cfg = cfg
        self.soap_client = soap_client
        self.token_provider = token_provider

    def resolve_identity(self, identity: Optional[SubmitterIdentity]) -> SubmitterIdentity:
        identity = identity or self.cfg.identity
        if identity is None:
            raise SIIError("Upload needs a SubmitterIdentity (sender and company RUT)")
        return identity

    def upload(
        self,
        envelope_xml: bytes | str,
        identity: Optional[SubmitterIdentity] = None,
        token: Optional[str] = None,
    ) -> UploadReceipt:
        """POST the envelope to DTEUpload and report the TRACKID, if the SII gave one.

        Transport problems raise :class:`TransportError`; anything the SII
        answered, including HTML error pages, comes back as a receipt.
        """
        identity = self.resolve_identity(identity)
        if token is None:
            if self.token_provider is None:
                raise SIIError("Upload needs a token or a token provider")
            token = self.token_provider.get_token()
        if isinstance(envelope_xml, str):
            envelope_xml = envelope_xml.encode("ISO-8859-1", errors="xmlcharrefreplace")

        resp = self.soap_client.post_multipart(
            self.cfg.upload_url,
            fields=identity.form_fields(),
            files={"archivo": (UPLOAD_FILENAME, envelope_xml, "text/xml")},
            headers={"Cookie": f"TOKEN={token}"},
        )
        receipt = parse_upload_response(resp.status_code, resp.text)
        if receipt.ok:
            logger.info("Uploaded %d bytes to %s, TRACKID=%s", len(envelope_xml), self.cfg.upload_url, receipt.track_id)
        else:
            logger.warning(
                "Upload to %s returned no TRACKID (HTTP %s, STATUS=%s): %s",
                self.cfg.upload_url,
                resp.status_code,
                receipt.upload_status,
                excerpt(resp.text, 300),
            )
        return receipt
