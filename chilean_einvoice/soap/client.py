import logging
import threading
from typing import Any, Mapping, Optional

import requests
from lxml import etree
from zeep import Client, Settings
from zeep.exceptions import Error as ZeepError
from zeep.exceptions import TransportError as ZeepTransportError
from zeep.plugins import HistoryPlugin
from zeep.transports import Transport

from ..config import SIIConfig
from ..errors import ProtocolParseError, TransportError

logger = logging.getLogger(__name__)


class SoapClient:
    """HTTP plumbing shared by every SII call.

    The seed/token services are called with hand-built envelopes because their
    answers need layered parsing; the status services go through zeep. Tests
    inject ``services`` keyed by WSDL URL instead of fetching WSDLs.
    """

    def __init__(self, cfg: SIIConfig, session: requests.Session, services: Optional[Mapping[str, Any]] = None):
        self.cfg = cfg
        self._session = session
        self._services = dict(services or {})
        self._lock = threading.Lock()
        self.history = HistoryPlugin()

    @property
    def session(self) -> requests.Session:
        return self._session

    def _headers(self, extra: Optional[Mapping[str, str]] = None) -> dict:
        headers = {"User-Agent": self.cfg.user_agent}
        headers.update(extra or {})
        return headers

    def post_xml(self, url: str, envelope: bytes) -> requests.Response:
        headers = self._headers({"Content-Type": "text/xml; charset=utf-8", "SOAPAction": '""'})
        try:
            resp = self._session.post(url, data=envelope, headers=headers, timeout=self.cfg.timeout)
        except requests.RequestException as exc:
            raise TransportError(f"SOAP call to {url} failed: {exc}") from exc
        logger.debug("POST %s -> HTTP %s (%d bytes)", url, resp.status_code, len(resp.content or b""))
        return resp

    def post_multipart(self, url: str, fields: Mapping[str, str], files: Mapping[str, tuple], headers: Mapping[str, str]) -> requests.Response:
        try:
            resp = self._session.post(
                url,
                data=dict(fields),
                files=dict(files),
                headers=self._headers(headers),
                timeout=self.cfg.timeout,
            )
        except requests.RequestException as exc:
            raise TransportError(f"Upload to {url} failed: {exc}") from exc
        logger.debug("POST %s (multipart) -> HTTP %s", url, resp.status_code)
        return resp

    def service(self, wsdl_url: str):
        with self._lock:
            if wsdl_url in self._services:
                return self._services[wsdl_url]
            try:
                transport = Transport(session=self._session, timeout=self.cfg.timeout, operation_timeout=self.cfg.timeout)
                settings = Settings(strict=False, xml_huge_tree=True)
                client = Client(wsdl_url, transport=transport, settings=settings, plugins=[self.history])
            except (requests.RequestException, ZeepTransportError) as exc:
                raise TransportError(f"Cannot fetch WSDL {wsdl_url}: {exc}") from exc
            except ZeepError as exc:
                raise ProtocolParseError(f"Cannot load WSDL {wsdl_url}: {exc}") from exc
            logger.info("Initialized SII SOAP client @ %s", wsdl_url)
            self._services[wsdl_url] = client.service
            return client.service

    def last_received_xml(self) -> Optional[str]:
        """Raw envelope of the last zeep answer, or None when nothing was received."""
        try:
            received = self.history.last_received
        except IndexError:
            return None
        if not received or received.get("envelope") is None:
            return None
        return etree.tostring(received["envelope"], encoding="unicode")
