import datetime as _dt
import logging
import re
from typing import Any, Mapping, Optional, Sequence, Tuple

import requests
from dateutil import parser as date_parser
from lxml import etree
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from zeep.exceptions import Error as ZeepError
from zeep.exceptions import Fault
from zeep.exceptions import TransportError as ZeepTransportError
from zeep.helpers import serialize_object

from ..auth import TokenProvider
from ..config import SIIConfig
from ..errors import AuthorityRejection, ProtocolParseError, SIIError, TransportError
from ..models import DocumentStatus, SubmissionStatus
from ..rut import split_rut
from ..soap.client import SoapClient
from ..soap.response import Respuesta, iter_respuestas

logger = logging.getLogger(__name__)

SUBMISSION_BODY_TAGS = ("RECIBIDOS", "INFORMADOS", "ACEPTADOS", "RECHAZADOS", "REPAROS", "TRACKID")
DOCUMENT_BODY_TAGS = ()

_COMPACT_DATE = re.compile(r"^\d{8}$")


def format_issue_date(value: _dt.date | str) -> str:
    """``DDMMYYYY``, as QueryEstDte expects. Strings may be ISO dates or already compact."""
    if isinstance(value, _dt.date):
        return value.strftime("%d%m%Y")
    text = str(value).strip()
    if _COMPACT_DATE.match(text):
        return text
    try:
        return date_parser.isoparse(text).strftime("%d%m%Y")
    except ValueError as exc:
        raise ValueError(f"Unrecognized issue date {value!r}") from exc


def _as_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _flatten(data: Mapping[str, Any], into: Optional[dict] = None) -> dict:
    into = {} if into is None else into
    for key, value in data.items():
        if isinstance(value, Mapping):
            _flatten(value, into)
        elif value is not None:
            into.setdefault(str(key).upper(), str(value))
    return into


def _error_content(exc: Exception) -> Optional[str]:
    content = getattr(exc, "content", None)
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return content or None


def project_response(payload: Any, return_tag: str, body_tags: Sequence[str]) -> Tuple[Respuesta, Mapping[str, Any]]:
    """Normalize a zeep result (RESPUESTA text or a structured object) into a :class:`Respuesta`."""
    if payload is None:
        raise ProtocolParseError(f"{return_tag} returned nothing")
    if not isinstance(payload, (str, bytes)):
        payload = serialize_object(payload)
    if isinstance(payload, Mapping) and return_tag in payload:
        return project_response(payload[return_tag], return_tag, body_tags)
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        respuesta = next(iter_respuestas(payload, None, body_tags), None)
        if respuesta is None:
            raise ProtocolParseError(f"Cannot read {return_tag}", response=payload)
        return respuesta, {**respuesta.header, **respuesta.body}

    if isinstance(payload, Mapping):
        flat = _flatten(payload)
        return Respuesta(header=flat, body=flat, strategy="structured"), dict(payload)
    raise ProtocolParseError(f"Unexpected {return_tag} payload of type {type(payload).__name__}")


class StatusClient:
    """Read-only queries against QueryEstUp and QueryEstDte.

    Both are idempotent, so ``retries`` extra attempts may be made after a
    :class:`TransportError`. Rejections and parse errors are never retried.
    """

    def __init__(
        self,
        cfg: SIIConfig,
        soap_client: SoapClient,
        token_provider: TokenProvider,
        retries: int = 0,
        *,
        backoff: float = 0.5,
    ):
        self.cfg = cfg
        self.soap_client = soap_client
        self.token_provider = token_provider
        self.retries = retries
        self.backoff = backoff

    def _invoke(self, wsdl_url: str, operation: str, params: Mapping[str, Any]) -> Any:
        service = self.soap_client.service(wsdl_url)
        token = self.token_provider.get_token()
        try:
            return getattr(service, operation)(**params, Token=token)
        except Fault as exc:
            if exc.detail is not None:
                body = etree.tostring(exc.detail, encoding="unicode")
            else:
                body = self.soap_client.last_received_xml()
            raise AuthorityRejection(
                f"{operation} fault: {exc.message}",
                code=getattr(exc, "code", None),
                glosa=exc.message,
                response=body,
            ) from exc
        except (requests.RequestException, ZeepTransportError) as exc:
            raise TransportError(
                f"{operation} call failed: {exc}",
                status_code=getattr(exc, "status_code", None),
                response=_error_content(exc),
            ) from exc
        except ZeepError as exc:
            raise ProtocolParseError(
                f"{operation} answer could not be read: {exc}",
                response=_error_content(exc) or self.soap_client.last_received_xml(),
            ) from exc

    def _call(self, wsdl_url: str, operation: str, params: Mapping[str, Any]) -> Any:
        if self.retries <= 0:
            return self._invoke(wsdl_url, operation, params)
        retrying = Retrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=self.backoff, max=8),
            retry=retry_if_exception_type(TransportError),
            before_sleep=lambda state: logger.warning(
                "%s attempt %d failed, retrying: %s", operation, state.attempt_number, state.outcome.exception()
            ),
            reraise=True,
        )
        return retrying(self._invoke, wsdl_url, operation, params)

    def _company(self) -> Tuple[str, str]:
        if self.cfg.identity is None:
            raise SIIError("Status queries need the company RUT in SIIConfig.identity")
        return self.cfg.identity.company_rut, self.cfg.identity.company_dv

    def query_submission_status(self, track_id: str | int) -> SubmissionStatus:
        rut, dv = self._company()
        response = self._call(
            self.cfg.submission_status_wsdl,
            "getEstUp",
            {"RutCompania": rut, "DvCompania": dv, "TrackId": str(track_id)},
        )
        respuesta, raw = project_response(response, "getEstUpReturn", SUBMISSION_BODY_TAGS)
        status = SubmissionStatus(
            track_id=str(track_id),
            status=respuesta.estado,
            description=respuesta.glosa,
            received=_as_int(respuesta.get("RECIBIDOS")),
            informed=_as_int(respuesta.get("INFORMADOS")),
            accepted=_as_int(respuesta.get("ACEPTADOS")),
            rejected=_as_int(respuesta.get("RECHAZADOS")),
            objected=_as_int(respuesta.get("REPAROS")),
            attention_number=respuesta.get("NUM_ATENCION"),
            raw=raw,
        )
        logger.info("TRACKID %s status %s (%s)", status.track_id, status.status, status.description)
        return status

    def query_document_status(
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
        """Status of one document, identified by issuer, receiver, type, folio, date and amount.

        A ``None`` check digit means the RUT is given in ``12345678-5`` form.
        """
        if issuer_dv is None:
            issuer_rut, issuer_dv = split_rut(str(issuer_rut))
        if receiver_dv is None:
            receiver_rut, receiver_dv = split_rut(str(receiver_rut))
        rut, dv = self._company()
        params = {
            "RutConsultante": rut,
            "DvConsultante": dv,
            "RutCompania": str(issuer_rut),
            "DvCompania": str(issuer_dv).upper(),
            "RutReceptor": str(receiver_rut),
            "DvReceptor": str(receiver_dv).upper(),
            "TipoDte": str(document_type),
            "FolioDte": str(folio),
            "FechaEmisionDte": format_issue_date(issue_date),
            "MontoDte": str(total_amount),
        }
        response = self._call(self.cfg.document_status_wsdl, "getEstDte", params)
        respuesta, raw = project_response(response, "getEstDteReturn", DOCUMENT_BODY_TAGS)
        status = DocumentStatus(
            status=respuesta.estado,
            description=respuesta.glosa,
            error_code=respuesta.get("ERR_CODE"),
            error_description=respuesta.get("GLOSA_ERR"),
            attention_number=respuesta.get("NUM_ATENCION"),
            raw=raw,
        )
        logger.info("DTE %s folio %s status %s (%s)", params["TipoDte"], params["FolioDte"], status.status, status.description)
        return status
