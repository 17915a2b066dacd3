import datetime as dt

import pytest
from lxml import etree
from zeep.exceptions import Fault, XMLParseError
from zeep.exceptions import TransportError as ZeepTransportError

from chilean_einvoice.api.status import StatusClient, format_issue_date, project_response
from chilean_einvoice.errors import AuthorityRejection, ProtocolParseError, TransportError
from chilean_einvoice.soap.client import SoapClient

from conftest import DummyTokenProvider

EST_UP = (
    '<SII:RESPUESTA xmlns:SII="http://www.sii.cl/XMLSchema">'
    "<SII:RESP_HDR><TRACKID>0123456789</TRACKID><ESTADO>EPR</ESTADO>"
    "<GLOSA>Envio Procesado</GLOSA><NUM_ATENCION>2567 ( 2024/05/01 12:00:00)</NUM_ATENCION></SII:RESP_HDR>"
    "<SII:RESP_BODY><TIPO_DOCTO>33</TIPO_DOCTO><INFORMADOS>3</INFORMADOS><ACEPTADOS>2</ACEPTADOS>"
    "<RECHAZADOS>1</RECHAZADOS><REPAROS>0</REPAROS></SII:RESP_BODY>"
    "</SII:RESPUESTA>"
)

EST_DTE = (
    '<SII:RESPUESTA xmlns:SII="http://www.sii.cl/XMLSchema">'
    "<SII:RESP_HDR><ESTADO>DOK</ESTADO><GLOSA_ESTADO>Documento Recibido por el SII. Datos Coinciden con los Registrados</GLOSA_ESTADO>"
    "<ERR_CODE>0</ERR_CODE><GLOSA_ERR>-</GLOSA_ERR><NUM_ATENCION>  42</NUM_ATENCION></SII:RESP_HDR>"
    "</SII:RESPUESTA>"
)


class DummyService:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def _next(self, name, kwargs):
        self.calls.append((name, kwargs))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def getEstUp(self, **kwargs):
        return self._next("getEstUp", kwargs)

    def getEstDte(self, **kwargs):
        return self._next("getEstDte", kwargs)


def _client(cfg, service, retries=0, tokens=None):
    services = {cfg.submission_status_wsdl: service, cfg.document_status_wsdl: service}
    soap = SoapClient(cfg, session=None, services=services)
    return StatusClient(cfg, soap, tokens or DummyTokenProvider(), retries=retries, backoff=0)


def test_submission_status_from_string(cfg):
    service = DummyService(EST_UP)
    status = _client(cfg, service).query_submission_status(123456789)

    assert service.calls == [
        ("getEstUp", {"RutCompania": "60803000", "DvCompania": "K", "TrackId": "123456789", "Token": "token123"})
    ]
    assert status.status == "EPR"
    assert status.description == "Envio Procesado"
    assert (status.informed, status.accepted, status.rejected, status.objected) == (3, 2, 1, 0)
    assert status.received is None
    assert status.attention_number.startswith("2567")


def test_submission_status_from_structured_object(cfg):
    payload = {"getEstUpReturn": {"RESP_HDR": {"ESTADO": "RSC", "GLOSA": "Rechazado por Error en Schema"}}}
    status = _client(cfg, DummyService(payload)).query_submission_status("9")
    assert status.status == "RSC"
    assert status.description == "Rechazado por Error en Schema"


def test_document_status(cfg):
    service = DummyService(EST_DTE)
    status = _client(cfg, service).query_document_status(
        "76543210-3", None, "11111111", "1", 33, 1200, dt.date(2024, 5, 1), 119000
    )
    _name, params = service.calls[0]
    assert params == {
        "RutConsultante": "60803000",
        "DvConsultante": "K",
        "RutCompania": "76543210",
        "DvCompania": "3",
        "RutReceptor": "11111111",
        "DvReceptor": "1",
        "TipoDte": "33",
        "FolioDte": "1200",
        "FechaEmisionDte": "01052024",
        "MontoDte": "119000",
        "Token": "token123",
    }
    assert status.status == "DOK"
    assert status.description.startswith("Documento Recibido")
    assert status.error_code == "0"
    assert status.error_description == "-"


def test_issue_date_formats():
    assert format_issue_date(dt.date(2024, 1, 9)) == "09012024"
    assert format_issue_date("2024-01-09") == "09012024"
    assert format_issue_date("09012024") == "09012024"
    with pytest.raises(ValueError):
        format_issue_date("9 de enero")


def test_fault_is_authority_rejection_and_not_retried(cfg):
    service = DummyService(Fault("Token invalido", code="soapenv:Server"))
    with pytest.raises(AuthorityRejection) as info:
        _client(cfg, service, retries=3).query_submission_status("1")
    assert info.value.glosa == "Token invalido"
    assert len(service.calls) == 1


def test_transport_errors_are_retried(cfg):
    service = DummyService(ZeepTransportError("gateway", status_code=503), ZeepTransportError("gateway", status_code=503), EST_UP)
    status = _client(cfg, service, retries=2).query_submission_status("1")
    assert status.status == "EPR"
    assert len(service.calls) == 3


def test_transport_error_without_retries(cfg):
    service = DummyService(ZeepTransportError("gateway", status_code=503), EST_UP)
    with pytest.raises(TransportError) as info:
        _client(cfg, service).query_submission_status("1")
    assert info.value.status_code == 503
    assert len(service.calls) == 1


def test_unreadable_payload():
    with pytest.raises(ProtocolParseError):
        project_response("<html>Servicio no disponible</html>", "getEstUpReturn", ())
    with pytest.raises(ProtocolParseError):
        project_response(None, "getEstUpReturn", ())


def test_fault_detail_travels_on_rejection(cfg):
    detail = etree.Element("detail")
    etree.SubElement(detail, "motivo").text = "TOKEN NO EXISTE"
    service = DummyService(Fault("Token invalido", code="soapenv:Server", detail=detail))
    with pytest.raises(AuthorityRejection) as info:
        _client(cfg, service).query_submission_status("1")
    assert "TOKEN NO EXISTE" in info.value.response


def test_transport_error_keeps_body(cfg):
    service = DummyService(ZeepTransportError("gateway", status_code=502, content=b"<html>Bad Gateway</html>"))
    with pytest.raises(TransportError) as info:
        _client(cfg, service).query_submission_status("1")
    assert info.value.response == "<html>Bad Gateway</html>"


def test_unreadable_answer_keeps_received_envelope(cfg):
    soap = SoapClient(cfg, session=None)
    envelope = etree.fromstring(
        '<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/">'
        "<soapenv:Body><getEstUpReturn>Servicio no disponible</getEstUpReturn></soapenv:Body>"
        "</soapenv:Envelope>"
    )

    class GarbledService:
        def getEstUp(self, **kwargs):
            soap.history.egress(envelope, {}, None, None)
            soap.history.ingress(envelope, {}, None)
            raise XMLParseError("bad xml")

    soap._services[cfg.submission_status_wsdl] = GarbledService()
    client = StatusClient(cfg, soap, DummyTokenProvider(), backoff=0)
    with pytest.raises(ProtocolParseError) as info:
        client.query_submission_status("1")
    assert "Servicio no disponible" in info.value.response


def test_no_received_envelope_leaves_response_empty(cfg):
    assert SoapClient(cfg, session=None).last_received_xml() is None
