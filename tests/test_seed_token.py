import html

import pytest
from lxml import etree

from chilean_einvoice.api.seed import SeedClient, parse_seed_response
from chilean_einvoice.api.token import TokenExchanger, parse_token_response
from chilean_einvoice.errors import AuthorityRejection, CredentialError, ProtocolParseError, TransportError
from chilean_einvoice.models import ParseFailure, Rejected, Seed, Token
from chilean_einvoice.xmldsig import verify_signature

from conftest import DummyResponse

SOAP = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/">'
    "<soapenv:Body><ns1:{op}Response xmlns:ns1=\"http://DefaultNamespace\">"
    "<{op}Return>{payload}</{op}Return>"
    "</ns1:{op}Response></soapenv:Body></soapenv:Envelope>"
)


def respuesta(body="", estado="00", glosa=None):
    hdr = f"<ESTADO>{estado}</ESTADO>" + (f"<GLOSA>{glosa}</GLOSA>" if glosa else "")
    return (
        '<SII:RESPUESTA xmlns:SII="http://www.sii.cl/XMLSchema">'
        f"<SII:RESP_BODY>{body}</SII:RESP_BODY><SII:RESP_HDR>{hdr}</SII:RESP_HDR>"
        "</SII:RESPUESTA>"
    )


def seed_response(inner, escapes=1):
    for _ in range(escapes):
        inner = html.escape(inner)
    return SOAP.format(op="getSeed", payload=inner)


def token_response(inner):
    return SOAP.format(op="getToken", payload=html.escape(inner))


class DummySoapClient:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post_xml(self, url, envelope):
        self.calls.append((url, envelope))
        return self.responses.pop(0)


@pytest.mark.parametrize("escapes", [1, 2])
def test_seed_from_escaped_soap(escapes):
    raw = seed_response(respuesta("<SEMILLA>031289438273</SEMILLA>"), escapes)
    assert parse_seed_response(raw) == Seed("031289438273")


def test_seed_from_bare_document():
    assert parse_seed_response(respuesta("<SEMILLA>77</SEMILLA>")) == Seed("77")


def test_seed_from_regex_fallback():
    raw = "<html><p>&lt;SEMILLA&gt;0042&lt;/SEMILLA&gt;<br></html>"
    assert parse_seed_response(raw) == Seed("0042")


def test_seed_never_empty():
    result = parse_seed_response(seed_response(respuesta("<SEMILLA></SEMILLA>", estado="-1")))
    assert isinstance(result, ParseFailure)
    assert isinstance(parse_seed_response("<html>Servicio no disponible</html>"), ParseFailure)


def test_seed_client_posts_get_seed(cfg):
    soap = DummySoapClient(DummyResponse(seed_response(respuesta("<SEMILLA>123</SEMILLA>"))))
    assert SeedClient(cfg, soap).get_seed() == "123"
    url, envelope = soap.calls[0]
    assert url == "https://maullin.sii.cl/DTEWS/CrSeed.jws"
    root = etree.fromstring(envelope)
    assert root.find(".//getSeed") is not None


def test_seed_client_errors(cfg):
    soap = DummySoapClient(DummyResponse("<html>bad</html>"), DummyResponse("<html>bad gateway</html>", 502))
    client = SeedClient(cfg, soap)
    with pytest.raises(ProtocolParseError) as info:
        client.get_seed()
    assert "bad" in info.value.response
    with pytest.raises(TransportError) as info:
        client.get_seed()
    assert info.value.status_code == 502


def test_token_parse_outcomes():
    assert parse_token_response(token_response(respuesta("<TOKEN>ABCDEF123</TOKEN>"))) == Token("ABCDEF123")

    rejected = parse_token_response(token_response(respuesta(estado="05", glosa="Token no valido")))
    assert isinstance(rejected, Rejected)
    assert rejected.code == "05"
    assert rejected.glosa == "Token no valido"

    assert isinstance(parse_token_response(token_response(respuesta())), ParseFailure)
    assert isinstance(parse_token_response("garbage"), ParseFailure)


def test_exchange_seed_sends_signed_cdata(cfg, credential):
    soap = DummySoapClient(DummyResponse(token_response(respuesta("<TOKEN>TKN0001</TOKEN>"))))
    token = TokenExchanger(cfg, soap, credential).exchange_seed("031289438273")
    assert token == "TKN0001"

    url, envelope = soap.calls[0]
    assert url == "https://maullin.sii.cl/DTEWS/GetTokenFromSeed.jws"
    assert b"<![CDATA[" in envelope
    signed = etree.fromstring(envelope).find(".//pszXml").text
    target = verify_signature(signed)
    assert target.findtext("item/Semilla") == "031289438273"
    assert target.get("Id") == "GT1"


def test_exchange_seed_rejection(cfg, credential):
    soap = DummySoapClient(DummyResponse(token_response(respuesta(estado="05", glosa="Firma no valida"))))
    with pytest.raises(AuthorityRejection) as info:
        TokenExchanger(cfg, soap, credential).exchange_seed("1")
    assert info.value.code == "05"
    assert info.value.glosa == "Firma no valida"


def test_exchange_seed_needs_credential(cfg):
    with pytest.raises(CredentialError):
        TokenExchanger(cfg, DummySoapClient()).exchange_seed("1")
