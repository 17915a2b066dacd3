from lxml import etree
from lxml.etree import QName
from zeep import ns


def build_envelope(payload: etree._Element) -> bytes:
    """Wrap ``payload`` in a SOAP 1.1 envelope (the .jws services reject SOAP 1.2)."""
    envelope = etree.Element(QName(ns.SOAP_ENV_11, "Envelope"), nsmap={"soap": ns.SOAP_ENV_11})
    body = etree.SubElement(envelope, QName(ns.SOAP_ENV_11, "Body"))
    body.append(payload)
    return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")


def build_seed_request() -> bytes:
    return build_envelope(etree.Element("getSeed"))


def build_seed_document(seed: str) -> etree._Element:
    """``<getToken><item><Semilla>…</Semilla></item></getToken>``, the document that gets signed."""
    get_token = etree.Element("getToken")
    item = etree.SubElement(get_token, "item")
    etree.SubElement(item, "Semilla").text = str(seed)
    return get_token


def build_token_request(signed_xml: str) -> bytes:
    """The signed seed document travels as CDATA inside ``pszXml``."""
    get_token = etree.Element("getToken")
    psz = etree.SubElement(get_token, "pszXml")
    psz.text = etree.CDATA(signed_xml)
    return build_envelope(get_token)
