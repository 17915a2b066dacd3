"""Enveloped XML-DSig signatures for the SII handshake.

The reference carries only the enveloped-signature transform, so its digest is
taken over the inclusive C14N form of the referenced element (the XML-DSig
default). SignedInfo itself is canonicalized with the profile's method,
exclusive C14N for the authentication profile. KeyInfo publishes both the raw
RSA key value and the certificate; the SII cross-checks them.
"""
import base64
import copy
import logging
import re
from dataclasses import dataclass
from typing import Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from lxml import etree
from lxml.etree import QName
from zeep import ns

from .certificates import Credential
from .errors import SigningError
from .utils_crypto import rsa_public_key_from_modexp

logger = logging.getLogger(__name__)

C14N = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
EXC_C14N = "http://www.w3.org/2001/10/xml-exc-c14n#"
ENVELOPED = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
RSA_SHA1 = "http://www.w3.org/2000/09/xmldsig#rsa-sha1"
RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
SHA1 = "http://www.w3.org/2000/09/xmldsig#sha1"
SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"

_DIGEST_HASHES = {SHA1: hashes.SHA1, SHA256: hashes.SHA256}
_SIGNATURE_HASHES = {RSA_SHA1: hashes.SHA1, RSA_SHA256: hashes.SHA256}
_EXCLUSIVE = {C14N: False, EXC_C14N: True}

ID_ATTRIBUTES = ("Id", "ID", "id")
_XML_NS_PREFIX = "{http://www.w3.org/XML/1998/namespace}"

_XML_DECL = re.compile(r"^\s*<\?xml[^>]*\?>")
_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)

XmlInput = Union[bytes, str, etree._Element]


@dataclass(frozen=True)
class SignatureProfile:
    signature_method: str
    digest_method: str
    canonicalization_method: str

    def validate(self) -> None:
        if self.signature_method not in _SIGNATURE_HASHES:
            raise SigningError(f"Unsupported signature method {self.signature_method}")
        if self.digest_method not in _DIGEST_HASHES:
            raise SigningError(f"Unsupported digest method {self.digest_method}")
        if self.canonicalization_method not in _EXCLUSIVE:
            raise SigningError(f"Unsupported canonicalization {self.canonicalization_method}")


# GetTokenFromSeed: RSA-SHA1 / SHA1 / exclusive C14N of SignedInfo.
AUTH_PROFILE = SignatureProfile(RSA_SHA1, SHA1, EXC_C14N)
# Reserved for signing DTE documents; no document builder uses it yet.
DOCUMENT_PROFILE = SignatureProfile(RSA_SHA1, SHA1, C14N)


def parse_xml(xml: XmlInput) -> etree._Element:
    """Return a fresh root element; element inputs are copied, never mutated."""
    if isinstance(xml, etree._Element):
        xml = etree.tostring(xml.getroottree())
    if isinstance(xml, str):
        xml = _XML_DECL.sub("", xml, count=1)
        return etree.fromstring(xml, _PARSER)
    return etree.fromstring(xml, _PARSER)


def _detached(node: etree._Element, inherit_xml_attrs: bool) -> etree._Element:
    """Standalone copy of ``node`` declaring every namespace in scope at the apex.

    libxml2 emits stray ``xmlns=""`` when an attached subtree is serialized
    with inclusive C14N, so the apex is rebuilt as a document root instead.
    """
    attrib = dict(node.attrib)
    if inherit_xml_attrs:
        for ancestor in node.iterancestors():
            for name, value in ancestor.attrib.items():
                if name.startswith(_XML_NS_PREFIX):
                    attrib.setdefault(name, value)
    nsmap = dict(node.nsmap)
    if QName(node).namespace is None:
        nsmap.pop(None, None)
    apex = etree.Element(node.tag, attrib=attrib, nsmap=nsmap)
    apex.text = node.text
    for child in node:
        apex.append(copy.deepcopy(child))
    return etree.fromstring(etree.tostring(apex), _PARSER)


def canonicalize(node: etree._Element, method: str = C14N) -> bytes:
    exclusive = _EXCLUSIVE[method]
    root = _detached(node, inherit_xml_attrs=not exclusive)
    return etree.tostring(root, method="c14n", exclusive=exclusive, with_comments=False)


def _b64_digest(data: bytes, method: str) -> str:
    digest = hashes.Hash(_DIGEST_HASHES[method]())
    digest.update(data)
    return base64.b64encode(digest.finalize()).decode("ascii")


def element_id(node: etree._Element) -> Optional[str]:
    for attr in ID_ATTRIBUTES:
        value = node.get(attr)
        if value is not None:
            return value
    return None


class XmlSigner:
    """Signs a reference target with an enveloped signature appended as its last child."""

    def __init__(self, credential: Credential, profile: SignatureProfile = AUTH_PROFILE, *, default_id: str = "GT1"):
        profile.validate()
        self.credential = credential
        self.profile = profile
        self.default_id = default_id

    def sign(self, xml: XmlInput, reference_xpath: str = "/*") -> etree._Element:
        root = parse_xml(xml)
        found = [n for n in root.getroottree().xpath(reference_xpath) if isinstance(n, etree._Element)]
        if not found:
            raise SigningError(f"Reference XPath {reference_xpath!r} matched no element")
        target = found[0]

        ref_id = element_id(target)
        if ref_id is None:
            # Must be in place before digesting; the digest covers the attribute.
            target.set("Id", self.default_id)
            ref_id = self.default_id
        elif not ref_id.strip():
            raise SigningError(f"<{QName(target).localname}> has an empty identifier attribute")

        digest_value = _b64_digest(canonicalize(target, C14N), self.profile.digest_method)
        signature = self._build_signature(ref_id, digest_value)
        target.append(signature)

        signed_info = signature.find(QName(ns.DS, "SignedInfo"))
        si_c14n = canonicalize(signed_info, self.profile.canonicalization_method)
        sig_bytes = self.credential.private_key.sign(
            si_c14n,
            padding.PKCS1v15(),
            _SIGNATURE_HASHES[self.profile.signature_method](),
        )
        signature.find(QName(ns.DS, "SignatureValue")).text = base64.b64encode(sig_bytes).decode("ascii")
        logger.debug("Signed <%s Id=%s> with %s", QName(target).localname, ref_id, self.profile.signature_method)
        return root

    def sign_to_string(self, xml: XmlInput, reference_xpath: str = "/*") -> str:
        return etree.tostring(self.sign(xml, reference_xpath), encoding="unicode")

    def _build_signature(self, ref_id: str, digest_value: str) -> etree._Element:
        signature = etree.Element(QName(ns.DS, "Signature"), nsmap={None: ns.DS})
        signed_info = etree.SubElement(signature, QName(ns.DS, "SignedInfo"))
        etree.SubElement(
            signed_info,
            QName(ns.DS, "CanonicalizationMethod"),
            Algorithm=self.profile.canonicalization_method,
        )
        etree.SubElement(signed_info, QName(ns.DS, "SignatureMethod"), Algorithm=self.profile.signature_method)
        reference = etree.SubElement(signed_info, QName(ns.DS, "Reference"), URI=f"#{ref_id}")
        transforms = etree.SubElement(reference, QName(ns.DS, "Transforms"))
        etree.SubElement(transforms, QName(ns.DS, "Transform"), Algorithm=ENVELOPED)
        etree.SubElement(reference, QName(ns.DS, "DigestMethod"), Algorithm=self.profile.digest_method)
        etree.SubElement(reference, QName(ns.DS, "DigestValue")).text = digest_value
        etree.SubElement(signature, QName(ns.DS, "SignatureValue"))

        key_info = etree.SubElement(signature, QName(ns.DS, "KeyInfo"))
        key_value = etree.SubElement(key_info, QName(ns.DS, "KeyValue"))
        rsa_key_value = etree.SubElement(key_value, QName(ns.DS, "RSAKeyValue"))
        etree.SubElement(rsa_key_value, QName(ns.DS, "Modulus")).text = self.credential.modulus_b64
        etree.SubElement(rsa_key_value, QName(ns.DS, "Exponent")).text = self.credential.exponent_b64
        x509_data = etree.SubElement(key_info, QName(ns.DS, "X509Data"))
        etree.SubElement(x509_data, QName(ns.DS, "X509Certificate")).text = self.credential.certificate_b64
        return signature


def _find_by_id(root: etree._Element, value: str) -> Optional[etree._Element]:
    for node in root.iter(etree.Element):
        if element_id(node) == value:
            return node
    return None


def verify_signature(xml: XmlInput) -> etree._Element:
    """Recompute digest and signature of the last enveloped Signature in ``xml``.

    Checks that RSAKeyValue and X509Certificate describe the same key. Returns
    the referenced element; raises :class:`SigningError` on any mismatch.
    """
    root = parse_xml(xml)
    signatures = root.xpath("//ds:Signature", namespaces={"ds": ns.DS})
    if not signatures:
        raise SigningError("Document carries no Signature element")
    signature = signatures[-1]

    def _one(parent, path):
        node = parent.find(path, namespaces={"ds": ns.DS})
        if node is None:
            raise SigningError(f"Signature is missing {path}")
        return node

    signed_info = _one(signature, "ds:SignedInfo")
    c14n_method = _one(signed_info, "ds:CanonicalizationMethod").get("Algorithm")
    sig_method = _one(signed_info, "ds:SignatureMethod").get("Algorithm")
    reference = _one(signed_info, "ds:Reference")
    digest_method = _one(reference, "ds:DigestMethod").get("Algorithm")
    expected_digest = (_one(reference, "ds:DigestValue").text or "").strip()
    signature_value = "".join((_one(signature, "ds:SignatureValue").text or "").split())
    if c14n_method not in _EXCLUSIVE or sig_method not in _SIGNATURE_HASHES or digest_method not in _DIGEST_HASHES:
        raise SigningError("Signature uses unsupported algorithms")

    modulus = _one(signature, "ds:KeyInfo/ds:KeyValue/ds:RSAKeyValue/ds:Modulus").text or ""
    exponent = _one(signature, "ds:KeyInfo/ds:KeyValue/ds:RSAKeyValue/ds:Exponent").text or ""
    public_key = rsa_public_key_from_modexp(modulus, exponent)
    cert_node = signature.find("ds:KeyInfo/ds:X509Data/ds:X509Certificate", namespaces={"ds": ns.DS})
    if cert_node is not None and cert_node.text:
        certificate = x509.load_der_x509_certificate(base64.b64decode("".join(cert_node.text.split())))
        if certificate.public_key().public_numbers() != public_key.public_numbers():
            raise SigningError("RSAKeyValue does not match X509Certificate")

    si_c14n = canonicalize(signed_info, c14n_method)

    uri = reference.get("URI") or ""
    target = root if uri == "" else _find_by_id(root, uri.lstrip("#"))
    if target is None:
        raise SigningError(f"Reference {uri!r} not found")
    transforms = [t.get("Algorithm") for t in reference.findall("ds:Transforms/ds:Transform", namespaces={"ds": ns.DS})]
    if ENVELOPED in transforms:
        parent = signature.getparent()
        if signature.tail:
            previous = signature.getprevious()
            if previous is not None:
                previous.tail = (previous.tail or "") + signature.tail
            else:
                parent.text = (parent.text or "") + signature.tail
        parent.remove(signature)
    ref_c14n = EXC_C14N if EXC_C14N in transforms else C14N
    actual_digest = _b64_digest(canonicalize(target, ref_c14n), digest_method)
    if actual_digest != expected_digest:
        raise SigningError(f"DigestValue mismatch for {uri!r}")

    try:
        public_key.verify(
            base64.b64decode(signature_value),
            si_c14n,
            padding.PKCS1v15(),
            _SIGNATURE_HASHES[sig_method](),
        )
    except InvalidSignature as exc:
        raise SigningError("SignatureValue does not verify") from exc
    return target
