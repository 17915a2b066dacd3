"""Layered readers for the SII ``RESPUESTA`` payload.

The .jws services return a SOAP envelope whose ``*Return`` element holds an
XML document as escaped text. Depending on the environment that text is
escaped once or twice, and some proxies hand back the bare document. Each
reader below handles one shape and returns ``None`` when it does not apply, so
callers try them in order:

1. :func:`from_soap_return`   outer envelope → return text → unescape → RESPUESTA
2. :func:`from_document`      the body itself (unescaped) is the RESPUESTA
3. :func:`scan_tags`          regex over the fully unescaped body
"""
import html
import re
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Iterator, Mapping, Optional, Sequence, Tuple

from lxml import etree
from lxml.etree import QName

ROOT_TAG = "RESPUESTA"
HEADER_TAGS = ("ESTADO", "GLOSA", "GLOSA_ESTADO", "ERR_CODE", "GLOSA_ERR", "NUM_ATENCION")

_ESCAPED = re.compile(r"&(?:lt|gt|amp|quot|apos|#\d+|#x[0-9a-fA-F]+);")
_XML_DECL = re.compile(r"^\s*<\?xml[^>]*\?>")
_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)
MAX_UNESCAPE_DEPTH = 3


@dataclass(frozen=True)
class Respuesta:
    """Flattened ``RESP_HDR`` / ``RESP_BODY`` leaves, keyed by upper-case local name."""

    header: Mapping[str, str] = field(default_factory=dict)
    body: Mapping[str, str] = field(default_factory=dict)
    strategy: str = ""

    @property
    def estado(self) -> Optional[str]:
        return self.header.get("ESTADO")

    @property
    def glosa(self) -> Optional[str]:
        return self.header.get("GLOSA") or self.header.get("GLOSA_ESTADO")

    def get(self, tag: str) -> Optional[str]:
        tag = tag.upper()
        value = self.body.get(tag)
        if value is None:
            value = self.header.get(tag)
        return value


Reader = Callable[[str], Optional[Respuesta]]


def _local(node: etree._Element) -> str:
    return QName(node).localname


def unescape_layers(text: str, max_depth: int = MAX_UNESCAPE_DEPTH) -> str:
    """Unescape until the text looks like markup."""
    depth = 0
    while depth < max_depth and not text.lstrip().startswith("<") and _ESCAPED.search(text):
        text = html.unescape(text)
        depth += 1
    return text


def fully_unescape(text: str, max_depth: int = MAX_UNESCAPE_DEPTH) -> str:
    for _ in range(max_depth):
        if not _ESCAPED.search(text):
            break
        text = html.unescape(text)
    return text


def parse_fragment(text: str) -> Optional[etree._Element]:
    text = _XML_DECL.sub("", text.strip(), count=1).strip()
    if not text.startswith("<"):
        return None
    try:
        return etree.fromstring(text, _PARSER)
    except (etree.XMLSyntaxError, ValueError):
        return None


def respuesta_from_element(root: etree._Element, strategy: str) -> Optional[Respuesta]:
    if _local(root) == ROOT_TAG:
        node = root
    else:
        node = next((el for el in root.iter(etree.Element) if _local(el) == ROOT_TAG), None)
    if node is None:
        return None
    header: dict = {}
    body: dict = {}
    for section in node.iterchildren(etree.Element):
        name = _local(section).upper()
        if name == "RESP_HDR":
            target = header
        elif name == "RESP_BODY":
            target = body
        else:
            continue
        for leaf in section.iterdescendants(etree.Element):
            if len(leaf) == 0:
                target.setdefault(_local(leaf).upper(), (leaf.text or "").strip())
    return Respuesta(header=header, body=body, strategy=strategy)


def from_soap_return(raw: str, return_tag: str) -> Optional[Respuesta]:
    root = parse_fragment(raw)
    if root is None or _local(root) != "Envelope":
        return None
    ret = next((el for el in root.iter(etree.Element) if _local(el) == return_tag), None)
    if ret is None:
        return None
    if len(ret):
        return respuesta_from_element(ret, "soap-return")
    if not ret.text:
        return None
    inner = parse_fragment(unescape_layers(ret.text))
    if inner is None:
        return None
    return respuesta_from_element(inner, "soap-return")


def from_document(raw: str) -> Optional[Respuesta]:
    root = parse_fragment(unescape_layers(raw))
    if root is None:
        return None
    return respuesta_from_element(root, "document")


def _tag_pattern(tag: str) -> "re.Pattern[str]":
    return re.compile(rf"<(?:[\w.-]+:)?{tag}\b[^>]*>\s*([^<]*?)\s*</(?:[\w.-]+:)?{tag}\s*>", re.IGNORECASE)


def scan_tags(raw: str, tags: Sequence[str] = ()) -> Optional[Respuesta]:
    text = fully_unescape(raw)
    body = {}
    header = {}
    for tag in tags:
        match = _tag_pattern(tag).search(text)
        if match:
            body[tag.upper()] = match.group(1)
    for tag in HEADER_TAGS:
        match = _tag_pattern(tag).search(text)
        if match:
            header[tag] = match.group(1)
    if not body and not header:
        return None
    return Respuesta(header=header, body=body, strategy="regex")


def readers(return_tag: Optional[str], body_tags: Sequence[str]) -> Tuple[Reader, ...]:
    chain = []
    if return_tag:
        chain.append(partial(from_soap_return, return_tag=return_tag))
    chain.append(from_document)
    chain.append(partial(scan_tags, tags=tuple(body_tags)))
    return tuple(chain)


def iter_respuestas(raw: str, return_tag: Optional[str], body_tags: Sequence[str]) -> Iterator[Respuesta]:
    """Yield the result of every reader that could read ``raw``, in order."""
    for reader in readers(return_tag, body_tags):
        result = reader(raw)
        if result is not None:
            yield result
