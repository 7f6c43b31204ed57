"""XML parsing helpers shared by the package, content and TOC services.

Wraps lxml.etree with the parser settings used for every document read
from a book: no network access, no external entity resolution, no DTD
loading. Lookups tolerate both namespaced and bare element names since
packages in the wild mix prefixed (opf:item) and unprefixed (item) forms.
"""

from collections.abc import Iterator

from lxml import etree

NS = {
    "opf": "http://www.idpf.org/2007/opf",
    "dc": "http://purl.org/dc/elements/1.1/",
    "container": "urn:oasis:names:tc:opendocument:xmlns:container",
    "enc": "http://www.w3.org/2001/04/xmlenc#",
    "ncx": "http://www.daisy.org/z3986/2005/ncx/",
    "xhtml": "http://www.w3.org/1999/xhtml",
    "epub": "http://www.idpf.org/2007/ops",
}


class XmlParseError(ValueError):
    """Raised when a buffer is not well-formed XML."""

    pass


def _make_parser() -> etree.XMLParser:
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        load_dtd=False,
        remove_comments=False,
        huge_tree=False,
    )


def parse_buffer(data: bytes) -> etree._Element:
    """Parse a whole document buffer.

    Raises:
        XmlParseError: If the buffer is not well-formed.
    """
    try:
        root = etree.fromstring(bytes(data), parser=_make_parser())
    except etree.XMLSyntaxError as exc:
        raise XmlParseError(str(exc)) from exc
    if root is None:
        raise XmlParseError("Empty document")
    return root


def localname(el: etree._Element) -> str:
    """Tag without namespace; '' for comments and processing instructions."""
    tag = el.tag
    if not isinstance(tag, str):
        return ""
    return etree.QName(tag).localname


def _candidates(name: str, ns: str | None) -> tuple[str, ...]:
    return (f"{{{ns}}}{name}", name) if ns else (name,)


def child(el: etree._Element | None, name: str, ns: str | None = None) -> etree._Element | None:
    """First child named name, trying the namespaced form before the bare one."""
    if el is None:
        return None
    for tag in _candidates(name, ns):
        found = el.find(tag)
        if found is not None:
            return found
    return None


def children(el: etree._Element | None, name: str, ns: str | None = None) -> list[etree._Element]:
    """All children named name, namespaced form first, bare form as fallback."""
    if el is None:
        return []
    for tag in _candidates(name, ns):
        found = el.findall(tag)
        if found:
            return found
    return []


def iter_named(el: etree._Element, name: str) -> Iterator[etree._Element]:
    """Direct children whose local name is name, whatever their namespace."""
    for sub in el:
        if localname(sub) == name:
            yield sub


def text_content(el: etree._Element) -> str:
    """Concatenated text of el and its descendants."""
    return "".join(el.itertext())
