"""Package model: container pointer, OPF package document, encryption manifest.

Loads and validates META-INF/container.xml and the OPF it points to, and
exposes metadata, manifest and spine lookups derived on demand from the
parsed tree. No second index is built over the manifest; every lookup walks
the tree so it cannot drift from it.

Missing required structure raises FatalFormatError. The encryption
manifest is optional: when absent or unsupported no resource is treated as
obfuscated.
"""

from __future__ import annotations

from dataclasses import dataclass

from lxml import etree

from folio.errors import ErrorCode, FatalFormatError, ResourceMissingError
from folio.logging import get_logger
from folio.services.hrefs import extract_folder
from folio.services.obfuscation import ObfuscationKind, kind_for_algorithm
from folio.services.xmltree import NS, XmlParseError, child, children, parse_buffer
from folio.storage.archive import ArchiveReaderBase

logger = get_logger(__name__)

MIMETYPE_PATH = "mimetype"
EPUB_MIMETYPE = b"application/epub+zip"
CONTAINER_PATH = "META-INF/container.xml"
ENCRYPTION_PATH = "META-INF/encryption.xml"

OPF_MEDIA_TYPE = "application/oebps-package+xml"
SUPPORTED_CONTAINER_VERSION = "1.0"
SUPPORTED_PACKAGE_VERSIONS = frozenset({"1.0", "2.0", "3.0"})

COVER_META_NAME = "cover"
CONVENTIONAL_COVER_IDS = ("cover-image", "cover")

_OPF = NS["opf"]


@dataclass(frozen=True)
class ManifestEntry:
    """One manifest item. Hrefs are relative to the package folder."""

    id: str
    href: str
    media_type: str
    properties: str = ""


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------


def check_mimetype(archive: ArchiveReaderBase) -> None:
    """Require a mimetype entry declaring application/epub+zip.

    Raises:
        FatalFormatError: If the entry is absent or declares another type.
    """
    try:
        data = archive.read(MIMETYPE_PATH)
    except ResourceMissingError as exc:
        raise FatalFormatError(ErrorCode.E_MIMETYPE_INVALID, "No mimetype entry") from exc
    if not data.startswith(EPUB_MIMETYPE):
        raise FatalFormatError(ErrorCode.E_MIMETYPE_INVALID, "This is not an EPUB ebook format")


def find_opf_path(archive: ArchiveReaderBase) -> str:
    """Read the container pointer file and return the rootfile path.

    Raises:
        FatalFormatError: If the container is absent, malformed, of another
            version, or declares no OPF rootfile.
    """
    try:
        root = parse_buffer(archive.read(CONTAINER_PATH))
    except ResourceMissingError as exc:
        raise FatalFormatError(ErrorCode.E_CONTAINER_INVALID, "No container.xml") from exc
    except XmlParseError as exc:
        raise FatalFormatError(
            ErrorCode.E_CONTAINER_INVALID, f"container.xml is malformed: {exc}"
        ) from exc

    if etree.QName(root).localname != "container":
        raise FatalFormatError(ErrorCode.E_CONTAINER_INVALID, "container.xml has no container root")
    if root.get("version") != SUPPORTED_CONTAINER_VERSION:
        raise FatalFormatError(
            ErrorCode.E_CONTAINER_INVALID,
            f"Unsupported container version: {root.get('version')}",
        )

    rootfiles = child(root, "rootfiles", NS["container"])
    for rootfile in children(rootfiles, "rootfile", NS["container"]):
        if rootfile.get("media-type") == OPF_MEDIA_TYPE and rootfile.get("full-path"):
            return rootfile.get("full-path")

    raise FatalFormatError(ErrorCode.E_CONTAINER_INVALID, "Cannot locate OPF rootfile")


# ---------------------------------------------------------------------------
# Package document
# ---------------------------------------------------------------------------


class PackageDocument:
    """Parsed OPF tree, owned by the open-file session."""

    def __init__(self, opf_path: str, data: bytes, root: etree._Element):
        self.opf_path = opf_path
        self.base_path = extract_folder(opf_path)
        self._data = data
        self._root = root

    @classmethod
    def load(cls, archive: ArchiveReaderBase, opf_path: str) -> PackageDocument:
        """Load and validate the package document.

        Raises:
            FatalFormatError: If the OPF is missing, malformed, in another
                namespace, or of an unknown version.
        """
        try:
            data = archive.read(opf_path)
        except ResourceMissingError as exc:
            raise FatalFormatError(
                ErrorCode.E_INCOMPATIBLE_BOOK, f"OPF not found: {opf_path}"
            ) from exc
        try:
            root = parse_buffer(data)
        except XmlParseError as exc:
            raise FatalFormatError(
                ErrorCode.E_INCOMPATIBLE_BOOK, f"OPF is malformed: {exc}"
            ) from exc

        qname = etree.QName(root)
        if qname.localname != "package" or qname.namespace != _OPF:
            raise FatalFormatError(
                ErrorCode.E_INCOMPATIBLE_BOOK, "This book is not compatible with this software"
            )
        version = root.get("version")
        if version not in SUPPORTED_PACKAGE_VERSIONS:
            raise FatalFormatError(
                ErrorCode.E_INCOMPATIBLE_BOOK, f"Unsupported package version: {version}"
            )

        return cls(opf_path, data, root)

    @property
    def root(self) -> etree._Element:
        return self._root

    @property
    def version(self) -> str:
        return self._root.get("version", "")

    def _section(self, name: str) -> etree._Element | None:
        return child(self._root, name, _OPF)

    # ---- metadata ---------------------------------------------------------

    def metadata(self, name: str) -> str | None:
        """Text of the first metadata element called name.

        name may carry a known prefix ("dc:title") or be bare ("title").
        Nested OPF 1.0 dc-metadata blocks are searched too.
        """
        meta = self._section("metadata")
        if meta is None:
            return None

        prefix, _, local = name.rpartition(":")
        if prefix and prefix in NS:
            tags = {f"{{{NS[prefix]}}}{local}"}
        else:
            tags = {f"{{{NS['dc']}}}{local}", f"{{{_OPF}}}{local}", local}

        for el in meta.iter():
            if isinstance(el.tag, str) and el.tag in tags:
                return (el.text or "").strip()
        return None

    def unique_identifier(self) -> str:
        """Text of the dc:identifier named by package@unique-identifier."""
        uid_ref = self._root.get("unique-identifier")
        meta = self._section("metadata")
        if not uid_ref or meta is None:
            return ""
        for el in meta.iter(f"{{{NS['dc']}}}identifier"):
            if el.get("id") == uid_ref:
                return (el.text or "").strip()
        return ""

    # ---- manifest ---------------------------------------------------------

    def manifest_items(self) -> list[ManifestEntry]:
        return [
            ManifestEntry(
                id=item.get("id", ""),
                href=item.get("href", ""),
                media_type=item.get("media-type", ""),
                properties=item.get("properties", ""),
            )
            for item in children(self._section("manifest"), "item", _OPF)
        ]

    def manifest_item(self, item_id: str) -> ManifestEntry | None:
        for entry in self.manifest_items():
            if entry.id == item_id:
                return entry
        return None

    def manifest_item_by_href(self, href: str) -> ManifestEntry | None:
        for entry in self.manifest_items():
            if entry.href == href:
                return entry
        return None

    # ---- spine ------------------------------------------------------------

    def _itemrefs(self) -> list[etree._Element]:
        return children(self._section("spine"), "itemref", _OPF)

    def spine_length(self) -> int:
        return len(self._itemrefs())

    def spine_idrefs(self) -> list[str]:
        return [ref.get("idref", "") for ref in self._itemrefs()]

    def spine_idref(self, spine_index: int) -> str | None:
        refs = self._itemrefs()
        if 0 <= spine_index < len(refs):
            return refs[spine_index].get("idref")
        return None

    def spine_index_of(self, idref: str) -> int | None:
        for index, ref in enumerate(self.spine_idrefs()):
            if ref == idref:
                return index
        return None

    def spine_item(self, spine_index: int) -> ManifestEntry:
        """Manifest entry of the document at spine_index.

        Raises:
            FatalFormatError: If the index or its manifest entry does not exist.
        """
        idref = self.spine_idref(spine_index)
        entry = self.manifest_item(idref) if idref else None
        if entry is None or not entry.href:
            raise FatalFormatError(
                ErrorCode.E_CORRUPT_SPINE,
                f"Spine index {spine_index} does not resolve to a manifest item",
            )
        return entry

    def spine_toc_id(self) -> str | None:
        spine = self._section("spine")
        return spine.get("toc") if spine is not None else None

    # ---- cover ------------------------------------------------------------

    def cover_filename(self) -> str:
        """Href of the cover image, or '' when none can be identified."""
        items = self.manifest_items()

        meta = self._section("metadata")
        for el in children(meta, "meta", _OPF):
            if el.get("name") != COVER_META_NAME:
                continue
            ref = el.get("content")
            if not ref:
                break
            for entry in items:
                if (entry.id == ref or entry.properties == ref) and entry.href:
                    return entry.href
            break

        for entry in items:
            if entry.id in CONVENTIONAL_COVER_IDS and entry.href:
                return entry.href

        return ""


# ---------------------------------------------------------------------------
# Encryption manifest
# ---------------------------------------------------------------------------


class EncryptionManifest:
    """Mapping from archive path to obfuscation kind."""

    def __init__(self, kinds: dict[str, ObfuscationKind] | None = None):
        self._kinds = dict(kinds or {})

    def __len__(self) -> int:
        return len(self._kinds)

    def kind_for(self, path: str) -> ObfuscationKind:
        return self._kinds.get(path, ObfuscationKind.NONE)

    @classmethod
    def parse(cls, data: bytes) -> EncryptionManifest | None:
        """Parse encryption.xml.

        Returns:
            The manifest, or None if the descriptor is malformed or does not
            declare the supported namespaces.
        """
        try:
            root = parse_buffer(data)
        except XmlParseError as exc:
            logger.error("encryption_xml_malformed", error=str(exc))
            return None

        if (
            etree.QName(root).localname != "encryption"
            or root.nsmap.get(None) != NS["container"]
            or root.nsmap.get("enc") != NS["enc"]
        ):
            logger.error("encryption_xml_unsupported")
            return None

        enc = NS["enc"]
        kinds: dict[str, ObfuscationKind] = {}
        for data_el in root.iter(f"{{{enc}}}EncryptedData"):
            ref = data_el.find(f"{{{enc}}}CipherData/{{{enc}}}CipherReference")
            method = data_el.find(f"{{{enc}}}EncryptionMethod")
            if ref is None or not ref.get("URI"):
                continue
            algorithm = method.get("Algorithm", "") if method is not None else ""
            kinds.setdefault(ref.get("URI"), kind_for_algorithm(algorithm))

        return cls(kinds)


def detect_encryption(archive: ArchiveReaderBase) -> EncryptionManifest | None:
    """Load META-INF/encryption.xml if present and supported."""
    if not archive.exists(ENCRYPTION_PATH):
        return None
    try:
        data = archive.read(ENCRYPTION_PATH)
    except ResourceMissingError:
        return None
    return EncryptionManifest.parse(data)
