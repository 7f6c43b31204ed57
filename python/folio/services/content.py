"""Content item loading.

Resolves a spine index to a decoded content document:

1. spine index -> manifest entry (missing entry: corrupt spine, fatal)
2. media type -> MediaKind (anything outside the supported set is rejected)
3. raw bytes from the archive, resolved against the package folder
4. for XHTML: script CDATA comment markers blanked, buffer parsed, style
   sheets gathered and @font-face fonts registered

The foreground path (load) keeps exactly one current item and is not
thread-safe: only the reader task may call it. The side-channel path
(load_into, resolve_image) takes the loader lock around archive access and
parsing so a background task can share the archive with the reader.
"""

from __future__ import annotations

import threading
from enum import Enum

from lxml import etree

from folio.config import Settings
from folio.errors import (
    BudgetExceededError,
    ErrorCode,
    FatalFormatError,
    FolioError,
    ResourceMissingError,
    UnsupportedAlgorithmError,
)
from folio.logging import get_logger
from folio.services.fonts import FaceStyle, FontRegistry
from folio.services.hrefs import extract_folder, locate
from folio.services.images import Bitmap, decode_image
from folio.services.obfuscation import ObfuscationKeys, ObfuscationKind, deobfuscate
from folio.services.package import EncryptionManifest, PackageDocument
from folio.services.styles import StyleCache, StyleSet, StyleSheet
from folio.services.xmltree import NS, XmlParseError, child, iter_named, parse_buffer
from folio.storage.archive import ArchiveReaderBase

logger = get_logger(__name__)

# Comment markers wrapping CDATA sections in embedded scripts. Blanked with
# spaces of the same length so byte offsets are preserved.
_SCRIPT_MARKERS = (
    (b"/*<![CDATA[*/", b"  <![CDATA[  "),
    (b"/*]]>*/", b"  ]]>  "),
)

INLINE_SHEET_ID = "current-item"


class MediaKind(str, Enum):
    XML = "application/xhtml+xml"
    JPEG = "image/jpeg"
    PNG = "image/png"
    BMP = "image/bmp"
    GIF = "image/gif"


_MEDIA_KINDS = {kind.value: kind for kind in MediaKind}


def classify_media_type(media_type: str) -> MediaKind:
    """Map a manifest media type to a MediaKind.

    Raises:
        FatalFormatError: If the media type is not supported.
    """
    kind = _MEDIA_KINDS.get(media_type)
    if kind is None:
        raise FatalFormatError(
            ErrorCode.E_UNSUPPORTED_MEDIA_TYPE, f"Unsupported media type: {media_type}"
        )
    return kind


def blank_script_markers(data: bytearray) -> None:
    """Blank CDATA comment markers in place."""
    for marker, replacement in _SCRIPT_MARKERS:
        pos = data.find(marker)
        while pos != -1:
            data[pos : pos + len(marker)] = replacement
            pos = data.find(marker, pos + len(marker))


class ContentItem:
    """One decoded content document.

    Owns the raw buffer and the tree parsed from it. The tree is only
    reachable through this object and is dropped before the buffer.
    """

    def __init__(self):
        self.spine_index = -1
        self.media_kind: MediaKind | None = None
        self.href = ""
        self.folder = ""
        self.base_path = ""
        self.styles = StyleSet()
        self._raw: bytearray | None = None
        self._tree: etree._Element | None = None

    @property
    def loaded(self) -> bool:
        return self._raw is not None

    @property
    def raw(self) -> bytes:
        if self._raw is None:
            raise ValueError("Content item is not loaded")
        return bytes(self._raw)

    @property
    def tree(self) -> etree._Element | None:
        """Parsed document; None for image items."""
        if self._raw is None:
            raise ValueError("Content item is not loaded")
        return self._tree

    def resolve(self, relative_path: str) -> str:
        """Archive path of an href found in this document."""
        return locate(self.folder + relative_path, self.base_path)

    def _attach(self, raw: bytearray, tree: etree._Element | None) -> None:
        self._raw = raw
        self._tree = tree

    def release(self) -> None:
        """Drop the tree, then the buffer."""
        self._tree = None
        self._raw = None
        self.styles = StyleSet()
        self.spine_index = -1
        self.media_kind = None


class ContentLoader:
    """Loads content items for one open book."""

    def __init__(
        self,
        archive: ArchiveReaderBase,
        package: PackageDocument,
        settings: Settings,
        *,
        encryption: EncryptionManifest | None = None,
        keys: ObfuscationKeys | None = None,
        style_cache: StyleCache | None = None,
        fonts: FontRegistry | None = None,
    ):
        self.archive = archive
        self.package = package
        self.settings = settings
        self.encryption = encryption
        self.keys = keys
        self.style_cache = style_cache if style_cache is not None else StyleCache()
        self.fonts = fonts if fonts is not None else FontRegistry(settings.fonts_budget_bytes)
        self._lock = threading.Lock()
        self._current: ContentItem | None = None

    @property
    def current(self) -> ContentItem | None:
        return self._current

    @property
    def lock(self) -> threading.Lock:
        """Guards archive access shared with background tasks."""
        return self._lock

    # ---- public entrypoints ----------------------------------------------

    def load(self, spine_index: int) -> ContentItem:
        """Foreground load. Not thread-safe; reader task only.

        Loading the index already current returns the resident item.

        Raises:
            FatalFormatError: Corrupt spine, unsupported media type or
                malformed document. The previous current item is released.
        """
        if self._current is not None and self._current.loaded and self._current.spine_index == spine_index:
            return self._current

        if self._current is not None:
            self._current.release()
            self._current = None

        item = ContentItem()
        self._fill(spine_index, item)
        self._current = item
        return item

    def load_into(self, spine_index: int, item: ContentItem) -> bool:
        """Side-channel load into a caller-owned item. Thread-safe.

        Returns:
            True on success; False (item released, error logged) otherwise.
        """
        with self._lock:
            try:
                self._fill(spine_index, item)
            except FolioError as exc:
                logger.error(
                    "content_item_load_failed",
                    spine_index=spine_index,
                    error_code=exc.code.value,
                    error=exc.message,
                )
                return False
        return True

    def resolve_image(self, relative_path: str, *, load: bool = True) -> Bitmap | None:
        """Fetch and decode an image. Thread-safe.

        relative_path is relative to the package folder (callers prefix the
        referring document's folder).
        """
        with self._lock:
            path = locate(relative_path, self.package.base_path)
            try:
                data = self.archive.read(path)
            except ResourceMissingError:
                logger.warning("image_missing", path=path)
                return None
            return decode_image(data, self.settings.screen_box, load=load)

    def release(self) -> None:
        if self._current is not None:
            self._current.release()
            self._current = None

    # ---- item construction -----------------------------------------------

    def _fill(self, spine_index: int, item: ContentItem) -> None:
        item.release()

        entry = self.package.spine_item(spine_index)
        kind = classify_media_type(entry.media_type)

        path = locate(entry.href, self.package.base_path)
        try:
            raw = bytearray(self.archive.read(path))
        except ResourceMissingError as exc:
            raise FatalFormatError(ErrorCode.E_CORRUPT_SPINE, f"Spine document unusable: {exc.message}") from exc

        tree = None
        if kind == MediaKind.XML:
            blank_script_markers(raw)
            try:
                tree = parse_buffer(raw)
            except XmlParseError as exc:
                logger.error("content_item_malformed", path=path, error=str(exc))
                raise FatalFormatError(
                    ErrorCode.E_DOCUMENT_MALFORMED, f"{path} contains XHTML errors: {exc}"
                ) from exc

        item.spine_index = spine_index
        item.media_kind = kind
        item.href = path
        item.folder = extract_folder(entry.href)
        item.base_path = self.package.base_path
        item._attach(raw, tree)

        if tree is not None:
            item.styles = self._gather_styles(item, tree)

        logger.debug("content_item_loaded", spine_index=spine_index, path=path, size=len(raw))

    # ---- styles and fonts ------------------------------------------------

    def _gather_styles(self, item: ContentItem, tree: etree._Element) -> StyleSet:
        styles = StyleSet()
        head = child(tree, "head", NS["xhtml"])
        if head is None:
            return styles

        for link in iter_named(head, "link"):
            href = link.get("href")
            if link.get("type") != "text/css" or not href:
                continue
            path = item.resolve(href)
            sheet = self.style_cache.get(path)
            if sheet is None:
                try:
                    data = self.archive.read(path)
                except ResourceMissingError:
                    logger.warning("stylesheet_missing", path=path)
                    continue
                sheet = StyleSheet.parse(data, sheet_id=path, folder=extract_folder(item.folder + href))
                self._load_fonts(sheet)
                self.style_cache.add(path, sheet)
            styles.external.append(sheet)

        for style in iter_named(head, "style"):
            text = "".join(style.itertext())
            sheet = StyleSheet.parse(text, sheet_id=INLINE_SHEET_ID, folder=item.folder)
            self._load_fonts(sheet)
            styles.inline.append(sheet)

        return styles

    def _load_fonts(self, sheet: StyleSheet) -> None:
        """Register every @font-face font of a freshly parsed sheet."""
        if not self.settings.use_book_fonts or self.fonts.too_large:
            return

        for face in sheet.font_faces:
            if (face.family, face.style) in self.fonts or not face.src:
                continue
            path = locate(sheet.folder + face.src, self.package.base_path)
            try:
                self._load_font(path, face.family, face.style)
            except ResourceMissingError as exc:
                logger.warning("font_missing", path=path, family=face.family, error_code=exc.code.value)
            except UnsupportedAlgorithmError:
                logger.error("font_obfuscation_unknown", path=path, family=face.family)
            except BudgetExceededError:
                break

    def _load_font(self, path: str, family: str, style: FaceStyle) -> None:
        size = self.archive.size(path)
        if size == 0:
            raise ResourceMissingError(path)
        self.fonts.reserve(size)

        kind = self.encryption.kind_for(path) if self.encryption is not None else ObfuscationKind.NONE
        if kind == ObfuscationKind.UNKNOWN:
            raise UnsupportedAlgorithmError(path)

        data = self.archive.read(path)
        if kind != ObfuscationKind.NONE:
            if self.keys is None:
                raise UnsupportedAlgorithmError(path)
            data = deobfuscate(data, kind, self.keys, path=path)

        self.fonts.add(family, style, path, data)
