"""Open-file session.

A Book owns everything derived from one open EPUB: the archive handle,
the package document, the encryption manifest and keys, the style cache,
the font registry and the content loader. All of it is built in open()
and dropped together in close(); nothing is invalidated piecemeal.

Only FatalFormatError escapes open() and load(). Every other failure
degrades: a missing cover is "", a missing image is None, an unusable font
is skipped, an unusable TOC store is rebuilt from the navigation document.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from folio.config import Settings, get_settings
from folio.errors import ErrorCode, FatalFormatError, FolioError
from folio.logging import clear_book_context, get_logger, set_book_context
from folio.services.content import ContentItem, ContentLoader
from folio.services.fonts import FontRegistry
from folio.services.images import Bitmap
from folio.services.obfuscation import ObfuscationKeys, derive_keys
from folio.services.package import (
    EncryptionManifest,
    PackageDocument,
    check_mimetype,
    detect_encryption,
    find_opf_path,
)
from folio.services.styles import StyleCache
from folio.services.toc import Toc
from folio.storage.archive import ArchiveReaderBase, open_archive
from folio.storage.paths import build_sidecar_path

logger = get_logger(__name__)


@dataclass
class OpenSession:
    """State of one open book."""

    path: str | None
    archive: ArchiveReaderBase
    package: PackageDocument
    encryption: EncryptionManifest | None
    keys: ObfuscationKeys
    style_cache: StyleCache
    fonts: FontRegistry
    loader: ContentLoader
    toc: Toc | None = field(default=None)


class Book:
    """Reader-facing entry point for one EPUB at a time."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._session: OpenSession | None = None

    @property
    def is_open(self) -> bool:
        return self._session is not None

    @property
    def path(self) -> str | None:
        return self._session.path if self._session is not None else None

    def _require(self) -> OpenSession:
        if self._session is None:
            raise FolioError(ErrorCode.E_NOT_OPEN, "No book is open")
        return self._session

    # ---- lifecycle -------------------------------------------------------

    def open(self, source: str | Path | bytes) -> bool:
        """Open an EPUB from a path or an in-memory archive.

        Opening the path already open is a no-op. Opening anything else
        closes the current book first.

        Returns:
            True once the book is open.

        Raises:
            FatalFormatError: If the archive, mimetype, container or package
                document is unusable. The session is left closed.
        """
        path = None if isinstance(source, bytes) else str(source)
        if self._session is not None:
            if path is not None and path == self._session.path:
                return True
            self.close()

        set_book_context(path)
        archive = None
        try:
            archive = open_archive(source)
            check_mimetype(archive)
            opf_path = find_opf_path(archive)
            package = PackageDocument.load(archive, opf_path)
        except FatalFormatError as exc:
            logger.error("book_open_failed", error_code=exc.code.value, error=exc.message)
            if archive is not None:
                archive.close()
            clear_book_context()
            raise

        encryption = detect_encryption(archive)
        keys = derive_keys(package.unique_identifier())
        style_cache = StyleCache()
        fonts = FontRegistry(self.settings.fonts_budget_bytes)
        loader = ContentLoader(
            archive,
            package,
            self.settings,
            encryption=encryption,
            keys=keys,
            style_cache=style_cache,
            fonts=fonts,
        )
        self._session = OpenSession(
            path=path,
            archive=archive,
            package=package,
            encryption=encryption,
            keys=keys,
            style_cache=style_cache,
            fonts=fonts,
            loader=loader,
        )

        logger.info(
            "book_opened",
            opf_path=opf_path,
            package_version=package.version,
            spine_length=package.spine_length(),
            obfuscated_resources=len(encryption) if encryption is not None else 0,
        )
        return True

    def close(self) -> bool:
        """Release the open book. Idempotent."""
        session = self._session
        if session is None:
            return True

        self._session = None
        session.loader.release()
        session.style_cache.clear()
        session.fonts.clear()
        if session.toc is not None:
            session.toc.clear()
        session.archive.close()

        logger.info("book_closed")
        clear_book_context()
        return True

    def __enter__(self) -> "Book":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ---- package ---------------------------------------------------------

    @property
    def package(self) -> PackageDocument:
        return self._require().package

    @property
    def loader(self) -> ContentLoader:
        return self._require().loader

    def spine_length(self) -> int:
        return self._require().package.spine_length()

    def cover_filename(self) -> str:
        return self._require().package.cover_filename()

    def metadata(self, name: str) -> str | None:
        return self._require().package.metadata(name)

    # ---- content ---------------------------------------------------------

    def load(self, spine_index: int) -> ContentItem:
        """Foreground load of the current item. Reader task only."""
        return self._require().loader.load(spine_index)

    def load_into(self, spine_index: int, item: ContentItem) -> bool:
        """Concurrency-safe load into a caller-owned item."""
        return self._require().loader.load_into(spine_index, item)

    def resolve_image(self, relative_path: str, *, load: bool = True) -> Bitmap | None:
        return self._require().loader.resolve_image(relative_path, load=load)

    @property
    def fonts(self) -> FontRegistry:
        return self._require().fonts

    @property
    def fonts_too_large(self) -> bool:
        return self._require().fonts.too_large

    # ---- table of contents -----------------------------------------------

    def toc(self) -> Toc:
        """Table of contents, from the store next to the book when usable.

        A missing, stale or partially read store falls back to a fresh build
        from the navigation document. An empty Toc means neither worked.
        """
        session = self._require()
        if session.toc is not None:
            return session.toc

        store_path = None
        if session.path is not None:
            store_path = build_sidecar_path(session.path, self.settings.toc_suffix)
        toc = Toc(store_path, self.settings.arena_block_size)
        if store_path is None or not toc.load():
            with session.loader.lock:
                toc.build_from_navigation(session.package, session.archive)

        session.toc = toc
        return toc
