"""Table of contents: build from the NCX, bind offsets, persist, reload.

Entries are a flat list in document order; nesting is carried by level.
Page ids are (spine index, offset) pairs where offset -1 means the entry
targets a fragment whose position pagination has not reported yet.

Lifecycle:
    build_from_navigation()  labels go to a StringArena, fragment index kept
    bind(...)                pagination reports exact offsets
    compact()                labels packed into one CompactedStringBlock,
                             arena and fragment index dropped
    save() / load()          record file next to the book

Store layout (folio.storage.records):
    [VersionRecord][string block][EntryRecord]*
"""

from __future__ import annotations

import struct
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple

from folio.config import get_settings
from folio.errors import (
    ErrorCode,
    FatalFormatError,
    PartialReadError,
    ResourceMissingError,
    StaleOrCorruptStoreError,
)
from folio.logging import get_logger
from folio.services.arena import ArenaRef, BlockRef, CompactedStringBlock, StringArena
from folio.services.hrefs import locate, split_fragment
from folio.services.package import ManifestEntry, PackageDocument
from folio.services.xmltree import NS, XmlParseError, child, children, parse_buffer, text_content
from folio.storage.archive import ArchiveReaderBase
from folio.storage.records import RecordFile, RecordFileError

logger = get_logger(__name__)

TOC_APP_TAG = b"FOLIO-TOC"
TOC_DB_VERSION = 1

NAVIGATION_ID = "ncx"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"

UNRESOLVED_OFFSET = -1

# app tag (null padded), version
VERSION_RECORD = struct.Struct("<32si")
# label offset, spine index, offset, level
ENTRY_RECORD = struct.Struct("<IhiH")

_NCX = NS["ncx"]


@dataclass
class TocEntry:
    """One entry. label is an arena reference while building, a block reference after."""

    label: ArenaRef | BlockRef
    spine_index: int
    offset: int
    level: int

    @property
    def text(self) -> str:
        return self.label.text


@dataclass(frozen=True)
class TocFragment:
    """Build-time index entry for a navigation target with a fragment id."""

    document: str
    spine_index: int
    entry_index: int


class TocItem(NamedTuple):
    label: str
    level: int
    spine_index: int
    offset: int


class Toc:
    """Table of contents of the open book."""

    def __init__(self, store_path: str | Path | None = None, arena_block_size: int | None = None):
        self.store_path = Path(store_path) if store_path is not None else None
        self.arena_block_size = arena_block_size or get_settings().arena_block_size
        self._entries: list[TocEntry] = []
        self._fragments: dict[str, list[TocFragment]] = {}
        self._arena: StringArena | None = None
        self._block: CompactedStringBlock | None = None
        # pagination binds from a background thread while the reader may save
        self._lock = threading.RLock()
        self.ready = False
        self.compacted = False
        self.saved = False

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self.entries())

    def entries(self) -> list[TocItem]:
        """Ordered {label, level, spine_index, offset} view."""
        with self._lock:
            return [TocItem(e.text, e.level, e.spine_index, e.offset) for e in self._entries]

    def clear(self) -> None:
        with self._lock:
            if self._arena is not None:
                self._arena.seal()
            self._arena = None
            self._block = None
            self._fragments.clear()
            self._entries.clear()
            self.ready = False
            self.compacted = False
            self.saved = False

    # ---- build -----------------------------------------------------------

    def build_from_navigation(self, package: PackageDocument, archive: ArchiveReaderBase) -> bool:
        """Build entries from the NCX navigation document.

        Returns:
            True when at least one entry was built. On any inconsistency the
            TOC is left empty and False is returned.
        """
        self.clear()

        nav_item = _find_navigation_item(package)
        if nav_item is None:
            logger.warning("toc_navigation_missing")
            return False

        nav_path = locate(nav_item.href, package.base_path)
        try:
            root = parse_buffer(archive.read(nav_path))
        except ResourceMissingError:
            logger.warning("toc_navigation_missing", path=nav_path)
            return False
        except XmlParseError as exc:
            logger.error("toc_navigation_malformed", path=nav_path, error=str(exc))
            return False

        nav_map = child(root, "navMap", _NCX)
        nav_points = children(nav_map, "navPoint", _NCX)
        if not nav_points:
            logger.warning("toc_navigation_empty", path=nav_path)
            return False

        self._arena = StringArena(self.arena_block_size)
        try:
            self._walk(nav_points, package)
        except FatalFormatError as exc:
            logger.error("toc_build_failed", error_code=exc.code.value, error=exc.message)
            self.clear()
            return False

        logger.info(
            "toc_built",
            entry_count=len(self._entries),
            fragment_count=len(self._fragments),
            arena_bytes=self._arena.total_allocated,
        )
        return bool(self._entries)

    def _walk(self, nav_points, package: PackageDocument) -> None:
        # explicit work-list, pre-order: pops yield document order
        stack = [(point, 0) for point in reversed(nav_points)]
        while stack:
            point, level = stack.pop()
            self._add_nav_point(point, level, package)
            nested = children(point, "navPoint", _NCX)
            stack.extend((sub, level + 1) for sub in reversed(nested))

    def _add_nav_point(self, point, level: int, package: PackageDocument) -> None:
        label_el = child(child(point, "navLabel", _NCX), "text", _NCX)
        label = text_content(label_el).strip() if label_el is not None else ""

        content = child(point, "content", _NCX)
        src = content.get("src") if content is not None else None
        if not src:
            raise FatalFormatError(
                ErrorCode.E_NAVIGATION_INCONSISTENT, f"navPoint '{label}' has no content src"
            )

        document, fragment_id = split_fragment(src)

        item = package.manifest_item_by_href(document)
        if item is None:
            raise FatalFormatError(
                ErrorCode.E_NAVIGATION_INCONSISTENT, f"NCX target {document} not in manifest"
            )
        spine_index = package.spine_index_of(item.id)
        if spine_index is None:
            raise FatalFormatError(
                ErrorCode.E_NAVIGATION_INCONSISTENT, f"Unable to find reference {item.id} in spine"
            )

        entry = TocEntry(
            label=self._arena.allocate(label),
            spine_index=spine_index,
            offset=UNRESOLVED_OFFSET if fragment_id else 0,
            level=level,
        )
        if fragment_id:
            self._fragments.setdefault(fragment_id, []).append(
                TocFragment(document=document, spine_index=spine_index, entry_index=len(self._entries))
            )
        self._entries.append(entry)

    # ---- offsets ---------------------------------------------------------

    def bind(self, offset: int, *, fragment_id: str | None = None, spine_index: int | None = None) -> bool:
        """Record the offset pagination found for an entry.

        With fragment_id: every entry targeting that fragment (restricted to
        spine_index when given) gets the offset. Without: the first entry of
        spine_index (the document currently open) gets it.

        Returns:
            True if an entry was updated.
        """
        if fragment_id is None and spine_index is None:
            raise ValueError("bind without fragment_id requires spine_index")

        updated = False
        with self._lock:
            if fragment_id is not None:
                for frag in self._fragments.get(fragment_id, []):
                    if spine_index is None or frag.spine_index == spine_index:
                        self._entries[frag.entry_index].offset = offset
                        updated = True
            else:
                for entry in self._entries:
                    if entry.spine_index == spine_index:
                        entry.offset = offset
                        updated = True
                        break

            if updated:
                self.saved = False
        return updated

    # ---- compaction and persistence --------------------------------------

    def compact(self) -> bool:
        """Pack labels into one block and drop the arena and fragment index."""
        with self._lock:
            if self.compacted:
                return True

            block, offsets = CompactedStringBlock.from_labels(e.text for e in self._entries)
            for entry, label_offset in zip(self._entries, offsets):
                entry.label = block.ref(label_offset)

            if self._arena is not None:
                self._arena.seal()
                self._arena = None
            self._fragments.clear()
            self._block = block
            self.compacted = True
            return True

    @property
    def string_block(self) -> bytes:
        """Compacted label bytes; empty until compacted."""
        return self._block.data if self._block is not None else b""

    def save(self, path: str | Path | None = None) -> bool:
        """Persist the TOC. No-op when nothing changed since the last save.

        Holds the TOC lock for the whole write, so an offset bound from the
        pagination thread lands either in this save or in the next one.
        """
        with self._lock:
            if self.saved:
                return True
            path = self._store_path(path)
            if not self.compact():
                return False

            db = RecordFile(path)
            try:
                db.create()
                db.add_record(VERSION_RECORD.pack(TOC_APP_TAG, TOC_DB_VERSION))
                db.add_record(self._block.data)
                for entry in self._entries:
                    db.add_record(
                        ENTRY_RECORD.pack(entry.label.offset, entry.spine_index, entry.offset, entry.level)
                    )
            except (RecordFileError, OSError, struct.error) as exc:
                logger.error("toc_save_failed", path=str(path), error=str(exc))
                return False
            finally:
                db.close()

            self.ready = self.saved = True
            logger.info("toc_saved", path=str(path), entry_count=len(self._entries))
            return True

    def load(self, path: str | Path | None = None) -> bool:
        """Reload a persisted TOC.

        Returns:
            True when every declared entry was read. A stale or corrupt store
            returns False with the TOC empty; a short read keeps the entries
            read so far but leaves ready False.
        """
        self.clear()
        path = self._store_path(path)

        db = RecordFile(path)
        try:
            db.open()
        except RecordFileError as exc:
            logger.info("toc_store_unavailable", path=str(path), error=str(exc))
            return False

        try:
            self._read_records(db)
        except StaleOrCorruptStoreError as exc:
            logger.error("toc_store_rejected", path=str(path), error=exc.message)
            self.clear()
            return False
        except PartialReadError as exc:
            logger.error("toc_store_partial", path=str(path), read=exc.read, expected=exc.expected)
            return False
        finally:
            db.close()

        self.ready = self.compacted = self.saved = True
        logger.info("toc_loaded", path=str(path), entry_count=len(self._entries))
        return True

    def _store_path(self, path: str | Path | None) -> Path:
        if path is not None:
            return Path(path)
        if self.store_path is None:
            raise ValueError("No TOC store path given")
        return self.store_path

    def _read_records(self, db: RecordFile) -> None:
        records = db.records()

        version = next(records, None)
        if version is None or len(version) != VERSION_RECORD.size:
            raise StaleOrCorruptStoreError("Toc is of a wrong version or is empty")
        tag, number = VERSION_RECORD.unpack(version)
        if tag.rstrip(b"\x00") != TOC_APP_TAG or number != TOC_DB_VERSION:
            raise StaleOrCorruptStoreError("Toc is of a wrong version or is empty")

        data = next(records, None)
        if not data:
            raise StaleOrCorruptStoreError("Toc string block is missing or empty")
        try:
            block = CompactedStringBlock(data)
        except ValueError as exc:
            raise StaleOrCorruptStoreError(str(exc)) from exc

        self._block = block
        self.compacted = True
        expected = db.record_count - 2

        for raw in records:
            if len(raw) != ENTRY_RECORD.size:
                break
            label_offset, spine_index, offset, level = ENTRY_RECORD.unpack(raw)
            try:
                label = block.ref(label_offset)
            except IndexError as exc:
                raise StaleOrCorruptStoreError(str(exc)) from exc
            self._entries.append(TocEntry(label, spine_index, offset, level))

        if len(self._entries) != expected:
            raise PartialReadError(len(self._entries), expected)

    # ---- debugging -------------------------------------------------------

    def describe(self) -> list[str]:
        """One "label : [spine, offset]" line per entry, indented by level."""
        return [
            f"{'  ' * e.level}{e.text} : [{e.spine_index}, {e.offset}]" for e in self._entries
        ]


def _find_navigation_item(package: PackageDocument) -> ManifestEntry | None:
    """Manifest item of the NCX: id "ncx", then spine@toc, then media type."""
    item = package.manifest_item(NAVIGATION_ID)
    if item is not None and item.href:
        return item

    toc_id = package.spine_toc_id()
    if toc_id:
        item = package.manifest_item(toc_id)
        if item is not None and item.href:
            return item

    for entry in package.manifest_items():
        if entry.media_type == NCX_MEDIA_TYPE and entry.href:
            return entry
    return None
