"""Tests for the table of contents: build, bind, compact, save and load.

The default book's NCX yields:

    Chapter One   [0, 0]   level 0
      Section 1   [0, -1]  level 1  (#sec1)
      Section 2   [0, -1]  level 1  (#sec2)
    Chapter Two   [1, 0]   level 0
"""

import threading

import pytest

from folio.services.package import PackageDocument
from folio.services.toc import (
    ENTRY_RECORD,
    TOC_APP_TAG,
    TOC_DB_VERSION,
    VERSION_RECORD,
    Toc,
    TocItem,
)
from folio.storage.records import RecordFile
from tests.epub_fixtures import (
    DEFAULT_EXTRA_MANIFEST,
    DEFAULT_SPINE,
    OPF_PATH,
    build_ncx,
    build_opf,
    default_book_files,
    make_archive,
)

DEFAULT_ENTRIES = [
    TocItem("Chapter One", 0, 0, 0),
    TocItem("Section 1", 1, 0, -1),
    TocItem("Section 2", 1, 0, -1),
    TocItem("Chapter Two", 0, 1, 0),
]


def _built_toc(files=None, **toc_kwargs) -> Toc:
    archive = make_archive(files)
    package = PackageDocument.load(archive, OPF_PATH)
    toc = Toc(**toc_kwargs)
    toc.build_from_navigation(package, archive)
    return toc


def _files_with_ncx(points, **opf_overrides):
    files = default_book_files(**opf_overrides)
    files["OEBPS/toc.ncx"] = build_ncx(points)
    return files


def _write_store(path, version_payload: bytes, block: bytes = b"x\x00", entries=()):
    with RecordFile(path) as db:
        db.create()
        db.add_record(version_payload)
        db.add_record(block)
        for entry in entries:
            db.add_record(ENTRY_RECORD.pack(*entry))


class TestBuildFromNavigation:
    def test_entries_in_document_order_with_levels(self):
        toc = _built_toc()
        assert toc.entries() == DEFAULT_ENTRIES
        assert len(toc) == 4
        assert not toc.ready

    def test_fragment_targets_are_bindable_after_build(self):
        toc = _built_toc()
        assert toc.bind(42, fragment_id="sec2")
        assert toc.entries()[2].offset == 42

    def test_deep_nesting(self):
        points = [("L0", "text/ch1.xhtml", [("L1", "text/ch1.xhtml#a", [("L2", "text/ch2.xhtml#b", [("L3", "text/ch2.xhtml")])])])]
        toc = _built_toc(_files_with_ncx(points))
        assert [(e.label, e.level, e.spine_index) for e in toc.entries()] == [
            ("L0", 0, 0),
            ("L1", 1, 0),
            ("L2", 2, 1),
            ("L3", 3, 1),
        ]

    def test_siblings_after_nested_points_keep_order(self):
        points = [
            ("A", "text/ch1.xhtml", [("A.1", "text/ch1.xhtml#x")]),
            ("B", "text/ch2.xhtml", [("B.1", "text/ch2.xhtml#y"), ("B.2", "text/ch2.xhtml#z")]),
            ("C", "text/ch2.xhtml#w"),
        ]
        toc = _built_toc(_files_with_ncx(points))
        assert [e.label for e in toc.entries()] == ["A", "A.1", "B", "B.1", "B.2", "C"]

    def test_target_not_in_manifest_fails_whole_build(self):
        points = [("Good", "text/ch1.xhtml"), ("Bad", "text/missing.xhtml")]
        toc = _built_toc(_files_with_ncx(points))
        assert len(toc) == 0

    def test_manifest_item_not_in_spine_fails_whole_build(self):
        points = [("Good", "text/ch1.xhtml"), ("Style", "styles/main.css")]
        toc = _built_toc(_files_with_ncx(points))
        assert toc.entries() == []

    def test_returns_false_on_inconsistency(self):
        archive = make_archive(_files_with_ncx([("Bad", "nowhere.xhtml")]))
        package = PackageDocument.load(archive, OPF_PATH)
        assert Toc().build_from_navigation(package, archive) is False

    def test_returns_true_on_success(self, archive):
        package = PackageDocument.load(archive, OPF_PATH)
        assert Toc().build_from_navigation(package, archive) is True

    def test_navigation_found_through_spine_toc_attribute(self):
        files = default_book_files(ncx_id="navdoc")
        toc = _built_toc(files)
        assert toc.entries() == DEFAULT_ENTRIES

    def test_navigation_found_by_media_type(self):
        opf = build_opf(
            spine_items=DEFAULT_SPINE,
            extra_manifest=DEFAULT_EXTRA_MANIFEST
            + [("contents", "toc.ncx", "application/x-dtbncx+xml")],
            ncx_id=None,
        )
        files = default_book_files()
        files[OPF_PATH] = opf
        assert _built_toc(files).entries() == DEFAULT_ENTRIES

    def test_missing_navigation_document(self):
        files = default_book_files()
        del files["OEBPS/toc.ncx"]
        assert len(_built_toc(files)) == 0

    def test_no_navigation_item(self):
        files = default_book_files(ncx_id=None)
        assert len(_built_toc(files)) == 0

    def test_malformed_navigation_document(self):
        files = default_book_files()
        files["OEBPS/toc.ncx"] = "<ncx><navMap>"
        assert len(_built_toc(files)) == 0

    def test_rebuild_replaces_entries(self, archive):
        package = PackageDocument.load(archive, OPF_PATH)
        toc = Toc()
        toc.build_from_navigation(package, archive)
        toc.build_from_navigation(package, archive)
        assert len(toc) == 4

    def test_small_arena_blocks(self):
        toc = _built_toc(arena_block_size=4)
        assert [e.label for e in toc.entries()] == [e.label for e in DEFAULT_ENTRIES]


class TestBind:
    def test_bind_fragment_sets_offset(self):
        toc = _built_toc()
        assert toc.bind(120, fragment_id="sec1")
        assert toc.entries()[1].offset == 120
        assert toc.entries()[2].offset == -1

    def test_bind_unknown_fragment(self):
        toc = _built_toc()
        assert not toc.bind(5, fragment_id="nope")

    def test_bind_fragment_restricted_to_spine_index(self):
        toc = _built_toc()
        assert not toc.bind(5, fragment_id="sec1", spine_index=1)
        assert toc.bind(5, fragment_id="sec1", spine_index=0)

    def test_bind_without_fragment_updates_first_entry_of_document(self):
        toc = _built_toc()
        assert toc.bind(3, spine_index=0)
        offsets = [e.offset for e in toc.entries()]
        assert offsets == [3, -1, -1, 0]

    def test_bind_without_fragment_needs_spine_index(self):
        toc = _built_toc()
        with pytest.raises(ValueError):
            toc.bind(3)

    def test_fragment_index_gone_after_compaction(self):
        toc = _built_toc()
        toc.compact()
        assert not toc.bind(120, fragment_id="sec1")
        assert toc.bind(9, spine_index=1)


class TestCompact:
    def test_labels_packed_into_one_block(self):
        toc = _built_toc()
        toc.compact()
        assert toc.string_block == b"Chapter One\x00Section 1\x00Section 2\x00Chapter Two\x00"
        assert toc.entries() == DEFAULT_ENTRIES
        assert not toc.bind(5, fragment_id="sec1")

    def test_compaction_is_idempotent(self):
        toc = _built_toc()
        toc.compact()
        first = toc.string_block
        toc.compact()
        assert toc.string_block == first

    def test_describe(self):
        toc = _built_toc()
        assert toc.describe() == [
            "Chapter One : [0, 0]",
            "  Section 1 : [0, -1]",
            "  Section 2 : [0, -1]",
            "Chapter Two : [1, 0]",
        ]


class TestSaveAndLoad:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "book.toc"
        toc = _built_toc()
        toc.bind(120, fragment_id="sec1")
        assert toc.save(path)
        assert toc.ready and toc.saved and toc.compacted

        loaded = Toc()
        assert loaded.load(path)
        assert loaded.ready
        assert loaded.entries() == [
            TocItem("Chapter One", 0, 0, 0),
            TocItem("Section 1", 1, 0, 120),
            TocItem("Section 2", 1, 0, -1),
            TocItem("Chapter Two", 0, 1, 0),
        ]

    def test_store_path_from_constructor(self, tmp_path):
        path = tmp_path / "book.toc"
        toc = _built_toc(store_path=path)
        assert toc.save()
        assert Toc(store_path=path).load()

    def test_no_store_path_is_an_error(self):
        toc = _built_toc()
        with pytest.raises(ValueError):
            toc.save()

    def test_save_is_noop_when_unchanged(self, tmp_path):
        path = tmp_path / "book.toc"
        toc = _built_toc()
        assert toc.save(path)
        path.unlink()

        assert toc.save(path)
        assert not path.exists()

    def test_bind_after_save_makes_save_write_again(self, tmp_path):
        path = tmp_path / "book.toc"
        toc = _built_toc()
        toc.save(path)
        toc.bind(42, spine_index=1)
        assert not toc.saved
        assert toc.save(path)

        loaded = Toc()
        loaded.load(path)
        assert loaded.entries()[3].offset == 42

    def test_file_layout(self, tmp_path):
        path = tmp_path / "book.toc"
        toc = _built_toc()
        toc.save(path)

        with RecordFile(path) as db:
            db.open()
            records = list(db.records())
        assert db.record_count == 6
        tag, version = VERSION_RECORD.unpack(records[0])
        assert tag.rstrip(b"\x00") == TOC_APP_TAG
        assert version == TOC_DB_VERSION
        assert records[1] == toc.string_block
        assert ENTRY_RECORD.unpack(records[3]) == (12, 0, -1, 1)

    def test_missing_store(self, tmp_path):
        toc = Toc()
        assert not toc.load(tmp_path / "absent.toc")
        assert len(toc) == 0
        assert not toc.ready


class TestBindDuringSave:
    def test_bind_waits_for_save_and_is_written_by_next_save(self, tmp_path, monkeypatch):
        path = tmp_path / "book.toc"
        toc = _built_toc(store_path=path)
        binder = threading.Thread(target=toc.bind, args=(77,), kwargs={"spine_index": 1})
        blocked = []
        add_record = RecordFile.add_record

        def add_record_then_bind(db, payload):
            if binder.ident is None:
                binder.start()
                binder.join(timeout=0.2)
                blocked.append(binder.is_alive())
            add_record(db, payload)

        monkeypatch.setattr(RecordFile, "add_record", add_record_then_bind)
        assert toc.save()
        binder.join(timeout=5)
        monkeypatch.undo()

        assert blocked == [True]
        assert not binder.is_alive()
        assert not toc.saved
        assert toc.entries()[3].offset == 77

        assert toc.save()
        reloaded = Toc(store_path=path)
        assert reloaded.load()
        assert reloaded.entries()[3] == TocItem("Chapter Two", 0, 1, 77)

    def test_binds_from_another_thread_all_land(self):
        toc = _built_toc()

        def worker():
            for offset in range(200):
                toc.bind(offset, spine_index=1)
                toc.bind(offset, fragment_id="sec2")

        thread = threading.Thread(target=worker)
        thread.start()
        toc.entries()
        thread.join(timeout=5)
        assert toc.entries()[2].offset == 199
        assert toc.entries()[3].offset == 199


class TestLoadRejectsStaleStore:
    def test_wrong_tag(self, tmp_path):
        path = tmp_path / "book.toc"
        _write_store(path, VERSION_RECORD.pack(b"OTHER-APP", TOC_DB_VERSION), entries=[(0, 0, 0, 0)])
        toc = Toc()
        assert toc.load(path) is False
        assert toc.entries() == []
        assert not toc.ready

    def test_wrong_version(self, tmp_path):
        path = tmp_path / "book.toc"
        _write_store(path, VERSION_RECORD.pack(TOC_APP_TAG, TOC_DB_VERSION + 1), entries=[(0, 0, 0, 0)])
        assert not Toc().load(path)

    def test_version_record_of_wrong_size(self, tmp_path):
        path = tmp_path / "book.toc"
        _write_store(path, TOC_APP_TAG)
        assert not Toc().load(path)

    def test_empty_store(self, tmp_path):
        path = tmp_path / "book.toc"
        with RecordFile(path) as db:
            db.create()
        assert not Toc().load(path)

    def test_label_offset_outside_block(self, tmp_path):
        path = tmp_path / "book.toc"
        _write_store(path, VERSION_RECORD.pack(TOC_APP_TAG, TOC_DB_VERSION), entries=[(99, 0, 0, 0)])
        toc = Toc()
        assert not toc.load(path)
        assert len(toc) == 0

    def test_previous_entries_cleared_on_rejection(self, tmp_path):
        path = tmp_path / "book.toc"
        _write_store(path, VERSION_RECORD.pack(b"OTHER-APP", TOC_DB_VERSION))
        toc = _built_toc()
        assert not toc.load(path)
        assert len(toc) == 0


class TestLoadPartialStore:
    def test_short_read_keeps_entries_but_not_ready(self, tmp_path):
        path = tmp_path / "book.toc"
        _built_toc().save(path)
        data = path.read_bytes()
        path.write_bytes(data[:-5])

        toc = Toc()
        assert not toc.load(path)
        assert not toc.ready
        assert toc.entries() == DEFAULT_ENTRIES[:3]
