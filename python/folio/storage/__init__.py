"""Storage module for book archive and sidecar files.

Provides:
- Archive readers over the zipped EPUB container
- The sequential record file used to persist the table of contents
- Sidecar path building utilities
"""

from folio.storage.archive import ArchiveReaderBase, FakeArchive, ZipArchive, open_archive
from folio.storage.paths import build_sidecar_path, build_toc_path
from folio.storage.records import RecordFile, RecordFileError

__all__ = [
    "ArchiveReaderBase",
    "ZipArchive",
    "FakeArchive",
    "open_archive",
    "RecordFile",
    "RecordFileError",
    "build_sidecar_path",
    "build_toc_path",
]
