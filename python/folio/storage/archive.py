"""Archive reader abstraction.

Provides a narrow interface over the zipped EPUB container:
- Entry existence checks
- Entry size lookup (uncompressed)
- Whole-entry reads
- Close

The reader is not reentrant; callers that share one instance between the
foreground and background tasks serialize access themselves (see
folio.services.book).
"""

import io
import zipfile
import zlib
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path

from folio.errors import ArchiveEntryCorruptError, ErrorCode, FatalFormatError, ResourceMissingError


class ArchiveReaderBase(ABC):
    """Abstract base class for archive reader implementations."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether an entry exists.

        Args:
            path: Full entry path inside the archive (no leading slash).
        """
        ...

    @abstractmethod
    def size(self, path: str) -> int:
        """Get the uncompressed size of an entry.

        Returns:
            Size in bytes, or 0 if the entry does not exist.
        """
        ...

    @abstractmethod
    def read(self, path: str) -> bytes:
        """Read a whole entry.

        Raises:
            ResourceMissingError: If the entry does not exist.
            ArchiveEntryCorruptError: If the entry exists but cannot be read.
        """
        ...

    @abstractmethod
    def names(self) -> Iterator[str]:
        """Iterate over entry paths."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the underlying handle. Idempotent."""
        ...

    def __enter__(self) -> "ArchiveReaderBase":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ZipArchive(ArchiveReaderBase):
    """Archive reader backed by zipfile."""

    def __init__(self, source: str | Path | bytes):
        try:
            if isinstance(source, bytes):
                self._zf = zipfile.ZipFile(io.BytesIO(source))
            else:
                self._zf = zipfile.ZipFile(source)
        except (zipfile.BadZipFile, OSError) as exc:
            raise FatalFormatError(ErrorCode.E_ARCHIVE_INVALID, f"Invalid ZIP: {exc}") from exc
        self._closed = False

    def _info(self, path: str) -> zipfile.ZipInfo | None:
        try:
            return self._zf.getinfo(path)
        except KeyError:
            return None

    def exists(self, path: str) -> bool:
        return self._info(path) is not None

    def size(self, path: str) -> int:
        info = self._info(path)
        return info.file_size if info is not None else 0

    def read(self, path: str) -> bytes:
        try:
            return self._zf.read(path)
        except KeyError as exc:
            raise ResourceMissingError(path) from exc
        except (zipfile.BadZipFile, zlib.error, RuntimeError, NotImplementedError, EOFError) as exc:
            # bad CRC, damaged deflate stream, encrypted or unknown compression
            raise ArchiveEntryCorruptError(path, str(exc)) from exc

    def names(self) -> Iterator[str]:
        return iter(self._zf.namelist())

    def close(self) -> None:
        if not self._closed:
            self._zf.close()
            self._closed = True


class FakeArchive(ArchiveReaderBase):
    """In-memory archive reader for testing.

    Counts reads per entry so tests can observe caching behaviour.
    """

    def __init__(self, entries: dict[str, bytes | str] | None = None):
        self._entries: dict[str, bytes] = {}
        self.read_counts: dict[str, int] = {}
        self.closed = False
        for path, content in (entries or {}).items():
            self.put_entry(path, content)

    def put_entry(self, path: str, content: bytes | str) -> None:
        """Add or replace an entry (test helper)."""
        if isinstance(content, str):
            content = content.encode("utf-8")
        self._entries[path] = content

    @property
    def read_count(self) -> int:
        """Total number of reads served."""
        return sum(self.read_counts.values())

    def exists(self, path: str) -> bool:
        return path in self._entries

    def size(self, path: str) -> int:
        return len(self._entries.get(path, b""))

    def read(self, path: str) -> bytes:
        if path not in self._entries:
            raise ResourceMissingError(path)
        self.read_counts[path] = self.read_counts.get(path, 0) + 1
        return self._entries[path]

    def names(self) -> Iterator[str]:
        return iter(list(self._entries))

    def close(self) -> None:
        self.closed = True


def open_archive(source: str | Path | bytes) -> ArchiveReaderBase:
    """Open an EPUB container from a filesystem path or raw bytes.

    Raises:
        FatalFormatError: If the source is not a readable ZIP archive.
    """
    return ZipArchive(source)
