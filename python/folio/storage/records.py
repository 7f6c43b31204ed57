"""Sequential record file.

A minimal append-only record database used to persist the table of
contents next to the book:

    header  : magic b"FREC" + uint32 LE declared record count
    record* : uint32 LE payload length + payload bytes

The declared count is written on close. A reader that finds fewer complete
records than declared surfaces it as a short read; callers decide whether
that is fatal.
"""

import struct
from pathlib import Path
from typing import BinaryIO

from folio.logging import get_logger

logger = get_logger(__name__)

MAGIC = b"FREC"
_HEADER = struct.Struct("<4sI")
_LENGTH = struct.Struct("<I")


class RecordFileError(Exception):
    """Raised when a record file cannot be created or is not a record file."""

    pass


class RecordFile:
    """Cursor-style access to a record file.

    Usage (write):
        db = RecordFile(path)
        db.create()
        db.add_record(b"...")
        db.close()

    Usage (read):
        db.open()
        for payload in db.records():
            ...
        db.close()
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._fh: BinaryIO | None = None
        self._writing = False
        self._count = 0

    @property
    def record_count(self) -> int:
        """Declared record count (read mode) or records written so far."""
        return self._count

    def create(self) -> None:
        """Create (or truncate) the file for writing.

        Raises:
            RecordFileError: If the file cannot be created.
        """
        self.close()
        try:
            self._fh = open(self.path, "w+b")
        except OSError as exc:
            raise RecordFileError(f"Unable to create {self.path}: {exc}") from exc
        self._writing = True
        self._count = 0
        self._fh.write(_HEADER.pack(MAGIC, 0))

    def add_record(self, payload: bytes) -> None:
        if self._fh is None or not self._writing:
            raise RecordFileError("Record file is not open for writing")
        self._fh.write(_LENGTH.pack(len(payload)))
        self._fh.write(payload)
        self._count += 1

    def open(self) -> None:
        """Open an existing file for reading.

        Raises:
            RecordFileError: If the file is missing or lacks a valid header.
        """
        self.close()
        try:
            self._fh = open(self.path, "rb")
        except OSError as exc:
            raise RecordFileError(f"Unable to open {self.path}: {exc}") from exc

        header = self._fh.read(_HEADER.size)
        if len(header) != _HEADER.size:
            self.close()
            raise RecordFileError(f"{self.path} has no record header")
        magic, count = _HEADER.unpack(header)
        if magic != MAGIC:
            self.close()
            raise RecordFileError(f"{self.path} is not a record file")
        self._writing = False
        self._count = count

    def records(self):
        """Yield record payloads in order, stopping at the first truncated one."""
        if self._fh is None or self._writing:
            raise RecordFileError("Record file is not open for reading")
        self._fh.seek(_HEADER.size)
        for _ in range(self._count):
            raw_len = self._fh.read(_LENGTH.size)
            if len(raw_len) != _LENGTH.size:
                return
            (length,) = _LENGTH.unpack(raw_len)
            payload = self._fh.read(length)
            if len(payload) != length:
                logger.debug("record_truncated", path=str(self.path), expected=length, got=len(payload))
                return
            yield payload

    def close(self) -> None:
        if self._fh is None:
            return
        if self._writing:
            self._fh.seek(0)
            self._fh.write(_HEADER.pack(MAGIC, self._count))
        self._fh.close()
        self._fh = None
        self._writing = False

    def __enter__(self) -> "RecordFile":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
