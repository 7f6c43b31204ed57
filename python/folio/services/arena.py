"""Label storage for the table of contents.

Two modes of one abstraction:

- StringArena: a bump allocator used while the TOC is being built. Labels
  are copied into fixed-size blocks and addressed by ArenaRef handles.
  Individual labels are never freed; the whole arena is dropped at once.
- CompactedStringBlock: one immutable buffer holding every label
  back-to-back, each null-terminated. Entries address it by byte offset
  (persisted form) or by BlockRef (resident form).

Once an arena is sealed it hands out no further references.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

ENCODING = "utf-8"
NUL = b"\x00"


class ArenaSealedError(Exception):
    """Raised when allocating from an arena that has been discarded."""

    pass


@dataclass(frozen=True)
class ArenaRef:
    """Resident label inside a StringArena block."""

    arena: StringArena
    block: int
    start: int
    length: int

    @property
    def text(self) -> str:
        return self.arena.read(self)


@dataclass(frozen=True)
class BlockRef:
    """Resident label inside a CompactedStringBlock."""

    block: CompactedStringBlock
    offset: int

    @property
    def text(self) -> str:
        return self.block.label_at(self.offset)


class StringArena:
    """Bump allocator handing out label storage in fixed-size blocks."""

    def __init__(self, block_size: int = 4096):
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        self.block_size = block_size
        self._blocks: list[bytearray] = []
        self._used = 0
        self.total_allocated = 0
        self.sealed = False

    @property
    def block_count(self) -> int:
        return len(self._blocks)

    def allocate(self, label: str) -> ArenaRef:
        """Copy label (null-terminated) into the arena.

        Labels larger than a block get a block of their own.

        Raises:
            ArenaSealedError: If the arena has been sealed.
        """
        if self.sealed:
            raise ArenaSealedError("Arena has been compacted; no further allocation")

        data = label.encode(ENCODING) + NUL
        size = len(data)

        if not self._blocks or self._used + size > len(self._blocks[-1]):
            self._blocks.append(bytearray(max(self.block_size, size)))
            self._used = 0

        block = self._blocks[-1]
        start = self._used
        block[start : start + size] = data
        self._used += size
        self.total_allocated += size

        return ArenaRef(self, len(self._blocks) - 1, start, size - 1)

    def read(self, ref: ArenaRef) -> str:
        if self.sealed:
            raise ArenaSealedError("Arena has been compacted")
        block = self._blocks[ref.block]
        return bytes(block[ref.start : ref.start + ref.length]).decode(ENCODING)

    def seal(self) -> None:
        """Drop every block. Outstanding references become unreadable."""
        self._blocks.clear()
        self._used = 0
        self.sealed = True


class CompactedStringBlock:
    """Immutable buffer of null-terminated labels."""

    def __init__(self, data: bytes):
        if data and not data.endswith(NUL):
            raise ValueError("String block must end with a null terminator")
        self._data = bytes(data)

    @classmethod
    def from_labels(cls, labels: Iterable[str]) -> tuple[CompactedStringBlock, list[int]]:
        """Pack labels back-to-back.

        Returns:
            The block and the byte offset of each label, in input order.
        """
        parts: list[bytes] = []
        offsets: list[int] = []
        position = 0
        for label in labels:
            encoded = label.encode(ENCODING) + NUL
            offsets.append(position)
            parts.append(encoded)
            position += len(encoded)
        return cls(b"".join(parts)), offsets

    @property
    def data(self) -> bytes:
        return self._data

    def __len__(self) -> int:
        return len(self._data)

    def label_at(self, offset: int) -> str:
        """Decode the label starting at offset.

        Raises:
            IndexError: If offset lies outside the block.
        """
        if not 0 <= offset < len(self._data):
            raise IndexError(f"Label offset {offset} outside block of {len(self._data)} bytes")
        end = self._data.index(NUL, offset)
        return self._data[offset:end].decode(ENCODING, errors="replace")

    def ref(self, offset: int) -> BlockRef:
        """Resident reference for a stored offset.

        Raises:
            IndexError: If offset lies outside the block.
        """
        if not 0 <= offset < len(self._data):
            raise IndexError(f"Label offset {offset} outside block of {len(self._data)} bytes")
        return BlockRef(self, offset)
