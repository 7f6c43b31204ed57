"""Error definitions for EPUB ingestion.

All ingestion errors are defined here with their taxonomy class. Only
FatalFormatError aborts the operation in progress; the other classes are
raised by helpers and caught at the degradation boundary, where they are
logged and turned into a reduced result (no font, no cover, no TOC).
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes.

    Format: E_CATEGORY_NAME
    """

    # Fatal format errors (book cannot be opened / TOC cannot be built)
    E_FATAL_FORMAT = "E_FATAL_FORMAT"
    E_ARCHIVE_INVALID = "E_ARCHIVE_INVALID"
    E_MIMETYPE_INVALID = "E_MIMETYPE_INVALID"
    E_CONTAINER_INVALID = "E_CONTAINER_INVALID"
    E_INCOMPATIBLE_BOOK = "E_INCOMPATIBLE_BOOK"
    E_CORRUPT_SPINE = "E_CORRUPT_SPINE"
    E_UNSUPPORTED_MEDIA_TYPE = "E_UNSUPPORTED_MEDIA_TYPE"
    E_DOCUMENT_MALFORMED = "E_DOCUMENT_MALFORMED"
    E_NAVIGATION_INCONSISTENT = "E_NAVIGATION_INCONSISTENT"
    E_NOT_OPEN = "E_NOT_OPEN"

    # Degradable errors
    E_RESOURCE_MISSING = "E_RESOURCE_MISSING"
    E_ARCHIVE_ENTRY_CORRUPT = "E_ARCHIVE_ENTRY_CORRUPT"
    E_BUDGET_EXCEEDED = "E_BUDGET_EXCEEDED"
    E_UNSUPPORTED_ALGORITHM = "E_UNSUPPORTED_ALGORITHM"
    E_STALE_STORE = "E_STALE_STORE"
    E_PARTIAL_READ = "E_PARTIAL_READ"


# Codes whose errors abort the operation in progress
FATAL_CODES: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.E_FATAL_FORMAT,
        ErrorCode.E_ARCHIVE_INVALID,
        ErrorCode.E_MIMETYPE_INVALID,
        ErrorCode.E_CONTAINER_INVALID,
        ErrorCode.E_INCOMPATIBLE_BOOK,
        ErrorCode.E_CORRUPT_SPINE,
        ErrorCode.E_UNSUPPORTED_MEDIA_TYPE,
        ErrorCode.E_DOCUMENT_MALFORMED,
        ErrorCode.E_NAVIGATION_INCONSISTENT,
        ErrorCode.E_NOT_OPEN,
    }
)


class FolioError(Exception):
    """Base exception for ingestion errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        fatal: Whether the error aborts the operation in progress
    """

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        self.fatal = code in FATAL_CODES
        super().__init__(message)


class FatalFormatError(FolioError):
    """Container, package or navigation document lacks required structure."""

    def __init__(self, code: ErrorCode = ErrorCode.E_FATAL_FORMAT, message: str = "Fatal format"):
        super().__init__(code, message)


class ResourceMissingError(FolioError):
    """A referenced file is absent from the archive."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(ErrorCode.E_RESOURCE_MISSING, f"Resource not found in archive: {path}")


class ArchiveEntryCorruptError(ResourceMissingError):
    """An entry is listed in the archive but cannot be decompressed.

    Handled wherever a missing entry is: the resource is unusable either way.
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        FolioError.__init__(
            self,
            ErrorCode.E_ARCHIVE_ENTRY_CORRUPT,
            f"Archive entry {path} is unreadable: {reason}",
        )


class BudgetExceededError(FolioError):
    """Font total size cap exceeded."""

    def __init__(self, message: str = "Font budget exceeded"):
        super().__init__(ErrorCode.E_BUDGET_EXCEEDED, message)


class UnsupportedAlgorithmError(FolioError):
    """Resource obfuscated with an unknown scheme."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(
            ErrorCode.E_UNSUPPORTED_ALGORITHM,
            f"Resource {path} obfuscated with an unknown algorithm",
        )


class StaleOrCorruptStoreError(FolioError):
    """Persisted TOC fails version/size checks."""

    def __init__(self, message: str = "TOC store is stale or corrupt"):
        super().__init__(ErrorCode.E_STALE_STORE, message)


class PartialReadError(FolioError):
    """Fewer store records than declared."""

    def __init__(self, read: int, expected: int):
        self.read = read
        self.expected = expected
        super().__init__(
            ErrorCode.E_PARTIAL_READ,
            f"TOC store partially read: {read} of {expected} records",
        )
