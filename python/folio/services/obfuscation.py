"""Font obfuscation (DRM) helpers.

Implements the two font obfuscation schemes found in EPUB packages:

- ADOBE (http://ns.adobe.com/pdf/enc#RC): the first 1024 bytes are XORed
  with the 16-byte binary form of the package's UUID identifier.
- IDPF (http://www.idpf.org/2008/embedding): the first 1040 bytes are XORed
  with the SHA-1 digest of the identifier stripped of all whitespace.

Invariants:
- Both keys are derived once per open file; the kind of each resource
  (from the encryption manifest) decides which one applies
- The key index cycles modulo the key length
- Buffers shorter than the obfuscated prefix are transformed up to their end
- Deobfuscation is its own inverse
"""

import hashlib
import re
from dataclasses import dataclass
from enum import Enum

from folio.errors import UnsupportedAlgorithmError

ADOBE_ALGORITHM = "http://ns.adobe.com/pdf/enc#RC"
IDPF_ALGORITHM = "http://www.idpf.org/2008/embedding"

ADOBE_PREFIX_LENGTH = 1024
IDPF_PREFIX_LENGTH = 1040

ADOBE_KEY_SIZE = 16
IDPF_KEY_SIZE = 20

URN_UUID_PREFIX = "urn:uuid:"

# 8-4-4-4-12 hex digits
_UUID_RE = re.compile(
    r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$"
)
_WHITESPACE_RE = re.compile(r"\s+")


class ObfuscationKind(str, Enum):
    """Obfuscation applied to a resource, per the encryption manifest."""

    NONE = "none"
    ADOBE = "adobe"
    IDPF = "idpf"
    UNKNOWN = "unknown"


def kind_for_algorithm(algorithm: str) -> ObfuscationKind:
    """Map an EncryptionMethod Algorithm URI to an obfuscation kind."""
    if algorithm == ADOBE_ALGORITHM:
        return ObfuscationKind.ADOBE
    if algorithm == IDPF_ALGORITHM:
        return ObfuscationKind.IDPF
    return ObfuscationKind.UNKNOWN


@dataclass(frozen=True)
class ObfuscationKeys:
    """Keys derived from the package unique identifier.

    adobe_key is None when the identifier is not UUID-shaped.
    """

    adobe_key: bytes | None
    idpf_key: bytes


def parse_uuid_key(unique_id: str) -> bytes | None:
    """Parse a (optionally urn:uuid: prefixed) UUID into 16 big-endian bytes.

    Returns:
        The binary key, or None if the identifier is not a 36-character UUID.
    """
    candidate = unique_id[len(URN_UUID_PREFIX) :] if unique_id.startswith(URN_UUID_PREFIX) else unique_id
    if not _UUID_RE.match(candidate):
        return None
    return bytes.fromhex(candidate.replace("-", ""))


def digest_key(unique_id: str) -> bytes:
    """SHA-1 of the identifier with every whitespace character removed."""
    stripped = _WHITESPACE_RE.sub("", unique_id)
    return hashlib.sha1(stripped.encode("utf-8")).digest()


def derive_keys(unique_id: str) -> ObfuscationKeys:
    """Derive both candidate keys from the package unique identifier."""
    return ObfuscationKeys(adobe_key=parse_uuid_key(unique_id), idpf_key=digest_key(unique_id))


def _xor_prefix(buffer: bytes, key: bytes, prefix_length: int) -> bytes:
    length = min(len(buffer), prefix_length)
    key_size = len(key)
    head = bytes(buffer[i] ^ key[i % key_size] for i in range(length))
    return head + bytes(buffer[length:])


def deobfuscate(
    buffer: bytes,
    kind: ObfuscationKind,
    keys: ObfuscationKeys,
    *,
    path: str = "",
) -> bytes:
    """Descramble the obfuscated prefix of a resource.

    Args:
        buffer: Raw resource bytes.
        kind: Obfuscation kind from the encryption manifest.
        keys: Keys derived for the open package.
        path: Resource path, for error reporting.

    Returns:
        The descrambled bytes (buffer unchanged for NONE).

    Raises:
        UnsupportedAlgorithmError: For UNKNOWN, or ADOBE when the identifier
            yielded no UUID key.
    """
    if kind == ObfuscationKind.NONE:
        return bytes(buffer)
    if kind == ObfuscationKind.ADOBE:
        if keys.adobe_key is None:
            raise UnsupportedAlgorithmError(path)
        return _xor_prefix(buffer, keys.adobe_key, ADOBE_PREFIX_LENGTH)
    if kind == ObfuscationKind.IDPF:
        return _xor_prefix(buffer, keys.idpf_key, IDPF_PREFIX_LENGTH)
    raise UnsupportedAlgorithmError(path)
